from __future__ import annotations

from redis import Redis
from rq import Queue, Worker

from app.config import settings
from app.logging_utils import configure_logging, get_logger


def main() -> None:
    configure_logging(settings.log_level)
    logger = get_logger(__name__)
    connection = Redis.from_url(settings.redis_url)
    logger.info(
        "alerts_worker.start queue=%s redis=%s webhook_configured=%s",
        settings.alerts_queue_name,
        settings.redis_url,
        bool(settings.admin_alert_webhook_url.strip()),
    )
    queue = Queue(settings.alerts_queue_name, connection=connection)
    worker = Worker([queue], connection=connection)
    worker.work()


if __name__ == "__main__":
    main()
