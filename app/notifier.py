from __future__ import annotations

from typing import Any, Dict, Literal, Optional

import httpx
from redis import Redis
from rq import Queue

from .config import settings
from .logging_utils import get_logger

ALERT_EVENT = Literal["started", "completed", "failed"]
logger = get_logger(__name__)


def _redis() -> Redis:
    return Redis.from_url(settings.redis_url)


def build_admin_alert(
    event: ALERT_EVENT, task: Dict[str, Any], error: Optional[str] = None
) -> Dict[str, Any]:
    alert = {
        "event": event,
        "task_id": str(task["id"]),
        "task_type": task["type"],
        "workspace_id": task["workspace_id"],
        "transcript_id": task["transcript_id"],
    }
    if error:
        alert["error"] = error
    return alert


def _enqueue_alert(alert: Dict[str, Any]) -> str:
    queue = Queue(settings.alerts_queue_name, connection=_redis())
    rq_job = queue.enqueue("app.notifier.deliver_admin_alert", alert)
    return rq_job.id


def send_admin_alert(
    event: ALERT_EVENT, task: Dict[str, Any], error: Optional[str] = None
) -> None:
    """Queue an operator alert; never raises."""
    alert = build_admin_alert(event, task, error)
    try:
        job_id = _enqueue_alert(alert)
    except Exception as exc:
        logger.warning(
            "admin_alert.enqueue_failed event=%s task_id=%s error=%s",
            event,
            alert["task_id"],
            str(exc),
        )
        return
    logger.info(
        "admin_alert.enqueued event=%s task_id=%s job_id=%s",
        event,
        alert["task_id"],
        job_id,
    )


def _format_alert(alert: Dict[str, Any]) -> str:
    lines = [
        f"Task {alert['event']}: {alert['task_type']}",
        f"Target: {alert['workspace_id']}/{alert['transcript_id']}",
        f"Task ID: {alert['task_id']}",
    ]
    if alert.get("error"):
        lines.append(f"Error: {alert['error']}")
    return "\n".join(lines)


def deliver_admin_alert(alert: Dict[str, Any]) -> None:
    if not settings.admin_alert_webhook_url.strip():
        logger.info("admin_alert.skipped reason=no_webhook alert=%s", alert)
        return

    timeout = httpx.Timeout(settings.admin_alert_timeout_s)
    with httpx.Client(timeout=timeout) as client:
        response = client.post(
            settings.admin_alert_webhook_url, json={"content": _format_alert(alert)}
        )
    response.raise_for_status()
    logger.info(
        "admin_alert.delivered event=%s task_id=%s", alert["event"], alert["task_id"]
    )
