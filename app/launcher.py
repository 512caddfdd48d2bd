from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from . import notifier, task_store, worker_client
from .auth import authorize
from .db import engine
from .errors import ConflictError, LaunchError
from .logging_utils import bind_task_id, get_logger
from .task_store import STATUS_FAILED, TargetKey

PrepareHook = Callable[[Any], None]
logger = get_logger(__name__)


def launch_task(
    task_type: str,
    payload: Dict[str, Any],
    target: TargetKey,
    *,
    force: bool = False,
    token: Optional[str] = None,
    prepare: Optional[PrepareHook] = None,
) -> Dict[str, Any]:
    """Record a pending task for ``target`` and hand it to the worker.

    The transcript row stays locked while the conflict check and the insert
    run, so two launches for the same target cannot both pass the check.
    ``force`` skips the conflict; the earlier task is left as it is.

    ``prepare(conn)`` runs in the same locked transaction after the conflict
    check, so target-side writes are only committed together with the new
    task. Anything it raises rolls both back.
    """
    authorize(target, token)

    with engine.begin() as conn:
        task_store.lock_target(conn, target)
        existing = task_store.find_active_task(conn, target, task_type)
        if existing is not None and not force:
            raise ConflictError(
                f"A task of type {task_type} is already running for {target} "
                f"(task {existing['id']})"
            )
        if existing is not None:
            logger.warning(
                "task_launch.forced task_type=%s target=%s running_task_id=%s",
                task_type,
                target,
                existing["id"],
            )
        if prepare is not None:
            prepare(conn)
        task = task_store.create_task(conn, target, task_type, payload)

    task_id = task["id"]
    with bind_task_id(task_id):
        callback_url = worker_client.build_callback_url(target, task_id)
        full_body = {**payload, "callbackUrl": callback_url}
        logger.info(
            "task_launch.start task_type=%s target=%s callback_url=%s",
            task_type,
            target,
            callback_url,
        )

        try:
            worker_client.post_task(task_type, full_body)
        except LaunchError as exc:
            message = str(exc)
            task = task_store.update_task(
                task_id, status=STATUS_FAILED, response_body=message
            )
            logger.warning(
                "task_launch.failed task_type=%s target=%s error=%s",
                task_type,
                target,
                message,
            )
            notifier.send_admin_alert("failed", task, error=message)
            raise

        task = task_store.update_task(task_id, request_body=full_body)
        logger.info("task_launch.accepted task_type=%s target=%s", task_type, target)
        notifier.send_admin_alert("started", task)
    return task
