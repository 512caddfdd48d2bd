from __future__ import annotations

from typing import Any, Dict, Optional, Union
from uuid import UUID

from . import notifier, task_store
from .auth import authorize_admin
from .db import engine
from .errors import ConflictError, ProcessingError
from .logging_utils import bind_task_id, get_logger
from .processors import get_result_processor
from .schemas import ErrorUpdate, ProcessingUpdate, SuccessUpdate
from .task_store import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SUCCEEDED,
    TERMINAL_STATUSES,
    TargetKey,
)

logger = get_logger(__name__)


def _terminal_conflict(task_id: UUID, status: str) -> ConflictError:
    return ConflictError(f"task {task_id} is already {status}; update rejected")


def _present(**fields: Any) -> Dict[str, Any]:
    # omitted callback fields leave the stored column untouched
    return {column: value for column, value in fields.items() if value is not None}


def _run_processor(task: Dict[str, Any], result: Any, version: Optional[int]) -> None:
    task_id = task["id"]
    processor = get_result_processor(task["type"])
    try:
        processor(task_id, result)
    except Exception as exc:
        logger.exception(
            "task_callback.processing_failed task_type=%s error=%s", task["type"], str(exc)
        )
        failed = task_store.transition_task(
            task_id, STATUS_FAILED, from_status=STATUS_SUCCEEDED, **_present(version=version)
        )
        notifier.send_admin_alert("failed", failed or task, error=str(exc))
        raise ProcessingError(task_id, exc) from exc


def _apply_success(task: Dict[str, Any], update: SuccessUpdate) -> Dict[str, Any]:
    task_id = task["id"]
    if update.result is not None:
        # unknown types fail before anything is written
        get_result_processor(task["type"])

    updated = task_store.transition_task(
        task_id,
        STATUS_SUCCEEDED,
        response_body=update.result,
        **_present(version=update.version),
    )
    if updated is None:
        raise _terminal_conflict(task_id, task_store.get_task(task_id)["status"])

    if update.result is None:
        logger.info("task_callback.success_without_result task_type=%s", task["type"])
    else:
        _run_processor(updated, update.result, update.version)

    logger.info("task_callback.succeeded task_type=%s", task["type"])
    notifier.send_admin_alert("completed", updated)
    return updated


def _apply_error(task: Dict[str, Any], update: ErrorUpdate) -> Dict[str, Any]:
    task_id = task["id"]
    updated = task_store.transition_task(
        task_id,
        STATUS_FAILED,
        response_body=update.error,
        **_present(version=update.version),
    )
    if updated is None:
        raise _terminal_conflict(task_id, task_store.get_task(task_id)["status"])
    logger.warning("task_callback.worker_error task_type=%s error=%s", task["type"], update.error)
    notifier.send_admin_alert("failed", updated, error=update.error)
    return updated


def _apply_processing(task: Dict[str, Any], update: ProcessingUpdate) -> Dict[str, Any]:
    task_id = task["id"]
    updated = task_store.transition_task(
        task_id,
        STATUS_PENDING,
        **_present(
            stage=update.stage,
            percent_complete=update.progress_percent,
            version=update.version,
        ),
    )
    if updated is None:
        raise _terminal_conflict(task_id, task_store.get_task(task_id)["status"])
    logger.info(
        "task_callback.progress stage=%s percent_complete=%s",
        update.stage,
        update.progress_percent,
    )
    return updated


def apply_task_update(
    task_id: UUID,
    update: Union[ProcessingUpdate, SuccessUpdate, ErrorUpdate],
    target: Optional[TargetKey] = None,
) -> Dict[str, Any]:
    """Apply a worker callback to a pending task.

    Tasks that already reached ``succeeded`` or ``failed`` reject every
    further update, so a repeated success callback never re-runs ingestion.
    """
    with bind_task_id(task_id):
        if target is not None:
            task = task_store.get_task_for_target(target, task_id)
        else:
            task = task_store.get_task(task_id)

        if task["status"] in TERMINAL_STATUSES:
            raise _terminal_conflict(task_id, task["status"])

        if isinstance(update, SuccessUpdate):
            return _apply_success(task, update)
        if isinstance(update, ErrorUpdate):
            return _apply_error(task, update)
        return _apply_processing(task, update)


def reprocess_task(task_id: UUID, token: Optional[str] = None) -> Dict[str, Any]:
    """Replay the stored result of a task whose ingestion failed.

    The task row stays locked until the replay commits; a concurrent replay of
    the same task waits, then sees it succeeded and is rejected.
    """
    authorize_admin(token)
    with bind_task_id(task_id):
        with engine.begin() as conn:
            task = task_store.lock_task(conn, task_id)
            if task["status"] != STATUS_FAILED:
                raise ConflictError(
                    f"only failed tasks can be reprocessed (task {task_id} is {task['status']})"
                )
            result = task_store.load_body(task["response_body"])
            if not isinstance(result, dict):
                raise ConflictError(f"task {task_id} has no stored result to replay")

            processor = get_result_processor(task["type"])
            logger.info("task_reprocess.start task_type=%s", task["type"])
            try:
                processor(task_id, result)
            except Exception as exc:
                logger.exception("task_reprocess.failed error=%s", str(exc))
                raise ProcessingError(task_id, exc) from exc

            updated = task_store.transition_task(
                task_id, STATUS_SUCCEEDED, from_status=STATUS_FAILED, conn=conn
            )
            if updated is None:
                raise _terminal_conflict(task_id, task["status"])

        logger.info("task_reprocess.succeeded task_type=%s", task["type"])
        notifier.send_admin_alert("completed", updated)
        return updated
