from __future__ import annotations


class TaskError(RuntimeError):
    status_code = 500


class AuthorizationError(TaskError):
    status_code = 403


class ConflictError(TaskError):
    status_code = 409


class LaunchError(TaskError):
    """The worker was unreachable or refused the job."""

    status_code = 502


class NotFoundError(TaskError):
    status_code = 404


class UnsupportedTypeError(TaskError):
    """No result processor is registered for a task type."""

    status_code = 500


class ValidationError(TaskError):
    """A worker result referenced something that does not exist.

    Ingestion handlers recover from this locally by dropping the reference.
    """

    status_code = 422


class ProcessingError(TaskError):
    """A result processor failed after the worker reported success."""

    status_code = 500

    def __init__(self, task_id: object, cause: BaseException) -> None:
        super().__init__(f"processing result for task {task_id} failed: {cause}")
        self.task_id = task_id
        self.cause = cause
