from __future__ import annotations

from typing import Any, Callable, Dict
from uuid import UUID

from .agenda import handle_process_agenda_result
from .decisions import handle_poll_decisions_result
from .errors import UnsupportedTypeError
from .transcribe import handle_transcribe_result

ResultProcessor = Callable[[UUID, Any], Any]

RESULT_PROCESSORS: Dict[str, ResultProcessor] = {
    "transcribe": handle_transcribe_result,
    "processAgenda": handle_process_agenda_result,
    "pollDecisions": handle_poll_decisions_result,
}


def register_result_processor(task_type: str, processor: ResultProcessor) -> None:
    RESULT_PROCESSORS[task_type] = processor


def get_result_processor(task_type: str) -> ResultProcessor:
    try:
        return RESULT_PROCESSORS[task_type]
    except KeyError:
        raise UnsupportedTypeError(f"Unsupported task type: {task_type}") from None
