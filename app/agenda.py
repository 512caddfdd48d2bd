from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import UUID

from sqlalchemy import text

from . import task_store
from .auth import authorize
from .db import engine
from .errors import ConflictError
from .launcher import launch_task
from .logging_utils import get_logger
from .schemas import AgendaSubject, ProcessAgendaRequest, ProcessAgendaResult
from .task_store import TargetKey

TASK_TYPE = "processAgenda"
_SUBJECT_COLUMNS = """
    id, workspace_id, transcript_id, name, description, agenda_item_index,
    introduced_by_id, topic_label, created_at
"""
logger = get_logger(__name__)


def _serialize_subject(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"],
        "agenda_item_index": row["agenda_item_index"],
        "introduced_by_id": row["introduced_by_id"],
        "topic_label": row["topic_label"],
        "created_at": row["created_at"].isoformat() if row["created_at"] else None,
    }


def _load_people() -> List[Dict[str, str]]:
    with engine.connect() as conn:
        rows = conn.execute(text("SELECT id, name FROM speakers ORDER BY name, id")).fetchall()
    return [{"id": speaker_id, "name": name} for speaker_id, name in rows]


def _transcript_has_subjects(conn, target: TargetKey) -> bool:
    return (
        conn.execute(
            text(
                """
                SELECT 1 FROM subjects
                WHERE workspace_id = :workspace_id AND transcript_id = :transcript_id
                LIMIT 1
                """
            ),
            {"workspace_id": target.workspace_id, "transcript_id": target.transcript_id},
        ).fetchone()
        is not None
    )


def clear_subjects(conn, target: TargetKey) -> int:
    result = conn.execute(
        text(
            """
            DELETE FROM subjects
            WHERE workspace_id = :workspace_id AND transcript_id = :transcript_id
            """
        ),
        {"workspace_id": target.workspace_id, "transcript_id": target.transcript_id},
    )
    return result.rowcount


def _known_speaker_ids(conn, speaker_ids: Sequence[str]) -> Set[str]:
    if not speaker_ids:
        return set()
    rows = conn.execute(
        text("SELECT id FROM speakers WHERE id = ANY(:ids)"), {"ids": list(speaker_ids)}
    ).fetchall()
    return {row[0] for row in rows}


def _insert_subject(
    conn, target: TargetKey, subject: AgendaSubject, introduced_by_id: Optional[str]
) -> None:
    conn.execute(
        text(
            """
            INSERT INTO subjects
              (workspace_id, transcript_id, name, description, agenda_item_index,
               introduced_by_id, topic_label)
            VALUES
              (:workspace_id, :transcript_id, :name, :description, :agenda_item_index,
               :introduced_by_id, :topic_label)
            """
        ),
        {
            "workspace_id": target.workspace_id,
            "transcript_id": target.transcript_id,
            "name": subject.name,
            "description": subject.description,
            "agenda_item_index": subject.agenda_item_index,
            "introduced_by_id": introduced_by_id,
            "topic_label": subject.topic_label,
        },
    )


def handle_process_agenda_result(task_id: UUID, result: Any) -> Dict[str, int]:
    """Store the subjects extracted from a meeting agenda.

    Introducers that are not known speakers are dropped and the subject is
    kept without one.
    """
    parsed = ProcessAgendaResult.model_validate(result)
    task = task_store.get_task(task_id)
    target = TargetKey(task["workspace_id"], task["transcript_id"])
    referenced = sorted(
        {s.introduced_by_person_id for s in parsed.subjects if s.introduced_by_person_id}
    )

    dropped = 0
    with engine.begin() as conn:
        known = _known_speaker_ids(conn, referenced)
        for subject in parsed.subjects:
            introduced_by_id = subject.introduced_by_person_id
            if introduced_by_id is not None and introduced_by_id not in known:
                logger.warning(
                    "process_agenda_result.introducer_dropped subject=%s person=%s",
                    subject.name,
                    introduced_by_id,
                )
                introduced_by_id = None
                dropped += 1
            _insert_subject(conn, target, subject, introduced_by_id)

    logger.info(
        "process_agenda_result.ingested target=%s subjects=%s introducers_dropped=%s",
        target,
        len(parsed.subjects),
        dropped,
    )
    return {"subjects": len(parsed.subjects), "introducers_dropped": dropped}


def list_subjects(target: TargetKey, token: Optional[str] = None) -> Dict[str, Any]:
    authorize(target, token)
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                f"""
                SELECT {_SUBJECT_COLUMNS}
                FROM subjects
                WHERE workspace_id = :workspace_id AND transcript_id = :transcript_id
                ORDER BY agenda_item_index NULLS LAST, created_at, id
                """
            ),
            {"workspace_id": target.workspace_id, "transcript_id": target.transcript_id},
        ).mappings()
        items = [_serialize_subject(dict(row)) for row in rows]
    return {"items": items}


def request_process_agenda(
    target: TargetKey, request: ProcessAgendaRequest, token: Optional[str] = None
) -> Dict[str, Any]:
    def prepare(conn) -> None:
        if not _transcript_has_subjects(conn, target):
            return
        if not request.force:
            raise ConflictError(
                f"transcript {target} already has subjects; use force to reprocess the agenda"
            )
        deleted = clear_subjects(conn, target)
        logger.info("process_agenda_request.cleared target=%s subjects=%s", target, deleted)

    authorize(target, token)
    payload = {**request.worker_payload(), "people": _load_people()}
    return launch_task(
        TASK_TYPE,
        payload,
        target,
        force=request.force,
        token=token,
        prepare=prepare,
    )
