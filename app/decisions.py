from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import text

from . import task_store
from .db import engine
from .launcher import launch_task
from .logging_utils import get_logger
from .schemas import DecisionMatch, PollDecisionsRequest, PollDecisionsResult
from .task_store import TargetKey

TASK_TYPE = "pollDecisions"
_DECISION_COLUMNS = """
    subject_id, pdf_url, ada, protocol_number, title, issue_date,
    created_at, updated_at
"""
logger = get_logger(__name__)


def _serialize_decision(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "subject_id": row["subject_id"],
        "pdf_url": row["pdf_url"],
        "ada": row["ada"],
        "protocol_number": row["protocol_number"],
        "title": row["title"],
        "issue_date": row["issue_date"].isoformat() if row["issue_date"] else None,
        "created_at": row["created_at"].isoformat() if row["created_at"] else None,
        "updated_at": row["updated_at"].isoformat() if row["updated_at"] else None,
    }


def upsert_decision(match: DecisionMatch) -> Dict[str, Any]:
    with engine.begin() as conn:
        row = conn.execute(
            text(
                f"""
                INSERT INTO decisions
                  (subject_id, pdf_url, ada, protocol_number, title, issue_date)
                VALUES
                  (:subject_id, :pdf_url, :ada, :protocol_number, :title, :issue_date)
                ON CONFLICT (subject_id) DO UPDATE SET
                  pdf_url = EXCLUDED.pdf_url,
                  ada = EXCLUDED.ada,
                  protocol_number = EXCLUDED.protocol_number,
                  title = EXCLUDED.title,
                  issue_date = EXCLUDED.issue_date,
                  updated_at = now()
                RETURNING {_DECISION_COLUMNS}
                """
            ),
            {
                "subject_id": match.subject_id,
                "pdf_url": match.pdf_url,
                "ada": match.ada,
                "protocol_number": match.protocol_number,
                "title": match.title,
                "issue_date": match.issue_date,
            },
        ).mappings().one()
    return _serialize_decision(dict(row))


def list_decisions(subject_ids: Sequence[str]) -> Dict[str, Any]:
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                f"""
                SELECT {_DECISION_COLUMNS}
                FROM decisions
                WHERE subject_id = ANY(:subject_ids)
                ORDER BY subject_id
                """
            ),
            {"subject_ids": list(subject_ids)},
        ).mappings()
        items: List[Dict[str, Any]] = [_serialize_decision(dict(row)) for row in rows]
    return {"items": items}


def handle_poll_decisions_result(task_id: UUID, result: Any) -> Dict[str, int]:
    # Each upsert commits on its own; a failure midway keeps earlier rows.
    parsed = PollDecisionsResult.model_validate(result)
    task_store.get_task(task_id)

    for match in parsed.matches:
        upsert_decision(match)

    logger.info(
        "poll_decisions_result.ingested matched=%s unmatched=%s ambiguous=%s",
        len(parsed.matches),
        len(parsed.unmatched_subjects),
        len(parsed.ambiguous_subjects),
    )
    return {
        "matched": len(parsed.matches),
        "unmatched": len(parsed.unmatched_subjects),
        "ambiguous": len(parsed.ambiguous_subjects),
    }


def request_poll_decisions(
    target: TargetKey, request: PollDecisionsRequest, token: Optional[str] = None
) -> Dict[str, Any]:
    return launch_task(
        TASK_TYPE,
        request.worker_payload(),
        target,
        force=request.force,
        token=token,
    )
