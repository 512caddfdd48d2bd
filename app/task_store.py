from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence
from uuid import UUID

from sqlalchemy import text

from .db import engine
from .errors import ConflictError, NotFoundError

TASK_STATUS = Literal["pending", "succeeded", "failed"]
STATUS_PENDING: TASK_STATUS = "pending"
STATUS_SUCCEEDED: TASK_STATUS = "succeeded"
STATUS_FAILED: TASK_STATUS = "failed"
TERMINAL_STATUSES = frozenset({STATUS_SUCCEEDED, STATUS_FAILED})

_TASK_COLUMNS = """
    id, workspace_id, transcript_id, type, status, stage, percent_complete,
    request_body, response_body, version, created_at, updated_at
"""
_UPDATABLE_COLUMNS = {
    "status",
    "stage",
    "percent_complete",
    "request_body",
    "response_body",
    "version",
}


@dataclass(frozen=True)
class TargetKey:
    workspace_id: str
    transcript_id: str

    def __str__(self) -> str:
        return f"{self.workspace_id}/{self.transcript_id}"


def dump_body(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def load_body(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def serialize_task(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(row["id"]),
        "workspace_id": row["workspace_id"],
        "transcript_id": row["transcript_id"],
        "type": row["type"],
        "status": row["status"],
        "stage": row["stage"],
        "percent_complete": row["percent_complete"],
        "request_body": row["request_body"],
        "response_body": row["response_body"],
        "version": row["version"],
        "created_at": row["created_at"].isoformat() if row["created_at"] else None,
        "updated_at": row["updated_at"].isoformat() if row["updated_at"] else None,
    }


def lock_target(conn, target: TargetKey) -> None:
    """Row-lock the transcript so check-and-insert on it is serialized."""
    row = conn.execute(
        text(
            """
            SELECT id
            FROM transcripts
            WHERE workspace_id = :workspace_id AND id = :transcript_id
            FOR UPDATE
            """
        ),
        {"workspace_id": target.workspace_id, "transcript_id": target.transcript_id},
    ).fetchone()
    if row is None:
        raise NotFoundError(f"transcript not found: {target}")


def find_active_task(conn, target: TargetKey, task_type: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        text(
            f"""
            SELECT {_TASK_COLUMNS}
            FROM task_statuses
            WHERE workspace_id = :workspace_id
              AND transcript_id = :transcript_id
              AND type = :type
              AND status NOT IN ('succeeded', 'failed')
            ORDER BY created_at DESC
            LIMIT 1
            """
        ),
        {
            "workspace_id": target.workspace_id,
            "transcript_id": target.transcript_id,
            "type": task_type,
        },
    ).mappings().first()
    return dict(row) if row else None


def create_task(
    conn, target: TargetKey, task_type: str, request_body: Any
) -> Dict[str, Any]:
    row = conn.execute(
        text(
            f"""
            INSERT INTO task_statuses
              (workspace_id, transcript_id, type, status, request_body)
            VALUES
              (:workspace_id, :transcript_id, :type, :status, :request_body)
            RETURNING {_TASK_COLUMNS}
            """
        ),
        {
            "workspace_id": target.workspace_id,
            "transcript_id": target.transcript_id,
            "type": task_type,
            "status": STATUS_PENDING,
            "request_body": dump_body(request_body),
        },
    ).mappings().one()
    return dict(row)


def get_task(task_id: UUID) -> Dict[str, Any]:
    with engine.connect() as conn:
        row = conn.execute(
            text(f"SELECT {_TASK_COLUMNS} FROM task_statuses WHERE id = :id"),
            {"id": task_id},
        ).mappings().first()
    if row is None:
        raise NotFoundError(f"task not found: {task_id}")
    return dict(row)


def get_task_for_target(target: TargetKey, task_id: UUID) -> Dict[str, Any]:
    task = get_task(task_id)
    if (task["workspace_id"], task["transcript_id"]) != (
        target.workspace_id,
        target.transcript_id,
    ):
        raise NotFoundError(f"task {task_id} does not belong to {target}")
    return task


def _set_clauses(fields: Dict[str, Any]) -> tuple[List[str], Dict[str, Any]]:
    unknown = set(fields) - _UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"cannot update task columns: {sorted(unknown)}")
    clauses = ["updated_at = now()"]
    params: Dict[str, Any] = {}
    for column, value in fields.items():
        if column in {"request_body", "response_body"}:
            value = dump_body(value)
        clauses.append(f"{column} = :{column}")
        params[column] = value
    return clauses, params


def update_task(task_id: UUID, **fields: Any) -> Dict[str, Any]:
    clauses, params = _set_clauses(fields)
    params["id"] = task_id
    with engine.begin() as conn:
        row = conn.execute(
            text(
                f"""
                UPDATE task_statuses
                SET {", ".join(clauses)}
                WHERE id = :id
                RETURNING {_TASK_COLUMNS}
                """
            ),
            params,
        ).mappings().first()
    if row is None:
        raise NotFoundError(f"task not found: {task_id}")
    return dict(row)


def lock_task(conn, task_id: UUID) -> Dict[str, Any]:
    row = conn.execute(
        text(f"SELECT {_TASK_COLUMNS} FROM task_statuses WHERE id = :id FOR UPDATE"),
        {"id": task_id},
    ).mappings().first()
    if row is None:
        raise NotFoundError(f"task not found: {task_id}")
    return dict(row)


def _transition(conn, params: Dict[str, Any], clauses: List[str]) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        text(
            f"""
            UPDATE task_statuses
            SET {", ".join(clauses)}
            WHERE id = :id AND status = :from_status
            RETURNING {_TASK_COLUMNS}
            """
        ),
        params,
    ).mappings().first()
    return dict(row) if row else None


def transition_task(
    task_id: UUID,
    status: TASK_STATUS,
    *,
    from_status: TASK_STATUS = STATUS_PENDING,
    conn=None,
    **fields: Any,
) -> Optional[Dict[str, Any]]:
    """Move a task out of ``from_status``; ``None`` if it was not in it.

    Runs on ``conn`` when the caller already holds a transaction.
    """
    clauses, params = _set_clauses({"status": status, **fields})
    params.update({"id": task_id, "from_status": from_status})
    if conn is not None:
        return _transition(conn, params, clauses)
    with engine.begin() as own_conn:
        return _transition(own_conn, params, clauses)


def list_tasks(
    target: TargetKey,
    *,
    status: Optional[TASK_STATUS] = None,
    limit: int = 50,
) -> Dict[str, Any]:
    where = ["workspace_id = :workspace_id", "transcript_id = :transcript_id"]
    params: Dict[str, Any] = {
        "workspace_id": target.workspace_id,
        "transcript_id": target.transcript_id,
        "limit": limit,
    }
    if status is not None:
        where.append("status = :status")
        params["status"] = status

    with engine.connect() as conn:
        rows = conn.execute(
            text(
                f"""
                SELECT {_TASK_COLUMNS}
                FROM task_statuses
                WHERE {" AND ".join(where)}
                ORDER BY created_at DESC, id DESC
                LIMIT :limit
                """
            ),
            params,
        ).mappings()
        items = [serialize_task(dict(row)) for row in rows]
    return {"items": items}


def delete_task(target: TargetKey, task_id: UUID, cooldown_s: int) -> None:
    get_task_for_target(target, task_id)
    with engine.begin() as conn:
        deleted = conn.execute(
            text(
                """
                DELETE FROM task_statuses
                WHERE id = :id
                  AND updated_at <= now() - make_interval(secs => :cooldown_s)
                RETURNING id
                """
            ),
            {"id": task_id, "cooldown_s": cooldown_s},
        ).fetchone()
    if deleted is None:
        raise ConflictError(
            f"task {task_id} was updated within the last {cooldown_s}s and cannot be deleted"
        )


def get_highest_versions(task_types: Sequence[str]) -> Dict[str, Optional[int]]:
    versions: Dict[str, Optional[int]] = {task_type: None for task_type in task_types}
    if not task_types:
        return versions
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                """
                SELECT type, max(version) AS version
                FROM task_statuses
                WHERE type = ANY(:types)
                GROUP BY type
                """
            ),
            {"types": list(task_types)},
        ).fetchall()
    for task_type, version in rows:
        versions[task_type] = version
    return versions
