import re
from typing import Dict, Tuple

from sqlalchemy import create_engine, text

from .config import settings


_VERSION_RE = re.compile(r"^(\d+)(?:\.(\d+))?")

engine = create_engine(settings.database_url, pool_pre_ping=True)


def _parse_pg_version(raw: str) -> str:
    match = _VERSION_RE.match(raw.strip())
    return match.group(0) if match else raw.strip()


def _version_matches(expected: str, actual: str) -> bool:
    # "16" accepts any 16.x server, "16.4" only that minor release
    expected = expected.strip()
    return actual == expected or actual.startswith(f"{expected}.")


def fetch_db_info() -> Dict[str, object]:
    with engine.connect() as conn:
        server_version_raw = conn.execute(text("SHOW server_version")).scalar()
        pending_tasks = conn.execute(
            text("SELECT count(*) FROM task_statuses WHERE status = 'pending'")
        ).scalar()

    return {
        "server_version_raw": server_version_raw,
        "server_version": _parse_pg_version(server_version_raw),
        "pending_tasks": pending_tasks,
    }


def validate_versions() -> Tuple[bool, str]:
    info = fetch_db_info()
    server_version = info["server_version"]

    if not _version_matches(settings.expected_pg_version, server_version):
        return False, (
            f"Postgres version mismatch: expected {settings.expected_pg_version}, "
            f"got {server_version}"
        )

    return True, "ok"
