from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Header

from .config import settings
from .errors import AuthorizationError
from .task_store import TargetKey


def _matches(token: Optional[str], expected: str) -> bool:
    if not token or not expected:
        return False
    return secrets.compare_digest(token.encode(), expected.encode())


def authorize(target: TargetKey, token: Optional[str]) -> None:
    if _matches(token, settings.editor_api_key) or _matches(token, settings.admin_api_key):
        return
    raise AuthorizationError(f"not authorized to edit {target}")


def authorize_admin(token: Optional[str]) -> None:
    if not _matches(token, settings.admin_api_key):
        raise AuthorizationError("only administrators can perform this operation")


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()
