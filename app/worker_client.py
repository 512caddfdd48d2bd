from __future__ import annotations

import json
from typing import Any, Dict, Optional
from uuid import UUID

import httpx

from .config import settings
from .errors import LaunchError
from .logging_utils import get_logger
from .task_store import TargetKey

NO_RESPONSE_BODY = "no response body"
logger = get_logger(__name__)


def _normalize_base_url(raw: str) -> str:
    return raw.rstrip("/")


def build_callback_url(target: TargetKey, task_id: UUID) -> str:
    return (
        f"{_normalize_base_url(settings.public_base_url)}"
        f"/workspaces/{target.workspace_id}/transcripts/{target.transcript_id}"
        f"/task-statuses/{task_id}"
    )


def extract_error_message(
    response: Optional[httpx.Response], exc: Optional[BaseException] = None
) -> str:
    """JSON ``error`` field, else raw body, else the transport error."""
    if response is not None:
        raw = response.text
        try:
            body = json.loads(raw)
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        if raw.strip():
            return raw.strip()
    if exc is not None and str(exc):
        return str(exc)
    return NO_RESPONSE_BODY


def post_task(task_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
    url = f"{_normalize_base_url(settings.task_api_url)}/{task_type}"
    headers = {"Authorization": f"Bearer {settings.task_api_key}"}
    timeout = httpx.Timeout(settings.task_api_timeout_s)

    logger.info("worker_client.post task_type=%s url=%s", task_type, url)
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(url, json=body, headers=headers)
    except httpx.HTTPError as exc:
        raise LaunchError(extract_error_message(None, exc)) from exc

    if not response.is_success:
        message = extract_error_message(response)
        logger.warning(
            "worker_client.rejected task_type=%s status=%s error=%s",
            task_type,
            response.status_code,
            message,
        )
        raise LaunchError(message)

    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
