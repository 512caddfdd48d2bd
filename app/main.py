from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import UUID, uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from . import task_store
from .agenda import list_subjects, request_process_agenda
from .auth import authorize, authorize_admin, bearer_token
from .callbacks import apply_task_update, reprocess_task
from .config import settings
from .db import fetch_db_info, validate_versions
from .decisions import list_decisions, request_poll_decisions
from .errors import TaskError
from .logging_utils import configure_logging, get_logger, reset_request_id, set_request_id
from .schemas import (
    PollDecisionsRequest,
    ProcessAgendaRequest,
    TaskUpdateBody,
    TranscribeRequest,
)
from .task_store import TargetKey, serialize_task
from .transcribe import request_transcribe

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    if not settings.skip_version_check:
        ok, message = validate_versions()
        if not ok:
            raise RuntimeError(message)
    yield


app = FastAPI(title="Meeting Task Service", lifespan=lifespan)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid4().hex[:12]
    token = set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        reset_request_id(token)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(TaskError)
async def task_error_handler(request: Request, exc: TaskError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request.failed path=%s error=%s", request.url.path, str(exc))
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.get("/health")
def health() -> dict:
    try:
        info = fetch_db_info()
    except Exception as exc:  # pragma: no cover - safety
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"status": "ok", "db": info}


@app.get("/diagnostics")
def diagnostics() -> dict:
    try:
        info = fetch_db_info()
        ok, message = validate_versions()
    except Exception as exc:
        return {"status": "error", "detail": str(exc)}
    return {
        "status": "ok" if ok else "mismatch",
        "detail": message,
        "db": info,
        "expected": {"postgres": settings.expected_pg_version},
    }


@app.post("/workspaces/{workspace_id}/transcripts/{transcript_id}/transcribe", status_code=201)
def transcribe_endpoint(
    workspace_id: str,
    transcript_id: str,
    payload: TranscribeRequest,
    token: Optional[str] = Depends(bearer_token),
) -> dict:
    target = TargetKey(workspace_id, transcript_id)
    return serialize_task(request_transcribe(target, payload, token))


@app.post(
    "/workspaces/{workspace_id}/transcripts/{transcript_id}/process-agenda",
    status_code=201,
)
def process_agenda_endpoint(
    workspace_id: str,
    transcript_id: str,
    payload: ProcessAgendaRequest,
    token: Optional[str] = Depends(bearer_token),
) -> dict:
    target = TargetKey(workspace_id, transcript_id)
    return serialize_task(request_process_agenda(target, payload, token))


@app.get("/workspaces/{workspace_id}/transcripts/{transcript_id}/subjects")
def list_subjects_endpoint(
    workspace_id: str,
    transcript_id: str,
    token: Optional[str] = Depends(bearer_token),
) -> dict:
    return list_subjects(TargetKey(workspace_id, transcript_id), token)


@app.post(
    "/workspaces/{workspace_id}/transcripts/{transcript_id}/poll-decisions",
    status_code=201,
)
def poll_decisions_endpoint(
    workspace_id: str,
    transcript_id: str,
    payload: PollDecisionsRequest,
    token: Optional[str] = Depends(bearer_token),
) -> dict:
    target = TargetKey(workspace_id, transcript_id)
    return serialize_task(request_poll_decisions(target, payload, token))


@app.post("/workspaces/{workspace_id}/transcripts/{transcript_id}/task-statuses/{task_id}")
def task_callback_endpoint(
    workspace_id: str,
    transcript_id: str,
    task_id: UUID,
    payload: TaskUpdateBody,
) -> dict:
    target = TargetKey(workspace_id, transcript_id)
    return serialize_task(apply_task_update(task_id, payload.root, target))


@app.get("/workspaces/{workspace_id}/transcripts/{transcript_id}/task-statuses")
def list_tasks_endpoint(
    workspace_id: str,
    transcript_id: str,
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    token: Optional[str] = Depends(bearer_token),
) -> dict:
    allowed = {"pending", "succeeded", "failed"}
    if status is not None and status not in allowed:
        raise HTTPException(status_code=400, detail="invalid task status filter")
    target = TargetKey(workspace_id, transcript_id)
    authorize(target, token)
    return task_store.list_tasks(target, status=status, limit=limit)


@app.get("/workspaces/{workspace_id}/transcripts/{transcript_id}/task-statuses/{task_id}")
def get_task_endpoint(
    workspace_id: str,
    transcript_id: str,
    task_id: UUID,
    token: Optional[str] = Depends(bearer_token),
) -> dict:
    target = TargetKey(workspace_id, transcript_id)
    authorize(target, token)
    return serialize_task(task_store.get_task_for_target(target, task_id))


@app.delete("/workspaces/{workspace_id}/transcripts/{transcript_id}/task-statuses/{task_id}")
def delete_task_endpoint(
    workspace_id: str,
    transcript_id: str,
    task_id: UUID,
    token: Optional[str] = Depends(bearer_token),
) -> dict:
    authorize_admin(token)
    target = TargetKey(workspace_id, transcript_id)
    task_store.delete_task(target, task_id, settings.task_delete_cooldown_s)
    logger.info("task.deleted task_id=%s target=%s", task_id, target)
    return {"deleted": str(task_id)}


@app.post(
    "/workspaces/{workspace_id}/transcripts/{transcript_id}/task-statuses/{task_id}/reprocess"
)
def reprocess_task_endpoint(
    workspace_id: str,
    transcript_id: str,
    task_id: UUID,
    token: Optional[str] = Depends(bearer_token),
) -> dict:
    authorize_admin(token)
    target = TargetKey(workspace_id, transcript_id)
    task_store.get_task_for_target(target, task_id)
    return serialize_task(reprocess_task(task_id, token))


@app.get("/tasks/versions")
def task_versions_endpoint(
    types: List[str] = Query(...),
    token: Optional[str] = Depends(bearer_token),
) -> dict:
    authorize_admin(token)
    return task_store.get_highest_versions(types)


@app.get("/decisions")
def list_decisions_endpoint(
    subject_id: List[str] = Query(...),
    token: Optional[str] = Depends(bearer_token),
) -> dict:
    authorize_admin(token)
    return list_decisions(subject_id)
