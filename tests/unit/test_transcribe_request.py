from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Tuple

import pytest

import app.transcribe as transcribe
import app.worker_client as worker_client
from app.errors import AuthorizationError, ConflictError, NotFoundError
from app.schemas import TranscribeRequest
from app.task_store import TargetKey

TARGET = TargetKey("athens", "meeting-7")


@dataclass
class TranscriptRecorder:
    has_segments: bool = False
    writes: List[Tuple[str, Any]] = field(default_factory=list)


@pytest.fixture()
def transcript(monkeypatch: pytest.MonkeyPatch) -> TranscriptRecorder:
    recorder = TranscriptRecorder()

    def clear(conn, target):
        recorder.writes.append(("clear_segments", str(target)))
        return 3

    def set_video_url(conn, target, video_url):
        recorder.writes.append(("video_url", video_url))

    monkeypatch.setattr(
        transcribe, "_transcript_has_segments", lambda conn, target: recorder.has_segments
    )
    monkeypatch.setattr(transcribe, "clear_speaker_segments", clear)
    monkeypatch.setattr(transcribe, "_set_video_url", set_video_url)
    monkeypatch.setattr(worker_client, "post_task", lambda task_type, body: {})
    return recorder


def _request(force: bool = False) -> TranscribeRequest:
    return TranscribeRequest(youtube_url="https://new/video", force=force)


def test_running_task_conflict_writes_nothing(fake_store, alerts, api_keys, transcript) -> None:
    fake_store.add_target(TARGET)
    fake_store.seed(TARGET, "transcribe")

    with pytest.raises(ConflictError):
        transcribe.request_transcribe(TARGET, _request(), api_keys["editor"])

    assert transcript.writes == []
    assert len(fake_store.tasks_for(TARGET, "transcribe")) == 1


def test_existing_segments_without_force_writes_nothing(
    fake_store, alerts, api_keys, transcript
) -> None:
    fake_store.add_target(TARGET)
    transcript.has_segments = True

    with pytest.raises(ConflictError, match="already has speaker segments"):
        transcribe.request_transcribe(TARGET, _request(), api_keys["editor"])

    assert transcript.writes == []
    assert fake_store.tasks_for(TARGET, "transcribe") == []


def test_force_clears_segments_then_sets_url(fake_store, alerts, api_keys, transcript) -> None:
    fake_store.add_target(TARGET)
    fake_store.seed(TARGET, "transcribe")
    transcript.has_segments = True

    task = transcribe.request_transcribe(TARGET, _request(force=True), api_keys["editor"])

    assert transcript.writes == [
        ("clear_segments", "athens/meeting-7"),
        ("video_url", "https://new/video"),
    ]
    assert task["status"] == "pending"
    assert len(fake_store.tasks_for(TARGET, "transcribe")) == 2


def test_unknown_transcript_writes_nothing(fake_store, alerts, api_keys, transcript) -> None:
    with pytest.raises(NotFoundError):
        transcribe.request_transcribe(TARGET, _request(force=True), api_keys["editor"])

    assert transcript.writes == []


def test_unauthorized_request_writes_nothing(fake_store, alerts, api_keys, transcript) -> None:
    fake_store.add_target(TARGET)

    with pytest.raises(AuthorizationError):
        transcribe.request_transcribe(TARGET, _request(force=True), "guess")

    assert transcript.writes == []
    assert fake_store.locked == []
