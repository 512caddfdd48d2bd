from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import text

from . import task_store
from .config import settings
from .db import engine
from .errors import ConflictError, NotFoundError, ValidationError
from .launcher import launch_task
from .logging_utils import get_logger
from .schemas import TranscribeRequest, TranscribeResult, Transcription, UtteranceIn
from .task_store import TargetKey

TASK_TYPE = "transcribe"
logger = get_logger(__name__)


@dataclass
class SegmentDraft:
    speaker: int
    start_timestamp: float
    end_timestamp: float
    utterances: List[UtteranceIn] = field(default_factory=list)


def speaker_label(index: int) -> str:
    return f"SPEAKER_{index}"


def build_speaker_segments(
    utterances: Sequence[UtteranceIn], gap_threshold: Optional[float] = None
) -> List[SegmentDraft]:
    """Group utterances into contiguous single-speaker segments.

    Utterances are ordered by start time first. A new segment starts when the
    speaker changes or when the silence since the current segment's end
    exceeds ``gap_threshold``. Every utterance lands in exactly one segment and
    a segment spans the min start / max end of its members.
    """
    threshold = settings.segment_gap_threshold if gap_threshold is None else gap_threshold
    segments: List[SegmentDraft] = []
    current: Optional[SegmentDraft] = None

    for utterance in sorted(utterances, key=lambda u: (u.start, u.end)):
        if (
            current is None
            or utterance.speaker != current.speaker
            or utterance.start - current.end_timestamp > threshold
        ):
            current = SegmentDraft(
                speaker=utterance.speaker,
                start_timestamp=utterance.start,
                end_timestamp=utterance.end,
            )
            segments.append(current)
        current.utterances.append(utterance)
        current.start_timestamp = min(current.start_timestamp, utterance.start)
        current.end_timestamp = max(current.end_timestamp, utterance.end)

    return segments


def _verify_speaker(conn, speaker_id: str) -> None:
    row = conn.execute(
        text("SELECT id FROM speakers WHERE id = :id"), {"id": speaker_id}
    ).fetchone()
    if row is None:
        raise ValidationError(f"speaker {speaker_id} does not exist")


def _create_speaker_tag(conn, index: int, speaker_id: Optional[str]) -> UUID:
    return conn.execute(
        text(
            """
            INSERT INTO speaker_tags (label, speaker_id)
            VALUES (:label, :speaker_id)
            RETURNING id
            """
        ),
        {"label": speaker_label(index), "speaker_id": speaker_id},
    ).scalar_one()


def resolve_speaker_tags(conn, transcription: Transcription) -> Dict[int, UUID]:
    """Create one speaker tag per speaker index used by the transcription.

    Matches pointing at unknown speakers are dropped and the tag is created
    unmatched. Indices that only appear in utterances get unmatched tags too.
    """
    tags: Dict[int, UUID] = {}
    identified = 0

    for info in transcription.speakers:
        if info.speaker in tags:
            logger.warning("transcribe_result.duplicate_speaker speaker=%s", info.speaker)
            continue
        speaker_id = info.match
        if speaker_id is not None:
            try:
                _verify_speaker(conn, speaker_id)
            except ValidationError as exc:
                logger.warning(
                    "transcribe_result.match_dropped speaker=%s match=%s error=%s",
                    info.speaker,
                    speaker_id,
                    str(exc),
                )
                speaker_id = None
            else:
                identified += 1
        tags[info.speaker] = _create_speaker_tag(conn, info.speaker, speaker_id)

    logger.info(
        "transcribe_result.speaker_tags declared=%s identified=%s",
        len(tags),
        identified,
    )

    used = {utterance.speaker for utterance in transcription.utterances}
    missing = sorted(used - set(tags))
    for index in missing:
        logger.warning("transcribe_result.undeclared_speaker speaker=%s", index)
        tags[index] = _create_speaker_tag(conn, index, None)

    return tags


def _extend_transaction_timeouts(conn, timeout_s: int) -> None:
    # scoped to the current transaction (is_local = true)
    value = f"{int(timeout_s)}s"
    conn.execute(
        text(
            """
            SELECT set_config('statement_timeout', :value, true),
                   set_config('idle_in_transaction_session_timeout', :value, true)
            """
        ),
        {"value": value},
    )


def _insert_segment(
    conn, target: TargetKey, speaker_tag_id: UUID, segment: SegmentDraft
) -> UUID:
    return conn.execute(
        text(
            """
            INSERT INTO speaker_segments
              (workspace_id, transcript_id, speaker_tag_id, start_timestamp, end_timestamp)
            VALUES
              (:workspace_id, :transcript_id, :speaker_tag_id, :start_timestamp, :end_timestamp)
            RETURNING id
            """
        ),
        {
            "workspace_id": target.workspace_id,
            "transcript_id": target.transcript_id,
            "speaker_tag_id": speaker_tag_id,
            "start_timestamp": segment.start_timestamp,
            "end_timestamp": segment.end_timestamp,
        },
    ).scalar_one()


def _insert_utterances(conn, segment_id: UUID, utterances: Sequence[UtteranceIn]) -> None:
    conn.execute(
        text(
            """
            INSERT INTO utterances
              (speaker_segment_id, start_timestamp, end_timestamp, text, drift)
            VALUES
              (:speaker_segment_id, :start_timestamp, :end_timestamp, :text, :drift)
            """
        ),
        [
            {
                "speaker_segment_id": segment_id,
                "start_timestamp": utterance.start,
                "end_timestamp": utterance.end,
                "text": utterance.text,
                "drift": utterance.drift,
            }
            for utterance in utterances
        ],
    )


def _update_transcript_media(conn, target: TargetKey, result: TranscribeResult) -> None:
    updated = conn.execute(
        text(
            """
            UPDATE transcripts SET
              video_url = :video_url,
              audio_url = :audio_url,
              mux_playback_id = :mux_playback_id,
              updated_at = now()
            WHERE workspace_id = :workspace_id AND id = :transcript_id
            RETURNING id
            """
        ),
        {
            "workspace_id": target.workspace_id,
            "transcript_id": target.transcript_id,
            "video_url": result.video_url,
            "audio_url": result.audio_url,
            "mux_playback_id": result.mux_playback_id,
        },
    ).fetchone()
    if updated is None:
        raise NotFoundError(f"transcript not found: {target}")


def handle_transcribe_result(task_id: UUID, result: Any) -> Dict[str, int]:
    parsed = TranscribeResult.model_validate(result)
    transcription = parsed.transcript.transcription
    task = task_store.get_task(task_id)
    target = TargetKey(task["workspace_id"], task["transcript_id"])

    with engine.begin() as conn:
        _extend_transaction_timeouts(conn, settings.ingest_transaction_timeout_s)
        tags = resolve_speaker_tags(conn, transcription)
        segments = build_speaker_segments(transcription.utterances)
        for segment in segments:
            segment_id = _insert_segment(conn, target, tags[segment.speaker], segment)
            _insert_utterances(conn, segment_id, segment.utterances)
        _update_transcript_media(conn, target, parsed)

    summary = {
        "speaker_tags": len(tags),
        "speaker_segments": len(segments),
        "utterances": len(transcription.utterances),
    }
    logger.info(
        "transcribe_result.ingested target=%s speaker_tags=%s segments=%s utterances=%s",
        target,
        summary["speaker_tags"],
        summary["speaker_segments"],
        summary["utterances"],
    )
    return summary


def _transcript_has_segments(conn, target: TargetKey) -> bool:
    row = conn.execute(
        text(
            """
            SELECT EXISTS (
              SELECT 1 FROM speaker_segments s
              WHERE s.workspace_id = t.workspace_id AND s.transcript_id = t.id
            )
            FROM transcripts t
            WHERE t.workspace_id = :workspace_id AND t.id = :transcript_id
            """
        ),
        {"workspace_id": target.workspace_id, "transcript_id": target.transcript_id},
    ).fetchone()
    if row is None:
        raise NotFoundError(f"transcript not found: {target}")
    return bool(row[0])


def clear_speaker_segments(conn, target: TargetKey) -> int:
    result = conn.execute(
        text(
            """
            DELETE FROM speaker_segments
            WHERE workspace_id = :workspace_id AND transcript_id = :transcript_id
            """
        ),
        {"workspace_id": target.workspace_id, "transcript_id": target.transcript_id},
    )
    return result.rowcount


def _set_video_url(conn, target: TargetKey, video_url: str) -> None:
    conn.execute(
        text(
            """
            UPDATE transcripts SET video_url = :video_url, updated_at = now()
            WHERE workspace_id = :workspace_id AND id = :transcript_id
            """
        ),
        {
            "workspace_id": target.workspace_id,
            "transcript_id": target.transcript_id,
            "video_url": video_url,
        },
    )


def request_transcribe(
    target: TargetKey, request: TranscribeRequest, token: Optional[str] = None
) -> Dict[str, Any]:
    def prepare(conn) -> None:
        if _transcript_has_segments(conn, target):
            if not request.force:
                raise ConflictError(
                    f"transcript {target} already has speaker segments; "
                    "use force to re-transcribe"
                )
            deleted = clear_speaker_segments(conn, target)
            logger.info("transcribe_request.cleared target=%s segments=%s", target, deleted)
        _set_video_url(conn, target, request.youtube_url)

    return launch_task(
        TASK_TYPE,
        request.worker_payload(),
        target,
        force=request.force,
        token=token,
        prepare=prepare,
    )
