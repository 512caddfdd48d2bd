from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    RootModel,
    model_validator,
)


class WireModel(BaseModel):
    """Base for payloads exchanged with the worker (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Voiceprint(WireModel):
    person_id: str = Field(alias="personId")
    voiceprint: List[float]


class TranscribeRequest(WireModel):
    youtube_url: str = Field(alias="youtubeUrl", min_length=1)
    custom_vocabulary: Optional[List[str]] = Field(default=None, alias="customVocabulary")
    custom_prompt: Optional[str] = Field(default=None, alias="customPrompt")
    voiceprints: Optional[List[Voiceprint]] = None
    force: bool = False

    def worker_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"force"})


class SubjectRef(WireModel):
    subject_id: str = Field(alias="subjectId", min_length=1)
    name: str


class PollDecisionsRequest(WireModel):
    meeting_date: str = Field(alias="meetingDate", pattern=r"^\d{4}-\d{2}-\d{2}$")
    diavgeia_uid: str = Field(alias="diavgeiaUid", min_length=1)
    diavgeia_unit_id: Optional[str] = Field(default=None, alias="diavgeiaUnitId")
    subjects: List[SubjectRef] = Field(min_length=1)
    force: bool = False

    def worker_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"force"})


class ProcessAgendaRequest(WireModel):
    agenda_url: str = Field(alias="agendaUrl", min_length=1)
    meeting_date: Optional[str] = Field(
        default=None, alias="meetingDate", pattern=r"^\d{4}-\d{2}-\d{2}$"
    )
    topic_labels: List[str] = Field(default_factory=list, alias="topicLabels")
    force: bool = False

    def worker_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"force"})


class ProcessingUpdate(WireModel):
    status: Literal["processing"]
    stage: Optional[str] = None
    progress_percent: Optional[float] = Field(default=None, alias="progressPercent")
    version: Optional[int] = None


class SuccessUpdate(WireModel):
    status: Literal["success"]
    result: Optional[Any] = None
    version: Optional[int] = None


class ErrorUpdate(WireModel):
    status: Literal["error"]
    error: str = ""
    version: Optional[int] = None


TaskUpdate = Annotated[
    Union[ProcessingUpdate, SuccessUpdate, ErrorUpdate],
    Field(discriminator="status"),
]


class TaskUpdateBody(RootModel[TaskUpdate]):
    pass


class SpeakerInfo(WireModel):
    speaker: int
    match: Optional[str] = None


class UtteranceIn(WireModel):
    speaker: int
    start: float
    end: float
    text: str = ""
    drift: Optional[float] = None

    @model_validator(mode="after")
    def validate_bounds(self) -> "UtteranceIn":
        if self.end < self.start:
            raise ValueError("utterance end must be >= start")
        return self


class Transcription(WireModel):
    speakers: List[SpeakerInfo] = Field(default_factory=list)
    utterances: List[UtteranceIn] = Field(default_factory=list)


class TranscriptEnvelope(WireModel):
    transcription: Transcription


class TranscribeResult(WireModel):
    video_url: Optional[str] = Field(default=None, alias="videoUrl")
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")
    mux_playback_id: Optional[str] = Field(default=None, alias="muxPlaybackId")
    transcript: TranscriptEnvelope


class DecisionMatch(WireModel):
    subject_id: str = Field(alias="subjectId", min_length=1)
    pdf_url: str = Field(alias="pdfUrl")
    ada: Optional[str] = None
    protocol_number: Optional[str] = Field(default=None, alias="protocolNumber")
    title: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("decisionTitle", "title")
    )
    issue_date: Optional[datetime] = Field(default=None, alias="issueDate")


class PollDecisionsResult(WireModel):
    matches: List[DecisionMatch] = Field(default_factory=list)
    unmatched_subjects: List[str] = Field(default_factory=list, alias="unmatchedSubjects")
    ambiguous_subjects: List[str] = Field(default_factory=list, alias="ambiguousSubjects")


class AgendaSubject(WireModel):
    name: str = Field(min_length=1)
    description: str = ""
    agenda_item_index: Optional[int] = Field(default=None, alias="agendaItemIndex")
    introduced_by_person_id: Optional[str] = Field(default=None, alias="introducedByPersonId")
    topic_label: Optional[str] = Field(default=None, alias="topicLabel")


class ProcessAgendaResult(WireModel):
    subjects: List[AgendaSubject] = Field(default_factory=list)
