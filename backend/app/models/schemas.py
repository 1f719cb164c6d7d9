"""
Pydantic models for the highlight extraction pipeline.

All time values are milliseconds unless the field name says otherwise.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class JobStatus(str, Enum):
    """Status of a remote analysis job."""
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class SessionState(str, Enum):
    """State of a pipeline session.

    idle -> uploaded -> analyzing -> analyzed -> extracting -> ready
    """
    IDLE = "idle"
    UPLOADED = "uploaded"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    EXTRACTING = "extracting"
    READY = "ready"


class MediaAsset(BaseModel):
    """Uploaded media bytes, owned by one session and never mutated."""

    model_config = ConfigDict(frozen=True)

    filename: str
    content_type: str = "application/octet-stream"
    data: bytes = Field(repr=False)

    @computed_field
    @property
    def size_bytes(self) -> int:
        """Size of the uploaded payload."""
        return len(self.data)


class RawChapter(BaseModel):
    """Chapter boundary produced by the provider."""

    model_config = ConfigDict(frozen=True)

    start_ms: int = Field(ge=0)
    end_ms: int = Field(ge=0)
    summary: str = ""
    headline: str = ""

    @model_validator(mode="after")
    def _check_bounds(self) -> "RawChapter":
        if self.start_ms > self.end_ms:
            raise ValueError(
                f"Chapter start ({self.start_ms}) is after its end ({self.end_ms})"
            )
        return self


class SentimentSegment(BaseModel):
    """Sentiment label for a span of the transcript."""

    model_config = ConfigDict(frozen=True)

    start_ms: int = Field(ge=0)
    end_ms: int = Field(ge=0)
    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    text: str = ""


class AnalysisJob(BaseModel):
    """Remote transcription job with chapters and sentiment."""

    id: str
    status: JobStatus = JobStatus.SUBMITTED
    transcript_text: str = ""
    chapters: list[RawChapter] = Field(default_factory=list)
    sentiments: list[SentimentSegment] = Field(default_factory=list)
    error: str | None = None

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """True once the job can no longer change."""
        return self.status in (
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.TIMED_OUT,
        )


class EnrichedChapter(BaseModel):
    """Chapter with the dominant emotion assigned by the merger."""

    chapter_id: int = Field(ge=1)
    start_ms: int
    end_ms: int
    summary: str = ""
    dominant_emotion: str | None = None

    @computed_field
    @property
    def duration_ms(self) -> int:
        """Chapter length in milliseconds."""
        return self.end_ms - self.start_ms

    def to_request(self) -> "TranscodeRequest":
        """Build the transcoding request for this chapter."""
        return TranscodeRequest(
            chapter_id=self.chapter_id,
            start_ms=self.start_ms,
            end_ms=self.end_ms,
        )


class TranscodeRequest(BaseModel):
    """Unit of work submitted to the transcode queue."""

    model_config = ConfigDict(frozen=True)

    chapter_id: int = Field(ge=1)
    start_ms: int = Field(ge=0)
    end_ms: int = Field(ge=0)

    @property
    def clip_name(self) -> str:
        """Output name of the clip for this chapter."""
        return f"clip_{self.chapter_id}.mp4"


class Clip(BaseModel):
    """Result of transcoding one chapter (real clip or fallback placeholder)."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=1)
    name: str
    payload: bytes = Field(repr=False)
    is_fallback: bool = False
    duration_sec: float | None = None
    error: str | None = None
    media_type: str = "video/mp4"

    @model_validator(mode="after")
    def _check_fallback(self) -> "Clip":
        if self.error is not None and not self.is_fallback:
            raise ValueError("A clip with an error must be marked as fallback")
        return self

    @computed_field
    @property
    def size_bytes(self) -> int:
        """Payload size."""
        return len(self.payload)


class ClipDownload(BaseModel):
    """Deliverable handed to the download handler."""

    filename: str
    media_type: str
    payload: bytes = Field(repr=False)


# ═══════════════════════════════════════════════════════════════════════════
# API payloads
# ═══════════════════════════════════════════════════════════════════════════


class ChapterPayload(BaseModel):
    """Chapter as returned to the presentation layer."""

    start: int
    end: int
    summary: str
    dominant_emotion: str | None = Field(
        default=None, serialization_alias="dominantEmotion"
    )

    @classmethod
    def from_chapter(cls, chapter: EnrichedChapter) -> "ChapterPayload":
        return cls(
            start=chapter.start_ms,
            end=chapter.end_ms,
            summary=chapter.summary,
            dominant_emotion=chapter.dominant_emotion,
        )


class AnalysisResult(BaseModel):
    """Transcript and enriched chapters of a completed analysis."""

    transcription: str
    chapters: list[ChapterPayload] = Field(default_factory=list)


class ClipInfo(BaseModel):
    """Clip metadata without the payload."""

    id: int
    name: str
    is_fallback: bool
    duration_sec: float | None = None
    error: str | None = None
    media_type: str
    size_bytes: int

    @classmethod
    def from_clip(cls, clip: Clip) -> "ClipInfo":
        return cls(
            id=clip.id,
            name=clip.name,
            is_fallback=clip.is_fallback,
            duration_sec=clip.duration_sec,
            error=clip.error,
            media_type=clip.media_type,
            size_bytes=clip.size_bytes,
        )


class SessionInfo(BaseModel):
    """Public view of a pipeline session."""

    session_id: str
    state: SessionState
    created_at: datetime
    filename: str | None = None
    size_bytes: int | None = None
    job_id: str | None = None
    chapters_count: int = 0
    clips_count: int = 0
    last_error: str | None = None


class ProgressEvent(BaseModel):
    """Progress message broadcast to WebSocket subscribers."""

    state: SessionState
    progress: float
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
