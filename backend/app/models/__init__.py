"""
Pydantic models for the highlight extraction pipeline.

Exports:
    - Domain models (AnalysisJob, RawChapter, EnrichedChapter, Clip, etc.)
    - API payloads (AnalysisResult, ClipInfo, SessionInfo, ProgressEvent)
"""

from app.models.schemas import (
    AnalysisJob,
    AnalysisResult,
    ChapterPayload,
    Clip,
    ClipDownload,
    ClipInfo,
    EnrichedChapter,
    JobStatus,
    MediaAsset,
    ProgressEvent,
    RawChapter,
    SentimentSegment,
    SessionInfo,
    SessionState,
    TranscodeRequest,
)

__all__ = [
    # Domain models
    "AnalysisJob",
    "Clip",
    "ClipDownload",
    "EnrichedChapter",
    "JobStatus",
    "MediaAsset",
    "RawChapter",
    "SentimentSegment",
    "SessionState",
    "TranscodeRequest",
    # API payloads
    "AnalysisResult",
    "ChapterPayload",
    "ClipInfo",
    "SessionInfo",
    "ProgressEvent",
]
