"""
Pipeline module for highlight extraction.

This package contains the pipeline components:
- orchestrator: Session coordination (upload -> analyze -> extract -> package)
- transcode_queue: Single-flight queue around the transcoding engine
- fallback_factory: Placeholder clips for short or failed chapters
- clip_packager: Single-clip downloads and the clips archive
- progress_manager: Progress tracking and calculation

Example:
    from app.services.pipeline import PipelineOrchestrator, TranscodeQueue

    queue = TranscodeQueue(FFmpegEngine(settings), settings)
    orchestrator = PipelineOrchestrator(settings, queue=queue)
    await orchestrator.upload("talk.mp4", data)
    result = await orchestrator.analyze()
    archive = await orchestrator.download_archive()
"""

from .clip_packager import ARCHIVE_NAME, ClipPackager
from .fallback_factory import FallbackFactory
from .orchestrator import (
    ChapterNotFoundError,
    PipelineError,
    PipelineOrchestrator,
)
from .progress_manager import ProgressCallback, ProgressManager
from .transcode_queue import (
    BatchProgressCallback,
    ClipValidationError,
    TranscodeQueue,
    clip_duration_sec,
)

__all__ = [
    # Main orchestrator
    "PipelineOrchestrator",
    "PipelineError",
    "ChapterNotFoundError",
    # Transcoding
    "TranscodeQueue",
    "ClipValidationError",
    "BatchProgressCallback",
    "clip_duration_sec",
    "FallbackFactory",
    # Packaging
    "ClipPackager",
    "ARCHIVE_NAME",
    # Progress
    "ProgressManager",
    "ProgressCallback",
]
