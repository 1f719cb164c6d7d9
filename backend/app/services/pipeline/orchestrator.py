"""
Pipeline orchestrator for highlight extraction.

Coordinates one session: upload -> remote analysis -> chapter/sentiment
merge -> (on demand) clip transcoding -> packaging.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator

from app.config import Settings, get_settings
from app.logging_config import session_context
from app.models.schemas import (
    AnalysisJob,
    AnalysisResult,
    ChapterPayload,
    Clip,
    ClipDownload,
    EnrichedChapter,
    JobStatus,
    MediaAsset,
    SessionInfo,
    SessionState,
    TranscodeRequest,
)
from app.services.ai_clients import (
    AnalysisProvider,
    AnalysisTimeoutError,
    AssemblyClient,
    EmotionClassifier,
    EmotionClient,
    ProviderError,
    UploadError,
)
from app.services.ffmpeg_engine import FFmpegEngine
from app.services.highlight_merger import HighlightMerger
from app.utils import is_media_file, is_video_file, probe_bytes_duration

from .clip_packager import ClipPackager
from .progress_manager import ProgressCallback, ProgressManager
from .transcode_queue import TranscodeQueue

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """
    Operation not allowed in the current session state.

    Attributes:
        stage: Session state when the error occurred
        message: Error description
        cause: Original exception (if any)
    """

    def __init__(
        self,
        stage: SessionState,
        message: str,
        cause: Exception | None = None,
    ):
        self.stage = stage
        self.message = message
        self.cause = cause
        super().__init__(f"[{stage.value}] {message}")


class ChapterNotFoundError(PipelineError):
    """Requested chapter id does not exist in the session."""


class PipelineOrchestrator:
    """
    Highlight pipeline for one session.

    State machine: idle -> uploaded -> analyzing -> analyzed -> extracting -> ready.
    Re-uploading resets to uploaded and discards chapters and clips.

    Example:
        orchestrator = PipelineOrchestrator(settings, queue=shared_queue)
        await orchestrator.upload("keynote.mp4", data)
        result = await orchestrator.analyze()
        clips = await orchestrator.extract_all()
        archive = await orchestrator.download_archive()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        queue: TranscodeQueue | None = None,
        provider: AnalysisProvider | None = None,
        classifier: EmotionClassifier | None = None,
        packager: ClipPackager | None = None,
        progress_callback: ProgressCallback | None = None,
        session_id: str | None = None,
    ):
        """
        Initialize pipeline orchestrator.

        Args:
            settings: Application settings (uses defaults if None)
            queue: Shared transcode queue (a private one is created if None)
            provider: Analysis provider (AssemblyClient per analysis if None)
            classifier: Emotion classifier (EmotionClient per analysis if None)
            packager: Clip packager
            progress_callback: Optional async callback for progress updates
            session_id: Identifier reported in SessionInfo
        """
        self.settings = settings or get_settings()
        self.queue = queue or TranscodeQueue(FFmpegEngine(self.settings), self.settings)
        self.packager = packager or ClipPackager()
        self.merger = HighlightMerger(self.settings)
        self.progress_manager = ProgressManager()
        self.progress_callback = progress_callback
        self.session_id = session_id or ""
        self.created_at = datetime.now()

        self._provider = provider
        self._classifier = classifier

        self.state = SessionState.IDLE
        self.asset: MediaAsset | None = None
        self.job: AnalysisJob | None = None
        self.chapters: list[EnrichedChapter] = []
        self.last_error: str | None = None
        self._clips: dict[int, Clip] = {}
        self._generation = 0
        self._active_extractions = 0

    # ═══════════════════════════════════════════════════════════════════════
    # Accessors
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def result(self) -> AnalysisResult | None:
        """Payload for the presentation layer, once analyzed."""
        if self.job is None or self.job.status != JobStatus.COMPLETED:
            return None
        return AnalysisResult(
            transcription=self.job.transcript_text,
            chapters=[ChapterPayload.from_chapter(c) for c in self.chapters],
        )

    @property
    def clips(self) -> list[Clip]:
        """Extracted clips in chapter order."""
        return [self._clips[key] for key in sorted(self._clips)]

    def info(self) -> SessionInfo:
        """Public view of the session."""
        return SessionInfo(
            session_id=self.session_id,
            state=self.state,
            created_at=self.created_at,
            filename=self.asset.filename if self.asset else None,
            size_bytes=self.asset.size_bytes if self.asset else None,
            job_id=self.job.id if self.job else None,
            chapters_count=len(self.chapters),
            clips_count=len(self._clips),
            last_error=self.last_error,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Upload
    # ═══════════════════════════════════════════════════════════════════════

    async def upload(
        self,
        filename: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> MediaAsset:
        """
        Accept a new media file and reset the session.

        Args:
            filename: Original filename
            data: Media bytes
            content_type: MIME type reported by the client

        Returns:
            Stored MediaAsset

        Raises:
            UploadError: Empty, oversized, unsupported or too-short media
            PipelineError: Analysis in progress
        """
        if self.state == SessionState.ANALYZING:
            raise PipelineError(self.state, "Cannot upload while analysis is running")

        asset = MediaAsset(filename=filename, content_type=content_type, data=data)
        await self._validate_upload(asset)

        self._generation += 1
        self._active_extractions = 0
        self.asset = asset
        self.job = None
        self.chapters = []
        self._clips = {}
        self.last_error = None
        self.state = SessionState.UPLOADED

        logger.info(f"Session {self.session_id}: uploaded {filename} ({asset.size_bytes} bytes)")
        return asset

    async def _validate_upload(self, asset: MediaAsset) -> None:
        if asset.size_bytes == 0:
            raise UploadError("The uploaded file is empty.", status_code=400)

        if asset.size_bytes > self.settings.max_upload_bytes:
            raise UploadError(
                f"File too large: limit is {self.settings.max_upload_mb} MB",
                status_code=413,
            )

        path = Path(asset.filename)
        if path.suffix and not is_media_file(path):
            raise UploadError(f"Unsupported media type: {path.suffix}", status_code=415)

        if is_video_file(path):
            duration = await asyncio.to_thread(
                probe_bytes_duration,
                asset.data,
                path.suffix,
                self.settings.ffprobe_path,
                self.settings.temp_dir,
            )
            if duration is not None and duration < self.settings.min_clip_seconds:
                raise UploadError(
                    f"Video must be at least {self.settings.min_clip_seconds:g} seconds long.",
                    status_code=400,
                )

    # ═══════════════════════════════════════════════════════════════════════
    # Analysis
    # ═══════════════════════════════════════════════════════════════════════

    async def analyze(self) -> AnalysisResult:
        """
        Run remote analysis and merge sentiment onto chapters.

        Returns:
            AnalysisResult with transcript and enriched chapters

        Raises:
            PipelineError: Nothing uploaded or analysis already running
            UploadError: Provider upload failed
            ProviderError: Remote job failed
            AnalysisTimeoutError: Remote job did not complete in time
        """
        with session_context(self.session_id):
            return await self._run_analysis()

    async def _run_analysis(self) -> AnalysisResult:
        if self.asset is None:
            raise PipelineError(self.state, "No media uploaded")
        if self.state in (SessionState.ANALYZING, SessionState.EXTRACTING):
            raise PipelineError(self.state, "Session is busy")

        asset = self.asset
        self.state = SessionState.ANALYZING
        self.last_error = None
        self.job = None
        self.chapters = []
        self._clips = {}

        await self._progress(SessionState.UPLOADED, 0, f"Uploading {asset.filename}...")

        try:
            async with self._open_provider() as provider:
                job_id = await provider.submit(asset)
                await self._progress(SessionState.UPLOADED, 100, "Upload complete")
                job = await provider.await_completion(job_id, on_poll=self._on_poll)

            await self._progress(SessionState.ANALYZING, 95, "Analyzing emotions...")
            async with self._open_classifier() as classify:
                chapters = await self.merger.merge(job.chapters, job.sentiments, classify)

        except AnalysisTimeoutError as e:
            self.job = AnalysisJob(id=e.job_id, status=JobStatus.TIMED_OUT)
            self._fail_analysis(e)
            raise
        except ProviderError as e:
            if e.job_id:
                self.job = AnalysisJob(id=e.job_id, status=JobStatus.FAILED, error=e.message)
            self._fail_analysis(e)
            raise
        except Exception as e:
            self._fail_analysis(e)
            raise

        self.job = job
        self.chapters = chapters
        self.state = SessionState.ANALYZED

        await self._progress(SessionState.ANALYZING, 100, f"Found {len(chapters)} chapters")
        logger.info(f"Session {self.session_id}: analysis complete, {len(chapters)} chapters")

        return self.result

    def _fail_analysis(self, error: Exception) -> None:
        self.state = SessionState.UPLOADED
        self.last_error = str(error)
        logger.error(f"Session {self.session_id}: analysis failed: {error}")

    @asynccontextmanager
    async def _open_provider(self) -> AsyncIterator[AnalysisProvider]:
        if self._provider is not None:
            yield self._provider
            return
        async with AssemblyClient.from_settings(self.settings) as provider:
            yield provider

    @asynccontextmanager
    async def _open_classifier(self):
        """Yield the classify callable, or None when classification is disabled."""
        if self._classifier is not None:
            yield self._classifier.classify
            return
        async with EmotionClient.from_settings(self.settings) as classifier:
            yield classifier.classify if classifier.enabled else None

    async def _on_poll(self, attempt: int, max_attempts: int) -> None:
        await self._progress(
            SessionState.ANALYZING,
            attempt / max_attempts * 90,
            f"Waiting for transcription ({attempt}/{max_attempts})...",
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Extraction
    # ═══════════════════════════════════════════════════════════════════════

    async def extract_clip(self, chapter_id: int) -> Clip:
        """
        Transcode a single chapter.

        Raises:
            PipelineError: Not analyzed or unknown chapter
            ClipValidationError: Chapter shorter than the minimum clip length
        """
        chapter = self._get_chapter(chapter_id)
        request = chapter.to_request()
        self.queue.validate(request)

        clips = await self._extract([request])
        return clips[0]

    async def extract_all(self) -> list[Clip]:
        """
        Transcode every chapter, one clip per chapter in chapter order.

        Short or failing chapters come back as fallback clips.
        """
        self._require_chapters()
        return await self._extract([c.to_request() for c in self.chapters])

    async def _extract(self, requests: list[TranscodeRequest]) -> list[Clip]:
        generation = self._generation
        asset = self.asset
        self._active_extractions += 1
        self.state = SessionState.EXTRACTING

        async def on_batch_progress(completed: int, total: int, message: str) -> None:
            await self._progress(
                SessionState.EXTRACTING,
                completed / total * 100 if total else 100,
                message,
            )

        try:
            with session_context(self.session_id):
                clips = await self.queue.submit(asset, requests, on_progress=on_batch_progress)
            if generation == self._generation:
                self._clips.update({clip.id: clip for clip in clips})
            else:
                logger.info(f"Session {self.session_id}: discarding clips of a replaced upload")
            return clips
        finally:
            if generation == self._generation:
                self._active_extractions -= 1
                if self._active_extractions == 0:
                    self.state = SessionState.READY if self._clips else SessionState.ANALYZED

    def _require_chapters(self) -> None:
        if self.state not in (
            SessionState.ANALYZED,
            SessionState.EXTRACTING,
            SessionState.READY,
        ):
            raise PipelineError(self.state, "Session has not been analyzed")

    def _get_chapter(self, chapter_id: int) -> EnrichedChapter:
        self._require_chapters()
        for chapter in self.chapters:
            if chapter.chapter_id == chapter_id:
                return chapter
        raise ChapterNotFoundError(self.state, f"Unknown chapter: {chapter_id}")

    # ═══════════════════════════════════════════════════════════════════════
    # Downloads
    # ═══════════════════════════════════════════════════════════════════════

    async def download_clip(self, chapter_id: int) -> ClipDownload:
        """
        Deliverable for one chapter, extracting it on demand.

        Raises:
            PipelineError: Not analyzed or unknown chapter
            ClipValidationError: Chapter not yet extracted and too short
        """
        clip = self._clips.get(chapter_id)
        if clip is None:
            clip = await self.extract_clip(chapter_id)
        return self.packager.download_one(clip)

    async def download_archive(self) -> ClipDownload:
        """Archive of all successful clips, extracting missing chapters first."""
        self._require_chapters()

        missing = [c.to_request() for c in self.chapters if c.chapter_id not in self._clips]
        clips = {clip.id: clip for clip in self.clips}
        if missing:
            clips.update({clip.id: clip for clip in await self._extract(missing)})

        ordered = [clips[c.chapter_id] for c in self.chapters if c.chapter_id in clips]
        return self.packager.package_all(ordered)

    async def _progress(self, state: SessionState, stage_progress: float, message: str) -> None:
        await self.progress_manager.update_progress(
            self.progress_callback, state, stage_progress, message
        )
