"""
Single-flight transcode queue.

Serializes all work on the shared, non-reentrant transcoding engine.
Each submitted batch is chained after the current tail and becomes the
new tail, so batches run one at a time in submission order and a failed
batch never blocks the ones after it.
"""

import asyncio
import itertools
import logging
from decimal import ROUND_DOWN, Decimal
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from app.config import Settings
from app.models.schemas import Clip, MediaAsset, TranscodeRequest
from app.services.ffmpeg_engine import TranscodeEngine

from .fallback_factory import FallbackFactory

logger = logging.getLogger(__name__)

# Signature: (completed, total, message) -> None
BatchProgressCallback = Callable[[int, int, str], Awaitable[None]]

_CENTS = Decimal("0.01")


class ClipValidationError(ValueError):
    """
    Raised when a clip request is below the minimum duration.

    Attributes:
        chapter_id: Chapter that was requested
        duration_sec: Computed clip duration
    """

    def __init__(self, message: str, chapter_id: int, duration_sec: float):
        self.chapter_id = chapter_id
        self.duration_sec = duration_sec
        super().__init__(message)


def ms_to_seconds(ms: int) -> Decimal:
    """Convert milliseconds to seconds truncated to two decimals."""
    return (Decimal(ms) / 1000).quantize(_CENTS, rounding=ROUND_DOWN)


def clip_duration_sec(start_ms: int, end_ms: int) -> float:
    """Clip duration in seconds, the span truncated to two decimals."""
    return float(ms_to_seconds(end_ms - start_ms))


class TranscodeQueue:
    """
    Serialized scheduler around one TranscodeEngine.

    Guarantees:
    - at most one batch touches the engine at any time
    - batches and the requests inside them run in submission order
    - one failing request or batch never affects the others

    Example:
        queue = TranscodeQueue(FFmpegEngine(settings), settings)
        handle = queue.submit(asset, [chapter.to_request() for chapter in chapters])
        clips = await handle
    """

    def __init__(
        self,
        engine: TranscodeEngine,
        settings: Settings,
        fallback_factory: FallbackFactory | None = None,
    ):
        """
        Initialize queue.

        Args:
            engine: The shared transcoding engine (owned by this queue)
            settings: Application settings (minimum clip duration)
            fallback_factory: Placeholder clip factory
        """
        self.engine = engine
        self.min_clip_seconds = settings.min_clip_seconds
        self.fallback_factory = fallback_factory or FallbackFactory(settings)
        self._tail: asyncio.Task | None = None
        self._batch_ids = itertools.count(1)

    @property
    def idle(self) -> bool:
        """True if no batch is scheduled or running."""
        return self._tail is None or self._tail.done()

    def validate(self, request: TranscodeRequest) -> float:
        """
        Check a single request against the minimum duration.

        Returns:
            Clip duration in seconds

        Raises:
            ClipValidationError: Clip shorter than the minimum
        """
        duration = clip_duration_sec(request.start_ms, request.end_ms)
        if duration < self.min_clip_seconds:
            raise ClipValidationError(
                f"Clip {request.chapter_id} is too short ({duration:.2f}s). "
                f"Clips must be at least {self.min_clip_seconds:g} seconds long.",
                chapter_id=request.chapter_id,
                duration_sec=duration,
            )
        return duration

    def submit(
        self,
        source: MediaAsset,
        requests: Iterable[TranscodeRequest],
        on_progress: BatchProgressCallback | None = None,
    ) -> "asyncio.Future[list[Clip]]":
        """
        Schedule a batch after everything already queued.

        Returns immediately. Cancelling the returned handle does not stop
        the batch; in-flight engine work always runs to completion.

        Args:
            source: Source media for the batch
            requests: Chapter ranges to transcode
            on_progress: Optional async callback (completed, total, message)

        Returns:
            Future resolving to one Clip per request, in request order
        """
        batch = list(requests)
        previous = self._tail
        unit = asyncio.get_running_loop().create_task(
            self._run_after(previous, source, batch, on_progress)
        )
        self._tail = unit
        return asyncio.shield(unit)

    async def run(
        self,
        source: MediaAsset,
        requests: Iterable[TranscodeRequest],
        on_progress: BatchProgressCallback | None = None,
    ) -> list[Clip]:
        """Submit a batch and wait for its clips."""
        return await self.submit(source, requests, on_progress)

    async def _run_after(
        self,
        previous: asyncio.Task | None,
        source: MediaAsset,
        requests: list[TranscodeRequest],
        on_progress: BatchProgressCallback | None,
    ) -> list[Clip]:
        if previous is not None and not previous.done():
            # Wait for the predecessor whatever its outcome
            await asyncio.wait({previous})
        return await self._run_batch(source, requests, on_progress)

    async def _run_batch(
        self,
        source: MediaAsset,
        requests: list[TranscodeRequest],
        on_progress: BatchProgressCallback | None,
    ) -> list[Clip]:
        batch_id = next(self._batch_ids)
        logger.info(f"Batch {batch_id}: {len(requests)} clips from {source.filename}")

        total = len(requests)
        durations = [clip_duration_sec(r.start_ms, r.end_ms) for r in requests]
        source_name = f"input{Path(source.filename).suffix or '.mp4'}"

        setup_error: str | None = None
        if any(d >= self.min_clip_seconds for d in durations):
            setup_error = await self._prepare_engine(source, source_name, total, on_progress)

        clips: list[Clip] = []
        for index, (request, duration) in enumerate(zip(requests, durations)):
            if duration < self.min_clip_seconds:
                clips.append(self.fallback_factory.create_clip(request, duration))
            elif setup_error is not None:
                clips.append(self.fallback_factory.create_clip(request, duration, setup_error))
            else:
                await self._notify(
                    on_progress, index, total, f"Processing clip {request.chapter_id}..."
                )
                clips.append(await self._transcode(source_name, request, duration))

        await self._notify(on_progress, total, total, "Done!")

        fallbacks = sum(1 for c in clips if c.is_fallback)
        logger.info(f"Batch {batch_id} done: {len(clips) - fallbacks} clips, {fallbacks} fallbacks")
        return clips

    async def _prepare_engine(
        self,
        source: MediaAsset,
        source_name: str,
        total: int,
        on_progress: BatchProgressCallback | None,
    ) -> str | None:
        """Load the engine and write the source; returns an error message on failure."""
        try:
            if not self.engine.is_loaded:
                await self._notify(on_progress, 0, total, "Loading FFmpeg...")
                await self.engine.load()
            await self.engine.write_source(source_name, source.data)
        except Exception as e:
            logger.error(f"Engine setup failed: {type(e).__name__}: {e}")
            return str(e) or type(e).__name__
        return None

    async def _transcode(
        self,
        source_name: str,
        request: TranscodeRequest,
        duration: float,
    ) -> Clip:
        start_sec = float(ms_to_seconds(request.start_ms))
        end_sec = float(ms_to_seconds(request.end_ms))

        try:
            payload = await self.engine.cut(source_name, start_sec, end_sec, request.clip_name)
        except Exception as e:
            return self.fallback_factory.create_clip(
                request, duration, str(e) or type(e).__name__
            )

        logger.debug(
            f"{request.clip_name}: {start_sec:.2f}-{end_sec:.2f}s, "
            f"{len(payload) / 1024:.0f} KB"
        )
        return Clip(
            id=request.chapter_id,
            name=request.clip_name,
            payload=payload,
            is_fallback=False,
            duration_sec=duration,
        )

    async def _notify(
        self,
        callback: BatchProgressCallback | None,
        completed: int,
        total: int,
        message: str,
    ) -> None:
        if callback is None:
            return
        try:
            await callback(completed, total, message)
        except Exception as e:
            # Never fail due to callback error
            logger.warning(f"Progress callback error: {e}")
