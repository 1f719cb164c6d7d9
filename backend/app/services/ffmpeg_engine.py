"""
Clip transcoding engine using ffmpeg.

The engine owns one working directory and runs one ffmpeg process at a
time. It is not reentrant: all access goes through TranscodeQueue.
"""

import asyncio
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from app.config import Settings

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """
    Local transcoding failure.

    Attributes:
        message: Error description
        returncode: ffmpeg exit code if the process ran
        stderr: Tail of ffmpeg stderr if available
    """

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        stderr: str | None = None,
    ):
        self.message = message
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


@runtime_checkable
class TranscodeEngine(Protocol):
    """Single-job-at-a-time transcoding engine."""

    @property
    def is_loaded(self) -> bool:
        ...

    @property
    def busy(self) -> bool:
        ...

    async def load(self) -> None:
        """Prepare the engine (idempotent)."""
        ...

    async def write_source(self, name: str, data: bytes) -> None:
        """Place source media into working storage."""
        ...

    async def cut(self, source: str, start_sec: float, end_sec: float, output: str) -> bytes:
        """Encode [start_sec, end_sec] of source and return the output bytes."""
        ...


class FFmpegEngine:
    """
    Cuts clips from a source video with the ffmpeg binary.

    Each ffmpeg invocation runs in a worker thread so the event loop
    stays responsive.

    Example:
        engine = FFmpegEngine(settings)
        await engine.load()
        await engine.write_source("input.mp4", data)
        payload = await engine.cut("input.mp4", 0.0, 12.5, "clip_1.mp4")
    """

    def __init__(self, settings: Settings):
        """
        Initialize engine.

        Args:
            settings: Application settings (ffmpeg path, preset, timeouts)
        """
        self.settings = settings
        self.ffmpeg_path = settings.ffmpeg_path
        self.preset = settings.ffmpeg_preset
        self.crf = settings.ffmpeg_crf
        self.timeout = settings.ffmpeg_timeout
        self.work_dir: Path | None = None
        self._busy = False

    @property
    def is_loaded(self) -> bool:
        return self.work_dir is not None

    @property
    def busy(self) -> bool:
        return self._busy

    async def load(self) -> None:
        """
        Verify the ffmpeg binary and create working storage.

        Raises:
            EngineError: ffmpeg not installed or not working
        """
        if self.is_loaded:
            return

        self._enter()
        try:
            version = await asyncio.to_thread(self._check_ffmpeg)
            self.settings.temp_dir.mkdir(parents=True, exist_ok=True)
            self.work_dir = Path(
                tempfile.mkdtemp(prefix="engine_", dir=self.settings.temp_dir)
            )
        finally:
            self._busy = False

        logger.info(f"FFmpeg loaded: {version}, working dir {self.work_dir}")

    async def write_source(self, name: str, data: bytes) -> None:
        """
        Write source media into working storage.

        Raises:
            EngineError: Engine not loaded or write failed
        """
        path = self._path(name)

        self._enter()
        try:
            await asyncio.to_thread(path.write_bytes, data)
        except OSError as e:
            raise EngineError(f"Could not write source {name}: {e}") from e
        finally:
            self._busy = False

        logger.debug(f"Source written: {name} ({len(data) / 1024 / 1024:.1f} MB)")

    async def cut(self, source: str, start_sec: float, end_sec: float, output: str) -> bytes:
        """
        Encode a segment of the source into an independent mp4.

        Args:
            source: Source name in working storage
            start_sec: Segment start in seconds
            end_sec: Segment end in seconds
            output: Output name in working storage

        Returns:
            Encoded mp4 bytes

        Raises:
            EngineError: ffmpeg failed, timed out or produced no output
        """
        source_path = self._path(source)
        output_path = self._path(output)

        self._enter()
        try:
            return await asyncio.to_thread(
                self._run_cut, source_path, start_sec, end_sec, output_path
            )
        finally:
            self._busy = False

    def close(self) -> None:
        """Remove working storage."""
        if self.work_dir is not None:
            shutil.rmtree(self.work_dir, ignore_errors=True)
            logger.debug(f"Engine working dir removed: {self.work_dir}")
            self.work_dir = None

    def _enter(self) -> None:
        if self._busy:
            raise EngineError("Engine is busy: concurrent invocation rejected")
        self._busy = True

    def _path(self, name: str) -> Path:
        if self.work_dir is None:
            raise EngineError("Engine not loaded")
        return self.work_dir / Path(name).name

    def _check_ffmpeg(self) -> str:
        try:
            result = subprocess.run(
                [self.ffmpeg_path, "-version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise EngineError(f"ffmpeg not available: {e}") from e

        if result.returncode != 0:
            raise EngineError("ffmpeg not working", returncode=result.returncode)

        return result.stdout.split("\n")[0]

    def _run_cut(
        self,
        source_path: Path,
        start_sec: float,
        end_sec: float,
        output_path: Path,
    ) -> bytes:
        cmd = [
            self.ffmpeg_path,
            "-y",                       # Overwrite output
            "-i", str(source_path),
            "-ss", f"{start_sec:.2f}",
            "-to", f"{end_sec:.2f}",
            "-preset", self.preset,     # Speed over compression ratio
            "-crf", str(self.crf),
            "-c:v", "libx264",
            "-c:a", "aac",
            str(output_path),
        ]
        logger.debug(f"ffmpeg: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            output_path.unlink(missing_ok=True)
            raise EngineError(f"ffmpeg timeout after {self.timeout}s") from e
        except OSError as e:
            raise EngineError(f"ffmpeg could not start: {e}") from e

        try:
            if result.returncode != 0:
                logger.error(f"ffmpeg failed: {result.stderr[-500:]}")
                raise EngineError(
                    f"ffmpeg error (code {result.returncode})",
                    returncode=result.returncode,
                    stderr=result.stderr[-500:],
                )

            if not output_path.exists() or output_path.stat().st_size == 0:
                raise EngineError("ffmpeg produced no output")

            return output_path.read_bytes()
        finally:
            output_path.unlink(missing_ok=True)
