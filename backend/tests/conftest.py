"""Shared fixtures: isolated settings and in-memory fakes for remote and local collaborators."""

import asyncio

import pytest

from app.config import Settings
from app.models.schemas import AnalysisJob, JobStatus, MediaAsset, RawChapter, SentimentSegment
from app.services.ffmpeg_engine import EngineError


class FakeEngine:
    """In-memory TranscodeEngine that records calls and detects overlapping use."""

    def __init__(self) -> None:
        self.loaded = False
        self.load_calls = 0
        self.sources: dict[str, bytes] = {}
        self.cuts: list[tuple[str, float, float, str]] = []
        self.fail_outputs: set[str] = set()
        self.fail_load = False
        self.delay = 0.0
        self.overlaps = 0
        self.calls: list[str] = []
        self._busy = False

    @property
    def is_loaded(self) -> bool:
        return self.loaded

    @property
    def busy(self) -> bool:
        return self._busy

    def _enter(self, call: str) -> None:
        if self._busy:
            self.overlaps += 1
            raise EngineError("Engine is busy: concurrent invocation rejected")
        self._busy = True
        self.calls.append(call)

    async def load(self) -> None:
        self._enter("load")
        try:
            self.load_calls += 1
            await asyncio.sleep(self.delay)
            if self.fail_load:
                raise EngineError("ffmpeg not available")
            self.loaded = True
        finally:
            self._busy = False

    async def write_source(self, name: str, data: bytes) -> None:
        self._enter(f"write {name}")
        try:
            await asyncio.sleep(self.delay)
            self.sources[name] = data
        finally:
            self._busy = False

    async def cut(self, source: str, start_sec: float, end_sec: float, output: str) -> bytes:
        self._enter(f"cut {output}")
        try:
            self.cuts.append((source, start_sec, end_sec, output))
            await asyncio.sleep(self.delay)
            if output in self.fail_outputs:
                raise EngineError(f"ffmpeg error on {output}", returncode=1)
            return f"{output}:{start_sec:.2f}-{end_sec:.2f}".encode()
        finally:
            self._busy = False


class FakeProvider:
    """AnalysisProvider returning a canned job or raising a canned error."""

    def __init__(self, job: AnalysisJob | None = None, error: Exception | None = None) -> None:
        self.job = job
        self.error = error
        self.submitted: list[MediaAsset] = []
        self.polls: list[tuple[int, int]] = []

    async def submit(self, asset: MediaAsset) -> str:
        self.submitted.append(asset)
        return "job-1"

    async def await_completion(
        self,
        job_id: str,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
        on_poll=None,
    ) -> AnalysisJob:
        if on_poll is not None:
            await on_poll(1, 2)
            self.polls.append((1, 2))
        if self.error is not None:
            raise self.error
        return self.job


class FakeClassifier:
    """EmotionClassifier answering from a summary -> label mapping."""

    def __init__(self, labels: dict[str, str] | None = None) -> None:
        self.labels = labels or {}
        self.calls: list[str] = []

    async def classify(self, text: str) -> str | None:
        self.calls.append(text)
        return self.labels.get(text)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        assembly_api_key="test-key",
        huggingface_api_token=None,
        poll_interval=0.0,
        poll_max_attempts=5,
        ffprobe_path="ffprobe-not-installed",
        temp_dir=tmp_path / "engine",
        max_upload_mb=1,
    )


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def asset() -> MediaAsset:
    return MediaAsset(filename="keynote.mp4", content_type="video/mp4", data=b"fake-video-bytes")


@pytest.fixture
def completed_job() -> AnalysisJob:
    """Three chapters: 0-10s, 10-12s (too short to transcode), 12-30s."""
    return AnalysisJob(
        id="job-1",
        status=JobStatus.COMPLETED,
        transcript_text="Welcome everyone. Quick break. What a finale!",
        chapters=[
            RawChapter(start_ms=0, end_ms=10_000, summary="Welcome"),
            RawChapter(start_ms=10_000, end_ms=12_000, summary="Break"),
            RawChapter(start_ms=12_000, end_ms=30_000, summary="Finale"),
        ],
        sentiments=[
            SentimentSegment(start_ms=500, end_ms=4_000, label="positive", confidence=0.8),
            SentimentSegment(start_ms=10_500, end_ms=11_500, label="neutral", confidence=0.6),
            SentimentSegment(start_ms=13_000, end_ms=20_000, label="positive", confidence=0.9),
            SentimentSegment(start_ms=21_000, end_ms=25_000, label="negative", confidence=0.7),
        ],
    )


@pytest.fixture
def provider(completed_job) -> FakeProvider:
    return FakeProvider(job=completed_job)
