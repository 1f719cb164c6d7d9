"""Tests for the session state machine: upload, analysis, extraction and downloads."""

import asyncio
import io
import zipfile

import pytest

from app.models.schemas import JobStatus, SessionState
from app.services.ai_clients import AnalysisTimeoutError, ProviderError, UploadError
from app.services.pipeline import (
    ChapterNotFoundError,
    ClipValidationError,
    PipelineError,
    PipelineOrchestrator,
    TranscodeQueue,
)

from conftest import FakeClassifier, FakeProvider


@pytest.fixture
def events() -> list[tuple[SessionState, float, str]]:
    return []


@pytest.fixture
def orchestrator(settings, engine, provider, events) -> PipelineOrchestrator:
    async def record(state: SessionState, progress: float, message: str) -> None:
        events.append((state, progress, message))

    return PipelineOrchestrator(
        settings,
        queue=TranscodeQueue(engine, settings),
        provider=provider,
        classifier=FakeClassifier({"Finale": "joy"}),
        progress_callback=record,
        session_id="s1",
    )


async def analyzed(orchestrator: PipelineOrchestrator) -> PipelineOrchestrator:
    await orchestrator.upload("keynote.mp4", b"fake-video-bytes", "video/mp4")
    await orchestrator.analyze()
    return orchestrator


@pytest.mark.asyncio
async def test_upload_then_analyze(orchestrator, provider, events) -> None:
    assert orchestrator.state == SessionState.IDLE

    await orchestrator.upload("keynote.mp4", b"fake-video-bytes", "video/mp4")
    assert orchestrator.state == SessionState.UPLOADED

    result = await orchestrator.analyze()

    assert orchestrator.state == SessionState.ANALYZED
    assert provider.submitted[0].filename == "keynote.mp4"
    assert result.transcription.startswith("Welcome everyone")
    assert [c.dominant_emotion for c in result.chapters] == ["positive", "neutral", "joy"]
    assert result.chapters[2].start == 12_000
    assert result.chapters[2].end == 30_000

    messages = [message for _, _, message in events]
    assert "Waiting for transcription (1/2)..." in messages
    assert messages[-1] == "Found 3 chapters"
    assert events[-1][1] == 100


@pytest.mark.asyncio
async def test_result_uses_camel_case_emotion_key(orchestrator) -> None:
    await analyzed(orchestrator)

    payload = orchestrator.result.model_dump(by_alias=True)

    assert payload["chapters"][0] == {
        "start": 0,
        "end": 10_000,
        "summary": "Welcome",
        "dominantEmotion": "positive",
    }


@pytest.mark.asyncio
async def test_analyze_requires_upload(orchestrator) -> None:
    with pytest.raises(PipelineError):
        await orchestrator.analyze()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("filename", "data", "status_code"),
    [
        ("keynote.mp4", b"", 400),
        ("notes.txt", b"plain text", 415),
        ("keynote.mp4", b"x" * (1024 * 1024 + 1), 413),
    ],
)
async def test_upload_rejections(orchestrator, filename, data, status_code) -> None:
    with pytest.raises(UploadError) as exc_info:
        await orchestrator.upload(filename, data)

    assert exc_info.value.status_code == status_code
    assert orchestrator.state == SessionState.IDLE


@pytest.mark.asyncio
async def test_short_video_rejected(orchestrator, monkeypatch) -> None:
    monkeypatch.setattr(
        "app.services.pipeline.orchestrator.probe_bytes_duration",
        lambda *args: 2.4,
    )

    with pytest.raises(UploadError) as exc_info:
        await orchestrator.upload("clip.mp4", b"short-video")

    assert exc_info.value.message == "Video must be at least 3 seconds long."


@pytest.mark.asyncio
async def test_timeout_keeps_upload_and_records_job(orchestrator, provider) -> None:
    provider.error = AnalysisTimeoutError("Transcription timed out.", job_id="job-1", attempts=2)
    await orchestrator.upload("keynote.mp4", b"fake-video-bytes")

    with pytest.raises(AnalysisTimeoutError):
        await orchestrator.analyze()

    assert orchestrator.state == SessionState.UPLOADED
    assert orchestrator.job.status == JobStatus.TIMED_OUT
    assert orchestrator.result is None
    assert "Transcription timed out." in orchestrator.last_error


@pytest.mark.asyncio
async def test_failed_job_can_be_retried(orchestrator, provider, completed_job) -> None:
    provider.error = ProviderError("Audio file could not be decoded", job_id="job-1")
    await orchestrator.upload("keynote.mp4", b"fake-video-bytes")

    with pytest.raises(ProviderError):
        await orchestrator.analyze()
    assert orchestrator.job.status == JobStatus.FAILED

    provider.error = None
    result = await orchestrator.analyze()

    assert len(result.chapters) == 3
    assert orchestrator.last_error is None


@pytest.mark.asyncio
async def test_extract_all_and_archive(orchestrator, engine) -> None:
    await analyzed(orchestrator)

    clips = await orchestrator.extract_all()

    assert orchestrator.state == SessionState.READY
    assert [c.id for c in clips] == [1, 2, 3]
    assert [c.is_fallback for c in clips] == [False, True, False]

    archive = await orchestrator.download_archive()
    with zipfile.ZipFile(io.BytesIO(archive.payload)) as zf:
        assert zf.namelist() == ["clip_1.mp4", "clip_3.mp4"]
    # Archive reuses extracted clips
    assert len(engine.cuts) == 2


@pytest.mark.asyncio
async def test_archive_extracts_missing_chapters(orchestrator, engine) -> None:
    await analyzed(orchestrator)

    archive = await orchestrator.download_archive()

    assert archive.filename == "event_clips.zip"
    assert [cut[3] for cut in engine.cuts] == ["clip_1.mp4", "clip_3.mp4"]
    assert orchestrator.state == SessionState.READY


@pytest.mark.asyncio
async def test_single_clip_extraction(orchestrator) -> None:
    await analyzed(orchestrator)

    clip = await orchestrator.extract_clip(3)
    download = await orchestrator.download_clip(3)

    assert not clip.is_fallback
    assert download.filename == "clip_3.mp4"
    assert download.payload == clip.payload


@pytest.mark.asyncio
async def test_short_or_unknown_chapter_is_refused(orchestrator, engine) -> None:
    await analyzed(orchestrator)

    with pytest.raises(ClipValidationError):
        await orchestrator.extract_clip(2)
    with pytest.raises(ChapterNotFoundError):
        await orchestrator.extract_clip(9)

    assert engine.cuts == []
    assert orchestrator.state == SessionState.ANALYZED


@pytest.mark.asyncio
async def test_extract_before_analysis_is_refused(orchestrator) -> None:
    await orchestrator.upload("keynote.mp4", b"fake-video-bytes")

    with pytest.raises(PipelineError):
        await orchestrator.extract_all()


@pytest.mark.asyncio
async def test_reupload_resets_session(orchestrator) -> None:
    await analyzed(orchestrator)
    await orchestrator.extract_all()

    await orchestrator.upload("other.mp4", b"other-video")

    assert orchestrator.state == SessionState.UPLOADED
    assert orchestrator.chapters == []
    assert orchestrator.clips == []
    assert orchestrator.result is None
    assert orchestrator.info().filename == "other.mp4"


@pytest.mark.asyncio
async def test_clips_of_replaced_upload_are_discarded(orchestrator, engine) -> None:
    engine.delay = 0.05
    await analyzed(orchestrator)

    extraction = asyncio.create_task(orchestrator.extract_all())
    await asyncio.sleep(0.01)
    assert orchestrator.state == SessionState.EXTRACTING

    await orchestrator.upload("other.mp4", b"other-video")
    await extraction

    assert orchestrator.clips == []
    assert orchestrator.state == SessionState.UPLOADED


@pytest.mark.asyncio
async def test_upload_refused_while_analyzing(settings, engine, completed_job) -> None:
    release = asyncio.Event()

    class SlowProvider(FakeProvider):
        async def await_completion(self, job_id, poll_interval=None, max_attempts=None, on_poll=None):
            await release.wait()
            return self.job

    orchestrator = PipelineOrchestrator(
        settings,
        queue=TranscodeQueue(engine, settings),
        provider=SlowProvider(job=completed_job),
        classifier=FakeClassifier(),
    )
    await orchestrator.upload("keynote.mp4", b"fake-video-bytes")

    analysis = asyncio.create_task(orchestrator.analyze())
    await asyncio.sleep(0)
    assert orchestrator.state == SessionState.ANALYZING

    with pytest.raises(PipelineError):
        await orchestrator.upload("other.mp4", b"other-video")
    with pytest.raises(PipelineError):
        await orchestrator.analyze()

    release.set()
    await analysis
    assert orchestrator.state == SessionState.ANALYZED
