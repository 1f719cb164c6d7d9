"""Tests for the HTTP API with injected fakes for the provider and the engine."""

import io
import zipfile

import httpx
import pytest
import pytest_asyncio
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from app.main import app
from app.services.ai_clients import AnalysisTimeoutError, ProviderError
from app.services.pipeline import TranscodeQueue
from app.services.session_manager import SessionManager, get_session_manager

from conftest import FakeClassifier

VIDEO = ("keynote.mp4", b"fake-video-bytes", "video/mp4")


@pytest.fixture
def manager(settings, engine):
    manager = SessionManager(settings, transcode_queue=TranscodeQueue(engine, settings))
    app.dependency_overrides[get_session_manager] = lambda: manager
    yield manager
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(manager):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def session_id(manager, provider) -> str:
    orchestrator = manager.create_session(provider=provider, classifier=FakeClassifier())
    return orchestrator.session_id


async def upload_and_analyze(client: httpx.AsyncClient, session_id: str) -> httpx.Response:
    response = await client.post(f"/api/sessions/{session_id}/upload", files={"file": VIDEO})
    assert response.status_code == 200
    return await client.post(f"/api/sessions/{session_id}/analyze")


@pytest.mark.asyncio
async def test_health(client) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_session_lifecycle(client, manager) -> None:
    created = await client.post("/api/sessions")
    assert created.status_code == 200
    session_id = created.json()["session_id"]
    assert created.json()["state"] == "idle"

    listed = await client.get("/api/sessions")
    assert [s["session_id"] for s in listed.json()] == [session_id]

    deleted = await client.delete(f"/api/sessions/{session_id}")
    assert deleted.status_code == 200
    assert manager.get_session(session_id) is None

    missing = await client.get(f"/api/sessions/{session_id}")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_upload_and_analyze(client, session_id) -> None:
    response = await upload_and_analyze(client, session_id)

    assert response.status_code == 200
    body = response.json()
    assert body["transcription"].startswith("Welcome everyone")
    assert body["chapters"][0] == {
        "start": 0,
        "end": 10_000,
        "summary": "Welcome",
        "dominantEmotion": "positive",
    }

    info = (await client.get(f"/api/sessions/{session_id}")).json()
    assert info["state"] == "analyzed"
    assert info["filename"] == "keynote.mp4"
    assert info["chapters_count"] == 3

    result = await client.get(f"/api/sessions/{session_id}/result")
    assert result.json() == body


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("file", "status_code"),
    [
        (("empty.mp4", b"", "video/mp4"), 400),
        (("notes.txt", b"plain text", "text/plain"), 415),
        (("huge.mp4", b"x" * (1024 * 1024 + 1), "video/mp4"), 413),
    ],
)
async def test_upload_rejections(client, session_id, file, status_code) -> None:
    response = await client.post(f"/api/sessions/{session_id}/upload", files={"file": file})

    assert response.status_code == status_code


@pytest.mark.asyncio
async def test_analyze_before_upload_conflicts(client, session_id) -> None:
    response = await client.post(f"/api/sessions/{session_id}/analyze")

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_result_before_analysis_is_missing(client, session_id) -> None:
    response = await client.get(f"/api/sessions/{session_id}/result")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_provider_timeout_maps_to_504(client, session_id, provider) -> None:
    provider.error = AnalysisTimeoutError("Transcription timed out.", job_id="job-1", attempts=5)

    response = await upload_and_analyze(client, session_id)

    assert response.status_code == 504
    assert response.json()["detail"] == "Transcription timed out."


@pytest.mark.asyncio
async def test_provider_failure_maps_to_502(client, session_id, provider) -> None:
    provider.error = ProviderError("Audio file could not be decoded", job_id="job-1")

    response = await upload_and_analyze(client, session_id)

    assert response.status_code == 502
    assert "Audio file could not be decoded" in response.json()["detail"]


@pytest.mark.asyncio
async def test_clip_downloads(client, session_id) -> None:
    await upload_and_analyze(client, session_id)

    clips = await client.post(f"/api/sessions/{session_id}/clips")
    assert clips.status_code == 200
    assert [c["is_fallback"] for c in clips.json()] == [False, True, False]

    real = await client.get(f"/api/sessions/{session_id}/clips/1")
    assert real.status_code == 200
    assert real.headers["content-type"] == "video/mp4"
    assert real.headers["content-disposition"] == 'attachment; filename="clip_1.mp4"'

    placeholder = await client.get(f"/api/sessions/{session_id}/clips/2")
    assert placeholder.headers["content-type"] == "image/png"
    assert placeholder.headers["content-disposition"] == 'attachment; filename="clip_2.png"'

    archive = await client.get(f"/api/sessions/{session_id}/archive")
    assert archive.headers["content-disposition"] == 'attachment; filename="event_clips.zip"'
    with zipfile.ZipFile(io.BytesIO(archive.content)) as zf:
        assert zf.namelist() == ["clip_1.mp4", "clip_3.mp4"]


@pytest.mark.asyncio
async def test_short_or_unknown_clip_requests(client, session_id) -> None:
    await upload_and_analyze(client, session_id)

    short = await client.get(f"/api/sessions/{session_id}/clips/2")
    assert short.status_code == 422
    assert "at least 3 seconds" in short.json()["detail"]

    unknown = await client.get(f"/api/sessions/{session_id}/clips/42")
    assert unknown.status_code == 404


def test_websocket_sends_session_info_then_progress(manager, session_id) -> None:
    with TestClient(app) as client:
        with client.websocket_connect(f"/ws/{session_id}") as ws:
            info = ws.receive_json()
            assert info["session_id"] == session_id
            assert info["state"] == "idle"
            assert info["chapters_count"] == 0

            client.post(f"/api/sessions/{session_id}/upload", files={"file": VIDEO})
            analyzed = client.post(f"/api/sessions/{session_id}/analyze")
            assert analyzed.status_code == 200

            event = ws.receive_json()
            assert event["state"] == "uploaded"
            assert event["progress"] == 0
            assert event["message"] == "Uploading keynote.mp4..."
            assert "timestamp" in event


def test_websocket_unknown_session_closes_with_4004(manager) -> None:
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/missing"):
                pass

    assert exc_info.value.code == 4004
