"""
HTTP API routes for the highlight pipeline.

Provides endpoints for:
- Creating and inspecting sessions
- Uploading media and running the remote analysis
- Extracting clips and downloading them singly or as an archive
"""

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response

from app.models.schemas import AnalysisResult, ClipDownload, ClipInfo, SessionInfo
from app.services.ai_clients import AnalysisTimeoutError, ProviderError, UploadError
from app.services.pipeline import (
    ChapterNotFoundError,
    ClipValidationError,
    PipelineError,
    PipelineOrchestrator,
)
from app.services.session_manager import SessionManager, get_session_manager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["pipeline"])

UPLOAD_CHUNK_SIZE = 1024 * 1024


def to_http_exception(error: Exception) -> HTTPException:
    """
    Map pipeline errors to HTTP errors.

    UploadError carries its own status (400/413/415/502), provider
    failures are 502, polling timeouts 504, short clips 422 and state
    violations 409 (unknown chapters 404).
    """
    if isinstance(error, UploadError):
        return HTTPException(status_code=error.status_code, detail=error.message)
    if isinstance(error, AnalysisTimeoutError):
        return HTTPException(status_code=504, detail=error.message)
    if isinstance(error, ProviderError):
        return HTTPException(status_code=502, detail=f"Transcription failed. {error.message}")
    if isinstance(error, ClipValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, ChapterNotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    if isinstance(error, PipelineError):
        return HTTPException(status_code=409, detail=error.message)
    return HTTPException(status_code=500, detail=str(error))


HANDLED_ERRORS = (
    UploadError,
    ProviderError,
    AnalysisTimeoutError,
    ClipValidationError,
    PipelineError,
)


def get_orchestrator(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> PipelineOrchestrator:
    """
    Resolve a session or fail with 404.

    Raises:
        404: Session not found
    """
    orchestrator = manager.get_session(session_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return orchestrator


def download_response(download: ClipDownload) -> Response:
    """Build an attachment response for a deliverable."""
    return Response(
        content=download.payload,
        media_type=download.media_type,
        headers={"Content-Disposition": f'attachment; filename="{download.filename}"'},
    )


async def read_upload(file: UploadFile, max_bytes: int) -> bytes:
    """
    Read an upload, aborting as soon as it exceeds the ceiling.

    Raises:
        413: File larger than max_bytes
    """
    chunks: list[bytes] = []
    total = 0

    while chunk := await file.read(UPLOAD_CHUNK_SIZE):
        total += len(chunk)
        if total > max_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"File too large: limit is {max_bytes // 1024 // 1024} MB",
            )
        chunks.append(chunk)

    return b"".join(chunks)


@router.post("/sessions", response_model=SessionInfo)
async def create_session(
    manager: SessionManager = Depends(get_session_manager),
) -> SessionInfo:
    """
    Create a new idle session.

    Returns:
        SessionInfo with session_id for the following calls
    """
    return manager.create_session().info()


@router.get("/sessions", response_model=list[SessionInfo])
async def list_sessions(
    manager: SessionManager = Depends(get_session_manager),
) -> list[SessionInfo]:
    """List all sessions."""
    return [session.info() for session in manager.list_sessions()]


@router.get("/sessions/{session_id}", response_model=SessionInfo)
async def get_session(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> SessionInfo:
    """Get session state."""
    return orchestrator.info()


@router.post("/sessions/{session_id}/upload", response_model=SessionInfo)
async def upload_media(
    file: UploadFile = File(...),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> SessionInfo:
    """
    Upload a media file, replacing any previous one.

    Raises:
        400: Empty file or video shorter than the minimum
        413: File larger than the configured ceiling
        415: Unsupported media type
        409: Analysis in progress
    """
    data = await read_upload(file, orchestrator.settings.max_upload_bytes)

    try:
        await orchestrator.upload(
            file.filename or "upload.mp4",
            data,
            file.content_type or "application/octet-stream",
        )
    except HANDLED_ERRORS as e:
        raise to_http_exception(e) from e

    return orchestrator.info()


@router.post("/sessions/{session_id}/analyze", response_model=AnalysisResult)
async def analyze_media(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> AnalysisResult:
    """
    Transcribe the uploaded media and enrich chapters with emotions.

    Use WebSocket /ws/{session_id} to receive progress while polling.

    Raises:
        502: Upload to provider failed or remote job failed
        504: Remote job did not complete in time
        409: Nothing uploaded or session busy
    """
    try:
        return await orchestrator.analyze()
    except HANDLED_ERRORS as e:
        raise to_http_exception(e) from e


@router.get("/sessions/{session_id}/result", response_model=AnalysisResult)
async def get_result(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> AnalysisResult:
    """
    Get the last analysis result.

    Raises:
        404: Session not analyzed yet
    """
    result = orchestrator.result
    if result is None:
        raise HTTPException(status_code=404, detail="Session has not been analyzed")
    return result


@router.post("/sessions/{session_id}/clips", response_model=list[ClipInfo])
async def extract_clips(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> list[ClipInfo]:
    """
    Extract one clip per chapter.

    Short or failing chapters are returned as fallback clips.
    """
    try:
        clips = await orchestrator.extract_all()
    except HANDLED_ERRORS as e:
        raise to_http_exception(e) from e

    return [ClipInfo.from_clip(clip) for clip in clips]


@router.get("/sessions/{session_id}/clips/{chapter_id}")
async def download_clip(
    chapter_id: int,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Response:
    """
    Download one clip (clip_<n>.mp4, or clip_<n>.png for fallbacks).

    Raises:
        422: Chapter too short to transcode
        404: Unknown chapter
        409: Session not analyzed
    """
    try:
        download = await orchestrator.download_clip(chapter_id)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e) from e

    return download_response(download)


@router.get("/sessions/{session_id}/archive")
async def download_archive(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Download event_clips.zip with all successfully transcoded clips."""
    try:
        download = await orchestrator.download_archive()
    except HANDLED_ERRORS as e:
        raise to_http_exception(e) from e

    return download_response(download)


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> dict:
    """
    Forget a session.

    Raises:
        404: Session not found
    """
    if not manager.remove_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return {"status": "deleted", "session_id": session_id}
