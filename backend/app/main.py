"""
FastAPI application for event highlight extraction.

Provides HTTP API for upload, analysis and clip downloads with
WebSocket progress updates.
"""

import logging
import shutil
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import routes, websocket
from app.config import get_settings
from app.logging_config import setup_logging
from app.services.ai_clients import AssemblyClient
from app.services.session_manager import get_session_manager

# Configure logging before anything else
settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Logs startup info and releases engine storage on shutdown.
    """
    logger.info("Starting EventSense API")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Temp directory: {settings.temp_dir}")
    logger.info(f"Emotion classifier: {'enabled' if settings.classifier_enabled else 'disabled'}")

    if not settings.assembly_api_key:
        logger.warning("ASSEMBLY_API_KEY is not set, analysis requests will fail")

    yield

    get_session_manager().close()
    logger.info("Shutting down EventSense API")


app = FastAPI(
    title="EventSense API",
    description="API for emotion-tagged chapter detection and highlight clip extraction",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes.router)
app.include_router(websocket.router)


@app.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        Basic health status
    """
    return {"status": "ok"}


@app.get("/health/services")
async def services_health() -> dict:
    """
    Check external services availability.

    Returns:
        Status of the transcription provider, emotion classifier and ffmpeg
    """
    settings = get_settings()
    async with AssemblyClient.from_settings(settings) as client:
        provider_ok = await client.check_health()

    return {
        "transcription": provider_ok,
        "emotion_classifier": settings.classifier_enabled,
        "ffmpeg": shutil.which(settings.ffmpeg_path) is not None,
        "assembly_api_url": settings.assembly_api_url,
        "emotion_model_url": settings.emotion_model_url,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8801,
        reload=True,
    )
