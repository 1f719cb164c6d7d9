"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import computed_field
from pydantic_settings import BaseSettings

DEFAULT_EMOTION_MODEL_URL = (
    "https://api-inference.huggingface.co/models/"
    "j-hartmann/emotion-english-distilroberta-base"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Speech-analysis provider (AssemblyAI)
    assembly_api_url: str = "https://api.assemblyai.com/v2"
    assembly_api_key: str | None = None
    http_timeout: float = 60.0
    upload_timeout: float = 600.0

    # Polling of the remote analysis job
    poll_interval: float = 2.0  # Seconds between status checks
    poll_max_attempts: int = 60  # 60 x 2s = ~2 min ceiling

    # Secondary emotion classifier (disabled when token is missing)
    huggingface_api_token: str | None = None
    emotion_model_url: str = DEFAULT_EMOTION_MODEL_URL
    classifier_timeout: float = 10.0
    classifier_max_parallel: int = 4

    # Upload boundary
    max_upload_mb: int = 500

    # In-memory sessions kept before the oldest idle ones are evicted
    max_sessions: int = 100

    # Transcoding engine (ffmpeg)
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ffmpeg_preset: str = "ultrafast"
    ffmpeg_crf: int = 28
    ffmpeg_timeout: int = 600
    min_clip_seconds: float = 3.0
    temp_dir: Path = Path("/tmp/eventsense")

    # Fallback placeholder image
    placeholder_width: int = 640
    placeholder_height: int = 360

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_remote_client: str | None = None
    log_level_merger: str | None = None
    log_level_transcoder: str | None = None
    log_level_pipeline: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @computed_field
    @property
    def max_upload_bytes(self) -> int:
        """Upload size ceiling in bytes."""
        return self.max_upload_mb * 1024 * 1024

    @computed_field
    @property
    def classifier_enabled(self) -> bool:
        """True if credentials for the emotion classifier are configured."""
        return bool(self.huggingface_api_token)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
