"""
Media utilities for uploaded video/audio files.

Provides common functions for media file operations:
- Duration detection via ffprobe
- Media type detection (audio vs video) by extension
"""

import logging
import subprocess
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

# Supported media extensions
AUDIO_EXTENSIONS = frozenset({".mp3", ".wav", ".m4a", ".flac", ".aac", ".ogg"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".mkv", ".avi", ".mov", ".webm"})


def is_audio_file(file_path: Path) -> bool:
    """Check if file is an audio file by extension.

    Args:
        file_path: Path to media file

    Returns:
        True if file has audio extension
    """
    return file_path.suffix.lower() in AUDIO_EXTENSIONS


def is_video_file(file_path: Path) -> bool:
    """Check if file is a video file by extension.

    Args:
        file_path: Path to media file

    Returns:
        True if file has video extension
    """
    return file_path.suffix.lower() in VIDEO_EXTENSIONS


def is_media_file(file_path: Path) -> bool:
    """Check if file is audio or video by extension."""
    return is_audio_file(file_path) or is_video_file(file_path)


def get_media_duration(media_path: Path, ffprobe_path: str = "ffprobe") -> float | None:
    """Get media duration using ffprobe.

    Works for both audio and video files.

    Args:
        media_path: Path to media file
        ffprobe_path: ffprobe binary

    Returns:
        Duration in seconds, or None if ffprobe fails
    """
    try:
        result = subprocess.run(
            [
                ffprobe_path,
                "-v",
                "quiet",
                "-show_entries",
                "format=duration",
                "-of",
                "csv=p=0",
                str(media_path),
            ],
            capture_output=True,
            text=True,
            timeout=30,
        )
        if result.returncode == 0 and result.stdout.strip():
            return float(result.stdout.strip())
    except (OSError, ValueError, subprocess.TimeoutExpired) as e:
        logger.warning(f"ffprobe failed for {media_path.name}: {e}")

    return None


def probe_bytes_duration(
    data: bytes,
    suffix: str,
    ffprobe_path: str = "ffprobe",
    temp_dir: Path | None = None,
) -> float | None:
    """Get duration of in-memory media by probing a temporary copy.

    Args:
        data: Media bytes
        suffix: File extension hint for ffprobe (".mp4")
        ffprobe_path: ffprobe binary
        temp_dir: Directory for the temporary file (system default if None)

    Returns:
        Duration in seconds, or None if it cannot be determined
    """
    if temp_dir is not None:
        temp_dir.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(suffix=suffix, dir=temp_dir) as tmp:
        tmp.write(data)
        tmp.flush()
        return get_media_duration(Path(tmp.name), ffprobe_path)
