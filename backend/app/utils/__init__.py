"""
Shared utilities.

Modules:
    media_utils: Media file handling (duration, type detection)
"""

from app.utils.media_utils import (
    get_media_duration,
    is_audio_file,
    is_media_file,
    is_video_file,
    probe_bytes_duration,
)

__all__ = [
    "get_media_duration",
    "probe_bytes_duration",
    "is_audio_file",
    "is_media_file",
    "is_video_file",
]
