"""
Clip packaging for downloads.

Single clips are always downloadable (fallbacks as their placeholder
image); the archive contains only successfully transcoded clips.
"""

import io
import logging
import zipfile
from pathlib import Path

from app.models.schemas import Clip, ClipDownload

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "event_clips.zip"
ARCHIVE_MEDIA_TYPE = "application/zip"


class ClipPackager:
    """
    Builds deliverables from clips.

    Example:
        packager = ClipPackager()
        single = packager.download_one(clips[0])
        archive = packager.package_all(clips)
    """

    def download_one(self, clip: Clip) -> ClipDownload:
        """
        Deliverable for one clip.

        Fallback clips keep their clip number but get the placeholder
        image extension (clip_3.mp4 -> clip_3.png).
        """
        filename = clip.name
        if clip.is_fallback:
            filename = Path(clip.name).with_suffix(".png").name

        return ClipDownload(
            filename=filename,
            media_type=clip.media_type,
            payload=clip.payload,
        )

    def package_all(self, clips: list[Clip]) -> ClipDownload:
        """
        Zip all non-fallback clips.

        Entry names equal Clip.name. Produces an empty archive when every
        clip is a fallback.
        """
        buffer = io.BytesIO()
        included = 0

        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as archive:
            for clip in clips:
                if clip.is_fallback:
                    continue
                archive.writestr(clip.name, clip.payload)
                included += 1

        logger.info(
            f"Packaged {included} clips into {ARCHIVE_NAME} "
            f"({len(clips) - included} fallbacks skipped)"
        )

        return ClipDownload(
            filename=ARCHIVE_NAME,
            media_type=ARCHIVE_MEDIA_TYPE,
            payload=buffer.getvalue(),
        )
