"""
Fallback clip factory for the transcode queue.

Creates placeholder clips when a chapter is too short to transcode or
ffmpeg fails, so every chapter still gets a downloadable result.
"""

import io
import logging
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from app.config import Settings
from app.models.schemas import Clip, TranscodeRequest

logger = logging.getLogger(__name__)

# DejaVu Sans ships with most Linux images; Pillow's default font otherwise
FONT_PATHS = [
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"),
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
]

GRADIENT_TOP = (30, 41, 59)       # #1e293b
GRADIENT_BOTTOM = (15, 23, 42)    # #0f172a
TITLE_COLOR = (148, 163, 184)     # #94a3b8
SUBTITLE_COLOR = (100, 116, 139)  # #64748b
WATERMARK_COLOR = (71, 85, 105)   # #475569

PLACEHOLDER_MEDIA_TYPE = "image/png"


def load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load DejaVu Sans (or Pillow's default font) at the given size."""
    for font_path in FONT_PATHS:
        if font_path.exists():
            try:
                return ImageFont.truetype(str(font_path), size=size)
            except OSError:
                continue
    return ImageFont.load_default()


class FallbackFactory:
    """
    Factory for placeholder clips.

    Example:
        factory = FallbackFactory(settings)
        clip = factory.create_clip(request, duration_sec=2.5)
        clip.media_type  # "image/png"
    """

    def __init__(self, settings: Settings):
        """
        Initialize fallback factory.

        Args:
            settings: Application settings for placeholder size
        """
        self.width = settings.placeholder_width
        self.height = settings.placeholder_height

    def create_clip(
        self,
        request: TranscodeRequest,
        duration_sec: float,
        error: str | None = None,
    ) -> Clip:
        """
        Create a fallback clip for a chapter.

        Args:
            request: Request that could not be transcoded
            duration_sec: Requested clip duration
            error: Engine error message (None for too-short chapters)

        Returns:
            Clip marked as fallback with a PNG payload
        """
        if error:
            logger.warning(f"Fallback for {request.clip_name}: {error}")
        else:
            logger.info(f"Fallback for {request.clip_name}: too short ({duration_sec:.2f}s)")

        try:
            payload = self.render_placeholder(duration_sec)
        except Exception as e:
            # Clip still returned so the batch keeps one result per request
            logger.error(f"Placeholder render failed for {request.clip_name}: {e}")
            payload = b""
            error = error or f"Placeholder render failed: {e}"

        return Clip(
            id=request.chapter_id,
            name=request.clip_name,
            payload=payload,
            is_fallback=True,
            duration_sec=duration_sec,
            error=error,
            media_type=PLACEHOLDER_MEDIA_TYPE,
        )

    def render_placeholder(self, duration_sec: float | None = None) -> bytes:
        """
        Render the "preview not available" image.

        Args:
            duration_sec: Duration printed under the title (omitted if None)

        Returns:
            PNG bytes of a fixed-size image
        """
        img = Image.new("RGB", (self.width, self.height), GRADIENT_TOP)
        draw = ImageDraw.Draw(img)

        # Vertical gradient, one line per row
        for y in range(self.height):
            ratio = y / max(self.height - 1, 1)
            color = tuple(
                round(top + (bottom - top) * ratio)
                for top, bottom in zip(GRADIENT_TOP, GRADIENT_BOTTOM)
            )
            draw.line([(0, y), (self.width, y)], fill=color)

        center_y = self.height // 2
        self._draw_centered(draw, "Preview not available", center_y - 15, load_font(24), TITLE_COLOR)
        self._draw_centered(
            draw, "Clip may be too short or corrupted", center_y + 15, load_font(16), SUBTITLE_COLOR
        )
        if duration_sec is not None:
            self._draw_centered(
                draw, f"Duration: {duration_sec:.2f}s", center_y + 40, load_font(14), SUBTITLE_COLOR
            )
        self._draw_centered(draw, "EventSense AI", self.height - 20, load_font(12), WATERMARK_COLOR)

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    def _draw_centered(
        self,
        draw: ImageDraw.ImageDraw,
        text: str,
        center_y: int,
        font: ImageFont.FreeTypeFont | ImageFont.ImageFont,
        color: tuple[int, int, int],
    ) -> None:
        bbox = draw.textbbox((0, 0), text, font=font)
        text_w = bbox[2] - bbox[0]
        text_h = bbox[3] - bbox[1]
        draw.text(
            ((self.width - text_w) // 2, center_y - text_h // 2),
            text,
            fill=color,
            font=font,
        )
