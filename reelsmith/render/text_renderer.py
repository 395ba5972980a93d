"""Text overlay rendering with Pillow.

Each overlay is rendered to a transparent PNG which the filter graph then
places with ``overlay`` inside an enable window.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from PIL import Image, ImageDraw, ImageFont

from reelsmith.schemas.export import TextOverlay

logger = logging.getLogger(__name__)

# Candidate font files, macOS first then Linux packages
FONT_CANDIDATES = [
    "/System/Library/Fonts/Helvetica.ttc",
    "/System/Library/Fonts/ヒラギノ角ゴシック W3.ttc",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
]

LINE_HEIGHT = 1.3


def hex_to_rgba(hex_color: str, alpha: int = 255) -> tuple[int, int, int, int]:
    """Parse #RGB, #RRGGBB or #RRGGBBAA into an RGBA tuple."""
    hex_color = hex_color.lstrip("#")
    if len(hex_color) == 3:
        hex_color = "".join(c * 2 for c in hex_color)
    r = int(hex_color[0:2], 16)
    g = int(hex_color[2:4], 16)
    b = int(hex_color[4:6], 16)
    # Embedded alpha overrides the parameter
    if len(hex_color) == 8:
        alpha = int(hex_color[6:8], 16)
    return (r, g, b, alpha)


class TextRenderer:
    """Renders text overlays to transparent PNG files."""

    def __init__(self, font_candidates: Optional[list[str]] = None):
        self._font_candidates = font_candidates or FONT_CANDIDATES
        self._font_cache: dict[int, ImageFont.ImageFont] = {}

    def _load_font(self, size: int):
        if size in self._font_cache:
            return self._font_cache[size]

        font = None
        for candidate in self._font_candidates:
            try:
                font = ImageFont.truetype(candidate, size)
                logger.info(f"[TEXT] Loaded font: {candidate}")
                break
            except OSError:
                continue

        if font is None:
            logger.warning("[TEXT] No suitable font found, using PIL default")
            font = ImageFont.load_default()

        self._font_cache[size] = font
        return font

    def render_overlay(
        self,
        overlay: TextOverlay,
        output_path: Union[str, Path],
        stroke_width: int = 2,
        stroke_color: str = "#000000",
    ) -> Path:
        """Render one overlay to ``output_path`` and return the path.

        The image is cropped to the text block plus padding; placement on the
        frame is decided by the filter graph.
        """
        font = self._load_font(overlay.font_size)
        text_rgba = hex_to_rgba(overlay.color_hex)
        stroke_rgba = hex_to_rgba(stroke_color) if stroke_width > 0 else None

        lines = overlay.text.split("\n")
        line_height_px = int(overlay.font_size * LINE_HEIGHT)
        widths = []
        for line in lines:
            bbox = font.getbbox(line or " ")
            widths.append(bbox[2] - bbox[0])

        padding = max(stroke_width * 2, 4)
        img_width = max(widths) + padding * 2
        img_height = line_height_px * len(lines) + padding * 2

        img = Image.new("RGBA", (int(img_width), int(img_height)), (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)

        y_offset = padding
        for line, line_width in zip(lines, widths):
            x_offset = (img_width - line_width) / 2
            if stroke_rgba:
                draw.text(
                    (x_offset, y_offset),
                    line,
                    font=font,
                    fill=text_rgba,
                    stroke_width=stroke_width,
                    stroke_fill=stroke_rgba,
                )
            else:
                draw.text((x_offset, y_offset), line, font=font, fill=text_rgba)
            y_offset += line_height_px

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        img.save(output_path, "PNG")
        logger.info(f"[TEXT] Generated PNG: {output_path} ({img.width}x{img.height})")
        return output_path
