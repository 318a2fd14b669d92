"""Zone rendering — draws DrawingInstructions onto a chart screenshot.

Every call decodes its own private canvas from the input bytes, so jobs
running concurrently never share a drawing surface.
"""

import io
import logging
from typing import Iterable, Optional

from PIL import Image, ImageColor, ImageDraw, ImageFont

from chartsop.analysis.models import DrawingInstruction
from chartsop.config import ZoneSettings
from chartsop.geometry.zone_geometry import label_origin

logger = logging.getLogger("chartsop.render")

_DASH = 6
_GAP = 4


def parse_color(value: str) -> tuple[int, int, int]:
    """``#RRGGBB`` → RGB tuple; anything unparsable becomes black."""
    try:
        rgb = ImageColor.getrgb(value)
    except (ValueError, AttributeError):
        logger.warning("Invalid colour %r, using black", value)
        return (0, 0, 0)
    return rgb[0], rgb[1], rgb[2]


def _alpha(opacity: float) -> int:
    return int(round(max(0.0, min(1.0, opacity)) * 255))


def _dashed_hline(draw: ImageDraw.ImageDraw, x1: int, x2: int, y: int, fill, width: int) -> None:
    x = x1
    while x < x2:
        draw.line([(x, y), (min(x + _DASH, x2), y)], fill=fill, width=width)
        x += _DASH + _GAP


class ZoneDrawer:
    """Renders zone rectangles, labels and a watermark with Pillow."""

    def __init__(self, zones: ZoneSettings) -> None:
        self._zones = zones
        self._font = ImageFont.load_default(size=zones.font_size)

    def _text_size(self, draw: ImageDraw.ImageDraw, text: str) -> tuple[int, int]:
        left, top, right, bottom = draw.textbbox((0, 0), text, font=self._font)
        return right - left, bottom - top

    def _draw_zone(self, draw: ImageDraw.ImageDraw, inst: DrawingInstruction, width: int) -> None:
        rect = inst.pixel_rect
        rgb = parse_color(inst.color)
        solid = rgb + (255,)

        if self._zones.minimal:
            draw.line([(0, rect.y1), (width - 1, rect.y1)], fill=solid, width=inst.border_width)
            draw.line([(0, rect.y2), (width - 1, rect.y2)], fill=solid, width=inst.border_width)
        else:
            draw.rectangle(
                [rect.x1, rect.y1, rect.x2, rect.y2],
                fill=rgb + (_alpha(inst.opacity),),
                outline=solid,
                width=inst.border_width,
            )
            # shadow extremes
            _dashed_hline(draw, rect.x1, rect.x2, rect.y1, solid, 1)
            _dashed_hline(draw, rect.x1, rect.x2, rect.y2, solid, 1)

        if self._zones.draw_labels and inst.label:
            text_w, text_h = self._text_size(draw, inst.label)
            x, baseline = label_origin(rect, text_w, inst.label_position)
            draw.text(
                (x, baseline - text_h),
                inst.label,
                font=self._font,
                fill=(255, 255, 255, 255),
                stroke_width=2,
                stroke_fill=(0, 0, 0, 255),
            )

    def _draw_watermark(self, draw: ImageDraw.ImageDraw, text: str, size: tuple[int, int]) -> None:
        text_w, text_h = self._text_size(draw, text)
        width, height = size
        draw.text(
            (width - text_w - 10, height - text_h - 10),
            text,
            font=self._font,
            fill=(255, 255, 255, 160),
            stroke_width=1,
            stroke_fill=(0, 0, 0, 160),
        )

    def render(
        self,
        image: bytes,
        instructions: Iterable[DrawingInstruction],
        watermark: Optional[str] = None,
    ) -> bytes:
        """Draw *instructions* on a copy of *image* and return PNG bytes."""
        with Image.open(io.BytesIO(image)) as src:
            canvas = src.convert("RGBA")

        overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)

        count = 0
        for inst in instructions:
            self._draw_zone(draw, inst, canvas.size[0])
            count += 1

        if watermark and self._zones.watermark:
            self._draw_watermark(draw, watermark, canvas.size)

        composed = Image.alpha_composite(canvas, overlay)
        buffer = io.BytesIO()
        composed.save(buffer, format="PNG")
        logger.debug("Rendered %d zone(s) on %dx%d canvas", count, *canvas.size)
        return buffer.getvalue()
