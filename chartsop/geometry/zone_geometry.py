"""Zone rectangle repair and label placement — pure functions.

``normalize_rect`` never rejects a rectangle.  Whatever comes in, the
result satisfies::

    0 <= x1 <= x2 <= width - 1
    1 <= y1 <= y2 <= height - 2
    y2 - y1 >= min_size        (whenever height - 3 >= min_size)

The one-pixel vertical margin leaves room for border strokes.
"""

from chartsop.analysis.models import PixelRect

DEFAULT_MIN_SIZE = 8

LABEL_POSITIONS = ("top-left", "top-right", "bottom-left", "bottom-right")


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def normalize_rect(
    rect: PixelRect,
    canvas_width: int,
    canvas_height: int,
    min_size: int = DEFAULT_MIN_SIZE,
) -> PixelRect:
    """Clamp, order, and thicken *rect* so it is always drawable on the canvas.

    Args:
        rect: Candidate rectangle, possibly inverted or off-canvas.
        canvas_width: Canvas width in pixels.
        canvas_height: Canvas height in pixels.
        min_size: Minimum width and vertical thickness in pixels.
    """
    width = max(1, canvas_width)
    height = max(3, canvas_height)
    x_max = width - 1
    y_min, y_max = 1, height - 2

    # 1 ── clamp
    x1 = _clamp(rect.x1, 0, x_max)
    x2 = _clamp(rect.x2, 0, x_max)
    y1 = _clamp(rect.y1, y_min, y_max)
    y2 = _clamp(rect.y2, y_min, y_max)

    # 2 ── order
    if x2 < x1:
        x1, x2 = x2, x1
    if y2 < y1:
        y1, y2 = y2, y1

    # 3 ── minimum width, growing to the right
    if x2 - x1 < min_size:
        x2 = min(x_max, x1 + min_size)

    # 4 ── minimum thickness: up first, remainder down
    if y2 - y1 < min_size:
        need = min_size - (y2 - y1)
        move_up = min(need, y1 - y_min)
        y1 -= move_up
        y2 = min(y_max, y2 + (need - move_up))

    # 5 ── degenerate at an image edge: split away from the edge
    if y1 == y2:
        if y2 < y_max:
            y2 = min(y_max, y2 + min_size)
        else:
            y1 = max(y_min, y1 - min_size)

    return PixelRect(x1=x1, y1=y1, x2=x2, y2=y2)


def label_origin(
    rect: PixelRect,
    text_width: int,
    position: str = "top-left",
    padding: int = 10,
    top_offset: int = 25,
) -> tuple[int, int]:
    """Baseline-left anchor at which to draw a label inside *rect*.

    Labels sit ``padding`` px in from the left or right edge; the baseline
    is ``top_offset`` px below the top edge (never lower than ``padding``
    px above the bottom edge) or ``padding`` px above the bottom edge.
    Unknown positions fall back to ``"top-left"``.
    """
    if position not in LABEL_POSITIONS:
        position = "top-left"

    if position.endswith("right"):
        x = rect.x2 - padding - text_width
    else:
        x = rect.x1 + padding

    if position.startswith("bottom"):
        y = rect.y2 - padding
    else:
        y = min(rect.y1 + top_offset, rect.y2 - padding)

    return x, y
