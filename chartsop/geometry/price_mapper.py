"""Price → pixel mapping — pure functions.

An unavailable mapping is reported as ``None``, never as an exception:
callers treat it as "cannot draw this zone".
"""

import logging
import math
from typing import Optional

from chartsop.analysis.models import PixelRect, PriceScale

logger = logging.getLogger("chartsop.geometry")


def price_to_y(price: float, scale: Optional[PriceScale]) -> Optional[int]:
    """Map *price* to a vertical pixel coordinate.

    The y axis is inverted: the top of the image is ``scale.price_high``.
    Halves round up, so the same inputs always give the same pixel.
    """
    if scale is None:
        logger.debug("No price scale, cannot map price %s", price)
        return None

    price_range = scale.price_high - scale.price_low
    if price_range <= 0:
        logger.debug("Degenerate price scale %s..%s", scale.price_low, scale.price_high)
        return None

    y = (scale.price_high - price) / price_range * scale.image_height
    return int(math.floor(y + 0.5))


def zone_rect_from_prices(
    price_high: float,
    price_low: float,
    scale: Optional[PriceScale],
    x_start: int = 0,
    x_end: Optional[int] = None,
) -> Optional[PixelRect]:
    """Map a price band to a rectangle spanning ``x_start``..``x_end``.

    ``x_end`` defaults to the full image width.
    """
    if scale is None:
        return None
    y1 = price_to_y(price_high, scale)
    y2 = price_to_y(price_low, scale)
    if y1 is None or y2 is None:
        return None
    return PixelRect(
        x1=x_start,
        y1=y1,
        x2=x_end if x_end is not None else scale.image_width,
        y2=y2,
    )


def normalize_coordinates(rect: PixelRect, image_width: int, image_height: int) -> dict:
    """Express *rect* as ratios of the image size (0–1)."""
    return {
        "rx1": rect.x1 / image_width,
        "ry1": rect.y1 / image_height,
        "rx2": rect.x2 / image_width,
        "ry2": rect.y2 / image_height,
    }
