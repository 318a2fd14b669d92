"""Deterministic local fallback analyzer.

Used when the vision service fails or times out.  It does not read
prices; it only finds where the most recent price action was drawn and
proposes a rectangle there.  The same image always yields the same result.
"""

import io
import logging
from typing import Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from chartsop.analysis.models import (
    PixelRect,
    Signal,
    TimeframeResult,
    TimeframeRole,
    ZoneCandidate,
    ZoneKind,
)
from chartsop.errors import VisionError

logger = logging.getLogger("chartsop.vision")

FALLBACK_CONFIDENCE = 0.6

# Horizontal band, as fractions of the width, where the latest candles sit
# on a typical chart with a price axis on the right.
_BAND_START = 0.80
_BAND_END = 0.88
_INK_THRESHOLD = 40
_HALF_THICKNESS = 0.04

_BEARISH_TREND = {"swing": "downtrend", "scalping": "bearish"}


def locate_recent_action(image: bytes) -> PixelRect:
    """Return a rectangle around the right-most drawn price action.

    Raises ``VisionError`` if *image* cannot be decoded.
    """
    try:
        with Image.open(io.BytesIO(image)) as img:
            gray = np.asarray(img.convert("L"), dtype=np.int16)
    except (UnidentifiedImageError, OSError) as exc:
        raise VisionError("Local fallback could not decode the chart image") from exc

    height, width = gray.shape
    x1 = max(1, int(width * _BAND_START))
    x2 = max(x1 + 1, int(width * _BAND_END))

    band = gray[:, x1:x2]
    background = int(np.median(gray))
    ink_rows = np.flatnonzero((np.abs(band - background) > _INK_THRESHOLD).any(axis=1))

    if ink_rows.size:
        center = int(np.median(ink_rows))
    else:
        center = height // 2

    half = max(4, int(height * _HALF_THICKNESS))
    y1 = max(1, center - half)
    y2 = max(y1 + 1, min(height - 2, center + half))
    return PixelRect(x1=x1, y1=y1, x2=x2, y2=y2)


def analyze_locally(
    image: bytes,
    *,
    pair: str,
    strategy: str,
    timeframe_id: str,
    role: TimeframeRole,
    prior: Optional[TimeframeResult] = None,
) -> TimeframeResult:
    """Build a simplified ``TimeframeResult`` from pixels alone.

    Primary results lean sell.  Entry results follow the primary signal
    carried in *prior*.  Prices are unknown (``0.0``), so price-based checks
    are skipped for these results.
    """
    rect = locate_recent_action(image)
    scalping = strategy == "scalping"

    if role is TimeframeRole.PRIMARY:
        trend = _BEARISH_TREND.get(strategy, "downtrend")
        signal = Signal.SELL
        pattern = "bearish_engulfing"
        zone_kind = ZoneKind.RESISTANCE
        momentum = "moderate" if scalping else None
        timing = None
    else:
        trend = None
        signal = None
        prior_signal = prior.signal if prior is not None else None
        if prior_signal is Signal.BUY:
            pattern = "bullish_engulfing"
        elif prior_signal is Signal.SELL:
            pattern = "bearish_engulfing"
        else:
            pattern = "none"
        zone_kind = ZoneKind.NONE
        momentum = None
        timing = "wait" if scalping else None

    logger.warning(
        "Fallback analysis for %s %s (%s): %s at %s",
        pair, timeframe_id, role.value, pattern, rect,
    )

    return TimeframeResult(
        pair=pair,
        timeframe_id=timeframe_id,
        role=role,
        trend=trend,
        signal=signal,
        pattern=pattern,
        zone=ZoneCandidate(
            price_high=0.0,
            price_low=0.0,
            pixel_rect=rect,
            pattern_kind=pattern,
            zone_kind=zone_kind,
            confidence=FALLBACK_CONFIDENCE,
        ),
        confidence=FALLBACK_CONFIDENCE,
        reasoning="Local rule-based fallback: zone placed on the most recent price action",
        momentum=momentum,
        entry_timing=timing,
        source="fallback",
    )
