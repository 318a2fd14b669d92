"""Validation rules shared by every SOP strategy — pure functions.

Each ``check_*`` function appends human-readable findings to the
``errors`` / ``warnings`` lists it is given.  Errors block a setup;
warnings never do.
"""

import logging
from typing import Iterable, Optional

from chartsop.analysis.models import (
    Signal,
    TimeframeResult,
    pattern_bias,
    trend_direction,
)
from chartsop.analysis.pips import validate_zone_size

logger = logging.getLogger("chartsop.sop")

OVERLAP_TOLERANCE_RATIO = 0.5


def check_required_fields(
    result: TimeframeResult,
    fields: Iterable[str],
    errors: list[str],
) -> None:
    """Flag missing fields.  ``zone`` means both zone price bounds.

    Fallback results never know prices; for them a pixel rectangle stands
    in for the bounds.
    """
    for name in fields:
        if name == "zone":
            located = result.source == "fallback" and result.zone.pixel_rect is not None
            if not result.zone.has_prices and not located:
                errors.append("Missing required field: zone bounds")
            continue
        value = getattr(result, name)
        if value is None or value == "":
            errors.append(f"Missing required field: {name}")


def check_confidence(
    confidence: Optional[float],
    threshold: float,
    label: str,
    errors: list[str],
    warnings: list[str],
    relaxed: bool = False,
) -> None:
    """Confidence must lie in ``[0, 1]`` and reach *threshold*.

    With ``relaxed`` a below-threshold value is only a warning.
    """
    if confidence is None:
        return
    if confidence < 0 or confidence > 1:
        errors.append(f"Invalid confidence: {confidence}")
        return
    if confidence < threshold:
        if relaxed:
            warnings.append(
                f"{label} confidence {confidence} below threshold {threshold} "
                "(accepting with lower confidence)"
            )
        else:
            errors.append(f"Confidence {confidence} below threshold {threshold}")


def check_trend_consistency(
    trend: Optional[str],
    signal: Optional[Signal],
    pattern: Optional[str],
    errors: list[str],
) -> None:
    """An up trend must not pair with a sell signal or a bearish pattern,
    and vice versa."""
    direction = trend_direction(trend)
    bias = pattern_bias(pattern)

    if direction == "up" and signal is Signal.SELL:
        errors.append(f"TREND MISMATCH: {trend} should produce buy signals, not sell signals")
    if direction == "down" and signal is Signal.BUY:
        errors.append(f"TREND MISMATCH: {trend} should produce sell signals, not buy signals")
    if direction == "up" and bias == "bearish":
        errors.append(f"PATTERN MISMATCH: {trend} should not have a bearish pattern ({pattern})")
    if direction == "down" and bias == "bullish":
        errors.append(f"PATTERN MISMATCH: {trend} should not have a bullish pattern ({pattern})")
    if signal is Signal.BUY and bias == "bearish":
        errors.append(f"SIGNAL-PATTERN MISMATCH: buy signal requires a bullish pattern, not {pattern}")
    if signal is Signal.SELL and bias == "bullish":
        errors.append(f"SIGNAL-PATTERN MISMATCH: sell signal requires a bearish pattern, not {pattern}")


def check_zone_width(
    result: TimeframeResult,
    min_pips: float,
    max_pips: float,
    label: str,
    errors: list[str],
    warnings: list[str],
) -> None:
    """Zone price width, in pips for the instrument, must be within bounds.

    Results without prices (e.g. from the local fallback) are skipped with
    a warning; the required-field check decides whether that is fatal.
    """
    zone = result.zone
    if not zone.has_prices:
        warnings.append(f"{label} zone size check skipped (no price data)")
        return

    check = validate_zone_size(result.pair, zone.price_high, zone.price_low, min_pips, max_pips)
    if check.valid:
        logger.info("%s zone size OK: %.1f pips", label, check.actual_pips)
    else:
        logger.warning("%s zone validation failed: %s", label, check.error)
        errors.append(check.error)


def zones_overlap_with_tolerance(
    primary_low: float,
    primary_high: float,
    entry_low: float,
    entry_high: float,
    ratio: float = OVERLAP_TOLERANCE_RATIO,
) -> bool:
    """Relaxed overlap test between two price bands.

    The slack is ``ratio`` of the primary band's height, e.g. primary
    100–110 and entry 95–104 overlap on 100–104, and ``104 + 5 >= 100``.
    """
    tolerance = (primary_high - primary_low) * ratio
    overlap_low = max(primary_low, entry_low)
    overlap_high = min(primary_high, entry_high)
    return overlap_high + tolerance >= overlap_low


def check_entry_alignment(
    entry: TimeframeResult,
    primary: TimeframeResult,
    label: str,
    warnings: list[str],
) -> None:
    """Entry zone vs primary zone.  Only ever produces warnings."""
    if entry.inside_primary_zone:
        return

    if primary.zone.has_prices and entry.zone.has_prices:
        if zones_overlap_with_tolerance(
            primary.zone.price_low,
            primary.zone.price_high,
            entry.zone.price_low,
            entry.zone.price_high,
        ):
            warnings.append(f"{label} zone near primary zone (relaxed overlap accepted)")
        else:
            warnings.append(
                f"{label} pattern not inside primary zone (accepting with lower confidence)"
            )
    else:
        warnings.append(f"{label} zone alignment check skipped (no price data)")


def check_entry_pattern(
    entry_pattern: Optional[str],
    primary_signal: Optional[Signal],
    label: str,
    errors: list[str],
    warnings: list[str],
) -> None:
    """An opposite pattern is an error; a merely different one is a warning."""
    bias = pattern_bias(entry_pattern)
    if primary_signal is Signal.BUY and bias != "bullish":
        if bias == "bearish":
            errors.append(f"{label} pattern contradicts primary buy signal ({entry_pattern} found)")
        else:
            warnings.append(f"{label} pattern does not match primary buy signal (accepting anyway)")
    elif primary_signal is Signal.SELL and bias != "bearish":
        if bias == "bullish":
            errors.append(f"{label} pattern contradicts primary sell signal ({entry_pattern} found)")
        else:
            warnings.append(f"{label} pattern does not match primary sell signal (accepting anyway)")
