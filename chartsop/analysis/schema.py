"""Strict parsing of vision responses into ``TimeframeResult`` objects.

The vision model is asked for a single JSON object.  Every field the SOP
depends on is checked here; anything missing or malformed raises
``SchemaError`` instead of being silently defaulted.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from chartsop.analysis.models import (
    PixelRect,
    PriceScale,
    Signal,
    TimeframeResult,
    TimeframeRole,
    ZoneCandidate,
    ZoneKind,
)
from chartsop.errors import SchemaError

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_PRICE_TOKEN = re.compile(r"\d+\.\d+")

MOMENTUM_VALUES = frozenset({"strong", "moderate", "weak"})
ENTRY_TIMING_VALUES = frozenset({"immediate", "wait", "expired"})


@dataclass(frozen=True)
class ResponseSchema:
    """Strategy-specific shape of a vision response."""

    trend_key: str  # "trend" (swing) or "micro_trend" (scalping)
    trends: frozenset[str]
    patterns: frozenset[str]
    zone_kinds: frozenset[str]
    with_momentum: bool = False  # scalping: momentum + entry_timing


def extract_json_object(text: str) -> dict:
    """Pull the outermost JSON object out of *text* (tolerates code fences)."""
    if not text:
        raise SchemaError("Empty vision response")
    match = _JSON_OBJECT.search(text)
    if match is None:
        raise SchemaError("No JSON object found in vision response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Invalid JSON in vision response: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise SchemaError("Vision response is not a JSON object")
    return data


def parse_timeframe_result(
    text: str,
    *,
    pair: str,
    timeframe_id: str,
    role: TimeframeRole,
    schema: ResponseSchema,
) -> TimeframeResult:
    """Parse raw vision text for one timeframe.

    Raises:
        SchemaError: naming the first missing or malformed field.
    """
    data = extract_json_object(text)

    pattern = _choice(data, "pattern", schema.patterns | {"none"})
    price_high = _number(data, "zone_price_high")
    price_low = _number(data, "zone_price_low")
    confidence = _number(data, "confidence")
    rect = _rect(data.get("zone_coordinates"))
    reasoning = data.get("reasoning") or ""
    if not isinstance(reasoning, str):
        raise SchemaError("Field 'reasoning' must be a string", field="reasoning")

    if role is TimeframeRole.PRIMARY:
        trend = _choice(data, schema.trend_key, schema.trends)
        signal = Signal(_choice(data, "signal", {s.value for s in Signal}))
        zone_kind = ZoneKind(_choice(data, "zone_type", schema.zone_kinds | {"none"}))
        momentum = _choice(data, "momentum", MOMENTUM_VALUES) if schema.with_momentum else None
        inside = None
        timing = None
    else:
        trend = None
        signal = None
        zone_kind = ZoneKind.NONE
        momentum = None
        inside = _boolean(data, "inside_primary_zone")
        timing = (
            _choice(data, "entry_timing", ENTRY_TIMING_VALUES)
            if schema.with_momentum else None
        )

    zone = ZoneCandidate(
        price_high=price_high,
        price_low=price_low,
        pixel_rect=rect,
        pattern_kind=pattern,
        zone_kind=zone_kind,
        confidence=confidence,
    )
    return TimeframeResult(
        pair=pair,
        timeframe_id=timeframe_id,
        role=role,
        trend=trend,
        signal=signal,
        pattern=pattern,
        zone=zone,
        confidence=confidence,
        raw_text=text,
        reasoning=reasoning,
        momentum=momentum,
        inside_primary_zone=inside,
        entry_timing=timing,
    )


# ── Field readers ────────────────────────────────────────────────────────


def _require(data: dict, key: str) -> Any:
    if key not in data or data[key] is None:
        raise SchemaError(f"Missing required field: {key}", field=key)
    return data[key]


def _choice(data: dict, key: str, allowed) -> str:
    value = _require(data, key)
    if not isinstance(value, str):
        raise SchemaError(f"Field '{key}' must be a string", field=key)
    value = value.strip().lower()
    if value not in allowed:
        raise SchemaError(f"Invalid {key}: {value}", field=key)
    return value


def _number(data: dict, key: str) -> float:
    value = _require(data, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SchemaError(f"Field '{key}' must be a number", field=key)
    return float(value)


def _boolean(data: dict, key: str) -> bool:
    value = _require(data, key)
    if not isinstance(value, bool):
        raise SchemaError(f"Field '{key}' must be true or false", field=key)
    return value


def _rect(raw: Any) -> Optional[PixelRect]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise SchemaError("Field 'zone_coordinates' must be an object", field="zone_coordinates")
    coords = []
    for key in ("x1", "y1", "x2", "y2"):
        value = raw.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise SchemaError(
                f"Field 'zone_coordinates.{key}' must be a number",
                field=f"zone_coordinates.{key}",
            )
        coords.append(int(round(value)))
    return PixelRect(*coords)


# ── Best-effort fallback extractor ───────────────────────────────────────
# Not part of the response contract.  Used only to derive a price scale
# from free-form axis-label text produced by an external OCR helper.


def extract_price_levels(text: str) -> list[float]:
    """Return every positive decimal number found in *text*, in order."""
    levels: list[float] = []
    for token in _PRICE_TOKEN.findall(text or ""):
        value = float(token)
        if value > 0:
            levels.append(value)
    return levels


def price_scale_from_text(
    text: str,
    image_width: int,
    image_height: int,
) -> Optional[PriceScale]:
    """Build a ``PriceScale`` from axis-label text, or ``None`` if it can't."""
    levels = extract_price_levels(text)
    if len(levels) < 2:
        return None
    high, low = max(levels), min(levels)
    if high <= low:
        return None
    return PriceScale(
        price_high=high,
        price_low=low,
        image_width=image_width,
        image_height=image_height,
    )
