"""Analysis data models — typed representations of SOP inputs and outputs."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Signal(str, Enum):
    BUY = "buy"
    SELL = "sell"
    WAIT = "wait"


class ZoneKind(str, Enum):
    SUPPORT = "support"
    RESISTANCE = "resistance"
    BREAKOUT = "breakout"
    NONE = "none"


class TimeframeRole(str, Enum):
    PRIMARY = "primary"
    ENTRY = "entry"


class DecisionStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    WAIT_BREAKOUT = "WAIT_BREAKOUT"
    FORMING = "FORMING"


# ── Pattern vocabulary ───────────────────────────────────────────────────

BULLISH_PATTERNS: frozenset[str] = frozenset({"bullish_engulfing", "breakout"})
BEARISH_PATTERNS: frozenset[str] = frozenset({"bearish_engulfing", "breakdown"})

UP_TRENDS: frozenset[str] = frozenset({"uptrend", "bullish"})
DOWN_TRENDS: frozenset[str] = frozenset({"downtrend", "bearish"})
FLAT_TRENDS: frozenset[str] = frozenset({"sideways", "ranging"})


def pattern_bias(pattern: Optional[str]) -> Optional[str]:
    """Return ``"bullish"``, ``"bearish"`` or ``None`` for a neutral pattern."""
    if pattern in BULLISH_PATTERNS:
        return "bullish"
    if pattern in BEARISH_PATTERNS:
        return "bearish"
    return None


def trend_direction(trend: Optional[str]) -> Optional[str]:
    """Collapse swing and scalping trend words onto ``"up"``/``"down"``/``"flat"``."""
    if trend in UP_TRENDS:
        return "up"
    if trend in DOWN_TRENDS:
        return "down"
    if trend in FLAT_TRENDS:
        return "flat"
    return None


# ── Geometry ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PixelRect:
    """An axis-aligned rectangle in image pixel coordinates."""

    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1

    @property
    def is_complete(self) -> bool:
        """True when every corner is non-zero, matching what the vision model
        returns for a rectangle it actually marked."""
        return all((self.x1, self.y1, self.x2, self.y2))


@dataclass(frozen=True)
class PriceScale:
    """Vertical price scale of a chart screenshot (supplied externally)."""

    price_high: float
    price_low: float
    image_width: int
    image_height: int


# ── Analysis results ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class ZoneCandidate:
    """A proposed price band and its pixel rectangle on the source chart."""

    price_high: float
    price_low: float
    pixel_rect: Optional[PixelRect]
    pattern_kind: str
    zone_kind: ZoneKind
    confidence: float

    @property
    def has_prices(self) -> bool:
        return self.price_high > 0 and self.price_low > 0 and self.price_high > self.price_low


@dataclass(frozen=True)
class TimeframeResult:
    """One (pair, strategy, timeframe) analysis.

    ``trend`` holds the swing trend (uptrend/downtrend/sideways) or the
    scalping micro trend (bullish/bearish/ranging).  Entry-timeframe results
    carry no trend or signal of their own.
    """

    pair: str
    timeframe_id: str
    role: TimeframeRole
    trend: Optional[str]
    signal: Optional[Signal]
    pattern: Optional[str]
    zone: ZoneCandidate
    confidence: Optional[float]
    raw_text: str = ""
    reasoning: str = ""
    momentum: Optional[str] = None
    inside_primary_zone: Optional[bool] = None
    entry_timing: Optional[str] = None
    source: str = "vision"


@dataclass(frozen=True)
class ValidationOutcome:
    """Errors block validity; warnings are informational only."""

    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @classmethod
    def from_lists(cls, errors: list[str], warnings: list[str]) -> "ValidationOutcome":
        return cls(valid=not errors, errors=tuple(errors), warnings=tuple(warnings))

    @classmethod
    def failure(cls, reason: str) -> "ValidationOutcome":
        return cls(valid=False, errors=(reason,))


@dataclass(frozen=True)
class CombinedDecision:
    """The canonical output artifact of one job."""

    pair: str
    strategy: str
    status: DecisionStatus
    valid: bool
    signal: Optional[Signal]
    trend: Optional[str]
    pattern: Optional[str]
    confidence: float
    primary_zone: ZoneCandidate
    entry_zone: Optional[ZoneCandidate]
    primary_validation: ValidationOutcome
    entry_validation: ValidationOutcome
    primary_result: TimeframeResult
    entry_result: Optional[TimeframeResult] = None
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict:
        """Return a JSON-serialisable representation."""
        data = _jsonable(asdict(self))
        data["validation"] = {
            "primary": data.pop("primary_validation"),
            "entry": data.pop("entry_validation"),
        }
        return data


@dataclass(frozen=True)
class DrawingInstruction:
    """Rendering-only description of one zone rectangle."""

    pixel_rect: PixelRect
    color: str
    opacity: float
    border_width: int
    label: str
    label_position: str  # "top-left" | "top-right" | "bottom-left" | "bottom-right"


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
