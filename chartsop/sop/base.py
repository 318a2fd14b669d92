"""SOP strategy protocol and the shared validator/combiner/drawing base.

A strategy variant supplies its vocabulary, prompts and a few extra rules;
everything else (common validation, combination, drawing instructions)
lives here.
"""

from __future__ import annotations

from typing import Optional, Protocol, Union, runtime_checkable

from chartsop.analysis.models import (
    CombinedDecision,
    DrawingInstruction,
    PixelRect,
    PriceScale,
    Signal,
    TimeframeResult,
    TimeframeRole,
    ValidationOutcome,
)
from chartsop.analysis.schema import ResponseSchema, parse_timeframe_result
from chartsop.config import StrategySettings, ZoneSettings
from chartsop.geometry.price_mapper import zone_rect_from_prices
from chartsop.geometry.zone_geometry import normalize_rect
from chartsop.sop.combiner import combine_results
from chartsop.sop.rules import (
    check_confidence,
    check_entry_alignment,
    check_entry_pattern,
    check_required_fields,
    check_trend_consistency,
    check_zone_width,
)


@runtime_checkable
class SOPStrategyProtocol(Protocol):
    """Interface every SOP strategy variant must satisfy."""

    name: str

    @property
    def primary_timeframe(self) -> str:
        ...

    @property
    def entry_timeframe(self) -> str:
        ...

    def timeframe_for(self, role) -> str:
        ...

    def build_prompt(self, pair: str, role, prior: Optional[TimeframeResult] = None) -> str:
        ...

    def parse(self, text: str, pair: str, role) -> TimeframeResult:
        ...

    def validate_primary(self, result: TimeframeResult) -> ValidationOutcome:
        ...

    def validate_entry(self, entry: TimeframeResult, primary: TimeframeResult) -> ValidationOutcome:
        ...

    def combine(
        self,
        primary: TimeframeResult,
        primary_validation: ValidationOutcome,
        entry: Optional[TimeframeResult],
        entry_validation: ValidationOutcome,
    ) -> CombinedDecision:
        ...

    def drawing_instruction(
        self,
        decision: CombinedDecision,
        role,
        canvas_width: int,
        canvas_height: int,
        scale: Optional[PriceScale] = None,
    ) -> Optional[DrawingInstruction]:
        ...


def coerce_role(role: Union[TimeframeRole, str, None]) -> TimeframeRole:
    """Accept ``TimeframeRole`` or its string value; anything else is a caller error."""
    if role is None:
        raise ValueError("A timeframe role is required")
    try:
        return TimeframeRole(role)
    except ValueError:
        raise ValueError(f"Unknown timeframe role '{role}'") from None


def pretty_pattern(pattern: Optional[str]) -> str:
    return (pattern or "none").replace("_", " ").upper()


class SOPStrategy:
    """Shared behaviour for the Swing and Scalping variants."""

    name: str = ""
    primary_label: str = "Primary"
    entry_label: str = "Entry"
    entry_opacity_boost: float = 0.1
    entry_border_boost: int = 0

    def __init__(self, settings: StrategySettings, zones: ZoneSettings) -> None:
        self.settings = settings
        self.zones = zones

    # ── Timeframes and prompts ───────────────────────────────────────────

    @property
    def primary_timeframe(self) -> str:
        return self.settings.primary_timeframe

    @property
    def entry_timeframe(self) -> str:
        return self.settings.entry_timeframe

    def timeframe_for(self, role) -> str:
        if coerce_role(role) is TimeframeRole.PRIMARY:
            return self.primary_timeframe
        return self.entry_timeframe

    def build_prompt(
        self,
        pair: str,
        role,
        prior: Optional[TimeframeResult] = None,
    ) -> str:
        """Build the vision request text for *role*.

        Raises ``ValueError`` when *pair* or *role* is missing.
        """
        if not pair:
            raise ValueError("A trading pair is required to build a prompt")
        if coerce_role(role) is TimeframeRole.PRIMARY:
            return self._primary_prompt(pair)
        return self._entry_prompt(pair, prior)

    def _primary_prompt(self, pair: str) -> str:
        raise NotImplementedError

    def _entry_prompt(self, pair: str, prior: Optional[TimeframeResult]) -> str:
        raise NotImplementedError

    # ── Parsing ──────────────────────────────────────────────────────────

    def response_schema(self) -> ResponseSchema:
        raise NotImplementedError

    def parse(self, text: str, pair: str, role) -> TimeframeResult:
        """Strictly parse raw vision text; raises ``SchemaError``."""
        role = coerce_role(role)
        return parse_timeframe_result(
            text,
            pair=pair,
            timeframe_id=self.timeframe_for(role),
            role=role,
            schema=self.response_schema(),
        )

    # ── Validation ───────────────────────────────────────────────────────

    def validate_primary(self, result: TimeframeResult) -> ValidationOutcome:
        errors: list[str] = []
        warnings: list[str] = []

        check_required_fields(result, ("signal", "pattern", "zone", "confidence"), errors)
        check_confidence(
            result.confidence, self.settings.confidence_threshold,
            self.primary_label, errors, warnings,
        )
        check_trend_consistency(result.trend, result.signal, result.pattern, errors)
        check_zone_width(
            result, self.zones.min_pips, self.zones.max_pips,
            self.primary_label, errors, warnings,
        )
        self._check_primary_extras(result, errors, warnings)

        return ValidationOutcome.from_lists(errors, warnings)

    def validate_entry(
        self,
        entry: TimeframeResult,
        primary: TimeframeResult,
    ) -> ValidationOutcome:
        """Entry checks are relaxed: overlap and confidence only ever warn."""
        errors: list[str] = []
        warnings: list[str] = []

        check_required_fields(entry, ("pattern", "zone", "confidence"), errors)
        check_confidence(
            entry.confidence, self.settings.confidence_threshold,
            self.entry_label, errors, warnings, relaxed=True,
        )
        check_entry_pattern(entry.pattern, primary.signal, self.entry_label, errors, warnings)
        check_entry_alignment(entry, primary, self.entry_label, warnings)
        check_zone_width(
            entry, self.zones.min_pips, self.zones.max_pips,
            self.entry_label, errors, warnings,
        )
        self._check_entry_extras(entry, errors, warnings)

        return ValidationOutcome.from_lists(errors, warnings)

    def _check_primary_extras(self, result, errors, warnings) -> None:
        pass

    def _check_entry_extras(self, entry, errors, warnings) -> None:
        pass

    # ── Combination ──────────────────────────────────────────────────────

    def combine(
        self,
        primary: TimeframeResult,
        primary_validation: ValidationOutcome,
        entry: Optional[TimeframeResult],
        entry_validation: ValidationOutcome,
    ) -> CombinedDecision:
        return combine_results(self.name, primary, primary_validation, entry, entry_validation)

    # ── Drawing ──────────────────────────────────────────────────────────

    def _primary_label_text(self, decision: CombinedDecision) -> str:
        raise NotImplementedError

    def _entry_label_text(self, decision: CombinedDecision) -> str:
        raise NotImplementedError

    def drawing_instruction(
        self,
        decision: CombinedDecision,
        role,
        canvas_width: int,
        canvas_height: int,
        scale: Optional[PriceScale] = None,
    ) -> Optional[DrawingInstruction]:
        """Describe how to draw one zone of *decision* on a chart.

        Returns ``None`` when the decision is not valid or the zone cannot
        be placed on the canvas.
        """
        if not decision.valid:
            return None

        role = coerce_role(role)
        zone = decision.primary_zone if role is TimeframeRole.PRIMARY else decision.entry_zone
        if zone is None:
            return None

        rect = self._zone_rect(zone, scale)
        if rect is None:
            return None
        rect = normalize_rect(rect, canvas_width, canvas_height, self.zones.min_thickness)

        color = self.zones.buy_color if decision.signal is Signal.BUY else self.zones.sell_color
        if role is TimeframeRole.PRIMARY:
            return DrawingInstruction(
                pixel_rect=rect,
                color=color,
                opacity=self.zones.opacity,
                border_width=self.zones.border_width,
                label=self._primary_label_text(decision),
                label_position="top-left",
            )
        return DrawingInstruction(
            pixel_rect=rect,
            color=color,
            opacity=min(1.0, self.zones.opacity + self.entry_opacity_boost),
            border_width=self.zones.border_width + self.entry_border_boost,
            label=self._entry_label_text(decision),
            label_position="bottom-right",
        )

    @staticmethod
    def _zone_rect(zone, scale: Optional[PriceScale]) -> Optional[PixelRect]:
        # Price mapping wins; the vision rectangle only supplies the x span.
        reported = zone.pixel_rect if zone.pixel_rect is not None and zone.pixel_rect.is_complete else None
        if scale is not None and zone.has_prices:
            mapped = zone_rect_from_prices(
                zone.price_high,
                zone.price_low,
                scale,
                x_start=reported.x1 if reported else 0,
                x_end=reported.x2 if reported else None,
            )
            if mapped is not None:
                return mapped
        return reported
