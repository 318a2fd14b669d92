"""Scalping SOP — 15-minute micro trend and zone, 5-minute entry timing."""

from typing import Optional

from chartsop.analysis.models import CombinedDecision, TimeframeResult
from chartsop.analysis.schema import MOMENTUM_VALUES, ResponseSchema
from chartsop.sop.base import SOPStrategy, pretty_pattern
from chartsop.sop.prompts import build_scalping_entry_prompt, build_scalping_primary_prompt


class ScalpingSOP(SOPStrategy):
    """15-minute + 5-minute strategy with momentum and timing filters.

    Stricter than Swing on geometry: the 15-minute result must carry a full
    pixel rectangle, and the 5-minute result must carry one at all.
    """

    name = "scalping"
    primary_label = "15min"
    entry_label = "5min"
    entry_opacity_boost = 0.15
    entry_border_boost = 1

    def response_schema(self) -> ResponseSchema:
        return ResponseSchema(
            trend_key="micro_trend",
            trends=frozenset({"bullish", "bearish", "ranging"}),
            patterns=frozenset(self.settings.patterns),
            zone_kinds=frozenset({"support", "resistance", "breakout"}),
            with_momentum=True,
        )

    def _primary_prompt(self, pair: str) -> str:
        return build_scalping_primary_prompt(pair, self.settings, self.zones)

    def _entry_prompt(self, pair: str, prior: Optional[TimeframeResult]) -> str:
        return build_scalping_entry_prompt(pair, self.settings, self.zones, prior)

    def _check_primary_extras(self, result, errors, warnings) -> None:
        if result.momentum not in MOMENTUM_VALUES:
            errors.append(f"Invalid momentum: {result.momentum}")
        elif result.momentum == "weak":
            warnings.append("Weak momentum detected - scalping may be risky")

        rect = result.zone.pixel_rect
        if rect is None or not rect.is_complete:
            errors.append("Incomplete zone coordinates")

    def _check_entry_extras(self, entry, errors, warnings) -> None:
        if entry.zone.pixel_rect is None:
            errors.append("Missing required field: zone_coordinates")
        if entry.entry_timing == "expired":
            warnings.append("Entry pattern expired (too old)")

    def _primary_label_text(self, decision: CombinedDecision) -> str:
        signal = decision.signal.value.upper() if decision.signal else "WAIT"
        return f"15M {signal} - {pretty_pattern(decision.pattern)}"

    def _entry_label_text(self, decision: CombinedDecision) -> str:
        pattern = decision.entry_result.pattern if decision.entry_result else None
        return f"5M ENTRY - {pretty_pattern(pattern)}"
