"""Swing SOP — Daily trend and zone, M30 engulfing confirmation."""

from typing import Optional

from chartsop.analysis.models import CombinedDecision, TimeframeResult
from chartsop.analysis.schema import ResponseSchema
from chartsop.sop.base import SOPStrategy, pretty_pattern
from chartsop.sop.prompts import build_swing_entry_prompt, build_swing_primary_prompt


class SwingSOP(SOPStrategy):
    """Daily + M30 engulfing strategy.

    Missing Daily zone coordinates only warn: the zone can still be drawn
    from its prices when a price scale is available.
    """

    name = "swing"
    primary_label = "Daily"
    entry_label = "M30"
    entry_opacity_boost = 0.1
    entry_border_boost = 0

    def response_schema(self) -> ResponseSchema:
        return ResponseSchema(
            trend_key="trend",
            trends=frozenset({"uptrend", "downtrend", "sideways"}),
            patterns=frozenset(self.settings.patterns),
            zone_kinds=frozenset({"support", "resistance"}),
        )

    def _primary_prompt(self, pair: str) -> str:
        return build_swing_primary_prompt(pair, self.zones)

    def _entry_prompt(self, pair: str, prior: Optional[TimeframeResult]) -> str:
        return build_swing_entry_prompt(pair, self.zones, prior)

    def _check_primary_extras(self, result, errors, warnings) -> None:
        rect = result.zone.pixel_rect
        if rect is None:
            warnings.append("No zone coordinates provided (drawing may be skipped)")
        elif not rect.is_complete:
            warnings.append("Incomplete zone coordinates (drawing may be skipped)")

    def _primary_label_text(self, decision: CombinedDecision) -> str:
        signal = decision.signal.value.upper() if decision.signal else "WAIT"
        return f"Daily {signal} ZONE - {pretty_pattern(decision.pattern)}"

    def _entry_label_text(self, decision: CombinedDecision) -> str:
        pattern = decision.entry_result.pattern if decision.entry_result else None
        return f"M30 Entry - {pretty_pattern(pattern)}"
