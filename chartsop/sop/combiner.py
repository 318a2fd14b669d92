"""Primary + entry timeframe combination — the decision state machine.

    primary trend flat, or primary signal "wait"   → WAIT_BREAKOUT
    directional, but entry or primary invalid      → FORMING
    directional and both timeframes valid          → CONFIRMED

Only ``CONFIRMED`` is ``valid``.  A "no trade" outcome is a normal result,
never an exception.
"""

from typing import Optional

from chartsop.analysis.models import (
    CombinedDecision,
    DecisionStatus,
    Signal,
    TimeframeResult,
    ValidationOutcome,
    trend_direction,
)


def _clamp_confidence(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    return round(max(0.0, min(1.0, value)), 4)


def resolve_status(
    primary: TimeframeResult,
    primary_validation: ValidationOutcome,
    entry_validation: ValidationOutcome,
) -> DecisionStatus:
    """Pick the terminal status for a primary/entry pair."""
    direction = trend_direction(primary.trend)
    if direction in (None, "flat") or primary.signal is Signal.WAIT:
        return DecisionStatus.WAIT_BREAKOUT
    if not entry_validation.valid or not primary_validation.valid:
        return DecisionStatus.FORMING
    return DecisionStatus.CONFIRMED


def combine_results(
    strategy: str,
    primary: TimeframeResult,
    primary_validation: ValidationOutcome,
    entry: Optional[TimeframeResult],
    entry_validation: ValidationOutcome,
) -> CombinedDecision:
    """Merge both timeframes into one ``CombinedDecision``.

    Args:
        strategy: Strategy registry key, recorded on the decision.
        primary: Primary timeframe result (required).
        primary_validation: Outcome of the primary validator.
        entry: Entry timeframe result, or ``None`` when that step failed.
        entry_validation: Outcome of the entry validator (or a failure
            outcome describing why no entry result exists).
    """
    status = resolve_status(primary, primary_validation, entry_validation)

    if status is DecisionStatus.CONFIRMED and entry is not None:
        confidence = ((primary.confidence or 0.0) + (entry.confidence or 0.0)) / 2
    else:
        confidence = primary.confidence

    return CombinedDecision(
        pair=primary.pair,
        strategy=strategy,
        status=status,
        valid=status is DecisionStatus.CONFIRMED,
        signal=primary.signal,
        trend=primary.trend,
        pattern=primary.pattern,
        confidence=_clamp_confidence(confidence),
        primary_zone=primary.zone,
        entry_zone=entry.zone if entry is not None else None,
        primary_validation=primary_validation,
        entry_validation=entry_validation,
        primary_result=primary,
        entry_result=entry,
    )
