"""Tests for chartsop.sop.rules and the Swing/Scalping validators."""

from typing import Optional

import pytest

from chartsop.analysis.models import (
    PixelRect,
    Signal,
    TimeframeResult,
    TimeframeRole,
    ZoneCandidate,
    ZoneKind,
)
from chartsop.config import StrategySettings, ZoneSettings
from chartsop.sop.rules import (
    check_confidence,
    check_entry_alignment,
    check_entry_pattern,
    check_trend_consistency,
    zones_overlap_with_tolerance,
)
from chartsop.sop.scalping import ScalpingSOP
from chartsop.sop.swing import SwingSOP


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_result(
    role: TimeframeRole = TimeframeRole.PRIMARY,
    pair: str = "EURUSD",
    trend: Optional[str] = "uptrend",
    signal: Optional[Signal] = Signal.BUY,
    pattern: str = "bullish_engulfing",
    high: float = 1.1025,
    low: float = 1.1000,
    rect: Optional[PixelRect] = PixelRect(100, 100, 300, 140),
    confidence: float = 0.85,
    **extra,
) -> TimeframeResult:
    if role is TimeframeRole.ENTRY:
        trend, signal = None, None
    return TimeframeResult(
        pair=pair,
        timeframe_id="1D" if role is TimeframeRole.PRIMARY else "30",
        role=role,
        trend=trend,
        signal=signal,
        pattern=pattern,
        zone=ZoneCandidate(
            price_high=high,
            price_low=low,
            pixel_rect=rect,
            pattern_kind=pattern,
            zone_kind=ZoneKind.SUPPORT if role is TimeframeRole.PRIMARY else ZoneKind.NONE,
            confidence=confidence,
        ),
        confidence=confidence,
        **extra,
    )


def _swing(**zone_overrides) -> SwingSOP:
    return SwingSOP(StrategySettings("1D", "30", 0.5), ZoneSettings(**zone_overrides))


def _scalping(**zone_overrides) -> ScalpingSOP:
    settings = StrategySettings(
        "15", "5", 0.8,
        patterns=("bullish_engulfing", "bearish_engulfing", "pin_bar", "breakout", "breakdown"),
    )
    return ScalpingSOP(settings, ZoneSettings(**zone_overrides))


# ── Rule functions ───────────────────────────────────────────────────────


class TestOverlapTolerance:
    def test_partial_overlap_accepted(self):
        # range 10, tol 5: overlap 100..104, 104 + 5 >= 100
        assert zones_overlap_with_tolerance(100, 110, 95, 104) is True

    def test_near_miss_within_tolerance(self):
        # entry entirely below: overlap_low 100, overlap_high 98, 98 + 5 >= 100
        assert zones_overlap_with_tolerance(100, 110, 90, 98) is True

    def test_far_miss_rejected(self):
        assert zones_overlap_with_tolerance(100, 110, 80, 90) is False


class TestTrendConsistency:
    def test_uptrend_sell_is_trend_mismatch(self):
        errors: list[str] = []
        check_trend_consistency("uptrend", Signal.SELL, "none", errors)
        assert any(e.startswith("TREND MISMATCH") for e in errors)

    def test_downtrend_bullish_pattern_is_pattern_mismatch(self):
        errors: list[str] = []
        check_trend_consistency("downtrend", Signal.SELL, "bullish_engulfing", errors)
        assert any(e.startswith("PATTERN MISMATCH") for e in errors)
        assert any(e.startswith("SIGNAL-PATTERN MISMATCH") for e in errors)

    def test_scalping_vocabulary(self):
        errors: list[str] = []
        check_trend_consistency("bearish", Signal.BUY, "breakdown", errors)
        assert len(errors) == 2

    def test_consistent_setup_passes(self):
        errors: list[str] = []
        check_trend_consistency("uptrend", Signal.BUY, "bullish_engulfing", errors)
        assert errors == []


class TestConfidence:
    def test_below_threshold_error(self):
        errors, warnings = [], []
        check_confidence(0.4, 0.5, "Daily", errors, warnings)
        assert errors and not warnings

    def test_below_threshold_relaxed_warning(self):
        errors, warnings = [], []
        check_confidence(0.4, 0.5, "M30", errors, warnings, relaxed=True)
        assert warnings and not errors

    @pytest.mark.parametrize("value", [-0.1, 1.2])
    def test_out_of_range_always_error(self, value):
        errors, warnings = [], []
        check_confidence(value, 0.5, "M30", errors, warnings, relaxed=True)
        assert errors == [f"Invalid confidence: {value}"]


class TestEntryPattern:
    def test_opposite_is_error(self):
        errors, warnings = [], []
        check_entry_pattern("bearish_engulfing", Signal.BUY, "M30", errors, warnings)
        assert errors and not warnings

    def test_different_is_warning(self):
        errors, warnings = [], []
        check_entry_pattern("pin_bar", Signal.SELL, "5min", errors, warnings)
        assert warnings and not errors

    def test_matching_is_silent(self):
        errors, warnings = [], []
        check_entry_pattern("breakout", Signal.BUY, "5min", errors, warnings)
        assert errors == warnings == []


class TestEntryAlignment:
    def test_flag_true_skips_check(self):
        warnings: list[str] = []
        entry = _make_result(TimeframeRole.ENTRY, inside_primary_zone=True, high=1.2, low=1.19)
        check_entry_alignment(entry, _make_result(), "M30", warnings)
        assert warnings == []

    def test_far_zone_only_warns(self):
        warnings: list[str] = []
        entry = _make_result(TimeframeRole.ENTRY, inside_primary_zone=False, high=1.2025, low=1.2000)
        check_entry_alignment(entry, _make_result(), "M30", warnings)
        assert len(warnings) == 1
        assert "not inside primary zone" in warnings[0]


# ── Swing validator ──────────────────────────────────────────────────────


class TestSwingValidation:
    def test_valid_primary(self):
        outcome = _swing().validate_primary(_make_result())
        assert outcome.valid is True
        assert outcome.errors == ()

    def test_uptrend_with_sell_is_invalid(self):
        outcome = _swing().validate_primary(
            _make_result(signal=Signal.SELL, pattern="bearish_engulfing")
        )
        assert outcome.valid is False
        assert any("TREND MISMATCH" in e for e in outcome.errors)

    def test_zone_too_wide_is_error(self):
        outcome = _swing(min_pips=10, max_pips=40).validate_primary(
            _make_result(high=1.1050, low=1.1000)
        )
        assert outcome.valid is False
        assert any("too wide" in e for e in outcome.errors)

    def test_missing_coordinates_only_warn(self):
        outcome = _swing().validate_primary(_make_result(rect=None))
        assert outcome.valid is True
        assert any("No zone coordinates" in w for w in outcome.warnings)

    def test_missing_zone_bounds_is_error(self):
        outcome = _swing().validate_primary(_make_result(high=0.0, low=0.0))
        assert "Missing required field: zone bounds" in outcome.errors

    def test_fallback_result_without_prices_is_accepted(self):
        result = _make_result(
            trend="downtrend", signal=Signal.SELL, pattern="bearish_engulfing",
            high=0.0, low=0.0, confidence=0.6, source="fallback",
        )
        outcome = _swing().validate_primary(result)
        assert outcome.valid is True
        assert any("skipped" in w for w in outcome.warnings)

    def test_entry_relaxations_are_warnings(self):
        primary = _make_result()
        entry = _make_result(
            TimeframeRole.ENTRY, pattern="none", confidence=0.3,
            inside_primary_zone=False, high=1.1075, low=1.1050,
        )
        outcome = _swing().validate_entry(entry, primary)
        assert outcome.valid is True
        assert len(outcome.warnings) == 3

    def test_entry_opposite_pattern_is_error(self):
        entry = _make_result(TimeframeRole.ENTRY, pattern="bearish_engulfing", inside_primary_zone=True)
        outcome = _swing().validate_entry(entry, _make_result())
        assert outcome.valid is False

    def test_entry_zone_width_still_enforced(self):
        entry = _make_result(TimeframeRole.ENTRY, inside_primary_zone=True, high=1.1005, low=1.1000)
        outcome = _swing().validate_entry(entry, _make_result())
        assert outcome.valid is False
        assert any("too narrow" in e for e in outcome.errors)


# ── Scalping validator ───────────────────────────────────────────────────


class TestScalpingValidation:
    def test_valid_primary(self):
        result = _make_result(trend="bullish", pattern="breakout", momentum="strong")
        assert _scalping().validate_primary(result).valid is True

    def test_weak_momentum_warns(self):
        result = _make_result(trend="bullish", momentum="weak")
        outcome = _scalping().validate_primary(result)
        assert outcome.valid is True
        assert any("Weak momentum" in w for w in outcome.warnings)

    def test_missing_momentum_is_error(self):
        outcome = _scalping().validate_primary(_make_result(trend="bullish"))
        assert "Invalid momentum: None" in outcome.errors

    def test_incomplete_coordinates_is_error(self):
        result = _make_result(trend="bullish", momentum="strong", rect=PixelRect(0, 100, 300, 140))
        outcome = _scalping().validate_primary(result)
        assert "Incomplete zone coordinates" in outcome.errors

    def test_threshold_is_strict_on_primary(self):
        result = _make_result(trend="bullish", momentum="strong", confidence=0.75)
        assert _scalping().validate_primary(result).valid is False

    def test_expired_entry_warns(self):
        primary = _make_result(trend="bullish", momentum="strong")
        entry = _make_result(TimeframeRole.ENTRY, inside_primary_zone=True, entry_timing="expired")
        outcome = _scalping().validate_entry(entry, primary)
        assert outcome.valid is True
        assert any("expired" in w for w in outcome.warnings)

    def test_entry_without_coordinates_is_error(self):
        primary = _make_result(trend="bullish", momentum="strong")
        entry = _make_result(TimeframeRole.ENTRY, rect=None, inside_primary_zone=True, entry_timing="immediate")
        outcome = _scalping().validate_entry(entry, primary)
        assert outcome.valid is False
