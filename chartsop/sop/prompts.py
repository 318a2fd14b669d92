"""Vision prompt builders — one per strategy × timeframe role.

Purely generative: no validation happens here.  Entry prompts carry the
primary result forward so the entry analysis looks at the same price band.
"""

from typing import Optional

from chartsop.analysis.models import Signal, TimeframeResult
from chartsop.config import StrategySettings, ZoneSettings


def _require_pair(pair: str) -> None:
    if not pair:
        raise ValueError("A trading pair is required to build a prompt")


def _pretty(pattern: Optional[str]) -> str:
    return (pattern or "unknown").replace("_", " ").upper()


def _expected_bias(prior: Optional[TimeframeResult]) -> str:
    if prior is not None and prior.signal is Signal.BUY:
        return "BULLISH"
    if prior is not None and prior.signal is Signal.SELL:
        return "BEARISH"
    return "CONFIRMATION"


def _price_band(prior: Optional[TimeframeResult]) -> str:
    if prior is None or not prior.zone.has_prices:
        return "N/A"
    return f"{prior.zone.price_low} - {prior.zone.price_high}"


def _zone_style_words(zone_style: str) -> str:
    return "body to body" if zone_style == "body_to_body" else "shadow (wick) to shadow (wick)"


def _prior_context(prior: Optional[TimeframeResult], primary_label: str) -> str:
    if prior is None:
        return ""
    return f"""
CONTEXT FROM {primary_label} ANALYSIS:
- {primary_label} Signal: {prior.signal.value.upper() if prior.signal else 'UNKNOWN'}
- {primary_label} Pattern: {_pretty(prior.pattern)}
- {primary_label} Zone Price Range: {_price_band(prior)}
- Expected Pattern: {_expected_bias(prior)}

Look for patterns near the price range {_price_band(prior)}.
"""


# ── Swing ────────────────────────────────────────────────────────────────


def build_swing_primary_prompt(pair: str, zones: ZoneSettings) -> str:
    """Daily-chart prompt: trend → zone → engulfing pattern → geometry."""
    _require_pair(pair)
    return f"""You are an expert Forex/Gold trader analysing a {pair} Daily chart for swing trading signals.

Follow these steps exactly:

1. TREND
   - Judge the dominant direction over the last 30-50 candles; ignore minor pullbacks.
   - uptrend = higher highs and higher lows; downtrend = lower highs and lower lows;
     sideways = no clear sequence.
   - uptrend -> look for BUY at support; downtrend -> look for SELL at resistance;
     sideways -> signal "wait".

2. SUPPORT / RESISTANCE
   - Mark the exact price levels of the zone nearest to the current price.

3. CANDLESTICK PATTERN
   - Allowed patterns: bullish_engulfing, bearish_engulfing, none.
   - Only recent patterns on the right side of the chart, near the current price.
   - An uptrend must not be paired with a bearish pattern or a sell signal, and vice versa.

4. ZONE COORDINATES
   - Mark the engulfing candle pair from shadow to shadow.
   - Give pixel coordinates x1, y1 (top-left) and x2, y2 (bottom-right).
   - The zone price width MUST be within {zones.min_pips:g}-{zones.max_pips:g} pips for this
     instrument. If wick to wick is wider, narrow it to the core area nearest the current price.

Return ONLY valid JSON in exactly this format:
{{
  "pair": "{pair}",
  "timeframe": "Daily",
  "trend": "uptrend|downtrend|sideways",
  "signal": "buy|sell|wait",
  "pattern": "bullish_engulfing|bearish_engulfing|none",
  "zone_type": "support|resistance|none",
  "zone_price_high": 0.0,
  "zone_price_low": 0.0,
  "zone_coordinates": {{"x1": 0, "y1": 0, "x2": 0, "y2": 0}},
  "confidence": 0.0,
  "reasoning": "Brief explanation"
}}"""


def build_swing_entry_prompt(
    pair: str,
    zones: ZoneSettings,
    prior: Optional[TimeframeResult] = None,
) -> str:
    """M30 confirmation prompt, biased toward the Daily zone."""
    _require_pair(pair)
    bias = _expected_bias(prior)
    band = _price_band(prior)
    return f"""You are analysing a {pair} M30 (30-minute) chart for swing trading entry confirmation.
{_prior_context(prior, "DAILY")}
Follow these steps:

1. ENGULFING PATTERNS
   - Scan the whole M30 chart for {bias} engulfing patterns.
   - Allowed patterns: bullish_engulfing, bearish_engulfing, none.
   - Near-perfect patterns are acceptable; prefer those inside or near {band}.

2. PRICE ALIGNMENT
   - Set inside_primary_zone to true if the pattern's price range overlaps {band}.

3. ENTRY ZONE
   - Mark from shadow to shadow with exact pixel coordinates and prices.
   - The zone price width MUST be within {zones.min_pips:g}-{zones.max_pips:g} pips; if wider,
     narrow it to the core area overlapping the Daily zone.

Return ONLY valid JSON:
{{
  "pair": "{pair}",
  "timeframe": "M30",
  "pattern": "bullish_engulfing|bearish_engulfing|none",
  "zone_coordinates": {{"x1": 0, "y1": 0, "x2": 0, "y2": 0}},
  "zone_price_high": 0.0,
  "zone_price_low": 0.0,
  "inside_primary_zone": true,
  "confidence": 0.0,
  "reasoning": "Brief explanation"
}}"""


# ── Scalping ─────────────────────────────────────────────────────────────


def _session_hint(settings: StrategySettings) -> str:
    if settings.sessions:
        return f"Only consider setups that align with these sessions: {', '.join(settings.sessions)}."
    return "Consider market session context (Asia/London/New York)."


def _news_hint(settings: StrategySettings) -> str:
    if settings.news_blackout_min > 0:
        return f"Avoid entries within +/-{settings.news_blackout_min} minutes of high-impact news."
    return "No news blackout filter."


def build_scalping_primary_prompt(
    pair: str,
    settings: StrategySettings,
    zones: ZoneSettings,
) -> str:
    """15-minute prompt: micro trend, tight zone, momentum."""
    _require_pair(pair)
    allowed = "|".join(settings.patterns)
    return f"""You are an expert scalper analysing a {pair} 15-minute chart for quick scalping opportunities.

Follow these steps:

1. MICRO TREND
   - Short-term direction over the last 20-30 candles: bullish, bearish or ranging.

2. IMMEDIATE SUPPORT / RESISTANCE
   - The nearest levels from recent price action. Mark TIGHT zones, {_zone_style_words(settings.zone_style)}.
   - The zone price width MUST be within {zones.min_pips:g}-{zones.max_pips:g} pips for this instrument.

3. PATTERN
   - BUY: bullish reversal at support or breakout above resistance.
   - SELL: bearish reversal at resistance or breakdown below support.
   - Only use these patterns: {', '.join(settings.patterns)}, none.

4. MOMENTUM
   - strong, moderate or weak. Avoid choppy, indecisive price action.

5. ZONE COORDINATES
   - Exact pixel coordinates; if the zone is wider than the pip limit, pick the most
     actionable core area.

SESSION FILTER: {_session_hint(settings)}
NEWS FILTER: {_news_hint(settings)}

Return ONLY valid JSON:
{{
  "pair": "{pair}",
  "timeframe": "15min",
  "micro_trend": "bullish|bearish|ranging",
  "signal": "buy|sell|wait",
  "pattern": "{allowed}|none",
  "zone_type": "support|resistance|breakout|none",
  "zone_price_high": 0.0,
  "zone_price_low": 0.0,
  "zone_coordinates": {{"x1": 0, "y1": 0, "x2": 0, "y2": 0}},
  "momentum": "strong|moderate|weak",
  "confidence": 0.0,
  "reasoning": "Brief explanation"
}}"""


def build_scalping_entry_prompt(
    pair: str,
    settings: StrategySettings,
    zones: ZoneSettings,
    prior: Optional[TimeframeResult] = None,
) -> str:
    """5-minute confirmation prompt, biased toward the 15-minute zone."""
    _require_pair(pair)
    allowed = "|".join(settings.patterns)
    band = _price_band(prior)
    return f"""You are analysing a {pair} 5-minute chart for scalping entry confirmation.
{_prior_context(prior, "15-MIN")}
Follow these steps:

1. CONFIRMATION PATTERN
   - Scan for {_expected_bias(prior)} patterns. Allowed: {', '.join(settings.patterns)}, none.
   - Prefer the last 10-20 candles, but keep older patterns that sit in {band}.

2. PRICE ALIGNMENT
   - Set inside_primary_zone to true if the pattern's price range overlaps {band}.

3. TIMING
   - entry_timing: "immediate" within the last 5-10 candles, "wait" if still forming,
     "expired" if older than 20 candles.

4. TIGHT ENTRY ZONE
   - Mark {_zone_style_words(settings.zone_style)} with exact pixel coordinates and prices.
   - The zone price width MUST be within {zones.min_pips:g}-{zones.max_pips:g} pips; if wider,
     narrow it to the core overlap with the 15-minute zone.

Return ONLY valid JSON:
{{
  "pair": "{pair}",
  "timeframe": "5min",
  "pattern": "{allowed}|none",
  "zone_coordinates": {{"x1": 0, "y1": 0, "x2": 0, "y2": 0}},
  "zone_price_high": 0.0,
  "zone_price_low": 0.0,
  "inside_primary_zone": true,
  "entry_timing": "immediate|wait|expired",
  "confidence": 0.0,
  "reasoning": "Brief explanation"
}}"""
