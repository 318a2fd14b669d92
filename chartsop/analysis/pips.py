"""Pip-size lookup and zone-width check — pure functions, no side effects."""

from dataclasses import dataclass
from typing import Optional


# Keyed by the normalised symbol (``"EURUSD"``).  Gold is measured in
# 0.1 increments so that a 20–30 pip zone spans $2–$3.
INSTRUMENT_PIP_VALUES: dict[str, float] = {
    "EURUSD": 0.0001,
    "GBPUSD": 0.0001,
    "USDJPY": 0.01,
    "USDCHF": 0.0001,
    "AUDUSD": 0.0001,
    "NZDUSD": 0.0001,
    "USDCAD": 0.0001,
    "XAUUSD": 0.1,
    "XAGUSD": 0.01,
}

_DEFAULT_PIP = 0.0001


@dataclass(frozen=True)
class ZoneSizeCheck:
    """Result of a pip-width check."""

    valid: bool
    actual_pips: float
    error: Optional[str] = None


def normalize_pair(pair: str) -> str:
    """``"eur_usd"``, ``"EUR/USD"`` and ``"EURUSD"`` all become ``"EURUSD"``."""
    return "".join(ch for ch in str(pair).upper() if ch.isalnum())


def pip_size(pair: Optional[str]) -> float:
    """Return the pip size for *pair*, defaulting to a major FX pair."""
    if not pair:
        return _DEFAULT_PIP
    symbol = normalize_pair(pair)
    if symbol in INSTRUMENT_PIP_VALUES:
        return INSTRUMENT_PIP_VALUES[symbol]
    if "JPY" in symbol:
        return 0.01
    if "XAU" in symbol:
        return 0.1
    if "XAG" in symbol:
        return 0.01
    return _DEFAULT_PIP


def price_width_to_pips(pair: str, price_width: float) -> float:
    return price_width / pip_size(pair)


def validate_zone_size(
    pair: str,
    price_high: float,
    price_low: float,
    min_pips: float = 20,
    max_pips: float = 30,
) -> ZoneSizeCheck:
    """Check that a zone's price width lies within ``[min_pips, max_pips]``.

    Args:
        pair: Instrument, e.g. ``"EURUSD"`` or ``"XAU_USD"``.
        price_high: Upper zone boundary.
        price_low: Lower zone boundary.
        min_pips: Narrowest acceptable zone.
        max_pips: Widest acceptable zone.
    """
    if not price_high or not price_low or price_high <= price_low:
        return ZoneSizeCheck(valid=False, actual_pips=0.0, error="Invalid zone prices")

    # Rounded so that 1.1050 - 1.1000 counts as exactly 50 pips.
    actual = round(price_width_to_pips(pair, price_high - price_low), 6)

    if actual < min_pips:
        return ZoneSizeCheck(
            valid=False,
            actual_pips=actual,
            error=f"Zone too narrow: {actual:.1f} pips (minimum: {min_pips} pips)",
        )
    if actual > max_pips:
        return ZoneSizeCheck(
            valid=False,
            actual_pips=actual,
            error=f"Zone too wide: {actual:.1f} pips (maximum: {max_pips} pips)",
        )
    return ZoneSizeCheck(valid=True, actual_pips=actual)
