"""Strategy registry — maps strategy names to SOP classes.

Used by the batch runner and the API to build a strategy for a job.
"""

from chartsop.config import Config
from chartsop.sop.base import SOPStrategyProtocol
from chartsop.sop.scalping import ScalpingSOP
from chartsop.sop.swing import SwingSOP


STRATEGY_REGISTRY: dict[str, type] = {
    "swing": SwingSOP,
    "scalping": ScalpingSOP,
}


def get_strategy(name: str, config: Config) -> SOPStrategyProtocol:
    """Look up and instantiate a strategy by registry key.

    Raises ``KeyError`` if the strategy name is not registered.
    """
    key = (name or "").lower()
    if key not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return STRATEGY_REGISTRY[key](config.strategy_settings(key), config.zones)
