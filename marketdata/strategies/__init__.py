"""
Upstream query strategies for the market data service.

Provides 2 strategies, in default priority order:
1. Postal Code Search - structured postal_code query
2. Location Search - free-text "address, zip" query
"""
from typing import List

from marketdata.strategies.base import (
    BaseQueryStrategy,
    QueryParams,
    StrategyResult,
)
from marketdata.strategies.postal_code_strategy import PostalCodeSearchStrategy
from marketdata.strategies.location_strategy import LocationSearchStrategy


def build_default_strategies(client, timeout_seconds=None) -> List[BaseQueryStrategy]:
    """Strategies in the order they should be attempted."""
    return [
        PostalCodeSearchStrategy(client, timeout_seconds=timeout_seconds),
        LocationSearchStrategy(client, timeout_seconds=timeout_seconds),
    ]


__all__ = [
    # Base
    "BaseQueryStrategy",
    "QueryParams",
    "StrategyResult",
    # Strategies
    "PostalCodeSearchStrategy",
    "LocationSearchStrategy",
    "build_default_strategies",
]
