"""
Signal generators.  Each strategy is an independent type satisfying the
``Strategy`` protocol; ``create_strategy`` maps a configured
``StrategyType`` to a default-parameter instance.
"""

from typing import Union

from perpflow.backtester.models import StrategyType, parse_enum
from perpflow.backtester.strategies.base import Strategy
from perpflow.backtester.strategies.cross_asset_correlation import (
    CrossAssetCorrelationStrategy,
    return_correlation,
)
from perpflow.backtester.strategies.funding_rate_extreme import FundingRateExtremeStrategy
from perpflow.backtester.strategies.liquidation_clusters import LiquidationClustersStrategy
from perpflow.backtester.strategies.oi_expansion import OIExpansionStrategy


STRATEGIES = {
    StrategyType.FUNDING_RATE_EXTREME: FundingRateExtremeStrategy,
    StrategyType.OI_EXPANSION: OIExpansionStrategy,
    StrategyType.LIQUIDATION_CLUSTERS: LiquidationClustersStrategy,
    StrategyType.CROSS_ASSET_CORRELATION: CrossAssetCorrelationStrategy,
}


def create_strategy(strategy_type: Union[StrategyType, str]) -> Strategy:
    """Instantiate the strategy registered for ``strategy_type``."""
    if not isinstance(strategy_type, StrategyType):
        strategy_type = parse_enum(StrategyType, strategy_type)
    return STRATEGIES[strategy_type]()


__all__ = [
    "Strategy",
    "STRATEGIES",
    "create_strategy",
    "FundingRateExtremeStrategy",
    "OIExpansionStrategy",
    "LiquidationClustersStrategy",
    "CrossAssetCorrelationStrategy",
    "return_correlation",
]
