"""
backtester — Candle-by-candle backtesting engine for perpetual futures.

Architecture
~~~~~~~~~~~~
- **models**:          Data classes, enums, and type definitions (Candle, Signal, Position, Trade, …)
- **data_validation**: Market-data sanitation gate run before every simulation
- **costs**:           Pessimistic fee / slippage / funding model
- **strategies**:      Pluggable signal generators (Strategy protocol + four strategies)
- **positions**:       Position lifecycle and protective exits (stop loss / take profit)
- **metrics**:         Post-trade performance analytics (Sharpe, Sortino, drawdown, regimes, …)
- **scoring**:         Trustworthiness verdict (red flags, warnings, score)
- **engine**:          Core simulation loop
- **sources**:         Market-data source port (in-memory, CSV via polars)
- **stress**:          Stress-test scenarios
- **walk_forward**:    Walk-forward train / test analysis
- **examples**:        Ready-to-run usage examples on synthetic data

Quick start
~~~~~~~~~~~
>>> from perpflow.backtester import BacktestConfig, BacktestEngine
>>> engine = BacktestEngine(BacktestConfig(strategy="oiExpansion"))
>>> result = engine.run(dataset)
>>> result.summary()
"""

from perpflow.backtester.models import (
    PositionSide,
    OrderSide,
    SignalType,
    ExitReason,
    FundingAssumption,
    StrategyType,
    MarketRegime,
    Candle,
    FundingRate,
    OpenInterestPoint,
    LiquidationEvent,
    MarketDataset,
    Signal,
    Position,
    Trade,
    EquityPoint,
    RiskConfig,
    CostConfig,
    BacktestConfig,
)
from perpflow.backtester.data_validation import DataValidator, DatasetValidation, SeriesValidation
from perpflow.backtester.costs import CostCalculator
from perpflow.backtester.strategies import (
    Strategy,
    create_strategy,
    FundingRateExtremeStrategy,
    OIExpansionStrategy,
    LiquidationClustersStrategy,
    CrossAssetCorrelationStrategy,
)
from perpflow.backtester.positions import PositionManager
from perpflow.backtester.metrics import BacktestMetrics, RegimeStats, MetricsCalculator
from perpflow.backtester.scoring import (
    RedFlag,
    ValidationWarning,
    ValidationThresholds,
    ValidationResult,
    validate_results,
    apply_robustness_checks,
)
from perpflow.backtester.sources import MarketDataSource, InMemoryMarketDataSource, CsvMarketDataSource
from perpflow.backtester.engine import BacktestEngine, BacktestResult
from perpflow.backtester.stress import StressTest, StressTestResults, run_stress_tests
from perpflow.backtester.walk_forward import WalkForwardWindow, WalkForwardResult, run_walk_forward

__all__ = [
    # Models
    "PositionSide",
    "OrderSide",
    "SignalType",
    "ExitReason",
    "FundingAssumption",
    "StrategyType",
    "MarketRegime",
    "Candle",
    "FundingRate",
    "OpenInterestPoint",
    "LiquidationEvent",
    "MarketDataset",
    "Signal",
    "Position",
    "Trade",
    "EquityPoint",
    "RiskConfig",
    "CostConfig",
    "BacktestConfig",
    # Data validation
    "DataValidator",
    "DatasetValidation",
    "SeriesValidation",
    # Costs
    "CostCalculator",
    # Strategies
    "Strategy",
    "create_strategy",
    "FundingRateExtremeStrategy",
    "OIExpansionStrategy",
    "LiquidationClustersStrategy",
    "CrossAssetCorrelationStrategy",
    # Positions
    "PositionManager",
    # Metrics
    "BacktestMetrics",
    "RegimeStats",
    "MetricsCalculator",
    # Scoring
    "RedFlag",
    "ValidationWarning",
    "ValidationThresholds",
    "ValidationResult",
    "validate_results",
    "apply_robustness_checks",
    # Sources
    "MarketDataSource",
    "InMemoryMarketDataSource",
    "CsvMarketDataSource",
    # Engine
    "BacktestEngine",
    "BacktestResult",
    # Robustness
    "StressTest",
    "StressTestResults",
    "run_stress_tests",
    "WalkForwardWindow",
    "WalkForwardResult",
    "run_walk_forward",
]
