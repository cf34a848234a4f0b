from perpflow.backtester import (
    BacktestConfig,
    BacktestEngine,
    BacktestResult,
    MarketDataset,
    RiskConfig,
    CostConfig,
    StrategyType,
)

from perpflow.exceptions import (
    PerpflowError,
    DataValidationError,
    ConfigurationError,
    InsufficientDataError
)
