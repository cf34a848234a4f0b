"""
Stress testing: re-run a backtest under hostile conditions.

Scenarios
---------
Costs x2
    Fees and slippage doubled.
Extreme funding
    Every funding observation tripled.
Flash crash
    The middle candle closes 15% lower (its low is extended to match).

A scenario passes when the stressed run still ends with a positive total
PnL.  ``degradation`` is the loss of total PnL relative to the unstressed
run, in percent of the unstressed total PnL's magnitude.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from loguru import logger

from perpflow.backtester.costs import CostCalculator
from perpflow.backtester.engine import BacktestEngine, BacktestResult
from perpflow.backtester.metrics import BacktestMetrics
from perpflow.backtester.models import BacktestConfig, MarketDataset
from perpflow.backtester.strategies import Strategy


COST_MULTIPLIER    = 2.0
FUNDING_MULTIPLIER = 3.0
FLASH_CRASH_DROP   = 0.15


@dataclass(frozen=True)
class StressTest:
    name: str
    description: str
    passed: bool
    original_metrics: BacktestMetrics
    stressed_metrics: BacktestMetrics
    degradation: float  # percent


@dataclass(frozen=True)
class StressTestResults:
    tests: Tuple[StressTest, ...]
    overall_passed: bool
    worst_case: StressTest


# ---------------------------------------------------------------------------
# Dataset / config transforms
# ---------------------------------------------------------------------------

def double_costs(config: BacktestConfig, dataset: MarketDataset) -> Tuple[BacktestConfig, MarketDataset]:
    stressed = CostCalculator(config.cost_config).apply_stress_multiplier(COST_MULTIPLIER)
    return dataclasses.replace(config, cost_config=stressed), dataset


def extreme_funding(config: BacktestConfig, dataset: MarketDataset) -> Tuple[BacktestConfig, MarketDataset]:
    rates = tuple(dataclasses.replace(f, rate=f.rate * FUNDING_MULTIPLIER) for f in dataset.funding_rates)
    return config, dataset.replace(funding_rates=rates)


def flash_crash(config: BacktestConfig, dataset: MarketDataset) -> Tuple[BacktestConfig, MarketDataset]:
    candles = list(dataset.candles)
    if not candles:
        return config, dataset
    mid = len(candles) // 2
    c = candles[mid]
    crashed = c.close * (1 - FLASH_CRASH_DROP)
    candles[mid] = dataclasses.replace(c, close=crashed, low=min(c.low, crashed))
    return config, dataset.replace(candles=tuple(candles))


SCENARIOS: List[Tuple[str, str, Callable]] = [
    ("Costs x2", "Fees and slippage doubled", double_costs),
    ("Extreme funding", "Funding rates tripled", extreme_funding),
    ("Flash crash", "15% drop on the middle candle", flash_crash),
]


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def _degradation(original: float, stressed: float) -> float:
    if original == 0:
        return 0.0
    return (original - stressed) / abs(original) * 100


def run_stress_tests(
    config: BacktestConfig,
    dataset: MarketDataset,
    base_result: Optional[BacktestResult] = None,
    strategy: Optional[Strategy] = None,
) -> StressTestResults:
    """
    Run every stress scenario against ``dataset``.

    Parameters
    ----------
    config : BacktestConfig
    dataset : MarketDataset
    base_result : BacktestResult | None
        Unstressed result; computed when not supplied.
    strategy : Strategy | None
        Strategy instance shared by every run (defaults to ``config.strategy``).

    Returns
    -------
    StressTestResults
    """
    if base_result is None:
        base_result = BacktestEngine(config, strategy=strategy).run(dataset)
    original = base_result.metrics

    tests: List[StressTest] = []
    for name, description, transform in SCENARIOS:
        stressed_config, stressed_data = transform(config, dataset)
        stressed = BacktestEngine(stressed_config, strategy=strategy).run(stressed_data).metrics
        test = StressTest(
            name=name,
            description=description,
            passed=stressed.total_pnl > 0,
            original_metrics=original,
            stressed_metrics=stressed,
            degradation=_degradation(original.total_pnl, stressed.total_pnl),
        )
        logger.info(f"Stress test '{name}': {'passed' if test.passed else 'failed'} "
                    f"(degradation {test.degradation:.1f}%)")
        tests.append(test)

    return StressTestResults(
        tests=tuple(tests),
        overall_passed=all(t.passed for t in tests),
        worst_case=max(tests, key=lambda t: t.degradation),
    )
