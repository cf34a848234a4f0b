"""
Walk-forward analysis.

The candle history is cut into ``n_windows`` consecutive, non-overlapping
segments.  Each segment is split chronologically into a train part (the
first ``train_fraction`` of its candles) and a test part.  Both parts are
backtested independently with the same configuration and strategy.

A window's ``degradation`` is the relative fall of the Sharpe ratio from
train to test, ``max(0, (train - test) / |train|)`` (0 when the train
Sharpe is 0).  The analysis is ``consistent`` when the average degradation
stays within ``MAX_TRAIN_TEST_DIFF``.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from loguru import logger

from perpflow import configuration as cfg
from perpflow.exceptions import ConfigurationError, InsufficientDataError
from perpflow.backtester.engine import BacktestEngine
from perpflow.backtester.metrics import BacktestMetrics
from perpflow.backtester.models import BacktestConfig, MarketDataset
from perpflow.backtester.strategies import Strategy


@dataclass(frozen=True)
class WalkForwardWindow:
    train_period: Tuple[dt.datetime, dt.datetime]
    test_period: Tuple[dt.datetime, dt.datetime]
    train_metrics: BacktestMetrics
    test_metrics: BacktestMetrics
    degradation: float


@dataclass(frozen=True)
class WalkForwardResult:
    windows: Tuple[WalkForwardWindow, ...]
    avg_degradation: float
    consistent: bool


def _to_datetime(ms: int) -> dt.datetime:
    return dt.datetime.fromtimestamp(ms / 1000, tz=dt.timezone.utc)


def sharpe_degradation(train: BacktestMetrics, test: BacktestMetrics) -> float:
    if train.sharpe_ratio == 0:
        return 0.0
    return max(0.0, (train.sharpe_ratio - test.sharpe_ratio) / abs(train.sharpe_ratio))


def run_walk_forward(
    config: BacktestConfig,
    dataset: MarketDataset,
    n_windows: int = 3,
    train_fraction: float = 0.7,
    strategy: Optional[Strategy] = None,
    min_candles: int = cfg.MIN_CANDLES,
) -> WalkForwardResult:
    """
    Run a walk-forward analysis of ``config`` over ``dataset``.

    Raises
    ------
    ConfigurationError
        If ``n_windows < 1`` or ``train_fraction`` is not in (0, 1).
    InsufficientDataError
        If any train or test part would hold fewer than ``min_candles`` candles.
    """
    if n_windows < 1:
        raise ConfigurationError(f"n_windows must be at least 1, got {n_windows}")
    if not 0 < train_fraction < 1:
        raise ConfigurationError(f"train_fraction must be in (0, 1), got {train_fraction}")

    timestamps = np.sort(dataset.candle_timestamps)
    bounds = np.linspace(0, len(timestamps), n_windows + 1).astype(int)

    parts = []
    for w in range(n_windows):
        lo, hi = int(bounds[w]), int(bounds[w + 1])
        split = lo + int((hi - lo) * train_fraction)
        if split - lo < min_candles or hi - split < min_candles:
            raise InsufficientDataError(
                f"Window {w + 1} has {split - lo} train / {hi - split} test candles "
                f"(minimum {min_candles} each)"
            )
        parts.append(((timestamps[lo], timestamps[split - 1]), (timestamps[split], timestamps[hi - 1])))

    windows: List[WalkForwardWindow] = []
    for w, (train_span, test_span) in enumerate(parts, start=1):
        train_metrics = _run_part(config, dataset, train_span, strategy)
        test_metrics = _run_part(config, dataset, test_span, strategy)
        degradation = sharpe_degradation(train_metrics, test_metrics)
        logger.info(
            f"Walk-forward window {w}/{n_windows}: train Sharpe {train_metrics.sharpe_ratio:.2f}, "
            f"test Sharpe {test_metrics.sharpe_ratio:.2f}, degradation {degradation:.1%}"
        )
        windows.append(WalkForwardWindow(
            train_period=(_to_datetime(train_span[0]), _to_datetime(train_span[1])),
            test_period=(_to_datetime(test_span[0]), _to_datetime(test_span[1])),
            train_metrics=train_metrics,
            test_metrics=test_metrics,
            degradation=degradation,
        ))

    avg = float(np.mean([w.degradation for w in windows]))
    return WalkForwardResult(
        windows=tuple(windows),
        avg_degradation=avg,
        consistent=avg <= cfg.MAX_TRAIN_TEST_DIFF,
    )


def _run_part(
    config: BacktestConfig,
    dataset: MarketDataset,
    span: Tuple[int, int],
    strategy: Optional[Strategy],
) -> BacktestMetrics:
    start, end = int(span[0]), int(span[1])
    part_config = dataclasses.replace(config, start_date=_to_datetime(start), end_date=_to_datetime(end))
    return BacktestEngine(part_config, strategy=strategy).run(dataset.between(start, end)).metrics
