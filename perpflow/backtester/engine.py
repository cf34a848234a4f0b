"""
Core backtesting engine: candle-by-candle simulation loop.

Architecture
~~~~~~~~~~~~
The engine orchestrates data validation, signal generation, position
lifecycle, cost accounting and result scoring.  Each concern lives in its
own module and the engine merely coordinates them::

    DataValidator ──▶ loop ──▶ PositionManager ──▶ MetricsCalculator ──▶ validate_results
                      ▲   │
                 Strategy ◀┘

Per candle the loop

1. estimates trailing volatility (drives slippage),
2. applies protective exits (stop loss / take profit) to every open position,
3. asks the strategy for signals against the *current* open positions,
4. applies exit signals first, then entry signals (subject to capacity),
5. records an equity point for every closed trade.

After the last candle every remaining position is force-closed with
``END_OF_PERIOD`` and a terminal equity point is appended.  No entry is
opened on the last candle, so every trade has ``entry_time < exit_time``.

The loop is synchronous and deterministic: identical inputs always produce
identical trades.

Usage
-----
>>> from perpflow.backtester import BacktestConfig, BacktestEngine
>>> engine = BacktestEngine(BacktestConfig(strategy="fundingRateExtreme"))
>>> result = engine.run(dataset)
>>> print(result.summary())
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from loguru import logger
from tqdm import tqdm

from perpflow import configuration as cfg
from perpflow.exceptions import DataValidationError
from perpflow.backtester.costs import CostCalculator
from perpflow.backtester.data_validation import DataValidator
from perpflow.backtester.metrics import BacktestMetrics, MetricsCalculator
from perpflow.backtester.models import (
    BacktestConfig,
    EquityPoint,
    ExitReason,
    MarketDataset,
    SignalType,
    Trade,
)
from perpflow.backtester.positions import PositionManager
from perpflow.backtester.scoring import ValidationResult, validate_results
from perpflow.backtester.sources import MarketDataSource
from perpflow.backtester.strategies import Strategy, create_strategy
from perpflow.backtester.strategies.base import find_open_position


# ======================================================================== #
#  Result container                                                        #
# ======================================================================== #

@dataclass
class BacktestResult:
    """
    Container returned by ``BacktestEngine.run()``.

    Attributes
    ----------
    config : BacktestConfig
        The configuration used for this run.
    metrics : BacktestMetrics
        Aggregated performance statistics.
    trades : list[Trade]
        Closed trades in chronological order.
    equity_curve : list[EquityPoint]
    validation : ValidationResult
        Trustworthiness verdict.
    start_time, end_time : int
        Wall-clock epoch milliseconds of the run.
    duration : int
        ``end_time - start_time`` in milliseconds.
    """
    config: BacktestConfig
    metrics: BacktestMetrics = field(default_factory=BacktestMetrics)
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    validation: ValidationResult = field(default_factory=lambda: ValidationResult(passed=False))
    start_time: int = 0
    end_time: int = 0
    duration: int = 0

    @property
    def trades_df(self) -> pd.DataFrame:
        """Trades in tabular form for analysis / export."""
        if not self.trades:
            return pd.DataFrame()
        rows = []
        for t in self.trades:
            row = dataclasses.asdict(t)
            row["side"] = t.side.value
            row["exit_reason"] = t.exit_reason.value
            row["entry_datetime"] = pd.to_datetime(t.entry_time, unit="ms", utc=True)
            row["exit_datetime"] = pd.to_datetime(t.exit_time, unit="ms", utc=True)
            rows.append(row)
        return pd.DataFrame(rows)

    @property
    def equity_df(self) -> pd.DataFrame:
        df = pd.DataFrame(
            [(p.timestamp, p.equity, p.pnl) for p in self.equity_curve],
            columns=["timestamp", "equity", "pnl"],
        )
        df["datetime"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True)
        return df

    def to_dict(self) -> Dict[str, Any]:
        """Plain, JSON-friendly representation (enums by value, dates as ISO strings)."""
        return {
            "config": _plain(dataclasses.asdict(self.config)),
            "metrics": _plain(dataclasses.asdict(self.metrics)),
            "trades": [_plain(dataclasses.asdict(t)) for t in self.trades],
            "equity_curve": [_plain(dataclasses.asdict(p)) for p in self.equity_curve],
            "validation": self.validation.to_dict(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
        }

    def summary(self) -> str:
        """Print and return the performance summary with the validation verdict."""
        verdict = "PASSED" if self.validation.passed else "FAILED"
        lines = [
            self.metrics.summary(),
            f"  Validation          : {verdict} (score {self.validation.score}/100)",
        ]
        for flag in self.validation.red_flags:
            lines.append(f"    [red flag] {flag.value}")
        for warning in self.validation.warnings:
            lines.append(f"    [warning]  {warning.message}")
        s = "\n".join(lines)
        print(s)
        return s


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {(k.value if isinstance(k, enum.Enum) else k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, np.generic):
        return value.item()
    return value


# ======================================================================== #
#  Engine                                                                  #
# ======================================================================== #

class BacktestEngine:
    """
    Deterministic candle-by-candle backtesting engine.

    Each engine owns a private ``PositionManager`` and ``CostCalculator``;
    independent engines share no mutable state.

    Parameters
    ----------
    config : BacktestConfig
        Instrument, period, strategy, risk and cost configuration.
    strategy : Strategy | None
        Signal generator.  Defaults to the default-parameter instance of
        ``config.strategy``.
    progress_bar : bool
        Show ``tqdm`` progress bar during the loop.

    Examples
    --------
    >>> engine = BacktestEngine(config, strategy=FundingRateExtremeStrategy(extreme_threshold=0.001))
    >>> result = engine.run(dataset)
    >>> result.validation.passed
    """

    def __init__(
        self,
        config: BacktestConfig,
        strategy: Optional[Strategy] = None,
        progress_bar: bool = False,
    ) -> None:
        self.config = config
        self.strategy = strategy if strategy is not None else create_strategy(config.strategy)
        self.progress_bar = progress_bar

        self._positions = PositionManager(config.risk_config, config.cost_config)
        self._costs = CostCalculator(config.cost_config)
        self._metrics = MetricsCalculator()
        self._validator = DataValidator()

    # ------------------------------------------------------------------ #
    #  Public API                                                         #
    # ------------------------------------------------------------------ #

    def run_from(self, source: MarketDataSource) -> BacktestResult:
        """Load the configured instrument and period from ``source`` and run."""
        dataset = source.load(self.config.instrument, self.config.start_date, self.config.end_date)
        return self.run(dataset)

    def run(self, dataset: MarketDataset) -> BacktestResult:
        """
        Execute the backtest.

        Parameters
        ----------
        dataset : MarketDataset
            Caller-owned market data; it is validated first and never mutated.

        The equity curve starts at the earlier of ``config.start_date`` and the
        first candle, so a start date well before the data adds that idle
        stretch to the drawdown duration.

        Returns
        -------
        BacktestResult

        Raises
        ------
        DataValidationError
            If the dataset fails validation.  No simulation is attempted.
        """
        started = int(time.time() * 1000)

        # --- Validation gate ---
        report = self._validator.validate_market_data(dataset, interval_ms=self.config.interval_ms)
        if not report.valid:
            logger.warning(f"Data validation failed with {len(report.errors)} error(s)")
            raise DataValidationError(report.errors, report.warnings)
        if report.warnings:
            logger.warning(f"Data validation produced {len(report.warnings)} warning(s)")
            for message in report.warnings:
                logger.debug(message)

        data = report.sanitized_dataset
        logger.info(
            f"Starting backtest: {self.strategy.name} on {self.config.instrument} "
            f"({len(data.candles)} candles, interval {self.config.interval})"
        )

        trades, equity_curve = self._simulate(data)

        # --- Metrics & verdict ---
        capital = self.config.risk_config.initial_capital
        metrics = self._metrics.calculate_metrics(trades, equity_curve, capital, candles=data.candles)
        validation = validate_results(metrics)

        finished = int(time.time() * 1000)
        logger.info(
            f"Backtest completed: {metrics.total_trades} trades, "
            f"{metrics.win_rate:.1%} win rate, {metrics.total_pnl_percent:.2f}% return, "
            f"score {validation.score}"
        )

        return BacktestResult(
            config=self.config,
            metrics=metrics,
            trades=trades,
            equity_curve=equity_curve,
            validation=validation,
            start_time=started,
            end_time=finished,
            duration=finished - started,
        )

    # ------------------------------------------------------------------ #
    #  Simulation loop                                                    #
    # ------------------------------------------------------------------ #

    def _simulate(self, data: MarketDataset):
        self._positions.reset()

        candles = data.candles
        closes = data.closes
        funding_ts = data.funding_timestamps
        funding_values = data.funding_values
        last = len(candles) - 1

        equity = self.config.risk_config.initial_capital
        trades: List[Trade] = []
        equity_curve = [EquityPoint(min(self.config.start_ms, candles[0].timestamp), equity, 0.0)]

        def funding_between(start: int, end: int) -> np.ndarray:
            lo = np.searchsorted(funding_ts, start, side="left")
            hi = np.searchsorted(funding_ts, end, side="right")
            return funding_values[lo:hi]

        def book(trade: Optional[Trade]) -> None:
            nonlocal equity
            if trade is None:
                return
            trades.append(trade)
            equity += trade.pnl
            equity_curve.append(EquityPoint(trade.exit_time, equity, trade.pnl))

        iterator = tqdm(range(len(candles)), desc="Backtesting", disable=not self.progress_bar)

        for i in iterator:
            candle = candles[i]
            price = candle.close
            now = candle.timestamp

            volatility = self._costs.calculate_volatility(closes[max(0, i - cfg.VOLATILITY_PERIOD):i + 1])

            # --- Protective exits ---
            for position in self._positions.open_positions:
                reason = self._positions.check_exit_conditions(position, price)
                if reason is not None:
                    book(self._positions.close_position(
                        position.id, price, now, reason,
                        funding_between(position.entry_time, now), volatility,
                    ))

            # --- Strategy signals ---
            signals = self.strategy.generate_signals(data, i, self._positions.open_positions)

            for signal in signals:
                if signal.type != SignalType.EXIT:
                    continue
                position = find_open_position(self._positions.open_positions, signal.instrument)
                if position is not None:
                    book(self._positions.close_position(
                        position.id, price, now, ExitReason.SIGNAL,
                        funding_between(position.entry_time, now), volatility,
                    ))

            if i == last:
                continue
            for signal in signals:
                if signal.type == SignalType.ENTRY:
                    self._positions.open_position(signal, price, equity, volatility)

        # --- End of period ---
        final = candles[-1]
        final_volatility = self._costs.calculate_volatility(closes[-cfg.VOLATILITY_PERIOD:])
        for trade in self._positions.close_all_positions(
            final.close, final.timestamp, data.funding_rates, final_volatility
        ):
            book(trade)

        equity_curve.append(EquityPoint(final.timestamp, equity, 0.0))
        return trades, equity_curve
