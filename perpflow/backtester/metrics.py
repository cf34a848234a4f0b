"""
Post-trade performance analytics.

Computes the performance report of a run from its closed ``Trade`` records
and its equity curve.

Conventions
-----------
* A trade is a **win** when its net ``pnl > 0``; everything else (including
  break-even) counts as a loss.
* Period returns are taken between consecutive equity points.  Sharpe and
  Sortino are annualised with ``sqrt(365)`` as if every step were one day of
  24/7 trading.
* Ratios that would divide by zero collapse to ``0`` or, where the numerator
  is strictly favourable, to the sentinel ``999``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from perpflow import configuration as cfg
from perpflow.backtester.models import Candle, EquityPoint, MarketRegime, Trade


# ---------------------------------------------------------------------------
# Metrics data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RegimeStats:
    """Performance of the trades entered under one market regime."""
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    total_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0


@dataclass(frozen=True, slots=True)
class BacktestMetrics:
    """
    Comprehensive performance report.

    Attributes
    ----------
    total_trades, winning_trades, losing_trades : int
    win_rate : float
        ``winning / total`` (0–1 scale).
    total_pnl : float
        Sum of net trade PnL.
    total_pnl_percent : float
        ``total_pnl / initial_capital * 100``.
    sharpe_ratio, sortino_ratio, calmar_ratio : float
    max_drawdown : float
        Largest peak-to-trough decline of the equity curve (dollars).
    max_drawdown_percent : float
        Same as a fraction of the governing peak, in ``[0, 1]``.
    max_drawdown_duration : float
        Days from the governing peak to the deepest point.
    profit_factor : float
        ``gross_profit / gross_loss`` (999 when there are no losses).
    avg_win, avg_loss, largest_win, largest_loss : float
        Loss figures are reported as positive magnitudes.
    avg_win_percent, avg_loss_percent : float
        Average win / loss as a percentage of initial capital.
    win_streak, loss_streak : int
    avg_holding_time : float
        Hours.
    total_fees, total_slippage, total_funding, total_costs : float
    expectancy : float
        Average net PnL per trade.
    risk_reward_ratio : float
        ``avg_win / avg_loss``.
    bull_performance, bear_performance, sideways_performance : RegimeStats
    """
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0

    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    max_drawdown_duration: float = 0.0

    profit_factor: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    avg_win_percent: float = 0.0
    avg_loss_percent: float = 0.0

    win_streak: int = 0
    loss_streak: int = 0
    avg_holding_time: float = 0.0

    total_fees: float = 0.0
    total_slippage: float = 0.0
    total_funding: float = 0.0
    total_costs: float = 0.0

    bull_performance: RegimeStats = field(default_factory=RegimeStats)
    bear_performance: RegimeStats = field(default_factory=RegimeStats)
    sideways_performance: RegimeStats = field(default_factory=RegimeStats)

    expectancy: float = 0.0
    risk_reward_ratio: float = 0.0

    @property
    def regime_performance(self) -> Dict[MarketRegime, RegimeStats]:
        return {
            MarketRegime.BULL: self.bull_performance,
            MarketRegime.BEAR: self.bear_performance,
            MarketRegime.SIDEWAYS: self.sideways_performance,
        }

    # ------------------------------------------------------------------ #
    #  Pretty printing                                                    #
    # ------------------------------------------------------------------ #

    def summary(self) -> str:
        """Return a formatted multi-line summary string."""
        lines = [
            "=" * 60,
            "  BACKTEST PERFORMANCE REPORT",
            "=" * 60,
            f"  Total Trades        : {self.total_trades}",
            f"  Winning Trades      : {self.winning_trades}",
            f"  Losing Trades       : {self.losing_trades}",
            f"  Win Rate            : {self.win_rate:.2%}",
            f"  Win / Loss Streak   : {self.win_streak} / {self.loss_streak}",
            "-" * 60,
            f"  Total PnL           : {self.total_pnl:>12.2f}",
            f"  Total PnL (%)       : {self.total_pnl_percent:>12.2f}",
            f"  Profit Factor       : {self.profit_factor:>12.2f}",
            f"  Expectancy          : {self.expectancy:>12.2f}",
            f"  Avg Win             : {self.avg_win:>12.2f}",
            f"  Avg Loss            : {self.avg_loss:>12.2f}",
            f"  Largest Win         : {self.largest_win:>12.2f}",
            f"  Largest Loss        : {self.largest_loss:>12.2f}",
            f"  Avg Holding (h)     : {self.avg_holding_time:>12.2f}",
            "-" * 60,
            f"  Sharpe Ratio (ann.) : {self.sharpe_ratio:>12.4f}",
            f"  Sortino Ratio       : {self.sortino_ratio:>12.4f}",
            f"  Calmar Ratio        : {self.calmar_ratio:>12.4f}",
            f"  Max Drawdown ($)    : {self.max_drawdown:>12.2f}",
            f"  Max Drawdown (%)    : {self.max_drawdown_percent:>12.2%}",
            f"  Max DD Duration (d) : {self.max_drawdown_duration:>12.2f}",
            "-" * 60,
            f"  Fees                : {self.total_fees:>12.2f}",
            f"  Slippage            : {self.total_slippage:>12.2f}",
            f"  Funding             : {self.total_funding:>12.2f}",
            f"  Total Costs         : {self.total_costs:>12.2f}",
            "-" * 60,
            "  Regimes:",
        ]
        for regime, stats in self.regime_performance.items():
            lines.append(
                f"    {regime.value:<10s}: {stats.total_trades:>4d} trades, "
                f"pnl {stats.total_pnl:>10.2f}, PF {stats.profit_factor:.2f}"
            )
        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dataframe(self) -> pd.DataFrame:
        """Single-row DataFrame for easy export / concatenation."""
        d = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            if isinstance(value, RegimeStats):
                prefix = name.replace("_performance", "")
                d.update({f"{prefix}_{k}": getattr(value, k) for k in value.__dataclass_fields__})
            else:
                d[name] = value
        return pd.DataFrame([d])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _profit_factor(pnls: np.ndarray) -> float:
    gross_profit = float(pnls[pnls > 0].sum())
    gross_loss = float(np.abs(pnls[pnls <= 0]).sum())
    if gross_loss > 0:
        return gross_profit / gross_loss
    return cfg.RATIO_SENTINEL if gross_profit > 0 else 0.0


def _period_returns(equity_curve: Sequence[EquityPoint]) -> np.ndarray:
    equity = np.array([p.equity for p in equity_curve], dtype=np.float64)
    if len(equity) < 2:
        return np.array([], dtype=np.float64)
    prev = equity[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        returns = np.where(prev != 0, np.diff(equity) / prev, 0.0)
    return returns


# ---------------------------------------------------------------------------
# Computation
# ---------------------------------------------------------------------------

class MetricsCalculator:
    """
    Stateless calculator for ``BacktestMetrics``.

    Parameters
    ----------
    annualisation_factor : float
        Periods per year used to annualise Sharpe / Sortino (365 for 24/7 crypto).
    regime_lookback : int
        Candles in the trailing window used by ``identify_regime``.
    """

    def __init__(
        self,
        annualisation_factor: float = cfg.ANNUALISATION_FACTOR,
        regime_lookback: int = cfg.REGIME_LOOKBACK,
    ) -> None:
        self.annualisation_factor = annualisation_factor
        self.regime_lookback = regime_lookback

    def calculate_metrics(
        self,
        trades: Sequence[Trade],
        equity_curve: Sequence[EquityPoint],
        initial_capital: float,
        candles: Optional[Sequence[Candle]] = None,
    ) -> BacktestMetrics:
        """
        Compute ``BacktestMetrics`` from closed trades and the equity curve.

        Parameters
        ----------
        trades : sequence of Trade
            Chronologically ordered.
        equity_curve : sequence of EquityPoint
        initial_capital : float
        candles : sequence of Candle, optional
            When given, trades are also broken down by market regime.

        Returns
        -------
        BacktestMetrics
        """
        n = len(trades)
        pnls = np.array([t.pnl for t in trades], dtype=np.float64)

        win_mask = pnls > 0
        wins = pnls[win_mask]
        losses = pnls[~win_mask]

        total_pnl = float(pnls.sum()) if n else 0.0
        avg_win = float(wins.mean()) if len(wins) else 0.0
        avg_loss = float(abs(losses.mean())) if len(losses) else 0.0

        max_dd, max_dd_pct, max_dd_days = self.calculate_drawdown(equity_curve, initial_capital)
        win_streak, loss_streak = self.calculate_streaks(trades)

        total_fees = float(sum(t.fees for t in trades))
        total_slippage = float(sum(t.slippage for t in trades))
        total_funding = float(sum(t.funding for t in trades))

        regimes: Dict[MarketRegime, RegimeStats] = {}
        if candles is not None:
            regimes = self.calculate_regime_performance(trades, candles, initial_capital)

        return BacktestMetrics(
            total_trades=n,
            winning_trades=int(win_mask.sum()),
            losing_trades=int((~win_mask).sum()),
            win_rate=float(win_mask.sum()) / n if n else 0.0,
            total_pnl=total_pnl,
            total_pnl_percent=total_pnl / initial_capital * 100,
            sharpe_ratio=self.calculate_sharpe_ratio(equity_curve),
            sortino_ratio=self.calculate_sortino_ratio(equity_curve),
            calmar_ratio=(total_pnl / initial_capital) / max_dd_pct if max_dd_pct > 0 else 0.0,
            max_drawdown=max_dd,
            max_drawdown_percent=max_dd_pct,
            max_drawdown_duration=max_dd_days,
            profit_factor=_profit_factor(pnls),
            avg_win=avg_win,
            avg_loss=avg_loss,
            largest_win=float(wins.max()) if len(wins) else 0.0,
            largest_loss=float(abs(losses.min())) if len(losses) else 0.0,
            avg_win_percent=avg_win / initial_capital * 100,
            avg_loss_percent=avg_loss / initial_capital * 100,
            win_streak=win_streak,
            loss_streak=loss_streak,
            avg_holding_time=float(np.mean([t.holding_time for t in trades])) if n else 0.0,
            total_fees=total_fees,
            total_slippage=total_slippage,
            total_funding=total_funding,
            total_costs=total_fees + total_slippage + total_funding,
            bull_performance=regimes.get(MarketRegime.BULL, RegimeStats()),
            bear_performance=regimes.get(MarketRegime.BEAR, RegimeStats()),
            sideways_performance=regimes.get(MarketRegime.SIDEWAYS, RegimeStats()),
            expectancy=total_pnl / n if n else 0.0,
            risk_reward_ratio=avg_win / avg_loss if avg_loss > 0 else 0.0,
        )

    # --- Risk-adjusted returns ---

    def calculate_sharpe_ratio(self, equity_curve: Sequence[EquityPoint]) -> float:
        """Annualised mean / population std of period returns; 0 when flat."""
        returns = _period_returns(equity_curve)
        if len(returns) == 0:
            return 0.0
        std = float(np.std(returns))
        if std == 0:
            return 0.0
        return float(np.mean(returns)) / std * np.sqrt(self.annualisation_factor)

    def calculate_sortino_ratio(self, equity_curve: Sequence[EquityPoint]) -> float:
        """
        Annualised mean / downside deviation of period returns.

        The downside deviation is the root-mean-square of the negative
        returns only.  With no negative returns the ratio is the sentinel
        when the mean is positive, else 0.
        """
        returns = _period_returns(equity_curve)
        if len(returns) == 0:
            return 0.0
        mean = float(np.mean(returns))
        negative = returns[returns < 0]
        if len(negative) == 0:
            return cfg.RATIO_SENTINEL if mean > 0 else 0.0
        downside = float(np.sqrt(np.mean(negative ** 2)))
        if downside == 0:
            return 0.0
        return mean / downside * np.sqrt(self.annualisation_factor)

    # --- Drawdown ---

    @staticmethod
    def calculate_drawdown(
        equity_curve: Sequence[EquityPoint],
        initial_capital: float,
    ) -> Tuple[float, float, float]:
        """
        Largest peak-to-trough decline.

        The running peak starts at ``initial_capital``.

        Returns
        -------
        tuple
            ``(max_drawdown, max_drawdown_percent, max_drawdown_duration_days)``.
        """
        if not equity_curve:
            return 0.0, 0.0, 0.0

        peak = initial_capital
        peak_time = equity_curve[0].timestamp
        max_dd = 0.0
        max_dd_pct = 0.0
        max_duration = 0.0

        for point in equity_curve:
            if point.equity > peak:
                peak = point.equity
                peak_time = point.timestamp
                continue
            drawdown = peak - point.equity
            if drawdown > max_dd:
                max_dd = drawdown
                max_dd_pct = min(drawdown / peak, 1.0) if peak > 0 else 0.0
                duration = (point.timestamp - peak_time) / cfg.MS_PER_DAY
                max_duration = max(max_duration, duration)

        return max_dd, max_dd_pct, max_duration

    @staticmethod
    def calculate_streaks(trades: Sequence[Trade]) -> Tuple[int, int]:
        """Longest consecutive ``(winning, losing)`` runs in trade order."""
        win_streak = loss_streak = 0
        current_win = current_loss = 0
        for trade in trades:
            if trade.pnl > 0:
                current_win += 1
                current_loss = 0
                win_streak = max(win_streak, current_win)
            else:
                current_loss += 1
                current_win = 0
                loss_streak = max(loss_streak, current_loss)
        return win_streak, loss_streak

    # --- Regimes ---

    def identify_regime(
        self,
        candles: Sequence[Candle],
        index: int,
        lookback: Optional[int] = None,
    ) -> MarketRegime:
        """
        Classify the market over the ``lookback`` candles preceding ``index``.

        BULL when drift > +5 % and mean absolute return < 3 %, BEAR when
        drift < −5 % under the same volatility cap, SIDEWAYS otherwise.
        """
        lookback = self.regime_lookback if lookback is None else lookback
        if index < lookback or lookback < 2:
            return MarketRegime.SIDEWAYS

        closes = np.array([c.close for c in candles[index - lookback:index]], dtype=np.float64)
        drift = (closes[-1] - closes[0]) / closes[0]
        avg_volatility = float(np.mean(np.abs(np.diff(closes) / closes[:-1])))

        if drift > cfg.REGIME_TREND_PCT and avg_volatility < cfg.REGIME_MAX_VOLATILITY:
            return MarketRegime.BULL
        if drift < -cfg.REGIME_TREND_PCT and avg_volatility < cfg.REGIME_MAX_VOLATILITY:
            return MarketRegime.BEAR
        return MarketRegime.SIDEWAYS

    def calculate_regime_performance(
        self,
        trades: Sequence[Trade],
        candles: Sequence[Candle],
        initial_capital: float,
    ) -> Dict[MarketRegime, RegimeStats]:
        """Group trades by the regime at their entry candle and summarise each group."""
        timestamps = np.array([c.timestamp for c in candles], dtype=np.int64)
        grouped: Dict[MarketRegime, List[Trade]] = {regime: [] for regime in MarketRegime}

        for trade in trades:
            idx = int(np.searchsorted(timestamps, trade.entry_time, side="left"))
            if idx >= len(candles):
                continue
            grouped[self.identify_regime(candles, idx)].append(trade)

        return {
            regime: self._regime_stats(regime_trades, initial_capital)
            for regime, regime_trades in grouped.items()
        }

    def _regime_stats(self, trades: List[Trade], initial_capital: float) -> RegimeStats:
        if not trades:
            return RegimeStats()

        pnls = np.array([t.pnl for t in trades], dtype=np.float64)
        wins = pnls[pnls > 0]
        losses = pnls[pnls <= 0]
        total = float(pnls.sum())

        # Trade-level Sharpe on return-on-margin
        returns = np.array([t.pnl_percent for t in trades], dtype=np.float64) / 100
        std = float(np.std(returns))
        sharpe = float(np.mean(returns)) / std * np.sqrt(self.annualisation_factor) if std > 0 else 0.0

        return RegimeStats(
            total_pnl=total,
            total_pnl_percent=total / initial_capital * 100,
            total_trades=len(trades),
            win_rate=len(wins) / len(trades),
            avg_win=float(wins.mean()) if len(wins) else 0.0,
            avg_loss=float(abs(losses.mean())) if len(losses) else 0.0,
            profit_factor=_profit_factor(pnls),
            sharpe_ratio=sharpe,
        )
