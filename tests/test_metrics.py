"""
Tests for post-trade analytics.

Run with: python -m pytest tests/test_metrics.py -v
"""

import numpy as np
import pytest

from perpflow.backtester.metrics import BacktestMetrics, MetricsCalculator, RegimeStats
from perpflow.backtester.models import EquityPoint, MarketRegime


HOUR = 3_600_000
DAY = 24 * HOUR
T0 = 1_704_067_200_000


def _curve(values, step=DAY):
    return [EquityPoint(T0 + i * step, v, 0.0) for i, v in enumerate(values)]


class TestTradeStatistics:

    def test_no_trades(self):
        m = MetricsCalculator().calculate_metrics([], _curve([10_000.0, 10_000.0]), 10_000.0)
        assert m.total_trades == 0
        assert m.win_rate == 0.0
        assert m.profit_factor == 0.0
        assert m.sharpe_ratio == 0.0
        assert m.sortino_ratio == 0.0
        assert m.calmar_ratio == 0.0

    def test_counts_and_averages(self, make_trade):
        trades = [make_trade(p) for p in (100.0, -50.0, 200.0, 0.0, -25.0)]
        m = MetricsCalculator().calculate_metrics(trades, _curve([10_000.0]), 10_000.0)

        assert m.total_trades == 5
        assert m.winning_trades == 2
        assert m.losing_trades == 3  # break-even counts as a loss
        assert m.win_rate == pytest.approx(0.4)
        assert m.total_pnl == pytest.approx(225.0)
        assert m.total_pnl_percent == pytest.approx(2.25)
        assert m.avg_win == pytest.approx(150.0)
        assert m.avg_loss == pytest.approx(25.0)
        assert m.largest_win == pytest.approx(200.0)
        assert m.largest_loss == pytest.approx(50.0)
        assert m.profit_factor == pytest.approx(300.0 / 75.0)
        assert m.expectancy == pytest.approx(45.0)
        assert m.risk_reward_ratio == pytest.approx(6.0)
        assert m.total_costs == pytest.approx(5 * 1.75)

    def test_profit_factor_sentinel(self, make_trade):
        m = MetricsCalculator().calculate_metrics([make_trade(10.0), make_trade(5.0)], _curve([1.0]), 10_000.0)
        assert m.profit_factor == 999.0

    def test_profit_factor_never_negative(self, make_trade):
        m = MetricsCalculator().calculate_metrics([make_trade(-10.0), make_trade(-5.0)], _curve([1.0]), 10_000.0)
        assert m.profit_factor == 0.0

    def test_streaks(self, make_trade):
        pnls = [1, 1, -1, 1, 1, 1, -1, -1, 0, 1]
        trades = [make_trade(float(p)) for p in pnls]
        assert MetricsCalculator.calculate_streaks(trades) == (3, 3)


class TestRiskAdjusted:

    def test_flat_curve(self):
        calc = MetricsCalculator()
        curve = _curve([10_000.0] * 10)
        assert calc.calculate_sharpe_ratio(curve) == 0.0
        assert calc.calculate_sortino_ratio(curve) == 0.0

    def test_sharpe_matches_definition(self):
        values = [10_000.0, 10_100.0, 10_050.0, 10_300.0, 10_200.0]
        returns = np.diff(values) / np.array(values[:-1])
        expected = returns.mean() / returns.std() * np.sqrt(365)
        assert MetricsCalculator().calculate_sharpe_ratio(_curve(values)) == pytest.approx(expected)

    def test_sortino_uses_downside_deviation(self):
        values = [10_000.0, 10_100.0, 10_050.0, 10_300.0, 10_200.0]
        returns = np.diff(values) / np.array(values[:-1])
        downside = np.sqrt(np.mean(returns[returns < 0] ** 2))
        expected = returns.mean() / downside * np.sqrt(365)
        assert MetricsCalculator().calculate_sortino_ratio(_curve(values)) == pytest.approx(expected)

    def test_sortino_without_losses(self):
        assert MetricsCalculator().calculate_sortino_ratio(_curve([100.0, 110.0, 120.0])) == 999.0

    def test_single_point(self):
        assert MetricsCalculator().calculate_sharpe_ratio(_curve([100.0])) == 0.0


class TestDrawdown:

    def test_peak_to_trough(self):
        curve = _curve([10_000.0, 11_000.0, 10_450.0, 9_900.0, 10_500.0])
        dd, pct, days = MetricsCalculator.calculate_drawdown(curve, 10_000.0)
        assert dd == pytest.approx(1_100.0)
        assert pct == pytest.approx(0.1)
        assert days == pytest.approx(2.0)

    def test_peak_starts_at_initial_capital(self):
        curve = _curve([9_000.0, 9_500.0])
        dd, pct, _ = MetricsCalculator.calculate_drawdown(curve, 10_000.0)
        assert dd == pytest.approx(1_000.0)
        assert pct == pytest.approx(0.1)

    def test_bounds(self):
        curve = _curve([10_000.0, 4_000.0, -2_000.0])
        _, pct, days = MetricsCalculator.calculate_drawdown(curve, 10_000.0)
        assert 0.0 <= pct <= 1.0
        assert days >= 0.0

    def test_empty_curve(self):
        assert MetricsCalculator.calculate_drawdown([], 10_000.0) == (0.0, 0.0, 0.0)

    def test_calmar(self, make_trade):
        curve = _curve([10_000.0, 11_000.0, 9_900.0, 11_000.0])
        m = MetricsCalculator().calculate_metrics([make_trade(1_000.0)], curve, 10_000.0)
        assert m.calmar_ratio == pytest.approx((1_000.0 / 10_000.0) / 0.1)


class TestRegimes:

    def test_identify_regime(self, make_candles):
        calc = MetricsCalculator()
        rising = make_candles([100.0 * 1.01 ** i for i in range(30)])
        falling = make_candles([100.0 * 0.99 ** i for i in range(30)])
        choppy = make_candles([100.0 if i % 2 else 110.0 for i in range(30)])

        assert calc.identify_regime(rising, 25) == MarketRegime.BULL
        assert calc.identify_regime(falling, 25) == MarketRegime.BEAR
        assert calc.identify_regime(choppy, 25) == MarketRegime.SIDEWAYS
        assert calc.identify_regime(rising, 10) == MarketRegime.SIDEWAYS

    def test_regime_performance(self, make_candles, make_trade):
        calc = MetricsCalculator()
        candles = make_candles([100.0 * 1.01 ** i for i in range(40)])
        trades = [
            make_trade(50.0, entry_time=candles[5].timestamp),
            make_trade(-20.0, entry_time=candles[30].timestamp),
            make_trade(40.0, entry_time=candles[31].timestamp),
        ]

        stats = calc.calculate_regime_performance(trades, candles, 10_000.0)

        assert stats[MarketRegime.SIDEWAYS].total_trades == 1
        assert stats[MarketRegime.BULL].total_trades == 2
        assert stats[MarketRegime.BULL].profit_factor == pytest.approx(2.0)
        assert stats[MarketRegime.BEAR] == RegimeStats()

    def test_metrics_carry_regimes(self, make_candles, make_trade):
        candles = make_candles([100.0 * 1.01 ** i for i in range(40)])
        trades = [make_trade(50.0, entry_time=candles[30].timestamp)]
        m = MetricsCalculator().calculate_metrics(trades, _curve([10_000.0]), 10_000.0, candles=candles)
        assert m.bull_performance.total_trades == 1
        assert m.regime_performance[MarketRegime.BULL] is m.bull_performance


class TestReporting:

    def test_summary_and_frame(self):
        m = BacktestMetrics(total_trades=3, win_rate=0.5, total_pnl=12.5)
        text = m.summary()
        assert "BACKTEST PERFORMANCE REPORT" in text
        assert "Total Trades        : 3" in text

        df = m.to_dataframe()
        assert len(df) == 1
        assert df.loc[0, "total_pnl"] == 12.5
        assert "bull_total_trades" in df.columns
