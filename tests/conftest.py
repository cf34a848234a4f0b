"""
Shared fixtures for the perpflow test-suite.

Run with: python -m pytest tests -v
"""

import datetime as dt

import pytest

from perpflow.backtester.examples import generate_synthetic_market_data, make_config
from perpflow.backtester.models import (
    BacktestConfig,
    Candle,
    ExitReason,
    FundingRate,
    MarketDataset,
    Position,
    PositionSide,
    StrategyType,
    Trade,
)


HOUR = 3_600_000
T0 = 1_704_067_200_000  # 2024-01-01 00:00 UTC


@pytest.fixture
def make_candles():
    """Factory: one candle per close, ``HOUR`` apart, tight symmetric wicks."""
    def _make(closes, start=T0, step=HOUR, volume=1_000.0):
        volumes = volume if isinstance(volume, (list, tuple)) else [volume] * len(closes)
        return [
            Candle(
                timestamp=start + i * step,
                open=float(c),
                high=float(c) * 1.001,
                low=float(c) * 0.999,
                close=float(c),
                volume=float(v),
            )
            for i, (c, v) in enumerate(zip(closes, volumes))
        ]
    return _make


@pytest.fixture
def make_funding():
    def _make(rates, start=T0, step=HOUR):
        return [FundingRate(timestamp=start + i * step, rate=r, instrument="BTC") for i, r in enumerate(rates)]
    return _make


@pytest.fixture
def make_position():
    def _make(side=PositionSide.LONG, entry_price=100.0, entry_time=T0, size=1_000.0,
              leverage=3.0, stop_loss=1.5, take_profit=3.0, id="pos_1"):
        return Position(
            id=id,
            instrument="BTC",
            side=side,
            entry_price=entry_price,
            entry_time=entry_time,
            size=size,
            leverage=leverage,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
    return _make


@pytest.fixture
def make_trade():
    """Factory for closed trades; only ``pnl`` and timing usually matter."""
    def _make(pnl, entry_time=T0, exit_time=T0 + HOUR, side=PositionSide.LONG, size=1_000.0,
              fees=1.0, slippage=0.5, funding=0.25, holding_time=1.0,
              exit_reason=ExitReason.SIGNAL, id="pos_1"):
        total_cost = fees + slippage + funding
        return Trade(
            id=id,
            instrument="BTC",
            side=side,
            entry_price=100.0,
            exit_price=101.0,
            entry_time=entry_time,
            exit_time=exit_time,
            size=size,
            leverage=3.0,
            gross_pnl=pnl + total_cost,
            pnl=pnl,
            pnl_percent=pnl / size * 100,
            fees=fees,
            slippage=slippage,
            funding=funding,
            total_cost=total_cost,
            holding_time=holding_time,
            exit_reason=exit_reason,
        )
    return _make


@pytest.fixture
def flat_config():
    return BacktestConfig(
        instrument="BTC",
        start_date=dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc),
        end_date=dt.datetime(2024, 2, 1, tzinfo=dt.timezone.utc),
        strategy=StrategyType.FUNDING_RATE_EXTREME,
    )


@pytest.fixture
def flat_dataset(make_candles):
    """150 flat hourly candles at 100 with no side series."""
    return MarketDataset("BTC", make_candles([100.0] * 150))


@pytest.fixture(scope="session")
def synthetic_dataset():
    return generate_synthetic_market_data(n_candles=600, seed=7)


@pytest.fixture(scope="session")
def long_synthetic_dataset():
    return generate_synthetic_market_data(n_candles=1_000, seed=11)


@pytest.fixture
def synthetic_config():
    def _make(strategy=StrategyType.FUNDING_RATE_EXTREME, n_candles=600, **kwargs):
        return make_config(strategy, n_candles=n_candles, **kwargs)
    return _make
