"""
Tests for market-data sources.

Run with: python -m pytest tests/test_sources.py -v
"""

import datetime as dt

import polars as pl
import pytest

from perpflow.exceptions import DataValidationError, PerpflowError
from perpflow.backtester.data_validation import DataValidator
from perpflow.backtester.engine import BacktestEngine
from perpflow.backtester.models import BacktestConfig, MarketDataset, PositionSide
from perpflow.backtester.sources import (
    CsvMarketDataSource,
    InMemoryMarketDataSource,
    MarketDataSource,
)


HOUR = 3_600_000
T0 = 1_704_067_200_000


@pytest.fixture
def csv_dir(tmp_path):
    n = 10
    pl.DataFrame({
        "timestamp": [T0 + i * HOUR for i in range(n)],
        "open": [100.0] * n,
        "high": [101.0] * n,
        "low": [99.0] * n,
        "close": [100.5] * n,
        "volume": [10.0] * n,
    }).write_csv(tmp_path / "BTC_candles.csv")
    pl.DataFrame({
        "timestamp": [T0 + i * HOUR for i in range(n)],
        "rate": [0.0001] * n,
    }).write_csv(tmp_path / "BTC_funding.csv")
    pl.DataFrame({
        "timestamp": ["2024-01-01T02:00:00", "2024-01-01T05:30:00"],
        "side": ["long", "short"],
        "amount": [1e6, 2e6],
        "price": [100.0, 101.0],
    }).write_csv(tmp_path / "BTC_liquidations.csv")
    return tmp_path


class TestCsvSource:

    def test_is_a_source(self, csv_dir):
        assert isinstance(CsvMarketDataSource(csv_dir), MarketDataSource)

    def test_load(self, csv_dir):
        dataset = CsvMarketDataSource(csv_dir).load("BTC", T0, T0 + 9 * HOUR)

        assert dataset.instrument == "BTC"
        assert len(dataset.candles) == 10
        assert dataset.candles[0].timestamp == T0
        assert dataset.candles[0].close == 100.5
        assert len(dataset.funding_rates) == 10
        assert dataset.open_interest == ()

    def test_iso_timestamps(self, csv_dir):
        dataset = CsvMarketDataSource(csv_dir).load("BTC", T0, T0 + 9 * HOUR)
        assert [l.timestamp for l in dataset.liquidations] == [T0 + 2 * HOUR, T0 + 5 * HOUR + HOUR // 2]
        assert dataset.liquidations[0].side == PositionSide.LONG.value

    def test_period_filter_is_inclusive(self, csv_dir):
        start = dt.datetime(2024, 1, 1, 3, tzinfo=dt.timezone.utc)
        end = dt.datetime(2024, 1, 1, 6, tzinfo=dt.timezone.utc)

        dataset = CsvMarketDataSource(csv_dir).load("BTC", start, end)

        assert [c.timestamp for c in dataset.candles] == [T0 + h * HOUR for h in range(3, 7)]
        assert len(dataset.liquidations) == 1

    def test_missing_candle_file(self, csv_dir):
        with pytest.raises(FileNotFoundError):
            CsvMarketDataSource(csv_dir).load("ETH", T0, T0 + HOUR)

    def test_missing_timestamp_column(self, csv_dir):
        pl.DataFrame({"time": [T0], "close": [1.0]}).write_csv(csv_dir / "SOL_candles.csv")
        with pytest.raises(PerpflowError):
            CsvMarketDataSource(csv_dir).load("SOL", T0, T0 + HOUR)


class TestInMemorySource:

    def test_restricts_period(self, make_candles):
        source = InMemoryMarketDataSource(MarketDataset("BTC", make_candles([100.0] * 10)))
        dataset = source.load("BTC", T0 + 2 * HOUR, T0 + 4 * HOUR)
        assert len(dataset.candles) == 3

    def test_unknown_instrument(self, make_candles):
        source = InMemoryMarketDataSource(MarketDataset("BTC", make_candles([100.0] * 10)))
        with pytest.raises(PerpflowError):
            source.load("ETH", T0, T0 + HOUR)


class TestMalformedCells:

    def test_bad_close_reaches_validation(self, tmp_path):
        n = 150
        closes = ["100.5"] * n
        closes[40] = "n/a"
        pl.DataFrame({
            "timestamp": [T0 + i * HOUR for i in range(n)],
            "open": [100.0] * n,
            "high": [101.0] * n,
            "low": [99.0] * n,
            "close": closes,
            "volume": [10.0] * n,
        }).write_csv(tmp_path / "BTC_candles.csv")

        dataset = CsvMarketDataSource(tmp_path).load("BTC", T0, T0 + n * HOUR)
        assert dataset.candles[40].close is None
        assert dataset.candles[41].close == 100.5

        with pytest.raises(DataValidationError) as excinfo:
            BacktestEngine(BacktestConfig()).run_from(CsvMarketDataSource(tmp_path))
        assert "Candle 40: Missing required fields" in excinfo.value.errors

    def test_bad_timestamp_is_reported(self, tmp_path):
        pl.DataFrame({
            "timestamp": ["2024-01-01T00:00:00", "yesterday", "2024-01-01T02:00:00"],
            "rate": [0.0001, 0.0001, 0.0001],
        }).write_csv(tmp_path / "BTC_funding.csv")
        pl.DataFrame({
            "timestamp": [T0], "open": [1.0], "high": [1.0], "low": [1.0], "close": [1.0],
        }).write_csv(tmp_path / "BTC_candles.csv")

        dataset = CsvMarketDataSource(tmp_path).load("BTC", T0, T0 + 3 * HOUR)

        assert [f.timestamp for f in dataset.funding_rates] == [None, T0, T0 + 2 * HOUR]
        report = DataValidator().validate_funding_rates(dataset.funding_rates)
        assert report.errors == ["Funding rate 0: Missing required fields"]
