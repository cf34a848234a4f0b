"""
Tests for the signal generators.

Run with: python -m pytest tests/test_strategies.py -v
"""

import pytest

from perpflow.exceptions import ConfigurationError
from perpflow.backtester.models import (
    CostConfig,
    LiquidationEvent,
    MarketDataset,
    OpenInterestPoint,
    PositionSide,
    RiskConfig,
    SignalType,
    StrategyType,
)
from perpflow.backtester.positions import PositionManager
from perpflow.backtester.strategies.base import in_range
from perpflow.backtester.strategies import (
    CrossAssetCorrelationStrategy,
    FundingRateExtremeStrategy,
    LiquidationClustersStrategy,
    OIExpansionStrategy,
    STRATEGIES,
    Strategy,
    create_strategy,
    return_correlation,
)


HOUR = 3_600_000
T0 = 1_704_067_200_000


class TestRegistry:

    def test_every_strategy_satisfies_protocol(self):
        for cls in STRATEGIES.values():
            strategy = cls()
            assert isinstance(strategy, Strategy)
            assert strategy.name
            assert strategy.description

    def test_create_from_enum_and_string(self):
        assert isinstance(create_strategy(StrategyType.OI_EXPANSION), OIExpansionStrategy)
        assert isinstance(create_strategy("liquidationClusters"), LiquidationClustersStrategy)
        assert isinstance(create_strategy("CROSS_ASSET_CORRELATION"), CrossAssetCorrelationStrategy)

    def test_unknown_strategy(self):
        with pytest.raises(ConfigurationError):
            create_strategy("meanReversionMagic")

    def test_out_of_range_index_is_empty(self, make_candles):
        dataset = MarketDataset("BTC", make_candles([100.0] * 5))
        for cls in STRATEGIES.values():
            assert cls().generate_signals(dataset, 10, []) == []
            assert cls().generate_signals(dataset, -1, []) == []

    def test_in_range_bounds(self, make_candles):
        dataset = MarketDataset("BTC", make_candles([100.0] * 5))
        assert in_range(dataset, 0) and in_range(dataset, 4)
        assert not in_range(dataset, 5)
        assert not in_range(dataset, -1, minimum=-3)
        assert not in_range(dataset, 2, minimum=3)
        assert in_range(dataset, 3, minimum=3)


class TestFundingRateExtreme:

    def test_sustained_positive_funding_opens_exactly_one_short(self, make_candles, make_funding):
        dataset = MarketDataset("BTC", make_candles([100.0] * 50), make_funding([0.0006] * 50))
        strategy = FundingRateExtremeStrategy()
        manager = PositionManager(RiskConfig(), CostConfig())

        opened = []
        for i in range(50):
            for signal in strategy.generate_signals(dataset, i, manager.open_positions):
                assert signal.type == SignalType.ENTRY
                position = manager.open_position(signal, 100.0, 10_000.0)
                if position is not None:
                    opened.append(position)

        assert len(opened) == 1
        assert opened[0].side == PositionSide.SHORT
        assert opened[0].entry_time == T0 + 2 * HOUR

    def test_negative_funding_goes_long(self, make_candles, make_funding):
        dataset = MarketDataset("BTC", make_candles([100.0] * 10), make_funding([-0.0008] * 10))
        signals = FundingRateExtremeStrategy().generate_signals(dataset, 5, [])
        assert len(signals) == 1
        assert signals[0].direction == PositionSide.LONG
        assert signals[0].confidence == pytest.approx(0.92)

    def test_requires_minimum_observations(self, make_candles, make_funding):
        dataset = MarketDataset("BTC", make_candles([100.0] * 10), make_funding([0.0006] * 10))
        assert FundingRateExtremeStrategy().generate_signals(dataset, 1, []) == []

    def test_streak_must_be_recent(self, make_candles, make_funding):
        rates = [0.002] * 6 + [0.0001] * 2
        dataset = MarketDataset("BTC", make_candles([100.0] * 8), make_funding(rates))
        # average is extreme but the latest two observations are not
        assert FundingRateExtremeStrategy().generate_signals(dataset, 7, []) == []

    def test_exit_on_sign_flip(self, make_candles, make_funding, make_position):
        rates = [0.0006] * 6 + [-0.0001]
        dataset = MarketDataset("BTC", make_candles([100.0] * 7), make_funding(rates))
        short = make_position(side=PositionSide.SHORT)

        signals = FundingRateExtremeStrategy().generate_signals(dataset, 6, [short])

        assert len(signals) == 1
        assert signals[0].type == SignalType.EXIT
        assert signals[0].direction == PositionSide.SHORT

    def test_exit_on_normalization(self, make_candles, make_funding, make_position):
        dataset = MarketDataset("BTC", make_candles([100.0] * 6), make_funding([0.00005] * 6))
        long = make_position(side=PositionSide.LONG)
        signals = FundingRateExtremeStrategy().generate_signals(dataset, 5, [long])
        assert [s.type for s in signals] == [SignalType.EXIT]


class TestOIExpansion:

    @staticmethod
    def _dataset(make_candles, oi_points=None):
        closes = [100.0] * 25 + [103.0, 103.0, 103.0]
        volumes = [1_000.0] * 25 + [10_000.0, 1_000.0, 1_000.0]
        candles = make_candles(closes, volume=volumes)
        if oi_points is None:
            values = [1e9] * 25 + [1.2e9, 1.0e9, 1.0e9]
            oi_points = [OpenInterestPoint(c.timestamp, v) for c, v in zip(candles, values)]
        return MarketDataset("BTC", candles, open_interest=oi_points)

    def test_expansion_with_volume_spike_follows_price(self, make_candles):
        dataset = self._dataset(make_candles)
        strategy = OIExpansionStrategy()

        assert strategy.generate_signals(dataset, 24, []) == []
        signals = strategy.generate_signals(dataset, 25, [])

        assert len(signals) == 1
        assert signals[0].type == SignalType.ENTRY
        assert signals[0].direction == PositionSide.LONG
        assert signals[0].metadata["oi_change"] == pytest.approx(0.2)

    def test_needs_lookback(self, make_candles):
        dataset = self._dataset(make_candles)
        assert OIExpansionStrategy(lookback=30).generate_signals(dataset, 25, []) == []

    def test_exit_on_contraction(self, make_candles, make_position):
        dataset = self._dataset(make_candles)
        long = make_position(entry_time=T0 + 25 * HOUR)
        signals = OIExpansionStrategy().generate_signals(dataset, 26, [long])
        assert [s.type for s in signals] == [SignalType.EXIT]

    def test_future_open_interest_is_not_used(self, make_candles):
        candles = make_candles([100.0] * 25 + [103.0], volume=[1_000.0] * 25 + [10_000.0])
        points = [OpenInterestPoint(c.timestamp, 1e9) for c in candles]
        # the jump is published one minute after the candle closes
        points.append(OpenInterestPoint(candles[-1].timestamp + 60_000, 1.5e9))
        dataset = MarketDataset("BTC", candles, open_interest=points)

        assert OIExpansionStrategy().generate_signals(dataset, 25, []) == []


class TestLiquidationClusters:

    @staticmethod
    def _dataset(make_candles, side, amount=6e6, closes=None):
        candles = make_candles(closes or [100.0] * 10)
        events = [LiquidationEvent(candles[5].timestamp - 1_000, side, amount, 100.0)]
        return MarketDataset("BTC", candles, liquidations=events)

    def test_long_cascade_goes_long(self, make_candles):
        dataset = self._dataset(make_candles, PositionSide.LONG)
        signals = LiquidationClustersStrategy().generate_signals(dataset, 5, [])
        assert len(signals) == 1
        assert signals[0].direction == PositionSide.LONG
        assert signals[0].confidence == pytest.approx(0.83)

    def test_short_cascade_goes_short(self, make_candles):
        dataset = self._dataset(make_candles, "short")
        signals = LiquidationClustersStrategy().generate_signals(dataset, 5, [])
        assert [s.direction for s in signals] == [PositionSide.SHORT]

    def test_below_threshold(self, make_candles):
        dataset = self._dataset(make_candles, PositionSide.LONG, amount=4e6)
        assert LiquidationClustersStrategy().generate_signals(dataset, 5, []) == []

    def test_window_excludes_older_events(self, make_candles):
        dataset = self._dataset(make_candles, PositionSide.LONG)
        assert LiquidationClustersStrategy().generate_signals(dataset, 6, []) == []

    def test_skips_warmup(self, make_candles):
        candles = make_candles([100.0] * 10)
        events = [LiquidationEvent(candles[3].timestamp, PositionSide.LONG, 6e6, 100.0)]
        dataset = MarketDataset("BTC", candles, liquidations=events)
        assert LiquidationClustersStrategy().generate_signals(dataset, 3, []) == []

    def test_exit_after_recovery(self, make_candles, make_position):
        closes = [100.0] * 6 + [101.0, 102.5, 102.5, 102.5]
        dataset = self._dataset(make_candles, PositionSide.LONG, closes=closes)
        long = make_position(entry_time=T0 + 5 * HOUR)
        strategy = LiquidationClustersStrategy()

        assert strategy.generate_signals(dataset, 6, [long]) == []
        signals = strategy.generate_signals(dataset, 7, [long])
        assert [s.type for s in signals] == [SignalType.EXIT]


class TestCrossAssetCorrelation:

    def test_stable_market_has_no_breakdown(self, make_candles):
        dataset = MarketDataset("BTC", make_candles([100.0] * 40))
        strategy = CrossAssetCorrelationStrategy()
        assert strategy.correlation_proxy(dataset, 35) == pytest.approx(0.85)
        assert strategy.generate_signals(dataset, 35, []) == []

    def test_breakdown_fades_a_rise(self, make_candles):
        closes = [(100 + i * 5) * (1.1 if i % 2 else 1.0) for i in range(40)]
        dataset = MarketDataset("BTC", make_candles(closes))
        strategy = CrossAssetCorrelationStrategy()

        signals = strategy.generate_signals(dataset, 31, [])

        assert strategy.correlation_proxy(dataset, 31) == pytest.approx(0.3)
        assert len(signals) == 1
        assert signals[0].direction == PositionSide.SHORT
        assert signals[0].confidence == pytest.approx(0.7)

    def test_breakdown_after_flat_window_goes_long(self, make_candles):
        closes = [100.0 if i % 2 == 0 else 110.0 for i in range(40)]
        dataset = MarketDataset("BTC", make_candles(closes))
        signals = CrossAssetCorrelationStrategy().generate_signals(dataset, 30, [])
        assert [s.direction for s in signals] == [PositionSide.LONG]

    def test_deterministic(self, make_candles):
        closes = [100.0 if i % 2 == 0 else 110.0 for i in range(40)]
        dataset = MarketDataset("BTC", make_candles(closes))
        strategy = CrossAssetCorrelationStrategy()
        assert strategy.generate_signals(dataset, 34, []) == strategy.generate_signals(dataset, 34, [])

    def test_exit_when_restored(self, make_candles, make_position):
        dataset = MarketDataset("BTC", make_candles([100.0] * 40))
        signals = CrossAssetCorrelationStrategy().generate_signals(dataset, 35, [make_position()])
        assert [s.type for s in signals] == [SignalType.EXIT]

    def test_return_correlation(self):
        a = [100.0, 101.0, 100.5, 102.0, 101.0]
        assert return_correlation(a, a) == pytest.approx(1.0)
        assert return_correlation(a, a[:3]) == 0.0
