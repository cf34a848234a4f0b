"""
Liquidation clusters (counter-trend).

A cascade of forced closures on one side tends to mark a local extreme.

Entry
    Liquidations of one side summed over the trailing window exceed a
    notional threshold.  LONG after a long-liquidation cascade (the flush is
    likely done), SHORT after a short-liquidation cascade.
Exit
    Price has recovered by ``recovery_percent`` from the entry candle's close
    in the position's favour.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from perpflow.configuration import MS_PER_HOUR
from perpflow.backtester.models import (
    MarketDataset,
    Position,
    PositionSide,
    Signal,
    SignalType,
)
from perpflow.backtester.strategies.base import (
    find_open_position,
    in_range,
    latest_at_or_before,
    price_change_pct,
    time_window,
)


@dataclass(frozen=True)
class LiquidationClustersStrategy:
    """
    Parameters
    ----------
    liquidation_threshold : float
        USD notional of same-side liquidations needed to enter.
    lookback_hours : int
        Trailing window over which liquidations are summed.
    recovery_percent : float
        Favourable move from the entry candle that triggers the exit.
    min_index : int
        Candles to skip at the start of the data.
    """
    liquidation_threshold: float = 5_000_000.0
    lookback_hours: int = 1
    recovery_percent: float = 2.0
    min_index: int = 4

    name: str = "Liquidation Clusters"
    description: str = "Counter-trend strategy capitalizing on mass liquidation events"

    def generate_signals(
        self,
        dataset: MarketDataset,
        index: int,
        open_positions: Sequence[Position],
    ) -> List[Signal]:
        if not in_range(dataset, index, minimum=self.min_index):
            return []

        current = dataset.candles[index]
        instrument = dataset.instrument
        position = find_open_position(open_positions, instrument)

        if position is not None:
            return self._exit_signals(dataset, current.timestamp, current.close, position)

        lo, hi = time_window(
            dataset.liquidation_timestamps,
            current.timestamp - self.lookback_hours * MS_PER_HOUR,
            current.timestamp,
        )
        if hi <= lo:
            return []

        amounts = dataset.liquidation_amounts[lo:hi]
        is_long = dataset.liquidation_is_long[lo:hi]
        long_total = float(amounts[is_long].sum())
        short_total = float(amounts[~is_long].sum())

        if long_total > self.liquidation_threshold:
            direction, side_total, count, label = PositionSide.LONG, long_total, int(is_long.sum()), "long"
        elif short_total > self.liquidation_threshold:
            direction, side_total, count, label = PositionSide.SHORT, short_total, int((~is_long).sum()), "short"
        else:
            return []

        confidence = min(0.65 + side_total / self.liquidation_threshold * 0.15, 0.95)
        return [Signal(
            timestamp=current.timestamp,
            instrument=instrument,
            type=SignalType.ENTRY,
            direction=direction,
            confidence=confidence,
            reason=f"Mass {label} liquidations: ${side_total / 1_000_000:.1f}M",
            metadata={
                "long_liquidations": long_total,
                "short_liquidations": short_total,
                "total_liquidations": long_total + short_total,
                "liquidation_count": count,
            },
        )]

    def _exit_signals(
        self,
        dataset: MarketDataset,
        now: int,
        price: float,
        position: Position,
    ) -> List[Signal]:
        entry_idx = latest_at_or_before(dataset.candle_timestamps, position.entry_time, MS_PER_HOUR)
        if entry_idx is None:
            return []

        change = price_change_pct(price, dataset.candles[entry_idx].close)
        if position.side == PositionSide.LONG:
            recovered = change > self.recovery_percent
        else:
            recovered = change < -self.recovery_percent

        if not recovered:
            return []

        return [Signal(
            timestamp=now,
            instrument=dataset.instrument,
            type=SignalType.EXIT,
            direction=position.side,
            confidence=0.8,
            reason="Price recovered from liquidation event",
            metadata={"price_change": change, "entry_price": position.entry_price, "current_price": price},
        )]
