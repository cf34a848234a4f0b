"""
Open-interest expansion + volume spike (momentum).

Entry
    Open interest grows more than 10% period-over-period while volume runs
    above twice its trailing average.  The position follows the direction
    of the latest price change.
Exit
    Open interest contracts by more than 5%, or price moves more than 2%
    against the position in one period.

Open interest for a candle is the most recent observation at or before the
candle's timestamp (within one hour); later observations are never used.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

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
    recent_slice,
)


@dataclass(frozen=True)
class OIExpansionStrategy:
    """
    Parameters
    ----------
    oi_expansion_threshold : float
        Fractional OI growth required to enter.
    volume_spike_threshold : float
        Current volume / trailing average volume required to enter.
    oi_contraction_threshold : float
        Fractional OI change below which an open position is exited.
    adverse_move_pct : float
        One-period adverse price move (percent) that exits a position.
    lookback : int
        Candles used for the volume average.
    """
    oi_expansion_threshold: float = 0.10
    volume_spike_threshold: float = 2.0
    oi_contraction_threshold: float = -0.05
    adverse_move_pct: float = 2.0
    lookback: int = 20

    name: str = "OI Expansion + Volume Spike"
    description: str = "Momentum strategy following significant OI and volume increases"

    def generate_signals(
        self,
        dataset: MarketDataset,
        index: int,
        open_positions: Sequence[Position],
    ) -> List[Signal]:
        if not in_range(dataset, index, minimum=max(self.lookback, 1)):
            return []

        current = dataset.candles[index]
        previous = dataset.candles[index - 1]

        avg_volume = float(dataset.volumes[recent_slice(index, self.lookback)].mean())
        if avg_volume <= 0:
            return []
        volume_spike = current.volume / avg_volume

        current_oi = self._open_interest_at(dataset, current.timestamp)
        previous_oi = self._open_interest_at(dataset, previous.timestamp)
        if current_oi is None or previous_oi is None or previous_oi == 0:
            return []

        oi_change = (current_oi - previous_oi) / previous_oi
        price_change = price_change_pct(current.close, previous.close)
        metadata = {"oi_change": oi_change, "price_change": price_change, "volume_spike": volume_spike}

        instrument = dataset.instrument
        position = find_open_position(open_positions, instrument)

        if position is not None:
            if self._should_exit(position, oi_change, price_change):
                return [Signal(
                    timestamp=current.timestamp,
                    instrument=instrument,
                    type=SignalType.EXIT,
                    direction=position.side,
                    confidence=0.75,
                    reason="OI contraction or trend reversal",
                    metadata=metadata,
                )]
            return []

        if oi_change > self.oi_expansion_threshold and volume_spike > self.volume_spike_threshold:
            direction = PositionSide.LONG if price_change > 0 else PositionSide.SHORT
            confidence = min(0.6 + oi_change * 2 + volume_spike / 10, 0.95)
            return [Signal(
                timestamp=current.timestamp,
                instrument=instrument,
                type=SignalType.ENTRY,
                direction=direction,
                confidence=confidence,
                reason=f"OI expansion {oi_change * 100:.1f}% + Volume spike {volume_spike:.1f}x",
                metadata={**metadata, "avg_volume": avg_volume},
            )]

        return []

    @staticmethod
    def _open_interest_at(dataset: MarketDataset, ts: int) -> Optional[float]:
        pos = latest_at_or_before(dataset.oi_timestamps, ts, MS_PER_HOUR)
        return None if pos is None else float(dataset.oi_values[pos])

    def _should_exit(self, position: Position, oi_change: float, price_change: float) -> bool:
        if oi_change < self.oi_contraction_threshold:
            return True
        if position.side == PositionSide.LONG:
            return price_change < -self.adverse_move_pct
        return price_change > self.adverse_move_pct
