"""
Funding-rate extremes (mean reversion).

Entry
    The average hourly funding rate over the trailing window exceeds an
    extreme threshold, and the most recent observations have been extreme
    for a minimum number of consecutive periods.  Extreme positive funding
    means the market is crowded long, so the strategy goes SHORT; extreme
    negative funding means crowded short, so it goes LONG.
Exit
    The trailing average normalises inside a tight band, or the current
    rate flips sign against the held side.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from perpflow.configuration import MS_PER_HOUR
from perpflow.backtester.models import (
    MarketDataset,
    Position,
    PositionSide,
    Signal,
    SignalType,
)
from perpflow.backtester.strategies.base import find_open_position, in_range, time_window


@dataclass(frozen=True)
class FundingRateExtremeStrategy:
    """
    Parameters
    ----------
    extreme_threshold : float
        Hourly rate beyond which funding is extreme (0.05% = 18.25% APR).
    normalization_threshold : float
        |average| below which funding counts as normal again.
    min_duration : int
        Consecutive extreme observations required to enter.
    window_hours : int
        Trailing window for the average.
    """
    extreme_threshold: float = 0.0005
    normalization_threshold: float = 0.0001
    min_duration: int = 3
    window_hours: int = 12

    name: str = "Funding Rate Extremes"
    description: str = "Mean reversion strategy trading extreme funding rate conditions"

    def generate_signals(
        self,
        dataset: MarketDataset,
        index: int,
        open_positions: Sequence[Position],
    ) -> List[Signal]:
        if not in_range(dataset, index):
            return []

        now = dataset.candles[index].timestamp
        lo, hi = time_window(dataset.funding_timestamps, now - self.window_hours * MS_PER_HOUR, now)
        rates = dataset.funding_values[lo:hi]
        if len(rates) < self.min_duration:
            return []

        avg_rate = float(rates.mean())
        current_rate = float(rates[-1])
        instrument = dataset.instrument
        position = find_open_position(open_positions, instrument)

        if position is not None:
            if self._should_exit(position, avg_rate, current_rate):
                return [Signal(
                    timestamp=now,
                    instrument=instrument,
                    type=SignalType.EXIT,
                    direction=position.side,
                    confidence=0.8,
                    reason="Funding rate normalized",
                    metadata={"funding_rate": current_rate, "avg_funding_rate": avg_rate},
                )]
            return []

        if avg_rate > self.extreme_threshold:
            direction = PositionSide.SHORT
            streak = self._count_consecutive(rates, positive=True)
            label = "positive"
        elif avg_rate < -self.extreme_threshold:
            direction = PositionSide.LONG
            streak = self._count_consecutive(rates, positive=False)
            label = "negative"
        else:
            return []

        if streak < self.min_duration:
            return []

        confidence = min(0.6 + abs(avg_rate) / self.extreme_threshold * 0.2, 0.95)
        return [Signal(
            timestamp=now,
            instrument=instrument,
            type=SignalType.ENTRY,
            direction=direction,
            confidence=confidence,
            reason=f"Extreme {label} funding: {avg_rate * 100:.4f}% hourly",
            metadata={
                "funding_rate": current_rate,
                "avg_funding_rate": avg_rate,
                "extreme_duration": streak,
            },
        )]

    def _should_exit(self, position: Position, avg_rate: float, current_rate: float) -> bool:
        normalized = abs(avg_rate) < self.normalization_threshold
        if position.side == PositionSide.SHORT:
            reversed_ = current_rate < 0
        else:
            reversed_ = current_rate > 0
        return normalized or reversed_

    def _count_consecutive(self, rates: np.ndarray, positive: bool) -> int:
        """Count extreme observations walking back from the most recent one."""
        count = 0
        for rate in rates[::-1]:
            extreme = rate > self.extreme_threshold if positive else rate < -self.extreme_threshold
            if not extreme:
                break
            count += 1
        return count
