"""
Cross-asset correlation breakdown (mean reversion).

Entry
    A rolling correlation estimate drops below the divergence threshold.
Exit
    The estimate recovers above the restoration threshold.

The estimate is a **single-series proxy**: with only one instrument in the
dataset, higher return volatility is read as a weaker relationship,
``clamp(0.85 - 20 * std(returns), 0.3, 0.95)``.  It is not a true
paired-instrument correlation; ``return_correlation`` computes that for
callers holding two aligned price series.

The trade direction fades the price move over the lookback window: SHORT
after a rise, LONG after a fall (or a flat window).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

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
    recent_slice,
    simple_returns,
    standard_deviation,
)


def return_correlation(prices_a: Sequence[float], prices_b: Sequence[float]) -> float:
    """Pearson correlation of the simple returns of two aligned price series."""
    if len(prices_a) != len(prices_b) or len(prices_a) < 2:
        return 0.0
    ra = simple_returns(prices_a)
    rb = simple_returns(prices_b)
    da = ra - ra.mean()
    db = rb - rb.mean()
    denominator = float(np.sqrt((da * da).sum() * (db * db).sum()))
    return 0.0 if denominator == 0 else float((da * db).sum() / denominator)


@dataclass(frozen=True)
class CrossAssetCorrelationStrategy:
    """
    Parameters
    ----------
    normal_correlation : float
        Level considered a healthy relationship (reported in metadata).
    divergence_threshold : float
        Proxy level below which the strategy enters.
    restore_threshold : float
        Proxy level above which an open position is exited.
    lookback : int
        Candles used for the proxy.
    """
    normal_correlation: float = 0.8
    divergence_threshold: float = 0.5
    restore_threshold: float = 0.75
    lookback: int = 30

    name: str = "Cross-Asset Correlation"
    description: str = "Mean reversion strategy trading correlation breakdowns"

    def correlation_proxy(self, dataset: MarketDataset, index: int) -> float:
        closes = dataset.closes[recent_slice(index, self.lookback)]
        volatility = standard_deviation(simple_returns(closes))
        return max(0.3, min(0.95, 0.85 - volatility * 20))

    def generate_signals(
        self,
        dataset: MarketDataset,
        index: int,
        open_positions: Sequence[Position],
    ) -> List[Signal]:
        if not in_range(dataset, index, minimum=self.lookback):
            return []

        now = dataset.candles[index].timestamp
        instrument = dataset.instrument
        correlation = self.correlation_proxy(dataset, index)
        position = find_open_position(open_positions, instrument)

        if position is not None:
            if correlation > self.restore_threshold:
                return [Signal(
                    timestamp=now,
                    instrument=instrument,
                    type=SignalType.EXIT,
                    direction=position.side,
                    confidence=0.7,
                    reason="Correlation restored",
                    metadata={"correlation": correlation, "restoration_threshold": self.restore_threshold},
                )]
            return []

        if correlation >= self.divergence_threshold:
            return []

        window_start = dataset.closes[index - self.lookback]
        direction = PositionSide.SHORT if dataset.closes[index] > window_start else PositionSide.LONG
        confidence = min(0.6 + (self.divergence_threshold - correlation) * 0.5, 0.9)

        return [Signal(
            timestamp=now,
            instrument=instrument,
            type=SignalType.ENTRY,
            direction=direction,
            confidence=confidence,
            reason=f"Correlation breakdown: {correlation:.2f}",
            metadata={
                "correlation": correlation,
                "normal_correlation": self.normal_correlation,
                "divergence_threshold": self.divergence_threshold,
            },
        )]
