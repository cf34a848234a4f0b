"""
Strategy interface and shared signal helpers.

Every strategy satisfies the ``Strategy`` protocol:

.. code-block:: python

    def generate_signals(self, dataset, index, open_positions) -> list[Signal]

The engine calls ``generate_signals`` once per candle, *after* protective
exits have been applied.  A strategy is a pure, total function of its
inputs: it never raises on odd data, never mutates the dataset or the
positions it is shown, and keeps no state between calls.  Opening and
closing positions is the ``PositionManager``'s job.

Strategies do not inherit from a common base; the helpers below are plain
functions they call.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

from perpflow.backtester.models import MarketDataset, Position, Signal


@runtime_checkable
class Strategy(Protocol):
    """Signal generator over market state."""

    name: str
    description: str

    def generate_signals(
        self,
        dataset: MarketDataset,
        index: int,
        open_positions: Sequence[Position],
    ) -> List[Signal]:
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def average(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def standard_deviation(values: Sequence[float]) -> float:
    """Population standard deviation (0 for an empty input)."""
    if len(values) == 0:
        return 0.0
    return float(np.std(values))


def price_change_pct(current: float, previous: float) -> float:
    """Percentage change from ``previous`` to ``current`` (0 when ``previous`` is 0)."""
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def simple_returns(prices: Sequence[float]) -> np.ndarray:
    arr = np.asarray(prices, dtype=np.float64)
    if len(arr) < 2:
        return np.array([], dtype=np.float64)
    prev = arr[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        rets = np.where(prev != 0, np.diff(arr) / np.where(prev != 0, prev, 1.0), 0.0)
    return rets


def recent_slice(index: int, lookback: int) -> slice:
    """Slice selecting ``lookback`` bars before ``index`` plus ``index`` itself."""
    return slice(max(0, index - lookback), index + 1)


def time_window(timestamps: np.ndarray, start_exclusive: int, end_inclusive: int) -> Tuple[int, int]:
    """Positions ``(lo, hi)`` of the entries with ``start < ts <= end`` in a sorted array."""
    lo = int(np.searchsorted(timestamps, start_exclusive, side="right"))
    hi = int(np.searchsorted(timestamps, end_inclusive, side="right"))
    return lo, hi


def latest_at_or_before(timestamps: np.ndarray, ts: int, tolerance: int) -> Optional[int]:
    """
    Position of the last entry with ``ts - tolerance < timestamp <= ts``,
    or ``None`` if there is none.
    """
    pos = int(np.searchsorted(timestamps, ts, side="right")) - 1
    if pos < 0 or timestamps[pos] <= ts - tolerance:
        return None
    return pos


def find_open_position(open_positions: Sequence[Position], instrument: str) -> Optional[Position]:
    for pos in open_positions:
        if pos.instrument == instrument:
            return pos
    return None


def in_range(dataset: MarketDataset, index: int, minimum: int = 0) -> bool:
    return max(minimum, 0) <= index < len(dataset.candles)
