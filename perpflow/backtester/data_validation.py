"""
Market-data sanitation run before every simulation.

Each series is validated independently, then the aggregate is checked
against the minimum sample size.  Findings fall into two buckets:

* **errors**: the record is dropped and the dataset is marked invalid.
  The engine refuses to run on an invalid dataset.
* **warnings**: the record is kept; the anomaly is reported for audit.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, Sequence, TypeVar

import numpy as np

from perpflow import configuration as cfg
from perpflow.backtester.models import (
    Candle,
    FundingRate,
    LiquidationEvent,
    MarketDataset,
    OpenInterestPoint,
    PositionSide,
)


T = TypeVar("T")


@dataclass(frozen=True)
class SeriesValidation(Generic[T]):
    """Result of validating a single series."""
    valid: List[T] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DatasetValidation:
    """
    Result of ``DataValidator.validate_market_data``.

    Attributes
    ----------
    valid : bool
        ``True`` only when no errors were found.
    sanitized_dataset : MarketDataset
        The dataset with rejected records removed (and gaps filled).
    errors : list[str]
    warnings : list[str]
    """
    valid: bool
    sanitized_dataset: MarketDataset
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return math.isnan(value)
    except TypeError:
        return False


def _parse_side(side: Any) -> Optional[PositionSide]:
    if isinstance(side, PositionSide):
        return side
    try:
        return PositionSide(side)
    except ValueError:
        return None


class DataValidator:
    """
    Validates and sanitizes a ``MarketDataset``.

    Parameters
    ----------
    min_candles : int
        Hard floor of valid candles required for a run.

    Examples
    --------
    >>> report = DataValidator().validate_market_data(dataset, interval_ms=3_600_000)
    >>> if not report.valid:
    ...     print(report.errors)
    """

    def __init__(self, min_candles: int = cfg.MIN_CANDLES) -> None:
        self.min_candles = min_candles

    # ------------------------------------------------------------------ #
    #  Candles                                                            #
    # ------------------------------------------------------------------ #

    def validate_candles(self, candles: Sequence[Candle]) -> SeriesValidation[Candle]:
        valid: List[Candle] = []
        errors: List[str] = []
        warnings: List[str] = []

        for i, c in enumerate(candles):
            fields = (c.timestamp, c.open, c.high, c.low, c.close, c.volume)
            if any(_missing(v) for v in fields):
                errors.append(f"Candle {i}: Missing required fields")
                continue

            if c.high < c.low:
                errors.append(f"Candle {i}: High < Low")
                continue

            if min(c.open, c.high, c.low, c.close, c.volume) < 0:
                errors.append(f"Candle {i}: Negative values detected")
                continue

            if c.high < c.open or c.high < c.close:
                warnings.append(f"Candle {i}: High is not the highest price")
            if c.low > c.open or c.low > c.close:
                warnings.append(f"Candle {i}: Low is not the lowest price")

            if c.low > 0:
                price_range = (c.high - c.low) / c.low
                if price_range > cfg.EXTREME_RANGE_PCT:
                    warnings.append(f"Candle {i}: Extreme price movement {price_range * 100:.1f}%")

            valid.append(c)

        return SeriesValidation(valid, errors, warnings)

    @staticmethod
    def fill_candle_gaps(candles: Sequence[Candle], interval_ms: int) -> List[Candle]:
        """
        Insert flat candles wherever two consecutive bars are more than
        1.5 intervals apart.  Filled bars repeat the previous close on all
        four prices with zero volume, keeping the simulation clock uniform.
        """
        if len(candles) < 2 or interval_ms <= 0:
            return list(candles)

        filled: List[Candle] = []
        for current, nxt in zip(candles[:-1], candles[1:]):
            filled.append(current)
            gap = nxt.timestamp - current.timestamp
            if gap > interval_ms * cfg.GAP_TOLERANCE:
                missing = gap // interval_ms - 1
                for j in range(1, int(missing) + 1):
                    filled.append(Candle(
                        timestamp=current.timestamp + j * interval_ms,
                        open=current.close,
                        high=current.close,
                        low=current.close,
                        close=current.close,
                        volume=0.0,
                    ))
        filled.append(candles[-1])
        return filled

    # ------------------------------------------------------------------ #
    #  Funding / open interest / liquidations                            #
    # ------------------------------------------------------------------ #

    def validate_funding_rates(self, rates: Sequence[FundingRate]) -> SeriesValidation[FundingRate]:
        valid: List[FundingRate] = []
        errors: List[str] = []
        warnings: List[str] = []

        for i, fr in enumerate(rates):
            if _missing(fr.timestamp) or _missing(fr.rate):
                errors.append(f"Funding rate {i}: Missing required fields")
                continue

            if abs(fr.rate) > cfg.EXTREME_FUNDING_RATE:
                warnings.append(f"Funding rate {i}: Extreme rate {fr.rate * 100:.4f}%")

            valid.append(fr)

        return SeriesValidation(valid, errors, warnings)

    def validate_open_interest(self, points: Sequence[OpenInterestPoint]) -> SeriesValidation[OpenInterestPoint]:
        valid: List[OpenInterestPoint] = []
        errors: List[str] = []
        warnings: List[str] = []

        for i, p in enumerate(points):
            if _missing(p.timestamp) or _missing(p.value):
                errors.append(f"OI {i}: Missing required fields")
                continue

            if p.value < 0:
                errors.append(f"OI {i}: Negative value")
                continue

            if valid and valid[-1].value > 0:
                change = abs((p.value - valid[-1].value) / valid[-1].value)
                if change > cfg.EXTREME_OI_CHANGE:
                    warnings.append(f"OI {i}: Extreme change {change * 100:.1f}%")

            valid.append(p)

        return SeriesValidation(valid, errors, warnings)

    def validate_liquidations(self, events: Sequence[LiquidationEvent]) -> SeriesValidation[LiquidationEvent]:
        valid: List[LiquidationEvent] = []
        errors: List[str] = []

        for i, ev in enumerate(events):
            if any(_missing(v) for v in (ev.timestamp, ev.side, ev.amount, ev.price)):
                errors.append(f"Liquidation {i}: Missing required fields")
                continue

            if ev.amount < 0 or ev.price < 0:
                errors.append(f"Liquidation {i}: Negative values")
                continue

            side = _parse_side(ev.side)
            if side is None:
                errors.append(f"Liquidation {i}: Invalid side")
                continue

            valid.append(ev if ev.side is side else LiquidationEvent(
                timestamp=ev.timestamp,
                side=side,
                amount=ev.amount,
                price=ev.price,
                instrument=ev.instrument,
            ))

        return SeriesValidation(valid, errors, [])

    # ------------------------------------------------------------------ #
    #  Aggregate                                                          #
    # ------------------------------------------------------------------ #

    def validate_market_data(
        self,
        dataset: MarketDataset,
        interval_ms: Optional[int] = None,
    ) -> DatasetValidation:
        """
        Validate every series, order them by time, optionally fill candle
        gaps, and enforce the minimum candle count.

        Parameters
        ----------
        dataset : MarketDataset
        interval_ms : int | None
            Nominal candle interval.  When given, gaps are filled with flat
            candles; when ``None`` the candles are passed through untouched.
        """
        candle_v = self.validate_candles(dataset.candles)
        funding_v = self.validate_funding_rates(dataset.funding_rates)
        oi_v = self.validate_open_interest(dataset.open_interest)
        liq_v = self.validate_liquidations(dataset.liquidations)

        errors = candle_v.errors + funding_v.errors + oi_v.errors + liq_v.errors
        warnings = candle_v.warnings + funding_v.warnings + oi_v.warnings + liq_v.warnings

        candles = sorted(candle_v.valid, key=lambda c: c.timestamp)
        deduped: List[Candle] = []
        for c in candles:
            if deduped and deduped[-1].timestamp == c.timestamp:
                warnings.append(f"Candle at {c.timestamp}: Duplicate timestamp dropped")
                continue
            deduped.append(c)

        if len(deduped) < self.min_candles:
            errors.append(f"Insufficient candles: {len(deduped)} (minimum {self.min_candles} required)")

        if interval_ms is not None:
            deduped = self.fill_candle_gaps(deduped, interval_ms)

        sanitized = dataset.replace(
            candles=tuple(deduped),
            funding_rates=tuple(sorted(funding_v.valid, key=lambda x: x.timestamp)),
            open_interest=tuple(sorted(oi_v.valid, key=lambda x: x.timestamp)),
            liquidations=tuple(sorted(liq_v.valid, key=lambda x: x.timestamp)),
        )

        return DatasetValidation(
            valid=not errors,
            sanitized_dataset=sanitized,
            errors=errors,
            warnings=warnings,
        )

    # ------------------------------------------------------------------ #
    #  Helpers                                                            #
    # ------------------------------------------------------------------ #

    @staticmethod
    def remove_outliers(values: Sequence[float], threshold: float = 3.0) -> List[float]:
        """Drop values more than ``threshold`` standard deviations away from the mean."""
        if len(values) == 0:
            return []
        arr = np.asarray(values, dtype=np.float64)
        mean = arr.mean()
        std = arr.std()
        return [float(v) for v in arr[np.abs(arr - mean) <= threshold * std]]
