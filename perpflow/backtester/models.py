"""
Data models, enums, and type definitions for the backtesting engine.

All value objects are kept immutable (frozen dataclasses / enums) so that
nothing the caller hands in, and nothing the engine hands back, can be
mutated half-way through a run.  Open positions are frozen too: the
``PositionManager`` replaces them wholesale, it never edits them.

Timestamps are integer epoch **milliseconds** throughout.
"""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from perpflow import configuration as cfg
from perpflow.exceptions import ConfigurationError


TimeLike = Union[int, float, str, dt.datetime, dt.date, pd.Timestamp]


def to_millis(value: TimeLike) -> int:
    """Convert a timestamp-like value to epoch milliseconds (naive values are UTC)."""
    if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, (float, np.floating)):
        return int(value)
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return int(ts.value // 1_000_000)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class PositionSide(enum.Enum):
    """Direction of a position (and of the signal that opens it)."""
    LONG  = "long"
    SHORT = "short"

    @property
    def opposite(self) -> "PositionSide":
        return PositionSide.SHORT if self is PositionSide.LONG else PositionSide.LONG


class OrderSide(enum.Enum):
    """Side of a single fill, used by the slippage model."""
    BUY  = "buy"
    SELL = "sell"


class SignalType(enum.Enum):
    ENTRY = "entry"
    EXIT  = "exit"


class ExitReason(enum.Enum):
    """Why a position was closed."""
    TAKE_PROFIT   = "takeProfit"
    STOP_LOSS     = "stopLoss"
    SIGNAL        = "signal"
    END_OF_PERIOD = "endOfPeriod"


class FundingAssumption(enum.Enum):
    NEGATIVE = "negative"
    NEUTRAL  = "neutral"
    POSITIVE = "positive"


class StrategyType(enum.Enum):
    FUNDING_RATE_EXTREME    = "fundingRateExtreme"
    OI_EXPANSION            = "oiExpansion"
    LIQUIDATION_CLUSTERS    = "liquidationClusters"
    CROSS_ASSET_CORRELATION = "crossAssetCorrelation"


class MarketRegime(enum.Enum):
    BULL     = "bull"
    BEAR     = "bear"
    SIDEWAYS = "sideways"


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Candle:
    """OHLCV bar for one interval."""
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True, slots=True)
class FundingRate:
    """Hourly funding rate observation."""
    timestamp: int
    rate: float
    instrument: str = ""


@dataclass(frozen=True, slots=True)
class OpenInterestPoint:
    """Aggregate open interest in USD."""
    timestamp: int
    value: float
    instrument: str = ""


@dataclass(frozen=True, slots=True)
class LiquidationEvent:
    """A forced closure.  ``side`` is the side of the position that was liquidated."""
    timestamp: int
    side: Any
    amount: float
    price: float
    instrument: str = ""


@dataclass(frozen=True)
class MarketDataset:
    """
    Aggregate of the four market series for one instrument.

    The dataset is owned by the caller and consumed read-only by the engine.
    Numpy views of each series are built lazily and cached, so strategies
    can window them with ``np.searchsorted`` instead of scanning lists.
    """
    instrument: str
    candles: Tuple[Candle, ...] = ()
    funding_rates: Tuple[FundingRate, ...] = ()
    open_interest: Tuple[OpenInterestPoint, ...] = ()
    liquidations: Tuple[LiquidationEvent, ...] = ()

    def __post_init__(self) -> None:
        for name in ("candles", "funding_rates", "open_interest", "liquidations"):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value))

    # ------------------------------------------------------------------ #
    #  Array views                                                        #
    # ------------------------------------------------------------------ #

    @cached_property
    def candle_timestamps(self) -> np.ndarray:
        return np.array([c.timestamp for c in self.candles], dtype=np.int64)

    @cached_property
    def closes(self) -> np.ndarray:
        return np.array([c.close for c in self.candles], dtype=np.float64)

    @cached_property
    def volumes(self) -> np.ndarray:
        return np.array([c.volume for c in self.candles], dtype=np.float64)

    @cached_property
    def funding_timestamps(self) -> np.ndarray:
        return np.array([f.timestamp for f in self.funding_rates], dtype=np.int64)

    @cached_property
    def funding_values(self) -> np.ndarray:
        return np.array([f.rate for f in self.funding_rates], dtype=np.float64)

    @cached_property
    def oi_timestamps(self) -> np.ndarray:
        return np.array([p.timestamp for p in self.open_interest], dtype=np.int64)

    @cached_property
    def oi_values(self) -> np.ndarray:
        return np.array([p.value for p in self.open_interest], dtype=np.float64)

    @cached_property
    def liquidation_timestamps(self) -> np.ndarray:
        return np.array([l.timestamp for l in self.liquidations], dtype=np.int64)

    @cached_property
    def liquidation_amounts(self) -> np.ndarray:
        return np.array([l.amount for l in self.liquidations], dtype=np.float64)

    @cached_property
    def liquidation_is_long(self) -> np.ndarray:
        return np.array([_side_value(l.side) == "long" for l in self.liquidations], dtype=bool)

    # ------------------------------------------------------------------ #
    #  Conversions                                                        #
    # ------------------------------------------------------------------ #

    def replace(self, **changes: Any) -> "MarketDataset":
        """Return a copy with some series swapped (cached views are not carried over)."""
        values = {
            "instrument": self.instrument,
            "candles": self.candles,
            "funding_rates": self.funding_rates,
            "open_interest": self.open_interest,
            "liquidations": self.liquidations,
        }
        values.update(changes)
        return MarketDataset(**values)

    def between(self, start: int, end: int) -> "MarketDataset":
        """Sub-dataset with every series restricted to ``start <= timestamp <= end``."""
        def _keep(series):
            return tuple(x for x in series if start <= x.timestamp <= end)

        return self.replace(
            candles=_keep(self.candles),
            funding_rates=_keep(self.funding_rates),
            open_interest=_keep(self.open_interest),
            liquidations=_keep(self.liquidations),
        )

    def candles_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(c.timestamp, c.open, c.high, c.low, c.close, c.volume) for c in self.candles],
            columns=["timestamp", "open", "high", "low", "close", "volume"],
        )

    @classmethod
    def from_frames(
        cls,
        instrument: str,
        candles: pd.DataFrame,
        funding_rates: Optional[pd.DataFrame] = None,
        open_interest: Optional[pd.DataFrame] = None,
        liquidations: Optional[pd.DataFrame] = None,
    ) -> "MarketDataset":
        """
        Build a dataset from pandas DataFrames.

        Required columns
        ----------------
        candles : ``timestamp, open, high, low, close`` (``volume`` optional)
        funding_rates : ``timestamp, rate``
        open_interest : ``timestamp, value``
        liquidations : ``timestamp, side, amount, price``

        Missing or unparseable cells become ``None`` so that the
        ``DataValidator`` can report them instead of failing here.
        """
        def _rows(df: Optional[pd.DataFrame], numeric: Tuple[str, ...]):
            if df is None or df.empty:
                return []
            df = df.copy()
            for col in numeric:
                if col in df.columns:
                    df[col] = pd.to_numeric(df[col], errors="coerce")
            if "timestamp" in df.columns:
                df["timestamp"] = _coerce_timestamps(df["timestamp"])
            clean = df.astype(object).where(pd.notna(df), None)
            return clean.to_dict(orient="records")

        def _ts(value):
            return None if value is None else to_millis(value)

        def _num(value):
            return None if value is None else float(value)

        candle_rows = [
            Candle(
                timestamp=_ts(r.get("timestamp")),
                open=_num(r.get("open")),
                high=_num(r.get("high")),
                low=_num(r.get("low")),
                close=_num(r.get("close")),
                volume=_num(r.get("volume", 0.0)),
            )
            for r in _rows(candles, ("open", "high", "low", "close", "volume"))
        ]
        funding_rows = [
            FundingRate(timestamp=_ts(r.get("timestamp")), rate=_num(r.get("rate")), instrument=instrument)
            for r in _rows(funding_rates, ("rate",))
        ]
        oi_rows = [
            OpenInterestPoint(timestamp=_ts(r.get("timestamp")), value=_num(r.get("value")), instrument=instrument)
            for r in _rows(open_interest, ("value",))
        ]
        liq_rows = [
            LiquidationEvent(
                timestamp=_ts(r.get("timestamp")),
                side=r.get("side"),
                amount=_num(r.get("amount")),
                price=_num(r.get("price")),
                instrument=instrument,
            )
            for r in _rows(liquidations, ("amount", "price"))
        ]
        return cls(instrument, tuple(candle_rows), tuple(funding_rows), tuple(oi_rows), tuple(liq_rows))


def _coerce_timestamps(values: pd.Series) -> pd.Series:
    """Epoch milliseconds as floats; unparseable cells become NaN."""
    if pd.api.types.is_datetime64_any_dtype(values):
        stamps = pd.to_datetime(values, utc=True)
        return stamps.map(lambda t: np.nan if pd.isna(t) else float(t.value // 1_000_000))

    ms = pd.to_numeric(values, errors="coerce").astype(np.float64)
    text = values[ms.isna() & values.notna()]
    if len(text):
        parsed = pd.to_datetime(text.astype(str), errors="coerce", utc=True)
        ms.loc[text.index] = parsed.map(lambda t: np.nan if pd.isna(t) else float(t.value // 1_000_000))
    return ms


def _side_value(side: Any) -> Any:
    return side.value if isinstance(side, enum.Enum) else side


# ---------------------------------------------------------------------------
# Signals, positions, trades
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Signal:
    """
    Instruction produced by a strategy.  Never persisted.

    Attributes
    ----------
    timestamp : int
    instrument : str
    type : SignalType
        ``ENTRY`` opens a position, ``EXIT`` closes the matching one.
    direction : PositionSide
        Side to open, or side of the position to close.
    confidence : float
        0–1 scale.
    reason : str
        Human-readable trigger description.
    metadata : dict
        Strategy-specific diagnostics.
    """
    timestamp: int
    instrument: str
    type: SignalType
    direction: PositionSide
    confidence: float
    reason: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Position:
    """
    An open position.  ``size`` is the margin in USD; notional is
    ``size * leverage``.  ``stop_loss`` / ``take_profit`` are percentages of
    leveraged PnL relative to ``size``.
    """
    id: str
    instrument: str
    side: PositionSide
    entry_price: float
    entry_time: int
    size: float
    leverage: float
    stop_loss: float
    take_profit: float

    @property
    def notional(self) -> float:
        return self.size * self.leverage


@dataclass(frozen=True, slots=True)
class Trade:
    """
    Immutable record written exactly once when a position is closed.

    ``total_cost == fees + slippage + funding`` and
    ``pnl == gross_pnl - total_cost``.
    """
    id: str
    instrument: str
    side: PositionSide
    entry_price: float
    exit_price: float
    entry_time: int
    exit_time: int
    size: float
    leverage: float
    gross_pnl: float
    pnl: float
    pnl_percent: float
    fees: float
    slippage: float
    funding: float
    total_cost: float
    holding_time: float  # hours
    exit_reason: ExitReason


@dataclass(frozen=True, slots=True)
class EquityPoint:
    timestamp: int
    equity: float
    pnl: float


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RiskConfig:
    """
    Position sizing and protective exits.

    Attributes
    ----------
    initial_capital : float
    position_size : float
        Percentage of current equity committed as margin per position.
    leverage : float
    stop_loss : float
        Percentage of leveraged PnL at which a position is stopped out.
    take_profit : float
        Percentage of leveraged PnL at which profit is taken.
    max_positions : int
    """
    initial_capital: float = cfg.INITIAL_CAPITAL
    position_size: float = cfg.POSITION_SIZE_PCT
    leverage: float = cfg.LEVERAGE
    stop_loss: float = cfg.STOP_LOSS_PCT
    take_profit: float = cfg.TAKE_PROFIT_PCT
    max_positions: int = cfg.MAX_POSITIONS

    def __post_init__(self) -> None:
        if self.initial_capital <= 0:
            raise ConfigurationError(f"initial_capital must be positive, got {self.initial_capital}")
        if self.leverage <= 0:
            raise ConfigurationError(f"leverage must be positive, got {self.leverage}")
        if not 0 < self.position_size <= 100:
            raise ConfigurationError(f"position_size must be in (0, 100], got {self.position_size}")
        if self.max_positions < 1:
            raise ConfigurationError(f"max_positions must be at least 1, got {self.max_positions}")
        if self.stop_loss < 0 or self.take_profit < 0:
            raise ConfigurationError("stop_loss and take_profit must be non-negative")


@dataclass(frozen=True, slots=True)
class CostConfig:
    """
    Transaction-cost parameters.  Defaults are deliberately pessimistic.
    """
    taker_fee: float = cfg.TAKER_FEE
    maker_fee: float = cfg.MAKER_FEE
    fee_multiplier: float = cfg.FEE_MULTIPLIER
    slippage_base: float = cfg.SLIPPAGE_BASE
    slippage_volatility: float = cfg.SLIPPAGE_VOLATILITY
    funding_assumption: FundingAssumption = FundingAssumption.NEGATIVE

    def __post_init__(self) -> None:
        if not isinstance(self.funding_assumption, FundingAssumption):
            object.__setattr__(self, "funding_assumption", parse_enum(FundingAssumption, self.funding_assumption))


@dataclass(frozen=True, slots=True)
class BacktestConfig:
    """
    Immutable run configuration.

    Attributes
    ----------
    instrument : str
        Instrument traded, e.g. ``"BTC"``.
    start_date, end_date : datetime
    strategy : StrategyType
    risk_config : RiskConfig
    cost_config : CostConfig
    interval : str
        One of ``15m``, ``1h``, ``4h``, ``1d``.
    """
    instrument: str = "BTC"
    start_date: dt.datetime = dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)
    end_date: dt.datetime = dt.datetime(2024, 12, 31, tzinfo=dt.timezone.utc)
    strategy: StrategyType = StrategyType.FUNDING_RATE_EXTREME
    risk_config: RiskConfig = field(default_factory=RiskConfig)
    cost_config: CostConfig = field(default_factory=CostConfig)
    interval: str = "1h"

    def __post_init__(self) -> None:
        if not isinstance(self.strategy, StrategyType):
            object.__setattr__(self, "strategy", parse_enum(StrategyType, self.strategy))
        if self.interval not in cfg.INTERVAL_MS:
            raise ConfigurationError(
                f"Unsupported interval {self.interval!r}. Expected one of {sorted(cfg.INTERVAL_MS)}"
            )
        if to_millis(self.end_date) < to_millis(self.start_date):
            raise ConfigurationError("end_date must not precede start_date")

    @property
    def interval_ms(self) -> int:
        return cfg.INTERVAL_MS[self.interval]

    @property
    def start_ms(self) -> int:
        return to_millis(self.start_date)

    @property
    def end_ms(self) -> int:
        return to_millis(self.end_date)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BacktestConfig":
        """Build a config from a plain mapping (enum names as strings, ISO dates)."""
        risk = data.get("risk_config") or {}
        cost = data.get("cost_config") or {}
        kwargs: Dict[str, Any] = {k: data[k] for k in ("instrument", "strategy", "interval") if k in data}
        for key in ("start_date", "end_date"):
            if key in data:
                kwargs[key] = pd.Timestamp(data[key]).to_pydatetime()
        kwargs["risk_config"] = risk if isinstance(risk, RiskConfig) else RiskConfig(**risk)
        kwargs["cost_config"] = cost if isinstance(cost, CostConfig) else CostConfig(**cost)
        return cls(**kwargs)


def parse_enum(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        try:
            return enum_cls[str(value).upper()]
        except KeyError:
            valid = [m.value for m in enum_cls]
            raise ConfigurationError(f"Unknown {enum_cls.__name__} {value!r}. Expected one of {valid}") from None
