"""
Market-data sources.

The engine never fetches data itself: it is handed a ``MarketDataset``, or a
``MarketDataSource`` it can ask for one.  Any object with a matching
``load`` method is a valid source.

CSV layout
----------
``CsvMarketDataSource`` reads one file per series from a directory::

    <instrument>_candles.csv         timestamp, open, high, low, close[, volume]
    <instrument>_funding.csv         timestamp, rate
    <instrument>_open_interest.csv   timestamp, value
    <instrument>_liquidations.csv    timestamp, side, amount, price

``timestamp`` is either epoch milliseconds or an ISO-8601 string.  Only the
candle file is mandatory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable

import pandas as pd
import polars as pl
from loguru import logger

from perpflow.exceptions import PerpflowError
from perpflow.backtester.models import MarketDataset, TimeLike, to_millis


@runtime_checkable
class MarketDataSource(Protocol):
    def load(self, instrument: str, start: TimeLike, end: TimeLike) -> MarketDataset:
        ...


class InMemoryMarketDataSource:
    """Serves a pre-built dataset, restricted to the requested period."""

    def __init__(self, dataset: MarketDataset) -> None:
        self.dataset = dataset

    def load(self, instrument: str, start: TimeLike, end: TimeLike) -> MarketDataset:
        if instrument != self.dataset.instrument:
            raise PerpflowError(
                f"No data for instrument {instrument!r} (source holds {self.dataset.instrument!r})"
            )
        return self.dataset.between(to_millis(start), to_millis(end))


class CsvMarketDataSource:
    """
    Loads a dataset from CSV files with polars.

    Parameters
    ----------
    directory : str | Path
        Folder holding the ``<instrument>_*.csv`` files.
    """

    SERIES = {
        "candles": "candles",
        "funding_rates": "funding",
        "open_interest": "open_interest",
        "liquidations": "liquidations",
    }

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def path_for(self, instrument: str, series: str) -> Path:
        return self.directory / f"{instrument}_{self.SERIES[series]}.csv"

    def load(self, instrument: str, start: TimeLike, end: TimeLike) -> MarketDataset:
        start_ms, end_ms = to_millis(start), to_millis(end)

        candles_path = self.path_for(instrument, "candles")
        if not candles_path.exists():
            raise FileNotFoundError(f"Candle file not found: {candles_path}")

        frames = {
            series: self._read(self.path_for(instrument, series), start_ms, end_ms)
            for series in self.SERIES
        }
        dataset = MarketDataset.from_frames(
            instrument,
            *(None if frames[s] is None else pd.DataFrame(frames[s].to_dict(as_series=False))
              for s in self.SERIES),
        )
        logger.info(
            f"Loaded {instrument} from {self.directory}: {len(dataset.candles)} candles, "
            f"{len(dataset.funding_rates)} funding, {len(dataset.open_interest)} OI, "
            f"{len(dataset.liquidations)} liquidations"
        )
        return dataset

    @staticmethod
    def _read(path: Path, start_ms: int, end_ms: int) -> Optional[pl.DataFrame]:
        if not path.exists():
            return None

        # full-file schema inference: a stray token anywhere turns its column into text
        df = pl.read_csv(path, infer_schema_length=None)
        if "timestamp" not in df.columns:
            raise PerpflowError(f"{path.name} has no 'timestamp' column")

        ts = df["timestamp"]
        if ts.dtype == pl.Utf8:
            as_ms = ts.cast(pl.Int64, strict=False)
            if as_ms.null_count() * 2 > len(ts):
                as_ms = ts.str.to_datetime(time_zone="UTC", strict=False).dt.epoch("ms")
            df = df.with_columns(as_ms.alias("timestamp"))
        else:
            df = df.with_columns(pl.col("timestamp").cast(pl.Int64))

        # unparseable timestamps are kept so that validation reports them
        return (
            df.filter(
                pl.col("timestamp").is_null()
                | pl.col("timestamp").is_between(start_ms, end_ms, closed="both")
            )
            .sort("timestamp")
        )
