"""
Transaction-cost model.

The cost layer turns an *ideal* fill into a *realistic* one and prices the
carry of a leveraged position:

* Exchange fees (entry + exit), inflated by ``fee_multiplier``
* Volatility-dependent slippage
* Funding payments over the holding period

Design
------
Every choice here is biased **against** the trader: fees are multiplied,
slippage always moves the fill the wrong way, and under the default
``negative`` funding assumption the position always pays funding at an
upper-quartile rate.  The validation thresholds in ``scoring`` are
calibrated on results produced under this bias, so a change of direction
here silently invalidates them.

Notes
-----
Slippage always works **against** the trader:
- BUY  (long entry / short exit) → price goes UP
- SELL (short entry / long exit) → price goes DOWN
"""

from __future__ import annotations

import dataclasses
from typing import Sequence, Tuple

import numpy as np

from perpflow import configuration as cfg
from perpflow.backtester.models import (
    CostConfig,
    FundingAssumption,
    OrderSide,
    Position,
    Trade,
)


class CostCalculator:
    """
    Deterministic, pessimistic cost model.

    Parameters
    ----------
    config : CostConfig
        Fee, slippage and funding parameters.

    Examples
    --------
    >>> calc = CostCalculator(CostConfig(fee_multiplier=1.0))
    >>> calc.calculate_fees(size=1_000, leverage=3)   # 3_000 notional * 0.0007 * 2
    """

    def __init__(self, config: CostConfig) -> None:
        self.config = config

    # ------------------------------------------------------------------ #
    #  Fees                                                               #
    # ------------------------------------------------------------------ #

    def calculate_fees(self, size: float, leverage: float, is_maker: bool = False) -> float:
        """Round-trip fee on the leveraged notional, scaled by ``fee_multiplier``."""
        base_fee = self.config.maker_fee if is_maker else self.config.taker_fee
        notional = size * leverage
        return notional * base_fee * 2 * self.config.fee_multiplier

    # ------------------------------------------------------------------ #
    #  Slippage                                                           #
    # ------------------------------------------------------------------ #

    def calculate_slippage(
        self,
        price: float,
        size: float,
        side: OrderSide,
        volatility: float = 0.0,
    ) -> Tuple[float, float]:
        """
        Compute the realised fill price.

        Parameters
        ----------
        price : float
            Quoted price.
        size : float
            USD size of the fill.
        side : OrderSide
        volatility : float
            Normalised 0–1 volatility (see ``calculate_volatility``).

        Returns
        -------
        (adjusted_price, slippage_cost) : tuple
        """
        total = self.config.slippage_base + volatility * self.config.slippage_volatility
        multiplier = (1 + total) if side == OrderSide.BUY else (1 - total)
        adjusted_price = price * multiplier
        cost = abs(adjusted_price - price) * (size / price) if price > 0 else 0.0
        return adjusted_price, cost

    # ------------------------------------------------------------------ #
    #  Funding                                                            #
    # ------------------------------------------------------------------ #

    def calculate_funding(
        self,
        position: Position,
        funding_rates: Sequence[float],
        hours_held: float,
    ) -> float:
        """
        Funding paid over the life of ``position``.

        ``funding_rates`` are the hourly rates observed while the position was
        open.  The sign of each rate is ignored: the position is always
        assumed to be on the paying side.
        """
        notional = position.size * position.leverage

        if len(funding_rates) == 0:
            return notional * cfg.FUNDING_FALLBACK_RATE * hours_held

        abs_rates = np.sort(np.abs(np.asarray(funding_rates, dtype=np.float64)))
        assumption = self.config.funding_assumption

        if assumption == FundingAssumption.NEGATIVE:
            rate = float(abs_rates[int(len(abs_rates) * 0.75)]) or cfg.FUNDING_FALLBACK_RATE
            return notional * rate * hours_held

        if assumption == FundingAssumption.NEUTRAL:
            return float(notional * abs_rates.sum())

        # POSITIVE: least punitive, still never a credit
        rate = float(abs_rates[len(abs_rates) // 2]) or cfg.FUNDING_MEDIAN_FLOOR
        return notional * rate * hours_held

    @staticmethod
    def calculate_total_costs(trade: Trade) -> float:
        return trade.fees + trade.slippage + trade.funding

    # ------------------------------------------------------------------ #
    #  Volatility                                                         #
    # ------------------------------------------------------------------ #

    @staticmethod
    def calculate_volatility(prices: Sequence[float], period: int = cfg.VOLATILITY_PERIOD) -> float:
        """
        Normalised trailing volatility in [0, 1].

        Standard deviation of simple returns over the last ``period`` prices,
        divided by an assumed 5% per-period ceiling.  With less than
        ``period`` prices a moderate 0.5 is returned.
        """
        if len(prices) < period:
            return cfg.DEFAULT_VOLATILITY

        recent = np.asarray(prices[-period:], dtype=np.float64)
        prev = recent[:-1]
        if np.any(prev <= 0):
            return 1.0
        returns = np.diff(recent) / prev
        std = float(np.std(returns)) if len(returns) else 0.0
        return min(max(std / cfg.VOLATILITY_CEILING, 0.0), 1.0)

    # ------------------------------------------------------------------ #
    #  Stress                                                             #
    # ------------------------------------------------------------------ #

    def apply_stress_multiplier(self, multiplier: float) -> CostConfig:
        """Return a copy of the config with fees and slippage scaled by ``multiplier``."""
        return dataclasses.replace(
            self.config,
            fee_multiplier=self.config.fee_multiplier * multiplier,
            slippage_base=self.config.slippage_base * multiplier,
            slippage_volatility=self.config.slippage_volatility * multiplier,
        )
