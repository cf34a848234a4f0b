"""
Position lifecycle management.

Each position id moves through exactly two states::

    absent ──open_position──▶ open ──close_position──▶ absent (+1 Trade)

There are no partial fills and no intermediate states.  The manager owns
the live set; everything it hands out (``Position``, ``Trade``) is frozen.

Protective exits
~~~~~~~~~~~~~~~~
``check_exit_conditions`` encodes the **mechanical guards** (stop loss and
take profit on leveraged PnL).  The engine evaluates it for every open
position *before* asking the strategy for signals, so a protective exit
always pre-empts a strategy exit on the same candle.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from loguru import logger

from perpflow.configuration import MS_PER_HOUR
from perpflow.backtester.costs import CostCalculator
from perpflow.backtester.models import (
    CostConfig,
    ExitReason,
    FundingRate,
    OrderSide,
    Position,
    PositionSide,
    RiskConfig,
    Signal,
    Trade,
)


class PositionManager:
    """
    Opens, prices and closes positions under a ``RiskConfig``.

    Parameters
    ----------
    risk_config : RiskConfig
        Sizing, leverage, stop loss / take profit and capacity.
    cost_config : CostConfig
        Parameters for the private ``CostCalculator``.
    """

    def __init__(self, risk_config: RiskConfig, cost_config: CostConfig) -> None:
        self.risk_config = risk_config
        self.cost_calculator = CostCalculator(cost_config)
        self._positions: Dict[str, Position] = {}
        self._id_counter = 0

    # ------------------------------------------------------------------ #
    #  Queries                                                            #
    # ------------------------------------------------------------------ #

    @property
    def open_positions(self) -> List[Position]:
        return list(self._positions.values())

    def get_position(self, position_id: str) -> Optional[Position]:
        return self._positions.get(position_id)

    def has_open_position(self, instrument: str) -> bool:
        return any(p.instrument == instrument for p in self._positions.values())

    @staticmethod
    def calculate_pnl(position: Position, price: float) -> float:
        """Leveraged dollar PnL of ``position`` marked at ``price`` (before costs)."""
        if position.side == PositionSide.LONG:
            change = price - position.entry_price
        else:
            change = position.entry_price - price
        return position.size * (change / position.entry_price) * position.leverage

    @staticmethod
    def pnl_percent(position: Position, price: float) -> float:
        """Leveraged PnL as a percentage of the position's margin."""
        if position.side == PositionSide.LONG:
            change = price - position.entry_price
        else:
            change = position.entry_price - price
        return change / position.entry_price * position.leverage * 100

    # ------------------------------------------------------------------ #
    #  Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    def open_position(
        self,
        signal: Signal,
        current_price: float,
        current_equity: float,
        volatility: float = 0.0,
    ) -> Optional[Position]:
        """
        Open a position for an entry ``signal``.

        Returns ``None`` when ``max_positions`` are already open or the
        computed size is not positive.  The entry price carries slippage.
        """
        if len(self._positions) >= self.risk_config.max_positions:
            return None

        size = current_equity * (self.risk_config.position_size / 100)
        if size <= 0 or current_price <= 0:
            return None

        fill_side = OrderSide.BUY if signal.direction == PositionSide.LONG else OrderSide.SELL
        entry_price, _ = self.cost_calculator.calculate_slippage(current_price, size, fill_side, volatility)

        self._id_counter += 1
        position = Position(
            id=f"pos_{self._id_counter}",
            instrument=signal.instrument,
            side=signal.direction,
            entry_price=entry_price,
            entry_time=signal.timestamp,
            size=size,
            leverage=self.risk_config.leverage,
            stop_loss=self.risk_config.stop_loss,
            take_profit=self.risk_config.take_profit,
        )
        self._positions[position.id] = position
        logger.debug(f"Opened {position.side.value} {position.id} at {entry_price:.4f} ({signal.reason})")
        return position

    def check_exit_conditions(self, position: Position, current_price: float) -> Optional[ExitReason]:
        """Return ``STOP_LOSS`` / ``TAKE_PROFIT`` when a guard is hit, else ``None``."""
        pnl_pct = self.pnl_percent(position, current_price)
        if pnl_pct <= -position.stop_loss:
            return ExitReason.STOP_LOSS
        if pnl_pct >= position.take_profit:
            return ExitReason.TAKE_PROFIT
        return None

    def close_position(
        self,
        position_id: str,
        exit_price: float,
        exit_time: int,
        exit_reason: ExitReason,
        funding_rates: Sequence[float],
        volatility: float = 0.0,
    ) -> Optional[Trade]:
        """
        Close ``position_id`` and emit its ``Trade``.

        Parameters
        ----------
        position_id : str
        exit_price : float
            Quoted price; exit slippage is applied on top.
        exit_time : int
        exit_reason : ExitReason
        funding_rates : sequence of float
            Hourly funding rates observed while the position was open.
        volatility : float
            Normalised volatility for the slippage model.

        Returns
        -------
        Trade | None
            ``None`` if no such position is open.
        """
        position = self._positions.get(position_id)
        if position is None:
            return None

        fill_side = OrderSide.SELL if position.side == PositionSide.LONG else OrderSide.BUY
        fill_price, slippage_cost = self.cost_calculator.calculate_slippage(
            exit_price, position.size, fill_side, volatility
        )

        gross_pnl = self.calculate_pnl(position, fill_price)
        holding_time = (exit_time - position.entry_time) / MS_PER_HOUR

        fees = self.cost_calculator.calculate_fees(position.size, position.leverage)
        funding = self.cost_calculator.calculate_funding(position, funding_rates, holding_time)
        total_cost = fees + slippage_cost + funding
        net_pnl = gross_pnl - total_cost

        trade = Trade(
            id=position.id,
            instrument=position.instrument,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=fill_price,
            entry_time=position.entry_time,
            exit_time=exit_time,
            size=position.size,
            leverage=position.leverage,
            gross_pnl=gross_pnl,
            pnl=net_pnl,
            pnl_percent=net_pnl / position.size * 100,
            fees=fees,
            slippage=slippage_cost,
            funding=funding,
            total_cost=total_cost,
            holding_time=holding_time,
            exit_reason=exit_reason,
        )

        del self._positions[position_id]
        logger.debug(f"Closed {position.id} ({exit_reason.value}) pnl={net_pnl:.2f}")
        return trade

    def close_all_positions(
        self,
        exit_price: float,
        exit_time: int,
        funding_rates: Sequence[FundingRate] = (),
        volatility: float = 0.0,
    ) -> List[Trade]:
        """
        Force-close every open position with reason ``END_OF_PERIOD``.

        ``funding_rates`` is the full funding series; each position is charged
        only the observations inside its own holding window.
        """
        trades: List[Trade] = []
        for position_id in list(self._positions):
            position = self._positions[position_id]
            held = [
                fr.rate for fr in funding_rates
                if position.entry_time <= fr.timestamp <= exit_time
            ]
            trade = self.close_position(
                position_id, exit_price, exit_time, ExitReason.END_OF_PERIOD, held, volatility
            )
            if trade is not None:
                trades.append(trade)
        return trades

    def reset(self) -> None:
        self._positions.clear()
        self._id_counter = 0
