"""Trailing-stop state machine for a single tracked position.

pending_activation -> active -> triggered | error
Any non-terminal state can also be closed externally (manual close, cancel).
Terminal states never mutate again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.models import ExitReason, Fill, PositionStatus, Side, TrackedPosition

logger = logging.getLogger(__name__)


@dataclass
class ExitSignal:
    """Exit condition that fired on a tick."""

    reason: ExitReason
    price: float
    stop_price: Optional[float]


@dataclass
class TickResult:
    """What a single price tick did to the tracker."""

    activated: bool = False
    peak_updated: bool = False
    exit: Optional[ExitSignal] = None


class TrailingStopTracker:
    """Advances one position's trailing stop on each price tick.

    For a SELL-side stop (long exit):
    - stop = peak * (1 - trailing_percent / 100), peak = highest price seen
    - exit when price <= stop, price <= stop_loss, or price >= take_profit
    BUY-side stops mirror every comparison and follow the lowest price.

    When trailing and stop-loss both fire on one tick the trailing stop
    is reported.
    """

    def __init__(self, position: TrackedPosition):
        self.position = position
        self._exit_pending = False

        if position.activation_price is None:
            position.status = PositionStatus.ACTIVE
            position.peak_price = position.entry_price
            position.activated_at = position.created_at
        else:
            position.status = PositionStatus.PENDING_ACTIVATION

    @property
    def is_terminal(self) -> bool:
        return self.position.is_terminal

    @property
    def exit_pending(self) -> bool:
        """An exit fired and its order outcome is not yet recorded."""
        return self._exit_pending and not self.is_terminal

    def on_price(self, price: float) -> TickResult:
        """Advance the state machine with a new price.

        Returns:
            TickResult; result.exit is set when an exit order must be placed.
        """
        result = TickResult()
        position = self.position

        if position.is_terminal or self._exit_pending or price <= 0:
            return result

        if position.status == PositionStatus.PENDING_ACTIVATION:
            if not self._reached_activation(price):
                return result
            position.status = PositionStatus.ACTIVE
            position.activated_at = datetime.now()
            # peak never starts worse than entry
            if position.side == Side.SELL:
                position.peak_price = max(price, position.entry_price)
            else:
                position.peak_price = min(price, position.entry_price)
            result.activated = True
            logger.info(f"🟢 {position.id}: activated at {price}")
        elif self._is_better(price, position.peak_price):
            position.peak_price = price
            result.peak_updated = True
            logger.debug(f"   📈 {position.id}: new peak {price} (stop {position.stop_price:.8g})")

        signal = self._check_exit(price)
        if signal is not None:
            self._exit_pending = True
            position.exit_reason = signal.reason
            position.trigger_price = price
            position.triggered_at = datetime.now()
            result.exit = signal
            logger.info(
                f"🎯 {position.id}: {signal.reason.value} at {price} "
                f"(stop={signal.stop_price}, peak={position.peak_price})"
            )

        return result

    def claim_exit(self) -> bool:
        """Reserve the exit for an order placed outside the tick path.

        While claimed, ticks are ignored. Returns False when an exit is
        already in flight or the position is terminal.
        """
        if self.position.is_terminal or self._exit_pending:
            return False
        self._exit_pending = True
        return True

    def release_exit(self) -> None:
        """Give back a claim whose order failed; ticks resume."""
        if not self.is_terminal:
            self._exit_pending = False

    def mark_triggered(self, fill: Fill) -> bool:
        """Record the confirmed exit fill. No-op once terminal."""
        position = self.position
        if position.is_terminal:
            return False

        position.status = PositionStatus.TRIGGERED
        position.exit_price = fill.fill_price
        position.exit_order_id = fill.order_id
        position.realized_pnl = position.calc_pnl_amount(fill.fill_price)
        position.closed_at = datetime.now()
        if position.triggered_at is None:
            position.triggered_at = position.closed_at
        return True

    def mark_error(self, message: str) -> bool:
        """Record a failed exit order. No automatic retry."""
        position = self.position
        if position.is_terminal:
            return False

        position.status = PositionStatus.ERROR
        position.error_message = message
        position.closed_at = datetime.now()
        return True

    def mark_closed(self, reason: ExitReason, price: Optional[float] = None) -> bool:
        """Close from outside the tick path (manual close or cancel)."""
        position = self.position
        if position.is_terminal:
            return False

        position.status = PositionStatus.CLOSED
        position.exit_reason = reason
        position.closed_at = datetime.now()
        if price is not None:
            position.exit_price = price
            position.realized_pnl = position.calc_pnl_amount(price)
        return True

    def _reached_activation(self, price: float) -> bool:
        activation = self.position.activation_price
        if self.position.side == Side.SELL:
            return price >= activation
        return price <= activation

    def _is_better(self, price: float, peak: float) -> bool:
        if self.position.side == Side.SELL:
            return price > peak
        return price < peak

    def _check_exit(self, price: float) -> Optional[ExitSignal]:
        position = self.position
        stop = position.stop_price
        if stop is None:
            return None

        stop_loss = position.stop_loss_price
        take_profit = position.take_profit_price

        if position.side == Side.SELL:
            if price <= stop:
                return ExitSignal(ExitReason.TRAILING_STOP, price, stop)
            if stop_loss is not None and price <= stop_loss:
                return ExitSignal(ExitReason.STOP_LOSS, price, stop)
            if take_profit is not None and price >= take_profit:
                return ExitSignal(ExitReason.TAKE_PROFIT, price, stop)
        else:
            if price >= stop:
                return ExitSignal(ExitReason.TRAILING_STOP, price, stop)
            if stop_loss is not None and price >= stop_loss:
                return ExitSignal(ExitReason.STOP_LOSS, price, stop)
            if take_profit is not None and price <= take_profit:
                return ExitSignal(ExitReason.TAKE_PROFIT, price, stop)

        return None
