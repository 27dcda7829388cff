"""Per-position monitoring loop.

One loop per open position: fetch price, advance the tracker, place the
exit order when an exit fires. Each loop stops on its own once the
tracker is terminal or its cancel token is set.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from ..core.errors import DataFetchError, ExecutionError
from ..core.events import EventBus, PositionActivated
from ..core.models import ExitReason, Fill, Side, TrackedPosition
from ..exchange.interfaces import MarketDataFeed, OrderExecutor
from .tracker import TrailingStopTracker

logger = logging.getLogger(__name__)


@dataclass
class PositionRecord:
    """Runtime state for one open position, kept apart from its data fields."""

    position: TrackedPosition
    tracker: TrailingStopTracker
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None

    @property
    def is_monitored(self) -> bool:
        return self.task is not None and not self.task.done()


@dataclass
class ExitOutcome:
    """Result of an exit order placed by the monitor."""

    reason: ExitReason
    fill: Optional[Fill] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


ExitHandler = Callable[[PositionRecord, ExitOutcome], Awaitable[None]]


class PositionMonitor:
    """Runs trailing-stop checks for positions on a fixed cadence."""

    def __init__(
        self,
        feed: MarketDataFeed,
        executor: OrderExecutor,
        bus: EventBus,
        interval: float = 5.0,
        fetch_timeout: float = 10.0,
        order_timeout: float = 15.0,
    ):
        self.feed = feed
        self.executor = executor
        self.bus = bus
        self.interval = interval
        self.fetch_timeout = fetch_timeout
        self.order_timeout = order_timeout

    async def fetch_price(self, symbol: str) -> float:
        """Current price for symbol.

        Raises:
            DataFetchError: On feed failure or timeout.
        """
        try:
            ticker = await asyncio.wait_for(self.feed.get_ticker(symbol), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            raise DataFetchError(f"Ticker request timed out after {self.fetch_timeout}s", symbol) from None
        except DataFetchError:
            raise
        except Exception as e:
            raise DataFetchError(f"Ticker request failed: {e}", symbol) from e
        return ticker.last_price

    async def place_exit(self, position: TrackedPosition) -> Fill:
        """Place the market order that closes position.

        Raises:
            ExecutionError: On executor failure or timeout.
        """
        if position.side == Side.SELL:
            order = self.executor.place_market_sell(position.symbol, position.quantity)
        else:
            order = self.executor.place_market_buy(position.symbol, position.quantity)

        try:
            return await asyncio.wait_for(order, timeout=self.order_timeout)
        except asyncio.TimeoutError:
            raise ExecutionError(
                f"Exit order timed out after {self.order_timeout}s", position.symbol
            ) from None
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(f"Exit order failed: {e}", position.symbol) from e

    async def tick(self, record: PositionRecord) -> Optional[ExitOutcome]:
        """Run one price check.

        Returns:
            ExitOutcome when an exit order was attempted, else None.

        Raises:
            DataFetchError: When the price could not be fetched.
        """
        tracker = record.tracker
        position = record.position
        if tracker.is_terminal or record.cancel_event.is_set():
            return None

        price = await self.fetch_price(position.symbol)
        if record.cancel_event.is_set():
            return None

        result = tracker.on_price(price)
        if result.activated:
            self.bus.publish(PositionActivated(position=position, price=price))

        signal = result.exit
        if signal is None:
            return None

        try:
            fill = await self.place_exit(position)
        except asyncio.CancelledError:
            # Order outcome unknown; never fire a second exit for it
            tracker.mark_error("Exit order outcome unknown: monitor cancelled while it was in flight")
            raise
        except ExecutionError as e:
            message = str(e) or type(e).__name__
            logger.error(f"❌ {position.id}: exit order failed: {message}")
            if not tracker.mark_error(message):
                return None
            return ExitOutcome(reason=signal.reason, error=message)

        if not tracker.mark_triggered(fill):
            logger.warning(
                f"⚠️ {position.id}: exit filled at {fill.fill_price} "
                f"(order {fill.order_id}) after it was already {position.status.value}"
            )
            return None

        logger.info(
            f"✅ {position.id}: exit filled at {fill.fill_price} "
            f"(P&L {position.realized_pnl:+.4f})"
        )
        return ExitOutcome(reason=signal.reason, fill=fill)

    async def run(self, record: PositionRecord, on_exit: ExitHandler) -> None:
        """Monitor until the position is terminal or the loop is cancelled."""
        position = record.position
        logger.info(f"👀 Monitoring {position.id} every {self.interval}s")

        while not record.cancel_event.is_set() and not record.tracker.is_terminal:
            outcome = None
            try:
                outcome = await self.tick(record)
            except DataFetchError as e:
                logger.warning(f"⚠️ {position.id}: price check failed: {e}")
            except Exception as e:
                logger.error(f"Monitor error for {position.id}: {e}", exc_info=True)

            if outcome is not None:
                await on_exit(record, outcome)
                break

            try:
                await asyncio.wait_for(record.cancel_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.debug(f"   🛑 Monitor for {position.id} ended ({position.status.value})")
