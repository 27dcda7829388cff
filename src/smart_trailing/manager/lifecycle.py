"""Position Lifecycle Manager.

Owns the active-position set. Every create and remove goes through here,
under one asyncio.Lock, so the max-positions and one-position-per-symbol
rules hold when a scan and a manual request race.
"""

import asyncio
import logging
import math
import time
from collections import deque
from datetime import datetime
from typing import Deque, Dict, List, Optional, Sequence, Set, Tuple

from ..core.config import EngineConfig, Settings, normalize_symbol
from ..core.errors import (
    CapacityRejection,
    ExecutionError,
    ExitInProgressError,
    PositionNotFoundError,
    SmartTrailingError,
    ValidationError,
)
from ..core.events import AnalysisError, EventBus, PositionClosed, PositionCreated
from ..core.models import (
    CoinAnalysis,
    ExitReason,
    Fill,
    ManualPositionRequest,
    Side,
    TrackedPosition,
)
from ..exchange.interfaces import OrderExecutor
from .monitor import ExitOutcome, PositionMonitor, PositionRecord
from .tracker import TrailingStopTracker

logger = logging.getLogger(__name__)

# Reasons that come from the stop itself firing
STOP_REASONS = (ExitReason.TRAILING_STOP, ExitReason.STOP_LOSS, ExitReason.TAKE_PROFIT)


def risk_prices(
    entry_price: float,
    side: Side,
    stop_loss_pct: float,
    take_profit_pct: float,
) -> Tuple[Optional[float], Optional[float]]:
    """Absolute stop-loss / take-profit prices. A percent of 0 disables that exit."""
    stop_loss = take_profit = None

    if side == Side.SELL:
        if stop_loss_pct > 0:
            stop_loss = entry_price * (1 - stop_loss_pct / 100)
        if take_profit_pct > 0:
            take_profit = entry_price * (1 + take_profit_pct / 100)
    else:
        if stop_loss_pct > 0:
            stop_loss = entry_price * (1 + stop_loss_pct / 100)
        if 0 < take_profit_pct < 100:
            take_profit = entry_price * (1 - take_profit_pct / 100)

    return stop_loss, take_profit


def _positive(value) -> bool:
    """Finite number above zero. NaN and inf fail."""
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


def validate_request(request: ManualPositionRequest) -> None:
    """Raises ValidationError listing every problem with a manual request."""
    errors = []

    if not normalize_symbol(request.symbol or ""):
        errors.append("symbol is required")
    if not _positive(request.quantity):
        errors.append("quantity must be > 0")
    if not _positive(request.trailing_percent) or request.trailing_percent > 100:
        errors.append("trailing_percent must be in (0, 100]")
    if not _positive(request.reference_price):
        errors.append("reference_price must be > 0")
    for name in ("activation_price", "stop_loss_price", "take_profit_price"):
        value = getattr(request, name)
        if value is not None and not _positive(value):
            errors.append(f"{name} must be > 0")
    if not isinstance(request.side, Side):
        errors.append(f"side must be one of {[s.value for s in Side]}")

    if errors:
        raise ValidationError("\n".join(errors))


class PositionLifecycleManager:
    """Creates, monitors and retires tracked positions.

    Automated creation skips silently when there is no room. Manual
    creation raises CapacityRejection instead. Finished positions move to
    a bounded history.
    """

    def __init__(
        self,
        settings: Settings,
        bus: EventBus,
        monitor: PositionMonitor,
        executor: OrderExecutor,
        config: Optional[EngineConfig] = None,
    ):
        self.settings = settings
        self.bus = bus
        self.monitor = monitor
        self.executor = executor
        self.config = config or EngineConfig()

        self._records: Dict[str, PositionRecord] = {}
        # Symbols whose entry order is in flight; each holds a slot
        self._reserved: Set[str] = set()
        self._history: Deque[TrackedPosition] = deque(maxlen=self.config.history_size)
        self._lock = asyncio.Lock()
        self._monitoring = False

    # ----------------------------------------------------------------- queries

    @property
    def open_count(self) -> int:
        return len(self._records)

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    def open_symbols(self) -> Set[str]:
        return {r.position.symbol for r in self._records.values()}

    def has_capacity(self) -> bool:
        return len(self._records) + len(self._reserved) < self.settings.max_positions

    def get_position(self, position_id: str) -> Optional[TrackedPosition]:
        record = self._records.get(position_id)
        return record.position if record else None

    def get_open_positions(self) -> List[TrackedPosition]:
        """Open positions in creation order."""
        return [r.position for r in self._records.values()]

    def get_positions(self, include_closed: bool = False) -> List[TrackedPosition]:
        """Open positions, then finished ones newest trigger first."""
        positions = self.get_open_positions()
        if include_closed:
            finished = sorted(
                self._history,
                key=lambda p: p.triggered_at or p.closed_at or p.created_at,
                reverse=True,
            )
            positions.extend(finished)
        return positions

    # ---------------------------------------------------------------- creation

    async def process_analyses(self, analyses: Sequence[CoinAnalysis]) -> List[TrackedPosition]:
        """Open positions for the best opportunities of one scan.

        Candidates are taken by descending confidence until capacity runs
        out. Symbols already tracked are skipped.
        """
        candidates = sorted(
            (a for a in analyses if a.is_good_for_trailing),
            key=lambda a: a.confidence,
            reverse=True,
        )
        opened = []

        for analysis in candidates:
            if not self.has_capacity():
                logger.debug(
                    f"   ⏭️ Max positions ({self.settings.max_positions}) reached, "
                    f"skipping {len(candidates) - len(opened)} candidate(s)"
                )
                break
            try:
                position = await self.create_from_analysis(analysis)
            except SmartTrailingError as e:
                logger.warning(f"⚠️ Could not open {analysis.symbol}: {e}")
                self.bus.publish(AnalysisError(error=e, symbol=analysis.symbol))
                continue
            if position is not None:
                opened.append(position)

        return opened

    async def create_from_analysis(self, analysis: CoinAnalysis) -> Optional[TrackedPosition]:
        """Open an automated position sized from settings.

        Returns:
            The new position, or None when skipped for capacity.

        Raises:
            ValidationError: If the analysis has no usable price.
            ExecutionError: If the entry order failed.
        """
        settings = self.settings
        symbol = analysis.symbol

        if analysis.current_price <= 0:
            raise ValidationError(f"{symbol}: invalid price {analysis.current_price}")

        async with self._lock:
            reason = self._capacity_problem(symbol, settings)
            if reason:
                logger.debug(f"   ⏭️ Skipping {symbol}: {reason}")
                return None
            self._reserved.add(symbol)

        try:
            entry_price = analysis.current_price
            quantity = settings.investment_amount / entry_price

            if self.config.place_entry_orders:
                fill = await self._place_entry(symbol, quantity)
                entry_price = fill.fill_price
                quantity = fill.quantity or quantity

            stop_loss, take_profit = risk_prices(
                entry_price, Side.SELL, settings.stop_loss, settings.take_profit
            )

            async with self._lock:
                self._reserved.discard(symbol)
                record = self._register(
                    symbol=symbol,
                    entry_price=entry_price,
                    quantity=quantity,
                    trailing_percent=settings.trailing_percent,
                    stop_loss_price=stop_loss,
                    take_profit_price=take_profit,
                    confidence=analysis.confidence,
                    side=Side.SELL,
                    activation_price=None,
                    source="auto",
                )
        finally:
            self._reserved.discard(symbol)

        self._announce(record)
        return record.position

    async def create_manual(self, request: ManualPositionRequest) -> TrackedPosition:
        """Track an existing holding on explicit request.

        Raises:
            ValidationError: On invalid input, before any state change.
            CapacityRejection: When full or the symbol is already tracked.
        """
        validate_request(request)

        settings = self.settings
        symbol = normalize_symbol(request.symbol)
        entry_price = request.reference_price

        default_sl, default_tp = risk_prices(
            entry_price, request.side, settings.stop_loss, settings.take_profit
        )
        stop_loss = request.stop_loss_price if request.stop_loss_price is not None else default_sl
        take_profit = request.take_profit_price if request.take_profit_price is not None else default_tp

        async with self._lock:
            reason = self._capacity_problem(symbol, settings)
            if reason:
                logger.info(f"🚫 Manual position for {symbol} rejected: {reason}")
                raise CapacityRejection(reason, symbol)
            record = self._register(
                symbol=symbol,
                entry_price=entry_price,
                quantity=request.quantity,
                trailing_percent=request.trailing_percent,
                stop_loss_price=stop_loss,
                take_profit_price=take_profit,
                confidence=0,
                side=request.side,
                activation_price=request.activation_price,
                source="manual",
            )

        self._announce(record)
        return record.position

    # ----------------------------------------------------------------- removal

    async def close(
        self,
        position_id: str,
        reason: ExitReason,
        fill_price: Optional[float] = None,
        order_id: Optional[str] = None,
    ) -> TrackedPosition:
        """Remove a position from the active set and publish positionClosed.

        Stop reasons with a fill mark the position triggered, anything
        else marks it closed. A position the monitor already finished
        keeps its recorded outcome.

        Raises:
            PositionNotFoundError: If the position is not open.
            ExitInProgressError: If an exit order is still in flight.
        """
        record = await self._remove(position_id)
        position = record.position
        tracker = record.tracker

        if not tracker.is_terminal:
            if reason in STOP_REASONS and fill_price is not None:
                position.exit_reason = reason
                tracker.mark_triggered(Fill(fill_price, position.quantity, order_id))
            else:
                tracker.mark_closed(reason, fill_price)
                position.exit_order_id = order_id

        self._retire(record)

        pnl = position.realized_pnl
        pnl_str = f"{pnl:+.4f}" if pnl is not None else "n/a"
        logger.info(f"🔒 Closed {position.id} ({reason.value}) exit={position.exit_price} P&L={pnl_str}")

        self.bus.publish(PositionClosed(
            position=position,
            reason=reason,
            fill_price=position.exit_price,
            pnl=pnl,
        ))
        return position

    async def cancel(self, position_id: str) -> TrackedPosition:
        """Stop tracking without placing an order.

        Refused with ExitInProgressError while an exit order is in flight.
        """
        return await self.close(position_id, ExitReason.CANCELLED)

    async def fail(self, position_id: str, message: str) -> TrackedPosition:
        """Retire a position whose exit order failed. Not retried."""
        record = await self._remove(position_id)
        position = record.position
        record.tracker.mark_error(message)
        self._retire(record)

        logger.error(f"❌ {position.id} moved to error: {message}")
        self.bus.publish(PositionClosed(
            position=position,
            reason=ExitReason.ORDER_FAILED,
            error=message,
        ))
        return position

    async def close_at_market(self, position_id: str) -> TrackedPosition:
        """Place the exit order now and close as MANUAL.

        Raises:
            PositionNotFoundError: If the position is not open.
            ExitInProgressError: If an exit order is already in flight.
            ExecutionError: If the order failed; the position stays open.
        """
        async with self._lock:
            record = self._records.get(position_id)
            if record is None:
                raise PositionNotFoundError(position_id)
            # Ticks are ignored while the claim is held
            if not record.tracker.claim_exit():
                raise ExitInProgressError(position_id)

        try:
            fill = await self.monitor.place_exit(record.position)
        except (ExecutionError, asyncio.CancelledError):
            record.tracker.release_exit()
            raise

        record.tracker.mark_closed(ExitReason.MANUAL, fill.fill_price)
        record.position.exit_order_id = fill.order_id
        return await self.close(position_id, ExitReason.MANUAL, fill.fill_price, fill.order_id)

    # -------------------------------------------------------------- monitoring

    def start_monitoring(self) -> None:
        """Start a monitor loop for every open position that lacks one."""
        self._monitoring = True
        for record in self._records.values():
            if not record.is_monitored:
                self._spawn(record)

    async def stop_monitoring(self, grace: Optional[float] = None) -> None:
        """Signal every monitor loop to stop, cancelling stragglers after grace."""
        self._monitoring = False
        tasks = []
        for record in self._records.values():
            record.cancel_event.set()
            if record.is_monitored:
                tasks.append(record.task)

        if grace is None:
            grace = max(self.config.fetch_timeout, self.config.order_timeout)

        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=grace)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"⚠️ Cancelled {len(pending)} monitor(s) that did not stop in time")
                await asyncio.gather(*pending, return_exceptions=True)

        for record in self._records.values():
            record.task = None

    async def _on_exit(self, record: PositionRecord, outcome: ExitOutcome) -> None:
        position_id = record.position.id
        try:
            if outcome.failed:
                await self.fail(position_id, outcome.error)
            else:
                await self.close(
                    position_id,
                    outcome.reason,
                    outcome.fill.fill_price,
                    outcome.fill.order_id,
                )
        except PositionNotFoundError:
            logger.warning(f"⚠️ Exit for {position_id} arrived after it was already closed")

    def _spawn(self, record: PositionRecord) -> None:
        record.cancel_event.clear()
        record.task = asyncio.create_task(
            self.monitor.run(record, self._on_exit),
            name=f"monitor-{record.position.id}",
        )

    # ---------------------------------------------------------------- internal

    def _capacity_problem(self, symbol: str, settings: Settings) -> Optional[str]:
        if symbol in self.open_symbols() or symbol in self._reserved:
            return f"{symbol} is already tracked"
        if len(self._records) + len(self._reserved) >= settings.max_positions:
            return f"max positions ({settings.max_positions}) reached"
        return None

    def _new_id(self, symbol: str) -> str:
        taken = set(self._records) | {p.id for p in self._history}
        ms = int(time.time() * 1000)
        position_id = f"{symbol}-{ms}"
        while position_id in taken:
            ms += 1
            position_id = f"{symbol}-{ms}"
        return position_id

    def _register(self, **fields) -> PositionRecord:
        """Build and store a position. Caller holds the lock."""
        position = TrackedPosition(id=self._new_id(fields["symbol"]), **fields)
        record = PositionRecord(position=position, tracker=TrailingStopTracker(position))
        self._records[position.id] = record
        return record

    def _announce(self, record: PositionRecord) -> None:
        position = record.position
        sl = f"{position.stop_loss_price:.8g}" if position.stop_loss_price else "off"
        tp = f"{position.take_profit_price:.8g}" if position.take_profit_price else "off"
        logger.info(
            f"🆕 Tracking {position.id} ({position.source}, {position.side.value}): "
            f"qty={position.quantity:.8g} entry={position.entry_price:.8g} "
            f"trail={position.trailing_percent}% SL={sl} TP={tp} status={position.status.value}"
        )
        self.bus.publish(PositionCreated(position=position))
        if self._monitoring:
            self._spawn(record)

    async def _remove(self, position_id: str) -> PositionRecord:
        async with self._lock:
            record = self._records.get(position_id)
            if record is None:
                raise PositionNotFoundError(position_id)
            if record.tracker.exit_pending:
                raise ExitInProgressError(position_id)
            del self._records[position_id]
        return record

    def _retire(self, record: PositionRecord) -> None:
        # Loop exits on its next check
        record.cancel_event.set()
        if record.position.closed_at is None:
            record.position.closed_at = datetime.now()
        self._history.append(record.position)

    async def _place_entry(self, symbol: str, quantity: float) -> Fill:
        try:
            fill = await asyncio.wait_for(
                self.executor.place_market_buy(symbol, quantity),
                timeout=self.config.order_timeout,
            )
        except asyncio.TimeoutError:
            raise ExecutionError(
                f"Entry order timed out after {self.config.order_timeout}s", symbol
            ) from None
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(f"Entry order failed: {e}", symbol) from e

        logger.info(f"💰 Bought {fill.quantity:.8g} {symbol} @ {fill.fill_price}")
        return fill
