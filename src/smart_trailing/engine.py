"""Smart Trailing Engine - service facade.

Wires the scorer, scheduler, lifecycle manager and monitors together and
exposes the operations a host process or UI layer calls. One instance
per host process, constructed explicitly with its collaborators.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional

from .analyzer.scorer import OpportunityScorer
from .core.config import EngineConfig, ScoringPolicy, Settings
from .core.errors import ValidationError
from .core.events import (
    EventBus,
    EventType,
    ServiceStarted,
    ServiceStopped,
    SettingsUpdated,
)
from .core.models import CoinAnalysis, ManualPositionRequest, TrackedPosition
from .exchange.interfaces import MarketDataFeed, OrderExecutor
from .manager.lifecycle import PositionLifecycleManager
from .manager.monitor import PositionMonitor
from .scanner.scheduler import AnalysisScheduler

logger = logging.getLogger(__name__)


class SmartTrailingEngine:
    """Trailing-stop tracking and opportunity-scoring service.

    Two cadences run while started:
    - Opportunity scan (every scan_interval, default 30s)
    - One price monitor per open position (every monitor_interval, default 5s)
    """

    def __init__(
        self,
        feed: MarketDataFeed,
        executor: OrderExecutor,
        settings: Optional[Settings] = None,
        config: Optional[EngineConfig] = None,
        policy: Optional[ScoringPolicy] = None,
        bus: Optional[EventBus] = None,
    ):
        """Initialize engine.

        Args:
            feed: Market data source
            executor: Order execution service
            settings: Initial trading settings (defaults when omitted)
            config: Timing and runtime configuration
            policy: Scoring weights and threshold
            bus: Event bus to publish on (a new one when omitted)
        """
        self.config = config or EngineConfig()
        self.config.validate()

        settings = settings or Settings()
        settings.validate()
        self._settings = replace(settings, enabled=False)

        self.bus = bus or EventBus()
        self.scorer = OpportunityScorer(
            policy=policy,
            rsi_period=self.config.rsi_period,
            momentum_window=self.config.momentum_window,
        )
        self.monitor = PositionMonitor(
            feed,
            executor,
            self.bus,
            interval=self.config.monitor_interval,
            fetch_timeout=self.config.fetch_timeout,
            order_timeout=self.config.order_timeout,
        )
        self.lifecycle = PositionLifecycleManager(
            self._settings, self.bus, self.monitor, executor, self.config
        )
        self.scheduler = AnalysisScheduler(
            feed, self.scorer, self.lifecycle, self.bus, self._settings, self.config
        )

        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ----------------------------------------------------------------- service

    async def start_service(self, settings_override: Optional[Mapping[str, Any]] = None) -> None:
        """Enable the engine and start the scan and monitor loops.

        When already running, only settings_override is applied.

        Raises:
            ConfigValidationError: If settings_override is invalid.
        """
        if self._running:
            logger.info("Service already running")
            if settings_override:
                self.update_settings(settings_override)
            return

        overrides = dict(settings_override or {})
        overrides.pop("enabled", None)
        settings = self._settings.merged(overrides) if overrides else self._settings
        self._apply(replace(settings, enabled=True))
        self._running = True

        logger.info("=" * 60)
        logger.info("🚀 SMART TRAILING SERVICE STARTING")
        logger.info(f"   Symbols: {', '.join(self._settings.symbols)}")
        logger.info(f"   Max positions: {self._settings.max_positions}")
        logger.info(f"   Trailing: {self._settings.trailing_percent}%")
        logger.info(f"   SL/TP: {self._settings.stop_loss}% / {self._settings.take_profit}%")
        logger.info("=" * 60)

        self.lifecycle.start_monitoring()
        self.scheduler.start()
        self.bus.publish(ServiceStarted(settings=self.get_settings()))

    async def stop_service(self) -> None:
        """Stop every loop. Open positions stay tracked but unmonitored.

        Idempotent: a no-op when already stopped.
        """
        if not self._running:
            return

        logger.info("👋 Stopping Smart Trailing service...")
        self._running = False
        await self.scheduler.stop()
        await self.lifecycle.stop_monitoring()
        self._apply(replace(self._settings, enabled=False))

        self.bus.publish(ServiceStopped())
        logger.info("🛑 Smart Trailing service stopped")

    # ---------------------------------------------------------------- settings

    def get_settings(self) -> Settings:
        """Copy of the current settings."""
        return replace(self._settings, symbols=list(self._settings.symbols))

    def update_settings(self, partial: Mapping[str, Any]) -> Settings:
        """Apply a partial settings update.

        Open positions keep the risk prices fixed at their creation.

        Raises:
            ValidationError: If partial tries to toggle enabled.
            ConfigValidationError: On unknown keys or invalid values.
        """
        partial = dict(partial)
        if "enabled" in partial:
            raise ValidationError("enabled is controlled by start_service/stop_service")

        settings = self._settings.merged(partial)
        self._apply(settings)
        logger.info(f"⚙️ Settings updated: {', '.join(sorted(partial)) or 'no changes'}")

        current = self.get_settings()
        self.bus.publish(SettingsUpdated(settings=current))
        return current

    def _apply(self, settings: Settings) -> None:
        self._settings = settings
        self.lifecycle.settings = settings
        self.scheduler.settings = settings

    # --------------------------------------------------------------- positions

    async def create_manual_tracked_position(self, request: ManualPositionRequest) -> str:
        """Track a position on explicit request.

        Returns:
            The new position id.

        Raises:
            ValidationError: On invalid input.
            CapacityRejection: When full or the symbol is already tracked.
        """
        position = await self.lifecycle.create_manual(request)
        return position.id

    async def cancel_position(self, position_id: str) -> TrackedPosition:
        """Stop tracking a position without placing an order.

        Raises:
            PositionNotFoundError: If the position is not open.
            ExitInProgressError: While its exit order is in flight.
        """
        return await self.lifecycle.cancel(position_id)

    async def close_position(self, position_id: str) -> TrackedPosition:
        """Exit a position at market now.

        Raises:
            PositionNotFoundError: If the position is not open.
            ExitInProgressError: If an exit order is already in flight.
            ExecutionError: If the order failed; the position stays open.
        """
        return await self.lifecycle.close_at_market(position_id)

    def get_position(self, position_id: str) -> Optional[TrackedPosition]:
        return self.lifecycle.get_position(position_id)

    def get_positions(self, include_closed: bool = False) -> List[TrackedPosition]:
        return self.lifecycle.get_positions(include_closed)

    async def scan_once(self) -> List[CoinAnalysis]:
        """Score the universe once without opening positions."""
        analyses, errors = await self.scheduler.scan()
        for symbol, error in errors:
            logger.warning(f"⚠️ {symbol}: {error}")
        return analyses

    # ------------------------------------------------------------------ events

    def subscribe(self, handler: Callable[[Any], None], *event_types: EventType) -> Callable[[], None]:
        """Register an event handler. Returns an unsubscribe function."""
        return self.bus.subscribe(handler, *event_types)

    def events(self, *event_types: EventType, maxsize: int = 0) -> asyncio.Queue:
        """Queue receiving every matching event from now on."""
        return self.bus.queue(*event_types, maxsize=maxsize)

    def get_status(self) -> Dict[str, Any]:
        last_scan = self.scheduler.last_scan_time
        return {
            "running": self._running,
            "enabled": self._settings.enabled,
            "open_positions": self.lifecycle.open_count,
            "max_positions": self._settings.max_positions,
            "symbols": list(self._settings.symbols),
            "scan_count": self.scheduler.scan_count,
            "last_scan_time": last_scan.isoformat() if last_scan else None,
            "positions": [
                {
                    "id": p.id,
                    "symbol": p.symbol,
                    "status": p.status.value,
                    "entry_price": p.entry_price,
                    "peak_price": p.peak_price,
                    "stop_price": p.stop_price,
                }
                for p in self.lifecycle.get_open_positions()
            ],
        }
