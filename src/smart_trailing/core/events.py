"""Typed lifecycle events and the bus that publishes them.

Observers either register a synchronous handler or poll an asyncio queue.
publish() delivers synchronously in call order, so events for one
position always arrive in the order the engine produced them.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, ClassVar, List, Optional, Set, Tuple

from .config import Settings
from .models import CoinAnalysis, ExitReason, TrackedPosition

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    SERVICE_STARTED = "serviceStarted"
    SERVICE_STOPPED = "serviceStopped"
    ANALYSIS_COMPLETED = "analysisCompleted"
    ANALYSIS_ERROR = "analysisError"
    POSITION_CREATED = "positionCreated"
    POSITION_ACTIVATED = "positionActivated"
    POSITION_CLOSED = "positionClosed"
    SETTINGS_UPDATED = "settingsUpdated"


@dataclass
class ServiceStarted:
    type: ClassVar[EventType] = EventType.SERVICE_STARTED
    settings: Settings
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ServiceStopped:
    type: ClassVar[EventType] = EventType.SERVICE_STOPPED
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class AnalysisCompleted:
    type: ClassVar[EventType] = EventType.ANALYSIS_COMPLETED
    analyses: List[CoinAnalysis]
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class AnalysisError:
    """A symbol (or the decision step) failed during a scan cycle."""

    type: ClassVar[EventType] = EventType.ANALYSIS_ERROR
    error: Exception
    symbol: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class PositionCreated:
    type: ClassVar[EventType] = EventType.POSITION_CREATED
    position: TrackedPosition
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class PositionActivated:
    type: ClassVar[EventType] = EventType.POSITION_ACTIVATED
    position: TrackedPosition
    price: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class PositionClosed:
    """Position left the active set.

    error is set when the exit order failed; fill_price and pnl are None then,
    and also for cancellations.
    """

    type: ClassVar[EventType] = EventType.POSITION_CLOSED
    position: TrackedPosition
    reason: ExitReason
    fill_price: Optional[float] = None
    pnl: Optional[float] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class SettingsUpdated:
    type: ClassVar[EventType] = EventType.SETTINGS_UPDATED
    settings: Settings
    timestamp: datetime = field(default_factory=datetime.now)


Handler = Callable[[Any], None]


class EventBus:
    """Publishes engine events to registered handlers and queues."""

    def __init__(self):
        self._handlers: List[Tuple[Handler, Optional[Set[EventType]]]] = []
        self._queues: List[Tuple[asyncio.Queue, Optional[Set[EventType]]]] = []

    def subscribe(self, handler: Handler, *event_types: EventType) -> Callable[[], None]:
        """Register a handler for the given event types (all when none given).

        Returns:
            Function that removes the subscription.
        """
        entry = (handler, set(event_types) or None)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    def queue(self, *event_types: EventType, maxsize: int = 0) -> asyncio.Queue:
        """Create a queue that receives every matching event."""
        q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._queues.append((q, set(event_types) or None))
        return q

    def remove_queue(self, q: asyncio.Queue) -> None:
        self._queues = [(existing, types) for existing, types in self._queues if existing is not q]

    def publish(self, event: Any) -> None:
        """Deliver event to every matching subscriber.

        Handler failures are logged and never reach the publisher.
        """
        logger.debug(f"📣 {event.type.value}")

        for handler, types in list(self._handlers):
            if types is not None and event.type not in types:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler error on {event.type.value}: {e}", exc_info=True)

        for q, types in list(self._queues):
            if types is not None and event.type not in types:
                continue
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"⚠️ Event queue full, dropping {event.type.value}")

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers) + len(self._queues)
