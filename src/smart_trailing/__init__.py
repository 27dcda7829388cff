"""Smart Trailing - trailing-stop tracking and opportunity-scoring engine."""

from .core import (
    CapacityRejection,
    ConfigValidationError,
    DataFetchError,
    EngineConfig,
    EventBus,
    EventType,
    ExecutionError,
    ExitInProgressError,
    ExitReason,
    ManualPositionRequest,
    PositionNotFoundError,
    PositionStatus,
    ScoringPolicy,
    Settings,
    Side,
    TrackedPosition,
    ValidationError,
)
from .engine import SmartTrailingEngine

__version__ = "1.0.0"

__all__ = [
    "CapacityRejection",
    "ConfigValidationError",
    "DataFetchError",
    "EngineConfig",
    "EventBus",
    "EventType",
    "ExecutionError",
    "ExitReason",
    "ManualPositionRequest",
    "ExitInProgressError",
    "PositionNotFoundError",
    "PositionStatus",
    "ScoringPolicy",
    "Settings",
    "Side",
    "SmartTrailingEngine",
    "TrackedPosition",
    "ValidationError",
]
