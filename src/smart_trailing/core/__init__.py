"""Core components: models, configuration, errors and events."""

from .models import (
    Candle,
    CoinAnalysis,
    ExitReason,
    Fill,
    ManualPositionRequest,
    Momentum,
    OpportunityScore,
    PositionStatus,
    Side,
    Ticker,
    TrackedPosition,
)
from .config import EngineConfig, EnvConfig, ScoringPolicy, Settings, load_env_config, load_settings
from .errors import (
    CapacityRejection,
    ConfigValidationError,
    DataFetchError,
    ExecutionError,
    ExitInProgressError,
    PositionNotFoundError,
    SmartTrailingError,
    ValidationError,
)
from .events import EventBus, EventType

__all__ = [
    "Candle",
    "CoinAnalysis",
    "ExitReason",
    "Fill",
    "ManualPositionRequest",
    "Momentum",
    "OpportunityScore",
    "PositionStatus",
    "Side",
    "Ticker",
    "TrackedPosition",
    "EngineConfig",
    "EnvConfig",
    "ScoringPolicy",
    "Settings",
    "load_env_config",
    "load_settings",
    "CapacityRejection",
    "ConfigValidationError",
    "DataFetchError",
    "ExecutionError",
    "ExitInProgressError",
    "PositionNotFoundError",
    "SmartTrailingError",
    "ValidationError",
    "EventBus",
    "EventType",
]
