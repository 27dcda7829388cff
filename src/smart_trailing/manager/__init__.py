"""Position tracking: trailing-stop state machine, monitors and lifecycle."""

from .lifecycle import PositionLifecycleManager, risk_prices, validate_request
from .monitor import ExitOutcome, PositionMonitor, PositionRecord
from .tracker import ExitSignal, TickResult, TrailingStopTracker

__all__ = [
    "PositionLifecycleManager",
    "risk_prices",
    "validate_request",
    "ExitOutcome",
    "PositionMonitor",
    "PositionRecord",
    "ExitSignal",
    "TickResult",
    "TrailingStopTracker",
]
