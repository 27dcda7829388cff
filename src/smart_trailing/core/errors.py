"""Error taxonomy for the Smart Trailing engine."""

from typing import Optional


class SmartTrailingError(Exception):
    """Base class for all engine errors."""
    pass


class ValidationError(SmartTrailingError):
    """Raised when a request or settings payload is invalid.

    Validation happens before any state change, so a rejected request
    never reaches the active-position set.
    """
    pass


class ConfigValidationError(ValidationError):
    """Raised when configuration validation fails."""
    pass


class DataFetchError(SmartTrailingError):
    """Market data could not be fetched for a symbol (error or timeout)."""

    def __init__(self, message: str, symbol: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol


class ExecutionError(SmartTrailingError):
    """An order could not be placed or was not filled (error or timeout)."""

    def __init__(self, message: str, symbol: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol


class CapacityRejection(SmartTrailingError):
    """Position not opened: max positions reached or symbol already tracked.

    The automated path treats this as a silent skip. Manual requests
    surface it to the caller.
    """

    def __init__(self, reason: str, symbol: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.symbol = symbol


class PositionNotFoundError(SmartTrailingError, KeyError):
    """No open position with the given id."""

    def __init__(self, position_id: str):
        super().__init__(f"No open position {position_id}")
        self.position_id = position_id

    def __str__(self) -> str:
        return self.args[0]


class ExitInProgressError(SmartTrailingError):
    """An exit order for the position is already in flight.

    Close and cancel are refused until that order resolves.
    """

    def __init__(self, position_id: str):
        super().__init__(f"Exit order for {position_id} is already in flight")
        self.position_id = position_id
