"""Core data models for the Smart Trailing engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


class Momentum(str, Enum):
    """Short-window momentum classification."""

    STRONG_UP = "strong_up"
    UP = "up"
    SIDEWAYS = "sideways"
    DOWN = "down"
    STRONG_DOWN = "strong_down"

    @property
    def is_bullish(self) -> bool:
        return self in (Momentum.STRONG_UP, Momentum.UP)


class PositionStatus(str, Enum):
    """Lifecycle status of a tracked position."""

    PENDING_ACTIVATION = "pending_activation"
    ACTIVE = "active"
    TRIGGERED = "triggered"
    CLOSED = "closed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (PositionStatus.TRIGGERED, PositionStatus.CLOSED, PositionStatus.ERROR)


class ExitReason(str, Enum):
    """Why a tracked position left the active set."""

    TRAILING_STOP = "TRAILING_STOP"
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    MANUAL = "MANUAL"
    CANCELLED = "CANCELLED"
    ORDER_FAILED = "ORDER_FAILED"


class Side(str, Enum):
    """Side of the exit order that closes the position.

    SELL exits a long holding (the classic trailing stop). BUY covers a
    short and trails the lowest price instead of the highest.
    """

    SELL = "sell"
    BUY = "buy"


@dataclass
class Candle:
    """OHLCV candle data."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @classmethod
    def from_list(cls, data: List) -> "Candle":
        """Create from Binance kline format [timestamp, o, h, l, c, v, ...]."""
        return cls(
            timestamp=int(data[0]),
            open=float(data[1]),
            high=float(data[2]),
            low=float(data[3]),
            close=float(data[4]),
            volume=float(data[5]),
        )


@dataclass
class Ticker:
    """24h rolling ticker for one symbol."""

    symbol: str
    last_price: float
    change_24h: float  # Percentage
    quote_volume_24h: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class OpportunityScore:
    """Result of scoring one symbol."""

    is_good_for_trailing: bool
    confidence: int  # 0-100
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CoinAnalysis:
    """Per-symbol scan result. Built once per scan and never mutated."""

    symbol: str
    current_price: float
    price_change_24h: float
    volume_24h: float
    momentum: Momentum
    rsi: float
    score: OpportunityScore
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_good_for_trailing(self) -> bool:
        return self.score.is_good_for_trailing

    @property
    def confidence(self) -> int:
        return self.score.confidence

    @property
    def reasons(self) -> Tuple[str, ...]:
        return self.score.reasons


@dataclass
class Fill:
    """Confirmed fill of a market order."""

    fill_price: float
    quantity: float
    order_id: Optional[str] = None


@dataclass
class ManualPositionRequest:
    """Caller-supplied parameters for a manually tracked position.

    stop_loss_price / take_profit_price default from settings when omitted.
    """

    symbol: str
    quantity: float
    trailing_percent: float
    reference_price: float
    activation_price: Optional[float] = None
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    side: Side = Side.SELL


@dataclass
class TrackedPosition:
    """One open trailing-stop-monitored holding.

    peak_price is the most favourable price seen while active: the highest
    price for a SELL-side stop, the lowest for a BUY-side stop.
    stop_loss_price and take_profit_price are fixed at creation.
    """

    id: str
    symbol: str
    entry_price: float
    quantity: float
    trailing_percent: float
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    confidence: int = 0
    side: Side = Side.SELL
    activation_price: Optional[float] = None
    source: str = "auto"
    peak_price: float = 0.0
    status: PositionStatus = PositionStatus.ACTIVE
    created_at: datetime = field(default_factory=datetime.now)
    activated_at: Optional[datetime] = None
    triggered_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    trigger_price: Optional[float] = None
    exit_reason: Optional[ExitReason] = None
    exit_price: Optional[float] = None
    exit_order_id: Optional[str] = None
    realized_pnl: Optional[float] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if not self.peak_price:
            self.peak_price = self.entry_price

    @property
    def highest_price_seen(self) -> float:
        return self.peak_price

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def notional_value(self) -> float:
        return self.entry_price * self.quantity

    @property
    def stop_price(self) -> Optional[float]:
        """Current trailing stop level, None until the position is active."""
        if self.status != PositionStatus.ACTIVE:
            return None
        if self.side == Side.SELL:
            return self.peak_price * (1 - self.trailing_percent / 100)
        return self.peak_price * (1 + self.trailing_percent / 100)

    def calc_pnl_amount(self, price: float) -> float:
        """P&L in quote currency if closed at price."""
        if self.side == Side.SELL:
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity

    def calc_pnl_pct(self, price: float) -> float:
        if self.entry_price == 0:
            return 0.0
        if self.side == Side.SELL:
            return (price - self.entry_price) / self.entry_price * 100
        return (self.entry_price - price) / self.entry_price * 100
