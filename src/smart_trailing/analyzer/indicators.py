"""Technical indicator calculations for opportunity scoring.

All indicators are implemented from scratch for full control and testability.
"""

from typing import List, Sequence

from ..core.models import Candle, Momentum

# Momentum classification thresholds (% change over the window)
STRONG_MOVE_PCT = 3.0
MOVE_PCT = 0.5


def closes_of(candles: Sequence[Candle]) -> List[float]:
    """Extract closing prices (oldest to newest)."""
    return [c.close for c in candles]


def calc_rsi(closes: Sequence[float], period: int = 14) -> float:
    """Calculate Relative Strength Index.

    Args:
        closes: List of closing prices (oldest to newest)
        period: RSI period (default 14)

    Returns:
        RSI value between 0 and 100
    """
    if not closes or len(closes) < period + 1:
        return 50.0  # Neutral if not enough data

    # Calculate price changes
    gains = []
    losses = []

    for i in range(1, len(closes)):
        change = closes[i] - closes[i - 1]
        if change > 0:
            gains.append(change)
            losses.append(0.0)
        else:
            gains.append(0.0)
            losses.append(abs(change))

    # Initial averages (SMA)
    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    # Smooth with Wilder's method
    for i in range(period, len(gains)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    rsi = 100 - (100 / (1 + rs))

    return min(100.0, max(0.0, rsi))


def calc_momentum(closes: Sequence[float], window: int = 10) -> Momentum:
    """Classify momentum from the % change across the last `window` closes.

    Compares the close `window` bars back (first of the window) with the
    latest close. Earlier candles are ignored.

    Args:
        closes: List of closing prices (oldest to newest)
        window: Number of most recent closes to look at (default 10)

    Returns:
        Momentum classification, SIDEWAYS when there is not enough data
    """
    if window < 2 or len(closes) < window:
        return Momentum.SIDEWAYS

    recent = closes[-window:]
    first, last = recent[0], recent[-1]
    if first <= 0:
        return Momentum.SIDEWAYS

    change = (last - first) / first * 100

    if change > STRONG_MOVE_PCT:
        return Momentum.STRONG_UP
    if change > MOVE_PCT:
        return Momentum.UP
    if change < -STRONG_MOVE_PCT:
        return Momentum.STRONG_DOWN
    if change < -MOVE_PCT:
        return Momentum.DOWN
    return Momentum.SIDEWAYS
