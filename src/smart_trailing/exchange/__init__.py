"""Exchange collaborators: interfaces, Binance REST client and paper fills."""

from .binance import BinanceAPIError, BinanceSpotClient, RateLimiter, format_quantity
from .interfaces import MarketDataFeed, OrderExecutor
from .paper import PaperExecutor

__all__ = [
    "BinanceAPIError",
    "BinanceSpotClient",
    "RateLimiter",
    "format_quantity",
    "MarketDataFeed",
    "OrderExecutor",
    "PaperExecutor",
]
