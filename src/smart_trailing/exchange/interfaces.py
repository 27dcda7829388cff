"""Narrow interfaces to the market-data and order-execution collaborators."""

from abc import ABC, abstractmethod
from typing import List

from ..core.models import Candle, Fill, Ticker


class MarketDataFeed(ABC):
    """Source of tickers and candles."""

    @abstractmethod
    async def get_ticker(self, symbol: str) -> Ticker:
        """Last price, 24h change (%) and 24h quote volume for symbol."""
        pass

    @abstractmethod
    async def get_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        """Candles for symbol, oldest first."""
        pass


class OrderExecutor(ABC):
    """Places market orders and reports the fill."""

    @abstractmethod
    async def place_market_sell(self, symbol: str, quantity: float) -> Fill:
        pass

    @abstractmethod
    async def place_market_buy(self, symbol: str, quantity: float) -> Fill:
        pass
