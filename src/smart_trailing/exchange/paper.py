"""Paper execution: market orders fill at the feed's current price."""

import itertools
import logging
from typing import List

from ..core.errors import DataFetchError, ExecutionError
from ..core.models import Fill
from .interfaces import MarketDataFeed, OrderExecutor

logger = logging.getLogger(__name__)


class PaperExecutor(OrderExecutor):
    """Simulated order executor for dry runs against real market data."""

    def __init__(self, feed: MarketDataFeed):
        self.feed = feed
        self.fills: List[Fill] = []
        self._ids = itertools.count(1)

    async def _fill(self, symbol: str, side: str, quantity: float) -> Fill:
        if quantity <= 0:
            raise ExecutionError(f"Invalid quantity {quantity}", symbol)
        try:
            ticker = await self.feed.get_ticker(symbol)
        except DataFetchError as e:
            raise ExecutionError(f"No price for paper {side}: {e}", symbol) from e

        fill = Fill(
            fill_price=ticker.last_price,
            quantity=quantity,
            order_id=f"paper-{next(self._ids)}",
        )
        self.fills.append(fill)
        logger.info(f"🧪 PAPER {side} {quantity:.8g} {symbol} @ {fill.fill_price}")
        return fill

    async def place_market_sell(self, symbol: str, quantity: float) -> Fill:
        return await self._fill(symbol, "SELL", quantity)

    async def place_market_buy(self, symbol: str, quantity: float) -> Fill:
        return await self._fill(symbol, "BUY", quantity)
