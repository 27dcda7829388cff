"""Pytest configuration and shared fixtures."""

import asyncio
from collections import deque
from typing import Deque, Dict, List, Optional

import pytest

from smart_trailing.core.config import EngineConfig, Settings
from smart_trailing.core.errors import DataFetchError
from smart_trailing.core.events import EventBus
from smart_trailing.core.models import (
    Candle,
    CoinAnalysis,
    Fill,
    Momentum,
    OpportunityScore,
    Ticker,
)
from smart_trailing.exchange.interfaces import MarketDataFeed, OrderExecutor


class FakeMarketFeed(MarketDataFeed):
    """In-memory feed. A price path yields one price per ticker call, repeating the last."""

    def __init__(self):
        self.tickers: Dict[str, Ticker] = {}
        self.candles: Dict[str, List[Candle]] = {}
        self.paths: Dict[str, Deque[float]] = {}
        self.failures: Dict[str, Exception] = {}
        self.delays: Dict[str, float] = {}
        self.ticker_calls: List[str] = []

    def set_ticker(self, symbol: str, price: float, change: float = 0.0, volume: float = 0.0) -> None:
        self.tickers[symbol] = Ticker(symbol, price, change, volume)

    def set_candles(self, symbol: str, closes: List[float]) -> None:
        self.candles[symbol] = [
            Candle(timestamp=i * 3_600_000, open=c, high=c, low=c, close=c, volume=1.0)
            for i, c in enumerate(closes)
        ]

    def set_path(self, symbol: str, prices: List[float]) -> None:
        self.paths[symbol] = deque(prices)

    def current_price(self, symbol: str) -> Optional[float]:
        if symbol in self.paths and self.paths[symbol]:
            return self.paths[symbol][0]
        if symbol in self.tickers:
            return self.tickers[symbol].last_price
        return None

    async def get_ticker(self, symbol: str) -> Ticker:
        self.ticker_calls.append(symbol)
        if symbol in self.delays:
            await asyncio.sleep(self.delays[symbol])
        if symbol in self.failures:
            raise self.failures[symbol]

        base = self.tickers.get(symbol)
        path = self.paths.get(symbol)
        if path:
            price = path.popleft() if len(path) > 1 else path[0]
            return Ticker(
                symbol,
                price,
                base.change_24h if base else 0.0,
                base.quote_volume_24h if base else 0.0,
            )
        if base is None:
            raise DataFetchError(f"unknown symbol {symbol}", symbol)
        return base

    async def get_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        if symbol in self.failures:
            raise self.failures[symbol]
        return self.candles.get(symbol, [])[-limit:]


class FakeOrderExecutor(OrderExecutor):
    """Records orders and fills at a fixed price, the feed price, or 1.0."""

    def __init__(self, feed: Optional[FakeMarketFeed] = None):
        self.feed = feed
        self.orders: List[tuple] = []
        self.prices: Dict[str, float] = {}
        self.fail_with: Optional[Exception] = None
        self.delay = 0.0

    async def _place(self, side: str, symbol: str, quantity: float) -> Fill:
        self.orders.append((side, symbol, quantity))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

        price = self.prices.get(symbol)
        if price is None and self.feed is not None:
            price = self.feed.current_price(symbol)
        return Fill(price or 1.0, quantity, order_id=f"fake-{len(self.orders)}")

    async def place_market_sell(self, symbol: str, quantity: float) -> Fill:
        return await self._place("SELL", symbol, quantity)

    async def place_market_buy(self, symbol: str, quantity: float) -> Fill:
        return await self._place("BUY", symbol, quantity)

    def sides(self) -> List[str]:
        return [o[0] for o in self.orders]


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus):
        self.events: List = []
        bus.subscribe(self.events.append)

    def of_type(self, event_type) -> List:
        return [e for e in self.events if e.type == event_type]

    @property
    def types(self) -> List:
        return [e.type for e in self.events]


def make_analysis(symbol: str, confidence: int, price: float = 100.0) -> CoinAnalysis:
    return CoinAnalysis(
        symbol=symbol,
        current_price=price,
        price_change_24h=6.0,
        volume_24h=2_000_000.0,
        momentum=Momentum.UP,
        rsi=40.0,
        score=OpportunityScore(confidence >= 70, confidence, ("test",)),
    )


async def wait_until(predicate, timeout: float = 2.0, step: float = 0.005) -> bool:
    """Poll predicate until true or timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step)
    return predicate()


@pytest.fixture
def feed():
    return FakeMarketFeed()


@pytest.fixture
def executor(feed):
    return FakeOrderExecutor(feed)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def fast_config():
    """Tiny intervals so loop tests finish quickly."""
    return EngineConfig(
        scan_interval=0.02,
        monitor_interval=0.01,
        fetch_timeout=0.5,
        order_timeout=0.5,
        momentum_window=3,
    )
