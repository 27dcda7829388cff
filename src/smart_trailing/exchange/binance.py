"""Binance Spot REST client.

Market data comes from the public API, orders go to the testnet or live
endpoint with HMAC-SHA256 signed requests. Calls are blocking `requests`
calls; the async interface runs them in a worker thread.
"""

import asyncio
import hashlib
import hmac
import logging
import time
from decimal import ROUND_DOWN, Decimal
from threading import Lock
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from ..core.errors import DataFetchError, ExecutionError
from ..core.models import Candle, Fill, Ticker
from .interfaces import MarketDataFeed, OrderExecutor

logger = logging.getLogger(__name__)

LIVE_URL = "https://api.binance.com"
TESTNET_URL = "https://testnet.binance.vision"


class RateLimiter:
    """Thread-safe rate limiter for API requests."""

    def __init__(self, min_interval_ms: int = 100):
        """Initialize rate limiter.

        Args:
            min_interval_ms: Minimum milliseconds between requests
        """
        self.min_interval_ms = min_interval_ms
        self._last_request_time: Optional[float] = None
        self._lock = Lock()

    def wait(self) -> float:
        """Wait if necessary to respect rate limit.

        Returns:
            Actual wait time in milliseconds
        """
        with self._lock:
            current_time = time.time() * 1000

            if self._last_request_time is None:
                self._last_request_time = current_time
                return 0.0

            elapsed = current_time - self._last_request_time

            if elapsed < self.min_interval_ms:
                wait_time = self.min_interval_ms - elapsed
                time.sleep(wait_time / 1000)
                self._last_request_time = time.time() * 1000
                return wait_time

            self._last_request_time = current_time
            return 0.0


class BinanceAPIError(Exception):
    """Non-2xx response from Binance, with its error code when present."""

    def __init__(self, status_code: int, code: Optional[int], message: str):
        super().__init__(f"HTTP {status_code} (code {code}): {message}")
        self.status_code = status_code
        self.code = code


def format_quantity(quantity: float, step_size: Optional[str]) -> str:
    """Round quantity down to the symbol's LOT_SIZE step."""
    if not step_size:
        return f"{quantity:.8f}".rstrip("0").rstrip(".")

    step = Decimal(step_size).normalize()
    rounded = (Decimal(str(quantity)) / step).to_integral_value(rounding=ROUND_DOWN) * step
    return format(rounded.normalize(), "f")


class BinanceSpotClient(MarketDataFeed, OrderExecutor):
    """Market data feed and order executor for Binance Spot."""

    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        testnet: bool = True,
        timeout: float = 10.0,
        max_retries: int = 3,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.testnet = testnet
        self.base_url = TESTNET_URL if testnet else LIVE_URL
        self.public_url = LIVE_URL
        self.timeout = timeout
        self.max_retries = max_retries
        self.rate_limiter = rate_limiter or RateLimiter()
        self.session = session or requests.Session()
        self._step_sizes: Dict[str, Optional[str]] = {}

    def _sign(self, params: dict) -> str:
        """Sign request parameters."""
        query = urlencode(params)
        signature = hmac.new(
            self.api_secret.encode(),
            query.encode(),
            hashlib.sha256
        ).hexdigest()
        return query + '&signature=' + signature

    def _headers(self) -> dict:
        return {'X-MBX-APIKEY': self.api_key} if self.api_key else {}

    def _request(self, method: str, endpoint: str, params: Optional[dict] = None,
                 signed: bool = False, use_public: bool = False) -> Any:
        """Make API request with retry on rate limiting (418/429).

        Raises:
            BinanceAPIError: On any other non-2xx response.
            requests.RequestException: On transport failures.
        """
        params = params or {}

        for attempt in range(self.max_retries + 1):
            request_params = params.copy()
            if signed:
                request_params['timestamp'] = int(time.time() * 1000)
                request_params['recvWindow'] = 10000
                query = self._sign(request_params)
            else:
                query = urlencode(request_params) if request_params else ""

            base = self.public_url if use_public else self.base_url
            url = f"{base}{endpoint}?{query}" if query else f"{base}{endpoint}"

            self.rate_limiter.wait()
            response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout)

            if response.status_code in (418, 429) and attempt < self.max_retries:
                wait_time = min(2 ** attempt, 10)
                if attempt == 0:
                    logger.debug(f"Rate limited ({response.status_code}), retrying...")
                time.sleep(wait_time)
                continue

            if response.status_code >= 400:
                code, message = None, response.text
                try:
                    body = response.json()
                    code, message = body.get('code'), body.get('msg', message)
                except ValueError:
                    pass
                raise BinanceAPIError(response.status_code, code, message)

            return response.json()

        raise BinanceAPIError(429, None, f"Rate limit exceeded after {self.max_retries} retries")

    # Market data (sync)

    def fetch_ticker(self, symbol: str) -> Ticker:
        try:
            data = self._request('GET', '/api/v3/ticker/24hr', {'symbol': symbol}, use_public=True)
            return Ticker(
                symbol=data.get('symbol', symbol),
                last_price=float(data['lastPrice']),
                change_24h=float(data['priceChangePercent']),
                quote_volume_24h=float(data['quoteVolume']),
            )
        except (BinanceAPIError, requests.RequestException, KeyError, ValueError, TypeError) as e:
            raise DataFetchError(f"Ticker fetch failed: {e}", symbol) from e

    def fetch_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        try:
            data = self._request(
                'GET', '/api/v3/klines',
                {'symbol': symbol, 'interval': interval, 'limit': limit},
                use_public=True,
            )
            return [Candle.from_list(row) for row in data]
        except (BinanceAPIError, requests.RequestException, IndexError, ValueError, TypeError) as e:
            raise DataFetchError(f"Candle fetch failed: {e}", symbol) from e

    def get_step_size(self, symbol: str) -> Optional[str]:
        """LOT_SIZE step for symbol, cached. None when unknown."""
        if symbol not in self._step_sizes:
            step = None
            try:
                info = self._request('GET', '/api/v3/exchangeInfo', {'symbol': symbol})
                for f in info['symbols'][0]['filters']:
                    if f.get('filterType') == 'LOT_SIZE':
                        step = f.get('stepSize')
                        break
            except (BinanceAPIError, requests.RequestException, KeyError, IndexError) as e:
                logger.warning(f"⚠️ No LOT_SIZE for {symbol}: {e}")
            self._step_sizes[symbol] = step
        return self._step_sizes[symbol]

    # Orders (sync)

    def market_order(self, symbol: str, side: str, quantity: float) -> Fill:
        """Place a MARKET order and return its average fill.

        Raises:
            ExecutionError: If the order is rejected or did not fill.
        """
        if not self.api_key or not self.api_secret:
            raise ExecutionError("API credentials are not configured", symbol)

        qty = format_quantity(quantity, self.get_step_size(symbol))
        if Decimal(qty) <= 0:
            raise ExecutionError(f"Quantity {quantity} rounds to zero", symbol)

        params = {
            'symbol': symbol,
            'side': side,
            'type': 'MARKET',
            'quantity': qty,
            'newOrderRespType': 'FULL',
        }

        try:
            data = self._request('POST', '/api/v3/order', params, signed=True)
        except (BinanceAPIError, requests.RequestException) as e:
            raise ExecutionError(f"{side} {qty} {symbol} failed: {e}", symbol) from e

        executed = float(data.get('executedQty', 0) or 0)
        quote = float(data.get('cummulativeQuoteQty', 0) or 0)
        if executed <= 0:
            raise ExecutionError(
                f"{side} {qty} {symbol} not filled (status {data.get('status')})", symbol
            )

        fill = Fill(
            fill_price=quote / executed,
            quantity=executed,
            order_id=str(data.get('orderId')) if data.get('orderId') is not None else None,
        )
        logger.info(f"📝 {side} {executed} {symbol} @ {fill.fill_price:.8g} (order {fill.order_id})")
        return fill

    # Async interface

    async def get_ticker(self, symbol: str) -> Ticker:
        return await asyncio.to_thread(self.fetch_ticker, symbol)

    async def get_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        return await asyncio.to_thread(self.fetch_candles, symbol, interval, limit)

    async def place_market_sell(self, symbol: str, quantity: float) -> Fill:
        return await asyncio.to_thread(self.market_order, symbol, 'SELL', quantity)

    async def place_market_buy(self, symbol: str, quantity: float) -> Fill:
        return await asyncio.to_thread(self.market_order, symbol, 'BUY', quantity)
