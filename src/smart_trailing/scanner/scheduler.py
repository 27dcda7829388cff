"""Analysis Scheduler - periodic opportunity scan.

Each cycle:
1. Fetch ticker + candles for every symbol (bounded concurrency, timeouts)
2. Score each symbol
3. Publish the results and hand them to the lifecycle manager

A failure on one symbol is reported and the rest of the cycle continues.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from ..analyzer.scorer import OpportunityScorer
from ..core.config import EngineConfig, Settings
from ..core.errors import DataFetchError
from ..core.events import AnalysisCompleted, AnalysisError, EventBus
from ..core.models import CoinAnalysis
from ..exchange.interfaces import MarketDataFeed
from ..manager.lifecycle import PositionLifecycleManager

logger = logging.getLogger(__name__)


class AnalysisScheduler:
    """Runs the opportunity scan on a fixed interval."""

    def __init__(
        self,
        feed: MarketDataFeed,
        scorer: OpportunityScorer,
        lifecycle: PositionLifecycleManager,
        bus: EventBus,
        settings: Settings,
        config: Optional[EngineConfig] = None,
    ):
        self.feed = feed
        self.scorer = scorer
        self.lifecycle = lifecycle
        self.bus = bus
        self.settings = settings
        self.config = config or EngineConfig()

        self.last_scan_time: Optional[datetime] = None
        self.scan_count = 0
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _fetch(self, request, symbol: str, what: str):
        try:
            return await asyncio.wait_for(request, timeout=self.config.fetch_timeout)
        except asyncio.TimeoutError:
            raise DataFetchError(
                f"{what} request timed out after {self.config.fetch_timeout}s", symbol
            ) from None
        except DataFetchError:
            raise
        except Exception as e:
            raise DataFetchError(f"{what} request failed: {e}", symbol) from e

    async def analyze_symbol(self, symbol: str, settings: Optional[Settings] = None) -> CoinAnalysis:
        """Fetch data for one symbol and score it.

        Raises:
            DataFetchError: If ticker or candles could not be fetched.
        """
        settings = settings or self.settings
        ticker = await self._fetch(self.feed.get_ticker(symbol), symbol, "Ticker")
        candles = await self._fetch(
            self.feed.get_candles(symbol, self.config.candle_interval, self.config.candle_limit),
            symbol,
            "Candles",
        )
        return self.scorer.analyze(ticker, candles, settings)

    async def scan(
        self, settings: Optional[Settings] = None
    ) -> Tuple[List[CoinAnalysis], List[Tuple[str, Exception]]]:
        """Analyze every symbol in the universe.

        Returns:
            (analyses in universe order, [(symbol, error), ...])
        """
        settings = settings or self.settings
        semaphore = asyncio.Semaphore(self.config.max_concurrent_fetches)

        async def guarded(symbol: str) -> CoinAnalysis:
            async with semaphore:
                return await self.analyze_symbol(symbol, settings)

        symbols = list(settings.symbols)
        results = await asyncio.gather(*(guarded(s) for s in symbols), return_exceptions=True)

        analyses = []
        errors = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, Exception):
                errors.append((symbol, result))
            elif isinstance(result, BaseException):
                raise result
            else:
                analyses.append(result)

        return analyses, errors

    async def run_cycle(self) -> List[CoinAnalysis]:
        """Run one full scan and decision pass."""
        settings = self.settings
        logger.info(f"🔍 Scanning {len(settings.symbols)} symbol(s)...")

        analyses, errors = await self.scan(settings)

        for symbol, error in errors:
            logger.warning(f"⚠️ {symbol}: {error}")
            self.bus.publish(AnalysisError(error=error, symbol=symbol))

        self.last_scan_time = datetime.now()
        self.scan_count += 1
        self.bus.publish(AnalysisCompleted(analyses=analyses))

        good = [a for a in analyses if a.is_good_for_trailing]
        logger.info(
            f"📊 Scan #{self.scan_count}: {len(analyses)} analyzed, {len(good)} good, "
            f"{len(errors)} failed"
        )
        for a in good:
            logger.info(f"   ✨ {a.symbol}: {a.confidence}% - {', '.join(a.reasons)}")

        try:
            await self.lifecycle.process_analyses(analyses)
        except Exception as e:
            logger.error(f"Decision step failed: {e}", exc_info=True)
            self.bus.publish(AnalysisError(error=e))

        return analyses

    def start(self) -> None:
        """Start the scan loop. No-op when already running."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event), name="analysis-scheduler")
        logger.info(f"🚀 Scanner started (every {self.config.scan_interval}s)")

    async def stop(self, grace: Optional[float] = None) -> None:
        """Stop the scan loop, cancelling it if a cycle overruns grace."""
        if self._task is None:
            return

        task, self._task = self._task, None
        self._stop_event.set()
        if grace is None:
            grace = max(self.config.fetch_timeout, self.config.order_timeout)

        done, _ = await asyncio.wait([task], timeout=grace)
        if not done:
            logger.warning("⚠️ Scan cycle did not stop in time, cancelling...")
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("🛑 Scanner stopped")

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"Scan cycle error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.scan_interval)
            except asyncio.TimeoutError:
                pass
