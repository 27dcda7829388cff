"""Smart Trailing - command line entry point.

Usage:
    smart-trailing                 # run the service (paper fills by default)
    smart-trailing --once          # score the universe once and print a report
    smart-trailing --live          # place real orders (needs API credentials)
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from typing import List, Optional

from .analyzer.report import analyses_to_frame
from .core.config import EngineConfig, load_env_config, load_settings
from .core.errors import ConfigValidationError
from .core.events import EventType, PositionClosed
from .engine import SmartTrailingEngine
from .exchange.binance import BinanceSpotClient
from .exchange.paper import PaperExecutor

logger = logging.getLogger("smart_trailing")


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            logging.FileHandler(os.path.join(log_dir, f"smart_trailing_{datetime.now():%Y%m%d_%H%M%S}.log"))
        )

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s',
        datefmt='%H:%M:%S',
        handlers=handlers,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Smart Trailing - trailing-stop tracking and opportunity scoring")
    parser.add_argument("--config", help="Path to config.py with SMART_TRAILING_SETTINGS")
    parser.add_argument("--symbols", help="Comma-separated symbol universe, e.g. BTCUSDT,ETHUSDT")
    parser.add_argument("--once", action="store_true", help="Score the universe once and exit")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--paper", dest="paper", action="store_true", default=None, help="Simulate fills (default)")
    mode.add_argument("--live", dest="paper", action="store_false", help="Place real orders")
    parser.add_argument("--scan-interval", type=float, default=30.0, help="Seconds between scans")
    parser.add_argument("--monitor-interval", type=float, default=5.0, help="Seconds between price checks")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    parser.add_argument("--log-dir", help="Also write logs to this directory")
    return parser


def _log_closed(event: PositionClosed) -> None:
    p = event.position
    if event.error:
        logger.error(f"❌ {p.id} exit failed: {event.error}")
    else:
        pnl = f"{event.pnl:+.4f}" if event.pnl is not None else "n/a"
        logger.info(f"🏁 {p.id} closed ({event.reason.value}) P&L {pnl}")


async def run(args: argparse.Namespace) -> int:
    try:
        env = load_env_config()
        if args.paper is not None:
            env.paper_trading = args.paper
        env.validate()
        if not args.log_level:
            logging.getLogger().setLevel(getattr(logging, env.log_level, logging.INFO))
    except ConfigValidationError as e:
        logger.error(f"❌ Environment error: {e}")
        return 1

    settings = load_settings(args.config)
    if args.symbols:
        try:
            settings = settings.merged({"symbols": args.symbols.split(",")})
        except ConfigValidationError as e:
            logger.error(f"❌ Invalid symbols: {e}")
            return 1

    try:
        config = EngineConfig(scan_interval=args.scan_interval, monitor_interval=args.monitor_interval)
        config.validate()
    except ConfigValidationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 1

    client = BinanceSpotClient(
        api_key=env.binance_api_key,
        api_secret=env.binance_api_secret,
        testnet=env.binance_testnet,
        timeout=config.fetch_timeout,
    )
    executor = PaperExecutor(client) if env.paper_trading else client
    engine = SmartTrailingEngine(client, executor, settings=settings, config=config)

    if args.once:
        analyses = await engine.scan_once()
        frame = analyses_to_frame(analyses)
        if frame.empty:
            print("No analyses (all symbols failed)")
        else:
            print(frame.to_string(index=False))
        return 0

    logger.info(f"   Mode: {'PAPER' if env.paper_trading else 'LIVE'} ({'testnet' if env.binance_testnet else 'mainnet'})")
    engine.subscribe(_log_closed, EventType.POSITION_CLOSED)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(sig, frame):
        logger.info(f"👋 Received signal {sig}, initiating shutdown...")
        loop.call_soon_threadsafe(shutdown.set)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await engine.start_service()
    await shutdown.wait()
    await engine.stop_service()

    logger.info("👋 Smart Trailing shutdown complete")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"), args.log_dir)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
