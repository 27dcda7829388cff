"""Configuration management for the Smart Trailing engine.

Strategy parameters live in dataclasses. API credentials and environment
settings are loaded from the .env file.
"""

import importlib.util
import logging
import math
import os
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigValidationError

logger = logging.getLogger(__name__)


def normalize_symbol(symbol: str) -> str:
    """BTC/USDT, btcusdt and ' BTCUSDT ' all become BTCUSDT."""
    return str(symbol).strip().upper().replace("/", "")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _unique_symbols(symbols: List[str]) -> List[str]:
    seen = set()
    out = []
    for s in symbols:
        norm = normalize_symbol(s)
        if norm and norm not in seen:
            seen.add(norm)
            out.append(norm)
    return out


@dataclass
class Settings:
    """Process-wide trading settings, mutable at runtime via the engine."""

    enabled: bool = False
    # Minimum 24h price change (%)
    min_price_change: float = 5.0
    max_positions: int = 3
    trailing_percent: float = 3.0
    # Minimum 24h volume in quote currency
    min_volume: float = 1_000_000.0
    rsi_threshold: float = 70.0
    # Quote currency per automated position
    investment_amount: float = 100.0
    symbols: List[str] = field(
        default_factory=lambda: ["BTCUSDT", "ETHUSDT", "PEPEUSDT"]
    )
    stop_loss: float = 8.0
    take_profit: float = 15.0

    def __post_init__(self):
        # Anything but a sequence of strings is left for validate() to reject
        if isinstance(self.symbols, (list, tuple)) and all(isinstance(s, str) for s in self.symbols):
            self.symbols = _unique_symbols(self.symbols)

    def validate(self) -> None:
        """Validate settings values.

        Raises:
            ConfigValidationError: If validation fails.
        """
        errors = []

        numeric = ("min_price_change", "max_positions", "trailing_percent", "min_volume",
                   "rsi_threshold", "investment_amount", "stop_loss", "take_profit")
        bad = [name for name in numeric if not _is_number(getattr(self, name))]
        errors.extend(f"{name} must be a finite number" for name in bad)
        if not isinstance(self.enabled, bool):
            errors.append("enabled must be a bool")
        if not isinstance(self.symbols, list) or not all(isinstance(s, str) for s in self.symbols):
            errors.append("symbols must be a list of strings")
        if bad:
            raise ConfigValidationError("\n".join(errors))

        for name in ("min_price_change", "min_volume",
                     "rsi_threshold", "stop_loss", "take_profit"):
            if getattr(self, name) < 0:
                errors.append(f"{name} must be >= 0")

        if isinstance(self.max_positions, float) and not self.max_positions.is_integer():
            errors.append("max_positions must be a whole number")
        if self.max_positions < 1:
            errors.append("max_positions must be >= 1")
        if not 0 < self.trailing_percent <= 100:
            errors.append("trailing_percent must be in (0, 100]")
        if self.rsi_threshold > 100:
            errors.append("rsi_threshold must be <= 100")
        if self.investment_amount <= 0:
            errors.append("investment_amount must be > 0")
        if self.stop_loss >= 100:
            errors.append("stop_loss must be < 100")

        if errors:
            raise ConfigValidationError("\n".join(errors))

    def merged(self, partial: Dict[str, Any]) -> "Settings":
        """Return a validated copy with partial applied.

        Raises:
            ConfigValidationError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(partial) - known)
        if unknown:
            raise ConfigValidationError(f"Unknown settings: {', '.join(unknown)}")

        updated = replace(self, **partial)
        updated.validate()
        return updated

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScoringPolicy:
    """Opportunity scoring weights. Defaults must stay 30/20/30/20 and 70."""

    price_change_weight: int = 30
    volume_weight: int = 20
    rsi_weight: int = 30
    momentum_weight: int = 20
    min_confidence: int = 70


@dataclass
class EngineConfig:
    """Timing and runtime configuration for the engine."""

    # Opportunity scan cadence in seconds
    scan_interval: float = 30.0
    # Per-position price check cadence in seconds
    monitor_interval: float = 5.0
    # Bounded timeouts for every external call
    fetch_timeout: float = 10.0
    order_timeout: float = 15.0
    candle_interval: str = "1h"
    candle_limit: int = 100
    rsi_period: int = 14
    momentum_window: int = 10
    max_concurrent_fetches: int = 5
    # Finished positions kept for get_positions(include_closed=True)
    history_size: int = 100
    # Place a market buy when opening automated positions
    place_entry_orders: bool = True

    def validate(self) -> None:
        errors = []
        if self.scan_interval <= 0:
            errors.append("scan_interval must be > 0")
        if self.monitor_interval <= 0:
            errors.append("monitor_interval must be > 0")
        if self.fetch_timeout <= 0 or self.order_timeout <= 0:
            errors.append("timeouts must be > 0")
        if self.rsi_period < 1 or self.momentum_window < 2:
            errors.append("rsi_period must be >= 1 and momentum_window >= 2")
        if self.max_concurrent_fetches < 1:
            errors.append("max_concurrent_fetches must be >= 1")
        if errors:
            raise ConfigValidationError("\n".join(errors))


@dataclass
class EnvConfig:
    """Environment configuration from .env file.

    Contains API credentials and environment-specific settings
    that should not be committed to version control.
    """
    binance_api_key: str = ""
    binance_api_secret: str = ""
    binance_testnet: bool = True
    paper_trading: bool = True
    log_level: str = "INFO"

    def validate(self) -> None:
        """Raises ConfigValidationError if live orders lack credentials."""
        errors = []

        if not self.paper_trading:
            if not self.binance_api_key:
                errors.append("BINANCE_API_KEY is required when PAPER_TRADING is off")
            if not self.binance_api_secret:
                errors.append("BINANCE_API_SECRET is required when PAPER_TRADING is off")

        if errors:
            raise ConfigValidationError("\n".join(errors))


def str_to_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def load_env_config() -> EnvConfig:
    """Load environment configuration from .env file."""
    load_dotenv(override=True)

    return EnvConfig(
        binance_api_key=os.getenv("BINANCE_API_KEY", ""),
        binance_api_secret=os.getenv("BINANCE_API_SECRET", "") or os.getenv("BINANCE_SECRET_KEY", ""),
        binance_testnet=str_to_bool(os.getenv("BINANCE_TESTNET"), True),
        paper_trading=str_to_bool(os.getenv("PAPER_TRADING"), True),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Load settings from a root config.py exposing SMART_TRAILING_SETTINGS.

    Falls back to defaults when the file is missing or unusable.
    """
    settings = Settings()
    config_path = config_path or os.path.join(os.getcwd(), "config.py")
    if not os.path.exists(config_path):
        return settings

    try:
        spec = importlib.util.spec_from_file_location("root_config", config_path)
        if spec is None or spec.loader is None:
            return settings
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    except Exception as e:
        logger.warning(f"⚠️ Could not load {config_path}: {e} - using defaults")
        return settings

    overrides = getattr(module, "SMART_TRAILING_SETTINGS", None)
    if not overrides:
        return settings

    try:
        return settings.merged(dict(overrides))
    except ConfigValidationError as e:
        logger.warning(f"⚠️ Invalid settings in {config_path}: {e} - using defaults")
        return settings
