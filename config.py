"""Smart Trailing - Root Configuration.

Trading settings are centralized here. Modify this file to tune the
engine without changing any source code.

API credentials and environment settings should be in .env file.
"""

# =============================================================================
# SMART TRAILING SETTINGS
# =============================================================================
# Loaded by smart_trailing.core.config.load_settings().
# All values here override the defaults in Settings.

SMART_TRAILING_SETTINGS = {
    # =========================================================================
    # OPPORTUNITY SCAN
    # =========================================================================
    "symbols": [                         # Symbol universe scanned every cycle
        "BTCUSDT", "ETHUSDT", "PEPEUSDT",
    ],
    "min_price_change": 5.0,             # 24h change (%) needed for +30 points
    "min_volume": 1_000_000,             # 24h quote volume needed for +20 points
    "rsi_threshold": 70,                 # RSI below this scores +30 (not overbought)

    # =========================================================================
    # POSITIONS
    # =========================================================================
    "max_positions": 3,                  # Maximum concurrent tracked positions
    "investment_amount": 100.0,          # Quote currency per automated position
    "trailing_percent": 3.0,             # Trailing stop distance below the peak (%)
    "stop_loss": 8.0,                    # Fixed stop loss below entry (%), 0 disables
    "take_profit": 15.0,                 # Fixed take profit above entry (%), 0 disables
}
