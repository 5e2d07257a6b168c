"""Shared constants and defaults."""

# Chart timeframe -> CryptoCompare history endpoint, aggregation and candle count
TIMEFRAME_SETTINGS: dict[str, dict] = {
    "1m": {"endpoint": "histominute", "aggregate": 1, "limit": 120},
    "5m": {"endpoint": "histominute", "aggregate": 5, "limit": 120},
    "15m": {"endpoint": "histominute", "aggregate": 15, "limit": 120},
    "30m": {"endpoint": "histominute", "aggregate": 30, "limit": 120},
    "1h": {"endpoint": "histohour", "aggregate": 1, "limit": 120},
    "4h": {"endpoint": "histohour", "aggregate": 4, "limit": 120},
}

# Timeframe to seconds, used when a provider wants an explicit time range
TIMEFRAME_SECONDS: dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "4h": 14400,
}

# Report windows accepted by /api/reports
REPORT_WINDOW_DAYS: dict[str, int | None] = {
    "7d": 7,
    "1m": 30,
    "all": None,
}

# Quote currencies Hyperliquid mids can stand in for
USD_QUOTES = {"USD", "USDC", "USDT"}
