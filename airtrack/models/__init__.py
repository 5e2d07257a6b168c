"""Database models."""

from airtrack.models.trade import Trade, TradeSide, TradeStatus
from airtrack.models.tick_log import TickLog
from airtrack.models.user import User

__all__ = [
    "Trade",
    "TradeSide",
    "TradeStatus",
    "TickLog",
    "User",
]
