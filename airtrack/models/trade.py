"""Trade model: one manually entered position tracked against live prices."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Index
from sqlmodel import SQLModel, Field


class TradeStatus(str, Enum):
    PENDING = "PENDING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class TradeSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


ACTIVE_STATUSES = (TradeStatus.OPEN, TradeStatus.PENDING)


class Trade(SQLModel, table=True):
    __tablename__ = "trade"
    __table_args__ = (Index("ix_trade_status_symbol", "status", "symbol"),)

    id: int | None = Field(default=None, primary_key=True)
    symbol: str  # base ticker, e.g. "BTC"
    quote: str = "USDT"
    side: str = TradeSide.LONG.value
    status: str = TradeStatus.PENDING.value

    entry_price: float
    tp_price: float
    sl_price: float
    quantity: float = 0.0  # informational only

    opened_at: datetime | None = None
    entry_hit_at: datetime | None = None  # set by the worker when entry is crossed
    closed_at: datetime | None = None

    pnl_unrealized_pct: float = 0.0
    pnl_realized_pct: float = 0.0

    post_url: str | None = None
    user_id: int | None = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), index=True
    )
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
