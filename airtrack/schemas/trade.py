"""Pydantic schemas for the Trade API and the live update stream."""

from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator, model_validator

from airtrack.models.trade import TradeSide, TradeStatus


class TradeCreate(BaseModel):
    symbol: str = Field(min_length=1, max_length=32)
    quote: str | None = Field(default=None, min_length=1, max_length=16)
    side: str
    entry_price: float = Field(gt=0)
    tp_price: float = Field(gt=0)
    sl_price: float = Field(gt=0)
    quantity: float = Field(default=0.0, ge=0)
    post_url: str | None = Field(default=None, max_length=500)
    opened_at: datetime | None = None
    status: str = TradeStatus.PENDING.value

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        text = value.strip().upper()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("quote")
    @classmethod
    def _normalize_quote(cls, value: str | None) -> str | None:
        if value is None:
            return None
        text = value.strip().upper()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("side")
    @classmethod
    def _validate_side(cls, value: str) -> str:
        text = value.strip().upper()
        if text not in {s.value for s in TradeSide}:
            raise ValueError("must be LONG or SHORT")
        return text

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: str) -> str:
        text = value.strip().upper()
        if text not in (TradeStatus.PENDING.value, TradeStatus.OPEN.value):
            raise ValueError("must be PENDING or OPEN")
        return text

    @model_validator(mode="after")
    def _split_pair_symbol(self):
        # "BTC/USDT" carries its own quote currency
        if "/" in self.symbol:
            base, _, pair_quote = self.symbol.partition("/")
            if not base or not pair_quote:
                raise ValueError("symbol must look like BASE or BASE/QUOTE")
            self.symbol = base
            if self.quote is None:
                self.quote = pair_quote
        return self


class TradeCloseRequest(BaseModel):
    action: str = "close"
    pnl_realized_pct: float | None = None
    exit_price: float | None = Field(default=None, gt=0)

    @field_validator("action")
    @classmethod
    def _validate_action(cls, value: str) -> str:
        text = (value or "close").strip().lower()
        if text not in ("close", "remove"):
            raise ValueError("must be 'close' or 'remove'")
        return text


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TradeRead(BaseModel):
    id: int
    symbol: str
    quote: str
    side: str
    entry_price: float
    tp_price: float
    sl_price: float
    quantity: float = 0.0
    status: str
    opened_at: datetime | None = None
    entry_hit_at: datetime | None = None
    closed_at: datetime | None = None
    post_url: str | None = None
    pnl_unrealized_pct: float = 0.0
    pnl_realized_pct: float = 0.0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    user_id: int | None = Field(default=None, serialization_alias="userId")

    model_config = {"from_attributes": True}

    @field_validator("opened_at", "entry_hit_at", "closed_at", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @field_validator("side", "status")
    @classmethod
    def _upper(cls, value: str) -> str:
        return (value or "").strip().upper()


def to_client_trade(trade) -> dict:
    """Serialize a Trade into the JSON shape the dashboard consumes."""
    return TradeRead.model_validate(trade).model_dump(mode="json", by_alias=True)


def to_client_trades(trades) -> list[dict]:
    return [to_client_trade(t) for t in trades]
