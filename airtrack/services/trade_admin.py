"""Administrative trade actions: add, close, remove, close-all, reset.

These run outside the lifecycle tick and share the store with the worker.
Status changes are conditional on the status read, so an admin close racing
an automatic TP/SL close on the same trade lands only once.
"""

import logging
from datetime import datetime, timezone

from airtrack.config import settings
from airtrack.models.trade import Trade, TradeStatus
from airtrack.schemas.trade import TradeCreate
from airtrack.services import position_rules

logger = logging.getLogger(__name__)


class TradeNotFound(Exception):
    pass


class InvalidTradeAction(Exception):
    """The requested action is not allowed for the trade's current status."""


def create_trade(store, data: TradeCreate, user_id: int | None = None) -> Trade:
    """Persist a new PENDING or OPEN trade.

    A trade created directly as OPEN gets ``opened_at`` but no ``entry_hit_at``;
    that field is only set when the worker sees the entry price crossed.
    """
    now = datetime.now(timezone.utc)
    opened_at = data.opened_at
    if opened_at is None and data.status == TradeStatus.OPEN.value:
        opened_at = now

    trade = Trade(
        symbol=data.symbol,
        quote=data.quote or settings.default_quote,
        side=data.side,
        status=data.status,
        entry_price=data.entry_price,
        tp_price=data.tp_price,
        sl_price=data.sl_price,
        quantity=data.quantity,
        post_url=data.post_url,
        opened_at=opened_at,
        user_id=user_id,
        created_at=now,
        updated_at=now,
    )
    trade = store.create(trade)
    logger.info(
        f"Created trade {trade.id}: {trade.side} {trade.symbol}/{trade.quote} "
        f"entry={trade.entry_price} tp={trade.tp_price} sl={trade.sl_price} [{trade.status}]"
    )
    return trade


def _get_or_raise(store, trade_id: int) -> Trade:
    trade = store.get(trade_id)
    if trade is None:
        raise TradeNotFound(f"Trade {trade_id} not found")
    return trade


def close_trade(
    store,
    trade_id: int,
    pnl_realized_pct: float | None = None,
    exit_price: float | None = None,
) -> Trade:
    """Manually close an OPEN trade.

    Realized PnL comes from the explicit override if given, else from
    ``exit_price`` via the usual PnL formula, else stays as it is.
    """
    trade = _get_or_raise(store, trade_id)
    if trade.status != TradeStatus.OPEN.value:
        raise InvalidTradeAction(f"Only open trades can be closed (trade {trade_id} is {trade.status})")

    fields = position_rules.close_position(trade, 0.0, datetime.now(timezone.utc))
    if pnl_realized_pct is not None:
        fields["pnl_realized_pct"] = pnl_realized_pct
    elif exit_price is not None and trade.entry_price > 0:
        fields["pnl_realized_pct"] = position_rules.pnl_pct(trade.side, trade.entry_price, exit_price)

    updated = store.update(trade_id, fields, expected_status=TradeStatus.OPEN)
    if updated is None:
        if store.get(trade_id) is None:
            raise TradeNotFound(f"Trade {trade_id} not found")
        raise InvalidTradeAction(f"Trade {trade_id} changed state while closing")
    logger.info(f"Manually closed trade {trade_id}: realized {updated.pnl_realized_pct:.2f}%")
    return updated


def remove_trade(store, trade_id: int) -> int:
    """Delete a PENDING trade that never triggered."""
    trade = _get_or_raise(store, trade_id)
    if trade.status != TradeStatus.PENDING.value:
        raise InvalidTradeAction("Only pending trades can be removed")
    if not store.delete(trade_id):
        raise TradeNotFound(f"Trade {trade_id} not found")
    logger.info(f"Removed pending trade {trade_id}")
    return trade_id


def close_all(store) -> dict:
    """Close every OPEN trade and drop every PENDING one.

    Returns dict with closedCount and removedPending.
    """
    closed, removed = store.close_all(datetime.now(timezone.utc))
    logger.warning(f"Close-all: closed {closed} open trades, removed {removed} pending trades")
    return {"closedCount": closed, "removedPending": removed}


def reset_trades(store) -> int:
    """Delete every trade, whatever its status."""
    removed = store.delete_many(None)
    logger.warning(f"Database reset: deleted {removed} trades")
    return removed
