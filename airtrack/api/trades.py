"""Trades API: listing, charts and admin actions."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from airtrack.api.deps import get_current_user, get_quotes, get_store, get_trade_broadcaster
from airtrack.models.trade import TradeStatus
from airtrack.models.user import User
from airtrack.schemas.trade import TradeCloseRequest, TradeCreate, to_client_trade, to_client_trades
from airtrack.services import trade_admin
from airtrack.services.market_data import QuoteUnavailable, resolve_timeframe

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trades", tags=["trades"])


def _parse_statuses(statuses: str | None) -> list[str] | None:
    if not statuses:
        return None
    values = [s.strip().upper() for s in statuses.split(",") if s.strip()]
    valid = {s.value for s in TradeStatus}
    unknown = [s for s in values if s not in valid]
    if unknown:
        raise HTTPException(status_code=422, detail=f"Unknown status: {', '.join(unknown)}")
    return values


@router.get("")
def list_trades(
    statuses: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=500),
    store=Depends(get_store),
):
    trades = store.paginate(_parse_statuses(statuses), page=page, limit=limit)
    return to_client_trades(trades)


@router.post("", status_code=201)
async def create_trade(
    body: TradeCreate,
    user: User = Depends(get_current_user),
    store=Depends(get_store),
    broadcaster=Depends(get_trade_broadcaster),
):
    trade = trade_admin.create_trade(store, body, user_id=user.id)
    await broadcaster.broadcast_active_trades(store)
    return to_client_trade(trade)


@router.post("/close-all", dependencies=[Depends(get_current_user)])
async def close_all_trades(store=Depends(get_store), broadcaster=Depends(get_trade_broadcaster)):
    """Close every open trade and drop every pending one."""
    result = trade_admin.close_all(store)
    await broadcaster.broadcast_active_trades(store)
    return result


@router.get("/{trade_id}")
def get_trade(trade_id: int, store=Depends(get_store)):
    trade = store.get(trade_id)
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")
    return to_client_trade(trade)


@router.get("/{trade_id}/ohlcv")
async def trade_ohlcv(
    trade_id: int,
    tf: str | None = None,
    store=Depends(get_store),
    quotes=Depends(get_quotes),
):
    """Recent candles for the trade's pair."""
    trade = store.get(trade_id)
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")

    timeframe = resolve_timeframe(tf)
    try:
        candles = await quotes.fetch_candles(trade.symbol, trade.quote, timeframe)
    except QuoteUnavailable as e:
        logger.warning(f"Candles for trade {trade_id} ({trade.symbol}/{trade.quote}) unavailable: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch candles")
    return {"symbol": trade.symbol, "quote": trade.quote, "tf": timeframe, "data": candles}


@router.post("/{trade_id}/close", dependencies=[Depends(get_current_user)])
async def close_trade(
    trade_id: int,
    body: TradeCloseRequest | None = None,
    store=Depends(get_store),
    broadcaster=Depends(get_trade_broadcaster),
):
    """Close an open trade, or remove a pending one with ``action=remove``."""
    body = body or TradeCloseRequest()
    try:
        if body.action == "remove":
            removed_id = trade_admin.remove_trade(store, trade_id)
            response = {"success": True, "removed": True, "id": removed_id}
        else:
            trade = trade_admin.close_trade(
                store,
                trade_id,
                pnl_realized_pct=body.pnl_realized_pct,
                exit_price=body.exit_price,
            )
            response = to_client_trade(trade)
    except trade_admin.TradeNotFound:
        raise HTTPException(status_code=404, detail="Trade not found")
    except trade_admin.InvalidTradeAction as e:
        raise HTTPException(status_code=400, detail=str(e))

    await broadcaster.broadcast_active_trades(store)
    return response
