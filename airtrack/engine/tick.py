"""Position lifecycle tick.

``run_scheduled_tick`` is the function APScheduler calls on each interval. It
wires the process-wide store, quote source and broadcaster into
``run_locked_tick``, which the manual API trigger shares, so only one tick
runs at a time. ``run_lifecycle_tick`` orchestrates:
price fetch -> entry evaluation (PENDING) -> TP/SL + PnL evaluation (OPEN)
-> store writes -> broadcast of the active snapshot.

Every record is an independent unit of work. A missing price skips the
record until the next tick; a failed write is logged and the tick moves on.
Writes only land while the record still has the status the tick read, so
a trade closed by an admin mid-tick is left alone.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from airtrack.config import settings
from airtrack.models.tick_log import TickLog
from airtrack.models.trade import Trade, TradeStatus
from airtrack.services import position_rules
from airtrack.services.market_data import QuoteSource, get_spot_price

logger = logging.getLogger(__name__)
_tick_lock = asyncio.Lock()


class TickInProgress(Exception):
    """Another lifecycle tick holds the lock."""


@dataclass
class TickResult:
    opened: list[int] = field(default_factory=list)
    closed: list[dict] = field(default_factory=list)
    updated: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    broadcast_count: int = 0
    duration_ms: float | None = None

    def summary(self) -> str:
        return (
            f"opened={len(self.opened)} closed={len(self.closed)} "
            f"updated={len(self.updated)} skipped={len(self.skipped)} "
            f"failed={len(self.failed)}"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _fetch_price(quotes: QuoteSource, symbol: str, quote: str, timeout: float) -> float | None:
    try:
        return await asyncio.wait_for(get_spot_price(quotes, symbol, quote), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Price fetch for {symbol}/{quote} timed out after {timeout}s")
    except Exception as e:
        logger.warning(f"Price fetch for {symbol}/{quote} failed: {e}")
    return None


async def _fetch_prices(quotes: QuoteSource, trades: list[Trade], timeout: float) -> dict:
    """One concurrent fetch per distinct (symbol, quote) pair."""
    keys = list({(t.symbol, t.quote or settings.default_quote) for t in trades})
    prices = await asyncio.gather(
        *(_fetch_price(quotes, symbol, quote, timeout) for symbol, quote in keys)
    )
    return dict(zip(keys, prices))


def _write(store, trade: Trade, fields: dict, result: TickResult, expected_status: TradeStatus) -> bool:
    try:
        updated = store.update(trade.id, fields, expected_status=expected_status)
    except SQLAlchemyError as e:
        logger.error(f"[trade {trade.id}] Store write failed: {e}")
        result.failed.append({"trade_id": trade.id, "error": str(e)})
        return False
    if updated is None:
        logger.info(f"[trade {trade.id}] Record changed or vanished before write, skipping")
        result.skipped.append(trade.id)
        return False
    return True


def _process_pending(store, trade: Trade, price: float, now: datetime, result: TickResult):
    if not position_rules.is_entry_hit(trade.side, trade.entry_price, price):
        return
    if _write(store, trade, position_rules.open_position(now), result, TradeStatus.PENDING):
        logger.info(
            f"[trade {trade.id}] {trade.side} {trade.symbol} entry hit at {price} "
            f"(entry {trade.entry_price}) -> OPEN"
        )
        result.opened.append(trade.id)


def _process_open(store, trade: Trade, price: float, now: datetime, policy: str, result: TickResult):
    if trade.entry_price <= 0:
        logger.warning(f"[trade {trade.id}] entry_price {trade.entry_price} is not positive, skipping")
        result.skipped.append(trade.id)
        return

    decision = position_rules.evaluate_exit(trade, price, policy)
    if not decision.should_close:
        if _write(store, trade, {"pnl_unrealized_pct": decision.unrealized_pct}, result, TradeStatus.OPEN):
            result.updated.append(trade.id)
        return

    if decision.conflict:
        logger.warning(
            f"[trade {trade.id}] price {price} crossed both TP {trade.tp_price} and "
            f"SL {trade.sl_price}; booking {decision.realized_delta:.2f}% ({policy})"
        )
    fields = position_rules.close_position(trade, decision.realized_delta, now)
    if _write(store, trade, fields, result, TradeStatus.OPEN):
        logger.info(
            f"[trade {trade.id}] {trade.side} {trade.symbol} closed on {decision.reason} "
            f"at {price}: realized {fields['pnl_realized_pct']:.2f}%"
        )
        result.closed.append({
            "trade_id": trade.id,
            "symbol": trade.symbol,
            "side": trade.side,
            "reason": decision.reason,
            "price": price,
            "pnl_realized_pct": fields["pnl_realized_pct"],
        })


async def run_lifecycle_tick(
    store,
    quotes: QuoteSource,
    broadcaster=None,
    *,
    exit_policy: str | None = None,
    price_timeout: float | None = None,
    now: Callable[[], datetime] = _utcnow,
) -> TickResult:
    """Run one lifecycle pass over all PENDING and OPEN trades.

    Both sets are read up front, so a trade promoted to OPEN here gets its
    first PnL evaluation on the next tick. CLOSED trades are never read.
    """
    policy = exit_policy or settings.exit_conflict_policy
    timeout = price_timeout if price_timeout is not None else settings.price_timeout_seconds
    result = TickResult()

    pending = store.find_many([TradeStatus.PENDING])
    opens = store.find_many([TradeStatus.OPEN])
    prices = await _fetch_prices(quotes, pending + opens, timeout)

    for trade in pending:
        price = prices.get((trade.symbol, trade.quote or settings.default_quote))
        if price is None:
            result.skipped.append(trade.id)
            continue
        try:
            _process_pending(store, trade, price, now(), result)
        except Exception as e:
            logger.error(f"[trade {trade.id}] Entry evaluation failed: {e}", exc_info=True)
            result.failed.append({"trade_id": trade.id, "error": str(e)})

    for trade in opens:
        price = prices.get((trade.symbol, trade.quote or settings.default_quote))
        if price is None:
            result.skipped.append(trade.id)
            continue
        try:
            _process_open(store, trade, price, now(), policy, result)
        except Exception as e:
            logger.error(f"[trade {trade.id}] Open evaluation failed: {e}", exc_info=True)
            result.failed.append({"trade_id": trade.id, "error": str(e)})

    if broadcaster is not None:
        result.broadcast_count = await broadcaster.broadcast_active_trades(store)

    return result


def _notify(message: str):
    """Send a Telegram notification (fire-and-forget)."""
    try:
        from airtrack.services.telegram_bot import get_bot
        bot = get_bot()
        if bot and bot._loop:
            asyncio.run_coroutine_threadsafe(bot.send_notification(message), bot._loop)
    except Exception as e:
        logger.debug(f"Telegram notification not sent: {e}")


def _notify_transitions(result: TickResult):
    for trade_id in result.opened:
        _notify(f"Trade #{trade_id} entry hit, now OPEN")
    for closed in result.closed:
        _notify(
            f"Trade #{closed['trade_id']} {closed['side']} {closed['symbol']} closed "
            f"({closed['reason']}) at {closed['price']}: {closed['pnl_realized_pct']:+.2f}%"
        )


async def run_locked_tick(store, quotes: QuoteSource, broadcaster=None) -> TickResult:
    """Run one tick under the process-wide tick lock and record it in the tick log.

    Raises TickInProgress if another tick is still running. Errors from the
    tick are logged, notified and recorded, then re-raised.
    """
    if _tick_lock.locked():
        logger.warning("Skipping overlapping lifecycle tick")
        _log_tick("skipped", message="Previous tick still in progress")
        raise TickInProgress("A lifecycle tick is already running")

    async with _tick_lock:
        started = time.monotonic()
        try:
            result = await run_lifecycle_tick(store, quotes, broadcaster)
        except Exception as e:
            logger.error(f"Lifecycle tick error: {e}", exc_info=True)
            _notify(f"Lifecycle tick ERROR: {e}")
            _log_tick("error", message=str(e), duration_ms=(time.monotonic() - started) * 1000)
            raise

        result.duration_ms = (time.monotonic() - started) * 1000
        logger.info(f"Lifecycle tick done in {result.duration_ms:.0f}ms: {result.summary()}")
        _notify_transitions(result)
        _log_tick("success", result=result, duration_ms=result.duration_ms)
        return result


async def run_scheduled_tick():
    """Scheduler entry point: run one tick, skipping if a prior tick is still in-flight.

    Nothing raised by the tick escapes; the schedule keeps firing.
    """
    from airtrack.engine.store import get_position_store
    from airtrack.services.broadcaster import get_broadcaster
    from airtrack.services.market_data import get_quote_source

    try:
        await run_locked_tick(get_position_store(), get_quote_source(), get_broadcaster())
    except TickInProgress:
        return
    except Exception:
        # already logged and recorded
        return


def _log_tick(
    status: str,
    result: TickResult | None = None,
    message: str | None = None,
    duration_ms: float | None = None,
):
    """Write a TickLog entry."""
    from airtrack.database import engine

    details = None
    if result and (result.closed or result.failed):
        details = {"closed": result.closed, "failed": result.failed}

    try:
        with Session(engine) as session:
            session.add(TickLog(
                status=status,
                opened=len(result.opened) if result else 0,
                closed=len(result.closed) if result else 0,
                updated=len(result.updated) if result else 0,
                skipped=len(result.skipped) if result else 0,
                failed=len(result.failed) if result else 0,
                duration_ms=duration_ms,
                message=message,
                details=details,
            ))
            session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Failed to write tick log: {e}")
