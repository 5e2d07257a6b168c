"""Stateless position lifecycle rules.

Entry, take-profit and stop-loss predicates, PnL percentages, and the field
sets written on each state transition. All functions are pure computation:
no I/O, no database access.
"""

from dataclasses import dataclass
from datetime import datetime

from airtrack.models.trade import TradeSide, TradeStatus


STOP_LOSS_FIRST = "stop_loss_first"
ADDITIVE = "additive"
EXIT_CONFLICT_POLICIES = (STOP_LOSS_FIRST, ADDITIVE)


def pnl_pct(side: TradeSide | str, entry_price: float, price: float) -> float:
    """Percent move from ``entry_price`` to ``price`` in the trade's favour.

    LONG:  ((price - entry) / entry) * 100
    SHORT: ((entry - price) / entry) * 100
    """
    if entry_price <= 0:
        raise ValueError("entry_price must be positive")
    if TradeSide(side) == TradeSide.LONG:
        return ((price - entry_price) / entry_price) * 100
    return ((entry_price - price) / entry_price) * 100


def is_entry_hit(side: TradeSide | str, entry_price: float, price: float) -> bool:
    if TradeSide(side) == TradeSide.LONG:
        return price >= entry_price
    return price <= entry_price


def is_take_profit_hit(side: TradeSide | str, tp_price: float, price: float) -> bool:
    if TradeSide(side) == TradeSide.LONG:
        return price >= tp_price
    return price <= tp_price


def is_stop_loss_hit(side: TradeSide | str, sl_price: float, price: float) -> bool:
    if TradeSide(side) == TradeSide.LONG:
        return price <= sl_price
    return price >= sl_price


@dataclass
class ExitDecision:
    price: float
    unrealized_pct: float
    tp_hit: bool
    sl_hit: bool
    realized_delta: float = 0.0

    @property
    def should_close(self) -> bool:
        return self.tp_hit or self.sl_hit

    @property
    def conflict(self) -> bool:
        """Both thresholds crossed by the same price (only possible with an inverted band)."""
        return self.tp_hit and self.sl_hit

    @property
    def reason(self) -> str | None:
        if self.conflict:
            return "tp+sl"
        if self.tp_hit:
            return "take_profit"
        if self.sl_hit:
            return "stop_loss"
        return None


def evaluate_exit(trade, price: float, policy: str = STOP_LOSS_FIRST) -> ExitDecision:
    """Evaluate an OPEN trade against ``price``.

    TP and SL are checked independently. When both hit, ``policy`` decides the
    realized contribution: ``stop_loss_first`` books only the stop-loss level,
    ``additive`` books both levels (legacy behaviour, double counts).
    """
    if policy not in EXIT_CONFLICT_POLICIES:
        raise ValueError(f"unknown exit conflict policy: {policy}")

    side = TradeSide(trade.side)
    entry = trade.entry_price
    decision = ExitDecision(
        price=price,
        unrealized_pct=pnl_pct(side, entry, price),
        tp_hit=is_take_profit_hit(side, trade.tp_price, price),
        sl_hit=is_stop_loss_hit(side, trade.sl_price, price),
    )

    tp_delta = pnl_pct(side, entry, trade.tp_price)
    sl_delta = pnl_pct(side, entry, trade.sl_price)
    if decision.conflict:
        decision.realized_delta = tp_delta + sl_delta if policy == ADDITIVE else sl_delta
    elif decision.tp_hit:
        decision.realized_delta = tp_delta
    elif decision.sl_hit:
        decision.realized_delta = sl_delta
    return decision


def open_position(now: datetime) -> dict:
    """Fields written when the worker sees a PENDING trade's entry crossed.

    ``opened_at`` keeps its creation-time value; the hit is recorded in
    ``entry_hit_at`` only.
    """
    return {"status": TradeStatus.OPEN.value, "entry_hit_at": now}


def close_position(trade, realized_delta: float, now: datetime) -> dict:
    """Fields written on the CLOSED transition.

    Realized PnL accumulates onto the trade's current value exactly once,
    unrealized PnL is zeroed and ``closed_at`` is stamped.
    """
    return {
        "status": TradeStatus.CLOSED.value,
        "closed_at": now,
        "pnl_unrealized_pct": 0.0,
        "pnl_realized_pct": (trade.pnl_realized_pct or 0.0) + realized_delta,
    }
