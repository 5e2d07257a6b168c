"""Position store: the persistence contract consumed by the lifecycle worker.

Each call opens its own short-lived session so that a record's transition is
an independent unit of work. Writers that must not clobber a concurrent
status change pass ``expected_status`` to ``update``; the write then only
lands if the record still has that status.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import delete, func, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from airtrack.models.trade import Trade, TradeStatus

logger = logging.getLogger(__name__)


def _status_values(statuses: Iterable[TradeStatus | str] | None) -> list[str] | None:
    if statuses is None:
        return None
    return [TradeStatus(s).value for s in statuses]


class PositionStore:
    """Trade persistence backed by a SQLModel engine."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def find_many(self, statuses: Iterable[TradeStatus | str] | None = None) -> list[Trade]:
        """Return trades whose status is in ``statuses`` (all trades when None), newest first."""
        stmt = select(Trade).order_by(Trade.created_at.desc(), Trade.id.desc())
        values = _status_values(statuses)
        if values is not None:
            stmt = stmt.where(Trade.status.in_(values))  # type: ignore[attr-defined]
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    def find_all(self) -> list[Trade]:
        with Session(self.engine) as session:
            return list(session.exec(select(Trade).order_by(Trade.created_at, Trade.id)).all())

    def paginate(
        self,
        statuses: Iterable[TradeStatus | str] | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> list[Trade]:
        """Paginated listing for the API, newest first."""
        take = max(1, limit)
        skip = (max(1, page) - 1) * take
        stmt = select(Trade).order_by(Trade.created_at.desc(), Trade.id.desc())
        values = _status_values(statuses)
        if values:
            stmt = stmt.where(Trade.status.in_(values))  # type: ignore[attr-defined]
        with Session(self.engine) as session:
            return list(session.exec(stmt.offset(skip).limit(take)).all())

    def get(self, trade_id: int) -> Trade | None:
        with Session(self.engine) as session:
            return session.get(Trade, trade_id)

    def create(self, trade: Trade) -> Trade:
        with Session(self.engine) as session:
            session.add(trade)
            session.commit()
            session.refresh(trade)
            return trade

    def update(
        self,
        trade_id: int,
        fields: dict[str, Any],
        expected_status: TradeStatus | str | None = None,
    ) -> Trade | None:
        """Apply ``fields`` to one trade.

        With ``expected_status`` the write only lands if the trade still has
        that status (a single conditional UPDATE). Returns the updated trade,
        or None if it is gone or its status changed underneath the caller.
        """
        values = dict(fields)
        values["updated_at"] = datetime.now(timezone.utc)
        stmt = update(Trade).where(Trade.id == trade_id)
        if expected_status is not None:
            stmt = stmt.where(Trade.status == TradeStatus(expected_status).value)
        with Session(self.engine) as session:
            result = session.exec(stmt.values(**values))  # type: ignore[call-overload]
            session.commit()
            if not result.rowcount:
                return None
            return session.get(Trade, trade_id)

    def update_many(self, statuses: Iterable[TradeStatus | str], fields: dict[str, Any]) -> int:
        values = dict(fields)
        values.setdefault("updated_at", datetime.now(timezone.utc))
        stmt = (
            update(Trade)
            .where(Trade.status.in_(_status_values(statuses)))  # type: ignore[attr-defined]
            .values(**values)
        )
        with Session(self.engine) as session:
            result = session.exec(stmt)  # type: ignore[call-overload]
            session.commit()
            return result.rowcount or 0

    def delete_many(self, statuses: Iterable[TradeStatus | str] | None = None) -> int:
        """Delete trades by status; ``None`` deletes every trade."""
        stmt = delete(Trade)
        values = _status_values(statuses)
        if values is not None:
            stmt = stmt.where(Trade.status.in_(values))  # type: ignore[attr-defined]
        with Session(self.engine) as session:
            result = session.exec(stmt)  # type: ignore[call-overload]
            session.commit()
            return result.rowcount or 0

    def close_all(self, now: datetime) -> tuple[int, int]:
        """Close every OPEN trade and delete every PENDING one in one transaction.

        Returns (closed, removed). Nothing is committed if either statement fails.
        """
        close_stmt = (
            update(Trade)
            .where(Trade.status == TradeStatus.OPEN.value)
            .values(
                status=TradeStatus.CLOSED.value,
                closed_at=now,
                pnl_unrealized_pct=0.0,
                updated_at=now,
            )
        )
        with Session(self.engine) as session:
            closed = session.exec(close_stmt)  # type: ignore[call-overload]
            removed = session.exec(  # type: ignore[call-overload]
                delete(Trade).where(Trade.status == TradeStatus.PENDING.value)
            )
            session.commit()
            return closed.rowcount or 0, removed.rowcount or 0

    def delete(self, trade_id: int) -> bool:
        with Session(self.engine) as session:
            trade = session.get(Trade, trade_id)
            if trade is None:
                return False
            session.delete(trade)
            session.commit()
            return True

    def count(self, status: TradeStatus | str, since: datetime | None = None) -> int:
        stmt = select(func.count()).select_from(Trade).where(Trade.status == TradeStatus(status).value)
        if since is not None:
            stmt = stmt.where(Trade.created_at >= since)
        with Session(self.engine) as session:
            return int(session.exec(stmt).one())

    def realized_sum(self, since: datetime | None = None) -> float:
        stmt = select(func.coalesce(func.sum(Trade.pnl_realized_pct), 0.0))
        if since is not None:
            stmt = stmt.where(Trade.created_at >= since)
        with Session(self.engine) as session:
            return float(session.exec(stmt).one())


_store: PositionStore | None = None


def get_position_store() -> PositionStore:
    """Process-wide store bound to the application engine."""
    global _store
    if _store is None:
        from airtrack.database import engine

        _store = PositionStore(engine)
    return _store
