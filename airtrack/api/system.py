"""System API: health check, scheduler status, tick logs, manual tick, database reset."""

import math

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from airtrack.api.deps import get_current_user, get_quotes, get_store, get_trade_broadcaster
from airtrack.database import get_session
from airtrack.models.tick_log import TickLog
from airtrack.services import trade_admin

router = APIRouter(prefix="/api/system", tags=["system"])
database_router = APIRouter(prefix="/api/database", tags=["system"], dependencies=[Depends(get_current_user)])


@router.get("/health")
def health_check():
    from airtrack.services.broadcaster import get_broadcaster

    return {"status": "ok", "subscribers": get_broadcaster().subscriber_count}


@router.get("/scheduler", dependencies=[Depends(get_current_user)])
def scheduler_status():
    """Current scheduler state with job details."""
    from airtrack.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.post("/tick", dependencies=[Depends(get_current_user)])
async def trigger_tick(
    store=Depends(get_store),
    quotes=Depends(get_quotes),
    broadcaster=Depends(get_trade_broadcaster),
):
    """Run one lifecycle tick right now, outside the schedule.

    Shares the scheduler's tick lock: 409 if a tick is already running.
    """
    from airtrack.engine.tick import TickInProgress, run_locked_tick

    try:
        result = await run_locked_tick(store, quotes, broadcaster)
    except TickInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "status": "ok",
        "duration_ms": round(result.duration_ms, 1),
        "opened": result.opened,
        "closed": result.closed,
        "updated": result.updated,
        "skipped": result.skipped,
        "failed": result.failed,
        "broadcast_count": result.broadcast_count,
    }


@router.get("/logs", dependencies=[Depends(get_current_user)])
def tick_logs(
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(TickLog).order_by(TickLog.timestamp.desc())
    if status is not None:
        stmt = stmt.where(TickLog.status == status)
    stmt = stmt.offset(offset).limit(limit)
    rows = session.exec(stmt).all()
    # Replace inf/nan with None so JSON serialization doesn't blow up.
    for row in rows:
        if isinstance(row.duration_ms, float) and (math.isinf(row.duration_ms) or math.isnan(row.duration_ms)):
            row.duration_ms = None
    return rows


@database_router.post("/reset")
async def reset_database(store=Depends(get_store), broadcaster=Depends(get_trade_broadcaster)):
    """Delete every trade."""
    removed = trade_admin.reset_trades(store)
    await broadcaster.broadcast_active_trades(store)
    return {"success": True, "deleted": removed}
