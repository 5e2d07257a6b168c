"""Dashboard API: cumulative PnL curve and summary reports."""

from fastapi import APIRouter, Depends, HTTPException

from airtrack.api.deps import get_store
from airtrack.services.reports import build_report, pnl_curve

router = APIRouter(prefix="/api", tags=["dashboard"])


@router.get("/pnl")
def cumulative_pnl(store=Depends(get_store)):
    return pnl_curve(store)


@router.get("/reports")
def reports(window: str = "all", store=Depends(get_store)):
    """Counts per status and realized PnL % sum; ``window`` is 7d, 1m or all."""
    try:
        return build_report(store, window)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
