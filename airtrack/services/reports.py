"""Performance reporting over stored trades."""

from datetime import datetime, timedelta, timezone

import pandas as pd

from airtrack.models.trade import TradeStatus
from airtrack.utils.constants import REPORT_WINDOW_DAYS


def window_start(window: str | None, now: datetime | None = None) -> datetime | None:
    """Start of a report window ("7d", "1m", "all"); None means unbounded."""
    key = (window or "all").lower()
    if key not in REPORT_WINDOW_DAYS:
        raise ValueError(f"Unknown report window {window!r}")
    days = REPORT_WINDOW_DAYS[key]
    if days is None:
        return None
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


def build_report(store, window: str | None = "all", now: datetime | None = None) -> dict:
    """Trade counts per status and the realized PnL % sum for trades created in the window."""
    since = window_start(window, now)
    return {
        "window": (window or "all").lower(),
        "totals": {
            "open": store.count(TradeStatus.OPEN, since),
            "pending": store.count(TradeStatus.PENDING, since),
            "closed": store.count(TradeStatus.CLOSED, since),
        },
        "pnl_realized_pct_sum": round(store.realized_sum(since), 6),
    }


def pnl_curve(store, now: datetime | None = None) -> list[dict]:
    """Cumulative realized PnL % over all trades, ordered by creation time."""
    trades = store.find_all()
    if not trades:
        ts = now or datetime.now(timezone.utc)
        return [{"time": ts.isoformat(), "cumulativePnl": 0.0}]

    df = pd.DataFrame(
        {
            "time": [t.created_at for t in trades],
            "pnl": [t.pnl_realized_pct or 0.0 for t in trades],
        }
    )
    df["time"] = pd.to_datetime(df["time"], utc=True)
    df = df.sort_values("time", kind="stable")
    df["cumulative"] = df["pnl"].cumsum()
    return [
        {"time": row.time.isoformat(), "cumulativePnl": float(row.cumulative)}
        for row in df.itertuples(index=False)
    ]
