"""TickLog model: per-tick execution log for the lifecycle worker."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class TickLog(SQLModel, table=True):
    __tablename__ = "tick_log"

    id: int | None = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    status: str  # "success", "error", "skipped"
    opened: int = 0
    closed: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: float | None = None
    message: str | None = None
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
