# =============================================
# File: app/db/models.py
# Purpose: SQLModel ORM definitions for the query log: one row per completed search, replayed on warm-up.
# =============================================

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    """SQLite hands back naive values for timezone-aware columns; read them as UTC."""
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)


class QueryEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True)
    query: str
    ts: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)
    result_count: int = 0
    latency_ms: int = 0
    degraded: bool = False
