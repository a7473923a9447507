# =============================================
# File: app/db/repo.py
# Purpose: DB repository: engine from DB_URL (default SQLite), table creation, query-log writes and replay reads.
# =============================================

import os
import threading
from datetime import datetime
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from app.db.models import QueryEvent, as_utc

_engine: Optional[Engine] = None
_engine_lock = threading.Lock()


def get_engine() -> Engine:
    """Engine for DB_URL, created on first use so env overrides take effect."""
    global _engine
    with _engine_lock:
        if _engine is None:
            url = os.getenv("DB_URL", "sqlite:///./app.db")
            kwargs = {"connect_args": {"check_same_thread": False}} if url.startswith("sqlite") else {}
            _engine = create_engine(url, echo=False, **kwargs)
        return _engine


def reset_engine() -> None:
    """For tests: drop the cached engine so the next call re-reads DB_URL."""
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None


def init_db() -> None:
    SQLModel.metadata.create_all(get_engine())


def log_query_event(
    query: str,
    user_id: Optional[str] = None,
    result_count: int = 0,
    latency_ms: int = 0,
    degraded: bool = False,
) -> None:
    with Session(get_engine()) as s:
        s.add(
            QueryEvent(
                user_id=user_id,
                query=query,
                result_count=result_count,
                latency_ms=latency_ms,
                degraded=degraded,
            )
        )
        s.commit()


def load_recent_events(since: datetime, limit: int = 10000) -> List[QueryEvent]:
    """Events at or after `since` (naive values are taken as UTC), oldest first."""
    since = as_utc(since)
    with Session(get_engine()) as s:
        stmt = select(QueryEvent).where(QueryEvent.ts >= since).order_by(QueryEvent.ts).limit(limit)
        return list(s.exec(stmt).all())
