# =============================================
# File: app/utils/slog.py
# Purpose: Structured JSON event logging for requests and search events
# =============================================
from __future__ import annotations
import hashlib
import json
import logging
import os
import uuid
from typing import Any, Dict, Iterable

from app.services.normalizer import normalize

_LOGGER_NAME = "search"
_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_logger = logging.getLogger(_LOGGER_NAME)
if not _logger.handlers:
    _logger.setLevel(getattr(logging, _LEVEL, logging.INFO))
    _handler = logging.StreamHandler()
    # Emit the message as-is; we pre-format JSON strings ourselves
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _logger.addHandler(_handler)
    _logger.propagate = True  # allow pytest caplog to capture

def qhash(text: str) -> str:
    """Short hash of a normalized query (raw queries are never logged)."""
    return hashlib.sha256(normalize(text).encode("utf-8")).hexdigest()[:10]

def new_request_id() -> str:
    return uuid.uuid4().hex

def log_event(event: str, **fields: Any) -> None:
    rec = {"event": event}
    rec.update(fields)
    _logger.info(json.dumps(rec, ensure_ascii=False, default=str))

def log_search_completed(
    query: str,
    user_id: str | None,
    total: int,
    returned: int,
    cache_hit: bool,
    degraded: bool,
    failed_paths: Iterable[str],
    latency_ms: int,
) -> None:
    log_event(
        "search.completed",
        qhash=qhash(query),
        user=bool(user_id),
        total=total,
        returned=returned,
        cache_hit=cache_hit,
        degraded=degraded,
        failed_paths=list(failed_paths),
        latency_ms=latency_ms,
    )

def finalize_request_log(
    request_id: str,
    method: str,
    path: str,
    status: int,
    latency_ms: int,
    client_ip: str | None,
    ctx: Dict[str, Any] | None = None,
) -> None:
    payload: Dict[str, Any] = {
        "event": "request.completed",
        "request_id": request_id,
        "method": method,
        "path": path,
        "status": status,
        "latency_ms": latency_ms,
        "client_ip": client_ip or "",
    }
    if ctx:
        payload.update(ctx)
    _logger.info(json.dumps(payload, ensure_ascii=False, default=str))
