# =============================================
# File: app/utils/ratelimit.py
# Purpose: In-memory per-key sliding-window rate limiter for the search endpoints
# =============================================
from __future__ import annotations
import os
import threading
import time
from collections import deque
from typing import Deque, Dict, Tuple

# key (user id or client IP) -> request timestamps inside the window
_store: Dict[str, Deque[float]] = {}
_lock = threading.Lock()

def _get_limits() -> Tuple[int, int]:
    """Read limits at call time so tests/env overrides take effect."""
    max_reqs = int(os.getenv("RL_MAX_REQS", "120"))
    window_s = int(os.getenv("RL_WINDOW_SECONDS", "60"))
    return max_reqs, window_s

def check_rate_limit(key: str) -> None:
    """Raise RuntimeError when `key` has used up its window."""
    now = time.time()
    max_reqs, window_s = _get_limits()
    cutoff = now - window_s
    with _lock:
        dq = _store.setdefault(key, deque())
        while dq and dq[0] < cutoff:
            dq.popleft()
        if len(dq) >= max_reqs:
            raise RuntimeError("Rate limit exceeded")
        dq.append(now)

def reset_rate_limit() -> None:
    """For tests: clear in-memory counters."""
    with _lock:
        _store.clear()
