# =============================================
# File: app/routers/metrics.py
# Purpose: Expose internal metrics as JSON, plus derived search health ratios
# =============================================
from __future__ import annotations
from typing import Any, Dict

from fastapi import APIRouter
from app.utils.metrics import snapshot

router = APIRouter(tags=["metrics"])


def _ratio(num: int, den: int) -> float:
    return round(num / den, 4) if den else 0.0


def search_health(counters: Dict[str, int]) -> Dict[str, float]:
    """Cache effectiveness and degradation rate over all searches served so far."""
    searches = counters.get("search_requests_total", 0)
    return {
        "cache_hit_ratio": _ratio(counters.get("search_cache_hits_total", 0), searches),
        "degraded_ratio": _ratio(counters.get("search_degraded_total", 0), searches),
        "rate_limited_ratio": _ratio(counters.get("rate_limit_hits_total", 0), counters.get("requests_total", 0)),
    }


@router.get("/metrics")
def get_metrics() -> Dict[str, Any]:
    """Return in-process metrics (JSON)."""
    snap = snapshot()
    snap["search_health"] = search_health(snap["counters"])
    return snap
