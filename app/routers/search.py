# =============================================
# File: app/routers/search.py
# Purpose: HTTP surface for hybrid search, autocomplete, trending and item change hooks
# =============================================
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from app.services.errors import InvalidQueryError
from app.services.item_store import InMemoryItemStore
from app.services.models import QueryContext, RankedPage, SearchableItem, SuggestionEntry, TrendingQuery
from app.services.search import SearchService, get_search_service
from app.utils import slog
from app.utils.metrics import record_rate_limit_hit
from app.utils.ratelimit import check_rate_limit

router = APIRouter(tags=["search"])


def _rate_limit(request: Request, user_id: Optional[str], qtext: str = "") -> None:
    """Per-user (or client IP) limit; HTTP 429 on overflow."""
    key = user_id or (request.client.host if request.client else "anon")
    try:
        check_rate_limit(key)
    except RuntimeError:
        record_rate_limit_hit()
        request.state.log_context = {
            "user_id": user_id,
            "qhash": slog.qhash(qtext),
            "rate_limited": True,
        }
        raise HTTPException(status_code=429, detail="Too Many Requests")


@router.post("/search", response_model=RankedPage)
async def post_search(ctx: QueryContext, request: Request, svc: SearchService = Depends(get_search_service)) -> RankedPage:
    """
    Hybrid search:
      keyword || semantic -> merge (+geo, popularity) -> personalize -> sort -> page
    Upstream failures degrade the page (status="degraded") instead of erroring.
    """
    _rate_limit(request, ctx.user_id, ctx.query)
    page = await run_in_threadpool(svc.search, ctx)
    request.state.log_context = {
        "user_id": ctx.user_id,
        "qhash": slog.qhash(ctx.query),
        "cache_hit": page.cache_hit,
        "degraded": page.degraded,
        "total": page.total,
    }
    return page


@router.get("/search/autocomplete", response_model=List[SuggestionEntry])
async def get_autocomplete(
    request: Request,
    q: str = Query("", max_length=200),
    user_id: Optional[str] = Query(None, max_length=128),
    limit: int = Query(10, ge=1, le=50),
    svc: SearchService = Depends(get_search_service),
) -> List[SuggestionEntry]:
    _rate_limit(request, user_id, q)
    entries = await run_in_threadpool(svc.autocomplete, q, user_id, limit)
    request.state.log_context = {"user_id": user_id, "qhash": slog.qhash(q), "count": len(entries)}
    return entries


@router.get("/search/completions", response_model=List[str])
def get_completions(
    q: str = Query("", max_length=200),
    limit: int = Query(10, ge=1, le=50),
    svc: SearchService = Depends(get_search_service),
) -> List[str]:
    return svc.get_query_completions(q, limit)


@router.get("/search/categories/{category}/suggestions", response_model=List[SuggestionEntry])
def get_category_suggestions(
    category: str,
    q: str = Query("", max_length=200),
    limit: int = Query(10, ge=1, le=50),
    svc: SearchService = Depends(get_search_service),
) -> List[SuggestionEntry]:
    return svc.category_suggestions(q, category, limit)


@router.get("/search/trending", response_model=List[TrendingQuery])
def get_trending(
    window_seconds: float = Query(24 * 3600, gt=0),
    limit: int = Query(10, ge=1, le=100),
    svc: SearchService = Depends(get_search_service),
) -> List[TrendingQuery]:
    return svc.get_trending(window_seconds, limit)


@router.put("/items/{item_id}", response_model=SearchableItem)
async def put_item(item_id: str, item: SearchableItem, svc: SearchService = Depends(get_search_service)) -> SearchableItem:
    """Catalog change notification: reindex, re-embed if needed, invalidate cached pages."""
    if item.id != item_id:
        raise InvalidQueryError(f"item id {item.id!r} does not match path id {item_id!r}")
    if isinstance(svc.items, InMemoryItemStore):
        svc.items.upsert(item)
    return await run_in_threadpool(svc.on_item_changed, item)


@router.delete("/items/{item_id}")
def delete_item(item_id: str, svc: SearchService = Depends(get_search_service)):
    if isinstance(svc.items, InMemoryItemStore):
        svc.items.remove(item_id)
    svc.on_item_removed(item_id)
    return {"removed": item_id}
