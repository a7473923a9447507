# =============================================
# File: app/services/result_cache.py
# Purpose: Cache-aside storage for ranked pages and suggestion lists
# =============================================
from __future__ import annotations

import hashlib
import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from app.services.errors import CacheUnavailableError
from app.services.kvstore import KeyValueStore, build_kv_store
from app.services.models import QueryContext, RankedPage, SuggestionEntry
from app.services.normalizer import normalize
from app.services.settings import search_cache_ttl, suggest_settings


def _canonical(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _digest(payload: Dict[str, Any]) -> str:
    return hashlib.sha256(_canonical(payload).encode("utf-8")).hexdigest()


def _canonical_filters(ctx: QueryContext) -> Dict[str, Any]:
    raw = ctx.filters.model_dump(mode="json", exclude_none=True)
    out: Dict[str, Any] = {}
    for k, v in raw.items():
        out[k] = normalize(v) if isinstance(v, str) else v
    return out


def user_segment(user_id: Optional[str]) -> str:
    # personalized pages differ per user; anonymous requests share one segment
    return f"user:{user_id}" if user_id else "anon"


class _CacheAside:
    """Store access that never raises: unreachable store or unreadable entry == miss."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def _get(self, key: str) -> Optional[Any]:
        try:
            return self.store.get(key)
        except CacheUnavailableError as e:
            logger.warning(f"[cache] store unavailable on get, bypassing: {e}")
            return None
        except ValueError as e:
            logger.warning(f"[cache] unreadable entry {key[:24]}..., treating as miss: {e}")
            self._evict(key)
            return None

    def _put(self, key: str, value: Any, ttl: float) -> bool:
        try:
            self.store.put(key, value, ttl)
            return True
        except CacheUnavailableError as e:
            logger.warning(f"[cache] store unavailable on put, bypassing: {e}")
            return False

    def _evict(self, key: str) -> None:
        try:
            self.store.evict(key)
        except CacheUnavailableError as e:
            logger.warning(f"[cache] store unavailable on evict: {e}")


class ResultCache(_CacheAside):
    """
    Ranked pages keyed by a canonical hash of
    (normalized query, filters, pagination, sort, user segment, catalog version).

    Invalidation on item change:
    - pages that list the item are evicted exactly (reverse index item -> keys)
    - the catalog version is bumped, so pages where the item might now appear
      stop being addressable and age out via TTL

    The reverse index only tracks live pages of the current version: entries
    are swept once they expire and dropped wholesale on a version bump.
    """

    PREFIX = "search:page:"

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(store if store is not None else build_kv_store())
        self.ttl = ttl
        self._now = clock
        self._version = 0
        # item id -> {page key -> expires at}
        self._by_item: Dict[str, Dict[str, float]] = {}
        self._next_sweep = float("inf")
        self._lock = threading.Lock()

    @property
    def version(self) -> int:
        return self._version

    def key(self, ctx: QueryContext) -> str:
        payload = {
            "q": ctx.normalized_query,
            "filters": _canonical_filters(ctx),
            "page": {"offset": ctx.pagination.offset, "size": ctx.pagination.size},
            "sort": ctx.sort.value,
            "dir": ctx.effective_direction().value,
            "segment": user_segment(ctx.user_id),
            "v": self._version,
        }
        return self.PREFIX + _digest(payload)

    def get(self, key: str) -> Optional[RankedPage]:
        raw = self._get(key)
        if raw is None:
            return None
        try:
            return RankedPage.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"[cache] corrupt page entry, treating as miss: {e.error_count()} errors")
            self._evict(key)
            return None

    def put(self, key: str, page: RankedPage, ttl: Optional[float] = None) -> None:
        payload = page.model_dump(mode="json")
        payload["cache_hit"] = False
        eff_ttl = ttl if ttl is not None else (self.ttl if self.ttl is not None else search_cache_ttl())
        if not self._put(key, payload, eff_ttl):
            return
        now = self._now()
        expires = now + eff_ttl
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            for hit in page.hits:
                self._by_item.setdefault(hit.item.id, {})[key] = expires
            self._next_sweep = min(self._next_sweep, expires)

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        nxt = float("inf")
        for item_id in list(self._by_item):
            live = {k: exp for k, exp in self._by_item[item_id].items() if exp > now}
            if live:
                self._by_item[item_id] = live
                nxt = min(nxt, min(live.values()))
            else:
                del self._by_item[item_id]
        self._next_sweep = nxt

    def invalidate_item(self, item_id: str) -> int:
        with self._lock:
            keys = list(self._by_item.pop(item_id, {}))
            self._version += 1
            # every remaining key belongs to the old version and can no longer be hit
            self._by_item.clear()
            self._next_sweep = float("inf")
        for k in keys:
            self._evict(k)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._by_item.clear()
            self._next_sweep = float("inf")
            self._version += 1
        try:
            self.store.evict_pattern(self.PREFIX + "*")
        except CacheUnavailableError as e:
            logger.warning(f"[cache] store unavailable on clear: {e}")


class SuggestionCache(_CacheAside):
    """Short-lived autocomplete lists keyed by (normalized prefix, user, limit)."""

    PREFIX = "search:suggest:"

    def __init__(self, store: Optional[KeyValueStore] = None, ttl: Optional[float] = None) -> None:
        super().__init__(store if store is not None else build_kv_store())
        self.ttl = ttl

    def key(self, normalized_prefix: str, user_id: Optional[str], max_results: int) -> str:
        return self.PREFIX + _digest({"p": normalized_prefix, "u": user_id or "", "n": int(max_results)})

    def get(self, key: str) -> Optional[List[SuggestionEntry]]:
        raw = self._get(key)
        if raw is None:
            return None
        try:
            return [SuggestionEntry.model_validate(r) for r in raw]
        except (ValidationError, TypeError) as e:
            logger.warning(f"[cache] corrupt suggestion entry, treating as miss: {e}")
            self._evict(key)
            return None

    def put(self, key: str, entries: List[SuggestionEntry], ttl: Optional[float] = None) -> None:
        eff_ttl = ttl if ttl is not None else (self.ttl if self.ttl is not None else suggest_settings().cache_ttl_s)
        self._put(key, [e.model_dump(mode="json") for e in entries], eff_ttl)
