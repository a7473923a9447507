# =============================================
# File: app/services/search.py
# Purpose: Search facade: hybrid search, autocomplete, query feedback and index maintenance
# =============================================
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from app.db import repo
from app.db.models import as_utc, utcnow
from app.services.embeddings import EmbeddingProvider, build_item_text
from app.services.item_store import ItemStore, build_item_store
from app.services.keyword_index import KeywordIndex
from app.services.kvstore import KeyValueStore, build_kv_store
from app.services.models import (
    QueryContext,
    RankedHit,
    RankedPage,
    SearchableItem,
    SearchFilters,
    SuggestionEntry,
    TrendingQuery,
    UserSearchProfile,
)
from app.services.normalizer import normalize
from app.services.personalization import PersonalizationAdjuster
from app.services.profiles import ProfileService, build_profile_store
from app.services.ranking import facets, merge, sort_candidates
from app.services.result_cache import ResultCache, SuggestionCache
from app.services.retrieval import CandidateRetriever
from app.services.settings import suggest_settings
from app.services.suggestions import SuggestionComposer
from app.services.trends import TrendTracker
from app.services.trie import PrefixTrie
from app.services.vector_index import VectorIndex, build_vector_index
from app.utils import metrics, slog

# how far back warm-up replays the query log
_REPLAY_WINDOW = timedelta(days=7)


class SearchService:
    """
    Read path:  normalize -> [keyword || semantic] -> merge -> personalize -> sort -> page -> cache
    Write path: every completed search is fed back (trends, trie, query log) on a
                background worker, never on the request thread.
    """

    def __init__(
        self,
        item_store: Optional[ItemStore] = None,
        embeddings: Optional[EmbeddingProvider] = None,
        keyword_index: Optional[KeywordIndex] = None,
        vector_index: Optional[VectorIndex] = None,
        profiles: Optional[ProfileService] = None,
        kv_store: Optional[KeyValueStore] = None,
        trie: Optional[PrefixTrie] = None,
        trends: Optional[TrendTracker] = None,
        query_log: bool = True,
    ) -> None:
        kv = kv_store if kv_store is not None else build_kv_store()
        self.items = item_store if item_store is not None else build_item_store()
        self.embeddings = embeddings or EmbeddingProvider(cache=kv)
        self.keyword_index = keyword_index or KeywordIndex()
        self.vector_index = vector_index if vector_index is not None else build_vector_index()
        self.profiles = profiles if profiles is not None else build_profile_store()
        self.result_cache = ResultCache(kv)
        self.suggestion_cache = SuggestionCache(kv)
        self.trie = trie or PrefixTrie()
        self.trends = trends or TrendTracker()
        self.query_log = query_log

        self.retriever = CandidateRetriever(self.items, self.keyword_index, self.vector_index, self.embeddings)
        self.personalizer = PersonalizationAdjuster()
        self.suggestions = SuggestionComposer(self.trie, self.trends, self.embeddings, self.items)

        # id -> (text signature, embedded text) of the last embedding computed per item
        self._embedded: Dict[str, Tuple[str, str]] = {}
        # id -> normalized name last added to the trie
        self._names: Dict[str, str] = {}
        self._embedded_lock = threading.Lock()
        # one worker keeps feedback writes in arrival order
        self._feedback = ThreadPoolExecutor(max_workers=1, thread_name_prefix="feedback")

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------
    def _profile(self, user_id: Optional[str]) -> Optional[UserSearchProfile]:
        if not user_id:
            return None
        try:
            return self.profiles.get_search_profile(user_id)
        except Exception as e:
            logger.warning(f"[search] profile lookup failed, not personalizing: {e!r}")
            return None

    def search(self, ctx: QueryContext) -> RankedPage:
        t0 = time.perf_counter()
        key = self.result_cache.key(ctx)
        cached = self.result_cache.get(key)
        if cached is not None:
            page = cached.model_copy(update={"cache_hit": True})
            self._finish(ctx, page, t0)
            return page

        res = self.retriever.retrieve(ctx)
        ranked = merge(
            res.keyword,
            res.semantic,
            res.geo,
            res.popularity,
            base_ids=res.items if res.browse else (),
            distances=res.distances,
        )
        ranked = self.personalizer.adjust(ranked, res.items, self._profile(ctx.user_id))
        ranked = sort_candidates(ranked, res.items, ctx.sort, ctx.effective_direction())

        start = ctx.pagination.offset
        window = ranked[start : start + ctx.pagination.size]
        hits = [
            RankedHit(
                item=res.items[c.item_id],
                score=c.combined,
                keyword_score=c.keyword,
                semantic_score=c.semantic,
                geo_score=c.geo,
                popularity_score=c.popularity,
                personalization_score=c.personalization,
                distance_km=c.distance_km,
                provenance=list(c.provenance),
            )
            for c in window
        ]
        degraded = res.all_failed
        page = RankedPage(
            query=ctx.query,
            normalized_query=ctx.normalized_query,
            hits=hits,
            total=len(ranked),
            offset=start,
            size=ctx.pagination.size,
            sort=ctx.sort,
            facets=facets(res.items[c.item_id] for c in ranked),
            status="degraded" if degraded else "ok",
            degraded=degraded,
            failed_paths=list(res.failed_paths),
        )
        # pages missing a signal are not pinned in the cache
        if not res.failed_paths:
            self.result_cache.put(key, page)
        self._finish(ctx, page, t0)
        return page

    def _finish(self, ctx: QueryContext, page: RankedPage, t0: float) -> None:
        latency_ms = int((time.perf_counter() - t0) * 1000)
        metrics.record_search(cache_hit=page.cache_hit, degraded=page.degraded)
        slog.log_search_completed(
            query=ctx.query,
            user_id=ctx.user_id,
            total=page.total,
            returned=len(page.hits),
            cache_hit=page.cache_hit,
            degraded=page.degraded,
            failed_paths=page.failed_paths,
            latency_ms=latency_ms,
        )
        if ctx.normalized_query:
            self.record_query(ctx.query, ctx.user_id, result_count=page.total, latency_ms=latency_ms, degraded=page.degraded)

    # ------------------------------------------------------------------
    # feedback (write path)
    # ------------------------------------------------------------------
    def _learn(self, normalized: str, count: int = 1) -> None:
        self.trie.insert(normalized, count)
        for tok in normalized.split():
            if len(tok) >= 2 and tok != normalized:
                self.trie.insert(tok, count)

    def _record(self, query: str, user_id: Optional[str], result_count: int, latency_ms: int, degraded: bool) -> None:
        norm = normalize(query)
        if not norm:
            return
        self.trends.record_query(norm, user_id)
        self._learn(norm)
        # vocabulary vectors are computed here so similar-term lookups only read the cache
        self.embeddings.embed(norm)
        if not self.query_log:
            return
        try:
            repo.log_query_event(norm, user_id=user_id, result_count=result_count, latency_ms=latency_ms, degraded=degraded)
        except SQLAlchemyError as e:
            logger.warning(f"[search] query log write failed: {e}")

    def record_query(
        self,
        query: str,
        user_id: Optional[str] = None,
        result_count: int = 0,
        latency_ms: int = 0,
        degraded: bool = False,
    ) -> Future:
        """Asynchronous feedback hook; the returned future resolves once the write path has run."""
        return self._feedback.submit(self._record, query, user_id, result_count, latency_ms, degraded)

    def get_trending(self, window_s: float, max_results: int = 10) -> List[TrendingQuery]:
        return self.trends.get_trending(window_s, max_results)

    # ------------------------------------------------------------------
    # autocomplete
    # ------------------------------------------------------------------
    def autocomplete(self, partial_query: str, user_id: Optional[str] = None, max_results: Optional[int] = None) -> List[SuggestionEntry]:
        t0 = time.perf_counter()
        cfg = suggest_settings()
        prefix = normalize(partial_query)
        n = cfg.max_results if max_results is None else max_results
        if len(prefix) < cfg.min_length or n <= 0:
            return []

        key = self.suggestion_cache.key(prefix, user_id, n)
        entries = self.suggestion_cache.get(key)
        cache_hit = entries is not None
        if entries is None:
            entries = self.suggestions.suggest(prefix, user_id, n)
            self.suggestion_cache.put(key, entries)

        metrics.record_autocomplete()
        slog.log_event(
            "autocomplete.completed",
            qhash=slog.qhash(prefix),
            count=len(entries),
            cache_hit=cache_hit,
            latency_ms=int((time.perf_counter() - t0) * 1000),
        )
        return entries

    def get_query_completions(self, prefix: str, max_results: int = 10) -> List[str]:
        return self.suggestions.get_query_completions(prefix, max_results)

    def category_suggestions(self, partial_query: str, category: str, max_results: int = 10) -> List[SuggestionEntry]:
        return self.suggestions.category_suggestions(partial_query, category, max_results)

    # ------------------------------------------------------------------
    # index maintenance
    # ------------------------------------------------------------------
    def on_item_changed(self, item: SearchableItem) -> SearchableItem:
        """
        Keep indexes and caches in step with the catalog:
        keyword index update, re-embed when the text changed (or the supplied
        vector is missing or malformed), vector index upsert, cached-page invalidation.
        """
        sig = item.text_signature()
        text = build_item_text(item)
        with self._embedded_lock:
            prev = self._embedded.get(item.id)
        reembed = not self.embeddings.is_valid(item.embedding) or (prev is not None and prev[0] != sig)

        self.keyword_index.update_item(item)
        if reembed:
            if prev is not None and prev[1] != text:
                self.embeddings.evict_text(prev[1])
            vec = self.embeddings.embed_item(item)
            item = item.model_copy(update={"embedding": vec})
        with self._embedded_lock:
            self._embedded[item.id] = (sig, text)

        self.vector_index.upsert(item.id, item.embedding, {"category": item.category, "eligible": item.eligible})
        evicted = self.result_cache.invalidate_item(item.id)
        self._index_name(item)
        slog.log_event("item.changed", item_id=item.id, reembedded=reembed, evicted_pages=evicted)
        return item

    def _index_name(self, item: SearchableItem) -> None:
        # counted once per distinct name; maintenance updates must not inflate it
        name = normalize(item.name)
        with self._embedded_lock:
            if not (name and item.eligible):
                self._names.pop(item.id, None)
                return
            if self._names.get(item.id) == name:
                return
            self._names[item.id] = name
        self.trie.insert(name)

    def on_item_removed(self, item_id: str) -> None:
        self.keyword_index.delete_item(item_id)
        self.vector_index.delete(item_id)
        with self._embedded_lock:
            prev = self._embedded.pop(item_id, None)
            self._names.pop(item_id, None)
        if prev is not None:
            self.embeddings.evict_text(prev[1])
        evicted = self.result_cache.invalidate_item(item_id)
        slog.log_event("item.removed", item_id=item_id, evicted_pages=evicted)

    def reindex(self) -> int:
        """Index every eligible item in the store. Returns the number indexed."""
        items = self.items.find_eligible_by_filters(SearchFilters())
        for it in items:
            self.on_item_changed(it)
        logger.info(f"[search] indexed {len(items)} items")
        return len(items)

    def warm_up(self, window: timedelta = _REPLAY_WINDOW) -> Dict[str, int]:
        """
        Cold-start the suggestion system: replay recent query-log events into
        the trend tracker and trie, precompute vectors for the suggestion
        vocabulary, then add item names (once each) and services to the trie.
        """
        self.embeddings.warm()
        replayed = 0
        try:
            events = repo.load_recent_events(utcnow() - window)
        except SQLAlchemyError as e:
            logger.warning(f"[search] query log unavailable, skipping replay: {e}")
            events = []
        for ev in events:
            norm = normalize(ev.query)
            if not norm:
                continue
            self.trends.record_query(norm, ev.user_id, now=as_utc(ev.ts).timestamp())
            self._learn(norm)
            replayed += 1

        for q in self.suggestions.vocabulary():
            self.embeddings.embed(q)

        terms = 0
        for it in self.items.find_eligible_by_filters(SearchFilters()):
            # no-op for names reindex already added
            self._index_name(it)
            for raw in it.services:
                norm = normalize(raw)
                if norm:
                    self.trie.insert(norm)
                    terms += 1
        logger.info(f"[search] warm-up replayed {replayed} queries, {terms} service terms")
        return {"replayed": replayed, "terms": terms}

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until queued feedback writes have run."""
        self._feedback.submit(lambda: None).result(timeout=timeout)

    def shutdown(self) -> None:
        self._feedback.shutdown(wait=True)
        self.retriever.shutdown()
        self.suggestions.shutdown()
        self.embeddings.shutdown()


_service: Optional[SearchService] = None
_service_lock = threading.Lock()


def get_search_service() -> SearchService:
    """Process-wide service, built and indexed on first use."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                svc = SearchService()
                svc.reindex()
                _service = svc
    return _service


def set_search_service(svc: Optional[SearchService]) -> None:
    """Swap the process-wide instance (tests, CLI)."""
    global _service
    with _service_lock:
        _service = svc
