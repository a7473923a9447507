# =============================================
# File: app/services/suggestions.py
# Purpose: Autocomplete: trie completions, frequent queries, user history, similar terms
# =============================================
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from app.services.embeddings import EmbeddingProvider
from app.services.item_store import ItemStore
from app.services.models import SearchFilters, SuggestionEntry, SuggestionType
from app.services.normalizer import normalize
from app.services.settings import retrieval_settings, suggest_settings
from app.services.trends import TrendTracker
from app.services.trie import PrefixTrie

# vocabulary size for the similar-terms source
_VOCAB_SIZE = 200
_SEMANTIC_MAX = 3
# similar-term lookups allowed in flight (running or queued) at once
_SEMANTIC_SLOTS = 2


def prefix_closeness(word: str, prefix: str) -> float:
    """1.0 when the word equals the prefix, shrinking as the word gets longer."""
    if not word:
        return 0.0
    return max(0.0, 1.0 - (len(word) - len(prefix)) / len(word))


def compose(prefix: str, groups: Iterable[List[SuggestionEntry]], max_results: int) -> List[SuggestionEntry]:
    """
    Merge sources into one list:
    - one entry per text (the highest-scoring one wins; first seen on ties)
    - entries that start with the prefix first, then score desc, then text
    """
    best: Dict[str, SuggestionEntry] = {}
    for group in groups:
        for e in group:
            prev = best.get(e.text)
            if prev is None or e.score > prev.score:
                best[e.text] = e
    ordered = sorted(best.values(), key=lambda e: (not e.text.startswith(prefix), -e.score, e.text))
    return ordered[:max_results]


class SuggestionComposer:
    def __init__(
        self,
        trie: PrefixTrie,
        trends: TrendTracker,
        embeddings: Optional[EmbeddingProvider] = None,
        item_store: Optional[ItemStore] = None,
        max_workers: int = 4,
    ) -> None:
        self.trie = trie
        self.trends = trends
        self.embeddings = embeddings
        self.item_store = item_store
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="suggest")
        # the embedding-backed source runs apart so a slow model never starves the others
        self._semantic_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="suggest-semantic")
        self._semantic_slots = threading.BoundedSemaphore(_SEMANTIC_SLOTS)

    # sources -------------------------------------------------------------
    def from_trie(self, prefix: str, n: int) -> List[SuggestionEntry]:
        return [
            SuggestionEntry(text=w, type=SuggestionType.COMPLETION, score=prefix_closeness(w, prefix), frequency=f)
            for w, f in self.trie.completions(prefix, n)
        ]

    def from_trends(self, prefix: str, n: int) -> List[SuggestionEntry]:
        rows = self.trends.get_frequent(prefix, n)
        if not rows:
            return []
        top = max(f for _, f in rows) or 1
        return [
            SuggestionEntry(text=q, type=SuggestionType.TRENDING, score=f / top, frequency=f)
            for q, f in rows
        ]

    def from_history(self, prefix: str, user_id: Optional[str], n: int) -> List[SuggestionEntry]:
        if not user_id:
            return []
        rows = self.trends.user_history(user_id, prefix, n)
        # most recent first -> highest score
        return [
            SuggestionEntry(text=q, type=SuggestionType.PERSONALIZED, score=1.0 - i / len(rows), frequency=c)
            for i, (q, c) in enumerate(rows)
        ]

    def from_similar_terms(self, prefix: str, n: int) -> List[SuggestionEntry]:
        if self.embeddings is None:
            return []
        vocab = self.vocabulary()
        if not vocab:
            return []
        return [
            SuggestionEntry(text=t, type=SuggestionType.SEMANTIC, score=sim)
            for t, sim in self.embeddings.similar_terms(prefix, vocab, min(n, _SEMANTIC_MAX), cached_only=True)
        ]

    def vocabulary(self) -> List[str]:
        """Most frequent recorded queries; the candidate pool for similar terms."""
        return self.trends.top_queries(_VOCAB_SIZE)

    def _submit_semantic(self, prefix: str, n: int) -> Optional[Future]:
        if self.embeddings is None:
            return None
        if not self._semantic_slots.acquire(blocking=False):
            logger.debug("[suggest] similar-terms source busy, skipped")
            return None
        try:
            fut = self._semantic_pool.submit(lambda: self.from_similar_terms(prefix, n))
        except RuntimeError:
            self._semantic_slots.release()
            raise
        fut.add_done_callback(lambda _: self._semantic_slots.release())
        return fut

    # public --------------------------------------------------------------
    def suggest(self, partial_query: str, user_id: Optional[str] = None, max_results: Optional[int] = None) -> List[SuggestionEntry]:
        """
        Ranked, de-duplicated suggestions. Prefixes shorter than the minimum
        length give an empty list. A failing or slow source is skipped.
        """
        cfg = suggest_settings()
        prefix = normalize(partial_query)
        n = cfg.max_results if max_results is None else max_results
        if len(prefix) < cfg.min_length or n <= 0:
            return []

        sources: Dict[str, Callable[[], List[SuggestionEntry]]] = {
            "trie": lambda: self.from_trie(prefix, n * 2),
            "trends": lambda: self.from_trends(prefix, n),
            "history": lambda: self.from_history(prefix, user_id, n),
        }
        futures: Dict[str, Future] = {name: self._pool.submit(fn) for name, fn in sources.items()}
        semantic = self._submit_semantic(prefix, n)
        if semantic is not None:
            futures["semantic"] = semantic
        timeout = retrieval_settings().timeout_s
        _, pending = wait(list(futures.values()), timeout=timeout)

        groups: List[List[SuggestionEntry]] = []
        for name, fut in futures.items():
            if fut in pending:
                fut.cancel()
                logger.warning(f"[suggest] {name} source timed out after {timeout}s")
                continue
            try:
                groups.append(fut.result())
            except Exception as e:
                logger.warning(f"[suggest] {name} source failed: {e!r}")
        return compose(prefix, groups, n)

    def get_query_completions(self, prefix: str, max_results: int = 10) -> List[str]:
        """Recorded queries first (most frequent), then trie words; no duplicates."""
        p = normalize(prefix)
        if not p or max_results <= 0:
            return []
        seen: Dict[str, None] = {}
        for q, _ in self.trends.get_frequent(p, max_results):
            seen.setdefault(q, None)
        for w, _ in self.trie.completions(p, max_results):
            seen.setdefault(w, None)
        return list(seen)[:max_results]

    def category_suggestions(self, partial_query: str, category: str, max_results: int = 10) -> List[SuggestionEntry]:
        """Names and service tags of eligible items in `category` that contain the partial query."""
        p = normalize(partial_query)
        if len(p) < suggest_settings().min_length or self.item_store is None or max_results <= 0:
            return []
        found: Dict[str, SuggestionEntry] = {}
        for item in self.item_store.find_eligible_by_filters(SearchFilters(category=category)):
            for raw in [item.name, *item.services]:
                text = normalize(raw)
                if p not in text or text in found:
                    continue
                score = prefix_closeness(text, p) if text.startswith(p) else 0.5 * len(p) / len(text)
                found[text] = SuggestionEntry(text=text, type=SuggestionType.CATEGORY, score=score, category=item.category)
        ordered = sorted(found.values(), key=lambda e: (-e.score, e.text))
        return ordered[:max_results]

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
        self._semantic_pool.shutdown(wait=False, cancel_futures=True)
