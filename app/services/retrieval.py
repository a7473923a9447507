# =============================================
# File: app/services/retrieval.py
# Purpose: Candidate retrieval: keyword + semantic paths (fork/join), geo and popularity signals
# =============================================
from __future__ import annotations

import math
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from loguru import logger

from app.services.embeddings import EmbeddingProvider
from app.services.errors import EmbeddingServiceError
from app.services.geo import haversine_km, proximity_score
from app.services.item_store import ItemStore
from app.services.keyword_index import KeywordIndex
from app.services.models import QueryContext, SearchableItem
from app.services.normalizer import tokenize
from app.services.settings import RetrievalSettings, retrieval_settings
from app.services.vector_index import VectorIndex
from app.utils import metrics

Hit = Tuple[str, float]

KEYWORD = "keyword"
SEMANTIC = "semantic"


@dataclass
class RetrievalResult:
    """
    Raw signals for one request, before fusion.
    - attempted_paths: text paths that ran for this query (none for a browse)
    - failed_paths: subset that raised or timed out
    - items: every candidate by id (also the browse set when the query is empty)
    """
    keyword: List[Hit] = field(default_factory=list)
    semantic: List[Hit] = field(default_factory=list)
    geo: Dict[str, float] = field(default_factory=dict)
    distances: Dict[str, float] = field(default_factory=dict)
    popularity: Dict[str, float] = field(default_factory=dict)
    items: Dict[str, SearchableItem] = field(default_factory=dict)
    attempted_paths: List[str] = field(default_factory=list)
    failed_paths: List[str] = field(default_factory=list)
    browse: bool = False

    @property
    def all_failed(self) -> bool:
        return bool(self.attempted_paths) and len(self.failed_paths) == len(self.attempted_paths)


def popularity_scores(items: List[SearchableItem]) -> Dict[str, float]:
    """
    0.7 * recent + 0.3 * total interactions, each log-damped and normalized
    by the maximum over the candidate set. In [0, 1].
    """
    if not items:
        return {}
    recent = {it.id: math.log1p(it.recent_interactions) for it in items}
    total = {it.id: math.log1p(it.total_interactions) for it in items}
    r_max = max(recent.values()) or 1.0
    t_max = max(total.values()) or 1.0
    return {i: 0.7 * (recent[i] / r_max) + 0.3 * (total[i] / t_max) for i in recent}


class CandidateRetriever:
    def __init__(
        self,
        item_store: ItemStore,
        keyword_index: KeywordIndex,
        vector_index: VectorIndex,
        embeddings: EmbeddingProvider,
        settings: Optional[RetrievalSettings] = None,
        max_workers: int = 8,
    ) -> None:
        self.item_store = item_store
        self.keyword_index = keyword_index
        self.vector_index = vector_index
        self.embeddings = embeddings
        self._settings = settings
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="retrieval")

    @property
    def settings(self) -> RetrievalSettings:
        return self._settings or retrieval_settings()

    def candidate_cap(self, ctx: QueryContext) -> int:
        # deep pages need enough candidates to fill them
        window = ctx.pagination.offset + max(1, ctx.pagination.size)
        return window * self.settings.overfetch

    # paths ---------------------------------------------------------------
    def keyword_path(self, ctx: QueryContext, cap: int) -> List[Hit]:
        return self.keyword_index.query(tokenize(ctx.normalized_query), ctx.filters, cap)

    def semantic_path(self, ctx: QueryContext, candidate_ids: List[str], cap: int) -> List[Hit]:
        vec, fallback = self.embeddings.embed_with_status(ctx.normalized_query)
        if fallback:
            # similarities against a fallback vector carry no meaning
            raise EmbeddingServiceError("query embedding unavailable")
        return self.vector_index.search(vec, candidate_ids, self.settings.semantic_min_similarity, cap)

    # fork/join -----------------------------------------------------------
    def retrieve(self, ctx: QueryContext) -> RetrievalResult:
        cfg = self.settings
        cap = self.candidate_cap(ctx)
        eligible = {it.id: it for it in self.item_store.find_eligible_by_filters(ctx.filters)}
        out = RetrievalResult()

        if not ctx.normalized_query:
            out.browse = True
            out.items = dict(eligible)
        else:
            futures: Dict[str, Future] = {
                KEYWORD: self._pool.submit(self.keyword_path, ctx, cap),
                SEMANTIC: self._pool.submit(self.semantic_path, ctx, sorted(eligible), cap),
            }
            out.attempted_paths = [KEYWORD, SEMANTIC]
            done, pending = wait(list(futures.values()), timeout=cfg.timeout_s)
            for name, fut in futures.items():
                if fut in pending:
                    fut.cancel()
                    logger.warning(f"[retrieval] {name} path timed out after {cfg.timeout_s}s")
                    self._fail(out, name)
                    continue
                try:
                    hits = fut.result()
                except Exception as e:
                    logger.warning(f"[retrieval] {name} path failed: {e!r}")
                    self._fail(out, name)
                    continue
                # the index may lag the store; only keep items still eligible
                hits = [(i, s) for i, s in hits if i in eligible]
                if name == KEYWORD:
                    out.keyword = hits
                else:
                    out.semantic = hits
            for i, _ in out.keyword + out.semantic:
                out.items[i] = eligible[i]

        geo = ctx.filters.geo
        if geo is not None:
            for i, it in out.items.items():
                if it.location is None:
                    continue
                d = haversine_km(geo.center, it.location)
                out.distances[i] = d
                out.geo[i] = proximity_score(d, geo.radius_km)

        out.popularity = popularity_scores(list(out.items.values()))
        return out

    @staticmethod
    def _fail(out: RetrievalResult, name: str) -> None:
        out.failed_paths.append(name)
        metrics.record_path_failure(name)

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
