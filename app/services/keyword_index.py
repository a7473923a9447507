# =============================================
# File: app/services/keyword_index.py
# Purpose: Field-weighted BM25 full-text index over catalog items
# =============================================
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from rank_bm25 import BM25Plus

from app.services.item_store import matches_filters
from app.services.models import SearchableItem, SearchFilters
from app.services.normalizer import tokenize
from app.utils.locks import ReadWriteLock

# name > description > services > tags
FIELD_BOOSTS: Dict[str, float] = {
    "name": 3.0,
    "description": 2.0,
    "services": 1.5,
    "tags": 1.0,
}

MIN_PREFIX = 3


def edge_ngrams(tokens: Sequence[str], min_len: int = MIN_PREFIX) -> List[str]:
    """Each token plus its prefixes of length >= min_len ("photography" -> "pho", "phot", ...)."""
    out: List[str] = []
    for t in tokens:
        out.append(t)
        for k in range(min_len, len(t)):
            out.append(t[:k])
    return out


def field_text(item: SearchableItem, name: str) -> str:
    if name == "name":
        return item.name
    if name == "description":
        return item.description
    if name == "services":
        return " ".join(item.services)
    if name == "tags":
        return " ".join(item.tags)
    raise KeyError(name)


@dataclass(frozen=True)
class _Snapshot:
    ids: List[str] = field(default_factory=list)
    items: List[SearchableItem] = field(default_factory=list)
    # None when the field is empty across the whole corpus
    models: Dict[str, Optional[BM25Plus]] = field(default_factory=dict)


class KeywordIndex:
    """
    In-process full-text index. One BM25Plus model per field, combined with
    FIELD_BOOSTS. Mutations mark the index dirty; the next query rebuilds an
    immutable snapshot, so readers never see a half-built model.
    """

    def __init__(self, boosts: Optional[Dict[str, float]] = None) -> None:
        self.boosts = dict(boosts or FIELD_BOOSTS)
        self._docs: Dict[str, SearchableItem] = {}
        self._lock = ReadWriteLock()
        self._dirty = False
        self._snap = _Snapshot()

    # maintenance ---------------------------------------------------------
    def index_item(self, item: SearchableItem) -> None:
        with self._lock.write():
            self._docs[item.id] = item
            self._dirty = True

    def update_item(self, item: SearchableItem) -> None:
        self.index_item(item)

    def delete_item(self, item_id: str) -> bool:
        with self._lock.write():
            removed = self._docs.pop(item_id, None) is not None
            if removed:
                self._dirty = True
        return removed

    def __len__(self) -> int:
        return len(self._docs)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._docs

    # build ---------------------------------------------------------------
    def _build(self) -> _Snapshot:
        ids = sorted(self._docs)
        items = [self._docs[i] for i in ids]
        models: Dict[str, Optional[BM25Plus]] = {}
        for name in self.boosts:
            corpus = [edge_ngrams(tokenize(field_text(it, name))) for it in items]
            # BM25 needs a non-empty corpus with at least one token
            models[name] = BM25Plus(corpus) if any(corpus) else None
        return _Snapshot(ids=ids, items=items, models=models)

    def _snapshot(self) -> _Snapshot:
        with self._lock.read():
            if not self._dirty:
                return self._snap
        with self._lock.write():
            if self._dirty:
                self._snap = self._build()
                self._dirty = False
            return self._snap

    # query ---------------------------------------------------------------
    def query(self, terms: Sequence[str], filters: Optional[SearchFilters] = None, page_size: int = 20) -> List[Tuple[str, float]]:
        """
        (item_id, score in [0,1]) for eligible, filter-matching items that match
        at least one term; best first, ties by id. Scores are relative to the
        best match of this query.
        """
        terms = list(dict.fromkeys(t for t in terms if t))
        if not terms or page_size <= 0:
            return []
        snap = self._snapshot()
        if not snap.ids:
            return []

        total = np.zeros(len(snap.ids), dtype=np.float64)
        for name, boost in self.boosts.items():
            bm = snap.models.get(name)
            if bm is None:
                continue
            for t in terms:
                present = np.fromiter((t in df for df in bm.doc_freqs), dtype=bool, count=len(snap.ids))
                if not present.any():
                    continue
                # BM25Plus credits documents lacking the term; mask them out
                total += boost * bm.get_scores([t]) * present

        filters = filters or SearchFilters()
        hits: List[Tuple[str, float]] = []
        for idx in np.flatnonzero(total > 0):
            item = snap.items[idx]
            if matches_filters(item, filters):
                hits.append((item.id, float(total[idx])))
        if not hits:
            return []
        best = max(s for _, s in hits)
        hits = [(i, s / best) for i, s in hits]
        hits.sort(key=lambda t: (-t[1], t[0]))
        return hits[:page_size]
