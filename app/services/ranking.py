# =============================================
# File: app/services/ranking.py
# Purpose: Hybrid score fusion, sort modes and facet counts
# =============================================
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from app.services.models import ScoredCandidate, SearchableItem, SortDirection, SortMode
from app.services.settings import RankingWeights, ranking_weights

Hit = Tuple[str, float]

PRICE_BUCKETS: List[Tuple[str, float, float]] = [
    ("0-1000", 0.0, 1000.0),
    ("1000-5000", 1000.0, 5000.0),
    ("5000-10000", 5000.0, 10000.0),
    ("10000+", 10000.0, float("inf")),
]

RATING_BUCKETS: List[Tuple[str, float, float]] = [
    ("0-2", 0.0, 2.0),
    ("2-3", 2.0, 3.0),
    ("3-4", 3.0, 4.0),
    ("4-5", 4.0, float("inf")),
]


def merge(
    keyword: Sequence[Hit],
    semantic: Sequence[Hit],
    geo_scores: Mapping[str, float],
    popularity_scores: Mapping[str, float],
    weights: Optional[RankingWeights] = None,
    base_ids: Iterable[str] = (),
    distances: Optional[Mapping[str, float]] = None,
) -> List[ScoredCandidate]:
    """
    Union keyword and semantic candidates (plus `base_ids` for filter-only
    browsing) and fuse their partial scores:

        combined = wk*keyword + ws*semantic + wg*geo + wp*popularity

    Missing partials count as 0. An item found by exactly one of the two
    text paths is scaled by `single_path_factor`. Sorted by combined score
    descending, then item id. Pure: same inputs, same output.
    """
    w = weights or ranking_weights()
    kw = dict(keyword)
    sem = dict(semantic)
    distances = distances or {}

    ids = set(kw) | set(sem) | set(base_ids)
    out: List[ScoredCandidate] = []
    for item_id in ids:
        k = kw.get(item_id)
        s = sem.get(item_id)
        g = geo_scores.get(item_id)
        p = popularity_scores.get(item_id)

        combined = (
            w.keyword * (k or 0.0)
            + w.semantic * (s or 0.0)
            + w.geo * (g or 0.0)
            + w.popularity * (p or 0.0)
        )
        if (k is None) != (s is None):
            combined *= w.single_path_factor

        provenance = tuple(
            name
            for name, v in (("keyword", k), ("semantic", s), ("geo", g), ("popularity", p))
            if v is not None
        )
        out.append(
            ScoredCandidate(
                item_id=item_id,
                keyword=k,
                semantic=s,
                geo=g,
                popularity=p,
                combined=combined,
                provenance=provenance,
                distance_km=distances.get(item_id),
            )
        )
    out.sort(key=lambda c: (-c.combined, c.item_id))
    return out


def _sort_value(mode: SortMode, cand: ScoredCandidate, item: SearchableItem) -> Optional[float]:
    if mode == SortMode.RATING:
        return item.rating
    if mode == SortMode.PRICE:
        return item.price.min if item.price is not None else None
    if mode == SortMode.POPULARITY:
        return cand.popularity if cand.popularity is not None else 0.0
    if mode == SortMode.DISTANCE:
        return cand.distance_km
    if mode == SortMode.NEWEST:
        return item.created_at
    if mode == SortMode.REVIEWS:
        return float(item.review_count)
    return cand.combined


def sort_candidates(
    candidates: Sequence[ScoredCandidate],
    items: Mapping[str, SearchableItem],
    mode: SortMode,
    direction: SortDirection,
) -> List[ScoredCandidate]:
    """
    Order by the sort mode. Items lacking the sort value (no price, no
    distance) go last in either direction. Ties: combined score, then id.
    """
    asc = direction == SortDirection.ASC

    def key(c: ScoredCandidate):
        v = _sort_value(mode, c, items[c.item_id])
        if v is None:
            return (1, 0.0, -c.combined, c.item_id)
        return (0, v if asc else -v, -c.combined, c.item_id)

    return sorted((c for c in candidates if c.item_id in items), key=key)


def _bucket(value: float, buckets: List[Tuple[str, float, float]]) -> Optional[str]:
    for label, lo, hi in buckets:
        if lo <= value < hi:
            return label
    return None


def facets(items: Iterable[SearchableItem]) -> Dict[str, Dict[str, int]]:
    """Counts by category, city, price bucket (starting price) and rating bucket."""
    out: Dict[str, Dict[str, int]] = {"category": {}, "city": {}, "price": {}, "rating": {}}
    for it in items:
        if it.category:
            out["category"][it.category] = out["category"].get(it.category, 0) + 1
        if it.city:
            out["city"][it.city] = out["city"].get(it.city, 0) + 1
        if it.price is not None:
            label = _bucket(it.price.min, PRICE_BUCKETS)
            if label:
                out["price"][label] = out["price"].get(label, 0) + 1
        label = _bucket(it.rating, RATING_BUCKETS)
        if label:
            out["rating"][label] = out["rating"].get(label, 0) + 1
    return out
