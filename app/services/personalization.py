# =============================================
# File: app/services/personalization.py
# Purpose: Profile-based nudging of a ranked candidate list
# =============================================
from __future__ import annotations

from dataclasses import replace
from typing import List, Mapping, Optional, Sequence

from app.services.models import ScoredCandidate, SearchableItem, UserSearchProfile
from app.services.normalizer import normalize
from app.services.settings import PersonalizationWeights, personalization_weights


def _category_match(item: SearchableItem, profile: UserSearchProfile) -> float:
    prefs = {normalize(c) for c in profile.preferred_categories}
    return 1.0 if item.category and normalize(item.category) in prefs else 0.0


def _price_overlap(item: SearchableItem, profile: UserSearchProfile) -> float:
    """Fraction of the item's price range inside the preferred range."""
    if item.price is None or profile.price_range is None:
        return 0.0
    lo, hi = item.price.min, item.price.max
    plo, phi = profile.price_range.min, profile.price_range.max
    if hi == lo:
        return 1.0 if plo <= lo <= phi else 0.0
    overlap = max(0.0, min(hi, phi) - max(lo, plo))
    return min(1.0, overlap / (hi - lo))


def _location_match(item: SearchableItem, profile: UserSearchProfile) -> float:
    prefs = {normalize(l) for l in profile.location_preferences}
    if not prefs:
        return 0.0
    if item.city and normalize(item.city) in prefs:
        return 1.0
    if item.state and normalize(item.state) in prefs:
        return 1.0
    return 0.0


def _quality_match(item: SearchableItem, profile: UserSearchProfile) -> float:
    if profile.quality_preference is None:
        return 0.0
    return max(0.0, 1.0 - abs(item.rating - profile.quality_preference) / 5.0)


class PersonalizationAdjuster:
    """
    new score = original * (1 + personalization * boost), boost <= 0.3,
    so preferences reorder close calls without overriding relevance.
    """

    def __init__(self, weights: Optional[PersonalizationWeights] = None) -> None:
        self._weights = weights

    @property
    def weights(self) -> PersonalizationWeights:
        return self._weights or personalization_weights()

    def score(self, item: SearchableItem, profile: UserSearchProfile) -> float:
        w = self.weights
        total = (
            w.category * _category_match(item, profile)
            + w.price * _price_overlap(item, profile)
            + w.location * _location_match(item, profile)
            + w.quality * _quality_match(item, profile)
        )
        return max(0.0, min(1.0, total))

    def adjust(
        self,
        ranked: Sequence[ScoredCandidate],
        items: Mapping[str, SearchableItem],
        profile: Optional[UserSearchProfile],
    ) -> List[ScoredCandidate]:
        if profile is None or profile.is_empty():
            return list(ranked)
        boost = min(0.3, self.weights.boost)
        out: List[ScoredCandidate] = []
        for c in ranked:
            item = items.get(c.item_id)
            if item is None:
                out.append(c)
                continue
            p = self.score(item, profile)
            out.append(replace(c, combined=c.combined * (1.0 + p * boost), personalization=p))
        out.sort(key=lambda c: (-c.combined, c.item_id))
        return out
