# =============================================
# File: app/services/item_store.py
# Purpose: Item store contract, structural filter matching, JSON-seeded in-memory store
# =============================================
from __future__ import annotations

import json
import os
import threading
from typing import Dict, Iterable, List, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from app.services.geo import within_radius
from app.services.models import SearchableItem, SearchFilters
from app.services.normalizer import normalize

_ITEMS_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "items.json")


class ItemStore(Protocol):
    def find_eligible_by_filters(self, filters: SearchFilters) -> List[SearchableItem]: ...

    def get_by_id(self, item_id: str) -> Optional[SearchableItem]: ...


def _price_overlaps(item: SearchableItem, filters: SearchFilters) -> bool:
    if filters.min_price is None and filters.max_price is None:
        return True
    if item.price is None:
        return False
    if filters.min_price is not None and item.price.max < filters.min_price:
        return False
    if filters.max_price is not None and item.price.min > filters.max_price:
        return False
    return True


def matches_filters(item: SearchableItem, filters: SearchFilters) -> bool:
    """
    Structural filters shared by every retrieval path.
    Ineligible items never match. Items without a location never match a geo filter.
    """
    if not item.eligible:
        return False
    if filters.category and normalize(item.category) != normalize(filters.category):
        return False
    if filters.city and normalize(item.city) != normalize(filters.city):
        return False
    if filters.state and normalize(item.state) != normalize(filters.state):
        return False
    if not _price_overlaps(item, filters):
        return False
    if filters.min_rating is not None and item.rating < filters.min_rating:
        return False
    if filters.min_reviews is not None and item.review_count < filters.min_reviews:
        return False
    if filters.featured is not None and item.featured != filters.featured:
        return False
    if filters.verified is not None and item.verified != filters.verified:
        return False
    if filters.instant_booking is not None and item.instant_booking != filters.instant_booking:
        return False
    if filters.geo is not None and not within_radius(item.location, filters.geo):
        return False
    return True


class InMemoryItemStore:
    """
    Dict-backed catalog. Optionally seeded from a JSON list of items.
    Returned items are copies; mutate through upsert/remove only.
    """

    def __init__(self, items: Optional[Iterable[SearchableItem]] = None, path: Optional[str] = None) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, SearchableItem] = {}
        if path:
            self._load(path)
        for it in items or []:
            self._items[it.id] = it

    def _load(self, path: str) -> None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                rows = json.load(f)
        except FileNotFoundError:
            logger.info(f"[items] no seed file at {path}; starting empty")
            return
        loaded = 0
        for row in rows:
            try:
                item = SearchableItem.model_validate(row)
            except ValidationError as e:
                logger.warning(f"[items] skipping invalid seed row {row.get('id')!r}: {e.error_count()} errors")
                continue
            self._items[item.id] = item
            loaded += 1
        logger.info(f"[items] loaded {loaded} items from {path}")

    def find_eligible_by_filters(self, filters: SearchFilters) -> List[SearchableItem]:
        with self._lock:
            snapshot = list(self._items.values())
        return [it.model_copy() for it in snapshot if matches_filters(it, filters)]

    def get_by_id(self, item_id: str) -> Optional[SearchableItem]:
        with self._lock:
            it = self._items.get(item_id)
        return it.model_copy() if it is not None else None

    def all_items(self) -> List[SearchableItem]:
        with self._lock:
            return [it.model_copy() for it in self._items.values()]

    def upsert(self, item: SearchableItem) -> Optional[SearchableItem]:
        """Store the item; returns the previous version (if any)."""
        with self._lock:
            prev = self._items.get(item.id)
            self._items[item.id] = item.model_copy()
        return prev

    def remove(self, item_id: str) -> Optional[SearchableItem]:
        with self._lock:
            return self._items.pop(item_id, None)

    def __len__(self) -> int:
        return len(self._items)


def build_item_store() -> InMemoryItemStore:
    return InMemoryItemStore(path=os.getenv("ITEMS_PATH", _ITEMS_PATH))
