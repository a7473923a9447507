# =============================================
# File: app/services/models.py
# Purpose: Data model for items, queries, candidates, suggestions and pages
# =============================================
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from app.services.normalizer import normalize


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lon: float = Field(..., ge=-180.0, le=180.0)


class PriceRange(BaseModel):
    min: float = Field(0.0, ge=0.0)
    max: float = Field(0.0, ge=0.0)

    @model_validator(mode="after")
    def _ordered(self) -> "PriceRange":
        if self.max < self.min:
            raise ValueError("price range max must be >= min")
        return self


class SearchableItem(BaseModel):
    """
    A vendor listing as seen by the search subsystem.
    - name / description / services / tags: weighted text fields
    - location: optional coordinate; items without one never match geo filters
    - embedding: cached unit vector, recomputed when text fields change
    """
    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    services: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    category: str = ""
    city: Optional[str] = None
    state: Optional[str] = None
    location: Optional[GeoPoint] = None
    price: Optional[PriceRange] = None
    rating: float = Field(0.0, ge=0.0, le=5.0)
    review_count: int = Field(0, ge=0)
    total_interactions: int = Field(0, ge=0)
    recent_interactions: int = Field(0, ge=0)
    featured: bool = False
    verified: bool = False
    instant_booking: bool = False
    status: str = "approved"
    created_at: float = 0.0
    embedding: Optional[List[float]] = Field(default=None, exclude=True)

    @property
    def eligible(self) -> bool:
        return self.status.strip().lower() == "approved"

    def text_signature(self) -> str:
        """Hash of the fields that feed the embedding; changes => re-embed."""
        parts = [
            self.name,
            self.description,
            self.category,
            "|".join(self.services),
            "|".join(self.tags),
            self.city or "",
            self.state or "",
        ]
        return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


class SortMode(str, Enum):
    RELEVANCE = "relevance"
    RATING = "rating"
    PRICE = "price"
    POPULARITY = "popularity"
    DISTANCE = "distance"
    NEWEST = "newest"
    REVIEWS = "reviews"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class GeoFilter(BaseModel):
    center: GeoPoint
    radius_km: float = Field(..., gt=0.0)


class SearchFilters(BaseModel):
    category: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    min_price: Optional[float] = Field(None, ge=0.0)
    max_price: Optional[float] = Field(None, ge=0.0)
    min_rating: Optional[float] = Field(None, ge=0.0, le=5.0)
    min_reviews: Optional[int] = Field(None, ge=0)
    featured: Optional[bool] = None
    verified: Optional[bool] = None
    instant_booking: Optional[bool] = None
    geo: Optional[GeoFilter] = None

    @model_validator(mode="after")
    def _price_bounds(self) -> "SearchFilters":
        if self.min_price is not None and self.max_price is not None and self.max_price < self.min_price:
            raise ValueError("max_price must be >= min_price")
        return self


class Pagination(BaseModel):
    offset: int = Field(0, ge=0)
    size: int = Field(20, ge=0, le=100)


class QueryContext(BaseModel):
    """
    Incoming search request.
    - query: raw text (may be empty: filter-only browse)
    - user_id: optional, enables personalization and history
    - sort/direction: distance sort requires a geo filter
    """
    query: str = Field("", max_length=500)
    user_id: Optional[str] = Field(None, max_length=128)
    filters: SearchFilters = Field(default_factory=SearchFilters)
    pagination: Pagination = Field(default_factory=Pagination)
    sort: SortMode = SortMode.RELEVANCE
    direction: Optional[SortDirection] = None

    @field_validator("user_id")
    @classmethod
    def _blank_user(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip()
        return v or None

    @model_validator(mode="after")
    def _distance_needs_geo(self) -> "QueryContext":
        if self.sort == SortMode.DISTANCE and self.filters.geo is None:
            raise ValueError("sort=distance requires a geo filter")
        return self

    @property
    def normalized_query(self) -> str:
        return normalize(self.query)

    def effective_direction(self) -> SortDirection:
        if self.direction is not None:
            return self.direction
        if self.sort in (SortMode.PRICE, SortMode.DISTANCE):
            return SortDirection.ASC
        return SortDirection.DESC


@dataclass
class ScoredCandidate:
    item_id: str
    keyword: Optional[float] = None
    semantic: Optional[float] = None
    geo: Optional[float] = None
    popularity: Optional[float] = None
    combined: float = 0.0
    provenance: Tuple[str, ...] = field(default_factory=tuple)
    distance_km: Optional[float] = None
    personalization: Optional[float] = None


class SuggestionType(str, Enum):
    COMPLETION = "completion"
    TRENDING = "trending"
    PERSONALIZED = "personalized"
    SEMANTIC = "semantic"
    CATEGORY = "category"


class SuggestionEntry(BaseModel):
    text: str = Field(..., min_length=1)
    type: SuggestionType
    score: float = 0.0
    frequency: Optional[int] = None
    category: Optional[str] = None


class TrendingQuery(BaseModel):
    query: str
    frequency: int
    score: float
    momentum: float
    last_seen: float


class UserSearchProfile(BaseModel):
    preferred_categories: List[str] = Field(default_factory=list)
    price_range: Optional[PriceRange] = None
    location_preferences: List[str] = Field(default_factory=list)
    quality_preference: Optional[float] = Field(None, ge=0.0, le=5.0)

    def is_empty(self) -> bool:
        return (
            not self.preferred_categories
            and self.price_range is None
            and not self.location_preferences
            and self.quality_preference is None
        )


class RankedHit(BaseModel):
    item: SearchableItem
    score: float
    keyword_score: Optional[float] = None
    semantic_score: Optional[float] = None
    geo_score: Optional[float] = None
    popularity_score: Optional[float] = None
    personalization_score: Optional[float] = None
    distance_km: Optional[float] = None
    provenance: List[str] = Field(default_factory=list)


class RankedPage(BaseModel):
    query: str
    normalized_query: str
    hits: List[RankedHit] = Field(default_factory=list)
    total: int = 0
    offset: int = 0
    size: int = 0
    sort: SortMode = SortMode.RELEVANCE
    facets: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    status: str = "ok"
    degraded: bool = False
    failed_paths: List[str] = Field(default_factory=list)
    cache_hit: bool = False
