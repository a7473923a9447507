# =============================================
# File: app/services/settings.py
# Purpose: Search tunables read from the environment
# =============================================

# Values are read at call time so tests/env overrides take effect.
from __future__ import annotations
import os
from dataclasses import dataclass


def _f(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _i(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _b(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RankingWeights:
    keyword: float = 0.4
    semantic: float = 0.4
    geo: float = 0.1
    popularity: float = 0.1
    # items found by only one retrieval path are scaled down by this factor
    single_path_factor: float = 0.65


@dataclass(frozen=True)
class PersonalizationWeights:
    category: float = 0.3
    price: float = 0.25
    location: float = 0.25
    quality: float = 0.2
    boost: float = 0.3


@dataclass(frozen=True)
class RetrievalSettings:
    semantic_min_similarity: float = 0.7
    overfetch: int = 3
    timeout_s: float = 2.0
    vector_backend: str = "bruteforce"


@dataclass(frozen=True)
class EmbeddingSettings:
    backend: str = "local"
    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    api_url: str = "http://localhost:8000"
    dim: int = 384
    # every attempt (max_retries + 1) must fit inside the retrieval timeout
    timeout_s: float = 0.8
    max_retries: int = 1
    cache_ttl_s: int = 7 * 24 * 3600


@dataclass(frozen=True)
class SuggestSettings:
    min_length: int = 2
    max_results: int = 10
    history_cap: int = 100
    cache_ttl_s: int = 60
    trend_retention_s: int = 30 * 24 * 3600


def ranking_weights() -> RankingWeights:
    return RankingWeights(
        keyword=_f("RANK_W_KEYWORD", 0.4),
        semantic=_f("RANK_W_SEMANTIC", 0.4),
        geo=_f("RANK_W_GEO", 0.1),
        popularity=_f("RANK_W_POPULARITY", 0.1),
        single_path_factor=_f("RANK_SINGLE_PATH_FACTOR", 0.65),
    )


def personalization_weights() -> PersonalizationWeights:
    return PersonalizationWeights(
        category=_f("PERS_W_CATEGORY", 0.3),
        price=_f("PERS_W_PRICE", 0.25),
        location=_f("PERS_W_LOCATION", 0.25),
        quality=_f("PERS_W_QUALITY", 0.2),
        boost=min(0.3, max(0.0, _f("PERS_BOOST", 0.3))),
    )


def retrieval_settings() -> RetrievalSettings:
    return RetrievalSettings(
        semantic_min_similarity=_f("SEMANTIC_MIN_SIMILARITY", 0.7),
        overfetch=max(1, _i("CANDIDATE_OVERFETCH", 3)),
        timeout_s=_f("RETRIEVAL_TIMEOUT_SECONDS", 2.0),
        vector_backend=os.getenv("VECTOR_BACKEND", "bruteforce").strip().lower(),
    )


def embedding_settings() -> EmbeddingSettings:
    return EmbeddingSettings(
        backend=os.getenv("EMBEDDING_BACKEND", "local").strip().lower(),
        model=os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"),
        api_url=os.getenv("EMBEDDING_API_URL", "http://localhost:8000").rstrip("/"),
        dim=_i("EMBEDDING_DIM", 384),
        timeout_s=_f("EMBEDDING_TIMEOUT_SECONDS", 0.8),
        max_retries=max(0, _i("EMBEDDING_MAX_RETRIES", 1)),
        cache_ttl_s=_i("EMBEDDING_CACHE_TTL_SECONDS", 7 * 24 * 3600),
    )


def suggest_settings() -> SuggestSettings:
    return SuggestSettings(
        min_length=_i("SUGGEST_MIN_LENGTH", 2),
        max_results=_i("SUGGEST_MAX_RESULTS", 10),
        history_cap=_i("USER_HISTORY_CAP", 100),
        cache_ttl_s=_i("SUGGEST_CACHE_TTL_SECONDS", 60),
        trend_retention_s=_i("TREND_RETENTION_SECONDS", 30 * 24 * 3600),
    )


def search_cache_ttl() -> int:
    return _i("SEARCH_CACHE_TTL_SECONDS", 900)


def strict_contracts() -> bool:
    """Fail fast on programming-contract violations (dev/test)."""
    return _b("SEARCH_STRICT_CONTRACTS", False)
