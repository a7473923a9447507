# =============================================
# File: tests/conftest.py
# Purpose: Shared fixtures: deterministic embedding stubs and an in-memory search service
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import hashlib
import time
from typing import List

import pytest

from app.services.embeddings import EmbeddingProvider
from app.services.errors import EmbeddingServiceError
from app.services.item_store import InMemoryItemStore
from app.services.keyword_index import KeywordIndex
from app.services.kvstore import InMemoryKVStore
from app.services.models import GeoPoint, PriceRange, SearchableItem
from app.services.profiles import ProfileStore
from app.services.search import SearchService
from app.services.settings import EmbeddingSettings
from app.services.trends import TrendTracker
from app.services.trie import PrefixTrie
from app.services.vector_index import BruteForceVectorIndex

DIM = 256


class HashingEmbeddingService:
    """Bag-of-words hashed into DIM buckets. Deterministic, no model download."""

    def __init__(self) -> None:
        self.calls = 0

    def warm(self) -> None:
        return None

    def embed_text(self, text: str) -> List[float]:
        self.calls += 1
        v = [0.0] * DIM
        for tok in text.lower().split():
            h = int(hashlib.md5(tok.encode("utf-8")).hexdigest(), 16)
            v[h % DIM] += 1.0
        if not any(v):
            v[0] = 1.0
        return v

    def embed_image(self, url: str) -> List[float]:
        raise EmbeddingServiceError("images not supported")


class FailingEmbeddingService:
    def __init__(self) -> None:
        self.calls = 0

    def warm(self) -> None:
        return None

    def embed_text(self, text: str) -> List[float]:
        self.calls += 1
        raise ConnectionError("embedding service down")

    def embed_image(self, url: str) -> List[float]:
        self.calls += 1
        raise ConnectionError("embedding service down")


class SlowEmbeddingService(HashingEmbeddingService):
    def __init__(self, delay_s: float) -> None:
        super().__init__()
        self.delay_s = delay_s

    def embed_text(self, text: str) -> List[float]:
        time.sleep(self.delay_s)
        return super().embed_text(text)


def embedding_settings(**kw) -> EmbeddingSettings:
    base = dict(backend="stub", dim=DIM, timeout_s=1.0, max_retries=1, cache_ttl_s=3600)
    base.update(kw)
    return EmbeddingSettings(**base)


def make_provider(service=None, cache=None, **kw) -> EmbeddingProvider:
    return EmbeddingProvider(
        service=service or HashingEmbeddingService(),
        cache=cache if cache is not None else InMemoryKVStore(),
        settings=embedding_settings(**kw),
    )


def make_item(item_id: str, name: str, **kw) -> SearchableItem:
    data = dict(id=item_id, name=name)
    if "location" in kw and isinstance(kw["location"], tuple):
        kw["location"] = GeoPoint(lat=kw["location"][0], lon=kw["location"][1])
    if "price" in kw and isinstance(kw["price"], tuple):
        kw["price"] = PriceRange(min=kw["price"][0], max=kw["price"][1])
    data.update(kw)
    return SearchableItem(**data)


def make_service(items, embed_service=None, profiles=None, query_log=False, kv=None) -> SearchService:
    kv = kv if kv is not None else InMemoryKVStore()
    svc = SearchService(
        item_store=InMemoryItemStore(items),
        embeddings=make_provider(embed_service, cache=kv),
        keyword_index=KeywordIndex(),
        vector_index=BruteForceVectorIndex(),
        profiles=profiles or ProfileStore(path=None),
        kv_store=kv,
        trie=PrefixTrie(),
        trends=TrendTracker(),
        query_log=query_log,
    )
    svc.reindex()
    return svc


@pytest.fixture
def catalog():
    return [
        make_item("a", "Sunset Photography", category="Photography", city="Austin",
                  services=["wedding photography"], rating=4.5,
                  location=(30.2672, -97.7431), price=(1000, 3000)),
        make_item("b", "Sunset Studios", category="Venue", city="Austin",
                  services=["venue rental"], rating=4.0,
                  location=(30.30, -97.70), price=(3000, 8000)),
        make_item("c", "Bloom Florals", category="Florist", city="Dallas",
                  services=["floral decor"], rating=4.8, price=(500, 900)),
        make_item("d", "Hidden Vendor", category="Photography", city="Austin", status="pending"),
    ]


@pytest.fixture
def service(catalog):
    svc = make_service(catalog)
    yield svc
    svc.shutdown()


@pytest.fixture
def query_db(monkeypatch, tmp_path):
    from app.db import repo
    monkeypatch.setenv("DB_URL", f"sqlite:///{tmp_path / 'queries.db'}")
    repo.reset_engine()
    repo.init_db()
    yield repo
    repo.reset_engine()
