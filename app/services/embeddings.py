# =============================================
# File: app/services/embeddings.py
# Purpose: Text/image embeddings with caching, timeouts and deterministic fallback
# =============================================
from __future__ import annotations

import hashlib
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from functools import lru_cache
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

import numpy as np
import requests
from loguru import logger
from sentence_transformers import SentenceTransformer

from app.services.errors import CacheUnavailableError, DimensionMismatchError, EmbeddingServiceError
from app.services.kvstore import KeyValueStore, build_kv_store
from app.services.models import SearchableItem
from app.services.normalizer import normalize
from app.services.settings import EmbeddingSettings, embedding_settings, strict_contracts
from app.utils import metrics


class EmbeddingService(Protocol):
    """External ML endpoint. May be slow or down; callers must degrade."""

    def embed_text(self, text: str) -> Sequence[float]: ...

    def embed_image(self, url: str) -> Sequence[float]: ...

    def warm(self) -> None: ...


@lru_cache(maxsize=2)
def get_embedding_model(model_name: str) -> SentenceTransformer:
    return SentenceTransformer(model_name, device="cpu")


class LocalEmbeddingService:
    """sentence-transformers on CPU. Text only."""

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name

    def warm(self) -> None:
        get_embedding_model(self.model_name)

    def embed_text(self, text: str) -> Sequence[float]:
        model = get_embedding_model(self.model_name)
        # model outputs numpy array -> list for the JSON cache
        return model.encode([text], normalize_embeddings=True)[0].tolist()

    def embed_image(self, url: str) -> Sequence[float]:
        raise EmbeddingServiceError("local embedding backend does not support images")


class HttpEmbeddingService:
    """
    Remote embedding API:
    POST {base}/embeddings        {"text": ...}       -> {"embedding": [...]}
    POST {base}/image-embeddings  {"image_url": ...}  -> {"embedding": [...]}
    """

    def __init__(self, base_url: str, timeout_s: float, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def warm(self) -> None:
        return None

    def _post(self, path: str, body: dict) -> Sequence[float]:
        try:
            resp = self.session.post(f"{self.base_url}{path}", json=body, timeout=self.timeout_s)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise EmbeddingServiceError(f"embedding request failed: {e}") from e
        vec = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(vec, list):
            raise EmbeddingServiceError("embedding response missing 'embedding' list")
        return vec

    def embed_text(self, text: str) -> Sequence[float]:
        return self._post("/embeddings", {"text": text})

    def embed_image(self, url: str) -> Sequence[float]:
        return self._post("/image-embeddings", {"image_url": url})


def build_embedding_service(cfg: Optional[EmbeddingSettings] = None) -> EmbeddingService:
    cfg = cfg or embedding_settings()
    if cfg.backend == "http":
        return HttpEmbeddingService(cfg.api_url, cfg.timeout_s)
    return LocalEmbeddingService(cfg.model)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Dot product over norms, in [-1, 1]. 0.0 when either vector has zero norm.
    Dimension mismatch raises in strict mode, otherwise logs and returns 0.0.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        if strict_contracts():
            raise DimensionMismatchError(va.size, vb.size)
        logger.error(f"[embeddings] dimension mismatch {va.size} != {vb.size}; similarity forced to 0")
        return 0.0
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    sim = float(np.dot(va, vb) / (na * nb))
    return max(-1.0, min(1.0, sim))


def build_item_text(item: SearchableItem) -> str:
    # name twice for emphasis, then description, category, services, location
    parts = [
        item.name,
        item.name,
        item.description,
        item.category,
        " ".join(item.services),
        item.city or "",
        item.state or "",
    ]
    return " ".join(p for p in parts if p)


class EmbeddingProvider:
    """
    Cache-aside embeddings. Vectors are unit length and of the configured dimension.
    Never raises on upstream failure: returns a deterministic pseudo-random unit
    vector seeded from the text hash instead.
    """

    TEXT_PREFIX = "emb:text:"
    IMAGE_PREFIX = "emb:image:"

    def __init__(
        self,
        service: Optional[EmbeddingService] = None,
        cache: Optional[KeyValueStore] = None,
        settings: Optional[EmbeddingSettings] = None,
    ) -> None:
        self.settings = settings or embedding_settings()
        self.service = service or build_embedding_service(self.settings)
        self.cache = cache if cache is not None else build_kv_store()
        self.dim = self.settings.dim
        self._pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="embed")

    # keys ---------------------------------------------------------------
    @staticmethod
    def _hash(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def text_key(self, text: str) -> str:
        return self.TEXT_PREFIX + self._hash(normalize(text))

    def image_key(self, url: str) -> str:
        return self.IMAGE_PREFIX + self._hash((url or "").strip())

    # vectors ------------------------------------------------------------
    def fallback_vector(self, seed_text: str) -> List[float]:
        digest = hashlib.sha256(seed_text.encode("utf-8")).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], "big"))
        v = rng.standard_normal(self.dim)
        return (v / np.linalg.norm(v)).tolist()

    def _to_unit(self, raw: Sequence[float]) -> List[float]:
        arr = np.asarray(raw, dtype=np.float64)
        if arr.ndim != 1 or arr.shape[0] != self.dim:
            raise EmbeddingServiceError(f"expected {self.dim}-d vector, got shape {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise EmbeddingServiceError("embedding contains non-finite values")
        norm = float(np.linalg.norm(arr))
        if norm == 0.0:
            raise EmbeddingServiceError("embedding has zero norm")
        return (arr / norm).tolist()

    def _call_with_retry(self, fn: Callable[[str], Sequence[float]], arg: str) -> List[float]:
        """
        Up to max_retries+1 attempts, each bounded by timeout_s.
        Raises EmbeddingServiceError when every attempt fails.
        """
        last_err: Optional[BaseException] = None
        attempts = max(1, self.settings.max_retries + 1)
        for _ in range(attempts):
            fut = self._pool.submit(fn, arg)
            try:
                return self._to_unit(fut.result(timeout=self.settings.timeout_s))
            except FuturesTimeout as e:
                fut.cancel()
                last_err = e
            except Exception as e:
                last_err = e
        raise EmbeddingServiceError(f"embedding failed after {attempts} attempts: {last_err!r}")

    def _cached(self, key: str) -> Optional[List[float]]:
        try:
            raw = self.cache.get(key)
        except (CacheUnavailableError, ValueError) as e:
            logger.warning(f"[embeddings] cache read failed, recomputing: {e}")
            return None
        if isinstance(raw, list) and len(raw) == self.dim:
            return [float(x) for x in raw]
        return None

    def _store(self, key: str, vec: List[float]) -> None:
        try:
            self.cache.put(key, vec, self.settings.cache_ttl_s)
        except CacheUnavailableError as e:
            logger.warning(f"[embeddings] cache write failed: {e}")

    def _embed(self, key: str, fn: Callable[[str], Sequence[float]], arg: str) -> Tuple[List[float], bool]:
        cached = self._cached(key)
        if cached is not None:
            return cached, False
        try:
            vec = self._call_with_retry(fn, arg)
        except EmbeddingServiceError as e:
            logger.warning(f"[embeddings] upstream failure, using fallback vector: {e}")
            metrics.record_embedding_fallback()
            # fallback vectors are not cached so a recovered service is used next time
            return self.fallback_vector(key), True
        self._store(key, vec)
        return vec, False

    def embed_with_status(self, text: str) -> Tuple[List[float], bool]:
        """(vector, is_fallback)"""
        norm = normalize(text)
        return self._embed(self.text_key(norm), self.service.embed_text, norm)

    def embed(self, text: str) -> List[float]:
        return self.embed_with_status(text)[0]

    def embed_item(self, item: SearchableItem) -> List[float]:
        return self.embed(build_item_text(item))

    def embed_image(self, url: str) -> List[float]:
        url = (url or "").strip()
        return self._embed(self.image_key(url), self.service.embed_image, url)[0]

    def is_valid(self, vec: Optional[Sequence[float]]) -> bool:
        """True for a finite unit vector of the configured dimension."""
        if vec is None:
            return False
        arr = np.asarray(vec, dtype=np.float64)
        if arr.ndim != 1 or arr.shape[0] != self.dim or not np.all(np.isfinite(arr)):
            return False
        return abs(float(np.linalg.norm(arr)) - 1.0) <= 1e-3

    def similar_terms(
        self,
        term: str,
        vocabulary: Sequence[str],
        max_results: int = 5,
        min_similarity: float = 0.5,
        cached_only: bool = False,
    ) -> List[Tuple[str, float]]:
        """
        Vocabulary entries closest to `term` by cosine similarity, best first.
        With cached_only, entries without a cached vector are skipped instead of embedded.
        """
        norm = normalize(term)
        if not norm or max_results <= 0:
            return []
        qvec, fallback = self.embed_with_status(norm)
        if fallback:
            # a random vector would produce random neighbours
            return []
        scored: List[Tuple[str, float]] = []
        for word in vocabulary:
            w = normalize(word)
            if not w or w == norm:
                continue
            if cached_only:
                wvec = self._cached(self.text_key(w))
                if wvec is None:
                    continue
            else:
                wvec, wfallback = self.embed_with_status(w)
                if wfallback:
                    continue
            sim = cosine_similarity(qvec, wvec)
            if sim >= min_similarity:
                scored.append((w, sim))
        scored.sort(key=lambda t: (-t[1], t[0]))
        return scored[:max_results]

    def evict_text(self, text: str) -> None:
        try:
            self.cache.evict(self.text_key(text))
        except CacheUnavailableError as e:
            logger.warning(f"[embeddings] cache evict failed: {e}")

    def warm(self) -> None:
        try:
            self.service.warm()
        except Exception as e:
            logger.warning(f"[embeddings] warm-up failed: {e}")

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
