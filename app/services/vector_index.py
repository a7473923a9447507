# =============================================
# File: app/services/vector_index.py
# Purpose: Nearest-neighbour search over item embeddings (numpy brute force or Chroma)
# =============================================
from __future__ import annotations

import os
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import chromadb
import numpy as np
from loguru import logger

from app.services.embeddings import cosine_similarity
from app.services.settings import retrieval_settings
from app.utils.locks import ReadWriteLock

Neighbour = Tuple[str, float]


class VectorIndex(Protocol):
    def upsert(self, item_id: str, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None) -> None: ...

    def delete(self, item_id: str) -> None: ...

    def search(
        self,
        query: Sequence[float],
        candidate_ids: Optional[Iterable[str]],
        min_similarity: float,
        k: int,
    ) -> List[Neighbour]: ...


def _rank(pairs: List[Neighbour], min_similarity: float, k: int) -> List[Neighbour]:
    kept = [(i, s) for i, s in pairs if s >= min_similarity]
    # deterministic: highest similarity first, then id
    kept.sort(key=lambda t: (-t[1], t[0]))
    return kept[:k]


class BruteForceVectorIndex:
    """Exact cosine scan. Fine for catalogs up to tens of thousands of items."""

    def __init__(self) -> None:
        self._vecs: Dict[str, np.ndarray] = {}
        self._lock = ReadWriteLock()

    def upsert(self, item_id: str, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None) -> None:
        arr = np.asarray(vector, dtype=np.float64)
        with self._lock.write():
            self._vecs[item_id] = arr

    def delete(self, item_id: str) -> None:
        with self._lock.write():
            self._vecs.pop(item_id, None)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._vecs

    def __len__(self) -> int:
        return len(self._vecs)

    def search(
        self,
        query: Sequence[float],
        candidate_ids: Optional[Iterable[str]],
        min_similarity: float,
        k: int,
    ) -> List[Neighbour]:
        if k <= 0:
            return []
        q = np.asarray(query, dtype=np.float64)
        with self._lock.read():
            if candidate_ids is None:
                rows = list(self._vecs.items())
            else:
                rows = [(i, self._vecs[i]) for i in candidate_ids if i in self._vecs]
        if not rows:
            return []

        ids: List[str] = []
        mats: List[np.ndarray] = []
        for item_id, vec in rows:
            if vec.shape != q.shape:
                # raises in strict mode, logs otherwise; the row is skipped either way
                cosine_similarity(q, vec)
                continue
            ids.append(item_id)
            mats.append(vec)
        if not ids:
            return []

        m = np.vstack(mats)
        denom = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
        dots = m @ q
        sims = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
        sims = np.clip(sims, -1.0, 1.0)
        return _rank(list(zip(ids, sims.tolist())), min_similarity, k)


def _distance_to_similarity(dist: float) -> float:
    """Chroma cosine distance = 1 - cosine_sim; clamp tiny numeric artifacts."""
    return max(-1.0, min(1.0, 1.0 - float(dist)))


class ChromaVectorIndex:
    """
    Chroma-backed ANN index. Embeddings are computed by EmbeddingProvider and
    passed in directly, so the collection has no embedding function.
    """

    HNSW_SPACE = "cosine"

    def __init__(
        self,
        path: Optional[str] = None,
        collection_name: Optional[str] = None,
        client: Optional[Any] = None,
        max_scan: int = 2000,
    ) -> None:
        self._client = client or chromadb.PersistentClient(path=path or os.getenv("CHROMA_PATH", "store/chroma"))
        self._collection = self._client.get_or_create_collection(
            name=collection_name or os.getenv("CHROMA_COLLECTION", "catalog_items"),
            metadata={"hnsw:space": self.HNSW_SPACE},
            embedding_function=None,
        )
        self.max_scan = max_scan

    def upsert(self, item_id: str, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None) -> None:
        meta = {"item_id": item_id}
        meta.update({k: v for k, v in (metadata or {}).items() if isinstance(v, (str, int, float, bool))})
        self._collection.upsert(
            ids=[item_id],
            embeddings=[[float(x) for x in vector]],
            metadatas=[meta],
        )

    def delete(self, item_id: str) -> None:
        self._collection.delete(ids=[item_id])

    def __len__(self) -> int:
        return self._collection.count()

    def search(
        self,
        query: Sequence[float],
        candidate_ids: Optional[Iterable[str]],
        min_similarity: float,
        k: int,
    ) -> List[Neighbour]:
        if k <= 0:
            return []
        allowed = set(candidate_ids) if candidate_ids is not None else None
        if allowed is not None and not allowed:
            return []
        total = self._collection.count()
        if total == 0:
            return []
        # structural filters are applied by the caller via candidate_ids,
        # so scan wide enough to see them
        n = min(total, self.max_scan)
        res = self._collection.query(
            query_embeddings=[[float(x) for x in query]],
            n_results=n,
            include=["distances"],
        )
        ids = (res.get("ids") or [[]])[0]
        dists = (res.get("distances") or [[]])[0]
        pairs = [
            (i, _distance_to_similarity(d))
            for i, d in zip(ids, dists)
            if allowed is None or i in allowed
        ]
        return _rank(pairs, min_similarity, k)


def build_vector_index() -> VectorIndex:
    backend = retrieval_settings().vector_backend
    if backend == "chroma":
        logger.info("[vectors] using chroma vector index")
        return ChromaVectorIndex()
    return BruteForceVectorIndex()
