# =============================================
# File: app/services/kvstore.py
# Purpose: Key-value cache stores (in-process TTL/LRU and Redis)
# =============================================
from __future__ import annotations

import fnmatch
import json
import os
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Protocol, Tuple

import redis
from loguru import logger

from app.services.errors import CacheUnavailableError

# Config
_TTL = int(os.getenv("CACHE_TTL_SECONDS", "600"))           # default TTL, 10 minutes
_MAX = int(os.getenv("CACHE_MAX_ENTRIES", "1000"))          # max cached entries


class KeyValueStore(Protocol):
    """
    Generic get/put/evict contract. Values are JSON-serializable.
    Implementations raise CacheUnavailableError when the backend is unreachable;
    callers treat that as a miss.
    """

    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...

    def evict(self, key: str) -> None: ...

    def evict_pattern(self, pattern: str) -> int: ...

    def clear(self) -> None: ...


class InMemoryKVStore:
    """Process-local TTL cache with LRU eviction. Entries are stored as JSON text."""

    def __init__(self, max_entries: int = _MAX, default_ttl: float = _TTL, clock: Callable[[], float] = time.time) -> None:
        self._store: "OrderedDict[str, Tuple[float, str]]" = OrderedDict()
        self._lock = threading.Lock()
        self._max = max_entries
        self._ttl = default_ttl
        self._now = clock

    def get(self, key: str) -> Optional[Any]:
        now = self._now()
        with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            exp, raw = item
            if exp <= now:
                self._store.pop(key, None)
                return None
            # LRU touch: move to end
            self._store.move_to_end(key, last=True)
        return json.loads(raw)

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        raw = json.dumps(value, ensure_ascii=False)
        exp = self._now() + (ttl if ttl is not None else self._ttl)
        with self._lock:
            self._store[key] = (exp, raw)
            self._store.move_to_end(key, last=True)
            # enforce size
            while len(self._store) > self._max:
                self._store.popitem(last=False)

    def evict(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def evict_pattern(self, pattern: str) -> int:
        with self._lock:
            dead = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
            for k in dead:
                self._store.pop(k, None)
        return len(dead)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


class RedisKVStore:
    """Shared cache across instances. Redis handles expiry; we only (de)serialize."""

    def __init__(self, url: str, client: Optional[redis.Redis] = None) -> None:
        self._client = client or redis.Redis.from_url(
            url,
            socket_timeout=0.5,
            socket_connect_timeout=0.5,
            decode_responses=True,
        )

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e
        if raw is None:
            return None
        return json.loads(raw)

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        raw = json.dumps(value, ensure_ascii=False)
        try:
            self._client.set(key, raw, ex=max(1, int(ttl if ttl is not None else _TTL)))
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    def evict(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    def evict_pattern(self, pattern: str) -> int:
        n = 0
        try:
            for k in self._client.scan_iter(match=pattern, count=500):
                n += self._client.delete(k)
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e
        return n

    def clear(self) -> None:
        try:
            self._client.flushdb()
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e


def build_kv_store() -> KeyValueStore:
    backend = os.getenv("CACHE_BACKEND", "memory").strip().lower()
    if backend == "redis":
        url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        logger.info(f"[kvstore] using redis at {url}")
        return RedisKVStore(url)
    return InMemoryKVStore()
