# =============================================
# File: app/services/trends.py
# Purpose: Query frequency, time-weighted trending scores and per-user history
# =============================================
from __future__ import annotations

import heapq
import time
from collections import OrderedDict, deque
from typing import Deque, Dict, List, Optional, Tuple

from app.services.models import TrendingQuery
from app.services.settings import suggest_settings
from app.utils.locks import ReadWriteLock

# Per-query hit timestamps kept for momentum; older hits still count in frequency.
_MAX_HITS = 1000
_PRUNE_EVERY = 256


class _Entry:
    __slots__ = ("frequency", "score", "hits", "first_seen", "last_seen")

    def __init__(self, now: float) -> None:
        self.frequency = 0
        self.score = 0.0
        self.hits: Deque[float] = deque(maxlen=_MAX_HITS)
        self.first_seen = now
        self.last_seen = now


class TrendTracker:
    """
    - frequency: +1 per recorded query
    - score: +now per recorded query, so recent activity outweighs old activity
    - user history: most recent N distinct queries per user, with counts;
      users idle longer than the retention window are forgotten on prune
    Safe for many readers and occasional writers.
    """

    def __init__(self, history_cap: Optional[int] = None, retention_s: Optional[int] = None) -> None:
        cfg = suggest_settings()
        self.history_cap = history_cap or cfg.history_cap
        self.retention_s = retention_s or cfg.trend_retention_s
        self._entries: Dict[str, _Entry] = {}
        self._users: Dict[str, "OrderedDict[str, int]"] = {}
        self._user_seen: Dict[str, float] = {}
        self._lock = ReadWriteLock()
        self._writes = 0

    def record_query(self, normalized_query: str, user_id: Optional[str] = None, now: Optional[float] = None) -> None:
        if not normalized_query:
            return
        ts = time.time() if now is None else float(now)
        with self._lock.write():
            e = self._entries.get(normalized_query)
            if e is None:
                e = _Entry(ts)
                self._entries[normalized_query] = e
            e.frequency += 1
            e.score += ts
            e.hits.append(ts)
            e.last_seen = max(e.last_seen, ts)
            e.first_seen = min(e.first_seen, ts)

            if user_id:
                hist = self._users.setdefault(user_id, OrderedDict())
                hist[normalized_query] = hist.get(normalized_query, 0) + 1
                hist.move_to_end(normalized_query, last=True)
                self._user_seen[user_id] = max(self._user_seen.get(user_id, ts), ts)
                while len(hist) > self.history_cap:
                    hist.popitem(last=False)

            self._writes += 1
            if self._writes % _PRUNE_EVERY == 0:
                self._prune(ts)

    def _prune(self, now: float) -> None:
        # caller holds the write lock
        cutoff = now - self.retention_s
        dead = [q for q, e in self._entries.items() if e.last_seen < cutoff]
        for q in dead:
            self._entries.pop(q, None)
        idle = [u for u, seen in self._user_seen.items() if seen < cutoff]
        for u in idle:
            self._user_seen.pop(u, None)
            self._users.pop(u, None)

    def prune(self, now: Optional[float] = None) -> None:
        with self._lock.write():
            self._prune(time.time() if now is None else float(now))

    def get_trending(self, window_s: float, max_results: int = 10, now: Optional[float] = None) -> List[TrendingQuery]:
        """
        Top queries by trending score among those seen inside the window.
        momentum = rate inside the window / lifetime rate (1.0 == steady).
        """
        if max_results <= 0 or window_s <= 0:
            return []
        ts = time.time() if now is None else float(now)
        cutoff = ts - window_s
        rows: List[TrendingQuery] = []
        with self._lock.read():
            for q, e in self._entries.items():
                if e.last_seen < cutoff:
                    continue
                recent = sum(1 for h in e.hits if h >= cutoff)
                span = max(ts - e.first_seen, window_s)
                baseline = e.frequency / span
                momentum = (recent / window_s) / baseline if baseline > 0 else 0.0
                rows.append(
                    TrendingQuery(
                        query=q,
                        frequency=e.frequency,
                        score=e.score,
                        momentum=round(momentum, 4),
                        last_seen=e.last_seen,
                    )
                )
        top = heapq.nsmallest(max_results, rows, key=lambda r: (-r.score, r.query))
        return top

    def get_frequent(self, prefix: str, max_results: int = 10) -> List[Tuple[str, int]]:
        """Queries starting with `prefix`, most frequent first."""
        if max_results <= 0:
            return []
        with self._lock.read():
            matches = [(q, e.frequency) for q, e in self._entries.items() if q.startswith(prefix)]
        return heapq.nsmallest(max_results, matches, key=lambda t: (-t[1], t[0]))

    def top_queries(self, n: int) -> List[str]:
        with self._lock.read():
            pairs = [(q, e.frequency) for q, e in self._entries.items()]
        return [q for q, _ in heapq.nsmallest(n, pairs, key=lambda t: (-t[1], t[0]))]

    def user_history(self, user_id: str, prefix: str = "", max_results: int = 50) -> List[Tuple[str, int]]:
        """Most recent first."""
        with self._lock.read():
            hist = self._users.get(user_id)
            if not hist:
                return []
            items = list(hist.items())
        out = [(q, n) for q, n in reversed(items) if q.startswith(prefix)]
        return out[:max_results]

    def frequency(self, normalized_query: str) -> int:
        with self._lock.read():
            e = self._entries.get(normalized_query)
            return e.frequency if e else 0

    def __len__(self) -> int:
        return len(self._entries)
