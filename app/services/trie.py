# =============================================
# File: app/services/trie.py
# Purpose: Concurrent prefix trie with per-word frequencies for autocomplete
# =============================================
from __future__ import annotations

import os
import threading
from enum import Enum
from typing import Dict, List, Optional, Tuple

from app.utils.locks import ReadWriteLock

Completion = Tuple[str, int]


class LockStrategy(str, Enum):
    """
    SINGLE: one readers-writer lock guards the whole tree.
    SHARDED: one subtree + lock per first character, so writes under "w..."
    never block reads under "v...".
    """
    SINGLE = "single"
    SHARDED = "sharded"


def _strategy_from_env() -> LockStrategy:
    raw = os.getenv("TRIE_LOCK_STRATEGY", LockStrategy.SINGLE.value).strip().lower()
    try:
        return LockStrategy(raw)
    except ValueError:
        return LockStrategy.SINGLE


class TrieNode:
    __slots__ = ("children", "is_word", "frequency")

    def __init__(self) -> None:
        self.children: Dict[str, TrieNode] = {}
        self.is_word = False
        self.frequency = 0


class _Shard:
    __slots__ = ("root", "lock")

    def __init__(self) -> None:
        self.root = TrieNode()
        self.lock = ReadWriteLock()


class PrefixTrie:
    """Prefix tree over tokens and full queries. The root is the empty prefix."""

    def __init__(self, strategy: Optional[LockStrategy] = None, scan_limit: int = 1000) -> None:
        self.strategy = strategy or _strategy_from_env()
        self.scan_limit = scan_limit
        self._single = _Shard()
        self._shards: Dict[str, _Shard] = {}
        self._shards_guard = threading.Lock()
        self._words = 0
        self._words_lock = threading.Lock()

    def _shard_for(self, first: str, create: bool) -> Optional[_Shard]:
        if self.strategy == LockStrategy.SINGLE:
            return self._single
        shard = self._shards.get(first)
        if shard is None and create:
            with self._shards_guard:
                shard = self._shards.setdefault(first, _Shard())
        return shard

    def _all_shards(self) -> List[_Shard]:
        if self.strategy == LockStrategy.SINGLE:
            return [self._single]
        with self._shards_guard:
            return [self._shards[k] for k in sorted(self._shards)]

    # insertion ---------------------------------------------------------
    def insert(self, word: str, count: int = 1) -> None:
        """Walk/create one node per character, mark the terminal node, bump its frequency."""
        if not word or count <= 0:
            return
        shard = self._shard_for(word[0], create=True)
        new_word = False
        with shard.lock.write():
            node = shard.root
            for ch in word:
                nxt = node.children.get(ch)
                if nxt is None:
                    nxt = TrieNode()
                    node.children[ch] = nxt
                node = nxt
            if not node.is_word:
                node.is_word = True
                new_word = True
            node.frequency += count
        if new_word:
            with self._words_lock:
                self._words += 1

    # lookup ------------------------------------------------------------
    def frequency(self, word: str) -> int:
        if not word:
            return 0
        shard = self._shard_for(word[0], create=False)
        if shard is None:
            return 0
        with shard.lock.read():
            node = self._walk(shard.root, word)
            return node.frequency if node is not None and node.is_word else 0

    def __contains__(self, word: str) -> bool:
        return self.frequency(word) > 0

    def __len__(self) -> int:
        return self._words

    @staticmethod
    def _walk(node: TrieNode, prefix: str) -> Optional[TrieNode]:
        for ch in prefix:
            node = node.children.get(ch)
            if node is None:
                return None
        return node

    def completions(self, prefix: str, max_results: int = 10) -> List[Completion]:
        """
        Words starting with `prefix` as (word, frequency), most frequent first,
        ties broken alphabetically. Empty list when the prefix is absent.
        """
        if max_results <= 0:
            return []
        if prefix:
            shard = self._shard_for(prefix[0], create=False)
            shards = [shard] if shard is not None else []
        else:
            shards = self._all_shards()

        out: List[Completion] = []
        budget = max(self.scan_limit, max_results)
        for shard in shards:
            with shard.lock.read():
                start = self._walk(shard.root, prefix)
                if start is not None:
                    self._collect(start, prefix, out, budget)
            if len(out) >= budget:
                break
        out.sort(key=lambda t: (-t[1], t[0]))
        return out[:max_results]

    @staticmethod
    def _collect(node: TrieNode, prefix: str, out: List[Completion], budget: int) -> None:
        # iterative DFS, bounded by the number of terminal words collected
        stack: List[Tuple[TrieNode, str]] = [(node, prefix)]
        while stack and len(out) < budget:
            cur, path = stack.pop()
            if cur.is_word:
                out.append((path, cur.frequency))
            for ch in sorted(cur.children, reverse=True):
                stack.append((cur.children[ch], path + ch))
