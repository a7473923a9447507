# =============================================
# File: tests/test_trie.py
# Purpose: Prefix completions, ordering and concurrent insert/read safety
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from concurrent.futures import ThreadPoolExecutor

import pytest

from app.services.trie import LockStrategy, PrefixTrie

STRATEGIES = [LockStrategy.SINGLE, LockStrategy.SHARDED]


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_prefix_we_returns_only_wedding_terms(strategy):
    t = PrefixTrie(strategy)
    for w in ["wedding", "wedding cake", "venue"]:
        t.insert(w)
    words = {w for w, _ in t.completions("we", 10)}
    assert words == {"wedding", "wedding cake"}


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_completions_start_with_prefix(strategy):
    t = PrefixTrie(strategy)
    vocab = ["photo", "photography", "photo booth", "phone", "venue", "veil", "v", "p"]
    for w in vocab:
        t.insert(w)
    for prefix in ["p", "ph", "pho", "photo", "v", "ve", "x", "photography studio"]:
        for word, _ in t.completions(prefix, 50):
            assert word.startswith(prefix)


def test_absent_prefix_gives_empty_list():
    t = PrefixTrie()
    t.insert("venue")
    assert t.completions("wed", 5) == []
    assert t.completions("venues", 5) == []


def test_most_frequent_first_then_alphabetical():
    t = PrefixTrie()
    t.insert("wedding cake", 5)
    t.insert("wedding", 2)
    t.insert("wedding dress", 2)
    t.insert("wedding venue")
    out = t.completions("wed", 3)
    assert out == [("wedding cake", 5), ("wedding", 2), ("wedding dress", 2)]


def test_frequency_accumulates_and_len_counts_distinct_words():
    t = PrefixTrie()
    t.insert("venue")
    t.insert("venue")
    t.insert("venue", 3)
    t.insert("veil")
    assert t.frequency("venue") == 5
    assert "veil" in t
    assert "ven" not in t
    assert len(t) == 2


def test_empty_prefix_lists_everything_bounded_by_max_results():
    t = PrefixTrie(LockStrategy.SHARDED)
    for w in ["a1", "b1", "c1", "d1"]:
        t.insert(w)
    assert len(t.completions("", 10)) == 4
    assert len(t.completions("", 2)) == 2
    assert t.completions("", 0) == []


def test_ignores_empty_words_and_non_positive_counts():
    t = PrefixTrie()
    t.insert("")
    t.insert("venue", 0)
    assert len(t) == 0


def test_strategy_from_env(monkeypatch):
    monkeypatch.setenv("TRIE_LOCK_STRATEGY", "sharded")
    assert PrefixTrie().strategy == LockStrategy.SHARDED
    monkeypatch.setenv("TRIE_LOCK_STRATEGY", "bogus")
    assert PrefixTrie().strategy == LockStrategy.SINGLE


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_concurrent_inserts_and_reads(strategy):
    t = PrefixTrie(strategy)
    words = [f"{c}word{i}" for c in "abcdefgh" for i in range(50)]

    def writer(chunk):
        for w in chunk:
            t.insert(w)
        return len(chunk)

    def reader(prefix):
        seen = 0
        for _ in range(50):
            for w, f in t.completions(prefix, 20):
                assert w.startswith(prefix)
                assert f >= 1
                seen += 1
        return seen

    chunks = [words[i::4] for i in range(4)]
    with ThreadPoolExecutor(max_workers=8) as ex:
        writes = [ex.submit(writer, c) for c in chunks]
        reads = [ex.submit(reader, p) for p in ["a", "bw", "cword1", "h"]]
        for f in writes + reads:
            f.result()

    assert len(t) == len(words)
    for w in words:
        assert t.frequency(w) == 1
