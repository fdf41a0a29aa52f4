# ruff: noqa: E402, I001
from __future__ import annotations

import pytest

from settlement_recon.cache import BoundedCache, ClassificationCache
from settlement_recon.models import SENTINEL_CLASSIFICATION, Classification


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_bounded_cache_evicts_oldest_insert_first():
    cache: BoundedCache[str, int] = BoundedCache(2)
    cache.set("a", 1)
    cache.set("b", 2)
    # Reading does not refresh position.
    assert cache.get("a") == 1
    cache.set("c", 3)

    assert cache.keys() == ["b", "c"]
    assert cache.get("a") is None
    assert len(cache) == 2


def test_bounded_cache_reset_moves_key_to_newest():
    cache: BoundedCache[str, int] = BoundedCache(2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)
    cache.set("c", 3)

    assert cache.keys() == ["a", "c"]
    assert cache.get("a") == 10


def test_bounded_cache_ttl_expires_lazily():
    clock = _Clock()
    cache: BoundedCache[str, str] = BoundedCache(ttl_seconds=5, clock=clock)
    cache.set("k", "v")
    clock.now = 4.9
    assert cache.get("k") == "v"
    clock.now = 5.1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_bounded_cache_invalidate_and_predicate():
    cache: BoundedCache[tuple[str, int], int] = BoundedCache()
    cache.set(("x", 1), 1)
    cache.set(("x", 2), 2)
    cache.set(("y", 1), 3)

    assert cache.invalidate(("y", 1)) is True
    assert cache.invalidate(("y", 1)) is False
    assert cache.invalidate_where(lambda k: k[0] == "x") == 2
    assert len(cache) == 0
    assert ("x", 1) not in cache


def test_bounded_cache_rejects_bad_bounds():
    with pytest.raises(ValueError):
        BoundedCache(0)
    with pytest.raises(ValueError):
        BoundedCache(ttl_seconds=0)


def test_classification_cache_memoizes_by_trimmed_narrative():
    calls: list[str] = []
    hit = Classification(account_category="운반비", match_method="pattern-extract", match_confidence=1.0)

    def fn(narrative, vocabulary):
        calls.append(narrative)
        return hit

    cache = ClassificationCache()
    assert cache.get_or_compute("  1월|운반비|x ", ("운반비",), fn) == hit
    assert cache.get_or_compute("1월|운반비|x", ("운반비",), fn) == hit
    assert calls == ["1월|운반비|x"]
    assert cache.peek(" 1월|운반비|x") == hit


def test_classification_cache_recomputes_sentinel_entries():
    results = [SENTINEL_CLASSIFICATION, Classification(
        account_category="운반비", match_method="pattern-extract", match_confidence=1.0
    )]
    calls: list[tuple[str, tuple[str, ...]]] = []

    def fn(narrative, vocabulary):
        calls.append((narrative, tuple(vocabulary)))
        return results[len(calls) - 1]

    cache = ClassificationCache()
    first = cache.get_or_compute("1월|운반비|x", (), fn)
    # Vocabulary grew: the sentinel entry must not stick.
    second = cache.get_or_compute("1월|운반비|x", ("운반비",), fn)

    assert first.is_sentinel
    assert second.account_category == "운반비"
    assert len(calls) == 2
    assert len(cache) == 1


def test_classification_cache_namespaces_stay_apart():
    pattern = Classification(account_category="운반비", match_method="pattern-extract", match_confidence=1.0)
    fixed = Classification(account_category="고정", match_method="fixed", match_confidence=1.0)

    cache = ClassificationCache()
    cache.get_or_compute("1월|운반비|x", (), lambda n, v: pattern, namespace="PatternExtractStrategy")
    other = cache.get_or_compute("1월|운반비|x", (), lambda n, v: fixed, namespace="Fixed")

    assert other == fixed
    assert cache.peek("1월|운반비|x", namespace="PatternExtractStrategy") == pattern
    assert len(cache) == 2
