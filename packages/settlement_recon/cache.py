"""In-process cache services shared by the reconciliation pipeline.

This module provides:

- ``BoundedCache``: a thread-safe key/value store with a fixed capacity,
  insertion-order (FIFO) eviction and an optional TTL. It is the injectable
  ``get``/``set``/``invalidate`` service behind every cache in the package.
- ``ClassificationCache``: memoizes classifier output by trimmed narrative.
  Entries holding the sentinel category are treated as misses so that growth
  of the reference vocabulary is picked up without an explicit clear.

Population follows check-then-set. Two callers racing on the same missing
key both compute the (deterministic) value; the later ``set`` wins.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable, Sequence
from typing import Generic, TypeVar

from .logging_setup import get_logger
from .models import Classification

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()

_logger = get_logger("settlement_recon.cache")


class BoundedCache(Generic[K, V]):
    """Fixed-capacity cache evicting the oldest inserted entry first.

    Parameters
    ----------
    capacity:
        Maximum number of entries. ``None`` means unbounded.
    ttl_seconds:
        Optional time-to-live; expired entries read as misses and are removed
        lazily on access.
    name:
        Label used in log lines.
    clock:
        Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        capacity: int | None = None,
        *,
        ttl_seconds: float | None = None,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be a positive integer or None")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive or None")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._data: OrderedDict[K, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        return self.get(key, _MISSING) is not _MISSING  # type: ignore[arg-type]

    def keys(self) -> list[K]:
        with self._lock:
            return list(self._data.keys())

    def get(self, key: K, default: V | None = None) -> V | None:
        with self._lock:
            hit = self._data.get(key)
            if hit is None:
                return default
            stored_at, value = hit
            if self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds:
                del self._data[key]
                return default
            return value

    def set(self, key: K, value: V) -> None:
        evicted: list[K] = []
        with self._lock:
            # Re-setting a key refreshes its position; eviction order is by
            # most recent insertion, not by access.
            self._data.pop(key, None)
            self._data[key] = (self._clock(), value)
            while self.capacity is not None and len(self._data) > self.capacity:
                old_key, _ = self._data.popitem(last=False)
                evicted.append(old_key)
        for old_key in evicted:
            _logger.debug("cache:evict name=%s key=%r", self.name, old_key)

    def invalidate(self, key: K) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def invalidate_where(self, predicate: Callable[[K], bool]) -> int:
        with self._lock:
            doomed = [k for k in self._data if predicate(k)]
            for k in doomed:
                del self._data[k]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            n = len(self._data)
            self._data.clear()
        _logger.info("cache:clear name=%s entries=%d", self.name, n)


class ClassificationCache:
    """Memoize classification results keyed by the trimmed narrative.

    ``namespace`` separates results produced by different strategies.
    """

    def __init__(self, store: BoundedCache[str, Classification] | None = None) -> None:
        self._store: BoundedCache[str, Classification] = store or BoundedCache(
            name="classification"
        )

    def __len__(self) -> int:
        return len(self._store)

    @staticmethod
    def key_for(narrative: str, namespace: str = "") -> str:
        key = (narrative or "").strip()
        return f"{namespace}\x1f{key}" if namespace else key

    def peek(self, narrative: str, *, namespace: str = "") -> Classification | None:
        return self._store.get(self.key_for(narrative, namespace))

    def get_or_compute(
        self,
        narrative: str,
        vocabulary: Sequence[str],
        classify_fn: Callable[[str, Sequence[str]], Classification],
        *,
        namespace: str = "",
    ) -> Classification:
        text = (narrative or "").strip()
        key = self.key_for(text, namespace)
        cached = self._store.get(key)
        if cached is not None and not cached.is_sentinel:
            return cached
        result = classify_fn(text, vocabulary)
        self._store.set(key, result)
        return result

    def clear(self) -> None:
        self._store.clear()


__all__ = ["BoundedCache", "ClassificationCache"]
