"""Bounded concurrent map over a thread pool, in the spirit of ``p-map``.

Used for the two fan-outs of a reconciliation run: loading independent
sources (spreadsheets and database queries) and classifying a batch of
distinct narratives. Both are I/O-bound (file parsing, network), so threads
are enough.

Behavior
--------
- ``concurrency`` caps how many mapper calls run at once.
- Output preserves input order.
- Error handling, pick one:
  - default: the first error propagates and not-yet-started work is
    cancelled;
  - ``stop_on_error=False``: run everything, then raise an
    ``ExceptionGroup`` of all failures;
  - ``return_exceptions=True``: run everything and place each exception in
    the output slot of the item that raised it. Callers use this to let one
    failing source degrade without aborting the others.
- ``p_map_skip`` returned from the mapper omits that element.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "p_map_skip"


p_map_skip: object = _Skip()


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    return_exceptions: bool = False,
) -> list[OutT | BaseException]:
    """Map ``iterable`` through ``mapper`` running at most ``concurrency`` calls."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")
    fail_fast = stop_on_error and not return_exceptions

    items = enumerate(iterable)
    results: dict[int, object] = {}
    errors: list[Exception] = []
    pending: dict[Future, int] = {}
    total = 0

    def _submit_next(pool: ThreadPoolExecutor) -> bool:
        nonlocal total
        try:
            idx, item = next(items)
        except StopIteration:
            return False
        pending[pool.submit(mapper, item)] = idx
        total += 1
        return True

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        for _ in range(concurrency):
            if not _submit_next(pool):
                break

        while pending:
            done, _ = wait(pending.keys(), return_when=FIRST_COMPLETED)
            for fut in done:
                idx = pending.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001 - routed per error mode
                    if fail_fast:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    if return_exceptions:
                        results[idx] = e
                    else:
                        errors.append(e)
            for _ in range(len(done)):
                if not _submit_next(pool):
                    break

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)

    out: list[OutT | BaseException] = []
    for i in range(total):
        val = results.get(i, p_map_skip)
        if val is not p_map_skip:
            out.append(val)  # type: ignore[arg-type]
    return out


__all__ = ["p_map", "p_map_skip"]
