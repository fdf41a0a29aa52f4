"""Account classification of ledger narratives.

Narratives written by the finance team embed the account name between pipes
right after a month marker, e.g. ``"11월|운반비|기타내용"``. The mandatory
strategy extracts that token and accepts it only on an exact match against
the reference vocabulary; everything else becomes the sentinel category.

Strategies share one interface so an optional similarity-based strategy
(:mod:`settlement_recon.similarity`) can be chained after pattern extraction.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Protocol

from .models import (
    METHOD_PATTERN_EXTRACT,
    SENTINEL_CLASSIFICATION,
    Classification,
)
from .vocabulary import contains

# Digits, the month marker, then a pipe: "3월|", "11월|", "25년11월|".
_MONTH_PIPE_RE = re.compile(r"\d+월\|")


class ClassificationStrategy(Protocol):
    def classify(self, narrative: str, vocabulary: Sequence[str]) -> Classification: ...


def extract_account_token(narrative: str) -> str | None:
    """Return the trimmed text between the month-marker pipe and the next pipe.

    ``None`` when the pattern is absent or no closing pipe follows it.
    """

    if not narrative:
        return None
    m = _MONTH_PIPE_RE.search(narrative)
    if m is None:
        return None
    start = m.end()
    end = narrative.find("|", start)
    if end == -1:
        return None
    return narrative[start:end].strip()


class PatternExtractStrategy:
    """Exact-match classification on the extracted account token."""

    def classify(self, narrative: str, vocabulary: Sequence[str]) -> Classification:
        token = extract_account_token(narrative)
        if token:
            matched = contains(vocabulary, token)
            if matched is not None:
                return Classification(
                    account_category=matched,
                    match_method=METHOD_PATTERN_EXTRACT,
                    match_confidence=1.0,
                )
        return SENTINEL_CLASSIFICATION


class ChainedStrategy:
    """Try strategies in order; the first non-sentinel result wins."""

    def __init__(self, *strategies: ClassificationStrategy) -> None:
        if not strategies:
            raise ValueError("ChainedStrategy requires at least one strategy")
        self.strategies = strategies

    def classify(self, narrative: str, vocabulary: Sequence[str]) -> Classification:
        for strategy in self.strategies:
            result = strategy.classify(narrative, vocabulary)
            if not result.is_sentinel:
                return result
        return SENTINEL_CLASSIFICATION


_DEFAULT = PatternExtractStrategy()


def strategy_name(strategy: ClassificationStrategy) -> str:
    """Stable identity of a strategy, used to keep cached results apart."""

    if isinstance(strategy, ChainedStrategy):
        return ">".join(strategy_name(s) for s in strategy.strategies)
    return getattr(strategy, "name", None) or type(strategy).__qualname__


def classify(
    narrative: str,
    vocabulary: Sequence[str],
    *,
    strategy: ClassificationStrategy | None = None,
) -> Classification:
    """Classify one narrative. Deterministic for a given vocabulary."""

    return (strategy or _DEFAULT).classify(narrative or "", vocabulary)


__all__ = [
    "ChainedStrategy",
    "ClassificationStrategy",
    "PatternExtractStrategy",
    "classify",
    "extract_account_token",
    "strategy_name",
]
