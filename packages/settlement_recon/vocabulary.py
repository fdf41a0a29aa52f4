"""Reference vocabulary: the authoritative set of account-category labels.

Labels are collected from one column of the reference sheet (the trial
balance account-name column, M by default). A header containing the marker
``합계잔액시산표`` overrides the fixed column index.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from os import PathLike
from pathlib import Path

from .cache import BoundedCache
from .headers import cell_text, locate_header
from .logging_setup import get_logger
from .models import Grid
from .workbook import WorkbookCache

VOCABULARY_COLUMN: int = 12
VOCABULARY_MARKER: str = "합계잔액시산표"
PLACEHOLDER: str = "-"

# The reference sheet's header row starts with one of these.
REFERENCE_HEADER_LABELS: tuple[str, ...] = ("비고", "적요", "전표번호")

type ReferenceVocabulary = tuple[str, ...]

_logger = get_logger("settlement_recon.vocabulary")


def load_vocabulary(
    grid: Grid,
    *,
    column: int = VOCABULARY_COLUMN,
    marker: str = VOCABULARY_MARKER,
) -> ReferenceVocabulary:
    """Return distinct, non-blank, non-placeholder labels in first-seen order."""

    header = locate_header(
        grid,
        primary_labels=REFERENCE_HEADER_LABELS,
        secondary_column=None,
        keywords=(),
    )
    marked = header.find(marker)
    idx = marked if marked != -1 else column

    seen: dict[str, None] = {}
    for row in grid[header.index + 1 :]:
        if not row or idx >= len(row):
            continue
        value = cell_text(row[idx])
        if value and value != PLACEHOLDER:
            seen.setdefault(value, None)
    return tuple(seen)


def contains(vocabulary: Sequence[str], label: str) -> str | None:
    """Exact membership after trimming; returns the canonical vocabulary form."""

    needle = label.strip()
    if not needle:
        return None
    for v in vocabulary:
        if v.strip() == needle:
            return v
    return None


class VocabularyLoader:
    """Process-wide memo of reference vocabularies.

    Keyed by ``(path, mtime, sheet)`` so a rewritten reference workbook is
    picked up on the next call; ``invalidate`` drops everything at once.
    """

    def __init__(
        self,
        workbooks: WorkbookCache,
        store: BoundedCache[tuple[str, int, str], ReferenceVocabulary] | None = None,
    ) -> None:
        self._workbooks = workbooks
        self._store: BoundedCache[tuple[str, int, str], ReferenceVocabulary] = (
            store or BoundedCache(8, name="vocabulary")
        )

    def load(
        self,
        path: str | PathLike[str],
        sheet: str,
        *,
        fallbacks: Sequence[str] = (),
        column: int = VOCABULARY_COLUMN,
    ) -> ReferenceVocabulary:
        p = Path(path).resolve()
        # Raises SourceUnavailable for missing files before touching the memo.
        grid = self._workbooks.sheet(p, sheet, fallbacks=fallbacks)
        key = (os.fspath(p), os.stat(p).st_mtime_ns, sheet)
        cached = self._store.get(key)
        if cached is not None:
            return cached
        vocab = load_vocabulary(grid, column=column)
        self._store.set(key, vocab)
        _logger.info("vocabulary:loaded path=%s sheet=%s labels=%d", p.name, sheet, len(vocab))
        return vocab

    def invalidate(self) -> None:
        self._store.clear()


__all__ = [
    "VOCABULARY_COLUMN",
    "VOCABULARY_MARKER",
    "ReferenceVocabulary",
    "VocabularyLoader",
    "contains",
    "load_vocabulary",
]
