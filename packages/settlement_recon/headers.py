"""Locate the header row inside a raw worksheet grid.

Exports often carry a few lines of metadata (title, print date, filters)
above the real column header. ``locate_header`` scans a small window at the
top of the grid and applies, per row and in priority order:

1. the first cell equals or contains a primary label;
2. a secondary column (column D by default) equals or contains the first
   primary label;
3. at least ``min_keywords`` known column names occur as substrings anywhere
   in the row.

The first row satisfying any rule wins. When nothing matches, row 0 is used.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from .models import Grid

SCAN_ROWS: int = 10

PRIMARY_LABELS: tuple[str, ...] = ("거래처명", "비고")

SECONDARY_COLUMN: int = 3

HEADER_KEYWORDS: tuple[str, ...] = (
    "전표번호",
    "거래처명",
    "통화",
    "잔액",
    "반제할금액",
    "만기일",
    "계정명",
    "비고",
    "미결발생일",
)

MIN_KEYWORDS: int = 3


def cell_text(value: Any) -> str:
    """Render a raw cell value as trimmed text (``None`` -> ``""``).

    Integral floats lose their ``.0`` so ``202511.0`` reads as ``"202511"``.
    """

    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


@dataclass(frozen=True, slots=True)
class HeaderLocation:
    """Index of the header row and its labels (blank cells as ``""``)."""

    index: int
    labels: tuple[str, ...]
    rule: str = "default"

    def find(self, *needles: str, exact: bool = False) -> int:
        """Return the first column whose label matches any of ``needles``.

        ``exact`` compares whole labels; otherwise substring containment is
        used. Returns ``-1`` when nothing matches.
        """

        for idx, label in enumerate(self.labels):
            if not label:
                continue
            for n in needles:
                if (label == n) if exact else (n in label):
                    return idx
        return -1

    def find_all(self, needle: str, *, exact: bool = True) -> list[int]:
        return [
            i
            for i, label in enumerate(self.labels)
            if label and ((label == needle) if exact else (needle in label))
        ]


def _matches_label(cell: str, labels: Sequence[str]) -> bool:
    # Containment covers equality.
    return any(lab in cell for lab in labels if lab)


def _keyword_hits(row: Sequence[Any], keywords: Sequence[str]) -> int:
    texts = [cell_text(c) for c in row if c is not None]
    return sum(1 for kw in keywords if any(kw in t for t in texts))


def locate_header(
    grid: Grid,
    *,
    scan_rows: int = SCAN_ROWS,
    primary_labels: Sequence[str] = PRIMARY_LABELS,
    secondary_column: int | None = SECONDARY_COLUMN,
    keywords: Sequence[str] = HEADER_KEYWORDS,
    min_keywords: int = MIN_KEYWORDS,
) -> HeaderLocation:
    """Find the header row within the first ``scan_rows`` rows of ``grid``."""

    index, rule = 0, "default"
    for i, row in enumerate(grid[:scan_rows]):
        if not row:
            continue
        first = cell_text(row[0])
        if first and _matches_label(first, primary_labels):
            index, rule = i, "primary"
            break
        if secondary_column is not None and primary_labels and len(row) > secondary_column:
            second = cell_text(row[secondary_column])
            if second and _matches_label(second, primary_labels[:1]):
                index, rule = i, "secondary"
                break
        if keywords and _keyword_hits(row, keywords) >= min_keywords:
            index, rule = i, "keywords"
            break

    raw = grid[index] if index < len(grid) else []
    return HeaderLocation(index=index, labels=tuple(cell_text(c) for c in raw), rule=rule)


__all__ = [
    "HEADER_KEYWORDS",
    "PRIMARY_LABELS",
    "HeaderLocation",
    "cell_text",
    "locate_header",
]
