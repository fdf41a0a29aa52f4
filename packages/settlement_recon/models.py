"""Data models and type aliases for ``settlement_recon``.

``LedgerRow`` is the typed record every source is projected into. Raw
spreadsheet rows (header-keyed mappings) live in :mod:`.projection` and never
travel past the projection step.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

# Fallback category assigned when no exact vocabulary match exists.
SENTINEL_CATEGORY: str = "기타"

# Period labels containing this marker are excluded from monthly totals.
UNSETTLED_MARKER: str = "미정산"

METHOD_PATTERN_EXTRACT = "pattern-extract"
METHOD_NO_MATCH = "no-match"
METHOD_PRIOR_RUN = "prior-run"
METHOD_EMBEDDING = "embedding-similarity"

# One parsed worksheet: rows of raw cell values (``None`` for empty cells).
type Grid = list[list[Any]]
"""A 2-D cell grid as read from a worksheet, row-major."""

type WorkbookGrid = Mapping[str, Grid]
"""Sheet name -> grid, in workbook sheet order."""


class Provenance(StrEnum):
    SPREADSHEET = "spreadsheet"
    DATABASE = "database"


class Classification(BaseModel):
    """Outcome of classifying one narrative.

    Strategies other than pattern extraction supply their own ``match_method``
    tags; ``match_confidence`` is always within ``[0, 1]``.
    """

    model_config = ConfigDict(strict=True, frozen=True, str_strip_whitespace=True)

    account_category: str
    match_method: str
    match_confidence: float

    @field_validator("account_category")
    @classmethod
    def _category_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("account_category must be non-empty")
        return v

    @field_validator("match_confidence")
    @classmethod
    def _confidence_in_unit_interval(cls, v: float) -> float:
        if 0.0 <= v <= 1.0:
            return v
        raise ValueError("match_confidence must be within [0,1]")

    @property
    def is_sentinel(self) -> bool:
        return self.account_category == SENTINEL_CATEGORY


SENTINEL_CLASSIFICATION = Classification(
    account_category=SENTINEL_CATEGORY,
    match_method=METHOD_NO_MATCH,
    match_confidence=0.0,
)


@dataclass(frozen=True, slots=True)
class LedgerRow:
    """One settlement transaction after projection and classification.

    ``period`` is a ``YYYY-MM`` label, optionally suffixed with ``_미정산`` for
    unsettled rows. Rows whose period cannot be resolved never become a
    ``LedgerRow`` (see :class:`DroppedRow`).
    """

    period: str
    amount: Decimal
    narrative: str
    account_category: str
    match_method: str
    match_confidence: float
    provenance: Provenance
    payment_date: str | None = None
    counterparty: str = ""
    merchant: str = ""
    source: str = ""
    source_index: int | None = None
    settled: bool = True

    def __post_init__(self) -> None:
        if not self.account_category:
            raise ValueError("LedgerRow.account_category must never be empty")


@dataclass(frozen=True, slots=True)
class DroppedRow:
    """A source row excluded from the output, kept for counting and logging."""

    source: str
    index: int | None
    reason: str
    raw_period: str | None = None


_PERIOD_RANGE_RE = re.compile(r"(\d{4})-(\d{2})\s*~\s*(\d{4})-(\d{2})")


@dataclass(frozen=True, slots=True)
class PeriodRange:
    """Inclusive ``YYYY-MM`` bounds, written as ``"2025-01 ~ 2025-12"``."""

    start: str
    end: str

    @classmethod
    def parse(cls, text: str) -> PeriodRange:
        m = _PERIOD_RANGE_RE.search(text or "")
        if m is None:
            raise ValueError(f"invalid period range {text!r}; expected 'YYYY-MM ~ YYYY-MM'")
        start, end = f"{m.group(1)}-{m.group(2)}", f"{m.group(3)}-{m.group(4)}"
        if start > end:
            raise ValueError(f"period range start {start} is after end {end}")
        return cls(start=start, end=end)

    def contains(self, period: str) -> bool:
        return self.start <= period[:7] <= self.end


@dataclass(frozen=True, slots=True)
class MonthlyTotal:
    period: str
    total: Decimal
    row_count: int


@dataclass(frozen=True, slots=True)
class ReconciledLedger:
    """Aggregator output handed to serialization/response layers.

    Attributes
    ----------
    detail:
        Merged rows sorted by ``(period, payment_date)`` ascending.
    monthly_summary:
        Per-period totals sorted by period descending (most recent first).
    dropped:
        Rows excluded for an unresolvable period or a source-exclusivity
        violation.
    unsettled:
        Rows from the unsettled-voucher feed; never part of ``monthly_summary``.
    """

    detail: Sequence[LedgerRow]
    monthly_summary: Sequence[MonthlyTotal]
    dropped: Sequence[DroppedRow] = ()
    unsettled: Sequence[LedgerRow] = ()

    def total_for(self, period: str) -> Decimal:
        for m in self.monthly_summary:
            if m.period == period:
                return m.total
        return Decimal(0)


@dataclass(frozen=True, slots=True)
class SnapshotEntry:
    narrative: str
    account_category: str


type SnapshotKey = int | str
"""Ordinal row index, or a content fingerprint when keyed by content."""

type PriorRunSnapshot = Mapping[SnapshotKey, SnapshotEntry]
"""Per-row narrative/category pairs reconstructed from a previous output."""


__all__ = [
    "METHOD_EMBEDDING",
    "METHOD_NO_MATCH",
    "METHOD_PATTERN_EXTRACT",
    "METHOD_PRIOR_RUN",
    "SENTINEL_CATEGORY",
    "SENTINEL_CLASSIFICATION",
    "UNSETTLED_MARKER",
    "Classification",
    "DroppedRow",
    "Grid",
    "LedgerRow",
    "MonthlyTotal",
    "PeriodRange",
    "PriorRunSnapshot",
    "Provenance",
    "ReconciledLedger",
    "SnapshotEntry",
    "SnapshotKey",
    "WorkbookGrid",
]
