"""Dual-source aggregation into one period-indexed ledger.

Spreadsheets own every period before the cutover month and the database owns
the cutover month onwards. A row on the wrong side of the cutover for its
provenance is dropped, so no period is ever double-counted.

Helpers at the bottom narrow or summarize finished rows (period range,
counterparty, top category, latest period).
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from decimal import Decimal

from .logging_setup import get_logger
from .models import (
    SENTINEL_CATEGORY,
    UNSETTLED_MARKER,
    DroppedRow,
    LedgerRow,
    MonthlyTotal,
    PeriodRange,
    Provenance,
    ReconciledLedger,
)
from .projection import RowDraft

REASON_UNRESOLVED_PERIOD = "unresolved-period"
REASON_OWNED_BY_DATABASE = "period-owned-by-database"
REASON_OWNED_BY_SPREADSHEET = "period-owned-by-spreadsheet"

_NAME_NOISE_RE = re.compile(r"[\s()]+")

_logger = get_logger("settlement_recon.aggregate")


def _month(period: str) -> str:
    return period[:7]


def _detail_sort_key(row: LedgerRow) -> tuple[str, str]:
    return (row.period, row.payment_date or "")


def monthly_summary(rows: Iterable[LedgerRow]) -> list[MonthlyTotal]:
    """Sum amounts per period, most recent first; unsettled periods excluded."""

    totals: dict[str, Decimal] = defaultdict(Decimal)
    counts: dict[str, int] = defaultdict(int)
    for r in rows:
        if UNSETTLED_MARKER in r.period:
            continue
        totals[r.period] += r.amount
        counts[r.period] += 1
    return [
        MonthlyTotal(period=p, total=totals[p], row_count=counts[p])
        for p in sorted(totals, reverse=True)
    ]


def reconcile_sources(
    spreadsheet_rows: Iterable[LedgerRow],
    database_rows: Iterable[LedgerRow],
    cutover: str,
    *,
    unresolved: Iterable[RowDraft] = (),
    unsettled: Iterable[LedgerRow] = (),
) -> ReconciledLedger:
    """Merge both sources around ``cutover`` into a :class:`ReconciledLedger`.

    ``unresolved`` carries drafts whose period could not be normalized; they
    are recorded as dropped rows. ``unsettled`` rows are passed through as
    their own detail list and never enter the monthly summary.
    """

    kept: list[LedgerRow] = []
    dropped: list[DroppedRow] = []

    for r in spreadsheet_rows:
        if _month(r.period) >= cutover:
            dropped.append(
                DroppedRow(r.source, r.source_index, REASON_OWNED_BY_DATABASE, r.period)
            )
        else:
            kept.append(r)
    for r in database_rows:
        if _month(r.period) < cutover:
            dropped.append(
                DroppedRow(r.source, r.source_index, REASON_OWNED_BY_SPREADSHEET, r.period)
            )
        else:
            kept.append(r)
    for d in unresolved:
        dropped.append(DroppedRow(d.source, d.index, REASON_UNRESOLVED_PERIOD, d.raw_period))

    by_reason: dict[str, int] = defaultdict(int)
    for d in dropped:
        by_reason[d.reason] += 1
    if by_reason.get(REASON_UNRESOLVED_PERIOD):
        _logger.warning(
            "aggregate:dropped reason=%s count=%d",
            REASON_UNRESOLVED_PERIOD,
            by_reason[REASON_UNRESOLVED_PERIOD],
        )
    for reason in (REASON_OWNED_BY_DATABASE, REASON_OWNED_BY_SPREADSHEET):
        if by_reason.get(reason):
            _logger.info("aggregate:dropped reason=%s count=%d", reason, by_reason[reason])

    kept.sort(key=_detail_sort_key)
    summary = monthly_summary(kept)
    ledger = ReconciledLedger(
        detail=tuple(kept),
        monthly_summary=tuple(summary),
        dropped=tuple(dropped),
        unsettled=tuple(sorted(unsettled, key=_detail_sort_key)),
    )
    _logger.info(
        "aggregate:done rows=%d spreadsheet=%d database=%d periods=%d dropped=%d",
        len(kept),
        sum(1 for r in kept if r.provenance is Provenance.SPREADSHEET),
        sum(1 for r in kept if r.provenance is Provenance.DATABASE),
        len(summary),
        len(dropped),
    )
    return ledger


# ---------------------------------------------------------------------------
# Filters and summaries
# ---------------------------------------------------------------------------


def normalize_name(value: str | None) -> str:
    """Drop whitespace and parentheses so ``"(주) 모카"`` matches ``"주모카"``."""

    return _NAME_NOISE_RE.sub("", value or "")


def filter_period_range(rows: Iterable[LedgerRow], period_range: PeriodRange) -> list[LedgerRow]:
    return [r for r in rows if period_range.contains(r.period)]


def filter_counterparty(rows: Iterable[LedgerRow], name: str | None) -> list[LedgerRow]:
    """Keep rows whose counterparty contains ``name`` (noise-insensitive).

    A blank ``name`` keeps everything.
    """

    target = normalize_name(name)
    if not target:
        return list(rows)
    return [r for r in rows if target in normalize_name(r.counterparty)]


def narrow(
    ledger: ReconciledLedger,
    *,
    period_range: PeriodRange | None = None,
    counterparty: str | None = None,
) -> ReconciledLedger:
    """Apply request filters to a ledger and recompute its summary."""

    if period_range is None and not normalize_name(counterparty):
        return ledger
    detail: Sequence[LedgerRow] = ledger.detail
    unsettled: Sequence[LedgerRow] = ledger.unsettled
    if period_range is not None:
        detail = filter_period_range(detail, period_range)
        unsettled = filter_period_range(unsettled, period_range)
    detail = filter_counterparty(detail, counterparty)
    unsettled = filter_counterparty(unsettled, counterparty)
    return ReconciledLedger(
        detail=tuple(detail),
        monthly_summary=tuple(monthly_summary(detail)),
        dropped=ledger.dropped,
        unsettled=tuple(unsettled),
    )


def top_category(rows: Iterable[LedgerRow]) -> tuple[str, Decimal] | None:
    """Category with the largest summed amount; ties keep the first seen."""

    totals: dict[str, Decimal] = {}
    for r in rows:
        if not r.amount:
            continue
        label = r.account_category or r.merchant or r.narrative or SENTINEL_CATEGORY
        totals[label] = totals.get(label, Decimal(0)) + r.amount
    best: tuple[str, Decimal] | None = None
    for label, amount in totals.items():
        if best is None or amount > best[1]:
            best = (label, amount)
    return best


def latest_period(rows: Iterable[LedgerRow]) -> str | None:
    """Month of the latest payment date, falling back to the row's period."""

    latest: tuple[str, str] | None = None
    for r in rows:
        if r.payment_date and len(r.payment_date) >= 10 and r.payment_date[4] == "-":
            stamp, month = r.payment_date[:10], r.payment_date[:7]
        else:
            stamp, month = f"{_month(r.period)}-01", _month(r.period)
        if latest is None or stamp > latest[0]:
            latest = (stamp, month)
    return latest[1] if latest else None


__all__ = [
    "REASON_OWNED_BY_DATABASE",
    "REASON_OWNED_BY_SPREADSHEET",
    "REASON_UNRESOLVED_PERIOD",
    "filter_counterparty",
    "filter_period_range",
    "latest_period",
    "monthly_summary",
    "narrow",
    "normalize_name",
    "reconcile_sources",
    "top_category",
]
