"""Database source: settled transfers and unsettled vouchers from the ERP.

Settled transfers cover every period from the cutover month onwards; the
spreadsheets own everything before it. Rows come back as
:class:`~settlement_recon.projection.RowDraft` so they share normalization
and batch classification with spreadsheet rows; :func:`finalize_database_row`
turns a classified draft into a ``LedgerRow`` with database provenance.
"""

from __future__ import annotations

import calendar
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import date

from db.client import session_scope
from db.models.settlement import ErpTransfer, ErpUnsettledVoucher
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import SourceUnavailable
from .headers import cell_text
from .logging_setup import get_logger
from .models import Classification, LedgerRow, PeriodRange, Provenance
from .projection import RowDraft, finalize, normalize_date, normalize_period, parse_amount

SETTLED_SOURCE = "database:settled"
UNSETTLED_SOURCE = "database:unsettled"

# Internal payables list the counterparty as the merchant.
INTERNAL_PAYABLE_CATEGORY = "미지급금_사내"

_logger = get_logger("settlement_recon.database")


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + delta
    return total // 12, total % 12 + 1


def payment_window(period_range: PeriodRange, cutover: str) -> tuple[date, date] | None:
    """Payment-date bounds matching a settlement period range.

    A period is paid in the month before it settles, so both ends move back
    one month. The start never precedes the cutover month. Returns ``None``
    when the range ends before the cutover (the database contributes nothing
    the window could narrow).
    """

    if period_range.end < cutover:
        return None
    sy, sm = _shift_month(int(period_range.start[:4]), int(period_range.start[5:7]), -1)
    ey, em = _shift_month(int(period_range.end[:4]), int(period_range.end[5:7]), -1)
    start = date(sy, sm, 1)
    end = date(ey, em, calendar.monthrange(ey, em)[1])
    floor = date(int(cutover[:4]), int(cutover[5:7]), 1)
    return max(start, floor), end


def _draft(
    source: str,
    index: int,
    *,
    period: object,
    payment_date: object,
    amount: object,
    note: str | None,
    merchant: str | None,
    counterparty: str | None,
) -> RowDraft:
    return RowDraft(
        source=source,
        index=index,
        period=normalize_period(period),
        raw_period=cell_text(period),
        payment_date=normalize_date(payment_date),
        amount=parse_amount(amount),
        narrative=(note or "").strip(),
        merchant=(merchant or "").strip(),
        counterparty=(counterparty or "").strip(),
    )


def fetch_settled_rows(
    session: Session,
    cutover: str,
    *,
    counterparty: str | None = None,
    period_range: PeriodRange | None = None,
) -> list[RowDraft]:
    """Settled transfers with ``정산월 >= cutover``, newest first."""

    stmt = select(
        ErpTransfer.period.label("period"),
        ErpTransfer.payment_date.label("payment_date"),
        ErpTransfer.merchant.label("merchant"),
        ErpTransfer.counterparty.label("counterparty"),
        ErpTransfer.amount.label("amount"),
        ErpTransfer.note.label("note"),
    ).where(ErpTransfer.period >= cutover)
    if period_range is not None:
        window = payment_window(period_range, cutover)
        if window is not None:
            stmt = stmt.where(ErpTransfer.payment_date.between(*window))
    if counterparty:
        stmt = stmt.where(ErpTransfer.counterparty.contains(counterparty.strip()))
    stmt = stmt.order_by(ErpTransfer.period.desc(), ErpTransfer.payment_date.desc())

    rows = session.execute(stmt).all()
    _logger.info("database:settled rows=%d cutover=%s", len(rows), cutover)
    return [
        _draft(
            SETTLED_SOURCE,
            i,
            period=r.period,
            payment_date=r.payment_date,
            amount=r.amount,
            note=r.note,
            merchant=r.merchant,
            counterparty=r.counterparty,
        )
        for i, r in enumerate(rows)
    ]


def fetch_unsettled_rows(session: Session, *, user: str | None = None) -> list[RowDraft]:
    """Unsettled vouchers; with ``user``, only that user's still-open ones."""

    stmt = select(
        ErpUnsettledVoucher.period.label("period"),
        ErpUnsettledVoucher.due_date.label("due_date"),
        ErpUnsettledVoucher.merchant.label("merchant"),
        ErpUnsettledVoucher.user_name.label("user_name"),
        ErpUnsettledVoucher.amount.label("amount"),
        ErpUnsettledVoucher.note.label("note"),
    )
    if user:
        stmt = stmt.where(
            ErpUnsettledVoucher.cleared_date.is_(None),
            ErpUnsettledVoucher.user_name.contains(user.strip()),
        )
    stmt = stmt.order_by(ErpUnsettledVoucher.period.desc(), ErpUnsettledVoucher.due_date.desc())

    rows = session.execute(stmt).all()
    _logger.info("database:unsettled rows=%d user=%s", len(rows), user or "-")
    return [
        _draft(
            UNSETTLED_SOURCE,
            i,
            period=r.period,
            payment_date=r.due_date,
            amount=r.amount,
            note=r.note,
            merchant=r.merchant or r.user_name,
            counterparty=r.user_name,
        )
        for i, r in enumerate(rows)
    ]


def load_database_rows(
    fetch: Callable[[Session], list[RowDraft]],
    *,
    database_url: str | None,
    label: str,
) -> list[RowDraft]:
    """Run ``fetch`` in a session, mapping every failure to ``SourceUnavailable``."""

    if not database_url:
        raise SourceUnavailable(label, "database URL is not configured")
    try:
        with session_scope(database_url=database_url) as session:
            return fetch(session)
    except SQLAlchemyError as e:
        raise SourceUnavailable(label, f"query failed ({e.__class__.__name__}: {e})") from e


def finalize_database_row(
    draft: RowDraft, classification: Classification, *, settled: bool
) -> LedgerRow:
    """Attach a category to a database draft.

    The merchant falls back to the counterparty when it is blank or when the
    row is an internal payable.
    """

    merchant = draft.merchant
    if not merchant or classification.account_category == INTERNAL_PAYABLE_CATEGORY:
        merchant = draft.counterparty
    if merchant != draft.merchant:
        draft = replace(draft, merchant=merchant)
    return finalize(draft, classification, provenance=Provenance.DATABASE, settled=settled)


def finalize_all(
    drafts: Sequence[RowDraft],
    classify_fn: Callable[[str], Classification],
    *,
    settled: bool,
) -> tuple[list[LedgerRow], list[RowDraft]]:
    """Classify and finalize drafts; drafts without a period are returned apart."""

    rows: list[LedgerRow] = []
    unresolved: list[RowDraft] = []
    for d in drafts:
        if d.period is None:
            unresolved.append(d)
            continue
        rows.append(finalize_database_row(d, classify_fn(d.narrative), settled=settled))
    return rows, unresolved


__all__ = [
    "SETTLED_SOURCE",
    "UNSETTLED_SOURCE",
    "fetch_settled_rows",
    "fetch_unsettled_rows",
    "finalize_all",
    "finalize_database_row",
    "load_database_rows",
    "payment_window",
]
