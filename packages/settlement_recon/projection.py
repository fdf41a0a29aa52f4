"""Project raw worksheet grids into keyed rows and typed ledger drafts.

Two steps live here:

- ``project_rows``: every data row below the located header becomes a
  :class:`ProjectedRow`, a read-only mapping keyed by header label. Blank
  labels fall back to ``ColumnN`` (``N`` = 0-based cell index). When a label
  repeats, the last column wins for name-based access, and every column stays
  reachable through its ``ColumnN`` key. Missing cells read as ``""``.
- ``to_draft``: resolve the settlement columns of a transactional sheet and
  normalize period, payment date and amount into a :class:`RowDraft`. A draft
  becomes a :class:`~settlement_recon.models.LedgerRow` once it has a
  category (see :func:`finalize`).
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from .headers import HeaderLocation, cell_text
from .models import (
    UNSETTLED_MARKER,
    Classification,
    Grid,
    LedgerRow,
    Provenance,
)

# Column letters of the standard settlement export, used when a header label
# is missing: G=출금액, H=지급일, I=비고, J=사용처, K=계정명, N=정산월.
COL_AMOUNT = 6
COL_PAYMENT_DATE = 7
COL_NARRATIVE = 8
COL_MERCHANT = 9
COL_CATEGORY = 10
COL_PERIOD = 13

_EXCEL_EPOCH = date(1899, 12, 30)
# Serial numbers above this are not plausible Excel dates (year 2173+).
_EXCEL_SERIAL_MAX = 100_000

_YYYY_MM_RE = re.compile(r"^(\d{4})-(\d{2})$")
_YEAR_MONTH_LOOSE_RE = re.compile(r"(\d{4}).*?(\d{1,2})")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")

_DATE_FORMATS: tuple[str, ...] = ("%Y.%m.%d", "%Y/%m/%d", "%Y%m%d", "%m/%d/%Y", "%Y. %m. %d")


def positional_key(index: int) -> str:
    return f"Column{index}"


class ProjectedRow(Mapping[str, Any]):
    """Header-keyed view over one data row, with positional fallback keys."""

    __slots__ = ("_cells", "_values")

    def __init__(self, cells: list[Any], labels: tuple[str, ...]) -> None:
        width = max(len(cells), len(labels))
        normalized = [
            ("" if i >= len(cells) or cells[i] is None else cells[i]) for i in range(width)
        ]
        values: dict[str, Any] = {}
        for i, value in enumerate(normalized):
            label = labels[i] if i < len(labels) else ""
            if label:
                values[label] = value
        for i, value in enumerate(normalized):
            values[positional_key(i)] = value
        self._cells = normalized
        self._values = values

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def at(self, index: int) -> Any:
        """Cell value by 0-based column index (``""`` when out of range)."""

        if 0 <= index < len(self._cells):
            return self._cells[index]
        return ""

    def text(self, key: str) -> str:
        return cell_text(self._values.get(key, ""))

    def is_blank(self) -> bool:
        return all(cell_text(c) == "" for c in self._cells)

    def __repr__(self) -> str:  # pragma: no cover - debug aid
        return f"ProjectedRow({self._values!r})"


def project_rows(grid: Grid, header: HeaderLocation) -> list[ProjectedRow]:
    """Build keyed records for every row after ``header.index``."""

    return [ProjectedRow(list(row or []), header.labels) for row in grid[header.index + 1 :]]


# ---------------------------------------------------------------------------
# Value normalization
# ---------------------------------------------------------------------------


def _valid_month(year: str, month: str) -> str | None:
    m = int(month)
    if 1 <= m <= 12:
        return f"{year}-{m:02d}"
    return None


def _serial_to_date(serial: float) -> date:
    return _EXCEL_EPOCH + timedelta(days=int(serial))


def normalize_period(raw: Any) -> str | None:
    """Return a ``YYYY-MM`` settlement period, or ``None`` when unresolvable.

    Accepts ``YYYY-MM``, ``YYYY.MM``, ``YYYYMM`` (text or number), free text
    such as ``2025년 3월``, date/datetime cells and Excel serial dates. A raw
    label carrying the unsettled marker keeps it as a ``_미정산`` suffix so the
    aggregator can exclude it from totals.
    """

    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return f"{raw.year:04d}-{raw.month:02d}"
    if isinstance(raw, date):
        return f"{raw.year:04d}-{raw.month:02d}"
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        if isinstance(raw, float) and not raw.is_integer():
            # A month typed as a number: 2025.11, or 2025.1 for October.
            m = _YYYY_MM_RE.match(f"{raw:.2f}".replace(".", "-"))
            if m:
                return _valid_month(m.group(1), m.group(2))
        if 0 < raw < _EXCEL_SERIAL_MAX:
            d = _serial_to_date(raw)
            return f"{d.year:04d}-{d.month:02d}"

    text = cell_text(raw)
    if not text:
        return None
    suffix = f"_{UNSETTLED_MARKER}" if UNSETTLED_MARKER in text else ""
    candidate = text.replace(".", "-")

    period: str | None = None
    head = candidate[:7]
    m = _YYYY_MM_RE.match(head)
    if m:
        period = _valid_month(m.group(1), m.group(2))
    if period is None:
        digits = re.sub(r"[^0-9]", "", candidate)
        if len(digits) >= 6:
            period = _valid_month(digits[:4], digits[4:6])
    if period is None:
        m = _YEAR_MONTH_LOOSE_RE.search(candidate)
        if m:
            period = _valid_month(m.group(1), m.group(2))
    if period is None:
        return None
    return period + suffix


def normalize_date(raw: Any) -> str | None:
    """Return an ISO ``YYYY-MM-DD`` string when possible.

    Excel serial numbers are converted from the 1899-12-30 epoch. Strings that
    cannot be parsed are returned trimmed rather than discarded.
    """

    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        if 0 < raw < _EXCEL_SERIAL_MAX:
            return _serial_to_date(raw).isoformat()
        return cell_text(raw)

    s = cell_text(raw)
    if not s:
        return None
    if _ISO_DATE_RE.match(s):
        return s[:10]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date().isoformat()
        except ValueError:
            continue
    return s


def parse_amount(raw: Any) -> Decimal:
    """Parse a signed amount; anything unparseable reads as ``0``."""

    if raw is None or isinstance(raw, bool):
        return Decimal(0)
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        return Decimal(str(raw))
    cleaned = _NON_NUMERIC_RE.sub("", str(raw))
    if not cleaned:
        return Decimal(0)
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return Decimal(0)


# ---------------------------------------------------------------------------
# Transactional sheet columns
# ---------------------------------------------------------------------------


def _key_for(header: HeaderLocation, index: int) -> str:
    """Prefer the header label; use ``ColumnN`` for blank or repeated labels."""

    if index < 0:
        return ""
    label = header.labels[index] if index < len(header.labels) else ""
    if label and header.labels.count(label) == 1:
        return label
    return positional_key(index)


@dataclass(frozen=True, slots=True)
class SheetColumns:
    """Resolved access keys for the settlement fields of one sheet."""

    period: str
    payment_date: str
    amount: str
    narrative: str
    merchant: str
    category: str
    counterparty: str = ""

    @property
    def category_index(self) -> int:
        return int(self.category.removeprefix("Column"))

    @classmethod
    def resolve(cls, header: HeaderLocation) -> SheetColumns:
        """Locate settlement columns by label, falling back to fixed positions.

        The category column sits right after ``사용처`` when present; otherwise
        it is the second ``계정명`` column (the first one belongs to the ERP
        export), and finally column K.
        """

        def pick(default: int, *labels: str) -> int:
            idx = header.find(*labels)
            return idx if idx != -1 else default

        date_idx = pick(COL_PAYMENT_DATE, "지급일", "반제일", "만기일")
        amount_idx = pick(COL_AMOUNT, "출금액", "반제할금액", "사용금액")

        merchant_idx = header.find("사용처", exact=True)
        if merchant_idx != -1:
            category_idx = merchant_idx + 1
        else:
            account_cols = header.find_all("계정명")
            category_idx = account_cols[1] if len(account_cols) >= 2 else COL_CATEGORY

        return cls(
            period=_key_for(header, pick(COL_PERIOD, "정산월")),
            payment_date=_key_for(header, date_idx),
            amount=_key_for(header, amount_idx),
            narrative=_key_for(header, pick(COL_NARRATIVE, "비고", "적요", "내용")),
            merchant=_key_for(header, merchant_idx if merchant_idx != -1 else COL_MERCHANT),
            # Always positional: the category label repeats in ERP exports.
            category=positional_key(category_idx),
            counterparty=_key_for(header, header.find("거래처명")),
        )


@dataclass(frozen=True, slots=True)
class RowDraft:
    """A projected row with normalized fields, awaiting its category."""

    source: str
    index: int
    period: str | None
    raw_period: str
    payment_date: str | None
    amount: Decimal
    narrative: str
    merchant: str
    counterparty: str
    existing_category: str = ""


def to_draft(row: ProjectedRow, columns: SheetColumns, *, source: str, index: int) -> RowDraft:
    raw_period = row.get(columns.period, "")
    return RowDraft(
        source=source,
        index=index,
        period=normalize_period(raw_period),
        raw_period=cell_text(raw_period),
        payment_date=normalize_date(row.get(columns.payment_date, "")),
        amount=parse_amount(row.get(columns.amount, "")),
        narrative=row.text(columns.narrative),
        merchant=row.text(columns.merchant),
        counterparty=row.text(columns.counterparty) if columns.counterparty else "",
        existing_category=row.text(columns.category),
    )


def finalize(
    draft: RowDraft,
    classification: Classification,
    *,
    provenance: Provenance = Provenance.SPREADSHEET,
    settled: bool = True,
) -> LedgerRow:
    """Attach a classification to a draft. The draft must have a period."""

    if draft.period is None:
        raise ValueError(f"row {draft.source}[{draft.index}] has no resolvable period")
    return LedgerRow(
        period=draft.period,
        amount=draft.amount,
        narrative=draft.narrative,
        account_category=classification.account_category,
        match_method=classification.match_method,
        match_confidence=classification.match_confidence,
        provenance=provenance,
        payment_date=draft.payment_date,
        counterparty=draft.counterparty,
        merchant=draft.merchant,
        source=draft.source,
        source_index=draft.index,
        settled=settled,
    )


__all__ = [
    "ProjectedRow",
    "RowDraft",
    "SheetColumns",
    "finalize",
    "normalize_date",
    "normalize_period",
    "parse_amount",
    "positional_key",
    "project_rows",
    "to_draft",
]
