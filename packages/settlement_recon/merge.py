"""Incremental merge of categories against a previous run's output.

A re-run must not churn categories that were already assigned (possibly by
hand) in an earlier output. The previous output is re-read into a
:data:`~settlement_recon.models.PriorRunSnapshot`; for every current row whose
snapshot entry carries the same trimmed narrative, the prior category is
reused verbatim and the classifier is not called.

Rows are matched by ordinal position by default. ``content_key`` offers a
fingerprint over the row's identifying fields for inputs that get re-sorted
between runs.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from os import PathLike
from pathlib import Path

from .errors import SourceUnavailable
from .headers import locate_header
from .logging_setup import get_logger
from .models import (
    METHOD_PRIOR_RUN,
    Classification,
    PriorRunSnapshot,
    SnapshotEntry,
    SnapshotKey,
)
from .projection import RowDraft, SheetColumns, project_rows, to_draft
from .workbook import WorkbookCache

type KeyFn = Callable[[RowDraft], SnapshotKey]

# The previous output keeps the original layout, so the same header cues apply.
SNAPSHOT_HEADER_LABELS: tuple[str, ...] = ("거래처명", "비고", "적요")

_logger = get_logger("settlement_recon.merge")


def ordinal_key(draft: RowDraft) -> SnapshotKey:
    return draft.index


def content_key(draft: RowDraft) -> SnapshotKey:
    """Stable SHA-256 over counterparty, payment date, amount and period."""

    payload = {
        "counterparty": draft.counterparty.strip(),
        "payment_date": draft.payment_date,
        "amount": f"{draft.amount:.2f}",
        "period": draft.period,
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


KEY_FUNCTIONS: dict[str, KeyFn] = {"ordinal": ordinal_key, "content": content_key}


def read_prior_snapshot(
    path: str | PathLike[str],
    sheet: str,
    workbooks: WorkbookCache,
    *,
    key_fn: KeyFn = ordinal_key,
) -> PriorRunSnapshot | None:
    """Reconstruct narrative/category pairs from a previous output workbook.

    Returns ``None`` when the file does not exist (first run). Rows without a
    prior category are left out. With a content key, a fingerprint that occurs
    more than once keeps its first row.
    """

    p = Path(path)
    if not p.exists():
        return None
    try:
        grid = workbooks.sheet(p, sheet)
    except SourceUnavailable as e:
        _logger.warning("merge:snapshot_unreadable path=%s reason=%s", p.name, e.reason)
        return None

    header = locate_header(grid, primary_labels=SNAPSHOT_HEADER_LABELS)
    columns = SheetColumns.resolve(header)
    snapshot: dict[SnapshotKey, SnapshotEntry] = {}
    for i, row in enumerate(project_rows(grid, header)):
        draft = to_draft(row, columns, source=p.name, index=i)
        if not draft.existing_category:
            continue
        snapshot.setdefault(
            key_fn(draft),
            SnapshotEntry(narrative=draft.narrative, account_category=draft.existing_category),
        )
    _logger.info("merge:snapshot path=%s entries=%d", p.name, len(snapshot))
    return snapshot


@dataclass(frozen=True, slots=True)
class MergeDecision:
    classification: Classification
    reused: bool


def _reusable(
    draft: RowDraft, snapshot: PriorRunSnapshot | None, key_fn: KeyFn
) -> SnapshotEntry | None:
    if not snapshot:
        return None
    entry = snapshot.get(key_fn(draft))
    if entry is None:
        return None
    if entry.narrative.strip() != draft.narrative.strip():
        return None
    return entry


def pending_narratives(
    drafts: Iterable[RowDraft],
    snapshot: PriorRunSnapshot | None,
    *,
    key_fn: KeyFn = ordinal_key,
) -> list[str]:
    """Distinct trimmed narratives that need fresh classification."""

    seen: dict[str, None] = {}
    for d in drafts:
        if _reusable(d, snapshot, key_fn) is None:
            seen.setdefault(d.narrative.strip(), None)
    return list(seen)


def merge_categories(
    drafts: Sequence[RowDraft],
    snapshot: PriorRunSnapshot | None,
    classify_fn: Callable[[str], Classification],
    *,
    key_fn: KeyFn = ordinal_key,
) -> list[MergeDecision]:
    """Decide each row's category, reusing prior-run categories where valid.

    A reused category is kept even when it is no longer in the reference
    vocabulary. ``classify_fn`` is called only for rows that are not reused.
    """

    decisions: list[MergeDecision] = []
    for d in drafts:
        entry = _reusable(d, snapshot, key_fn)
        if entry is not None:
            decisions.append(
                MergeDecision(
                    classification=Classification(
                        account_category=entry.account_category,
                        match_method=METHOD_PRIOR_RUN,
                        match_confidence=1.0,
                    ),
                    reused=True,
                )
            )
        else:
            decisions.append(MergeDecision(classification=classify_fn(d.narrative), reused=False))
    return decisions


def merge_stats(decisions: Iterable[MergeDecision]) -> dict[str, int]:
    stats = {"reused": 0, "fresh": 0, "sentinel": 0}
    for dec in decisions:
        if dec.reused:
            stats["reused"] += 1
        else:
            stats["fresh"] += 1
            if dec.classification.is_sentinel:
                stats["sentinel"] += 1
    return stats


__all__ = [
    "KEY_FUNCTIONS",
    "MergeDecision",
    "content_key",
    "merge_categories",
    "merge_stats",
    "ordinal_key",
    "pending_narratives",
    "read_prior_snapshot",
]
