"""Public API and orchestration for ``settlement_recon``.

:func:`reconcile` runs one reconciliation end to end:

1. load the reference vocabulary;
2. load every source concurrently (each workbook, the settled query and the
   unsettled query); a failing source is logged and contributes no rows;
3. per workbook, read the previous result file as a prior-run snapshot;
4. classify every distinct narrative that cannot reuse a prior category,
   in a bounded batch, through the shared classification cache;
5. merge, write the per-workbook result files, and aggregate both sources
   around the cutover month.

Caches live in a :class:`Caches` bundle. A process-wide default bundle is
created on first use; hosts and tests may pass their own.
:func:`invalidate_caches` clears all of them together.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

from .aggregate import narrow, reconcile_sources
from .cache import BoundedCache, ClassificationCache
from .classifier import (
    ChainedStrategy,
    ClassificationStrategy,
    PatternExtractStrategy,
    strategy_name,
)
from .config import ReconcileConfig
from .database import (
    SETTLED_SOURCE,
    UNSETTLED_SOURCE,
    fetch_settled_rows,
    fetch_unsettled_rows,
    finalize_all,
    load_database_rows,
)
from .errors import SourceUnavailable
from .headers import HeaderLocation, locate_header
from .logging_setup import get_logger, log_duration
from .merge import (
    KEY_FUNCTIONS,
    merge_categories,
    merge_stats,
    pending_narratives,
    read_prior_snapshot,
)
from .models import Classification, LedgerRow, PeriodRange, ReconciledLedger
from .output import result_path_for, write_result_workbook
from .pmap import p_map
from .projection import RowDraft, SheetColumns, finalize, project_rows, to_draft
from .similarity import EmbeddingSimilarityStrategy
from .vocabulary import ReferenceVocabulary, VocabularyLoader
from .workbook import WorkbookCache

_logger = get_logger("settlement_recon.api")


# ---------------------------------------------------------------------------
# Cache bundle
# ---------------------------------------------------------------------------


@dataclass
class Caches:
    workbooks: WorkbookCache
    vocabulary: VocabularyLoader
    classifications: ClassificationCache
    results: BoundedCache[str, ReconcileReport]

    @classmethod
    def create(
        cls, *, source_cache_size: int = 10, result_ttl_seconds: float = 300.0
    ) -> Caches:
        workbooks = WorkbookCache(BoundedCache(source_cache_size, name="workbook"))
        return cls(
            workbooks=workbooks,
            vocabulary=VocabularyLoader(workbooks),
            classifications=ClassificationCache(),
            results=BoundedCache(32, ttl_seconds=result_ttl_seconds, name="result"),
        )

    @classmethod
    def for_config(cls, config: ReconcileConfig) -> Caches:
        return cls.create(
            source_cache_size=config.source_cache_size,
            result_ttl_seconds=config.result_cache_ttl_seconds,
        )

    def invalidate(self) -> None:
        self.workbooks.clear()
        self.vocabulary.invalidate()
        self.classifications.clear()
        self.results.clear()


_DEFAULT_CACHES: Caches | None = None
_DEFAULT_LOCK = threading.Lock()


def default_caches(config: ReconcileConfig | None = None) -> Caches:
    """Process-wide cache bundle, sized from the first config that asks."""

    global _DEFAULT_CACHES
    with _DEFAULT_LOCK:
        if _DEFAULT_CACHES is None:
            _DEFAULT_CACHES = Caches.for_config(config) if config else Caches.create()
        return _DEFAULT_CACHES


def invalidate_caches(caches: Caches | None = None) -> None:
    """Clear source, vocabulary, classification and result caches together."""

    target = caches if caches is not None else _DEFAULT_CACHES
    if target is not None:
        target.invalidate()
    _logger.info("api:invalidate_caches")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReconcileReport:
    ledger: ReconciledLedger
    outputs: tuple[Path, ...] = ()
    failed_sources: tuple[SourceUnavailable, ...] = ()
    merge: dict[str, int] = field(default_factory=dict)
    vocabulary_size: int = 0


@dataclass(frozen=True, slots=True)
class SheetLoad:
    """One transactional sheet projected into drafts."""

    path: Path
    sheet: str
    header: HeaderLocation
    columns: SheetColumns
    drafts: tuple[RowDraft, ...]


@dataclass(frozen=True, slots=True)
class _DatabaseLoad:
    source: str
    drafts: tuple[RowDraft, ...]


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def build_strategy(config: ReconcileConfig) -> ClassificationStrategy:
    if config.use_embeddings:
        return ChainedStrategy(PatternExtractStrategy(), EmbeddingSimilarityStrategy())
    return PatternExtractStrategy()


def load_reference_vocabulary(config: ReconcileConfig, caches: Caches) -> ReferenceVocabulary:
    """Vocabulary from the reference sheet; empty (all rows ``기타``) when unreadable."""

    path = config.vocabulary_workbook
    if path is None:
        _logger.warning("vocabulary:unavailable reason=no reference workbook configured")
        return ()
    try:
        return caches.vocabulary.load(path, config.reference_sheet)
    except SourceUnavailable as e:
        _logger.warning("vocabulary:unavailable source=%s reason=%s", e.source, e.reason)
        return ()


def load_sheet(
    path: str | Path, sheet: str, workbooks: WorkbookCache, *, fallbacks: Sequence[str] = ()
) -> SheetLoad:
    """Locate the header of a transactional sheet and project its rows."""

    p = Path(path)
    # The result file and the next snapshot must address the sheet actually read.
    sheet = workbooks.resolve_sheet(p, sheet, fallbacks=fallbacks)
    grid = workbooks.sheet(p, sheet)
    header = locate_header(grid)
    columns = SheetColumns.resolve(header)
    drafts = tuple(
        to_draft(row, columns, source=p.name, index=i)
        for i, row in enumerate(project_rows(grid, header))
        if not row.is_blank()
    )
    _logger.info(
        "source:loaded path=%s header_row=%d rule=%s rows=%d",
        p.name,
        header.index,
        header.rule,
        len(drafts),
    )
    return SheetLoad(path=p, sheet=sheet, header=header, columns=columns, drafts=drafts)


def classify_batch(
    narratives: Sequence[str],
    classify_fn: Callable[[str], Classification],
    *,
    concurrency: int,
) -> None:
    """Warm the classification cache for ``narratives`` with bounded fan-out."""

    if not narratives:
        return
    with log_duration(
        _logger, "classify:batch", narratives=len(narratives), concurrency=concurrency
    ):
        p_map(narratives, classify_fn, concurrency=concurrency)


def _load_sources(
    config: ReconcileConfig,
    caches: Caches,
    *,
    counterparty: str | None,
    period_range: PeriodRange | None,
) -> tuple[list[SheetLoad], list[_DatabaseLoad], list[SourceUnavailable]]:
    tasks: list[tuple[str, Callable[[], SheetLoad | _DatabaseLoad]]] = []
    for path in config.workbooks:
        tasks.append(
            (
                str(path),
                partial(
                    load_sheet,
                    path,
                    config.transaction_sheet,
                    caches.workbooks,
                    fallbacks=config.transaction_sheet_fallbacks,
                ),
            )
        )

    if config.database_url:
        def _settled() -> _DatabaseLoad:
            drafts = load_database_rows(
                lambda s: fetch_settled_rows(
                    s,
                    config.cutover_month,
                    counterparty=counterparty,
                    period_range=period_range,
                ),
                database_url=config.database_url,
                label=SETTLED_SOURCE,
            )
            return _DatabaseLoad(SETTLED_SOURCE, tuple(drafts))

        def _unsettled() -> _DatabaseLoad:
            drafts = load_database_rows(
                lambda s: fetch_unsettled_rows(s, user=counterparty),
                database_url=config.database_url,
                label=UNSETTLED_SOURCE,
            )
            return _DatabaseLoad(UNSETTLED_SOURCE, tuple(drafts))

        tasks.append((SETTLED_SOURCE, _settled))
        tasks.append((UNSETTLED_SOURCE, _unsettled))
    else:
        _logger.info("source:skipped source=database reason=no database URL configured")

    with log_duration(_logger, "source:load", sources=len(tasks)):
        outcomes = p_map(
            tasks,
            lambda t: t[1](),
            concurrency=config.source_concurrency,
            return_exceptions=True,
        )

    sheets: list[SheetLoad] = []
    db_loads: list[_DatabaseLoad] = []
    failures: list[SourceUnavailable] = []
    for (label, _), outcome in zip(tasks, outcomes, strict=True):
        if isinstance(outcome, SourceUnavailable):
            _logger.warning(
                "source:unavailable source=%s reason=%s", outcome.source, outcome.reason
            )
            failures.append(outcome)
        elif isinstance(outcome, BaseException):
            # Unexpected failures still degrade the single source.
            _logger.error("source:failed source=%s error=%r", label, outcome)
            failures.append(SourceUnavailable(label, f"{outcome.__class__.__name__}: {outcome}"))
        elif isinstance(outcome, SheetLoad):
            sheets.append(outcome)
        else:
            db_loads.append(outcome)
    return sheets, db_loads, failures


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def reconcile(
    config: ReconcileConfig,
    *,
    period: str | PeriodRange | None = None,
    counterparty: str | None = None,
    caches: Caches | None = None,
    strategy: ClassificationStrategy | None = None,
) -> ReconcileReport:
    """Run one reconciliation and return its report.

    ``period`` (``"YYYY-MM ~ YYYY-MM"``) and ``counterparty`` narrow the
    returned ledger. Reports are memoized per (config, strategy, filters) for
    ``config.result_cache_ttl_seconds``. Raises ``WriteConflict`` when a
    result workbook is locked by another program.
    """

    caches = caches if caches is not None else default_caches(config)
    period_range = PeriodRange.parse(period) if isinstance(period, str) else period
    strat = strategy or build_strategy(config)
    namespace = strategy_name(strat)
    cache_key = "|".join(
        (
            config.model_dump_json(),
            namespace,
            f"{period_range.start}~{period_range.end}" if period_range else "",
            (counterparty or "").strip(),
        )
    )
    cached = caches.results.get(cache_key)
    if cached is not None:
        _logger.info("api:result_cache_hit")
        return cached

    vocabulary = load_reference_vocabulary(config, caches)

    def classify_fn(narrative: str) -> Classification:
        return caches.classifications.get_or_compute(
            narrative, vocabulary, strat.classify, namespace=namespace
        )

    sheets, db_loads, failures = _load_sources(
        config, caches, counterparty=counterparty, period_range=period_range
    )

    key_fn = KEY_FUNCTIONS[config.snapshot_key]
    snapshots = {
        s.path: read_prior_snapshot(
            result_path_for(s.path, config.output_dir), s.sheet, caches.workbooks, key_fn=key_fn
        )
        for s in sheets
    }

    pending: dict[str, None] = {}
    for s in sheets:
        fresh = pending_narratives(s.drafts, snapshots[s.path], key_fn=key_fn)
        pending.update(dict.fromkeys(fresh))
    for load in db_loads:
        pending.update(dict.fromkeys(d.narrative.strip() for d in load.drafts))
    classify_batch(list(pending), classify_fn, concurrency=config.classify_concurrency)

    spreadsheet_rows: list[LedgerRow] = []
    unresolved: list[RowDraft] = []
    outputs: list[Path] = []
    totals = {"reused": 0, "fresh": 0, "sentinel": 0}
    for s in sheets:
        decisions = merge_categories(s.drafts, snapshots[s.path], classify_fn, key_fn=key_fn)
        for k, v in merge_stats(decisions).items():
            totals[k] += v
        for d, dec in zip(s.drafts, decisions, strict=True):
            if d.period is None:
                unresolved.append(d)
            else:
                spreadsheet_rows.append(finalize(d, dec.classification))
        if not config.skip_file_write:
            outputs.append(
                write_result_workbook(
                    s.path,
                    s.sheet,
                    header_index=s.header.index,
                    category_column=s.columns.category_index,
                    categories={
                        d.index: dec.classification
                        for d, dec in zip(s.drafts, decisions, strict=True)
                    },
                    target=result_path_for(s.path, config.output_dir),
                    diagnostics=config.write_diagnostics,
                )
            )

    database_rows: list[LedgerRow] = []
    unsettled_rows: list[LedgerRow] = []
    for load in db_loads:
        settled = load.source == SETTLED_SOURCE
        rows, missing = finalize_all(load.drafts, classify_fn, settled=settled)
        (database_rows if settled else unsettled_rows).extend(rows)
        unresolved.extend(missing)

    ledger = reconcile_sources(
        spreadsheet_rows,
        database_rows,
        config.cutover_month,
        unresolved=unresolved,
        unsettled=unsettled_rows,
    )
    ledger = narrow(ledger, period_range=period_range, counterparty=counterparty)

    report = ReconcileReport(
        ledger=ledger,
        outputs=tuple(outputs),
        failed_sources=tuple(failures),
        merge=totals,
        vocabulary_size=len(vocabulary),
    )
    _logger.info(
        "api:reconciled rows=%d unsettled=%d reused=%d fresh=%d failed_sources=%d",
        len(ledger.detail),
        len(ledger.unsettled),
        totals["reused"],
        totals["fresh"],
        len(failures),
    )
    caches.results.set(cache_key, report)
    return report


def classify_narrative(
    narrative: str,
    workbook: str | Path,
    *,
    sheet: str,
    caches: Caches | None = None,
    strategy: ClassificationStrategy | None = None,
) -> Classification:
    """Classify one narrative against the vocabulary of ``workbook``/``sheet``."""

    caches = caches if caches is not None else default_caches()
    vocabulary = caches.vocabulary.load(workbook, sheet)
    strat = strategy or PatternExtractStrategy()
    return caches.classifications.get_or_compute(
        narrative, vocabulary, strat.classify, namespace=strategy_name(strat)
    )


__all__ = [
    "Caches",
    "ReconcileReport",
    "SheetLoad",
    "classify_batch",
    "classify_narrative",
    "default_caches",
    "invalidate_caches",
    "load_reference_vocabulary",
    "load_sheet",
    "reconcile",
]
