"""Public interface for the ``settlement_recon`` package.

This module exposes the package's API functions and public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
"""

from .aggregate import reconcile_sources
from .api import Caches, ReconcileReport, classify_narrative, invalidate_caches, reconcile
from .classifier import ChainedStrategy, ClassificationStrategy, PatternExtractStrategy, classify
from .config import ReconcileConfig
from .errors import ConfigError, ParseFailure, ReconcileError, SourceUnavailable, WriteConflict
from .models import (
    Classification,
    DroppedRow,
    LedgerRow,
    MonthlyTotal,
    PeriodRange,
    Provenance,
    ReconciledLedger,
)

__all__ = [
    # API
    "reconcile",
    "reconcile_sources",
    "classify",
    "classify_narrative",
    "invalidate_caches",
    "Caches",
    "ReconcileConfig",
    "ReconcileReport",
    # Strategies
    "ClassificationStrategy",
    "PatternExtractStrategy",
    "ChainedStrategy",
    # Models / types
    "Classification",
    "LedgerRow",
    "DroppedRow",
    "MonthlyTotal",
    "PeriodRange",
    "Provenance",
    "ReconciledLedger",
    # Errors
    "ReconcileError",
    "ConfigError",
    "SourceUnavailable",
    "ParseFailure",
    "WriteConflict",
]
