"""Pytest configuration for test isolation.

The workspace packages live under ``packages/`` and ``libs/db/src``; both are
put on ``sys.path`` (with the repo root, for ``tests.helpers``) so tests run
from a plain checkout as well as from an editable install.

``settlement_recon`` reads its configuration from environment variables and
keeps a process-wide cache bundle. An autouse fixture removes every config
variable and resets the default bundle so tests never see each other's
workbooks or a developer's ``.env``.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_EXTRA = [_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT]
sys.path[:0] = [str(p) for p in _EXTRA if str(p) not in sys.path]

_CONFIG_VARS = (
    "SETTLEMENT_PRIMARY_WORKBOOK",
    "ADDITIONAL_EXCEL_FILES",
    "SETTLEMENT_REFERENCE_WORKBOOK",
    "SETTLEMENT_REFERENCE_SHEET",
    "EXCEL_SHEET_NAME",
    "SETTLEMENT_CUTOVER_MONTH",
    "DATABASE_URL",
    "SETTLEMENT_OUTPUT_DIR",
    "SETTLEMENT_SOURCE_CACHE_SIZE",
    "RESPONSE_CACHE_TTL_MS",
    "SETTLEMENT_CLASSIFY_CONCURRENCY",
    "SKIP_FILE_WRITE",
    "REDUCE_LOG",
    "SETTLEMENT_WRITE_DIAGNOSTICS",
    "SETTLEMENT_USE_EMBEDDINGS",
    "SETTLEMENT_SNAPSHOT_KEY",
    "OPENAI_API_KEY",
)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Clear config variables, run from ``tmp_path`` and reset default caches."""

    import settlement_recon.api as api_mod

    for var in _CONFIG_VARS:
        monkeypatch.delenv(var, raising=False)
    # No stray .env from the developer's checkout.
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(api_mod, "_DEFAULT_CACHES", None)
