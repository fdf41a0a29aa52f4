# ruff: noqa: E402, I001
from __future__ import annotations

from pathlib import Path

import pytest

from settlement_recon.config import ReconcileConfig
from settlement_recon.errors import ConfigError


def test_from_env_reads_variables():
    env = {
        "SETTLEMENT_PRIMARY_WORKBOOK": "/data/main.xlsx",
        "ADDITIONAL_EXCEL_FILES": "/data/a.xlsx, /data/b.xlsx,,",
        "EXCEL_SHEET_NAME": "2026",
        "SETTLEMENT_CUTOVER_MONTH": "2026-01",
        "DATABASE_URL": "sqlite+pysqlite:///erp.db",
        "RESPONSE_CACHE_TTL_MS": "1500",
        "SKIP_FILE_WRITE": "true",
        "REDUCE_LOG": "0",
        "SETTLEMENT_SNAPSHOT_KEY": "CONTENT",
    }

    cfg = ReconcileConfig.from_env(env)

    assert cfg.workbooks == (Path("/data/main.xlsx"), Path("/data/a.xlsx"), Path("/data/b.xlsx"))
    assert cfg.vocabulary_workbook == Path("/data/main.xlsx")
    assert cfg.transaction_sheet == "2026"
    assert cfg.cutover_month == "2026-01"
    assert cfg.result_cache_ttl_seconds == 1.5
    assert cfg.skip_file_write is True
    assert cfg.reduce_log is False
    assert cfg.snapshot_key == "content"


def test_defaults():
    cfg = ReconcileConfig.create(primary_workbook=Path("/data/main.xlsx"))

    assert cfg.reference_sheet == "2025moca"
    assert cfg.transaction_sheet == "2025"
    assert cfg.cutover_month == "2025-11"
    assert cfg.source_cache_size == 10
    assert cfg.result_cache_ttl_seconds == 300.0
    assert cfg.snapshot_key == "ordinal"


def test_overrides_win_and_none_is_ignored():
    env = {"DATABASE_URL": "sqlite+pysqlite:///a.db", "SKIP_FILE_WRITE": "1"}

    cfg = ReconcileConfig.from_env(env, database_url="sqlite+pysqlite:///b.db", skip_file_write=None)

    assert cfg.database_url == "sqlite+pysqlite:///b.db"
    assert cfg.skip_file_write is True


def test_reference_workbook_overrides_primary():
    cfg = ReconcileConfig.create(
        primary_workbook=Path("/data/main.xlsx"), reference_workbook=Path("/data/ref.xlsx")
    )

    assert cfg.vocabulary_workbook == Path("/data/ref.xlsx")


@pytest.mark.parametrize(
    "values",
    [
        {},
        {"database_url": "sqlite://", "cutover_month": "2025-13"},
        {"database_url": "sqlite://", "source_cache_size": 0},
        {"database_url": "sqlite://", "unknown": 1},
        {"database_url": "sqlite://", "snapshot_key": "position"},
    ],
)
def test_invalid_configs_raise_config_error(values):
    with pytest.raises(ConfigError):
        ReconcileConfig.create(**values)


def test_non_integer_env_value():
    with pytest.raises(ConfigError, match="integer"):
        ReconcileConfig.from_env({"DATABASE_URL": "sqlite://", "SETTLEMENT_SOURCE_CACHE_SIZE": "ten"})


def test_same_stem_into_one_output_dir_is_rejected():
    values = {
        "primary_workbook": Path("/data/jan/ledger.xlsx"),
        "additional_workbooks": (Path("/data/feb/ledger.xlsx"),),
    }

    # Side by side, each result lands next to its own source.
    assert len(ReconcileConfig.create(**values).workbooks) == 2
    with pytest.raises(ConfigError, match="ledger_result.xlsx"):
        ReconcileConfig.create(**values, output_dir=Path("/out"))
