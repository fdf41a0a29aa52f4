# ruff: noqa: E402, I001
from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

import settlement_recon.api as api_mod
import settlement_recon.cli as cli_mod
from settlement_recon.cli import EXIT_RETRY_LATER, app
from settlement_recon.errors import WriteConflict
from tests.helpers.db import bootstrap_sqlite_db, sample_transfers, seed_transfers
from tests.helpers.workbooks import sample_workbook

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    # Configuring the package logger would detach it from pytest's capture.
    monkeypatch.setattr(cli_mod, "configure_logging", lambda **kw: None)


@pytest.fixture()
def configured(tmp_path, monkeypatch: pytest.MonkeyPatch):
    ledger = sample_workbook(tmp_path / "ledger.xlsx")
    url = bootstrap_sqlite_db(tmp_path / "erp.sqlite3")
    seed_transfers(url, sample_transfers())
    monkeypatch.setenv("SETTLEMENT_PRIMARY_WORKBOOK", str(ledger))
    monkeypatch.setenv("DATABASE_URL", url)
    return ledger


def test_reconcile_prints_monthly_summary(configured):
    result = runner.invoke(app, ["reconcile", "--skip-write"])

    assert result.exit_code == 0, result.output
    lines = result.stdout.splitlines()
    assert lines[0] == "period\ttotal\trows"
    assert lines[1:5] == [
        "2025-12\t1,200\t1",
        "2025-11\t5,000\t1",
        "2025-02\t500\t1",
        "2025-01\t3,000\t2",
    ]
    assert "top category: 지급수수료 (5,000)" in result.stdout
    assert not configured.with_name("ledger_result.xlsx").exists()


def test_reconcile_json_with_counterparty_filter(configured):
    result = runner.invoke(app, ["reconcile", "--json", "--skip-write", "--counterparty", "알파"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert [r["counterparty"] for r in payload["detail"]] == ["(주)알파", "알파상사"]
    assert payload["detail"][1]["provenance"] == "database"
    assert payload["monthlySummary"][0] == {"period": "2025-11", "total": "5000.00", "rows": 1}


def test_reconcile_writes_result_file(configured):
    result = runner.invoke(app, ["reconcile"])

    assert result.exit_code == 0, result.output
    assert f"wrote {configured.with_name('ledger_result.xlsx')}" in result.stdout


def test_reconcile_without_sources_is_a_config_error():
    result = runner.invoke(app, ["reconcile"])

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_reconcile_rejects_bad_period(configured):
    result = runner.invoke(app, ["reconcile", "--period", "2025"])

    assert result.exit_code == 1


def test_reconcile_locked_output_exits_retry_later(configured, monkeypatch: pytest.MonkeyPatch):
    def _locked(*a, **kw):
        raise WriteConflict("ledger_result.xlsx", "file is locked or busy")

    monkeypatch.setattr(api_mod, "write_result_workbook", _locked)

    result = runner.invoke(app, ["reconcile"])

    assert result.exit_code == EXIT_RETRY_LATER
    assert "Close the file" in result.output


def test_classify_and_vocabulary_commands(tmp_path):
    ledger = sample_workbook(tmp_path / "ledger.xlsx")

    classified = runner.invoke(app, ["classify", "11월|운반비|택배", "--workbook", str(ledger)])
    assert classified.exit_code == 0, classified.output
    assert classified.stdout.strip() == "운반비\tpattern-extract\t1.00"

    listed = runner.invoke(app, ["vocabulary", "--workbook", str(ledger), "--sheet", "2025moca"])
    assert listed.exit_code == 0, listed.output
    assert listed.stdout.split() == ["운반비", "복리후생비", "지급수수료"]


def test_classify_missing_workbook(tmp_path):
    result = runner.invoke(app, ["classify", "x", "--workbook", str(tmp_path / "absent.xlsx")])

    assert result.exit_code == 1


def test_no_subcommand_shows_help():
    result = runner.invoke(app, [])

    assert "reconcile" in result.output
