# ruff: noqa: E402, I001
from __future__ import annotations

import errno
from datetime import datetime

import pytest
from openpyxl import load_workbook

import settlement_recon.output as output_mod
from settlement_recon.errors import WriteConflict
from settlement_recon.models import Classification, SENTINEL_CLASSIFICATION
from settlement_recon.output import result_path_for, write_result_workbook
from tests.helpers.workbooks import CATEGORY_COL, TX_HEADER_ROW, tx_row, tx_sheet, write_workbook

HIT = Classification(account_category="운반비", match_method="pattern-extract", match_confidence=1.0)


def _source(tmp_path):
    rows = [
        tx_row("알파", 1000, datetime(2025, 1, 15), "1월|운반비|택배", "2025-01"),
        tx_row("베타", 2000, datetime(2025, 1, 20), "무엇", "2025-01"),
    ]
    return write_workbook(tmp_path / "ledger.xlsx", {"2025": tx_sheet(rows), "other": [["keep"]]})


def test_result_path_for():
    assert result_path_for("/data/ledger.xlsx").as_posix() == "/data/ledger_result.xlsx"
    assert result_path_for("/data/ledger.xlsx", "/out").as_posix() == "/out/ledger_result.xlsx"


def test_writes_categories_into_a_copy_and_keeps_layout(tmp_path):
    src = _source(tmp_path)

    out = write_result_workbook(
        src,
        "2025",
        header_index=TX_HEADER_ROW,
        category_column=CATEGORY_COL,
        categories={0: HIT, 1: SENTINEL_CLASSIFICATION},
    )

    assert out == tmp_path / "ledger_result.xlsx"
    wb = load_workbook(out)
    ws = wb["2025"]
    first_data = TX_HEADER_ROW + 2
    assert ws.cell(row=first_data, column=CATEGORY_COL + 1).value == "운반비"
    assert ws.cell(row=first_data + 1, column=CATEGORY_COL + 1).value == "기타"
    assert ws.cell(row=first_data, column=9).value == "1월|운반비|택배"
    assert wb["other"]["A1"].value == "keep"
    assert not (tmp_path / "ledger_result.xlsx.tmp").exists()
    # The source itself is untouched.
    assert load_workbook(src)["2025"].cell(row=first_data, column=CATEGORY_COL + 1).value is None


def test_diagnostic_columns(tmp_path):
    src = _source(tmp_path)

    out = write_result_workbook(
        src,
        "2025",
        header_index=TX_HEADER_ROW,
        category_column=CATEGORY_COL,
        categories={0: HIT},
        diagnostics=True,
    )

    ws = load_workbook(out)["2025"]
    header_row = TX_HEADER_ROW + 1
    assert ws.cell(row=header_row, column=15).value == "matchMethod"
    assert ws.cell(row=header_row, column=16).value == "matchConfidence"
    assert ws.cell(row=header_row + 1, column=15).value == "pattern-extract"
    assert ws.cell(row=header_row + 1, column=16).value == 1.0


def test_locked_target_raises_write_conflict(tmp_path, monkeypatch: pytest.MonkeyPatch):
    src = _source(tmp_path)

    def _busy(a, b):
        raise OSError(errno.EBUSY, "Device or resource busy")

    monkeypatch.setattr(output_mod.os, "replace", _busy)

    with pytest.raises(WriteConflict) as exc:
        write_result_workbook(
            src, "2025", header_index=TX_HEADER_ROW, category_column=CATEGORY_COL, categories={}
        )
    assert exc.value.retryable
    assert "ledger_result.xlsx" in str(exc.value)
    assert not (tmp_path / "ledger_result.xlsx.tmp").exists()
