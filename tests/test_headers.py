# ruff: noqa: E402, I001
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from settlement_recon.headers import cell_text, locate_header
from tests.helpers.workbooks import TX_HEADER, TX_HEADER_ROW, tx_sheet


def test_primary_label_in_first_cell_after_metadata_rows():
    header = locate_header(tx_sheet([]))

    assert header.index == TX_HEADER_ROW
    assert header.rule == "primary"
    assert header.labels[13] == "정산월"


def test_secondary_column_match():
    grid = [
        ["보고서"],
        ["", "", "", "거래처명 합계", "금액"],
        ["a", "b", "c", "d", 1],
    ]

    header = locate_header(grid)

    assert (header.index, header.rule) == (1, "secondary")


def test_keyword_threshold():
    grid = [
        ["title"],
        ["No", "전표번호", "통화", "잔액"],
        ["1", "A-1", "KRW", 0],
    ]

    header = locate_header(grid)

    assert (header.index, header.rule) == (1, "keywords")


def test_two_keywords_are_not_enough_and_default_is_row_zero():
    grid = [["title"], ["No", "전표번호", "통화"], ["1", "A-1", "KRW"]]

    header = locate_header(grid)

    assert (header.index, header.rule) == (0, "default")


def test_header_beyond_scan_window_is_ignored():
    grid = [["filler"]] * 10 + [TX_HEADER]

    assert locate_header(grid).index == 0


def test_find_and_find_all():
    header = locate_header(tx_sheet([]))

    assert header.find("출금액") == 6
    assert header.find("없음") == -1
    assert header.find_all("계정명") == [2, 10]
    assert header.find("계정", exact=True) == -1


def test_cell_text_normalizes_numbers_and_dates():
    assert cell_text(None) == ""
    assert cell_text(202511.0) == "202511"
    assert cell_text(Decimal("12.00")) == "12"
    assert cell_text(datetime(2025, 3, 4)) == "2025-03-04"
    assert cell_text("  x ") == "x"
