# ruff: noqa: E402, I001
from __future__ import annotations

import os

import pytest

from settlement_recon.errors import SourceUnavailable
from settlement_recon.vocabulary import VocabularyLoader, contains, load_vocabulary
from settlement_recon.workbook import WorkbookCache
from tests.helpers.workbooks import reference_sheet, write_workbook


def test_load_vocabulary_distinct_first_seen_order_without_placeholders():
    grid = reference_sheet(["운반비", " 복리후생비 ", "-", "", "운반비", "지급수수료"])

    assert load_vocabulary(grid) == ("운반비", "복리후생비", "지급수수료")


def test_marker_header_overrides_fixed_column():
    grid = [
        ["비고", "합계잔액시산표"],
        ["x", "여비교통비"],
        ["y", "통신비"],
    ]

    assert load_vocabulary(grid) == ("여비교통비", "통신비")


def test_fixed_column_when_marker_absent():
    row = [None] * 13
    row[12] = "소모품비"
    grid = [["비고"], row]

    assert load_vocabulary(grid) == ("소모품비",)


def test_contains_is_exact_after_trim():
    vocab = ("운반비", "복리후생비")

    assert contains(vocab, " 운반비 ") == "운반비"
    assert contains(vocab, "운반") is None
    assert contains(vocab, "  ") is None


def test_loader_memoizes_and_reloads_on_rewrite(tmp_path):
    path = write_workbook(tmp_path / "ref.xlsx", {"2025moca": reference_sheet(["운반비"])})
    loader = VocabularyLoader(WorkbookCache())

    first = loader.load(path, "2025moca")
    assert loader.load(path, "2025moca") is first

    write_workbook(path, {"2025moca": reference_sheet(["운반비", "통신비"])})
    st = os.stat(path)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 5_000_000_000))

    assert loader.load(path, "2025moca") == ("운반비", "통신비")


def test_loader_missing_workbook(tmp_path):
    loader = VocabularyLoader(WorkbookCache())

    with pytest.raises(SourceUnavailable):
        loader.load(tmp_path / "absent.xlsx", "2025moca")
