"""Result workbook writer.

The result is a copy of the source workbook in which the processed sheet
keeps its original layout and gains the assigned category in its category
column. Optional diagnostic columns record how each category was decided.
The next run reads this file back as its prior-run snapshot.

Writes go to ``<name>.tmp`` first and are moved into place with
``os.replace``; a file held open by another program surfaces as
``WriteConflict``.
"""

from __future__ import annotations

import contextlib
import errno
import os
import zipfile
from collections.abc import Mapping
from os import PathLike
from pathlib import Path

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .errors import ParseFailure, SourceUnavailable, WriteConflict
from .logging_setup import get_logger
from .models import Classification

RESULT_SUFFIX = "_result"
DIAGNOSTIC_HEADERS: tuple[str, str] = ("matchMethod", "matchConfidence")

_LOCKED_ERRNOS = {errno.EBUSY, errno.EACCES, errno.EPERM}

_logger = get_logger("settlement_recon.output")


def result_path_for(
    source: str | PathLike[str], output_dir: str | PathLike[str] | None = None
) -> Path:
    """``<dir>/<stem>_result.xlsx`` for a source workbook."""

    src = Path(source)
    directory = Path(output_dir) if output_dir is not None else src.parent
    return directory / f"{src.stem}{RESULT_SUFFIX}.xlsx"


def _is_locked(exc: OSError) -> bool:
    return isinstance(exc, PermissionError) or exc.errno in _LOCKED_ERRNOS


def write_result_workbook(
    source: str | PathLike[str],
    sheet: str,
    *,
    header_index: int,
    category_column: int,
    categories: Mapping[int, Classification],
    target: str | PathLike[str] | None = None,
    diagnostics: bool = False,
) -> Path:
    """Write the categorized copy of ``source`` and return its path.

    ``header_index`` and ``category_column`` are 0-based grid coordinates;
    ``categories`` maps each data-row ordinal (0 = first row under the header)
    to its decided classification. Rows missing from the mapping keep their
    cell untouched.
    """

    src = Path(source)
    out = Path(target) if target is not None else result_path_for(src)
    try:
        wb = load_workbook(src)
    except FileNotFoundError as e:
        raise SourceUnavailable(src, "file not found") from e
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise ParseFailure(src, f"not a readable workbook ({e.__class__.__name__})") from e

    try:
        if sheet not in wb.sheetnames:
            raise ParseFailure(src, f"sheet {sheet!r} not found")
        ws = wb[sheet]
        # openpyxl is 1-based.
        header_row = header_index + 1
        cat_col = category_column + 1
        diag_col = max(ws.max_column, cat_col) + 1
        if diagnostics:
            for offset, label in enumerate(DIAGNOSTIC_HEADERS):
                ws.cell(row=header_row, column=diag_col + offset, value=label)

        for ordinal, cls in categories.items():
            row = header_row + 1 + ordinal
            ws.cell(row=row, column=cat_col, value=cls.account_category)
            if diagnostics:
                ws.cell(row=row, column=diag_col, value=cls.match_method)
                ws.cell(row=row, column=diag_col + 1, value=cls.match_confidence)

        tmp = out.with_name(out.name + ".tmp")
        try:
            wb.save(tmp)
            os.replace(tmp, out)
        except OSError as e:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            if _is_locked(e):
                raise WriteConflict(out, "file is locked or busy") from e
            raise
    finally:
        wb.close()

    _logger.info("output:written path=%s rows=%d", out.name, len(categories))
    return out


__all__ = ["DIAGNOSTIC_HEADERS", "result_path_for", "write_result_workbook"]
