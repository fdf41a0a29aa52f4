"""Spreadsheet access with an mtime-keyed parse cache.

Workbooks are parsed with ``openpyxl`` into plain grids (one list of cell
values per row) so the rest of the pipeline never touches worksheet objects.
Parsed grids are memoized by ``(resolved path, st_mtime_ns)``: touching or
rewriting a file produces a new key, and entries for older versions of the
same file are dropped as soon as the new version is parsed. Other files age
out under the cache's FIFO capacity bound.
"""

from __future__ import annotations

import os
import zipfile
from collections.abc import Callable, Sequence
from os import PathLike
from pathlib import Path

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .cache import BoundedCache
from .errors import ParseFailure, SourceUnavailable
from .logging_setup import get_logger
from .models import Grid, WorkbookGrid

DEFAULT_CAPACITY: int = 10

type CacheKey = tuple[str, int]

_logger = get_logger("settlement_recon.workbook")


def _is_blank(cell: object) -> bool:
    return cell is None or (isinstance(cell, str) and not cell.strip())


def _trim_trailing_blank_rows(rows: Grid) -> Grid:
    end = len(rows)
    while end > 0 and all(_is_blank(c) for c in rows[end - 1]):
        end -= 1
    return rows[:end]


def read_workbook_grid(path: str | PathLike[str]) -> WorkbookGrid:
    """Parse every sheet of ``path`` into a grid of raw cell values.

    Formulas are read as their cached values. Raises ``SourceUnavailable`` when
    the file does not exist and ``ParseFailure`` when it is not a readable
    workbook.
    """

    p = Path(path)
    try:
        wb = load_workbook(p, read_only=True, data_only=True)
    except FileNotFoundError as e:
        raise SourceUnavailable(p, "file not found") from e
    except PermissionError as e:
        raise SourceUnavailable(p, "permission denied") from e
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise ParseFailure(p, f"not a readable workbook ({e.__class__.__name__}: {e})") from e

    try:
        sheets: dict[str, Grid] = {}
        for ws in wb.worksheets:
            rows = [list(r) for r in ws.iter_rows(values_only=True)]
            sheets[ws.title] = _trim_trailing_blank_rows(rows)
        return sheets
    except (zipfile.BadZipFile, KeyError, ValueError) as e:
        raise ParseFailure(p, f"failed while reading sheets ({e})") from e
    finally:
        wb.close()


class WorkbookCache:
    """Memoize parsed workbooks keyed by path and modification time.

    ``get`` returns the very same mapping object while the file is unchanged,
    so callers can rely on identity for "no reparse happened".
    """

    def __init__(
        self,
        store: BoundedCache[CacheKey, WorkbookGrid] | None = None,
        *,
        parser: Callable[[Path], WorkbookGrid] = read_workbook_grid,
    ) -> None:
        self._store: BoundedCache[CacheKey, WorkbookGrid] = store or BoundedCache(
            DEFAULT_CAPACITY, name="workbook"
        )
        self._parser = parser

    def __len__(self) -> int:
        return len(self._store)

    def get(self, path: str | PathLike[str]) -> WorkbookGrid:
        p = Path(path).resolve()
        try:
            mtime_ns = os.stat(p).st_mtime_ns
        except FileNotFoundError as e:
            raise SourceUnavailable(p, "file not found") from e
        except OSError as e:
            raise SourceUnavailable(p, f"stat failed ({e})") from e

        key: CacheKey = (os.fspath(p), mtime_ns)
        cached = self._store.get(key)
        if cached is not None:
            return cached

        _logger.info("workbook:parse path=%s", p.name)
        grid = self._parser(p)
        # Older versions of the same file can never be hit again.
        self._store.invalidate_where(lambda k: k[0] == key[0] and k[1] != mtime_ns)
        self._store.set(key, grid)
        return grid

    def resolve_sheet(
        self,
        path: str | PathLike[str],
        name: str,
        *,
        fallbacks: Sequence[str] = (),
    ) -> str:
        """Return the first of ``name`` and ``fallbacks`` present in the workbook."""

        book = self.get(path)
        for candidate in (name, *fallbacks):
            if candidate in book:
                return candidate
        raise ParseFailure(
            path,
            f"sheet {name!r} not found; available sheets: {', '.join(book) or '(none)'}",
        )

    def sheet(
        self,
        path: str | PathLike[str],
        name: str,
        *,
        fallbacks: Sequence[str] = (),
    ) -> Grid:
        """Return one sheet grid, trying ``fallbacks`` in order after ``name``."""

        return self.get(path)[self.resolve_sheet(path, name, fallbacks=fallbacks)]

    def sheet_names(self, path: str | PathLike[str]) -> list[str]:
        return list(self.get(path))

    def clear(self) -> None:
        self._store.clear()


__all__ = ["DEFAULT_CAPACITY", "WorkbookCache", "read_workbook_grid"]
