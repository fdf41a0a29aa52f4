"""Exception taxonomy for the reconciliation pipeline.

Source-level failures (``SourceUnavailable`` and its ``ParseFailure``
subclass) are contained by the orchestrator: the failing source contributes
zero rows and the run continues. ``WriteConflict`` is surfaced to callers
because the output genuinely was not written. ``ConfigError`` is raised before
a run starts.
"""

from __future__ import annotations

from os import PathLike


class ReconcileError(Exception):
    """Base class for all errors raised by ``settlement_recon``."""


class ConfigError(ReconcileError):
    """The configuration cannot drive a run (e.g., no sources configured)."""


class SourceUnavailable(ReconcileError):
    """A data source could not be read: missing file, DB credentials or query."""

    def __init__(self, source: str | PathLike[str], reason: str) -> None:
        self.source = str(source)
        self.reason = reason
        super().__init__(f"{self.source}: {reason}")


class ParseFailure(SourceUnavailable):
    """A spreadsheet exists but its grid could not be parsed."""


class WriteConflict(ReconcileError):
    """An output file could not be written because another process holds it."""

    retryable = True

    def __init__(self, path: str | PathLike[str], reason: str) -> None:
        self.path = str(path)
        super().__init__(
            f"{self.path}: {reason}. Close the file in any other program and retry."
        )


__all__ = [
    "ConfigError",
    "ParseFailure",
    "ReconcileError",
    "SourceUnavailable",
    "WriteConflict",
]
