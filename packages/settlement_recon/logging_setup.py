"""Logging for the ``settlement_recon`` package.

Library modules take their logger from :func:`get_logger` and never attach
handlers; until a host calls :func:`configure_logging`, the package logger
only carries a ``NullHandler``. The CLI configures logging once at startup.

``reduce=True`` (the ``REDUCE_LOG`` switch) keeps warnings and errors only,
for hosts that run a reconciliation on every request. :func:`log_duration`
times a block and reports it as one ``event key=value ms=N`` line.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO

PACKAGE_LOGGER = "settlement_recon"
LEVEL_ENV = "SETTLEMENT_RECON_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured = False


def resolve_level(level: int | str | None = None) -> int:
    """Numeric level from an int, a level name or digits.

    ``None`` reads ``SETTLEMENT_RECON_LOG_LEVEL``; unknown names mean INFO.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    reduce: bool = False,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Attach one ``StreamHandler`` to the package logger; later calls are no-ops."""

    global _configured
    if _configured:
        return

    resolved = resolve_level(level)
    if reduce:
        resolved = max(resolved, logging.WARNING)

    pkg = logging.getLogger(PACKAGE_LOGGER)
    for h in [h for h in pkg.handlers if isinstance(h, logging.NullHandler)]:
        pkg.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    handler.setLevel(resolved)
    pkg.addHandler(handler)
    pkg.setLevel(resolved)
    pkg.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if not _configured and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


@contextmanager
def log_duration(logger: logging.Logger, event: str, **fields: object) -> Iterator[None]:
    """Log ``event`` with ``fields`` and the elapsed milliseconds at INFO on exit."""

    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        extra = "".join(f" {k}={v}" for k, v in fields.items())
        logger.info("%s%s ms=%.0f", event, extra, elapsed_ms)


__all__ = ["configure_logging", "get_logger", "log_duration", "resolve_level"]
