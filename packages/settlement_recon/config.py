"""Run configuration for a reconciliation.

``ReconcileConfig`` is a validated pydantic model. Hosts either construct it
directly (through :meth:`ReconcileConfig.create`) or call
:meth:`ReconcileConfig.from_env` after ``python-dotenv`` has loaded ``.env``.
Both raise :class:`~settlement_recon.errors.ConfigError` for an unusable
configuration, before any source is touched.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import ConfigError
from .output import result_path_for

_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
_TRUTHY = {"1", "true", "yes", "y", "on"}

DEFAULT_REFERENCE_SHEET = "2025moca"
DEFAULT_TRANSACTION_SHEET = "2025"
DEFAULT_CUTOVER = "2025-11"


class ReconcileConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    primary_workbook: Path | None = None
    additional_workbooks: tuple[Path, ...] = ()
    reference_workbook: Path | None = None
    reference_sheet: str = DEFAULT_REFERENCE_SHEET
    transaction_sheet: str = DEFAULT_TRANSACTION_SHEET
    # Sheets tried, in order, when ``transaction_sheet`` is absent.
    transaction_sheet_fallbacks: tuple[str, ...] = ("Sheet1",)
    cutover_month: str = DEFAULT_CUTOVER
    database_url: str | None = None
    output_dir: Path | None = None
    source_cache_size: int = Field(default=10, gt=0)
    result_cache_ttl_seconds: float = Field(default=300.0, gt=0)
    classify_concurrency: int = Field(default=8, gt=0)
    source_concurrency: int = Field(default=4, gt=0)
    skip_file_write: bool = False
    reduce_log: bool = False
    write_diagnostics: bool = False
    use_embeddings: bool = False
    snapshot_key: Literal["ordinal", "content"] = "ordinal"

    @field_validator("cutover_month")
    @classmethod
    def _cutover_is_month(cls, v: str) -> str:
        if not _MONTH_RE.match(v):
            raise ValueError("cutover_month must be YYYY-MM")
        return v

    @model_validator(mode="after")
    def _has_a_source(self) -> ReconcileConfig:
        if not self.workbooks and not self.database_url:
            raise ValueError("configure at least one workbook or a database URL")
        return self

    @model_validator(mode="after")
    def _result_files_are_distinct(self) -> ReconcileConfig:
        # Each workbook reads its own result file back as the prior run.
        seen: dict[Path, Path] = {}
        for wb in self.workbooks:
            target = result_path_for(wb, self.output_dir)
            if target in seen:
                raise ValueError(
                    f"workbooks {seen[target]} and {wb} would both write {target}"
                )
            seen[target] = wb
        return self

    @property
    def workbooks(self) -> tuple[Path, ...]:
        """Transactional workbooks in processing order (primary first)."""

        primary = (self.primary_workbook,) if self.primary_workbook is not None else ()
        return primary + self.additional_workbooks

    @property
    def vocabulary_workbook(self) -> Path | None:
        return self.reference_workbook or self.primary_workbook

    @classmethod
    def create(cls, **values: Any) -> ReconcileConfig:
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(_summarize(e)) from e

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides: Any
    ) -> ReconcileConfig:
        """Build a config from environment variables; ``overrides`` win."""

        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        def put(field: str, var: str, convert=lambda s: s) -> None:
            raw = (env.get(var) or "").strip()
            if raw:
                values[field] = convert(raw)

        put("primary_workbook", "SETTLEMENT_PRIMARY_WORKBOOK", Path)
        put("additional_workbooks", "ADDITIONAL_EXCEL_FILES", _split_paths)
        put("reference_workbook", "SETTLEMENT_REFERENCE_WORKBOOK", Path)
        put("reference_sheet", "SETTLEMENT_REFERENCE_SHEET")
        put("transaction_sheet", "EXCEL_SHEET_NAME")
        put("cutover_month", "SETTLEMENT_CUTOVER_MONTH")
        put("database_url", "DATABASE_URL")
        put("output_dir", "SETTLEMENT_OUTPUT_DIR", Path)
        put("source_cache_size", "SETTLEMENT_SOURCE_CACHE_SIZE", _int)
        put("result_cache_ttl_seconds", "RESPONSE_CACHE_TTL_MS", lambda s: _int(s) / 1000)
        put("classify_concurrency", "SETTLEMENT_CLASSIFY_CONCURRENCY", _int)
        put("skip_file_write", "SKIP_FILE_WRITE", _flag)
        put("reduce_log", "REDUCE_LOG", _flag)
        put("write_diagnostics", "SETTLEMENT_WRITE_DIAGNOSTICS", _flag)
        put("use_embeddings", "SETTLEMENT_USE_EMBEDDINGS", _flag)
        put("snapshot_key", "SETTLEMENT_SNAPSHOT_KEY", str.lower)

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.create(**values)


def _split_paths(raw: str) -> tuple[Path, ...]:
    return tuple(Path(p.strip()) for p in raw.split(",") if p.strip())


def _flag(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


def _int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"expected an integer, got {raw!r}") from e


def _summarize(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "config"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


__all__ = ["ReconcileConfig"]
