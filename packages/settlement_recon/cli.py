# ruff: noqa: I001
"""CLI for the ``settlement_recon`` package.

This module exposes callable command handlers (``cmd_reconcile``,
``cmd_classify``, ``cmd_vocabulary``) and a Typer-based console interface.
Environment variables (``DATABASE_URL``, ``ADDITIONAL_EXCEL_FILES``,
``REDUCE_LOG``, ...) are loaded from a local ``.env`` using ``python-dotenv``
before delegating to command logic. Business logic lives in
``settlement_recon.api``.

Exit codes: ``0`` success, ``1`` unusable configuration or input, ``75``
result file locked (retry once it is closed).
"""

from __future__ import annotations

import json
import os
import sys
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .errors import ConfigError, SourceUnavailable, WriteConflict
from .logging_setup import configure_logging
from .models import LedgerRow, ReconciledLedger

EXIT_RETRY_LATER = 75


# ---- Rendering helpers --------------------------------------------------------


def _row_json(row: LedgerRow) -> dict[str, Any]:
    return {
        "period": row.period,
        "paymentDate": row.payment_date,
        "counterparty": row.counterparty,
        "merchant": row.merchant,
        "amount": str(row.amount),
        "narrative": row.narrative,
        "accountCategory": row.account_category,
        "matchMethod": row.match_method,
        "matchConfidence": row.match_confidence,
        "provenance": str(row.provenance),
    }


def ledger_to_json(ledger: ReconciledLedger) -> dict[str, Any]:
    return {
        "detail": [_row_json(r) for r in ledger.detail],
        "monthlySummary": [
            {"period": m.period, "total": str(m.total), "rows": m.row_count}
            for m in ledger.monthly_summary
        ],
        "unsettled": [_row_json(r) for r in ledger.unsettled],
        "dropped": [
            {"source": d.source, "index": d.index, "reason": d.reason, "rawPeriod": d.raw_period}
            for d in ledger.dropped
        ],
    }


def _fmt_amount(value: Decimal) -> str:
    return f"{value:,.0f}"


# ---- Command handlers --------------------------------------------------------


def cmd_reconcile(
    *,
    period: str | None = None,
    counterparty: str | None = None,
    skip_write: bool = False,
    as_json: bool = False,
    database_url: str | None = None,
) -> int:
    """Run a reconciliation from environment configuration and print it."""

    from .aggregate import latest_period, top_category
    from .api import reconcile
    from .config import ReconcileConfig
    from .models import PeriodRange

    try:
        config = ReconcileConfig.from_env(
            skip_file_write=True if skip_write else None,
            database_url=database_url,
        )
        period_range = PeriodRange.parse(period) if period else None
    except (ConfigError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        report = reconcile(config, period=period_range, counterparty=counterparty)
    except WriteConflict as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_RETRY_LATER

    ledger = report.ledger
    if as_json:
        print(json.dumps(ledger_to_json(ledger), ensure_ascii=False, indent=2))
        return 0

    for failed in report.failed_sources:
        print(f"warning: source skipped: {failed}", file=sys.stderr)
    print("period\ttotal\trows")
    for m in ledger.monthly_summary:
        print(f"{m.period}\t{_fmt_amount(m.total)}\t{m.row_count}")
    top = top_category(ledger.detail)
    if top is not None:
        print(f"top category: {top[0]} ({_fmt_amount(top[1])})")
    latest = latest_period(ledger.detail)
    if latest is not None:
        print(f"latest period: {latest}")
    print(
        f"rows={len(ledger.detail)} unsettled={len(ledger.unsettled)} "
        f"dropped={len(ledger.dropped)} reused={report.merge.get('reused', 0)}"
    )
    for out in report.outputs:
        print(f"wrote {out}")
    return 0


def cmd_classify(narrative: str, *, workbook: Path, sheet: str) -> int:
    from .api import classify_narrative

    try:
        result = classify_narrative(narrative, workbook, sheet=sheet)
    except SourceUnavailable as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"{result.account_category}\t{result.match_method}\t{result.match_confidence:.2f}")
    return 0


def cmd_vocabulary(*, workbook: Path, sheet: str) -> int:
    from .api import default_caches

    try:
        labels = default_caches().vocabulary.load(workbook, sheet)
    except SourceUnavailable as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    for label in labels:
        print(label)
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Reconcile settlement ledgers from spreadsheet exports and the ERP database, "
        "and classify rows into account categories. Loads configuration from a local .env."
    ),
)

# Module-level option objects keep calls out of parameter defaults (ruff B008).
WORKBOOK_OPTION: OptionInfo = typer.Option(
    ...,
    "--workbook",
    help="Workbook holding the reference (trial balance) sheet.",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files
)
SHEET_OPTION: OptionInfo = typer.Option("--sheet", help="Reference sheet name.")


@app.command("reconcile")
def reconcile_cmd(
    *,
    period: str | None = typer.Option(
        None, help='Settlement period range, e.g. "2025-01 ~ 2025-12".'
    ),
    counterparty: str | None = typer.Option(
        None, help="Only rows whose counterparty contains this name."
    ),
    skip_write: bool = typer.Option(
        False, "--skip-write", help="Do not write <name>_result.xlsx files."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the ledger as JSON."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Reconcile all configured sources."""

    raise typer.Exit(
        cmd_reconcile(
            period=period,
            counterparty=counterparty,
            skip_write=skip_write,
            as_json=as_json,
            database_url=database_url,
        )
    )


@app.command("classify")
def classify_cmd(
    narrative: Annotated[str, typer.Argument(help="Narrative (비고) text to classify.")],
    workbook: Annotated[Path, WORKBOOK_OPTION],
    sheet: Annotated[str, SHEET_OPTION] = "2025moca",
) -> None:
    """Classify one narrative against the reference vocabulary."""

    raise typer.Exit(cmd_classify(narrative, workbook=workbook, sheet=sheet))


@app.command("vocabulary")
def vocabulary_cmd(
    workbook: Annotated[Path, WORKBOOK_OPTION],
    sheet: Annotated[str, SHEET_OPTION] = "2025moca",
) -> None:
    """List the reference vocabulary labels."""

    raise typer.Exit(cmd_vocabulary(workbook=workbook, sheet=sheet))


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging once.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    reduce = (os.getenv("REDUCE_LOG") or "").strip().lower() in {"1", "true", "yes", "on"}
    configure_logging(reduce=reduce)

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
