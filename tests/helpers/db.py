"""DB helpers for tests: bootstrap a temporary SQLite DB and seed ERP rows."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

from db import Base
from db.client import get_engine, session_scope
from db.models.settlement import erp_transfer_table, erp_unsettled_table
from sqlalchemy import insert
from sqlalchemy import text as sql_text


def bootstrap_sqlite_db(db_file: Path) -> str:
    """Create a SQLite database file with the ERP tables and return its URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)
    Base.metadata.create_all(bind=engine)
    _assert_schema_in_sync(url)
    return url


def seed_transfers(database_url: str, rows: Iterable[Mapping[str, Any]]) -> None:
    """Insert settled transfers; keys are the English attribute names."""

    columns = {
        "period": "정산월",
        "payment_date": "반제일",
        "merchant": "사용처",
        "counterparty": "거래처명",
        "amount": "출금액",
        "note": "비고",
    }
    _insert(database_url, erp_transfer_table, columns, rows)


def seed_unsettled(database_url: str, rows: Iterable[Mapping[str, Any]]) -> None:
    columns = {
        "period": "정산월",
        "due_date": "만기일",
        "merchant": "사용처",
        "user_name": "사용자",
        "amount": "사용금액",
        "note": "비고",
        "cleared_date": "반제일",
    }
    _insert(database_url, erp_unsettled_table, columns, rows)


def _insert(database_url: str, table, columns: Mapping[str, str], rows) -> None:
    payload = [{columns[k]: v for k, v in row.items()} for row in rows]
    if not payload:
        return
    with session_scope(database_url=database_url) as session:
        session.execute(insert(table), payload)


def sample_transfers() -> list[dict[str, Any]]:
    return [
        {
            "period": "2025-11",
            "payment_date": date(2025, 10, 25),
            "merchant": None,
            "counterparty": "알파상사",
            "amount": Decimal("5000"),
            "note": "11월|지급수수료|카드",
        },
        {
            "period": "2025-12",
            "payment_date": date(2025, 11, 20),
            "merchant": "택배사",
            "counterparty": "(주) 베타",
            "amount": Decimal("1200"),
            "note": "12월|운반비|착불",
        },
        {
            # Before the cutover: owned by the spreadsheets, never selected.
            "period": "2025-10",
            "payment_date": date(2025, 9, 30),
            "merchant": "과거",
            "counterparty": "알파상사",
            "amount": Decimal("999"),
            "note": "10월|운반비|과거",
        },
    ]


def sample_unsettled() -> list[dict[str, Any]]:
    return [
        {
            "period": "2025-12",
            "due_date": date(2025, 12, 10),
            "merchant": None,
            "user_name": "홍길동",
            "amount": Decimal("50"),
            "note": "12월|복리후생비|회식",
            "cleared_date": None,
        },
        {
            "period": "2025-11",
            "due_date": date(2025, 11, 10),
            "merchant": "식당",
            "user_name": "홍길동",
            "amount": Decimal("70"),
            "note": "11월|복리후생비|점심",
            "cleared_date": date(2025, 11, 30),
        },
    ]


def _assert_schema_in_sync(database_url: str) -> None:
    """ORM column sets match the SQLite tables (guards against helper drift)."""

    for table in (erp_transfer_table, erp_unsettled_table):
        expected = {c.name for c in table.columns}
        with session_scope(database_url=database_url) as session:
            rows = session.execute(sql_text(f"PRAGMA table_info('{table.name}')")).fetchall()
        got = {row[1] for row in rows}
        assert expected == got, f"{table.name} schema drift: expected={expected}, got={got}"
