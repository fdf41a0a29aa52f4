"""Read-side mappings of the ERP settlement tables.

The ERP owns these tables and their Korean column names; the mapped classes
expose them under English attribute names. Neither table declares a primary
key, so each mapper is given a composite identity through
``__mapper_args__`` without emitting a constraint. Readers select columns,
not entities, so identical rows are never collapsed by the identity map.
"""

from __future__ import annotations

from sqlalchemy import Column, Date, Numeric, String, Table, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# ---------------------------
# Settled transfers: ERP_이체내역조회
# ---------------------------

erp_transfer_table = Table(
    "ERP_이체내역조회",
    Base.metadata,
    # YYYY-MM text; compared lexically against the cutover month.
    Column("정산월", String(20), nullable=False),
    Column("반제일", Date, nullable=True),
    Column("사용처", Text, nullable=True),
    Column("거래처명", Text, nullable=True),
    Column("출금액", Numeric(18, 2), nullable=True),
    Column("비고", Text, nullable=True),
)


class ErpTransfer(Base):
    __table__ = erp_transfer_table

    period = erp_transfer_table.c["정산월"]
    payment_date = erp_transfer_table.c["반제일"]
    merchant = erp_transfer_table.c["사용처"]
    counterparty = erp_transfer_table.c["거래처명"]
    amount = erp_transfer_table.c["출금액"]
    note = erp_transfer_table.c["비고"]

    __mapper_args__ = {
        "primary_key": [
            erp_transfer_table.c["정산월"],
            erp_transfer_table.c["반제일"],
            erp_transfer_table.c["거래처명"],
            erp_transfer_table.c["출금액"],
            erp_transfer_table.c["비고"],
        ]
    }


# ---------------------------
# Unsettled vouchers: ERP_전표상세조회_자금
# ---------------------------

erp_unsettled_table = Table(
    "ERP_전표상세조회_자금",
    Base.metadata,
    Column("정산월", String(20), nullable=True),
    Column("만기일", Date, nullable=True),
    Column("사용처", Text, nullable=True),
    Column("사용자", Text, nullable=True),
    Column("사용금액", Numeric(18, 2), nullable=True),
    Column("비고", Text, nullable=True),
    # NULL while the voucher is still open.
    Column("반제일", Date, nullable=True),
)


class ErpUnsettledVoucher(Base):
    __table__ = erp_unsettled_table

    period = erp_unsettled_table.c["정산월"]
    due_date = erp_unsettled_table.c["만기일"]
    merchant = erp_unsettled_table.c["사용처"]
    user_name = erp_unsettled_table.c["사용자"]
    amount = erp_unsettled_table.c["사용금액"]
    note = erp_unsettled_table.c["비고"]
    cleared_date = erp_unsettled_table.c["반제일"]

    __mapper_args__ = {
        "primary_key": [
            erp_unsettled_table.c["정산월"],
            erp_unsettled_table.c["만기일"],
            erp_unsettled_table.c["사용자"],
            erp_unsettled_table.c["사용금액"],
            erp_unsettled_table.c["비고"],
        ]
    }


__all__ = [
    "Base",
    "ErpTransfer",
    "ErpUnsettledVoucher",
    "erp_transfer_table",
    "erp_unsettled_table",
]
