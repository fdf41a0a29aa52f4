"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ERP settlement tables read by ``settlement_recon``.
"""

from .settlement import Base, ErpTransfer, ErpUnsettledVoucher

__all__ = [
    "Base",
    "ErpTransfer",
    "ErpUnsettledVoucher",
]
