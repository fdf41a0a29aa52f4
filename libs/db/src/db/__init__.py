"""db: shared database library (SQLAlchemy).

Public exports
--------------
- ``Base`` and ``metadata`` of the ERP settlement mappings
- ORM models in ``db.models.settlement`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.settlement import Base, ErpTransfer, ErpUnsettledVoucher

metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "ErpTransfer",
    "ErpUnsettledVoucher",
]
