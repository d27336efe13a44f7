"""ORM models for numbering series, numbering history and documents."""

from voucher_kernel.models.document import (
    Document,
    DocumentStatus,
    DocumentType,
    LedgerEntry,
    LineItem,
)
from voucher_kernel.models.numbering import NumberingHistory, NumberingSeries

__all__ = [
    "Document",
    "DocumentStatus",
    "DocumentType",
    "LedgerEntry",
    "LineItem",
    "NumberingHistory",
    "NumberingSeries",
]
