"""
Module: voucher_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines: tax split,
    document aggregation, default ledger entries and GSTIN validation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import voucher_kernel exceptions, logging and db.types helpers.
    MUST NOT import voucher_services or voucher_config.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic: floats are converted through ``str`` at the
      boundary and never used in a calculation.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from voucher_engines import DocumentAggregator, LineInput, TaxSplitCalculator
"""

from voucher_engines.aggregator import (
    DocumentAggregator,
    DocumentTotals,
    LineBreakdown,
    LineInput,
)
from voucher_engines.gstin import GstinValidation, validate_gstin
from voucher_engines.ledger_entries import (
    EntrySpec,
    LedgerRole,
    build_ledger_entries,
    supports_document_type,
)
from voucher_engines.tax_split import (
    JurisdictionResolver,
    MissingJurisdictionPolicy,
    TaxSplit,
    TaxSplitCalculator,
)

__all__ = [
    "DocumentAggregator",
    "DocumentTotals",
    "EntrySpec",
    "GstinValidation",
    "JurisdictionResolver",
    "LedgerRole",
    "LineBreakdown",
    "LineInput",
    "MissingJurisdictionPolicy",
    "TaxSplit",
    "TaxSplitCalculator",
    "build_ledger_entries",
    "supports_document_type",
    "validate_gstin",
]
