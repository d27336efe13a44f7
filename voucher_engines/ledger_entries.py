"""
Ledger Entry Builder - default double-entry lines for trade documents.

Given the aggregator's totals, produce the balanced debit/credit entries a
sales invoice, credit note, purchase invoice or debit note posts:

    Document          Party   Main ledger         Tax ledgers
    ----------------  ------  ------------------  ------------
    sales_invoice     Dr      Cr sales            Cr output
    credit_note       Cr      Dr sales returns    Dr output
    purchase_invoice  Cr      Dr purchases        Dr input
    debit_note        Dr      Cr purchase returns Cr input

The party carries the rounded total.  The round-off ledger takes the
rounding delta on whichever side balances the entry.  Zero amounts produce
no entry.

Reverse liability: the party is owed the subtotal only.  On purchase-side
documents the recipient self-assesses: input tax against a reverse-charge
liability.  On sales-side documents no output tax is recorded.

Pure functions with no I/O.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from voucher_engines.aggregator import DocumentTotals
from voucher_engines.tax_split import ZERO
from voucher_kernel.exceptions import InvalidLedgerEntryError
from voucher_kernel.logging_config import get_logger

logger = get_logger("engines.ledger_entries")


class LedgerRole(str, Enum):
    """Configurable ledgers the builder posts to, besides the party."""

    SALES = "sales"
    SALES_RETURNS = "sales_returns"
    PURCHASES = "purchases"
    PURCHASE_RETURNS = "purchase_returns"
    OUTPUT_SAME_REGION_TAX_1 = "output_same_region_tax_1"
    OUTPUT_SAME_REGION_TAX_2 = "output_same_region_tax_2"
    OUTPUT_CROSS_REGION_TAX = "output_cross_region_tax"
    OUTPUT_SURCHARGE = "output_surcharge"
    INPUT_SAME_REGION_TAX_1 = "input_same_region_tax_1"
    INPUT_SAME_REGION_TAX_2 = "input_same_region_tax_2"
    INPUT_CROSS_REGION_TAX = "input_cross_region_tax"
    INPUT_SURCHARGE = "input_surcharge"
    REVERSE_CHARGE_LIABILITY = "reverse_charge_liability"
    ROUND_OFF = "round_off"


@dataclass(frozen=True)
class EntrySpec:
    """A proposed ledger entry; exactly one side is non-zero."""

    ledger_reference: str
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    narration: str | None = None

    @classmethod
    def debit(cls, ledger_reference: str, amount: Decimal, narration: str | None = None) -> EntrySpec:
        return cls(ledger_reference, debit_amount=amount, narration=narration)

    @classmethod
    def credit(cls, ledger_reference: str, amount: Decimal, narration: str | None = None) -> EntrySpec:
        return cls(ledger_reference, credit_amount=amount, narration=narration)


@dataclass(frozen=True)
class _Profile:
    party_debit: bool
    main: LedgerRole
    output_side: bool  # output (sales) tax ledgers vs input (purchase) ledgers


_PROFILES: dict[str, _Profile] = {
    "sales_invoice": _Profile(True, LedgerRole.SALES, True),
    "credit_note": _Profile(False, LedgerRole.SALES_RETURNS, True),
    "purchase_invoice": _Profile(False, LedgerRole.PURCHASES, False),
    "debit_note": _Profile(True, LedgerRole.PURCHASE_RETURNS, False),
}

_TAX_ROLES = {
    True: (
        ("same_region_tax_1", LedgerRole.OUTPUT_SAME_REGION_TAX_1),
        ("same_region_tax_2", LedgerRole.OUTPUT_SAME_REGION_TAX_2),
        ("cross_region_tax", LedgerRole.OUTPUT_CROSS_REGION_TAX),
        ("surcharge", LedgerRole.OUTPUT_SURCHARGE),
    ),
    False: (
        ("same_region_tax_1", LedgerRole.INPUT_SAME_REGION_TAX_1),
        ("same_region_tax_2", LedgerRole.INPUT_SAME_REGION_TAX_2),
        ("cross_region_tax", LedgerRole.INPUT_CROSS_REGION_TAX),
        ("surcharge", LedgerRole.INPUT_SURCHARGE),
    ),
}


def supports_document_type(document_type: str) -> bool:
    return document_type in _PROFILES


def _ledger(ledgers: Mapping[str, str], role: LedgerRole) -> str:
    reference = ledgers.get(role.value)
    if not reference:
        raise InvalidLedgerEntryError(role.value, "no ledger configured for this role")
    return reference


def _entry(reference: str, amount: Decimal, debit: bool, narration: str) -> EntrySpec:
    if debit:
        return EntrySpec.debit(reference, amount, narration)
    return EntrySpec.credit(reference, amount, narration)


def build_ledger_entries(
    document_type: str,
    totals: DocumentTotals,
    party_reference: str | None,
    ledgers: Mapping[str, str],
) -> tuple[EntrySpec, ...]:
    """
    Balanced default entries for a trade document.

    Args:
        document_type: One of sales_invoice, credit_note, purchase_invoice,
            debit_note.
        totals: Aggregator output for the document.
        party_reference: Customer or supplier ledger.
        ledgers: LedgerRole value -> ledger reference.

    Returns:
        Entries in posting order: party, main ledger, taxes, round-off.

    Raises:
        ValueError: document type has no default entries.
        InvalidLedgerEntryError: party or a needed ledger role is missing.
    """
    profile = _PROFILES.get(document_type)
    if profile is None:
        raise ValueError(f"No default ledger entries for document type {document_type!r}")
    if not party_reference:
        raise InvalidLedgerEntryError("party", "party ledger reference is required")

    party_side = profile.party_debit
    other_side = not party_side
    entries: list[EntrySpec] = []

    def add(reference: str, amount: Decimal, debit: bool, narration: str) -> None:
        if amount > ZERO:
            entries.append(_entry(reference, amount, debit, narration))
        elif amount < ZERO:
            entries.append(_entry(reference, -amount, not debit, narration))

    tax_amounts = [
        (getattr(totals, field), role) for field, role in _TAX_ROLES[profile.output_side]
    ]

    if totals.reverse_liability:
        add(party_reference, totals.subtotal, party_side, "Party")
        add(_ledger(ledgers, profile.main), totals.subtotal, other_side, profile.main.value)
        if not profile.output_side:
            for amount, role in tax_amounts:
                if amount:
                    add(_ledger(ledgers, role), amount, other_side, role.value)
            if totals.total_tax:
                add(
                    _ledger(ledgers, LedgerRole.REVERSE_CHARGE_LIABILITY),
                    totals.total_tax,
                    party_side,
                    LedgerRole.REVERSE_CHARGE_LIABILITY.value,
                )
    else:
        add(party_reference, totals.rounded_total, party_side, "Party")
        add(_ledger(ledgers, profile.main), totals.subtotal, other_side, profile.main.value)
        for amount, role in tax_amounts:
            if amount:
                add(_ledger(ledgers, role), amount, other_side, role.value)
        if totals.rounding_delta:
            # Positive delta: party owes more than subtotal + tax
            add(
                _ledger(ledgers, LedgerRole.ROUND_OFF),
                totals.rounding_delta,
                other_side,
                LedgerRole.ROUND_OFF.value,
            )

    debits = sum((e.debit_amount for e in entries), ZERO)
    credits = sum((e.credit_amount for e in entries), ZERO)
    logger.debug(
        "ledger_entries_built",
        extra={
            "document_type": document_type,
            "entry_count": len(entries),
            "total_debits": str(debits),
            "total_credits": str(credits),
            "reverse_liability": totals.reverse_liability,
        },
    )
    return tuple(entries)
