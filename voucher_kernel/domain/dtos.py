"""
DTOs -- immutable views of series and documents.

Responsibility:
    Frozen snapshots returned by kernel services and the outer facade, so
    callers never hold ORM entities after the session that loaded them
    has closed.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.  ``from_model()`` class methods
    are boundary converters invoked only from the service layer.

Invariants enforced:
    - Every DTO is a frozen dataclass.
    - Amounts stay Decimal end to end; they are never converted to float.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from voucher_kernel.models.document import (
        Document as DocumentModel,
    )
    from voucher_kernel.models.document import (
        LedgerEntry as LedgerEntryModel,
    )
    from voucher_kernel.models.document import (
        LineItem as LineItemModel,
    )
    from voucher_kernel.models.numbering import NumberingSeries as SeriesModel


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)


@dataclass(frozen=True)
class SeriesInfo:
    """
    Snapshot of a numbering series.

    Contract:
        Immutable.  ``current_sequence`` is the last issued value at the
        time of the snapshot and may already be stale.
    """

    id: UUID
    tenant_id: str
    document_type: str
    series_name: str
    prefix: str
    format: str
    separator: str
    sequence_length: int
    current_sequence: int
    start_number: int
    end_number: int | None
    reset_frequency: str
    last_reset_at: datetime | None
    branch_code: str | None
    is_default: bool
    is_active: bool

    @property
    def remaining(self) -> int | None:
        """Numbers left before end_number, ignoring any pending reset."""
        if self.end_number is None:
            return None
        return max(self.end_number - self.current_sequence, 0)

    @classmethod
    def from_model(cls, model: SeriesModel) -> SeriesInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            document_type=model.document_type,
            series_name=model.series_name,
            prefix=model.prefix,
            format=model.format,
            separator=model.separator,
            sequence_length=model.sequence_length,
            current_sequence=model.current_sequence,
            start_number=model.start_number,
            end_number=model.end_number,
            reset_frequency=_value(model.reset_frequency),
            last_reset_at=model.last_reset_at,
            branch_code=model.branch_code,
            is_default=model.is_default,
            is_active=model.is_active,
        )


@dataclass(frozen=True)
class LineItemInfo:
    line_number: int
    description: str | None
    quantity: Decimal
    unit_rate: Decimal
    discount_percent: Decimal
    tax_rate: Decimal
    surcharge_rate: Decimal
    line_amount: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    same_region_tax_1: Decimal
    same_region_tax_2: Decimal
    cross_region_tax: Decimal
    surcharge: Decimal
    total_tax: Decimal

    @classmethod
    def from_model(cls, model: LineItemModel) -> LineItemInfo:
        return cls(
            line_number=model.line_number,
            description=model.description,
            quantity=model.quantity,
            unit_rate=model.unit_rate,
            discount_percent=model.discount_percent,
            tax_rate=model.tax_rate,
            surcharge_rate=model.surcharge_rate,
            line_amount=model.line_amount,
            discount_amount=model.discount_amount,
            taxable_amount=model.taxable_amount,
            same_region_tax_1=model.same_region_tax_1,
            same_region_tax_2=model.same_region_tax_2,
            cross_region_tax=model.cross_region_tax,
            surcharge=model.surcharge,
            total_tax=model.total_tax,
        )


@dataclass(frozen=True)
class LedgerEntryInfo:
    line_number: int
    ledger_reference: str
    debit_amount: Decimal
    credit_amount: Decimal
    narration: str | None = None

    @property
    def is_debit(self) -> bool:
        return self.debit_amount > 0

    @classmethod
    def from_model(cls, model: LedgerEntryModel) -> LedgerEntryInfo:
        return cls(
            line_number=model.line_number,
            ledger_reference=model.ledger_reference,
            debit_amount=model.debit_amount,
            credit_amount=model.credit_amount,
            narration=model.narration,
        )


@dataclass(frozen=True)
class DocumentInfo:
    """
    Snapshot of a document with its lines and ledger entries.

    Guarantees:
        - ``line_items`` and ``ledger_entries`` are tuples in line_number
          order.
    """

    id: UUID
    tenant_id: str
    document_type: str
    document_number: str | None
    series_id: UUID | None
    document_date: date
    status: str
    party_reference: str | None
    is_same_region: bool
    reverse_liability: bool
    subtotal: Decimal
    same_region_tax_1: Decimal
    same_region_tax_2: Decimal
    cross_region_tax: Decimal
    surcharge: Decimal
    total_tax: Decimal
    rounding_delta: Decimal
    grand_total: Decimal
    narration: str | None
    posted_at: datetime | None
    cancelled_at: datetime | None
    line_items: tuple[LineItemInfo, ...]
    ledger_entries: tuple[LedgerEntryInfo, ...]

    @property
    def is_posted(self) -> bool:
        return self.status == "posted"

    @property
    def total_debits(self) -> Decimal:
        return sum((e.debit_amount for e in self.ledger_entries), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((e.credit_amount for e in self.ledger_entries), Decimal("0"))

    @classmethod
    def from_model(cls, model: DocumentModel) -> DocumentInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            document_type=model.document_type,
            document_number=model.document_number,
            series_id=model.series_id,
            document_date=model.document_date,
            status=_value(model.status),
            party_reference=model.party_reference,
            is_same_region=model.is_same_region,
            reverse_liability=model.reverse_liability,
            subtotal=model.subtotal,
            same_region_tax_1=model.same_region_tax_1,
            same_region_tax_2=model.same_region_tax_2,
            cross_region_tax=model.cross_region_tax,
            surcharge=model.surcharge,
            total_tax=model.total_tax,
            rounding_delta=model.rounding_delta,
            grand_total=model.grand_total,
            narration=model.narration,
            posted_at=model.posted_at,
            cancelled_at=model.cancelled_at,
            line_items=tuple(LineItemInfo.from_model(li) for li in model.line_items),
            ledger_entries=tuple(
                LedgerEntryInfo.from_model(e) for e in model.ledger_entries
            ),
        )


@dataclass(frozen=True)
class PostingResult:
    """Outcome of a successful draft -> posted transition."""

    document_id: UUID
    document_number: str
    status: str
    total_debits: Decimal
    total_credits: Decimal
    posted_at: datetime
