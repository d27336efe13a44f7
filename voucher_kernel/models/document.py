"""
Module: voucher_kernel.models.document
Responsibility: ORM persistence for documents (vouchers), their line items
    and their ledger entries.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/ or outer layers.

Invariants enforced:
    - document_number is unique within (tenant_id, series_id).
    - A ledger entry carries exactly one side: the other amount is zero
      (CHECK constraint plus validation in PostingValidator).
    - Once status = POSTED the document, its line items and its ledger
      entries are immutable (db/immutability.py).
    - status moves draft -> posted or draft -> cancelled only
      (domain/workflow.py).

Failure modes:
    - IntegrityError on a duplicate document number for a series.
    - ImmutableDocumentError on any change to a posted document or its rows.

Audit relevance:
    Document totals are stored exactly as computed by the aggregator so a
    posted document can be re-verified against its lines at any time.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voucher_kernel.db.base import Base, TrackedBase, UUIDString


class DocumentStatus(str, Enum):
    """Lifecycle status of a document.

    Contract: DRAFT -> POSTED or DRAFT -> CANCELLED; both are terminal.
    """

    DRAFT = "draft"
    POSTED = "posted"
    CANCELLED = "cancelled"


class DocumentType(str, Enum):
    """Document kinds that carry a numbering series."""

    SALES_INVOICE = "sales_invoice"
    PURCHASE_INVOICE = "purchase_invoice"
    CREDIT_NOTE = "credit_note"
    DEBIT_NOTE = "debit_note"
    RECEIPT = "receipt"
    PAYMENT = "payment"
    JOURNAL = "journal"
    DELIVERY_CHALLAN = "delivery_challan"


def _enum_column(enum_cls: type[Enum]) -> SAEnum:
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda enum: [m.value for m in enum],
    )


class Document(TrackedBase):
    """
    A financial document (voucher) with its computed tax totals.

    Guarantees:
        - ``grand_total`` is the payable amount after the single whole-unit
          rounding step; ``rounding_delta`` is what that step added.
        - Line items and ledger entries are loaded in line_number order.
    """

    __tablename__ = "documents"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "series_id", "document_number",
            name="uq_document_series_number",
        ),
        Index("idx_document_tenant_type", "tenant_id", "document_type"),
        Index("idx_document_status", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    document_type: Mapped[str] = mapped_column(String(50), nullable=False)

    series_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("numbering_series.id"), nullable=True
    )

    # Null until allocated
    document_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    document_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Counterpart entity (customer / supplier) reference
    party_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    origin_jurisdiction: Mapped[str | None] = mapped_column(String(100), nullable=True)
    destination_jurisdiction: Mapped[str | None] = mapped_column(String(100), nullable=True)

    is_same_region: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reverse_liability: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    same_region_tax_1: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    same_region_tax_2: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    cross_region_tax: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    surcharge: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    total_tax: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    rounding_delta: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    narration: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    status: Mapped[DocumentStatus] = mapped_column(
        _enum_column(DocumentStatus),
        nullable=False,
        default=DocumentStatus.DRAFT,
    )

    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    line_items: Mapped[list["LineItem"]] = relationship(
        back_populates="document",
        order_by="LineItem.line_number",
        cascade="all, delete-orphan",
    )

    ledger_entries: Mapped[list["LedgerEntry"]] = relationship(
        back_populates="document",
        order_by="LedgerEntry.line_number",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Document {self.document_number or self.id} status={self.status.value}>"

    @property
    def is_draft(self) -> bool:
        return self.status == DocumentStatus.DRAFT

    @property
    def is_posted(self) -> bool:
        return self.status == DocumentStatus.POSTED

    @property
    def total_debits(self) -> Decimal:
        return sum((e.debit_amount for e in self.ledger_entries), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((e.credit_amount for e in self.ledger_entries), Decimal("0"))


class LineItem(Base):
    """One priced line of a document with its computed tax split."""

    __tablename__ = "document_line_items"

    __table_args__ = (
        UniqueConstraint("document_id", "line_number", name="uq_line_item_number"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("documents.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    unit_rate: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False, default=Decimal("0"))
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False, default=Decimal("0"))
    surcharge_rate: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False, default=Decimal("0"))

    line_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    same_region_tax_1: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    same_region_tax_2: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    cross_region_tax: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    surcharge: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    total_tax: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    document: Mapped[Document] = relationship(back_populates="line_items")

    def __repr__(self) -> str:
        return f"<LineItem {self.line_number} taxable={self.taxable_amount}>"


class LedgerEntry(Base):
    """A single debit or credit against a ledger reference."""

    __tablename__ = "document_ledger_entries"

    __table_args__ = (
        UniqueConstraint("document_id", "line_number", name="uq_ledger_entry_number"),
        CheckConstraint(
            "debit_amount >= 0 AND credit_amount >= 0",
            name="ck_ledger_entry_non_negative",
        ),
        CheckConstraint(
            "debit_amount = 0 OR credit_amount = 0",
            name="ck_ledger_entry_single_side",
        ),
        Index("idx_ledger_entry_reference", "ledger_reference"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("documents.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    ledger_reference: Mapped[str] = mapped_column(String(100), nullable=False)

    debit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    narration: Mapped[str | None] = mapped_column(String(500), nullable=True)

    document: Mapped[Document] = relationship(back_populates="ledger_entries")

    def __repr__(self) -> str:
        side = f"Dr {self.debit_amount}" if self.debit_amount else f"Cr {self.credit_amount}"
        return f"<LedgerEntry {self.ledger_reference} {side}>"
