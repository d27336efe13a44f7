"""
Module: voucher_kernel.models.numbering
Responsibility: ORM persistence for numbering series (the per-tenant counters
    that produce document numbers) and the append-only numbering history.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value objects.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - current_sequence only moves forward within a reset epoch; it is written
      solely by SequenceAllocator under a row lock, or set to
      start_number - 1 at a reset boundary.
    - At most one active default per (tenant_id, document_type, branch_code),
      maintained by SeriesRegistry and backed by a partial unique index on
      the coalesced branch_code, so tenant-wide (NULL branch) defaults are
      covered too.
    - NumberingHistory rows are never updated or deleted
      (db/immutability.py).  (series_id, generated_number) is unique.
    - A series with history is never deleted, only deactivated.

Failure modes:
    - IntegrityError (uq_series_single_default) when a second default is
      flushed in the same scope, e.g. the loser of two concurrent set_default
      calls.
    - IntegrityError on a duplicate generated number for a series.
    - ImmutabilityViolationError on UPDATE/DELETE of a history row.
    - SeriesInUseError on DELETE of a series with history.

Audit relevance:
    NumberingHistory proves that no two documents of one series share a
    number, and records which sequence value each number consumed.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from voucher_kernel.db.base import Base, TrackedBase, UUIDString
from voucher_kernel.domain.numbering import (
    NumberLayout,
    ResetFrequency,
    SeriesState,
)


class NumberingSeries(TrackedBase):
    """
    A named, independently sequenced numbering stream.

    Contract:
        Scoped to one tenant and one document type (optionally one branch).
        Configuration fields change only through SeriesRegistry; the
        counter fields change only through SequenceAllocator.

    Guarantees:
        - ``snapshot()`` returns an immutable copy used for planning the
          next allocation.
    """

    __tablename__ = "numbering_series"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "document_type", "series_name",
            name="uq_series_tenant_type_name",
        ),
        Index("idx_series_tenant_type", "tenant_id", "document_type"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # e.g. "sales_invoice", "purchase_invoice", "receipt"
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)

    series_name: Mapped[str] = mapped_column(String(100), nullable=False)

    branch_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    prefix: Mapped[str] = mapped_column(String(10), nullable=False)

    # Token string, e.g. "PREFIX-YEAR-SEQUENCE"
    format: Mapped[str] = mapped_column(String(100), nullable=False)

    separator: Mapped[str] = mapped_column(String(5), nullable=False, default="-")

    sequence_length: Mapped[int] = mapped_column(BigInteger, nullable=False, default=4)

    current_sequence: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    start_number: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    # Hard cap; None means unbounded
    end_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    reset_frequency: Mapped[ResetFrequency] = mapped_column(
        SAEnum(
            ResetFrequency,
            native_enum=False,
            length=20,
            values_callable=lambda enum: [m.value for m in enum],
        ),
        nullable=False,
        default=ResetFrequency.NEVER,
    )

    last_reset_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<NumberingSeries {self.series_name} {self.document_type} "
            f"seq={self.current_sequence}>"
        )

    @property
    def layout(self) -> NumberLayout:
        return NumberLayout(
            format=self.format,
            prefix=self.prefix,
            separator=self.separator,
            sequence_length=self.sequence_length,
            branch_code=self.branch_code,
        )

    def snapshot(self) -> SeriesState:
        """Immutable copy of the fields that drive allocation."""
        return SeriesState(
            series_id=str(self.id),
            layout=self.layout,
            current_sequence=self.current_sequence,
            start_number=self.start_number,
            end_number=self.end_number,
            reset_frequency=ResetFrequency.parse(self.reset_frequency),
            last_reset_at=self.last_reset_at,
        )


# One default per (tenant, document type, branch); a NULL branch_code is
# coalesced so tenant-wide defaults collide like any other scope
Index(
    "uq_series_single_default",
    NumberingSeries.tenant_id,
    NumberingSeries.document_type,
    func.coalesce(NumberingSeries.branch_code, ""),
    unique=True,
    postgresql_where=text("is_default"),
    sqlite_where=text("is_default = 1"),
)


class NumberingHistory(Base):
    """
    One row per successful allocation.  Append-only.

    Contract:
        Created exactly once per allocated number; never updated or deleted.
    """

    __tablename__ = "numbering_history"

    __table_args__ = (
        UniqueConstraint(
            "series_id", "generated_number", name="uq_history_series_number"
        ),
        Index("idx_history_tenant", "tenant_id"),
        Index("idx_history_document", "document_id"),
    )

    series_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("numbering_series.id"),
        nullable=False,
    )

    # Nullable: numbers may be allocated before the document row exists
    document_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    generated_number: Mapped[str] = mapped_column(String(32), nullable=False)

    sequence_used: Mapped[int] = mapped_column(BigInteger, nullable=False)

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    generated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<NumberingHistory {self.generated_number} seq={self.sequence_used}>"
