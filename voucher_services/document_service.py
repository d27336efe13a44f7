"""
voucher_services.document_service -- document lifecycle orchestration.

Responsibility:
    Creates, edits, numbers, posts and cancels documents for one tenant.
    Composes the pure engines (aggregator, ledger entry builder) with the
    kernel services (SequenceAllocator, PostingValidator) and owns the
    transaction boundary of every operation.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Reads configuration through ``voucher_config`` and translates it with
    ``voucher_config.bridges``; the kernel never sees the config objects.

Invariants enforced:
    - One transaction per operation, opened from the tenant's session
      factory via ``session_scope``: commit on success, rollback and
      re-raise on any failure.
    - create_document: totals, lines, ledger entries, number allocation and
      the NumberingHistory row commit together or not at all.
    - Edits lock the document row and are refused unless it is a draft.
    - Totals stored on a document are exactly the aggregator's output.

Failure modes:
    - EmptyDocumentError, InvalidAmountError, InvalidRateError,
      MissingJurisdictionError from the aggregator (before any write).
    - InvalidDocumentDateError for a document dated after today.
    - InvalidLedgerEntryError for malformed caller entries.
    - SeriesNotFoundError, SequenceExhaustedError, ComplianceViolationError
      from allocation (transaction rolled back, no number consumed).
    - DocumentNotFoundError, ImmutableDocumentError,
      InvalidStatusTransitionError on edits of missing or finalized documents.
    - UnbalancedEntryError, MissingDocumentNumberError on posting.

Audit relevance:
    ``document_created``, ``document_totals_computed``,
    ``document_number_assigned``, ``document_lines_replaced`` and
    ``document_entries_replaced`` are logged at INFO; posting and
    cancellation are logged by PostingValidator.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from voucher_config import get_active_config
from voucher_config.bridges import build_aggregator, build_numbering_rules
from voucher_config.schema import EngineConfig
from voucher_engines.aggregator import DocumentTotals, LineInput
from voucher_engines.ledger_entries import (
    EntrySpec,
    build_ledger_entries,
    supports_document_type,
)
from voucher_kernel.db.engine import session_scope
from voucher_kernel.db.types import to_decimal
from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.dtos import DocumentInfo, PostingResult
from voucher_kernel.domain.tenant import TenantContext
from voucher_kernel.exceptions import DocumentNotFoundError, InvalidDocumentDateError
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_kernel.models.document import Document, DocumentStatus, LedgerEntry, LineItem
from voucher_kernel.services.posting_validator import PostingValidator, validate_entry_sides
from voucher_kernel.services.sequence_allocator import SequenceAllocator

logger = get_logger("services.document")


class DocumentService:
    """
    Document lifecycle for one tenant.

    Contract:
        Every public method runs in its own transaction and returns a
        detached DTO (``DocumentInfo`` / ``PostingResult``), never an ORM
        object.

    Non-goals:
        - Does NOT administer numbering series (see SeriesRegistry).
        - Does NOT talk to any tax-authority service.

    Usage:
        service = DocumentService(context, config=get_active_config())
        doc = service.create_document(
            "sales_invoice", date(2025, 1, 15),
            [LineInput.of(10, 100, tax_rate=18)],
            origin="27", destination="Maharashtra",
            party_reference="Customer A",
        )
        service.post_document(doc.id)
    """

    def __init__(
        self,
        context: TenantContext,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
    ):
        self._context = context
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._rules = build_numbering_rules(self._config)
        self._aggregator = build_aggregator(self._config)

    @property
    def tenant_id(self) -> str:
        return self._context.tenant_id

    @property
    def actor_id(self) -> UUID:
        return self._context.actor_id

    # ------------------------------------------------------------------
    # Pure computation
    # ------------------------------------------------------------------

    def compute_totals(
        self,
        lines: Sequence[LineInput],
        origin: str | None = None,
        destination: str | None = None,
        reverse_liability: bool = False,
    ) -> DocumentTotals:
        """Document totals for ``lines``; no database access."""
        totals = self._aggregator.aggregate(lines, origin, destination, reverse_liability)
        logger.info(
            "document_totals_computed",
            extra={
                "tenant_id": self.tenant_id,
                "line_count": len(totals.lines),
                "is_same_region": totals.is_same_region,
                "subtotal": str(totals.subtotal),
                "total_tax": str(totals.total_tax),
                "grand_total": str(totals.rounded_total),
                "rounding_delta": str(totals.rounding_delta),
            },
        )
        return totals

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_document(
        self,
        document_type: str,
        document_date: date,
        lines: Sequence[LineInput],
        *,
        origin: str | None = None,
        destination: str | None = None,
        reverse_liability: bool = False,
        party_reference: str | None = None,
        ledger_entries: Sequence[EntrySpec] | None = None,
        allocate_number: bool = True,
        series_id: UUID | None = None,
        branch_code: str | None = None,
        narration: str | None = None,
    ) -> DocumentInfo:
        """
        Create a draft document with its lines, entries and number.

        When ``ledger_entries`` is None and the document type has a default
        entry profile and a party, the entries are built from the totals
        and the configured ledgers.  Otherwise the caller's entries (or
        none) are stored.

        Postconditions:
            - On success the document, its rows and the NumberingHistory
              row are committed.
            - On failure nothing is persisted and no number is consumed.
        """
        self._check_document_date(document_date)
        totals = self.compute_totals(lines, origin, destination, reverse_liability)

        if ledger_entries is None:
            entries = self._default_entries(document_type, totals, party_reference)
        else:
            entries = tuple(ledger_entries)
            for entry in entries:
                validate_entry_sides(
                    entry.ledger_reference,
                    to_decimal(entry.debit_amount, "debit_amount"),
                    to_decimal(entry.credit_amount, "credit_amount"),
                )

        with LogContext.bind(tenant_id=self.tenant_id, actor_id=self.actor_id):
            t0 = time.monotonic()
            with session_scope(self._context.session_factory) as session:
                document = Document(
                    tenant_id=self.tenant_id,
                    document_type=document_type,
                    document_date=document_date,
                    party_reference=party_reference,
                    origin_jurisdiction=origin,
                    destination_jurisdiction=destination,
                    narration=narration,
                    status=DocumentStatus.DRAFT,
                    created_by_id=self.actor_id,
                )
                self._apply_totals(document, totals)
                document.line_items = self._line_rows(totals)
                document.ledger_entries = self._entry_rows(entries)

                allocation = None
                if allocate_number:
                    allocator = SequenceAllocator(session, self._clock, self._rules)
                    allocation = allocator.allocate(
                        self.tenant_id, document_type, series_id, branch_code
                    )
                    document.series_id = allocation.series_id
                    document.document_number = allocation.document_number

                session.add(document)
                session.flush()

                if allocation is not None:
                    allocator.record_history(allocation, document.id, self.actor_id)

                info = DocumentInfo.from_model(document)

            logger.info(
                "document_created",
                extra={
                    "document_id": str(info.id),
                    "document_type": document_type,
                    "document_number": info.document_number,
                    "line_count": len(info.line_items),
                    "entry_count": len(info.ledger_entries),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        return info

    def assign_document_number(
        self,
        document_id: UUID,
        series_id: UUID | None = None,
        branch_code: str | None = None,
    ) -> DocumentInfo:
        """
        Allocate a number for a draft created without one.

        A document that already has a number is returned unchanged; a
        second allocation would burn a sequence value.
        """
        with session_scope(self._context.session_factory) as session:
            validator = self._validator(session)
            document = validator.lock_document(self.tenant_id, document_id)
            validator.assert_editable(document)

            if document.document_number:
                logger.info(
                    "document_number_already_assigned",
                    extra={
                        "document_id": str(document.id),
                        "document_number": document.document_number,
                    },
                )
                return DocumentInfo.from_model(document)

            allocator = SequenceAllocator(session, self._clock, self._rules)
            allocation = allocator.allocate(
                self.tenant_id, document.document_type, series_id, branch_code
            )
            document.series_id = allocation.series_id
            document.document_number = allocation.document_number
            document.updated_by_id = self.actor_id
            session.flush()
            allocator.record_history(allocation, document.id, self.actor_id)

            logger.info(
                "document_number_assigned",
                extra={
                    "document_id": str(document.id),
                    "document_number": allocation.document_number,
                    "series_id": str(allocation.series_id),
                    "sequence": allocation.sequence,
                },
            )
            return DocumentInfo.from_model(document)

    # ------------------------------------------------------------------
    # Draft edits
    # ------------------------------------------------------------------

    def replace_line_items(
        self,
        document_id: UUID,
        lines: Sequence[LineInput],
        *,
        rebuild_ledger_entries: bool = False,
    ) -> DocumentInfo:
        """
        Replace every line of a draft and recompute its totals.

        The stored jurisdictions and reverse-liability flag are reused.
        Ledger entries are kept unless ``rebuild_ledger_entries`` is set,
        in which case the default entries are built from the new totals.
        """
        with session_scope(self._context.session_factory) as session:
            validator = self._validator(session)
            document = validator.lock_document(self.tenant_id, document_id)
            validator.assert_editable(document)

            totals = self.compute_totals(
                lines,
                document.origin_jurisdiction,
                document.destination_jurisdiction,
                document.reverse_liability,
            )

            # Flush the deletes first: line numbers restart at 1
            document.line_items.clear()
            if rebuild_ledger_entries:
                document.ledger_entries.clear()
            session.flush()

            self._apply_totals(document, totals)
            document.line_items.extend(self._line_rows(totals))
            if rebuild_ledger_entries:
                entries = self._default_entries(
                    document.document_type, totals, document.party_reference
                )
                document.ledger_entries.extend(self._entry_rows(entries))
            document.updated_by_id = self.actor_id
            session.flush()

            logger.info(
                "document_lines_replaced",
                extra={
                    "document_id": str(document.id),
                    "line_count": len(totals.lines),
                    "grand_total": str(document.grand_total),
                    "entries_rebuilt": rebuild_ledger_entries,
                },
            )
            return DocumentInfo.from_model(document)

    def replace_ledger_entries(
        self,
        document_id: UUID,
        entries: Sequence[EntrySpec],
    ) -> DocumentInfo:
        """Replace every ledger entry of a draft.  Balance is checked at posting."""
        for entry in entries:
            validate_entry_sides(
                entry.ledger_reference,
                to_decimal(entry.debit_amount, "debit_amount"),
                to_decimal(entry.credit_amount, "credit_amount"),
            )

        with session_scope(self._context.session_factory) as session:
            validator = self._validator(session)
            document = validator.lock_document(self.tenant_id, document_id)
            validator.assert_editable(document)

            document.ledger_entries.clear()
            session.flush()
            document.ledger_entries.extend(self._entry_rows(entries))
            document.updated_by_id = self.actor_id
            session.flush()

            logger.info(
                "document_entries_replaced",
                extra={
                    "document_id": str(document.id),
                    "entry_count": len(entries),
                    "total_debits": str(document.total_debits),
                    "total_credits": str(document.total_credits),
                },
            )
            return DocumentInfo.from_model(document)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def post_document(self, document_id: UUID) -> PostingResult:
        """Post a draft; an unbalanced document stays a draft."""
        with LogContext.bind(
            tenant_id=self.tenant_id, actor_id=self.actor_id, document_id=document_id
        ):
            with session_scope(self._context.session_factory) as session:
                return self._validator(session).post(
                    self.tenant_id, document_id, self.actor_id
                )

    def cancel_document(self, document_id: UUID, reason: str | None = None) -> DocumentInfo:
        with LogContext.bind(
            tenant_id=self.tenant_id, actor_id=self.actor_id, document_id=document_id
        ):
            with session_scope(self._context.session_factory) as session:
                document = self._validator(session).cancel(
                    self.tenant_id, document_id, self.actor_id, reason
                )
                return DocumentInfo.from_model(document)

    def get_document(self, document_id: UUID) -> DocumentInfo:
        with session_scope(self._context.session_factory) as session:
            document = session.execute(
                select(Document).where(
                    Document.id == document_id,
                    Document.tenant_id == self.tenant_id,
                )
            ).scalar_one_or_none()
            if document is None:
                raise DocumentNotFoundError(str(document_id), self.tenant_id)
            return DocumentInfo.from_model(document)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validator(self, session: Session) -> PostingValidator:
        return PostingValidator(
            session, self._clock, balance_tolerance=self._config.posting.balance_tolerance
        )

    def _check_document_date(self, document_date: date) -> None:
        today = self._rules.localize(self._clock.now_utc()).date()
        if document_date > today:
            raise InvalidDocumentDateError(document_date.isoformat(), today.isoformat())

    def _default_entries(
        self,
        document_type: str,
        totals: DocumentTotals,
        party_reference: str | None,
    ) -> tuple[EntrySpec, ...]:
        if not party_reference or not supports_document_type(document_type):
            return ()
        return build_ledger_entries(
            document_type, totals, party_reference, self._config.ledgers.references
        )

    @staticmethod
    def _apply_totals(document: Document, totals: DocumentTotals) -> None:
        document.is_same_region = totals.is_same_region
        document.reverse_liability = totals.reverse_liability
        document.subtotal = totals.subtotal
        document.same_region_tax_1 = totals.same_region_tax_1
        document.same_region_tax_2 = totals.same_region_tax_2
        document.cross_region_tax = totals.cross_region_tax
        document.surcharge = totals.surcharge
        document.total_tax = totals.total_tax
        document.rounding_delta = totals.rounding_delta
        document.grand_total = totals.rounded_total

    @staticmethod
    def _line_rows(totals: DocumentTotals) -> list[LineItem]:
        return [
            LineItem(
                line_number=b.line_number,
                description=b.line.description,
                quantity=b.line.quantity,
                unit_rate=b.line.rate,
                discount_percent=b.line.discount_percent,
                tax_rate=b.line.tax_rate,
                surcharge_rate=b.line.surcharge_rate,
                line_amount=b.line_amount,
                discount_amount=b.discount_amount,
                taxable_amount=b.taxable_amount,
                same_region_tax_1=b.same_region_tax_1,
                same_region_tax_2=b.same_region_tax_2,
                cross_region_tax=b.cross_region_tax,
                surcharge=b.surcharge,
                total_tax=b.total_tax,
            )
            for b in totals.lines
        ]

    @staticmethod
    def _entry_rows(entries: Sequence[EntrySpec]) -> list[LedgerEntry]:
        return [
            LedgerEntry(
                line_number=number,
                ledger_reference=entry.ledger_reference,
                debit_amount=to_decimal(entry.debit_amount, "debit_amount"),
                credit_amount=to_decimal(entry.credit_amount, "credit_amount"),
                narration=entry.narration,
            )
            for number, entry in enumerate(entries, start=1)
        ]
