"""
PostingValidator -- the draft -> posted / draft -> cancelled gate.

Responsibility:
    Moves a document out of DRAFT.  Posting requires an allocated number
    and balanced ledger entries; cancelling requires nothing but a draft.
    Also answers whether a document may still be edited.

Architecture position:
    Kernel > Services -- imperative shell.  Legal moves come from
    ``voucher_kernel.domain.workflow.DOCUMENT_WORKFLOW``.

Invariants enforced:
    - Only DRAFT documents transition; POSTED and CANCELLED are terminal.
    - A document is posted only if it has a document number and
      |sum(debit) - sum(credit)| is below the balance tolerance.
    - A rejected post changes nothing: status stays DRAFT.
    - The document row is locked (``SELECT ... FOR UPDATE``) for the whole
      check-and-transition.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - DocumentNotFoundError
    - MissingDocumentNumberError
    - UnbalancedEntryError
    - InvalidLedgerEntryError: an entry with both, neither or a negative side.
    - ImmutableDocumentError: the document is already posted.
    - InvalidStatusTransitionError: the document is cancelled.

Audit relevance:
    ``document_posted`` and ``document_cancelled`` are logged at INFO,
    ``posting_rejected_unbalanced`` at WARNING with both sums.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from voucher_kernel.domain.clock import Clock
from voucher_kernel.domain.dtos import PostingResult
from voucher_kernel.domain.workflow import DOCUMENT_WORKFLOW
from voucher_kernel.exceptions import (
    DocumentNotFoundError,
    ImmutableDocumentError,
    InvalidLedgerEntryError,
    InvalidStatusTransitionError,
    MissingDocumentNumberError,
    UnbalancedEntryError,
)
from voucher_kernel.logging_config import get_logger
from voucher_kernel.models.document import Document, DocumentStatus
from voucher_kernel.services.base import BaseService

logger = get_logger("services.posting_validator")

DEFAULT_BALANCE_TOLERANCE = Decimal("0.01")


def validate_entry_sides(
    ledger_reference: str,
    debit_amount: Decimal,
    credit_amount: Decimal,
) -> None:
    """
    Check that an entry carries exactly one positive, non-negative side.

    Raises:
        InvalidLedgerEntryError
    """
    if not ledger_reference or not ledger_reference.strip():
        raise InvalidLedgerEntryError(ledger_reference, "ledger reference is required")
    if debit_amount < 0 or credit_amount < 0:
        raise InvalidLedgerEntryError(ledger_reference, "amounts must not be negative")
    if debit_amount > 0 and credit_amount > 0:
        raise InvalidLedgerEntryError(ledger_reference, "entry has both debit and credit")
    if debit_amount == 0 and credit_amount == 0:
        raise InvalidLedgerEntryError(ledger_reference, "entry has neither debit nor credit")


class PostingValidator(BaseService):
    """
    Service enforcing the document lifecycle.

    Contract:
        ``post`` and ``cancel`` lock the document, fire the workflow
        transition and flush.  ``assert_editable`` raises unless the
        document is a draft.

    Non-goals:
        - Does NOT allocate numbers or compute totals.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        balance_tolerance: Decimal = DEFAULT_BALANCE_TOLERANCE,
    ):
        super().__init__(session, clock)
        self._tolerance = balance_tolerance

    def lock_document(self, tenant_id: str, document_id: UUID) -> Document:
        """Load a document of the tenant with a row lock."""
        document = self.session.execute(
            select(Document)
            .where(Document.id == document_id, Document.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(str(document_id), tenant_id)
        return document

    def assert_editable(self, document: Document) -> None:
        """
        Raise unless the document is still a draft.

        Raises:
            ImmutableDocumentError: posted.
            InvalidStatusTransitionError: cancelled.
        """
        if document.status == DocumentStatus.POSTED:
            raise ImmutableDocumentError(str(document.id))
        if document.status == DocumentStatus.CANCELLED:
            raise InvalidStatusTransitionError(str(document.id), "cancelled", "draft")

    def check_balance(self, document: Document) -> tuple[Decimal, Decimal]:
        """
        Validate every entry and the debit/credit balance.

        Returns:
            (total_debits, total_credits)

        Raises:
            InvalidLedgerEntryError, UnbalancedEntryError
        """
        for entry in document.ledger_entries:
            validate_entry_sides(entry.ledger_reference, entry.debit_amount, entry.credit_amount)

        debits = document.total_debits
        credits = document.total_credits
        difference = abs(debits - credits)
        if difference >= self._tolerance:
            logger.warning(
                "posting_rejected_unbalanced",
                extra={
                    "document_id": str(document.id),
                    "debits": str(debits),
                    "credits": str(credits),
                    "difference": str(difference),
                },
            )
            raise UnbalancedEntryError(
                str(document.id), str(debits), str(credits), str(difference)
            )
        return debits, credits

    def post(self, tenant_id: str, document_id: UUID, actor_id: UUID) -> PostingResult:
        """
        Post a draft document.

        Preconditions:
            - The caller is within an active database transaction.
        Postconditions:
            - On success: status POSTED, posted_at/posted_by_id set, flushed.
            - On failure: nothing changed.

        Raises:
            DocumentNotFoundError, MissingDocumentNumberError,
            InvalidLedgerEntryError, UnbalancedEntryError,
            ImmutableDocumentError, InvalidStatusTransitionError
        """
        document = self.lock_document(tenant_id, document_id)
        status = document.status.value
        transition = DOCUMENT_WORKFLOW.transition_for(status, "post")
        if transition is None:
            if document.status == DocumentStatus.POSTED:
                raise ImmutableDocumentError(str(document.id), "document is already posted")
            raise InvalidStatusTransitionError(str(document.id), status, "posted")

        if not document.document_number:
            raise MissingDocumentNumberError(str(document.id))
        debits, credits = self.check_balance(document)

        now = self.clock.now_utc()
        document.status = DocumentStatus(transition.to_state)
        document.posted_at = now
        document.posted_by_id = actor_id
        document.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "document_posted",
            extra={
                "tenant_id": tenant_id,
                "document_id": str(document.id),
                "document_number": document.document_number,
                "total_debits": str(debits),
                "total_credits": str(credits),
                "actor_id": str(actor_id),
            },
        )
        return PostingResult(
            document_id=document.id,
            document_number=document.document_number,
            status=document.status.value,
            total_debits=debits,
            total_credits=credits,
            posted_at=now,
        )

    def cancel(
        self,
        tenant_id: str,
        document_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> Document:
        """
        Cancel a draft document.  The reason is kept and appended to the
        narration.

        Raises:
            DocumentNotFoundError, ImmutableDocumentError,
            InvalidStatusTransitionError
        """
        document = self.lock_document(tenant_id, document_id)
        status = document.status.value
        transition = DOCUMENT_WORKFLOW.transition_for(status, "cancel")
        if transition is None:
            if document.status == DocumentStatus.POSTED:
                raise ImmutableDocumentError(str(document.id), "posted documents cannot be cancelled")
            raise InvalidStatusTransitionError(str(document.id), status, "cancelled")

        document.status = DocumentStatus(transition.to_state)
        document.cancelled_at = self.clock.now_utc()
        document.cancellation_reason = reason
        if reason:
            note = f"Cancelled: {reason}"
            document.narration = f"{document.narration}\n{note}" if document.narration else note
        document.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "document_cancelled",
            extra={
                "tenant_id": tenant_id,
                "document_id": str(document.id),
                "document_number": document.document_number,
                "reason": reason,
                "actor_id": str(actor_id),
            },
        )
        return document
