"""
ORM-level immutability enforcement.

Posted documents, their lines and entries, and numbering history must be
protected even when a code path bypasses the services and writes through
the ORM directly.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import event

from voucher_kernel.db.immutability import (
    _check_document_update,
    _check_history_delete,
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from voucher_kernel.exceptions import (
    ImmutabilityViolationError,
    ImmutableDocumentError,
    SeriesInUseError,
)
from voucher_kernel.models.document import Document, LedgerEntry, LineItem
from voucher_kernel.models.numbering import NumberingHistory, NumberingSeries
from voucher_services.voucher_engine import VoucherEngine


@pytest.fixture
def posted_document(session, posting_validator, make_document, tenant_id, test_actor_id):
    document = make_document()
    posting_validator.post(tenant_id, document.id, test_actor_id)
    return document


class TestPostedDocument:
    """Posted documents are frozen."""

    def test_field_update_blocked(self, session, posted_document):
        posted_document.narration = "changed"

        with pytest.raises(ImmutableDocumentError):
            session.flush()

    def test_total_update_blocked(self, session, posted_document):
        posted_document.grand_total = Decimal("1")

        with pytest.raises(ImmutableDocumentError, match="grand_total"):
            session.flush()

    def test_audit_fields_may_change(self, session, posted_document, test_actor_id):
        posted_document.updated_by_id = test_actor_id

        session.flush()

    def test_delete_blocked(self, session, posted_document):
        session.delete(posted_document)

        with pytest.raises(ImmutableDocumentError):
            session.flush()

    def test_entry_insert_blocked(self, session, posted_document):
        session.add(
            LedgerEntry(
                document_id=posted_document.id,
                line_number=99,
                ledger_reference="Round Off",
                debit_amount=Decimal("1"),
                credit_amount=Decimal("0"),
            )
        )

        with pytest.raises(ImmutableDocumentError):
            session.flush()

    def test_entry_update_blocked(self, session, posted_document):
        posted_document.ledger_entries[0].debit_amount = Decimal("1000")

        with pytest.raises(ImmutableDocumentError):
            session.flush()

    def test_line_item_insert_blocked(self, session, posted_document):
        zero = Decimal("0")
        session.add(
            LineItem(
                document_id=posted_document.id,
                line_number=1,
                quantity=Decimal("1"),
                unit_rate=Decimal("10"),
                line_amount=Decimal("10"),
                discount_amount=zero,
                taxable_amount=Decimal("10"),
                same_region_tax_1=zero,
                same_region_tax_2=zero,
                cross_region_tax=zero,
                surcharge=zero,
                total_tax=zero,
            )
        )

        with pytest.raises(ImmutableDocumentError):
            session.flush()


class TestCancelledDocument:
    """Cancelled documents cannot be edited either."""

    def test_update_blocked(self, session, posting_validator, make_document, tenant_id, test_actor_id):
        document = make_document()
        posting_validator.cancel(tenant_id, document.id, test_actor_id, "void")
        document.document_date = date(2025, 1, 1)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert not isinstance(exc_info.value, ImmutableDocumentError)


class TestDraftDocument:
    """Drafts stay editable through the ORM."""

    def test_draft_update_allowed(self, session, make_document):
        document = make_document()
        document.narration = "edited"
        document.ledger_entries[0].debit_amount = Decimal("200")

        session.flush()


class TestNumberingHistory:
    """History rows are append-only from creation."""

    @pytest.fixture
    def history_row(self, sequence_allocator, create_series, tenant_id, test_actor_id):
        create_series()
        allocation = sequence_allocator.allocate(tenant_id, "sales_invoice")
        return sequence_allocator.record_history(allocation, actor_id=test_actor_id)

    def test_update_blocked(self, session, history_row):
        history_row.generated_number = "INV-2025-9999"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, history_row):
        session.delete(history_row)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_series_delete_blocked(self, session, history_row):
        series = session.get(NumberingSeries, history_row.series_id)
        session.delete(series)

        with pytest.raises(SeriesInUseError):
            session.flush()


class TestListenerRegistration:
    """The engine facade switches the listeners on for host processes."""

    def test_engine_facade_registers_listeners(
        self, tenant_context, engine_config, deterministic_clock
    ):
        unregister_immutability_listeners()
        try:
            assert not event.contains(Document, "before_update", _check_document_update)

            VoucherEngine(tenant_context, engine_config, deterministic_clock)

            assert event.contains(Document, "before_update", _check_document_update)
            assert event.contains(
                NumberingHistory, "before_delete", _check_history_delete
            )
        finally:
            register_immutability_listeners()

    def test_registration_is_idempotent(self):
        register_immutability_listeners()
        register_immutability_listeners()

        assert event.contains(Document, "before_update", _check_document_update)
