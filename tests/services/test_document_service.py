"""
Tests for DocumentService.

Uses the committing session factory: every service call runs in its own
transaction, exactly as in production.

Covers:
- Document creation with totals, default entries, number and history
- Atomicity: failed creation persists nothing and consumes no number
- Deferred numbering
- Draft edits (lines, entries) and their refusal once finalized
- Posting and cancellation through the service
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from voucher_engines.aggregator import LineInput
from voucher_engines.ledger_entries import EntrySpec
from voucher_kernel.db.engine import session_scope
from voucher_kernel.domain.tenant import TenantContext
from voucher_kernel.exceptions import (
    DocumentNotFoundError,
    EmptyDocumentError,
    ImmutableDocumentError,
    InvalidDocumentDateError,
    InvalidLedgerEntryError,
    InvalidStatusTransitionError,
    MissingDocumentNumberError,
    SeriesNotFoundError,
    UnbalancedEntryError,
)
from voucher_kernel.models.document import Document
from voucher_kernel.models.numbering import NumberingHistory
from voucher_services.document_service import DocumentService

DOC_DATE = date(2025, 1, 15)


@pytest.fixture
def sales_series(voucher_engine):
    return voucher_engine.create_series(
        document_type="sales_invoice",
        series_name="Main",
        prefix="INV",
        format="PREFIX-YEAR-SEQUENCE",
        is_default=True,
    )


@pytest.fixture
def purchase_series(voucher_engine):
    return voucher_engine.create_series(
        document_type="purchase_invoice",
        series_name="Purchases",
        prefix="PUR",
        format="PREFIX-YEAR-SEQUENCE",
        is_default=True,
    )


@pytest.fixture
def documents(voucher_engine) -> DocumentService:
    return voucher_engine.documents


def _sale(documents, **overrides):
    params = {
        "origin": "27",
        "destination": "Maharashtra",
        "party_reference": "Customer A",
    }
    params.update(overrides)
    lines = params.pop("lines", [LineInput.of(1, "100.50", 18)])
    return documents.create_document("sales_invoice", DOC_DATE, lines, **params)


def _count_documents(factory, tenant_id):
    with session_scope(factory) as session:
        return session.execute(
            select(func.count()).select_from(Document).where(Document.tenant_id == tenant_id)
        ).scalar_one()


class TestCreateDocument:
    """Creation stores totals, lines, entries and the number together."""

    def test_sales_invoice(self, documents, sales_series):
        doc = _sale(documents)

        assert doc.document_number == "INV-2025-0001"
        assert doc.series_id == sales_series.id
        assert doc.status == "draft"
        assert doc.is_same_region is True
        assert doc.subtotal == Decimal("100.50")
        assert doc.same_region_tax_1 == Decimal("9.05")
        assert doc.same_region_tax_2 == Decimal("9.05")
        assert doc.total_tax == Decimal("18.10")
        assert doc.grand_total == Decimal("119")
        assert doc.rounding_delta == Decimal("0.40")
        assert len(doc.line_items) == 1
        assert doc.line_items[0].taxable_amount == Decimal("100.50")

    def test_default_entries_balanced(self, documents, sales_series):
        doc = _sale(documents)

        references = [e.ledger_reference for e in doc.ledger_entries]
        assert references == [
            "Customer A", "Sales Account", "Output CGST", "Output SGST", "Round Off",
        ]
        assert doc.total_debits == doc.total_credits == Decimal("119")

    def test_cross_region(self, documents, sales_series):
        doc = _sale(documents, destination="Karnataka", lines=[LineInput.of(1, 1000, 18)])

        assert doc.is_same_region is False
        assert doc.cross_region_tax == Decimal("180.00")
        assert "Output IGST" in [e.ledger_reference for e in doc.ledger_entries]

    def test_reverse_charge_purchase(self, documents, purchase_series):
        doc = documents.create_document(
            "purchase_invoice",
            DOC_DATE,
            [LineInput.of(1, 1000, 18)],
            origin="29",
            destination="27",
            party_reference="Supplier B",
            reverse_liability=True,
        )

        by_ledger = {e.ledger_reference: e for e in doc.ledger_entries}
        assert by_ledger["Supplier B"].credit_amount == Decimal("1000.00")
        assert by_ledger["Input IGST"].debit_amount == Decimal("180.00")
        assert by_ledger["RCM Payable"].credit_amount == Decimal("180.00")
        assert doc.total_debits == doc.total_credits

    def test_consecutive_documents(self, documents, sales_series):
        numbers = [_sale(documents).document_number for _ in range(3)]

        assert numbers == ["INV-2025-0001", "INV-2025-0002", "INV-2025-0003"]

    def test_history_linked_to_document(self, documents, sales_series, db_session_factory):
        doc = _sale(documents)

        with session_scope(db_session_factory) as session:
            rows = session.execute(
                select(NumberingHistory).where(NumberingHistory.document_id == doc.id)
            ).scalars().all()
            assert [r.generated_number for r in rows] == ["INV-2025-0001"]

    def test_no_party_no_entries(self, documents, sales_series):
        doc = _sale(documents, party_reference=None)

        assert doc.ledger_entries == ()

    def test_caller_entries(self, documents):
        doc = documents.create_document(
            "journal",
            DOC_DATE,
            [LineInput.of(1, 500)],
            ledger_entries=[
                EntrySpec.debit("Cash", Decimal("500")),
                EntrySpec.credit("Capital", Decimal("500")),
            ],
            allocate_number=False,
        )

        assert [e.ledger_reference for e in doc.ledger_entries] == ["Cash", "Capital"]
        assert doc.document_number is None

    def test_logs_with_tenant_context(self, documents, sales_series, captured_logs, tenant_id):
        doc = _sale(documents)

        created = [r for r in captured_logs() if r["message"] == "document_created"]
        assert created[0]["document_number"] == doc.document_number
        assert created[0]["tenant_id"] == tenant_id


class TestCreateDocumentFailures:
    """Nothing is persisted when creation fails."""

    def test_missing_series_rolls_back(self, documents, db_session_factory, tenant_id):
        with pytest.raises(SeriesNotFoundError):
            documents.create_document(
                "debit_note", DOC_DATE, [LineInput.of(1, 100, 18)], party_reference="Supplier B"
            )

        assert _count_documents(db_session_factory, tenant_id) == 0

    def test_future_date(self, voucher_engine, documents, sales_series):
        with pytest.raises(InvalidDocumentDateError) as exc_info:
            documents.create_document("sales_invoice", date(2025, 1, 16), [LineInput.of(1, 100)])

        assert exc_info.value.today == "2025-01-15"
        assert voucher_engine.preview_next_number(sales_series.id) == "INV-2025-0001"

    def test_empty_document(self, voucher_engine, documents, sales_series):
        with pytest.raises(EmptyDocumentError):
            _sale(documents, lines=[])

        assert voucher_engine.preview_next_number(sales_series.id) == "INV-2025-0001"

    def test_invalid_caller_entry(self, documents, db_session_factory, tenant_id):
        with pytest.raises(InvalidLedgerEntryError):
            documents.create_document(
                "journal",
                DOC_DATE,
                [LineInput.of(1, 500)],
                ledger_entries=[EntrySpec("Cash")],
                allocate_number=False,
            )

        assert _count_documents(db_session_factory, tenant_id) == 0


class TestDeferredNumbering:
    """Numbers assigned after creation."""

    def test_assign_number(self, voucher_engine, documents, sales_series):
        draft = _sale(documents, allocate_number=False)
        assert draft.document_number is None

        numbered = documents.assign_document_number(draft.id)

        assert numbered.document_number == "INV-2025-0001"
        assert numbered.series_id == sales_series.id

    def test_assign_is_idempotent(self, voucher_engine, documents, sales_series):
        doc = _sale(documents)

        again = documents.assign_document_number(doc.id)

        assert again.document_number == "INV-2025-0001"
        assert voucher_engine.preview_next_number(sales_series.id) == "INV-2025-0002"

    def test_unnumbered_document_cannot_post(self, documents, sales_series):
        draft = _sale(documents, allocate_number=False)

        with pytest.raises(MissingDocumentNumberError):
            documents.post_document(draft.id)


class TestDraftEdits:
    """Replacing lines and entries."""

    def test_replace_lines_recomputes_totals(self, documents, sales_series):
        doc = _sale(documents)

        updated = documents.replace_line_items(doc.id, [LineInput.of(2, 1000, 18)])

        assert updated.subtotal == Decimal("2000.00")
        assert updated.total_tax == Decimal("360.00")
        assert updated.grand_total == Decimal("2360")
        assert [line.line_number for line in updated.line_items] == [1]
        # Entries untouched unless rebuilt
        assert len(updated.ledger_entries) == 5

    def test_replace_lines_and_rebuild_entries(self, documents, sales_series):
        doc = _sale(documents)

        updated = documents.replace_line_items(
            doc.id,
            [LineInput.of(2, 1000, 18), LineInput.of(1, 500, 18)],
            rebuild_ledger_entries=True,
        )

        assert [line.line_number for line in updated.line_items] == [1, 2]
        assert len(updated.ledger_entries) == 4
        assert updated.total_debits == updated.total_credits == Decimal("2950")

    def test_replace_entries(self, documents, sales_series):
        doc = _sale(documents)

        updated = documents.replace_ledger_entries(
            doc.id,
            [EntrySpec.debit("Customer A", Decimal("119")), EntrySpec.credit("Sales Account", Decimal("119"))],
        )

        assert [e.line_number for e in updated.ledger_entries] == [1, 2]
        assert documents.post_document(doc.id).status == "posted"

    def test_replace_entries_rejects_invalid(self, documents, sales_series):
        doc = _sale(documents)

        with pytest.raises(InvalidLedgerEntryError):
            documents.replace_ledger_entries(
                doc.id, [EntrySpec("Customer A", Decimal("-1"), Decimal("0"))]
            )

        assert len(documents.get_document(doc.id).ledger_entries) == 5

    def test_replace_entries_rejects_both_sides(self, documents, sales_series):
        doc = _sale(documents)

        with pytest.raises(InvalidLedgerEntryError, match="both debit and credit"):
            documents.replace_ledger_entries(
                doc.id, [EntrySpec("Customer A", Decimal("10"), Decimal("10"))]
            )

        assert len(documents.get_document(doc.id).ledger_entries) == 5

    def test_posted_document_not_editable(self, documents, sales_series):
        doc = _sale(documents)
        documents.post_document(doc.id)

        with pytest.raises(ImmutableDocumentError):
            documents.replace_line_items(doc.id, [LineInput.of(1, 1)])
        with pytest.raises(ImmutableDocumentError):
            documents.replace_ledger_entries(doc.id, [EntrySpec.debit("X", Decimal("1"))])

    def test_cancelled_document_not_editable(self, documents, sales_series):
        doc = _sale(documents)
        documents.cancel_document(doc.id, "customer withdrew")

        with pytest.raises(InvalidStatusTransitionError):
            documents.replace_line_items(doc.id, [LineInput.of(1, 1)])


class TestLifecycle:
    """Posting, cancellation and lookups."""

    def test_post(self, documents, sales_series, deterministic_clock):
        doc = _sale(documents)

        result = documents.post_document(doc.id)
        stored = documents.get_document(doc.id)

        assert result.status == "posted"
        assert result.total_debits == Decimal("119")
        assert stored.is_posted
        assert stored.posted_at is not None

    def test_unbalanced_stays_draft(self, documents, sales_series):
        doc = _sale(
            documents,
            ledger_entries=[
                EntrySpec.debit("Customer A", Decimal("119")),
                EntrySpec.credit("Sales Account", Decimal("100")),
            ],
        )

        with pytest.raises(UnbalancedEntryError):
            documents.post_document(doc.id)

        assert documents.get_document(doc.id).status == "draft"

    def test_cancel(self, documents, sales_series):
        doc = _sale(documents, narration="Order 7")

        cancelled = documents.cancel_document(doc.id, "duplicate")

        assert cancelled.status == "cancelled"
        assert cancelled.narration == "Order 7\nCancelled: duplicate"

    def test_posted_cannot_be_cancelled(self, documents, sales_series):
        doc = _sale(documents)
        documents.post_document(doc.id)

        with pytest.raises(ImmutableDocumentError):
            documents.cancel_document(doc.id, "too late")

    def test_get_unknown(self, documents):
        with pytest.raises(DocumentNotFoundError):
            documents.get_document(uuid4())

    def test_other_tenant_cannot_see(
        self, documents, sales_series, db_session_factory, engine_config, deterministic_clock,
        test_actor_id,
    ):
        doc = _sale(documents)
        other = DocumentService(
            TenantContext("tenant-other", test_actor_id, db_session_factory),
            engine_config,
            deterministic_clock,
        )

        with pytest.raises(DocumentNotFoundError):
            other.get_document(doc.id)
        with pytest.raises(DocumentNotFoundError):
            other.post_document(doc.id)
