"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A posted document is a legal record.  Its totals, lines and ledger entries
must never change after posting, and the numbering history that proves every
number was issued once must never be edited.  Services already refuse such
edits; these listeners catch any code path that reaches the ORM anyway.

SQLAlchemy fires events before UPDATE/DELETE/INSERT reach the database:

    session.flush()
         |
         v
    [before_update / before_delete / before_insert]
         |                       |
         v                       v
    SQL sent (checks pass)   ImmutableDocumentError / ImmutabilityViolationError

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                  | Operations blocked
------------------|---------------------------------|---------------------------
Document          | After status = POSTED           | UPDATE, DELETE
Document          | After status = CANCELLED        | UPDATE
LineItem          | When parent document is POSTED  | INSERT, UPDATE, DELETE
LedgerEntry       | When parent document is POSTED  | INSERT, UPDATE, DELETE
NumberingHistory  | ALWAYS (from creation)          | UPDATE, DELETE
NumberingSeries   | Once it has history             | DELETE

updated_at/updated_by_id may change on any row: they are audit metadata.

The posting transition itself (DRAFT -> POSTED) is allowed: the check looks
at the status the row had *before* this flush, via attribute history.

===============================================================================
USAGE
===============================================================================

``init_engine_from_url()`` and the ``VoucherEngine`` constructor register the
listeners, so a host that builds its own session factory is covered as
soon as it constructs the engine facade.  Registration is idempotent:

    from voucher_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

Tests that need to write forbidden rows call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from voucher_kernel.exceptions import (
    ImmutabilityViolationError,
    ImmutableDocumentError,
    SeriesInUseError,
)
from voucher_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _status_before_flush(target) -> str:
    """Status the row had in the database before the pending change."""
    history = get_history(target, "status")
    if history.deleted:
        old = history.deleted[0]
    elif history.unchanged:
        old = history.unchanged[0]
    else:
        old = target.status
    return getattr(old, "value", old)


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _AUDIT_FIELDS and insp.attrs[attr.key].history.has_changes()
    ]


def _block(entity_type: str, entity_id: str, operation: str, reason: str, document_id=None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "reason": reason,
        },
    )
    if document_id is not None:
        raise ImmutableDocumentError(str(document_id), reason)
    raise ImmutabilityViolationError(entity_type, entity_id, reason)


def _check_document_update(mapper, connection, target):
    """
    Prevent updates to posted or cancelled documents.

    DRAFT -> POSTED and DRAFT -> CANCELLED are the transitions themselves and
    pass; any later change is blocked.
    """
    previous = _status_before_flush(target)
    if previous == "draft":
        return
    changed = _changed_fields(target)
    if not changed:
        return
    reason = f"cannot modify field '{changed[0]}' on {previous} document"
    if previous == "posted":
        _block("Document", str(target.id), "UPDATE", reason, document_id=target.id)
    _block("Document", str(target.id), "UPDATE", reason)


def _check_document_delete(mapper, connection, target):
    if _status_before_flush(target) == "posted":
        _block(
            "Document", str(target.id), "DELETE",
            "cannot delete posted document", document_id=target.id,
        )


def _parent_is_posted(connection, document_id) -> bool:
    from voucher_kernel.models.document import Document

    status = connection.execute(
        select(Document.__table__.c.status).where(
            Document.__table__.c.id == str(document_id)
        )
    ).scalar_one_or_none()
    return status == "posted"


def _child_check(entity_type: str, operation: str):
    def _check(mapper, connection, target):
        if target.document_id is not None and _parent_is_posted(connection, target.document_id):
            _block(
                entity_type,
                str(target.id),
                operation,
                f"cannot {operation.lower()} {entity_type} of posted document",
                document_id=target.document_id,
            )

    _check.__name__ = f"_check_{entity_type.lower()}_{operation.lower()}"
    return _check


_check_line_item_insert = _child_check("LineItem", "INSERT")
_check_line_item_update = _child_check("LineItem", "UPDATE")
_check_line_item_delete = _child_check("LineItem", "DELETE")
_check_ledger_entry_insert = _child_check("LedgerEntry", "INSERT")
_check_ledger_entry_update = _child_check("LedgerEntry", "UPDATE")
_check_ledger_entry_delete = _child_check("LedgerEntry", "DELETE")


def _check_history_update(mapper, connection, target):
    _block("NumberingHistory", str(target.id), "UPDATE", "numbering history is append-only")


def _check_history_delete(mapper, connection, target):
    _block("NumberingHistory", str(target.id), "DELETE", "numbering history is append-only")


def _check_series_deletion_before_flush(session, flush_context, instances):
    """
    Refuse to delete a series that has issued numbers.

    Runs in before_flush so the flush plan never includes the DELETE.
    """
    from voucher_kernel.models.numbering import NumberingHistory, NumberingSeries

    for obj in list(session.deleted):
        if not isinstance(obj, NumberingSeries):
            continue
        with session.no_autoflush:
            count = session.execute(
                select(func.count())
                .select_from(NumberingHistory)
                .where(NumberingHistory.series_id == obj.id)
            ).scalar_one()
        if count:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "NumberingSeries",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                    "reason": "series_has_history",
                },
            )
            raise SeriesInUseError(str(obj.id), count)


def _listeners():
    from voucher_kernel.models.document import Document, LedgerEntry, LineItem
    from voucher_kernel.models.numbering import NumberingHistory

    return [
        (Session, "before_flush", _check_series_deletion_before_flush),
        (Document, "before_update", _check_document_update),
        (Document, "before_delete", _check_document_delete),
        (LineItem, "before_insert", _check_line_item_insert),
        (LineItem, "before_update", _check_line_item_update),
        (LineItem, "before_delete", _check_line_item_delete),
        (LedgerEntry, "before_insert", _check_ledger_entry_insert),
        (LedgerEntry, "before_update", _check_ledger_entry_update),
        (LedgerEntry, "before_delete", _check_ledger_entry_delete),
        (NumberingHistory, "before_update", _check_history_update),
        (NumberingHistory, "before_delete", _check_history_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call after the models are importable and before any database writes.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners():
    """Remove immutability enforcement event listeners. FOR TESTING ONLY."""
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
