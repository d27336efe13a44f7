"""
SequenceAllocator -- gapless document numbers via locked series rows.

Responsibility:
    Hands out the next document number of a numbering series.  Locks the
    single series row (``SELECT ... FOR UPDATE``), applies the reset policy,
    checks the end_number cap, renders the number and checks compliance,
    and only then advances ``current_sequence``.  Appends the matching
    NumberingHistory row on request.

Architecture position:
    Kernel > Services -- imperative shell around the pure rules in
    ``voucher_kernel.domain.numbering``.  Called by DocumentService and by
    the VoucherEngine facade.

Invariants enforced:
    - Uniqueness: the series row is locked for the whole read-check-write,
      so two allocations can never observe the same current_sequence.
      The aggregate-max-plus-one pattern is never used.
    - Gaplessness: the counter advances only after every check has passed;
      a failed allocation leaves the row untouched.  The increment becomes
      visible only when the caller's transaction commits.
    - Lock scope is exactly one series row; other series and other tenants
      are not blocked (PostgreSQL).

Failure modes:
    - SeriesNotFoundError: no active explicit or default series.
    - SequenceExhaustedError: next value beyond end_number.
    - ComplianceViolationError: rendered number too long or bad characters.

Audit relevance:
    Every allocation logs ``sequence_allocated`` with series, sequence and
    number; every reset logs ``sequence_reset``.  NumberingHistory keeps the
    durable record.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.numbering import (
    NumberingRules,
    plan_allocation,
)
from voucher_kernel.exceptions import (
    ComplianceViolationError,
    SequenceExhaustedError,
    SeriesNotFoundError,
)
from voucher_kernel.logging_config import get_logger
from voucher_kernel.models.numbering import NumberingHistory, NumberingSeries

logger = get_logger("services.sequence_allocator")


@dataclass(frozen=True)
class Allocation:
    """Result of one successful allocation."""

    document_number: str
    series_id: UUID
    sequence: int
    tenant_id: str
    generated_at: datetime
    reset_applied: bool = False


class SequenceAllocator:
    """
    Service for allocating document numbers from numbering series.

    Contract:
        ``allocate`` locks one series row, advances it by exactly one and
        returns the rendered number.  ``preview_next_number`` runs the same
        planning on an unlocked read and writes nothing.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        with session_scope() as session:
            allocation = SequenceAllocator(session, clock).allocate(
                tenant_id, "sales_invoice"
            )
            # If the transaction rolls back, the number is not consumed
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        rules: NumberingRules | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._rules = rules or NumberingRules()

    def allocate(
        self,
        tenant_id: str,
        document_type: str | None,
        series_id: UUID | str | None = None,
        branch_code: str | None = None,
    ) -> Allocation:
        """
        Allocate the next document number.

        Preconditions:
            - The caller is within an active database transaction.
            - Either ``series_id`` or ``document_type`` identifies the series.
        Postconditions:
            - current_sequence advanced by one (or reset to start_number),
              flushed but not committed.
            - The series row stays locked until the caller's transaction ends.

        Raises:
            SeriesNotFoundError, SequenceExhaustedError, ComplianceViolationError
        """
        now = self._clock.now_utc()
        series = self._lock_series(tenant_id, document_type, series_id, branch_code)
        state = series.snapshot()

        try:
            plan = plan_allocation(state, now, self._rules)
        except SequenceExhaustedError:
            logger.error(
                "sequence_exhausted",
                extra={
                    "tenant_id": tenant_id,
                    "series_id": state.series_id,
                    "end_number": state.end_number,
                },
            )
            raise
        except ComplianceViolationError as exc:
            logger.warning(
                "compliance_violation",
                extra={
                    "tenant_id": tenant_id,
                    "series_id": state.series_id,
                    "document_number": exc.document_number,
                    "reason": exc.reason,
                },
            )
            raise

        # Counter moves forward, except at a reset boundary
        assert plan.reset_applied or plan.sequence > state.current_sequence

        if plan.reset_applied:
            series.last_reset_at = now
            logger.info(
                "sequence_reset",
                extra={
                    "tenant_id": tenant_id,
                    "series_id": state.series_id,
                    "reset_frequency": state.reset_frequency.value,
                    "previous_sequence": state.current_sequence,
                    "start_number": state.start_number,
                },
            )
        series.current_sequence = plan.sequence
        self._session.flush()

        logger.info(
            "sequence_allocated",
            extra={
                "tenant_id": tenant_id,
                "series_id": state.series_id,
                "sequence": plan.sequence,
                "document_number": plan.document_number,
            },
        )
        return Allocation(
            document_number=plan.document_number,
            series_id=series.id,
            sequence=plan.sequence,
            tenant_id=tenant_id,
            generated_at=now,
            reset_applied=plan.reset_applied,
        )

    def record_history(
        self,
        allocation: Allocation,
        document_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> NumberingHistory:
        """Append the NumberingHistory row for an allocation."""
        row = NumberingHistory(
            series_id=allocation.series_id,
            document_id=document_id,
            generated_number=allocation.document_number,
            sequence_used=allocation.sequence,
            tenant_id=allocation.tenant_id,
            generated_at=allocation.generated_at,
            generated_by_id=actor_id,
        )
        self._session.add(row)
        self._session.flush()
        logger.debug(
            "numbering_history_recorded",
            extra={
                "series_id": str(allocation.series_id),
                "document_id": str(document_id) if document_id else None,
                "document_number": allocation.document_number,
            },
        )
        return row

    def preview_next_number(self, tenant_id: str, series_id: UUID | str) -> str:
        """
        Number the next allocation would produce right now.

        Takes no lock and writes nothing; a concurrent allocation may claim
        the previewed number first.

        Raises:
            SeriesNotFoundError, SequenceExhaustedError, ComplianceViolationError
        """
        series = self._session.execute(
            select(NumberingSeries).where(
                NumberingSeries.id == _as_uuid(tenant_id, series_id),
                NumberingSeries.tenant_id == tenant_id,
                NumberingSeries.is_active.is_(True),
            )
        ).scalar_one_or_none()
        if series is None:
            raise SeriesNotFoundError(tenant_id, series_id=str(series_id))

        plan = plan_allocation(series.snapshot(), self._clock.now_utc(), self._rules)
        logger.debug(
            "next_number_previewed",
            extra={"series_id": str(series.id), "document_number": plan.document_number},
        )
        return plan.document_number

    def current_sequence(self, tenant_id: str, series_id: UUID | str) -> int | None:
        """Current counter value of a series without incrementing."""
        return self._session.execute(
            select(NumberingSeries.current_sequence).where(
                NumberingSeries.id == _as_uuid(tenant_id, series_id),
                NumberingSeries.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()

    def _lock_series(
        self,
        tenant_id: str,
        document_type: str | None,
        series_id: UUID | str | None,
        branch_code: str | None,
    ) -> NumberingSeries:
        """Resolve the target series and take the row lock on it."""
        if series_id is not None:
            stmt = select(NumberingSeries).where(
                NumberingSeries.id == _as_uuid(tenant_id, series_id),
                NumberingSeries.tenant_id == tenant_id,
                NumberingSeries.is_active.is_(True),
            )
            if document_type is not None:
                stmt = stmt.where(NumberingSeries.document_type == document_type)
            series = self._locked(stmt)
        else:
            series = None
            scopes = [branch_code, None] if branch_code is not None else [None]
            for scope in scopes:
                stmt = select(NumberingSeries).where(
                    NumberingSeries.tenant_id == tenant_id,
                    NumberingSeries.document_type == document_type,
                    NumberingSeries.is_default.is_(True),
                    NumberingSeries.is_active.is_(True),
                    NumberingSeries.branch_code == scope
                    if scope is not None
                    else NumberingSeries.branch_code.is_(None),
                )
                series = self._locked(stmt)
                if series is not None:
                    break

        if series is None:
            logger.warning(
                "series_not_found",
                extra={
                    "tenant_id": tenant_id,
                    "document_type": document_type,
                    "series_id": str(series_id) if series_id else None,
                    "branch_code": branch_code,
                },
            )
            raise SeriesNotFoundError(
                tenant_id,
                document_type=document_type,
                series_id=str(series_id) if series_id is not None else None,
            )
        return series

    def _locked(self, stmt) -> NumberingSeries | None:
        # Row-level lock; populate_existing refreshes any copy already in the
        # identity map so the counter is read from the locked row
        return self._session.execute(
            stmt.with_for_update().execution_options(populate_existing=True)
        ).scalar_one_or_none()


def _as_uuid(tenant_id: str, value: UUID | str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise SeriesNotFoundError(tenant_id, series_id=str(value)) from None
