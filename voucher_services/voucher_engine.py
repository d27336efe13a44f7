"""
voucher_services.voucher_engine -- collaborator-facing facade.

Responsibility:
    The single object a host application talks to.  Exposes number
    allocation, number preview, document totals, posting and series
    administration for one tenant, each as one committed transaction.

Architecture position:
    Services -- top of the stack.  Wires the tenant context, the active
    configuration and the clock into kernel services and engines; no
    business rule lives here.

Invariants enforced:
    - Every command runs inside ``session_scope`` on the tenant's own
      session factory: commit on success, rollback and re-raise on failure.
    - ``allocate_document_number`` commits the advanced counter and the
      NumberingHistory row together.
    - Queries never write.

Failure modes:
    Everything the kernel services and engines raise propagates unchanged
    (see ``voucher_kernel.exceptions``); nothing is swallowed.

Usage:
    engine = VoucherEngine(TenantContext("t-1", actor_id, session_factory))
    series = engine.create_series(
        document_type="sales_invoice", series_name="Main",
        prefix="INV", format="PREFIX-YEAR-SEQUENCE", is_default=True,
    )
    engine.preview_next_number(series.id)         # "INV-2025-0001"
    engine.allocate_document_number("sales_invoice").document_number
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from voucher_config import get_active_config
from voucher_config.bridges import build_numbering_rules, state_names_by_code
from voucher_config.schema import EngineConfig
from voucher_engines.aggregator import DocumentTotals, LineInput
from voucher_engines.gstin import GstinValidation, validate_gstin
from voucher_kernel.db.engine import session_scope
from voucher_kernel.db.immutability import register_immutability_listeners
from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.dtos import DocumentInfo, PostingResult, SeriesInfo
from voucher_kernel.domain.numbering import ResetFrequency
from voucher_kernel.domain.tenant import TenantContext
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_kernel.services.sequence_allocator import Allocation, SequenceAllocator
from voucher_kernel.services.series_registry import SeriesRegistry
from voucher_services.document_service import DocumentService

logger = get_logger("services.voucher_engine")


class VoucherEngine:
    """
    Numbering and tax-split operations for one tenant.

    Contract:
        Construct once per tenant request.  All results are detached,
        frozen objects that stay valid after the session closes.
        Constructing one switches on the ORM immutability listeners.
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
        register_immutability_listeners()
        self.documents = DocumentService(context, self._config, self._clock)

    @property
    def tenant_id(self) -> str:
        return self._context.tenant_id

    @property
    def config(self) -> EngineConfig:
        return self._config

    # ------------------------------------------------------------------
    # Numbering
    # ------------------------------------------------------------------

    def allocate_document_number(
        self,
        document_type: str | None,
        series_id: UUID | None = None,
        *,
        branch_code: str | None = None,
        document_id: UUID | None = None,
    ) -> Allocation:
        """
        Allocate and commit the next number of a series.

        The NumberingHistory row is written in the same transaction, linked
        to ``document_id`` when the caller already has one.
        """
        with LogContext.bind(
            tenant_id=self.tenant_id,
            actor_id=self._context.actor_id,
            series_id=series_id,
        ):
            with session_scope(self._context.session_factory) as session:
                allocator = SequenceAllocator(session, self._clock, self._rules)
                allocation = allocator.allocate(
                    self.tenant_id, document_type, series_id, branch_code
                )
                allocator.record_history(allocation, document_id, self._context.actor_id)
            return allocation

    def preview_next_number(self, series_id: UUID) -> str:
        """The number the next allocation would return; writes nothing."""
        with session_scope(self._context.session_factory) as session:
            allocator = SequenceAllocator(session, self._clock, self._rules)
            return allocator.preview_next_number(self.tenant_id, series_id)

    # ------------------------------------------------------------------
    # Totals and posting
    # ------------------------------------------------------------------

    def compute_document_totals(
        self,
        lines: Sequence[LineInput],
        origin: str | None = None,
        destination: str | None = None,
        reverse_liability: bool = False,
    ) -> DocumentTotals:
        return self.documents.compute_totals(lines, origin, destination, reverse_liability)

    def post_document(self, document_id: UUID) -> PostingResult:
        return self.documents.post_document(document_id)

    def cancel_document(self, document_id: UUID, reason: str | None = None) -> DocumentInfo:
        return self.documents.cancel_document(document_id, reason)

    def get_document(self, document_id: UUID) -> DocumentInfo:
        return self.documents.get_document(document_id)

    # ------------------------------------------------------------------
    # Series administration
    # ------------------------------------------------------------------

    def create_series(
        self,
        *,
        document_type: str,
        series_name: str,
        prefix: str,
        format: str,
        separator: str | None = None,
        sequence_length: int | None = None,
        start_number: int = 1,
        end_number: int | None = None,
        reset_frequency: ResetFrequency | str = ResetFrequency.NEVER,
        branch_code: str | None = None,
        is_default: bool = False,
    ) -> SeriesInfo:
        """Create a series; separator and sequence length default from config."""
        numbering = self._config.numbering
        with session_scope(self._context.session_factory) as session:
            return self._registry(session).create_series(
                self.tenant_id,
                self._context.actor_id,
                document_type=document_type,
                series_name=series_name,
                prefix=prefix,
                format=format,
                separator=numbering.default_separator if separator is None else separator,
                sequence_length=(
                    numbering.default_sequence_length if sequence_length is None else sequence_length
                ),
                start_number=start_number,
                end_number=end_number,
                reset_frequency=reset_frequency,
                branch_code=branch_code,
                is_default=is_default,
            )

    def update_series(self, series_id: UUID, changes: Mapping[str, Any]) -> SeriesInfo:
        with session_scope(self._context.session_factory) as session:
            return self._registry(session).update_series(
                self.tenant_id, series_id, changes, self._context.actor_id
            )

    def set_default(self, series_id: UUID) -> SeriesInfo:
        with session_scope(self._context.session_factory) as session:
            return self._registry(session).set_default(
                self.tenant_id, series_id, self._context.actor_id
            )

    def deactivate_series(self, series_id: UUID) -> SeriesInfo:
        with session_scope(self._context.session_factory) as session:
            return self._registry(session).deactivate_series(
                self.tenant_id, series_id, self._context.actor_id
            )

    def delete_series(self, series_id: UUID) -> None:
        with session_scope(self._context.session_factory) as session:
            self._registry(session).delete_series(
                self.tenant_id, series_id, self._context.actor_id
            )

    def get_series(self, series_id: UUID) -> SeriesInfo:
        with session_scope(self._context.session_factory) as session:
            return self._registry(session).get_series(self.tenant_id, series_id)

    def list_series(
        self,
        document_type: str | None = None,
        active_only: bool = False,
    ) -> list[SeriesInfo]:
        with session_scope(self._context.session_factory) as session:
            return self._registry(session).list_series(
                self.tenant_id, document_type, active_only
            )

    # ------------------------------------------------------------------
    # Identification numbers
    # ------------------------------------------------------------------

    def validate_gstin(self, gstin: str | None) -> GstinValidation:
        """Validate against the state codes of the configured jurisdiction table."""
        names = state_names_by_code(self._config)
        result = validate_gstin(gstin, names or None)
        if not result.is_valid:
            logger.info(
                "gstin_rejected",
                extra={"tenant_id": self.tenant_id, "reason": result.error},
            )
        return result

    def _registry(self, session) -> SeriesRegistry:
        return SeriesRegistry(session, self._clock, self._rules)
