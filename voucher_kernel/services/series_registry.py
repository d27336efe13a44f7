"""
SeriesRegistry -- administration of numbering series.

Responsibility:
    Creates, reconfigures, activates/deactivates, deletes and lists the
    numbering series of a tenant, and maintains the single default series
    per (tenant, document type, branch).

Architecture position:
    Kernel > Services -- imperative shell.  Validation rules live in
    ``voucher_kernel.domain.numbering``; this module applies them and
    persists the result.

Invariants enforced:
    - A series is persisted only if its merged configuration validates
      (prefix, separator, sequence_length, bounds and format).
    - At most one active default per (tenant_id, document_type,
      branch_code): ``set_default`` clears the previous default in the
      same transaction that sets the new one.
    - The counter fields (current_sequence, last_reset_at) are never
      writable here; only SequenceAllocator moves them.
    - A series that has issued numbers can be deactivated but not deleted.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - InvalidSeriesConfigError / InvalidPrefixError / InvalidFormatError
    - SeriesNotFoundError: unknown series for the tenant.
    - SeriesInUseError: delete of a series with history.

Audit relevance:
    ``series_created``, ``series_updated``, ``default_series_changed``,
    ``series_deactivated`` and ``series_deleted`` are logged with the
    tenant and actor.
"""

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update

from voucher_kernel.domain.clock import Clock
from voucher_kernel.domain.dtos import SeriesInfo
from voucher_kernel.domain.numbering import (
    NumberingRules,
    NumberLayout,
    ResetFrequency,
    validate_layout,
)
from voucher_kernel.exceptions import (
    InvalidSeriesConfigError,
    SeriesInUseError,
    SeriesNotFoundError,
)
from voucher_kernel.logging_config import get_logger
from voucher_kernel.models.numbering import NumberingHistory, NumberingSeries
from voucher_kernel.services.base import BaseService

logger = get_logger("services.series_registry")

# Fields update_series accepts; the counter and ownership fields are not here
UPDATABLE_FIELDS = frozenset(
    {
        "series_name",
        "prefix",
        "format",
        "separator",
        "sequence_length",
        "start_number",
        "end_number",
        "reset_frequency",
        "branch_code",
        "is_default",
        "is_active",
    }
)


class SeriesRegistry(BaseService):
    """
    Service for managing numbering series configuration.

    Contract:
        Every public method takes the tenant_id explicitly and only ever
        touches rows of that tenant.  Returns frozen ``SeriesInfo`` DTOs.

    Non-goals:
        - Does NOT allocate numbers (SequenceAllocator).
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session, clock: Clock | None = None, rules: NumberingRules | None = None):
        super().__init__(session, clock)
        self._rules = rules or NumberingRules()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_series(
        self,
        tenant_id: str,
        actor_id: UUID,
        *,
        document_type: str,
        series_name: str,
        prefix: str,
        format: str,
        separator: str = "-",
        sequence_length: int = 4,
        start_number: int = 1,
        end_number: int | None = None,
        reset_frequency: ResetFrequency | str = ResetFrequency.NEVER,
        branch_code: str | None = None,
        is_default: bool = False,
    ) -> SeriesInfo:
        """
        Create a numbering series.

        The counter starts at ``start_number - 1`` so the first allocation
        yields ``start_number``.  ``last_reset_at`` is stamped with the
        creation time so a resetting series does not reset on first use.

        Raises:
            InvalidSeriesConfigError, InvalidPrefixError, InvalidFormatError
        """
        if not document_type:
            raise InvalidSeriesConfigError("document_type", "document type is required")
        if not series_name or not series_name.strip():
            raise InvalidSeriesConfigError("series_name", "series name is required")

        frequency = ResetFrequency.parse(reset_frequency)
        layout = NumberLayout(
            format=format,
            prefix=prefix,
            separator=separator,
            sequence_length=sequence_length,
            branch_code=branch_code,
        )
        validate_layout(layout, self._rules, frequency, start_number, end_number)
        self._ensure_name_free(tenant_id, document_type, series_name)

        if is_default:
            self._clear_defaults(tenant_id, document_type, branch_code, actor_id)

        series = NumberingSeries(
            tenant_id=tenant_id,
            document_type=document_type,
            series_name=series_name,
            branch_code=branch_code,
            prefix=prefix,
            format=format,
            separator=separator,
            sequence_length=sequence_length,
            current_sequence=start_number - 1,
            start_number=start_number,
            end_number=end_number,
            reset_frequency=frequency,
            last_reset_at=self.clock.now_utc(),
            is_default=is_default,
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(series)
        self.session.flush()

        logger.info(
            "series_created",
            extra={
                "tenant_id": tenant_id,
                "series_id": str(series.id),
                "document_type": document_type,
                "series_name": series_name,
                "format": format,
                "reset_frequency": frequency.value,
                "is_default": is_default,
                "actor_id": str(actor_id),
            },
        )
        return SeriesInfo.from_model(series)

    def update_series(
        self,
        tenant_id: str,
        series_id: UUID,
        changes: Mapping[str, Any],
        actor_id: UUID,
    ) -> SeriesInfo:
        """
        Apply configuration changes to an existing series.

        The merged configuration is validated as a whole before anything is
        written.  Setting ``is_default`` clears the previous default;
        deactivating a series also drops its default flag.

        Raises:
            InvalidSeriesConfigError: unknown or protected field, or an
                end_number below numbers already issued.
            InvalidPrefixError, InvalidFormatError, SeriesNotFoundError
        """
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise InvalidSeriesConfigError(unknown[0], "field cannot be updated")

        series = self._lock(tenant_id, series_id)
        merged = {field: getattr(series, field) for field in UPDATABLE_FIELDS}
        merged.update(changes)

        if not merged["series_name"] or not str(merged["series_name"]).strip():
            raise InvalidSeriesConfigError("series_name", "series name is required")
        frequency = ResetFrequency.parse(merged["reset_frequency"])
        layout = NumberLayout(
            format=merged["format"],
            prefix=merged["prefix"],
            separator=merged["separator"],
            sequence_length=merged["sequence_length"],
            branch_code=merged["branch_code"],
        )
        validate_layout(
            layout, self._rules, frequency, merged["start_number"], merged["end_number"]
        )
        if merged["end_number"] is not None and merged["end_number"] < series.current_sequence:
            raise InvalidSeriesConfigError(
                "end_number",
                f"must not be below the last issued sequence {series.current_sequence}",
            )
        if merged["series_name"] != series.series_name:
            self._ensure_name_free(tenant_id, series.document_type, merged["series_name"])

        if not merged["is_active"]:
            merged["is_default"] = False
        elif merged["is_default"]:
            self._clear_defaults(
                tenant_id, series.document_type, merged["branch_code"], actor_id,
                exclude_id=series.id,
            )

        merged["reset_frequency"] = frequency
        for field, value in merged.items():
            setattr(series, field, value)
        series.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "series_updated",
            extra={
                "tenant_id": tenant_id,
                "series_id": str(series.id),
                "fields": sorted(changes),
                "actor_id": str(actor_id),
            },
        )
        return SeriesInfo.from_model(series)

    def set_default(self, tenant_id: str, series_id: UUID, actor_id: UUID) -> SeriesInfo:
        """
        Make a series the default for its document type and branch.

        The previous default is cleared in the same transaction, so readers
        never see zero or two defaults once it commits.

        Raises:
            SeriesNotFoundError, InvalidSeriesConfigError (inactive series)
        """
        series = self._lock(tenant_id, series_id)
        if not series.is_active:
            raise InvalidSeriesConfigError("is_default", "an inactive series cannot be the default")

        previous = self._clear_defaults(
            tenant_id, series.document_type, series.branch_code, actor_id,
            exclude_id=series.id,
        )
        series.is_default = True
        series.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "default_series_changed",
            extra={
                "tenant_id": tenant_id,
                "document_type": series.document_type,
                "branch_code": series.branch_code,
                "series_id": str(series.id),
                "previous_series_ids": [str(p) for p in previous],
                "actor_id": str(actor_id),
            },
        )
        return SeriesInfo.from_model(series)

    def deactivate_series(self, tenant_id: str, series_id: UUID, actor_id: UUID) -> SeriesInfo:
        """Deactivate a series; it keeps its history and stops allocating."""
        series = self._lock(tenant_id, series_id)
        series.is_active = False
        series.is_default = False
        series.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "series_deactivated",
            extra={"tenant_id": tenant_id, "series_id": str(series.id), "actor_id": str(actor_id)},
        )
        return SeriesInfo.from_model(series)

    def delete_series(self, tenant_id: str, series_id: UUID, actor_id: UUID) -> None:
        """
        Delete a series that never issued a number.

        Raises:
            SeriesInUseError: the series has numbering history.
        """
        series = self._lock(tenant_id, series_id)
        count = self.session.execute(
            select(func.count())
            .select_from(NumberingHistory)
            .where(NumberingHistory.series_id == series.id)
        ).scalar_one()
        if count:
            raise SeriesInUseError(str(series.id), count)

        self.session.delete(series)
        self.session.flush()
        logger.info(
            "series_deleted",
            extra={"tenant_id": tenant_id, "series_id": str(series_id), "actor_id": str(actor_id)},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_series(self, tenant_id: str, series_id: UUID) -> SeriesInfo:
        series = self.session.execute(
            select(NumberingSeries).where(
                NumberingSeries.id == series_id,
                NumberingSeries.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        if series is None:
            raise SeriesNotFoundError(tenant_id, series_id=str(series_id))
        return SeriesInfo.from_model(series)

    def list_series(
        self,
        tenant_id: str,
        document_type: str | None = None,
        active_only: bool = False,
    ) -> list[SeriesInfo]:
        """Series of a tenant ordered by document type, then series name."""
        stmt = select(NumberingSeries).where(NumberingSeries.tenant_id == tenant_id)
        if document_type is not None:
            stmt = stmt.where(NumberingSeries.document_type == document_type)
        if active_only:
            stmt = stmt.where(NumberingSeries.is_active.is_(True))
        stmt = stmt.order_by(NumberingSeries.document_type, NumberingSeries.series_name)
        return [SeriesInfo.from_model(s) for s in self.session.execute(stmt).scalars()]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock(self, tenant_id: str, series_id: UUID) -> NumberingSeries:
        series = self.session.execute(
            select(NumberingSeries)
            .where(
                NumberingSeries.id == series_id,
                NumberingSeries.tenant_id == tenant_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if series is None:
            raise SeriesNotFoundError(tenant_id, series_id=str(series_id))
        return series

    def _ensure_name_free(self, tenant_id: str, document_type: str, series_name: str) -> None:
        taken = self.session.execute(
            select(NumberingSeries.id).where(
                NumberingSeries.tenant_id == tenant_id,
                NumberingSeries.document_type == document_type,
                NumberingSeries.series_name == series_name,
            )
        ).first()
        if taken is not None:
            raise InvalidSeriesConfigError(
                "series_name",
                f"series '{series_name}' already exists for {document_type}",
            )

    def _clear_defaults(
        self,
        tenant_id: str,
        document_type: str,
        branch_code: str | None,
        actor_id: UUID,
        exclude_id: UUID | None = None,
    ) -> list[UUID]:
        """Unset is_default on every other series in the same scope."""
        scope = [
            NumberingSeries.tenant_id == tenant_id,
            NumberingSeries.document_type == document_type,
            NumberingSeries.is_default.is_(True),
            NumberingSeries.branch_code == branch_code
            if branch_code is not None
            else NumberingSeries.branch_code.is_(None),
        ]
        if exclude_id is not None:
            scope.append(NumberingSeries.id != exclude_id)

        previous = list(
            self.session.execute(
                select(NumberingSeries.id).where(*scope).with_for_update()
            ).scalars()
        )
        if previous:
            self.session.execute(
                update(NumberingSeries)
                .where(NumberingSeries.id.in_(previous))
                .values(is_default=False, updated_by_id=actor_id)
                .execution_options(synchronize_session="fetch")
            )
        return previous
