"""
Tenant context handed to the voucher core by its host application.

The core performs no tenant resolution: authentication and per-tenant
database routing happen upstream, and the result arrives here as a
``TenantContext``.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker


@dataclass(frozen=True)
class TenantContext:
    """
    Identity and data-store handle for one tenant request.

    Contract: frozen.  ``session_factory`` must produce sessions bound to the
        tenant's own data store; every operation opens its own session from it.
    """

    tenant_id: str
    actor_id: UUID
    session_factory: sessionmaker[Session]

    def __post_init__(self) -> None:
        if not self.tenant_id or not str(self.tenant_id).strip():
            raise ValueError("tenant_id cannot be empty")
