"""
BaseService -- common base for kernel services that write.

Responsibility:
    Holds the caller's SQLAlchemy ``Session`` and the clock.  Concrete
    services persist with ``session.flush()`` only.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.  The outer
      service layer (voucher_services) owns commit/rollback.
"""

from abc import ABC

from sqlalchemy.orm import Session

from voucher_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Preconditions:
            - ``session`` is a valid, open SQLAlchemy session.
        """
        self.session = session
        self.clock = clock or SystemClock()
