"""Database layer: engine and sessions, declarative base, money helpers, immutability."""

from voucher_kernel.db.base import Base, TrackedBase, UUIDString
from voucher_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from voucher_kernel.db.types import round_money, round_to_quantum, to_decimal

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "round_money",
    "round_to_quantum",
    "to_decimal",
]
