"""Database layer - engine, base classes, types and ORM listeners."""

from ledger_kernel.db.base import UUID, Base, SoftDeleteMixin, TrackedBase, UUIDString
from ledger_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from ledger_kernel.db.types import Currency, Money, round_money, to_money

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "SoftDeleteMixin",
    "UUIDString",
    "UUID",
    "Money",
    "Currency",
    "round_money",
    "to_money",
]
