"""Database layer - engine, base classes, types, and immutability listeners."""

from saldo_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from saldo_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from saldo_kernel.db.types import Money, round_money, to_money

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "round_money",
    "to_money",
]
