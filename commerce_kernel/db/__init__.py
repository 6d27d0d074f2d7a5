"""Database layer - engine, base classes, types."""

from commerce_kernel.db.base import Base, TrackedBase, UUIDString
from commerce_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from commerce_kernel.db.types import round_money, to_money

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "round_money",
    "to_money",
]
