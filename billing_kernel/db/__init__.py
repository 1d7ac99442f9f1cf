"""Database layer: engine, declarative bases and money column types."""

from billing_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from billing_kernel.db.engine import (
    build_engine,
    build_session_factory,
    create_tables,
    get_engine,
    get_session_factory,
    session_scope,
)
from billing_kernel.db.types import Money, Rate, Sequence, round_money, to_money

__all__ = [
    "build_engine",
    "build_session_factory",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Rate",
    "Sequence",
    "round_money",
    "to_money",
]
