"""Engine, declarative bases, column types and immutability listeners."""

from settlement_kernel.db.base import Base, TrackedBase
from settlement_kernel.db.engine import create_tables, get_engine, get_session
from settlement_kernel.db.types import UUIDString, round_money

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "round_money",
]
