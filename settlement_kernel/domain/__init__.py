"""
Pure domain layer.

Data transfer objects, value objects and rule checks with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (clocks are injected)

All domain objects are immutable and deterministic.
"""

from settlement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from settlement_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from settlement_kernel.domain.dtos import (
    AccountClass,
    AccountInfo,
    AccountSubtype,
    AllocationLineInput,
    AllocationOutcome,
    CreateAllocationRequest,
    Direction,
    DocumentKind,
    DocumentSnapshot,
    DocumentStatus,
    GroupStatus,
    Strategy,
    VoucherStatus,
    VoucherTo,
    VoucherType,
)
from settlement_kernel.domain.values import Currency, Money

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Currency",
    "Money",
    "AccountClass",
    "AccountInfo",
    "AccountSubtype",
    "AllocationLineInput",
    "AllocationOutcome",
    "CreateAllocationRequest",
    "Direction",
    "DocumentKind",
    "DocumentSnapshot",
    "DocumentStatus",
    "GroupStatus",
    "Strategy",
    "VoucherStatus",
    "VoucherTo",
    "VoucherType",
]
