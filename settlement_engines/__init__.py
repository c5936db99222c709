"""
Pure calculation engines for settlement: payment allocation and document
balance resolution.  No I/O; every call is deterministic.
"""

from settlement_engines.allocation import (
    AllocationLine,
    AllocationProposal,
    Allocator,
    OutstandingDocument,
)
from settlement_engines.balance import (
    DocumentBalance,
    DocumentBalanceResolver,
    amount_due,
    settlement_status,
)
from settlement_engines.tracer import traced_engine

__all__ = [
    "Allocator",
    "AllocationLine",
    "AllocationProposal",
    "OutstandingDocument",
    "DocumentBalance",
    "DocumentBalanceResolver",
    "amount_due",
    "settlement_status",
    "traced_engine",
]
