"""Selectors for the settlement kernel (read side)."""

from settlement_kernel.selectors.account_selector import AccountSelector
from settlement_kernel.selectors.allocation_selector import AllocationSelector
from settlement_kernel.selectors.document_selector import DocumentSelector

__all__ = [
    "AccountSelector",
    "AllocationSelector",
    "DocumentSelector",
]
