"""ORM models for the settlement kernel."""

from settlement_kernel.models.account import LedgerAccount
from settlement_kernel.models.allocation import AllocationGroup, AllocationRecord
from settlement_kernel.models.audit_event import AuditAction, AuditEvent
from settlement_kernel.models.document import Document, DocumentSettlement
from settlement_kernel.models.party import Counterparty
from settlement_kernel.models.sequence import SequenceCounter
from settlement_kernel.models.voucher import Voucher

__all__ = [
    "LedgerAccount",
    "Counterparty",
    "Document",
    "DocumentSettlement",
    "AllocationGroup",
    "AllocationRecord",
    "Voucher",
    "AuditAction",
    "AuditEvent",
    "SequenceCounter",
]
