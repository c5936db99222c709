"""Kernel services (write side).  Every service flushes; none commit."""

from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.document_service import DocumentService
from settlement_kernel.services.sequence_service import SequenceService
from settlement_kernel.services.voucher_poster import VoucherPoster

__all__ = [
    "AuditorService",
    "DocumentService",
    "SequenceService",
    "VoucherPoster",
]
