"""
settlement_services -- orchestration layer.  The only place that commits.
"""

from settlement_services.allocation_orchestrator import (
    AllocationEventSink,
    AllocationOrchestrator,
)
from settlement_services.allocation_service import AllocationService

__all__ = [
    "AllocationEventSink",
    "AllocationOrchestrator",
    "AllocationService",
]
