"""
Module: settlement_kernel.selectors.allocation_selector
Responsibility: Read access to allocation groups with their nested records.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from settlement_kernel.domain.dtos import AllocationGroupView
from settlement_kernel.exceptions import AllocationGroupNotFoundError
from settlement_kernel.models.allocation import AllocationGroup
from settlement_kernel.selectors.base import BaseSelector


class AllocationSelector(BaseSelector[AllocationGroup]):
    """Queries over allocation groups."""

    def get_group(self, group_id: UUID) -> AllocationGroupView:
        group = self.session.get(AllocationGroup, group_id)
        if group is None:
            raise AllocationGroupNotFoundError(str(group_id))
        return group.to_view()

