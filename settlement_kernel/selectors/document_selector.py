"""
Module: settlement_kernel.selectors.document_selector
Responsibility: Read access to invoices and bills, including the outstanding
    list used for allocation proposals.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - outstanding() returns only documents with amount_due > 0, in FIFO
      order: due date ascending, then document number ascending.
"""

from uuid import UUID

from sqlalchemy import select

from settlement_kernel.domain.dtos import DocumentKind, DocumentSnapshot, DocumentStatus
from settlement_kernel.exceptions import DocumentNotFoundError
from settlement_kernel.models.document import Document
from settlement_kernel.selectors.base import BaseSelector


class DocumentSelector(BaseSelector[Document]):
    """Queries over documents, returning frozen snapshots."""

    def get(self, document_id: UUID) -> DocumentSnapshot:
        document = self.session.get(Document, document_id)
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document.to_snapshot()

    def snapshots(self, document_ids) -> dict[UUID, DocumentSnapshot]:
        """Snapshots for the ids that exist.  Unknown ids are simply absent."""
        ids = [d for d in document_ids if d is not None]
        if not ids:
            return {}
        rows = self.session.execute(
            select(Document).where(Document.id.in_(ids))
        ).scalars()
        return {doc.id: doc.to_snapshot() for doc in rows}

    def outstanding(
        self,
        tenant_id: str,
        counterparty_id: UUID,
        kind: DocumentKind,
    ) -> list[DocumentSnapshot]:
        rows = self.session.execute(
            select(Document)
            .where(
                Document.tenant_id == tenant_id,
                Document.counterparty_id == counterparty_id,
                Document.kind == kind.value,
                Document.status != DocumentStatus.SETTLED.value,
            )
            .order_by(Document.due_date, Document.number)
        ).scalars()
        return [doc.to_snapshot() for doc in rows if doc.amount_due > 0]
