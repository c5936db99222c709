"""
DocumentService -- invoices, bills and the settlements applied to them.

Responsibility:
    Creates documents, records and voids settlements, and keeps each
    document's cached amount_settled/status equal to the sum of its active
    settlements.  Also provides the ordered row locks the orchestrator
    takes before applying an allocation.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the
    AllocationOrchestrator and directly for legacy single-document
    settlements.

Invariants enforced:
    - amount_settled and status are only written through recompute(), which
      sums the document's non-voided settlements.
    - A settlement never takes a document's amount due below zero.
    - Documents are locked in ascending id order so that two allocations
      touching the same documents cannot deadlock.
    - An INVOICE belongs to a CLIENT, a BILL to a VENDOR.

Failure modes:
    - CounterpartyNotFoundError, DocumentNotFoundError,
      SettlementNotFoundError for unknown ids.
    - DocumentKindMismatchError, InvalidAmountError,
      SettlementExceedsAmountDueError on bad input.
    - SettlementAlreadyVoidedError when voiding twice.

Audit relevance:
    Every settlement create and void emits an AuditEvent.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import CounterpartyKind, DocumentKind
from settlement_kernel.exceptions import (
    CounterpartyNotFoundError,
    DocumentKindMismatchError,
    DocumentNotFoundError,
    InvalidAmountError,
    OwnedByAllocationError,
    SettlementAlreadyVoidedError,
    SettlementExceedsAmountDueError,
    SettlementNotFoundError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.document import Document, DocumentSettlement
from settlement_kernel.models.party import Counterparty
from settlement_kernel.services.auditor_service import AuditorService

logger = get_logger("services.document")


class DocumentService:
    """
    Write side for documents and settlements.

    Contract:
        All methods flush; none commit.

    Guarantees:
        - After any method returns, each touched document satisfies
          amount_settled == sum(active settlements) and
          status == settlement_status(total, amount_settled).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)

    def create_document(
        self,
        tenant_id: str,
        kind: DocumentKind | str,
        number: str,
        counterparty_id: UUID,
        issue_date: date,
        due_date: date,
        total: Decimal,
        currency: str,
        actor_id: UUID,
    ) -> Document:
        kind = DocumentKind(kind)
        if not isinstance(total, Decimal) or total <= 0:
            raise InvalidAmountError("total", total)

        counterparty = self._session.get(Counterparty, counterparty_id)
        if counterparty is None:
            raise CounterpartyNotFoundError(str(counterparty_id))
        if CounterpartyKind(counterparty.kind) != kind.counterparty_kind:
            raise DocumentKindMismatchError(kind.value, str(counterparty.kind))

        document = Document(
            tenant_id=tenant_id,
            kind=kind.value,
            number=number,
            counterparty_id=counterparty_id,
            issue_date=issue_date,
            due_date=due_date,
            total=total,
            currency=currency,
            created_by_id=actor_id,
        )
        self._session.add(document)
        self._session.flush()

        logger.info(
            "document_created",
            extra={
                "document_id": str(document.id),
                "kind": kind.value,
                "number": number,
                "total": str(total),
            },
        )
        return document

    def get(self, document_id: UUID) -> Document:
        document = self._session.get(Document, document_id)
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def lock_documents(self, document_ids) -> dict[UUID, Document]:
        """
        SELECT ... FOR UPDATE the given documents in ascending id order.

        Postconditions:
            Returned rows are freshly loaded, so amount_due reflects any
            change committed before the lock was granted.

        Raises:
            DocumentNotFoundError: An id has no row.
        """
        ordered = sorted(set(document_ids), key=str)
        if not ordered:
            return {}
        rows = self._session.execute(
            select(Document)
            .where(Document.id.in_(ordered))
            .order_by(Document.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        locked = {doc.id: doc for doc in rows}
        for document_id in ordered:
            if document_id not in locked:
                raise DocumentNotFoundError(str(document_id))
        logger.debug("documents_locked", extra={"document_count": len(locked)})
        return locked

    def recompute(self, document: Document) -> None:
        """Rewrite the cached settled amount and status from active settlements."""
        settled = sum(document.active_settlement_amounts(), Decimal("0"))
        document.recompute(settled)

    def record_settlement(
        self,
        document_id: UUID,
        amount: Decimal,
        settlement_date: date,
        actor_id: UUID,
        allocation_record_id: UUID | None = None,
        reference: str | None = None,
    ) -> DocumentSettlement:
        """
        Apply a settlement to one document.

        Preconditions:
            When called from an allocation, the document is already locked
            by lock_documents() in the same transaction.

        Raises:
            InvalidAmountError: amount is not a positive Decimal.
            SettlementExceedsAmountDueError: amount > current amount due.
        """
        if not isinstance(amount, Decimal) or amount <= 0:
            raise InvalidAmountError("amount", amount)
        document = self.get(document_id)
        amount_due = document.amount_due
        if amount > amount_due:
            raise SettlementExceedsAmountDueError(str(document_id), amount, amount_due)

        settlement = DocumentSettlement(
            tenant_id=document.tenant_id,
            amount=amount,
            settlement_date=settlement_date,
            allocation_record_id=allocation_record_id,
            reference=reference,
            created_by_id=actor_id,
        )
        # Load the collection first so recompute() sees exactly one copy
        document.settlements.append(settlement)
        self._session.add(settlement)
        self.recompute(document)
        self._session.flush()

        self._auditor.record_settlement_recorded(
            settlement_id=settlement.id,
            document_id=document.id,
            amount=amount,
            actor_id=actor_id,
        )
        logger.info(
            "settlement_recorded",
            extra={
                "settlement_id": str(settlement.id),
                "document_id": str(document.id),
                "amount": str(amount),
                "document_status": str(document.status),
            },
        )
        return settlement

    def void_settlement(
        self,
        settlement_id: UUID,
        reason: str,
        actor_id: UUID,
        via_allocation: bool = False,
    ) -> DocumentSettlement:
        """
        Void a settlement; the row stays, the document's due amount returns.

        Raises:
            SettlementNotFoundError: Unknown id.
            OwnedByAllocationError: The settlement belongs to an allocation
                record and the caller is not reversing that allocation.
            SettlementAlreadyVoidedError: Already voided.
        """
        settlement = self._session.get(DocumentSettlement, settlement_id)
        if settlement is None:
            raise SettlementNotFoundError(str(settlement_id))
        if settlement.allocation_record_id is not None and not via_allocation:
            raise OwnedByAllocationError("DocumentSettlement", str(settlement_id))
        if settlement.is_voided:
            raise SettlementAlreadyVoidedError(str(settlement_id))

        settlement.voided_at = self._clock.now()
        settlement.void_reason = reason
        settlement.updated_by_id = actor_id
        document = settlement.document
        self.recompute(document)
        document.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record_settlement_voided(
            settlement_id=settlement.id,
            reason=reason,
            actor_id=actor_id,
        )
        logger.info(
            "settlement_voided",
            extra={
                "settlement_id": str(settlement.id),
                "document_id": str(document.id),
                "document_status": str(document.status),
            },
        )
        return settlement
