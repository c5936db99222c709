"""
Module: settlement_kernel.models.document
Responsibility: ORM persistence for receivable/payable documents (invoices and
    bills) and the settlements applied against them.
Architecture position: Kernel > Models.  May import from db/base.py and the
    domain enumerations only.

Invariants enforced:
    - amount_due = total - amount_settled >= 0.
    - amount_settled and status are a cache: they are only ever written by
      Document.recompute(), which sums the active (non-voided) settlements.
    - Optimistic locking: the version column is bumped on every UPDATE, and
      a concurrent writer holding a stale version gets StaleDataError.

Failure modes:
    - ValueError from recompute() if active settlements exceed the total.
    - StaleDataError on concurrent modification (mapped to
      OptimisticLockError by the orchestrator).

Audit relevance:
    Voided settlements stay in the table with voided_at/void_reason so that
    a reversed allocation's effect on each document remains inspectable.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.db.types import UUIDString
from settlement_kernel.domain.dtos import (
    DocumentKind,
    DocumentSnapshot,
    DocumentStatus,
    DocumentView,
    settlement_status,
)

if TYPE_CHECKING:
    from settlement_kernel.models.party import Counterparty


class Document(TrackedBase):
    """
    An invoice (receivable from a client) or bill (payable to a vendor).

    Contract:
        Created by DocumentService.  Settled only through DocumentSettlement
        rows; never edit amount_settled or status directly.

    Guarantees:
        - (tenant_id, kind, number) is unique.
        - status == settlement_status(total, amount_settled) after every
          recompute().
    """

    __tablename__ = "documents"

    __table_args__ = (
        UniqueConstraint("tenant_id", "kind", "number", name="uq_document_tenant_kind_number"),
        Index("idx_document_counterparty", "counterparty_id"),
        Index("idx_document_due_date", "due_date"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    kind: Mapped[DocumentKind] = mapped_column(String(10), nullable=False)

    number: Mapped[str] = mapped_column(String(50), nullable=False)

    counterparty_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("counterparties.id"),
        nullable=False,
    )

    issue_date: Mapped[date] = mapped_column(Date, nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    total: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    amount_settled: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    status: Mapped[DocumentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=DocumentStatus.OPEN.value,
    )

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    counterparty: Mapped["Counterparty"] = relationship()

    settlements: Mapped[list["DocumentSettlement"]] = relationship(
        back_populates="document",
        order_by="DocumentSettlement.created_at",
    )

    def __repr__(self) -> str:
        return f"<Document {self.kind} {self.number} status={self.status}>"

    @property
    def amount_due(self) -> Decimal:
        return Decimal(self.total) - Decimal(self.amount_settled)

    def active_settlement_amounts(self) -> list[Decimal]:
        return [Decimal(s.amount) for s in self.settlements if s.voided_at is None]

    def recompute(self, settled: Decimal) -> None:
        """
        Write the derived cache from an already-summed settled amount.

        Raises:
            ValueError: settled is negative or exceeds the total.
        """
        total = Decimal(self.total)
        if settled < 0 or settled > total:
            raise ValueError(
                f"Document {self.number}: settled {settled} outside [0, {total}]"
            )
        self.amount_settled = settled
        self.status = settlement_status(total, settled).value

    def to_snapshot(self) -> DocumentSnapshot:
        return DocumentSnapshot(
            id=self.id,
            kind=DocumentKind(self.kind),
            number=self.number,
            counterparty_id=self.counterparty_id,
            issue_date=self.issue_date,
            due_date=self.due_date,
            total=Decimal(self.total),
            amount_settled=Decimal(self.amount_settled),
            currency=self.currency,
        )

    def to_view(self) -> DocumentView:
        return self.to_snapshot().to_view()


class DocumentSettlement(TrackedBase):
    """
    One payment applied to one document.

    Contract:
        Created by DocumentService.record_settlement(), either for an
        allocation record or as a legacy single-document settlement
        (allocation_record_id is null).  Voided, never deleted.

    Guarantees:
        - amount > 0.
        - voided_at is set at most once.
    """

    __tablename__ = "document_settlements"

    __table_args__ = (
        Index("idx_settlement_document", "document_id"),
        Index("idx_settlement_record", "allocation_record_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    settlement_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Null for legacy single-document settlements
    allocation_record_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("allocation_records.id"),
        nullable=True,
    )

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    document: Mapped["Document"] = relationship(back_populates="settlements")

    def __repr__(self) -> str:
        state = "void" if self.voided_at else "active"
        return f"<DocumentSettlement {self.amount} on {self.document_id} {state}>"

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None
