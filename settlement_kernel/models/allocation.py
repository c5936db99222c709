"""
Module: settlement_kernel.models.allocation
Responsibility: ORM persistence for allocation groups (one lump-sum payment)
    and their allocation records (the per-document portions).
Architecture position: Kernel > Models.  May import from db/base.py and the
    domain enumerations only.

Invariants enforced:
    - A group exclusively owns its records (cascade delete-orphan).
    - Every record references exactly one document; the constructor rejects
      a missing document id.
    - Record amount and document are immutable after creation; only the
      settlement back-reference may be filled in (db/immutability.py).
    - Status moves DRAFT -> POSTED -> REVERSED only.

Audit relevance:
    A POSTED group, its voucher, and its records' settlements are created in
    one transaction.  A REVERSED group keeps its records and voucher so the
    original distribution remains inspectable.
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
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.db.types import UUIDString
from settlement_kernel.domain.dtos import (
    AllocationGroupView,
    AllocationRecordView,
    Direction,
    GroupStatus,
    Strategy,
)

if TYPE_CHECKING:
    from settlement_kernel.models.document import Document


class AllocationGroup(TrackedBase):
    """
    A single payment distributed across one or more documents.

    Contract:
        Created DRAFT and moved to POSTED inside the same transaction by the
        AllocationOrchestrator.  Reversed at most once.

    Guarantees:
        - Exactly one voucher per group once POSTED.
        - counterparty is a CLIENT for RECEIPT and a VENDOR for PAYMENT.
    """

    __tablename__ = "allocation_groups"

    __table_args__ = (
        Index("idx_allocation_group_counterparty", "counterparty_id"),
        Index("idx_allocation_group_status", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    direction: Mapped[Direction] = mapped_column(String(10), nullable=False)

    strategy: Mapped[Strategy] = mapped_column(String(10), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    allocated_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(38, 12),
        nullable=False,
        default=Decimal("1"),
    )

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    counterparty_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("counterparties.id"),
        nullable=False,
    )

    cash_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_accounts.id"),
        nullable=False,
    )

    counter_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_accounts.id"),
        nullable=False,
    )

    voucher_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("vouchers.id"),
        nullable=True,
    )

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Free text, e.g. "bank transfer", "cheque", "mobile money"
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[GroupStatus] = mapped_column(
        String(10),
        nullable=False,
        default=GroupStatus.DRAFT.value,
    )

    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    reversed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    reversal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    records: Mapped[list["AllocationRecord"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="AllocationRecord.line_no",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<AllocationGroup {self.id} {self.direction} status={self.status}>"

    @property
    def is_reversed(self) -> bool:
        return self.status == GroupStatus.REVERSED

    def to_view(self) -> AllocationGroupView:
        return AllocationGroupView(
            id=self.id,
            direction=Direction(self.direction),
            strategy=Strategy(self.strategy),
            status=GroupStatus(self.status),
            total_amount=Decimal(self.total_amount),
            allocated_amount=Decimal(self.allocated_amount),
            currency=self.currency,
            exchange_rate=Decimal(self.exchange_rate),
            payment_date=self.payment_date,
            counterparty_id=self.counterparty_id,
            cash_account_id=self.cash_account_id,
            counter_account_id=self.counter_account_id,
            voucher_id=self.voucher_id,
            reference=self.reference,
            notes=self.notes,
            payment_method=self.payment_method,
            reversed_at=self.reversed_at,
            reversal_reason=self.reversal_reason,
            records=tuple(r.to_view() for r in self.records),
        )


class AllocationRecord(TrackedBase):
    """
    The portion of a group's payment applied to one document.

    Contract:
        Owned by its group.  References exactly one document.

    Guarantees:
        - amount > 0 (validated before creation).
        - settlement_id is the only field that changes after insert.
    """

    __tablename__ = "allocation_records"

    __table_args__ = (
        Index("idx_allocation_record_group", "group_id"),
        Index("idx_allocation_record_document", "document_id"),
    )

    group_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("allocation_groups.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(BigInteger, nullable=False)

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Back-reference only; the FK lives on document_settlements
    settlement_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    group: Mapped["AllocationGroup"] = relationship(back_populates="records")

    document: Mapped["Document"] = relationship()

    @validates("document_id")
    def _validate_document_id(self, key, value):
        if value is None:
            raise ValueError("AllocationRecord must reference exactly one document")
        if isinstance(value, (list, tuple, set)):
            raise ValueError("AllocationRecord references a single document, not a collection")
        return value

    def __repr__(self) -> str:
        return f"<AllocationRecord {self.amount} -> {self.document_id}>"

    def to_view(self) -> AllocationRecordView:
        return AllocationRecordView(
            id=self.id,
            document_id=self.document_id,
            amount=Decimal(self.amount),
            note=self.note,
            settlement_id=self.settlement_id,
        )
