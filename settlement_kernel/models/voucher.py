"""
Module: settlement_kernel.models.voucher
Responsibility: ORM persistence for vouchers -- balanced two-line ledger
    postings (one debit account, one credit account, one amount).
Architecture position: Kernel > Models.  May import from db/base.py and the
    domain enumerations only.

Invariants enforced:
    - Debits == credits by construction: a voucher carries a single amount
      applied to exactly one debit and one credit account.
    - debit_account_id != credit_account_id (uq check + VoucherPoster).
    - voucher_type is never DEPOSIT (normalized to RECEIPT before insert).
    - Once POSTED, financial fields are frozen (db/immutability.py); only the
      POSTED -> REVERSED transition and its reversal metadata may change.

Audit relevance:
    Reversal keeps the row with its original amount and accounts and flips
    status to REVERSED, so the posting remains inspectable.  Account
    balances only count POSTED vouchers.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.db.types import UUIDString
from settlement_kernel.domain.dtos import (
    VoucherStatus,
    VoucherTo,
    VoucherType,
    VoucherView,
)


class Voucher(TrackedBase):
    """
    A single balanced posting.

    Contract:
        Created PENDING by VoucherPoster, then POSTED; reversed at most once.

    Guarantees:
        - voucher_number is unique per tenant.
        - amount > 0.
    """

    __tablename__ = "vouchers"

    __table_args__ = (
        UniqueConstraint("tenant_id", "voucher_number", name="uq_voucher_tenant_number"),
        CheckConstraint("debit_account_id <> credit_account_id", name="ck_voucher_distinct_accounts"),
        Index("idx_voucher_debit_account", "debit_account_id"),
        Index("idx_voucher_credit_account", "credit_account_id"),
        Index("idx_voucher_status", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    voucher_number: Mapped[str] = mapped_column(String(30), nullable=False)

    voucher_type: Mapped[VoucherType] = mapped_column(String(10), nullable=False)

    voucher_to: Mapped[VoucherTo] = mapped_column(
        String(10),
        nullable=False,
        default=VoucherTo.OTHER.value,
    )

    beneficiary_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Counterparty the voucher was issued to, when there is one
    counterparty_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("counterparties.id"),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(38, 12),
        nullable=False,
        default=Decimal("1"),
    )

    debit_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_accounts.id"),
        nullable=False,
    )

    credit_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_accounts.id"),
        nullable=False,
    )

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[VoucherStatus] = mapped_column(
        String(10),
        nullable=False,
        default=VoucherStatus.PENDING.value,
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

    def __repr__(self) -> str:
        return f"<Voucher {self.voucher_number} {self.voucher_type} status={self.status}>"

    def to_view(self) -> VoucherView:
        return VoucherView(
            id=self.id,
            voucher_number=self.voucher_number,
            voucher_type=VoucherType(self.voucher_type),
            voucher_to=VoucherTo(self.voucher_to),
            beneficiary_name=self.beneficiary_name,
            amount=Decimal(self.amount),
            currency=self.currency,
            exchange_rate=Decimal(self.exchange_rate),
            debit_account_id=self.debit_account_id,
            credit_account_id=self.credit_account_id,
            transaction_date=self.transaction_date,
            status=VoucherStatus(self.status),
            posted_at=self.posted_at,
            reversed_at=self.reversed_at,
        )
