"""
Module: settlement_kernel.models.account
Responsibility: ORM persistence for ledger accounts -- the debit and credit
    targets of every voucher.
Architecture position: Kernel > Models.  May import from db/base.py and the
    domain enumerations only.

Invariants enforced:
    - code is unique per tenant (uq_ledger_account_tenant_code).
    - account_class is one of ASSET, LIABILITY, EQUITY, INCOME, EXPENSE.
    - No stored balance: balances are derived from POSTED vouchers by
      AccountSelector.

Failure modes:
    - AccountNotFoundError when a caller references a non-existent account.
    - IntegrityError on duplicate code within a tenant.

Audit relevance:
    Voucher account rules depend on account_class and subtype.  Changing
    them after vouchers exist would reclassify history, so the allocation
    engine treats accounts as read-only.
"""

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.domain.dtos import AccountClass, AccountInfo, AccountSubtype


class LedgerAccount(TrackedBase):
    """
    Chart of accounts entry.

    Contract:
        Read-only to the allocation engine.  Created during tenant setup.

    Guarantees:
        - account_class is always a valid AccountClass value.
        - subtype, when set, refines the class (CASH, BANK, RECEIVABLE,
          PAYABLE, OTHER).
    """

    __tablename__ = "ledger_accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_ledger_account_tenant_code"),
        Index("idx_ledger_account_class", "account_class"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_class: Mapped[AccountClass] = mapped_column(String(20), nullable=False)

    subtype: Mapped[AccountSubtype | None] = mapped_column(String(20), nullable=True)

    # Null means any currency
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<LedgerAccount {self.code}: {self.name}>"

    def to_info(self) -> AccountInfo:
        return AccountInfo(
            id=self.id,
            code=self.code,
            name=self.name,
            account_class=AccountClass(self.account_class),
            subtype=AccountSubtype(self.subtype) if self.subtype else None,
            is_active=self.is_active,
            currency=self.currency,
        )
