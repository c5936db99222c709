"""
Module: settlement_kernel.selectors.account_selector
Responsibility: Ledger account directory.  Resolves accounts by id or code and
    derives account balances from POSTED vouchers.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - No stored balances.  balance() sums POSTED vouchers at query time;
      PENDING and REVERSED vouchers never count.
    - Balances are Decimal, summed in Python so that every backend returns
      the same exact value.

Failure modes:
    - AccountNotFoundError from get() for an unknown id.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select

from settlement_kernel.domain.dtos import (
    AccountBalance,
    AccountClass,
    AccountInfo,
    VoucherStatus,
)
from settlement_kernel.exceptions import AccountNotFoundError
from settlement_kernel.models.account import LedgerAccount
from settlement_kernel.models.voucher import Voucher
from settlement_kernel.selectors.base import BaseSelector


class AccountSelector(BaseSelector[LedgerAccount]):
    """
    Read access to the chart of accounts.

    Contract:
        Accounts are read-only to this engine; nothing here creates or
        modifies them.

    Guarantees:
        - balance() is signed by the account class's normal side.
    """

    def get(self, account_id: UUID) -> AccountInfo:
        account = self.session.get(LedgerAccount, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account.to_info()

    def get_by_code(self, tenant_id: str, code: str) -> AccountInfo | None:
        account = self.session.execute(
            select(LedgerAccount).where(
                LedgerAccount.tenant_id == tenant_id,
                LedgerAccount.code == code,
            )
        ).scalar_one_or_none()
        return account.to_info() if account is not None else None

    def balance(self, account_id: UUID) -> AccountBalance:
        """
        Debit and credit totals of an account over POSTED vouchers.

        Raises:
            AccountNotFoundError: Unknown account.
        """
        info = self.get(account_id)
        rows = self.session.execute(
            select(
                Voucher.amount,
                Voucher.debit_account_id,
                Voucher.credit_account_id,
            ).where(
                Voucher.status == VoucherStatus.POSTED.value,
                or_(
                    Voucher.debit_account_id == account_id,
                    Voucher.credit_account_id == account_id,
                ),
            )
        ).all()

        debit_total = Decimal("0")
        credit_total = Decimal("0")
        for amount, debit_id, credit_id in rows:
            if debit_id == account_id:
                debit_total += Decimal(amount)
            if credit_id == account_id:
                credit_total += Decimal(amount)

        return AccountBalance(
            account_id=info.id,
            account_code=info.code,
            account_class=AccountClass(info.account_class),
            debit_total=debit_total,
            credit_total=credit_total,
        )
