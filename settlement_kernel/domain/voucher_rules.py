"""
Voucher rules -- per-type account-class constraints and the status machine.

Responsibility:
    Closed table of which account classes may sit on the debit and credit
    side of each voucher type, the DEPOSIT -> RECEIPT normalization, and the
    PENDING -> POSTED -> REVERSED transition check.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Called by the VoucherPoster before anything is persisted.

Invariants enforced:
    - Debit and credit account always differ, for every voucher type.
    - PAYMENT: debit EXPENSE or payable LIABILITY, credit ASSET.
    - RECEIPT: debit ASSET, credit INCOME or receivable ASSET.
    - CONTRA: ASSET on both sides.  JOURNAL: any class.
    - DEPOSIT is only ever an input label; it is never stored or emitted.

Failure modes:
    - UnknownVoucherTypeError for unrecognised labels.
    - SameDebitCreditAccountError / VoucherAccountClassError on rule breach.
    - InvalidVoucherTransitionError / VoucherAlreadyReversedError on illegal
      status changes.
"""

from __future__ import annotations

from dataclasses import dataclass

from settlement_kernel.domain.dtos import (
    LEGACY_DEPOSIT,
    AccountClass,
    AccountInfo,
    AccountSubtype,
    VoucherStatus,
    VoucherType,
)
from settlement_kernel.exceptions import (
    InvalidVoucherTransitionError,
    SameDebitCreditAccountError,
    UnknownVoucherTypeError,
    VoucherAccountClassError,
    VoucherAlreadyReversedError,
)


@dataclass(frozen=True)
class AccountSlot:
    """An allowed (class, subtype) on one side.  subtype None means any."""

    account_class: AccountClass
    subtype: AccountSubtype | None = None

    def accepts(self, account: AccountInfo) -> bool:
        if account.account_class != self.account_class:
            return False
        return self.subtype is None or account.subtype == self.subtype

    def label(self) -> str:
        if self.subtype is None:
            return self.account_class.value
        return f"{self.account_class.value}({self.subtype.value.lower()})"


@dataclass(frozen=True)
class VoucherAccountRule:
    """Allowed slots for one voucher type.  Empty tuple means unrestricted."""

    voucher_type: VoucherType
    debit: tuple[AccountSlot, ...]
    credit: tuple[AccountSlot, ...]


_ANY: tuple[AccountSlot, ...] = ()

VOUCHER_ACCOUNT_RULES: dict[VoucherType, VoucherAccountRule] = {
    VoucherType.PAYMENT: VoucherAccountRule(
        VoucherType.PAYMENT,
        debit=(
            AccountSlot(AccountClass.EXPENSE),
            AccountSlot(AccountClass.LIABILITY, AccountSubtype.PAYABLE),
        ),
        credit=(AccountSlot(AccountClass.ASSET),),
    ),
    VoucherType.RECEIPT: VoucherAccountRule(
        VoucherType.RECEIPT,
        debit=(AccountSlot(AccountClass.ASSET),),
        credit=(
            AccountSlot(AccountClass.INCOME),
            AccountSlot(AccountClass.ASSET, AccountSubtype.RECEIVABLE),
        ),
    ),
    VoucherType.CONTRA: VoucherAccountRule(
        VoucherType.CONTRA,
        debit=(AccountSlot(AccountClass.ASSET),),
        credit=(AccountSlot(AccountClass.ASSET),),
    ),
    VoucherType.JOURNAL: VoucherAccountRule(
        VoucherType.JOURNAL,
        debit=_ANY,
        credit=_ANY,
    ),
}

_TRANSITIONS: dict[VoucherStatus, frozenset[VoucherStatus]] = {
    VoucherStatus.PENDING: frozenset({VoucherStatus.POSTED}),
    VoucherStatus.POSTED: frozenset({VoucherStatus.REVERSED}),
    VoucherStatus.REVERSED: frozenset(),
}


def normalize_voucher_type(value: VoucherType | str) -> VoucherType:
    """
    Map an input label to a VoucherType.

    Case-insensitive.  The legacy label DEPOSIT becomes RECEIPT; the reverse
    mapping never happens.

    Raises:
        UnknownVoucherTypeError: If the label is not recognised.
    """
    if isinstance(value, VoucherType):
        return value
    label = str(value).strip().upper()
    if label == LEGACY_DEPOSIT:
        return VoucherType.RECEIPT
    try:
        return VoucherType(label)
    except ValueError:
        raise UnknownVoucherTypeError(str(value)) from None


def _check_side(
    rule: VoucherAccountRule,
    side: str,
    slots: tuple[AccountSlot, ...],
    account: AccountInfo,
) -> None:
    if not slots:
        return
    if any(slot.accepts(account) for slot in slots):
        return
    actual = account.account_class.value
    if account.subtype is not None:
        actual = f"{actual}({account.subtype.value.lower()})"
    raise VoucherAccountClassError(
        voucher_type=rule.voucher_type.value,
        side=side,
        account_id=str(account.id),
        account_class=actual,
        allowed=tuple(slot.label() for slot in slots),
    )


def check_voucher_accounts(
    voucher_type: VoucherType | str,
    debit: AccountInfo,
    credit: AccountInfo,
) -> VoucherType:
    """
    Validate a debit/credit account pair against the rule table.

    Postconditions:
        Returns the normalized voucher type when the pair is allowed.

    Raises:
        SameDebitCreditAccountError: debit.id == credit.id.
        VoucherAccountClassError: a side's class is not in the table.
    """
    vtype = normalize_voucher_type(voucher_type)
    if debit.id == credit.id:
        raise SameDebitCreditAccountError(str(debit.id))
    rule = VOUCHER_ACCOUNT_RULES[vtype]
    _check_side(rule, "debit", rule.debit, debit)
    _check_side(rule, "credit", rule.credit, credit)
    return vtype


def check_transition(
    voucher_id: str,
    current: VoucherStatus | str,
    target: VoucherStatus | str,
) -> None:
    """
    Enforce PENDING -> POSTED -> REVERSED.

    Raises:
        VoucherAlreadyReversedError: current and target are both REVERSED.
        InvalidVoucherTransitionError: any other illegal move.
    """
    current = VoucherStatus(current)
    target = VoucherStatus(target)
    if current == VoucherStatus.REVERSED and target == VoucherStatus.REVERSED:
        raise VoucherAlreadyReversedError(voucher_id)
    if target not in _TRANSITIONS[current]:
        raise InvalidVoucherTransitionError(voucher_id, current.value, target.value)
