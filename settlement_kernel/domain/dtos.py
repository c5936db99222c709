"""
DTOs -- Enumerations and immutable data transfer objects for settlement.

Responsibility:
    Defines the vocabulary shared by every layer: account classes, document
    kinds and statuses, allocation direction and strategy, voucher types and
    statuses, plus the frozen request, snapshot and view objects that cross
    layer boundaries.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ORM models import the enumerations from here so that the domain never
    depends on persistence.

Invariants enforced:
    - All DTOs are frozen dataclasses; mutable collections are tuples.
    - Legacy direction/voucher label DEPOSIT is accepted on input and
      normalized to RECEIPT; it is never produced.
    - Document status is a pure function of total and amount settled.

Failure modes:
    - UnknownDirectionError / UnknownStrategyError on unrecognised labels.
    - InvalidAmountError on zero or negative request amounts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from settlement_kernel.exceptions import (
    InvalidAmountError,
    UnknownDirectionError,
    UnknownStrategyError,
)

LEGACY_DEPOSIT = "DEPOSIT"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class AccountClass(str, Enum):
    """Ledger group of an account."""

    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"

    @property
    def normal_side(self) -> str:
        if self in (AccountClass.ASSET, AccountClass.EXPENSE):
            return "debit"
        return "credit"


class AccountSubtype(str, Enum):
    """Finer tag inside a class, used by the voucher account rules."""

    CASH = "CASH"
    BANK = "BANK"
    RECEIVABLE = "RECEIVABLE"
    PAYABLE = "PAYABLE"
    OTHER = "OTHER"


class CounterpartyKind(str, Enum):
    CLIENT = "CLIENT"
    VENDOR = "VENDOR"


class DocumentKind(str, Enum):
    INVOICE = "INVOICE"
    BILL = "BILL"

    @property
    def counterparty_kind(self) -> CounterpartyKind:
        if self is DocumentKind.INVOICE:
            return CounterpartyKind.CLIENT
        return CounterpartyKind.VENDOR


class DocumentStatus(str, Enum):
    OPEN = "OPEN"
    PARTIALLY_SETTLED = "PARTIALLY_SETTLED"
    SETTLED = "SETTLED"


class Direction(str, Enum):
    """Money in from a client (RECEIPT) or out to a vendor (PAYMENT)."""

    RECEIPT = "RECEIPT"
    PAYMENT = "PAYMENT"

    @classmethod
    def parse(cls, value: Direction | str) -> Direction:
        """Accept enum or label, case-insensitive; DEPOSIT means RECEIPT."""
        if isinstance(value, Direction):
            return value
        label = str(value).strip().upper()
        if label == LEGACY_DEPOSIT:
            return cls.RECEIPT
        try:
            return cls(label)
        except ValueError:
            raise UnknownDirectionError(str(value)) from None

    @property
    def document_kind(self) -> DocumentKind:
        if self is Direction.RECEIPT:
            return DocumentKind.INVOICE
        return DocumentKind.BILL

    @property
    def counterparty_kind(self) -> CounterpartyKind:
        return self.document_kind.counterparty_kind


class Strategy(str, Enum):
    FIFO = "FIFO"
    PRO_RATA = "PRO_RATA"
    MANUAL = "MANUAL"

    @classmethod
    def parse(cls, value: Strategy | str) -> Strategy:
        if isinstance(value, Strategy):
            return value
        label = str(value).strip().upper().replace("-", "_")
        try:
            return cls(label)
        except ValueError:
            raise UnknownStrategyError(str(value)) from None


class GroupStatus(str, Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    REVERSED = "REVERSED"


class VoucherType(str, Enum):
    PAYMENT = "PAYMENT"
    RECEIPT = "RECEIPT"
    CONTRA = "CONTRA"
    JOURNAL = "JOURNAL"


class VoucherStatus(str, Enum):
    PENDING = "PENDING"
    POSTED = "POSTED"
    REVERSED = "REVERSED"


class VoucherTo(str, Enum):
    """Who the voucher is issued to."""

    CLIENT = "CLIENT"
    VENDOR = "VENDOR"
    STAFF = "STAFF"
    OTHER = "OTHER"


def settlement_status(total: Decimal, amount_settled: Decimal) -> DocumentStatus:
    """OPEN when nothing settled, SETTLED when nothing due, else partial."""
    if amount_settled == 0:
        return DocumentStatus.OPEN
    if total - amount_settled == 0:
        return DocumentStatus.SETTLED
    return DocumentStatus.PARTIALLY_SETTLED


# ---------------------------------------------------------------------------
# Snapshots (inputs to pure domain logic)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountInfo:
    """Read-only view of a ledger account."""

    id: UUID
    code: str
    name: str
    account_class: AccountClass
    subtype: AccountSubtype | None = None
    is_active: bool = True
    currency: str | None = None


@dataclass(frozen=True)
class CounterpartyInfo:
    id: UUID
    code: str
    name: str
    kind: CounterpartyKind
    is_active: bool = True


@dataclass(frozen=True)
class DocumentSnapshot:
    """
    Point-in-time view of an invoice or bill.

    Guarantees:
        - amount_due == total - amount_settled.
        - status is derived, never stored independently.
    """

    id: UUID
    kind: DocumentKind
    number: str
    counterparty_id: UUID
    issue_date: date
    due_date: date
    total: Decimal
    amount_settled: Decimal
    currency: str

    @property
    def amount_due(self) -> Decimal:
        return self.total - self.amount_settled

    @property
    def status(self) -> DocumentStatus:
        return settlement_status(self.total, self.amount_settled)

    def to_view(self) -> DocumentView:
        return DocumentView(
            id=self.id,
            kind=self.kind,
            number=self.number,
            counterparty_id=self.counterparty_id,
            issue_date=self.issue_date,
            due_date=self.due_date,
            total=self.total,
            amount_settled=self.amount_settled,
            amount_due=self.amount_due,
            status=self.status,
            currency=self.currency,
        )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllocationLineInput:
    """One requested allocation: an amount against exactly one document."""

    document_id: UUID
    amount: Decimal
    note: str | None = None


@dataclass(frozen=True)
class CreateAllocationRequest:
    """
    Everything needed to create and post one allocation group.

    Contract:
        ``lines`` is the final line set.  For FIFO and PRO_RATA the service
        layer fills it from the allocator before building the request.

    Guarantees:
        - direction and strategy are normalized enums.
        - total_amount and exchange_rate are positive Decimals.
    """

    tenant_id: str
    direction: Direction
    strategy: Strategy
    total_amount: Decimal
    currency: str
    payment_date: date
    cash_account_id: UUID
    counterparty_id: UUID
    lines: tuple[AllocationLineInput, ...]
    actor_id: UUID
    exchange_rate: Decimal = Decimal("1")
    reference: str | None = None
    notes: str | None = None
    payment_method: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "direction", Direction.parse(self.direction))
        object.__setattr__(self, "strategy", Strategy.parse(self.strategy))
        object.__setattr__(self, "lines", tuple(self.lines))
        if not isinstance(self.total_amount, Decimal) or self.total_amount <= 0:
            raise InvalidAmountError("total_amount", self.total_amount)
        if not isinstance(self.exchange_rate, Decimal) or self.exchange_rate <= 0:
            raise InvalidAmountError("exchange_rate", self.exchange_rate)


@dataclass(frozen=True)
class VoucherRequest:
    """Standalone voucher entry (outside the allocation flow)."""

    tenant_id: str
    voucher_type: VoucherType | str
    amount: Decimal
    currency: str
    debit_account_id: UUID
    credit_account_id: UUID
    transaction_date: date
    actor_id: UUID
    voucher_to: VoucherTo = VoucherTo.OTHER
    beneficiary_name: str | None = None
    description: str | None = None
    reference: str | None = None
    exchange_rate: Decimal = Decimal("1")

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal) or self.amount <= 0:
            raise InvalidAmountError("amount", self.amount)
        if not isinstance(self.exchange_rate, Decimal) or self.exchange_rate <= 0:
            raise InvalidAmountError("exchange_rate", self.exchange_rate)


# ---------------------------------------------------------------------------
# Views (read side)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountBalance:
    """Balance of one account derived from POSTED vouchers."""

    account_id: UUID
    account_code: str
    account_class: AccountClass
    debit_total: Decimal
    credit_total: Decimal

    @property
    def balance(self) -> Decimal:
        """Signed by the class's normal side."""
        if self.account_class.normal_side == "debit":
            return self.debit_total - self.credit_total
        return self.credit_total - self.debit_total


@dataclass(frozen=True)
class DocumentView:
    id: UUID
    kind: DocumentKind
    number: str
    counterparty_id: UUID
    issue_date: date
    due_date: date
    total: Decimal
    amount_settled: Decimal
    amount_due: Decimal
    status: DocumentStatus
    currency: str


@dataclass(frozen=True)
class VoucherView:
    id: UUID
    voucher_number: str
    voucher_type: VoucherType
    voucher_to: VoucherTo
    beneficiary_name: str | None
    amount: Decimal
    currency: str
    exchange_rate: Decimal
    debit_account_id: UUID
    credit_account_id: UUID
    transaction_date: date
    status: VoucherStatus
    posted_at: datetime | None
    reversed_at: datetime | None


@dataclass(frozen=True)
class AllocationRecordView:
    id: UUID
    document_id: UUID
    amount: Decimal
    note: str | None
    settlement_id: UUID | None


@dataclass(frozen=True)
class AllocationGroupView:
    """A group with its nested records, as returned by get_allocation."""

    id: UUID
    direction: Direction
    strategy: Strategy
    status: GroupStatus
    total_amount: Decimal
    allocated_amount: Decimal
    currency: str
    exchange_rate: Decimal
    payment_date: date
    counterparty_id: UUID
    cash_account_id: UUID
    counter_account_id: UUID
    voucher_id: UUID | None
    reference: str | None
    notes: str | None
    payment_method: str | None
    reversed_at: datetime | None
    reversal_reason: str | None
    records: tuple[AllocationRecordView, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class AllocationOutcomeStatus(str, Enum):
    POSTED = "POSTED"
    REVERSED = "REVERSED"


@dataclass(frozen=True)
class AllocationOutcome:
    """
    Result of a completed create or reverse.

    Non-completion is always an exception, so every outcome changed state.
    """

    status: AllocationOutcomeStatus
    group: AllocationGroupView
    voucher: VoucherView | None = None
    state_changed: bool = True

    @property
    def is_success(self) -> bool:
        return self.state_changed
