"""
VoucherPoster -- turns an allocation group or a voucher request into exactly
one balanced, posted voucher.

Responsibility:
    Derives the debit/credit pair for an allocation, validates it against
    the per-type account rules, assigns the voucher number, and walks the
    voucher through PENDING -> POSTED -> REVERSED.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the
    AllocationOrchestrator inside its atomic unit, and directly for
    standalone vouchers.

Invariants enforced:
    - One voucher per allocation group, for the aggregate amount.
      RECEIPT: debit cash, credit counter-account.
      PAYMENT: debit counter-account, credit cash.
    - Debit and credit account differ; account classes follow
      VOUCHER_ACCOUNT_RULES for the voucher type.
    - DEPOSIT is normalized to RECEIPT before anything is stored.
    - Reversal flips status only; amount and accounts are kept.

Failure modes:
    - AccountNotFoundError, VoucherNotFoundError for unknown ids.
    - VoucherAccountClassError, SameDebitCreditAccountError,
      UnknownVoucherTypeError on rule breaches.
    - InvalidVoucherTransitionError / VoucherAlreadyReversedError on
      illegal status changes.
    - OwnedByAllocationError when reversing an allocation's voucher
      outside the allocation reversal.

Audit relevance:
    Posting and reversal each emit an AuditEvent.  Nothing here commits;
    a failure after create_voucher() leaves nothing behind once the owner
    rolls back.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import (
    Direction,
    VoucherRequest,
    VoucherStatus,
    VoucherTo,
)
from settlement_kernel.domain.voucher_rules import (
    check_transition,
    check_voucher_accounts,
    normalize_voucher_type,
)
from settlement_kernel.exceptions import OwnedByAllocationError, VoucherNotFoundError
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.allocation import AllocationGroup
from settlement_kernel.models.party import Counterparty
from settlement_kernel.models.voucher import Voucher
from settlement_kernel.selectors.account_selector import AccountSelector
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.voucher_poster")


class VoucherPoster:
    """
    Creates, posts and reverses vouchers.

    Contract:
        All methods flush; none commit.

    Guarantees:
        - A voucher that reaches POSTED satisfied the account rules when it
          was created.
        - voucher_number is unique per tenant and type sequence.

    Non-goals:
        - Does NOT create compensating vouchers; reversal is a status flip.
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
        self._sequence = SequenceService(session)
        self._accounts = AccountSelector(session)

    def _get(self, voucher_id: UUID) -> Voucher:
        voucher = self._session.get(Voucher, voucher_id)
        if voucher is None:
            raise VoucherNotFoundError(str(voucher_id))
        return voucher

    def create_voucher(
        self,
        request: VoucherRequest,
        counterparty_id: UUID | None = None,
    ) -> Voucher:
        """
        Validate a request and persist it as a PENDING voucher.

        Postconditions:
            The voucher is flushed with a fresh number and the normalized type.
        """
        voucher_type = normalize_voucher_type(request.voucher_type)
        debit = self._accounts.get(request.debit_account_id)
        credit = self._accounts.get(request.credit_account_id)
        voucher_type = check_voucher_accounts(voucher_type, debit, credit)

        voucher = Voucher(
            tenant_id=request.tenant_id,
            voucher_number=self._sequence.next_voucher_number(request.tenant_id, voucher_type),
            voucher_type=voucher_type.value,
            voucher_to=VoucherTo(request.voucher_to).value,
            beneficiary_name=request.beneficiary_name,
            counterparty_id=counterparty_id,
            amount=request.amount,
            currency=request.currency,
            exchange_rate=request.exchange_rate,
            debit_account_id=debit.id,
            credit_account_id=credit.id,
            transaction_date=request.transaction_date,
            description=request.description,
            reference=request.reference,
            status=VoucherStatus.PENDING.value,
            created_by_id=request.actor_id,
        )
        self._session.add(voucher)
        self._session.flush()

        logger.info(
            "voucher_created",
            extra={
                "voucher_id": str(voucher.id),
                "voucher_number": voucher.voucher_number,
                "voucher_type": voucher_type.value,
                "amount": str(request.amount),
                "debit_account": debit.code,
                "credit_account": credit.code,
            },
        )
        return voucher

    def post(self, voucher_id: UUID, actor_id: UUID) -> Voucher:
        voucher = self._get(voucher_id)
        check_transition(str(voucher.id), voucher.status, VoucherStatus.POSTED)

        voucher.status = VoucherStatus.POSTED.value
        voucher.posted_at = self._clock.now()
        voucher.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record_voucher_posted(
            voucher_id=voucher.id,
            voucher_number=voucher.voucher_number,
            voucher_type=str(voucher.voucher_type),
            amount=voucher.amount,
            transaction_date=voucher.transaction_date,
            actor_id=actor_id,
        )
        with LogContext.bind(voucher_id=voucher.id):
            logger.info(
                "voucher_posted",
                extra={
                    "voucher_number": voucher.voucher_number,
                    "amount": str(voucher.amount),
                },
            )
        return voucher

    def reverse(
        self,
        voucher_id: UUID,
        reason: str,
        actor_id: UUID,
        via_allocation: bool = False,
    ) -> Voucher:
        """
        Flip a POSTED voucher to REVERSED, keeping its amount and accounts.

        Raises:
            VoucherNotFoundError: Unknown id.
            OwnedByAllocationError: The voucher belongs to a live allocation
                and the caller is not reversing that allocation.
            VoucherAlreadyReversedError: Already reversed.
            InvalidVoucherTransitionError: Still PENDING.
        """
        voucher = self._get(voucher_id)
        if not via_allocation:
            owner = self._session.execute(
                select(AllocationGroup.id).where(AllocationGroup.voucher_id == voucher.id)
            ).scalar_one_or_none()
            if owner is not None:
                raise OwnedByAllocationError("Voucher", str(voucher.id))
        check_transition(str(voucher.id), voucher.status, VoucherStatus.REVERSED)

        voucher.status = VoucherStatus.REVERSED.value
        voucher.reversed_at = self._clock.now()
        voucher.reversal_reason = reason
        voucher.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record_voucher_reversed(
            voucher_id=voucher.id,
            reason=reason,
            actor_id=actor_id,
        )
        with LogContext.bind(voucher_id=voucher.id):
            logger.info(
                "voucher_reversed",
                extra={"voucher_number": voucher.voucher_number, "reason": reason},
            )
        return voucher

    def post_for_group(self, group: AllocationGroup, actor_id: UUID) -> Voucher:
        """
        Create and post the single voucher for an allocation group.

        Preconditions:
            The group is flushed and carries its cash and counter accounts.
        """
        direction = Direction.parse(group.direction)
        if direction is Direction.RECEIPT:
            debit_id, credit_id = group.cash_account_id, group.counter_account_id
            voucher_to = VoucherTo.CLIENT
        else:
            debit_id, credit_id = group.counter_account_id, group.cash_account_id
            voucher_to = VoucherTo.VENDOR

        counterparty = self._session.get(Counterparty, group.counterparty_id)
        request = VoucherRequest(
            tenant_id=group.tenant_id,
            voucher_type=direction.value,
            amount=group.total_amount,
            currency=group.currency,
            debit_account_id=debit_id,
            credit_account_id=credit_id,
            transaction_date=group.payment_date,
            actor_id=actor_id,
            voucher_to=voucher_to,
            beneficiary_name=counterparty.name if counterparty is not None else None,
            description=group.notes,
            reference=group.reference,
            exchange_rate=group.exchange_rate,
        )
        voucher = self.create_voucher(request, counterparty_id=group.counterparty_id)
        return self.post(voucher.id, actor_id)
