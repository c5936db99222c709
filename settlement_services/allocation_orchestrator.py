"""
AllocationOrchestrator -- atomic create and reverse of allocation groups.

Responsibility:
    Owns the transaction for one allocation.  create() resolves the
    counterparty and accounts, validates the request, then inside a single
    unit locks the documents, re-checks their amounts due, persists the
    group and records, posts the voucher, records one settlement per record,
    and commits.  reverse() voids the settlements, reverses the voucher and
    marks the group REVERSED, also in one unit.

Architecture position:
    Services -- the only layer that commits.  Composes kernel services
    (DocumentService, VoucherPoster, AuditorService), kernel selectors, the
    AllocationValidator, the DocumentBalanceResolver engine and the tenant
    configuration.

Invariants enforced:
    - All or nothing: any exception rolls back every row written for the
      allocation, including the voucher and settlements.
    - Exactly one voucher per posted group, for the group total.
    - A group is reversed at most once; the group row is locked before the
      status check so concurrent reversals serialize.
    - Documents are locked in ascending id order and amount due is
      re-checked under the lock.

Failure modes:
    - ValidationError subclasses: the request breaks a rule.
    - NotFoundError subclasses: unknown counterparty, account or group.
    - InvalidStateError subclasses: cross-counterparty records, repeated
      reversal.
    - ConcurrencyError subclasses: amount due changed after validation, or
      a stale document version.  Retryable; nothing was persisted.
    - FatalConfigurationError subclasses: counter-account missing or wrong.

Audit relevance:
    Each committed create/reverse emits an AllocationGroup audit event plus
    voucher and settlement events, all in the same transaction.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from settlement_config.schema import TenantSettlementConfig
from settlement_engines.balance import DocumentBalanceResolver
from settlement_kernel.domain.allocation_validator import AllocationValidator
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import (
    AccountInfo,
    AllocationOutcome,
    AllocationOutcomeStatus,
    CreateAllocationRequest,
    Direction,
    GroupStatus,
)
from settlement_kernel.exceptions import (
    AllocationAlreadyReversedError,
    AllocationGroupNotFoundError,
    AmountDueChangedError,
    CounterAccountNotConfiguredError,
    CounterpartyNotFoundError,
    OptimisticLockError,
    TenantConfigNotFoundError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.allocation import AllocationGroup, AllocationRecord
from settlement_kernel.models.party import Counterparty
from settlement_kernel.selectors.account_selector import AccountSelector
from settlement_kernel.selectors.document_selector import DocumentSelector
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.document_service import DocumentService
from settlement_kernel.services.voucher_poster import VoucherPoster

logger = get_logger("services.allocation_orchestrator")

AllocationEventSink = Callable[[AllocationOutcome], None]


class AllocationOrchestrator:
    """
    Create and reverse allocation groups atomically.

    Contract:
        Every public method either returns a completed AllocationOutcome
        after commit, or raises after rollback.  There is no partial
        success result.

    Guarantees:
        - Event sinks run only after commit.  A failing sink is logged and
          never changes the outcome.

    Non-goals:
        - Does NOT compute proposals; FIFO/PRO_RATA lines arrive already
          filled in by the AllocationService.
        - Does NOT retry ConcurrencyError; callers decide.
    """

    def __init__(
        self,
        session: Session,
        config: TenantSettlementConfig,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._auditor = AuditorService(session, self._clock)
        self._documents = DocumentService(session, self._clock, self._auditor)
        self._poster = VoucherPoster(session, self._clock, self._auditor)
        self._accounts = AccountSelector(session)
        self._document_selector = DocumentSelector(session)
        self._validator = AllocationValidator(tolerance=config.rounding_tolerance)
        self._resolver = DocumentBalanceResolver()
        self._sinks: list[AllocationEventSink] = []

    def register_sink(self, sink: AllocationEventSink) -> None:
        self._sinks.append(sink)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: CreateAllocationRequest) -> AllocationOutcome:
        t0 = time.monotonic()
        with LogContext.bind(tenant_id=request.tenant_id, actor_id=request.actor_id):
            logger.info(
                "allocation_create_started",
                extra={
                    "direction": request.direction.value,
                    "strategy": request.strategy.value,
                    "total_amount": str(request.total_amount),
                    "record_count": len(request.lines),
                },
            )
            try:
                outcome = self._do_create(request)
                if self._auto_commit:
                    self._session.commit()
            except StaleDataError as exc:
                self._rollback()
                logger.warning("allocation_create_stale", extra={"error": str(exc)})
                raise OptimisticLockError(
                    "Document",
                    ",".join(sorted(str(line.document_id) for line in request.lines)),
                ) from exc
            except Exception:
                self._rollback()
                logger.error(
                    "allocation_create_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            with LogContext.bind(group_id=outcome.group.id):
                logger.info(
                    "allocation_committed",
                    extra={
                        "voucher_id": str(outcome.group.voucher_id),
                        "allocated_amount": str(outcome.group.allocated_amount),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
            self._notify(outcome)
            return outcome

    def _do_create(self, request: CreateAllocationRequest) -> AllocationOutcome:
        if request.tenant_id != self._config.tenant_id:
            raise TenantConfigNotFoundError(request.tenant_id)

        counterparty = self._session.get(Counterparty, request.counterparty_id)
        if counterparty is None:
            raise CounterpartyNotFoundError(str(request.counterparty_id))
        cash_account = self._accounts.get(request.cash_account_id)
        counter_account = self.resolve_counter_account(request.direction)
        snapshots = self._document_selector.snapshots(
            line.document_id for line in request.lines
        )

        result = self._validator.validate(
            request,
            snapshots,
            cash_account,
            counter_account,
            counterparty=counterparty.to_info(),
        )
        result.raise_if_invalid()

        # Atomic unit: nothing below is visible until commit
        locked = self._documents.lock_documents(line.document_id for line in request.lines)
        for line in request.lines:
            due = self._resolver.resolve(locked[line.document_id]).amount_due
            if line.amount > due:
                logger.warning(
                    "allocation_amount_due_changed",
                    extra={
                        "document_id": str(line.document_id),
                        "requested": str(line.amount),
                        "amount_due": str(due),
                    },
                )
                raise AmountDueChangedError(str(line.document_id), line.amount, due)

        group = AllocationGroup(
            tenant_id=request.tenant_id,
            direction=request.direction.value,
            strategy=request.strategy.value,
            total_amount=request.total_amount,
            allocated_amount=Decimal("0"),
            currency=request.currency,
            exchange_rate=request.exchange_rate,
            payment_date=request.payment_date,
            counterparty_id=request.counterparty_id,
            cash_account_id=cash_account.id,
            counter_account_id=counter_account.id,
            reference=request.reference,
            notes=request.notes,
            payment_method=request.payment_method,
            status=GroupStatus.DRAFT.value,
            created_by_id=request.actor_id,
            records=[
                AllocationRecord(
                    line_no=i + 1,
                    document_id=line.document_id,
                    amount=line.amount,
                    note=line.note,
                    created_by_id=request.actor_id,
                )
                for i, line in enumerate(request.lines)
            ],
        )
        self._session.add(group)
        self._session.flush()

        with LogContext.bind(group_id=group.id):
            voucher = self._poster.post_for_group(group, request.actor_id)

            allocated = Decimal("0")
            for record in group.records:
                settlement = self._documents.record_settlement(
                    document_id=record.document_id,
                    amount=record.amount,
                    settlement_date=request.payment_date,
                    actor_id=request.actor_id,
                    allocation_record_id=record.id,
                    reference=request.reference,
                )
                record.settlement_id = settlement.id
                allocated += record.amount

            group.voucher_id = voucher.id
            group.allocated_amount = allocated
            group.status = GroupStatus.POSTED.value
            group.posted_at = self._clock.now()
            self._session.flush()

            self._auditor.record_allocation_posted(
                group_id=group.id,
                voucher_id=voucher.id,
                direction=request.direction.value,
                total_amount=request.total_amount,
                record_count=len(group.records),
                actor_id=request.actor_id,
            )

        return AllocationOutcome(
            status=AllocationOutcomeStatus.POSTED,
            group=group.to_view(),
            voucher=voucher.to_view(),
        )

    def resolve_counter_account(self, direction: Direction) -> AccountInfo | None:
        """
        First configured counter-account code that exists in the chart.

        Returns None when the tenant configures no code for the direction.

        Raises:
            CounterAccountNotConfiguredError: codes are configured but none
                exists in the tenant's chart of accounts.
        """
        codes = self._config.counter_account_codes(direction)
        if not codes:
            return None
        for code in codes:
            account = self._accounts.get_by_code(self._config.tenant_id, code)
            if account is not None:
                return account
        logger.error(
            "counter_account_missing_from_chart",
            extra={"direction": direction.value, "account_codes": list(codes)},
        )
        raise CounterAccountNotConfiguredError(
            self._config.tenant_id, direction.value, account_code=codes[0],
        )

    # ------------------------------------------------------------------
    # Reverse
    # ------------------------------------------------------------------

    def reverse(self, group_id: UUID, reason: str, actor_id: UUID) -> AllocationOutcome:
        t0 = time.monotonic()
        with LogContext.bind(group_id=group_id, actor_id=actor_id):
            logger.info("allocation_reverse_started", extra={"reason": reason})
            try:
                outcome = self._do_reverse(group_id, reason, actor_id)
                if self._auto_commit:
                    self._session.commit()
            except StaleDataError as exc:
                self._rollback()
                raise OptimisticLockError("AllocationGroup", str(group_id)) from exc
            except Exception:
                self._rollback()
                logger.error("allocation_reverse_failed", exc_info=True)
                raise

            logger.info(
                "allocation_reversed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )
            self._notify(outcome)
            return outcome

    def _do_reverse(self, group_id: UUID, reason: str, actor_id: UUID) -> AllocationOutcome:
        group = self._session.execute(
            select(AllocationGroup)
            .where(AllocationGroup.id == group_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if group is None:
            raise AllocationGroupNotFoundError(str(group_id))
        if group.is_reversed:
            raise AllocationAlreadyReversedError(str(group_id))

        self._documents.lock_documents(record.document_id for record in group.records)

        voided = 0
        for record in group.records:
            if record.settlement_id is None:
                continue
            self._documents.void_settlement(
                record.settlement_id, reason, actor_id, via_allocation=True,
            )
            voided += 1

        voucher = None
        if group.voucher_id is not None:
            voucher = self._poster.reverse(
                group.voucher_id, reason, actor_id, via_allocation=True,
            )

        group.status = GroupStatus.REVERSED.value
        group.reversed_at = self._clock.now()
        group.reversal_reason = reason
        group.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record_allocation_reversed(
            group_id=group.id,
            reason=reason,
            voided_settlements=voided,
            actor_id=actor_id,
        )
        return AllocationOutcome(
            status=AllocationOutcomeStatus.REVERSED,
            group=group.to_view(),
            voucher=voucher.to_view() if voucher is not None else None,
        )

    # ------------------------------------------------------------------

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    def _notify(self, outcome: AllocationOutcome) -> None:
        for sink in self._sinks:
            try:
                sink(outcome)
            except Exception:
                logger.warning(
                    "allocation_sink_failed",
                    extra={
                        "group_id": str(outcome.group.id),
                        "sink": getattr(sink, "__qualname__", repr(sink)),
                    },
                    exc_info=True,
                )
