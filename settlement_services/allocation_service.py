"""
AllocationService -- the external programmatic boundary for allocations.

Responsibility:
    propose_allocation, create_allocation, reverse_allocation,
    get_allocation and list_outstanding_documents for one tenant.  Turns
    loosely typed caller input (labels, legacy DEPOSIT, tuples) into the
    kernel's request objects and delegates to the Allocator and the
    AllocationOrchestrator.

Architecture position:
    Services -- outermost layer of this package.  Nothing else in the repo
    imports from here.

Failure modes:
    - Everything the orchestrator raises, unchanged.
    - CounterpartyNotFoundError from propose/list for an unknown party.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal
from pathlib import Path
from uuid import UUID

from sqlalchemy.orm import Session

from settlement_config import get_tenant_config
from settlement_config.schema import TenantSettlementConfig
from settlement_engines.allocation import (
    AllocationProposal,
    Allocator,
    OutstandingDocument,
)
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import (
    AllocationGroupView,
    AllocationLineInput,
    AllocationOutcome,
    CreateAllocationRequest,
    Direction,
    DocumentSnapshot,
    DocumentView,
    Strategy,
)
from settlement_kernel.domain.values import Money
from settlement_kernel.exceptions import CounterpartyNotFoundError, InvalidAmountError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.party import Counterparty
from settlement_kernel.selectors.allocation_selector import AllocationSelector
from settlement_kernel.selectors.document_selector import DocumentSelector
from settlement_services.allocation_orchestrator import (
    AllocationEventSink,
    AllocationOrchestrator,
)

logger = get_logger("services.allocation")

LineLike = AllocationLineInput | tuple[UUID, Decimal]


def _to_line(line: LineLike) -> AllocationLineInput:
    if isinstance(line, AllocationLineInput):
        return line
    document_id, amount = line
    return AllocationLineInput(document_id=document_id, amount=amount)


def _outstanding(snapshot: DocumentSnapshot) -> OutstandingDocument:
    return OutstandingDocument(
        document_id=snapshot.id,
        document_number=snapshot.number,
        due_date=snapshot.due_date,
        amount_due=snapshot.amount_due,
    )


class AllocationService:
    """
    One tenant's allocation API.

    Contract:
        Lines passed to create_allocation are used as given.  When lines is
        None, FIFO and PRO_RATA lines are computed from the counterparty's
        outstanding documents at call time.  MANUAL always needs lines.

    Guarantees:
        - DEPOSIT is accepted as a direction and treated as RECEIPT.
        - Payments default to the tenant's base currency.
        - Without a strategy, the tenant's ``default_strategy`` applies.
    """

    def __init__(
        self,
        session: Session,
        tenant_id: str,
        clock: Clock | None = None,
        config: TenantSettlementConfig | None = None,
        config_dir: Path | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._tenant_id = tenant_id
        self._clock = clock or SystemClock()
        self._config = config or get_tenant_config(tenant_id, config_dir)
        self._allocator = Allocator()
        self._documents = DocumentSelector(session)
        self._groups = AllocationSelector(session)
        self._orchestrator = AllocationOrchestrator(
            session, self._config, self._clock, auto_commit=auto_commit,
        )

    @property
    def config(self) -> TenantSettlementConfig:
        return self._config

    def register_sink(self, sink: AllocationEventSink) -> None:
        self._orchestrator.register_sink(sink)

    def _require_counterparty(self, counterparty_id: UUID) -> None:
        if self._session.get(Counterparty, counterparty_id) is None:
            raise CounterpartyNotFoundError(str(counterparty_id))

    def _outstanding_snapshots(
        self,
        counterparty_id: UUID,
        direction: Direction,
        currency: str,
    ) -> list[DocumentSnapshot]:
        return [
            snap
            for snap in self._documents.outstanding(
                self._tenant_id, counterparty_id, direction.document_kind,
            )
            if snap.currency == currency
        ]

    def _strategy(self, strategy: Strategy | str | None) -> Strategy:
        if strategy is None:
            return self._config.default_strategy
        return Strategy.parse(strategy)

    def propose_allocation(
        self,
        strategy: Strategy | str | None,
        counterparty_id: UUID,
        direction: Direction | str,
        total_amount: Decimal,
        currency: str | None = None,
    ) -> AllocationProposal:
        """
        Read-only proposal.  MANUAL returns no lines and leaves the whole
        amount unallocated for the caller to distribute.  A None strategy
        means the tenant's ``default_strategy``.
        """
        strategy = self._strategy(strategy)
        direction = Direction.parse(direction)
        currency = currency or self._config.base_currency
        self._require_counterparty(counterparty_id)

        if strategy is Strategy.MANUAL:
            payment = Money.of(total_amount, currency)
            return AllocationProposal(
                strategy=Strategy.MANUAL,
                total_payment=payment,
                lines=(),
                total_allocated=Money.zero(currency),
                unallocated=payment,
            )

        snapshots = self._outstanding_snapshots(counterparty_id, direction, currency)
        return self._allocator.allocate(
            strategy=strategy,
            documents=[_outstanding(s) for s in snapshots],
            total_payment=total_amount,
            currency=currency,
        )

    def create_allocation(
        self,
        direction: Direction | str,
        strategy: Strategy | str | None = None,
        *,
        total_amount: Decimal,
        payment_date: date,
        cash_account_id: UUID,
        counterparty_id: UUID,
        actor_id: UUID,
        lines: Sequence[LineLike] | None = None,
        reference: str | None = None,
        notes: str | None = None,
        payment_method: str | None = None,
        exchange_rate: Decimal = Decimal("1"),
        currency: str | None = None,
    ) -> AllocationOutcome:
        direction = Direction.parse(direction)
        strategy = self._strategy(strategy)
        currency = currency or self._config.base_currency
        if not isinstance(total_amount, Decimal) or total_amount <= 0:
            raise InvalidAmountError("total_amount", total_amount)

        if lines is None and strategy is not Strategy.MANUAL:
            proposal = self.propose_allocation(
                strategy, counterparty_id, direction, total_amount, currency,
            )
            resolved = tuple(
                AllocationLineInput(line.document_id, line.amount.amount)
                for line in proposal.lines
            )
            if not proposal.is_fully_allocated:
                logger.info(
                    "allocation_proposal_short",
                    extra={
                        "strategy": strategy.value,
                        "unallocated": str(proposal.unallocated.amount),
                    },
                )
        else:
            resolved = tuple(_to_line(line) for line in lines or ())

        request = CreateAllocationRequest(
            tenant_id=self._tenant_id,
            direction=direction,
            strategy=strategy,
            total_amount=total_amount,
            currency=currency,
            payment_date=payment_date,
            cash_account_id=cash_account_id,
            counterparty_id=counterparty_id,
            lines=resolved,
            actor_id=actor_id,
            exchange_rate=exchange_rate,
            reference=reference,
            notes=notes,
            payment_method=payment_method,
        )
        return self._orchestrator.create(request)

    def reverse_allocation(
        self,
        group_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> AllocationOutcome:
        return self._orchestrator.reverse(group_id, reason, actor_id)

    def get_allocation(self, group_id: UUID) -> AllocationGroupView:
        return self._groups.get_group(group_id)

    def list_outstanding_documents(
        self,
        counterparty_id: UUID,
        direction: Direction | str,
        currency: str | None = None,
    ) -> list[DocumentView]:
        """Documents with amount due > 0, oldest due date first."""
        direction = Direction.parse(direction)
        self._require_counterparty(counterparty_id)
        snapshots: Iterable[DocumentSnapshot]
        if currency is None:
            snapshots = self._documents.outstanding(
                self._tenant_id, counterparty_id, direction.document_kind,
            )
        else:
            snapshots = self._outstanding_snapshots(counterparty_id, direction, currency)
        return [snap.to_view() for snap in snapshots]
