"""
Module: settlement_engines.allocation
Responsibility:
    Propose how one payment is split across a counterparty's outstanding
    documents, by FIFO, PRO_RATA or MANUAL strategy, with deterministic
    rounding.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import settlement_kernel domain values, db.types and logging.

Invariants enforced:
    - total_allocated + unallocated == total_payment.
    - Every proposed line is positive and no line exceeds the document's
      amount due (FIFO and PRO_RATA).
    - Documents with nothing due are never allocated to.
    - Iteration order is due date ascending, then document number
      ascending, so the same inputs always produce the same proposal.

Failure modes:
    - ValueError on a negative payment, an unknown strategy, or MANUAL
      without lines.

Usage:
    from settlement_engines.allocation import Allocator, OutstandingDocument

    proposal = Allocator().allocate(
        strategy=Strategy.FIFO,
        documents=[OutstandingDocument(inv1_id, "INV-1", date(2024, 1, 1), Decimal("300.00"))],
        total_payment=Decimal("450.00"),
        currency="USD",
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_DOWN, Decimal
from uuid import UUID

from settlement_engines.tracer import traced_engine
from settlement_kernel.db.types import round_money
from settlement_kernel.domain.dtos import Strategy
from settlement_kernel.domain.values import Money
from settlement_kernel.exceptions import UnknownStrategyError
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


@dataclass(frozen=True)
class OutstandingDocument:
    """A document eligible to receive part of a payment."""

    document_id: UUID
    document_number: str
    due_date: date
    amount_due: Decimal


@dataclass(frozen=True)
class AllocationLine:
    """The amount proposed for one document."""

    document_id: UUID
    amount: Money


@dataclass(frozen=True)
class AllocationProposal:
    """
    Result of one allocator run.

    Contract:
        A proposal is advice.  Nothing is persisted until the orchestrator
        validates and posts it.

    Guarantees:
        - total_allocated + unallocated == total_payment.
    """

    strategy: Strategy
    total_payment: Money
    lines: tuple[AllocationLine, ...]
    total_allocated: Money
    unallocated: Money

    @property
    def is_fully_allocated(self) -> bool:
        return self.unallocated.is_zero

    @property
    def line_count(self) -> int:
        return len(self.lines)


def fifo_order(documents: Sequence[OutstandingDocument]) -> list[OutstandingDocument]:
    """Documents with amount due > 0, oldest due date first, then by number."""
    eligible = [d for d in documents if d.amount_due > 0]
    return sorted(eligible, key=lambda d: (d.due_date, d.document_number))


def largest_remainder_shares(
    documents: Sequence[OutstandingDocument],
    effective: Decimal,
    total_due: Decimal,
    decimal_places: int,
) -> list[Decimal]:
    """
    Proportional shares that never go negative or past a document's due.

    Each exact share is floored to the minor unit, then the leftover units
    go one apiece to the largest fractional parts; earlier documents win
    ties.  The shares sum exactly to ``effective``.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    exact = [effective * doc.amount_due / total_due for doc in documents]
    shares = [round_money(x, decimal_places, ROUND_DOWN) for x in exact]
    leftover = effective - sum(shares, Decimal("0"))

    by_fraction = sorted(range(len(documents)), key=lambda i: exact[i] - shares[i], reverse=True)
    for i in by_fraction:
        if leftover < quantum:
            break
        shares[i] += quantum
        leftover -= quantum
    if leftover:
        # Sub-unit residue only when inputs carry more places than the currency
        shares[by_fraction[0]] += leftover
    return shares


class Allocator:
    """
    Distributes a payment across outstanding documents.

    Contract:
        Pure functions.  No I/O, no clock, no database access.

    Guarantees:
        - FIFO fills each document in order before moving to the next and
          never splits the leftover.
        - PRO_RATA rounds every line but the last to the currency's minor
          unit (ROUND_HALF_UP); the last line takes the remainder, so the
          lines sum exactly to min(total_payment, total_due).  When that
          remainder would be negative or more than the last document owes,
          shares are floored and the leftover minor units go to the largest
          fractional remainders instead.  Zero shares are dropped.
        - MANUAL returns the caller's lines unchanged.

    Non-goals:
        - Does not validate counterparties, kinds or accounts; that is the
          AllocationValidator's job.
    """

    @traced_engine(
        "allocation", "1.0",
        fingerprint_fields=("strategy", "total_payment", "currency"),
    )
    def allocate(
        self,
        *,
        strategy: Strategy | str,
        documents: Sequence[OutstandingDocument],
        total_payment: Decimal,
        currency: str,
        manual_lines: Sequence[tuple[UUID, Decimal]] | None = None,
    ) -> AllocationProposal:
        """
        Propose a split of ``total_payment``.

        Args:
            strategy: FIFO, PRO_RATA or MANUAL.
            documents: Outstanding documents of one counterparty.
            total_payment: Payment amount, >= 0.
            currency: ISO 4217 code of the payment and documents.
            manual_lines: (document_id, amount) pairs, MANUAL only.

        Raises:
            ValueError: Negative payment, unknown strategy, or MANUAL
                without lines.
        """
        try:
            strategy = Strategy.parse(strategy)
        except UnknownStrategyError as exc:
            raise ValueError(f"Unknown allocation strategy: {strategy}") from exc
        if isinstance(total_payment, float):
            raise TypeError("total_payment must be Decimal, not float")
        if total_payment < 0:
            raise ValueError(f"Payment amount cannot be negative: {total_payment}")

        payment = Money.of(total_payment, currency)
        logger.info("allocation_started", extra={
            "strategy": strategy.value,
            "total_payment": str(total_payment),
            "currency": payment.currency.code,
            "document_count": len(documents),
        })

        match strategy:
            case Strategy.FIFO:
                proposal = self._allocate_fifo(payment, documents)
            case Strategy.PRO_RATA:
                proposal = self._allocate_pro_rata(payment, documents)
            case Strategy.MANUAL:
                proposal = self._allocate_manual(payment, manual_lines)

        logger.info("allocation_completed", extra={
            "strategy": strategy.value,
            "total_allocated": str(proposal.total_allocated.amount),
            "unallocated": str(proposal.unallocated.amount),
            "line_count": proposal.line_count,
        })
        return proposal

    def _allocate_fifo(
        self,
        payment: Money,
        documents: Sequence[OutstandingDocument],
    ) -> AllocationProposal:
        remaining = payment.amount
        lines: list[AllocationLine] = []
        for doc in fifo_order(documents):
            if remaining <= 0:
                break
            portion = min(doc.amount_due, remaining)
            remaining -= portion
            lines.append(AllocationLine(doc.document_id, Money.of(portion, payment.currency)))

        return AllocationProposal(
            strategy=Strategy.FIFO,
            total_payment=payment,
            lines=tuple(lines),
            total_allocated=Money.of(payment.amount - remaining, payment.currency),
            unallocated=Money.of(remaining, payment.currency),
        )

    def _allocate_pro_rata(
        self,
        payment: Money,
        documents: Sequence[OutstandingDocument],
    ) -> AllocationProposal:
        ordered = fifo_order(documents)
        total_due = sum((d.amount_due for d in ordered), Decimal("0"))
        if total_due == 0:
            return AllocationProposal(
                strategy=Strategy.PRO_RATA,
                total_payment=payment,
                lines=(),
                total_allocated=Money.zero(payment.currency),
                unallocated=payment,
            )

        effective = min(payment.amount, total_due)
        places = payment.currency.decimal_places
        shares = [
            round_money(effective * doc.amount_due / total_due, places)
            for doc in ordered[:-1]
        ]
        remainder = effective - sum(shares, Decimal("0"))
        if Decimal("0") <= remainder <= ordered[-1].amount_due:
            shares.append(remainder)
        else:
            shares = largest_remainder_shares(ordered, effective, total_due, places)

        lines = [
            AllocationLine(doc.document_id, Money.of(share, payment.currency))
            for doc, share in zip(ordered, shares)
            if share > 0
        ]

        return AllocationProposal(
            strategy=Strategy.PRO_RATA,
            total_payment=payment,
            lines=tuple(lines),
            total_allocated=Money.of(effective, payment.currency),
            unallocated=Money.of(payment.amount - effective, payment.currency),
        )

    def _allocate_manual(
        self,
        payment: Money,
        manual_lines: Sequence[tuple[UUID, Decimal]] | None,
    ) -> AllocationProposal:
        if not manual_lines:
            raise ValueError("MANUAL allocation requires caller-supplied lines")
        lines = tuple(
            AllocationLine(document_id, Money.of(amount, payment.currency))
            for document_id, amount in manual_lines
        )
        allocated = sum((line.amount.amount for line in lines), Decimal("0"))
        return AllocationProposal(
            strategy=Strategy.MANUAL,
            total_payment=payment,
            lines=lines,
            total_allocated=Money.of(allocated, payment.currency),
            unallocated=Money.of(payment.amount - allocated, payment.currency),
        )
