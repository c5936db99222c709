"""
Module: settlement_engines.balance
Responsibility:
    Compute a document's amount due and settlement status from its total and
    the amounts of its active settlements.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - amount_due = total - sum(active settlements), in Decimal only.
    - status is OPEN when nothing is settled, SETTLED when nothing is due,
      PARTIALLY_SETTLED otherwise.

Failure modes:
    - TypeError on float inputs.
    - ValueError when settlements are negative or exceed the total.  That is
      an invariant breach upstream, never a user error.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from settlement_kernel.domain.dtos import DocumentStatus, settlement_status
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.balance")

__all__ = [
    "DocumentBalance",
    "DocumentBalanceResolver",
    "amount_due",
    "settlement_status",
]


class SettledDocument(Protocol):
    total: Decimal

    def active_settlement_amounts(self) -> list[Decimal]: ...


def _require_decimal(name: str, value: object) -> Decimal:
    if isinstance(value, float):
        raise TypeError(f"{name} must be Decimal, not float")
    if not isinstance(value, Decimal):
        raise TypeError(f"{name} must be Decimal, got {type(value).__name__}")
    return value


def amount_due(total: Decimal, settlement_amounts: Iterable[Decimal]) -> Decimal:
    """total minus the sum of the given settlement amounts."""
    total = _require_decimal("total", total)
    settled = sum(
        (_require_decimal("settlement amount", a) for a in settlement_amounts),
        Decimal("0"),
    )
    return total - settled


@dataclass(frozen=True)
class DocumentBalance:
    total: Decimal
    amount_settled: Decimal
    amount_due: Decimal
    status: DocumentStatus


class DocumentBalanceResolver:
    """
    Derives a document's balance from its settlements.

    Contract:
        Stateless.  Reads only the values it is given.

    Guarantees:
        - amount_settled + amount_due == total.
        - 0 <= amount_due <= total.
    """

    def from_amounts(
        self,
        total: Decimal,
        settlement_amounts: Iterable[Decimal],
    ) -> DocumentBalance:
        amounts = list(settlement_amounts)
        due = amount_due(total, amounts)
        settled = total - due
        if settled < 0 or due < 0:
            logger.error(
                "document_balance_invariant_breach",
                extra={"total": str(total), "amount_settled": str(settled)},
            )
            raise ValueError(
                f"Settlements {settled} outside [0, {total}]"
            )
        return DocumentBalance(
            total=total,
            amount_settled=settled,
            amount_due=due,
            status=settlement_status(total, settled),
        )

    def resolve(self, document: SettledDocument) -> DocumentBalance:
        return self.from_amounts(
            Decimal(document.total),
            document.active_settlement_amounts(),
        )
