"""
Configuration schema (``settlement_config.schema``).

Responsibility
--------------
Frozen dataclasses describing a tenant's settlement configuration: which
ledger accounts take the other side of a receipt or payment voucher, the
base currency, the default allocation strategy and an optional rounding
tolerance override.

Architecture position
---------------------
**Config layer**.  Pure data; no I/O.  Parsed by ``loader.py``.

Invariants enforced
-------------------
* Every instance is frozen.
* Decimal values are parsed from strings, never floats.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from settlement_kernel.domain.dtos import Direction, Strategy


@dataclass(frozen=True)
class TenantSettlementConfig:
    """
    Settlement configuration for one tenant.

    Contract:
        ``counter_account_codes(direction)`` lists candidate account codes in
        preference order.  The orchestrator uses the first one that exists
        in the tenant's chart of accounts.
    """

    tenant_id: str
    base_currency: str
    receivable_account_code: str | None = None
    payable_account_code: str | None = None
    income_account_code: str | None = None
    expense_account_code: str | None = None
    default_strategy: Strategy = Strategy.FIFO
    rounding_tolerance: Decimal | None = None
    config_id: str = "default"
    version: int = 1
    checksum: str = ""

    def counter_account_codes(self, direction: Direction) -> tuple[str, ...]:
        if direction is Direction.RECEIPT:
            candidates = (self.receivable_account_code, self.income_account_code)
        else:
            candidates = (self.payable_account_code, self.expense_account_code)
        return tuple(code for code in candidates if code)
