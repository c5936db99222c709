"""
Configuration Loader (``settlement_config.loader``).

Responsibility
--------------
Loads settlement configuration YAML files and parses them into
``settlement_config.schema`` dataclasses.  Runtime callers use
``settlement_config.get_tenant_config()``; this module is its tooling.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError``; required fields never
  get silent defaults.
* ``compute_checksum`` is a deterministic SHA-256 over the raw tenant block.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Bad currency, strategy or tolerance  -> ``ValueError``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import TenantSettlementConfig
from settlement_kernel.domain.currency import CurrencyRegistry
from settlement_kernel.domain.dtos import Strategy
from settlement_kernel.exceptions import UnknownStrategyError
from settlement_kernel.utils.hashing import hash_payload


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    return hash_payload(data)


def _parse_decimal(name: str, value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, float):
        # YAML turns 0.01 into a float; quote it in the file instead
        raise ValueError(f"{name} must be a quoted decimal string, got float {value!r}")
    try:
        parsed = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name} is not a decimal: {value!r}") from exc
    if parsed < 0:
        raise ValueError(f"{name} cannot be negative: {parsed}")
    return parsed


def parse_tenant_config(
    data: dict[str, Any],
    config_id: str = "default",
    version: int = 1,
) -> TenantSettlementConfig:
    """
    Parse one tenant block.

    Raises:
        KeyError: tenant_id or base_currency missing.
        ValueError: invalid currency, strategy or tolerance.
    """
    try:
        strategy = Strategy.parse(data.get("default_strategy", "FIFO"))
    except UnknownStrategyError as exc:
        raise ValueError(str(exc)) from exc

    counter = data.get("counter_accounts", {}) or {}
    fallback = data.get("fallback_accounts", {}) or {}

    return TenantSettlementConfig(
        tenant_id=str(data["tenant_id"]),
        base_currency=CurrencyRegistry.validate(data["base_currency"]),
        receivable_account_code=_code(counter.get("receipt")),
        payable_account_code=_code(counter.get("payment")),
        income_account_code=_code(fallback.get("receipt")),
        expense_account_code=_code(fallback.get("payment")),
        default_strategy=strategy,
        rounding_tolerance=_parse_decimal("rounding_tolerance", data.get("rounding_tolerance")),
        config_id=config_id,
        version=int(version),
        checksum=compute_checksum(data),
    )


def _code(value: Any) -> str | None:
    return str(value) if value is not None else None


def load_config_file(path: Path) -> list[TenantSettlementConfig]:
    """All tenant configs declared in one YAML file."""
    raw = load_yaml_file(path)
    config_id = str(raw.get("config_id", path.stem))
    version = raw.get("version", 1)
    return [
        parse_tenant_config(block, config_id=config_id, version=version)
        for block in raw.get("tenants", []) or []
    ]
