"""
settlement_config -- single public entrypoint for settlement configuration.

Responsibility:
    Provides ``get_tenant_config()``, the only way services obtain a
    tenant's counter-accounts, base currency, default strategy and
    rounding tolerance override.

Architecture position:
    Configuration -- sits above ``settlement_kernel`` and below
    ``settlement_services``.  The kernel never imports from here.

Failure modes:
    - ``TenantConfigNotFoundError`` -- no configuration set declares the tenant.
    - ``ValueError`` -- the tenant is declared twice, or a block is invalid.

Audit relevance:
    Every successful ``get_tenant_config()`` call emits a
    ``SETTLEMENT_CONFIG_TRACE`` log entry with the config id, version and
    checksum that governed the allocation.
"""

from __future__ import annotations

import logging
from pathlib import Path

from settlement_config.loader import load_config_file, parse_tenant_config
from settlement_config.schema import TenantSettlementConfig
from settlement_kernel.exceptions import TenantConfigNotFoundError

_logger = logging.getLogger("settlement_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

__all__ = [
    "TenantSettlementConfig",
    "get_tenant_config",
    "load_config_file",
    "parse_tenant_config",
]


def get_tenant_config(
    tenant_id: str,
    config_dir: Path | None = None,
) -> TenantSettlementConfig:
    """
    Resolve one tenant's settlement configuration.

    Args:
        tenant_id: Tenant identifier.
        config_dir: Override path to the sets directory.  Defaults to
            settlement_config/sets/.

    Raises:
        TenantConfigNotFoundError: No file declares the tenant.
        ValueError: More than one file declares the tenant.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR

    matches: list[TenantSettlementConfig] = []
    for path in sorted(sets_dir.glob("*.yaml")):
        matches.extend(c for c in load_config_file(path) if c.tenant_id == tenant_id)

    if not matches:
        raise TenantConfigNotFoundError(tenant_id)
    if len(matches) > 1:
        raise ValueError(
            f"Tenant {tenant_id} is declared in {len(matches)} configuration sets"
        )

    config = matches[0]
    _logger.info(
        "SETTLEMENT_CONFIG_TRACE",
        extra={
            "trace_type": "SETTLEMENT_CONFIG_TRACE",
            "tenant_id": tenant_id,
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
        },
    )
    return config
