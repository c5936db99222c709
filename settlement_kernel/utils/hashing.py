"""
Canonical JSON and SHA-256 helpers.

The audit trail hashes each event's payload, then chains the event hash to
its predecessor.  Tenant configuration checksums use the same canonical
encoding, so a YAML block hashes the same regardless of key order.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

CHAIN_ROOT = "GENESIS"


def _encode(obj: Any) -> Any:
    match obj:
        case Decimal():
            # 300.00 and 300 must hash the same
            return format(obj.normalize(), "f")
        case datetime() | date():
            return obj.isoformat()
        case UUID():
            return str(obj)
        case Enum():
            return obj.value
    raise TypeError(f"cannot encode {type(obj).__name__} as canonical JSON")


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def to_json_safe(data: Any) -> Any:
    """Plain JSON types only, suitable for a JSON column."""
    return json.loads(canonical_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    return _sha256(canonical_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Event hash over its identity, its payload hash and the previous event's hash."""
    return _sha256(
        "|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or CHAIN_ROOT))
    )
