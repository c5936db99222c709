"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Posted vouchers, allocation records, settlements and audit events must not be
edited in place.  The only sanctioned way to undo a posting is a reversal that
leaves the original amounts visible.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and raise
ImmutabilityViolationError before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|-----------------------------------------------------------
Voucher             | POSTED: only status->REVERSED and reversal metadata change
                    | REVERSED: nothing changes.  Never deleted once posted.
AllocationGroup     | POSTED: only status->REVERSED and reversal metadata change
                    | REVERSED: nothing changes.
AllocationRecord    | Only settlement_id may change.  Never deleted.
DocumentSettlement  | Only voided_at/void_reason may change, and only once.
                    | Never deleted.
AuditEvent          | Never updated or deleted.

updated_at/updated_by_id are audit metadata and may always change.

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from settlement_kernel.exceptions import ImmutabilityViolationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA = frozenset({"updated_at", "updated_by_id"})


def _prior_value(target, attr_name: str):
    """Value the attribute had before this flush (current value if unchanged)."""
    hist = get_history(target, attr_name)
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    return getattr(target, attr_name)


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_METADATA and attr.history.has_changes()
    ]


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_reversible_update(entity_type: str, target, reversal_fields: frozenset[str]):
    """Shared rule for Voucher and AllocationGroup."""
    prior = _prior_value(target, "status")
    if prior not in ("POSTED", "REVERSED"):
        return

    changed = _changed_fields(target)
    if prior == "REVERSED" and changed:
        _block(
            entity_type, target, "UPDATE",
            f"Cannot modify field '{changed[0]}' on reversed {entity_type}",
            changed[0],
        )

    for field in changed:
        if field not in reversal_fields:
            _block(
                entity_type, target, "UPDATE",
                f"Cannot modify field '{field}' on posted {entity_type}",
                field,
            )
    if "status" in changed and target.status != "REVERSED":
        _block(
            entity_type, target, "UPDATE",
            f"Posted {entity_type} may only move to REVERSED",
            "status",
        )


_REVERSAL_FIELDS = frozenset({"status", "reversed_at", "reversal_reason"})


def _check_voucher_immutability(mapper, connection, target):
    _check_reversible_update("Voucher", target, _REVERSAL_FIELDS)


def _check_voucher_delete(mapper, connection, target):
    if _prior_value(target, "status") in ("POSTED", "REVERSED"):
        _block("Voucher", target, "DELETE", "Posted vouchers cannot be deleted")


def _check_group_immutability(mapper, connection, target):
    _check_reversible_update("AllocationGroup", target, _REVERSAL_FIELDS)


def _check_record_immutability(mapper, connection, target):
    for field in _changed_fields(target):
        if field != "settlement_id":
            _block(
                "AllocationRecord", target, "UPDATE",
                f"Cannot modify field '{field}' on allocation record",
                field,
            )


def _check_record_delete(mapper, connection, target):
    _block("AllocationRecord", target, "DELETE", "Allocation records cannot be deleted")


def _check_settlement_immutability(mapper, connection, target):
    for field in _changed_fields(target):
        if field not in ("voided_at", "void_reason"):
            _block(
                "DocumentSettlement", target, "UPDATE",
                f"Cannot modify field '{field}' on settlement",
                field,
            )
    if _prior_value(target, "voided_at") is not None and _changed_fields(target):
        _block("DocumentSettlement", target, "UPDATE", "Settlement is already voided")


def _check_settlement_delete(mapper, connection, target):
    _block("DocumentSettlement", target, "DELETE", "Settlements are voided, not deleted")


def _check_audit_event_immutability(mapper, connection, target):
    _block("AuditEvent", target, "UPDATE", "Audit events are append-only")


def _check_audit_event_delete(mapper, connection, target):
    _block("AuditEvent", target, "DELETE", "Audit events are append-only")


def _listeners():
    from settlement_kernel.models.allocation import AllocationGroup, AllocationRecord
    from settlement_kernel.models.audit_event import AuditEvent
    from settlement_kernel.models.document import DocumentSettlement
    from settlement_kernel.models.voucher import Voucher

    return (
        (Voucher, "before_update", _check_voucher_immutability),
        (Voucher, "before_delete", _check_voucher_delete),
        (AllocationGroup, "before_update", _check_group_immutability),
        (AllocationRecord, "before_update", _check_record_immutability),
        (AllocationRecord, "before_delete", _check_record_delete),
        (DocumentSettlement, "before_update", _check_settlement_immutability),
        (DocumentSettlement, "before_delete", _check_settlement_delete),
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call once during application initialization, after models are imported.
    Safe to call more than once.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)

