"""
AuditorService -- hash-chained audit trail.

Every posting, reversal and settlement change appends one ``AuditEvent``.
An event's hash covers its entity, action and payload hash plus the hash of
the event before it, so editing or deleting any row breaks verification of
every later one.  Rows are insert-only (see ``db.immutability``); the chain
catches tampering that bypasses the ORM.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import AuditChainBrokenError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.audit_event import AuditAction, AuditEvent
from settlement_kernel.services.sequence_service import SequenceService
from settlement_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: str
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


def _expected_hash(event: AuditEvent) -> str:
    return hash_audit_event(
        entity_type=event.entity_type,
        entity_id=str(event.entity_id),
        action=str(event.action),
        payload_hash=event.payload_hash,
        prev_hash=event.prev_hash,
    )


class AuditorService:
    """Appends audit events inside the caller's transaction; never commits."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence = SequenceService(session)

    def _append(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        **payload: Any,
    ) -> AuditEvent:
        # seq first: its row lock serializes writers of the chain tail
        seq = self._sequence.next_value(SequenceService.AUDIT_EVENT)
        tail = self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

        body = to_json_safe(payload)
        body_hash = hash_payload(body)
        event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=body,
            payload_hash=body_hash,
            prev_hash=tail,
            hash=hash_audit_event(entity_type, str(entity_id), action.value, body_hash, tail),
        )
        self._session.add(event)
        self._session.flush()

        logger.info("audit_event_created", extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action.value,
            "seq": seq,
        })
        return event

    def record_allocation_posted(
        self,
        group_id: UUID,
        voucher_id: UUID,
        direction: str,
        total_amount: Decimal,
        record_count: int,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._append(
            "AllocationGroup", group_id, AuditAction.ALLOCATION_POSTED, actor_id,
            voucher_id=voucher_id,
            direction=direction,
            total_amount=total_amount,
            record_count=record_count,
        )

    def record_allocation_reversed(
        self, group_id: UUID, reason: str, voided_settlements: int, actor_id: UUID,
    ) -> AuditEvent:
        return self._append(
            "AllocationGroup", group_id, AuditAction.ALLOCATION_REVERSED, actor_id,
            reason=reason,
            voided_settlements=voided_settlements,
        )

    def record_voucher_posted(
        self,
        voucher_id: UUID,
        voucher_number: str,
        voucher_type: str,
        amount: Decimal,
        transaction_date: date,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._append(
            "Voucher", voucher_id, AuditAction.VOUCHER_POSTED, actor_id,
            voucher_number=voucher_number,
            voucher_type=voucher_type,
            amount=amount,
            transaction_date=transaction_date,
        )

    def record_voucher_reversed(self, voucher_id: UUID, reason: str, actor_id: UUID) -> AuditEvent:
        return self._append(
            "Voucher", voucher_id, AuditAction.VOUCHER_REVERSED, actor_id, reason=reason,
        )

    def record_settlement_recorded(
        self, settlement_id: UUID, document_id: UUID, amount: Decimal, actor_id: UUID,
    ) -> AuditEvent:
        return self._append(
            "DocumentSettlement", settlement_id, AuditAction.SETTLEMENT_RECORDED, actor_id,
            document_id=document_id,
            amount=amount,
        )

    def record_settlement_voided(
        self, settlement_id: UUID, reason: str, actor_id: UUID,
    ) -> AuditEvent:
        return self._append(
            "DocumentSettlement", settlement_id, AuditAction.SETTLEMENT_VOIDED, actor_id,
            reason=reason,
        )

    def get_trace(self, entity_type: str, entity_id: UUID) -> tuple[AuditTraceEntry, ...]:
        """Events for one entity, oldest first."""
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.seq)
        ).scalars()
        return tuple(
            AuditTraceEntry(e.seq, e.action, e.actor_id, e.payload or {}, e.hash)
            for e in events
        )

    def validate_chain(self) -> bool:
        """
        Recompute every hash in seq order.

        Raises:
            AuditChainBrokenError: At the first event whose link or hash
                does not verify.
        """
        previous: str | None = None
        for event in self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars():
            if event.prev_hash != previous:
                expected, actual = previous or "None", event.prev_hash or "None"
            elif event.hash != (recomputed := _expected_hash(event)):
                expected, actual = recomputed, event.hash
            else:
                previous = event.hash
                continue
            logger.critical("audit_chain_broken", extra={"event_id": str(event.id), "seq": event.seq})
            raise AuditChainBrokenError(str(event.id), expected, actual)
        return True
