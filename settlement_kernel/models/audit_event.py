"""
Module: settlement_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (db/immutability.py).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      written by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Audit relevance:
    Every allocation post and reversal, and every standalone voucher post and
    reversal, produces an AuditEvent.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base
from settlement_kernel.db.types import UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    ALLOCATION_POSTED = "allocation_posted"
    ALLOCATION_REVERSED = "allocation_reversed"
    VOUCHER_POSTED = "voucher_posted"
    VOUCHER_REVERSED = "voucher_reversed"
    SETTLEMENT_RECORDED = "settlement_recorded"
    SETTLEMENT_VOIDED = "settlement_voided"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is unique and monotonically increasing.
        - prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "AllocationGroup", "Voucher", "DocumentSettlement"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Null for the first event
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"
