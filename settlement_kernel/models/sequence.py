"""
Module: settlement_kernel.models.sequence
Responsibility: Named counter rows backing SequenceService.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per sequence name; current_value only ever increases, under a
      row lock held by the caller's transaction.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base


class SequenceCounter(Base):
    """Sequence counter table.  Row-level locking keeps values monotonic."""

    __tablename__ = "sequence_counters"

    # e.g. "audit_event", "voucher:acme:RECEIPT"
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
