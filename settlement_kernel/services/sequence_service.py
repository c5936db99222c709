"""
SequenceService -- gap-tolerant, strictly increasing counters.

Each named counter is one ``sequence_counters`` row incremented under
``SELECT ... FOR UPDATE``, so the value is held by the caller's transaction
and handed back on rollback.  The audit chain draws ``seq`` from
``audit_event``; vouchers draw from ``voucher:<tenant>:<TYPE>`` and are
formatted as ``RCT-000001``, ``PAY-000001`` and so on.

Two transactions that both find a counter missing race on its unique name.
The loser's insert is undone to a savepoint and it increments the winner's
row instead.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_kernel.domain.dtos import VoucherType
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")

VOUCHER_PREFIXES: dict[VoucherType, str] = {
    VoucherType.RECEIPT: "RCT",
    VoucherType.PAYMENT: "PAY",
    VoucherType.CONTRA: "CTR",
    VoucherType.JOURNAL: "JNL",
}


class SequenceService:
    """Flushes only; the caller's transaction decides whether a value sticks."""

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _lock(self, name: str) -> SequenceCounter | None:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def _create(self, name: str) -> SequenceCounter:
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=name, current_value=0)
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            counter = self._lock(name)
            if counter is None:
                raise
            return counter
        savepoint.commit()
        return counter

    def next_value(self, name: str) -> int:
        counter = self._lock(name) or self._create(name)
        counter.current_value += 1
        self._session.flush()

        logger.debug("sequence_allocated", extra={
            "sequence_name": name,
            "value": counter.current_value,
        })
        return counter.current_value

    def next_voucher_number(self, tenant_id: str, voucher_type: VoucherType) -> str:
        value = self.next_value(f"voucher:{tenant_id}:{voucher_type.value}")
        return f"{VOUCHER_PREFIXES[voucher_type]}-{value:06d}"
