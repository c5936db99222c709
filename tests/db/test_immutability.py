"""
Append-only persistence tests.

Verifies:
- Posted vouchers and allocation groups only change by reversal
- Allocation records, settlements and audit events are never rewritten
- Raw tampering with the audit table is caught by chain validation
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import text

from settlement_kernel.domain.dtos import VoucherRequest, VoucherType
from settlement_kernel.exceptions import AuditChainBrokenError, ImmutabilityViolationError
from settlement_kernel.models.allocation import AllocationGroup, AllocationRecord
from settlement_kernel.models.audit_event import AuditEvent
from settlement_kernel.models.document import DocumentSettlement
from settlement_kernel.models.voucher import Voucher
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.voucher_poster import VoucherPoster
from tests.conftest import TEST_ACTOR_ID, TEST_TENANT


@pytest.fixture
def posted(session, allocation_service, client_party, invoices, cash_account):
    return allocation_service.create_allocation(
        direction="RECEIPT",
        strategy="FIFO",
        total_amount=Decimal("450.00"),
        payment_date=date(2024, 2, 1),
        cash_account_id=cash_account.id,
        counterparty_id=client_party.id,
        actor_id=TEST_ACTOR_ID,
    )


class TestVoucherImmutability:

    def test_posted_amount_cannot_change(self, session, posted):
        voucher = session.get(Voucher, posted.voucher.id)
        voucher.amount = Decimal("1.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "Voucher"

    def test_posted_voucher_cannot_be_deleted(self, session, posted):
        session.delete(session.get(Voucher, posted.voucher.id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_posted_cannot_return_to_pending(self, session, posted):
        voucher = session.get(Voucher, posted.voucher.id)
        voucher.status = "PENDING"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_pending_voucher_is_editable(self, session, chart, deterministic_clock):
        """Nothing is frozen before posting."""
        voucher = VoucherPoster(session, deterministic_clock).create_voucher(
            VoucherRequest(
                tenant_id=TEST_TENANT,
                voucher_type=VoucherType.RECEIPT,
                amount=Decimal("10.00"),
                currency="USD",
                debit_account_id=chart["1000"].id,
                credit_account_id=chart["4000"].id,
                transaction_date=date(2024, 2, 1),
                actor_id=TEST_ACTOR_ID,
            )
        )
        session.flush()

        voucher.amount = Decimal("12.00")
        session.flush()

        assert session.get(Voucher, voucher.id).amount == Decimal("12.00")


class TestAllocationImmutability:

    def test_record_amount_cannot_change(self, session, posted):
        record = session.get(AllocationRecord, posted.group.records[0].id)
        record.amount = Decimal("299.00")

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_record_cannot_be_deleted(self, session, posted):
        session.delete(session.get(AllocationRecord, posted.group.records[1].id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_posted_group_total_cannot_change(self, session, posted):
        group = session.get(AllocationGroup, posted.group.id)
        group.total_amount = Decimal("500.00")

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_reversed_group_is_frozen(self, session, posted, allocation_service):
        allocation_service.reverse_allocation(posted.group.id, "duplicate", TEST_ACTOR_ID)

        group = session.get(AllocationGroup, posted.group.id)
        group.reversal_reason = "rewritten"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_settlement_cannot_be_deleted(self, session, posted):
        settlement_id = posted.group.records[0].settlement_id
        session.delete(session.get(DocumentSettlement, settlement_id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_settlement_amount_cannot_change(self, session, posted):
        settlement = session.get(DocumentSettlement, posted.group.records[0].settlement_id)
        settlement.amount = Decimal("1.00")

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAuditEventImmutability:

    def test_update_blocked(self, session, posted):
        event = session.query(AuditEvent).order_by(AuditEvent.seq).first()
        event.action = "voucher_reversed"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, posted):
        session.delete(session.query(AuditEvent).order_by(AuditEvent.seq).first())

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_raw_tampering_breaks_chain(self, session, posted):
        """SQL that bypasses the ORM is still caught by the hash chain."""
        assert AuditorService(session).validate_chain()

        session.execute(
            text("UPDATE audit_events SET action = 'allocation_reversed' WHERE seq = 1")
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError):
            AuditorService(session).validate_chain()
