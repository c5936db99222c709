"""
Tests for AllocationOrchestrator.

Covers:
- The INV-1/2/3 FIFO receipt end to end
- Vendor payments
- All-or-nothing create (mid-flight failure leaves nothing behind)
- Reverse exactly once
- Error mapping: validation, state, concurrency, configuration
- Audit trail and post-commit sinks
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from settlement_config.schema import TenantSettlementConfig
from settlement_kernel.domain.allocation_validator import UNBALANCED_ALLOCATION
from settlement_kernel.domain.dtos import (
    AllocationLineInput,
    AllocationOutcomeStatus,
    CreateAllocationRequest,
    Direction,
    DocumentStatus,
    GroupStatus,
    Strategy,
    VoucherStatus,
    VoucherTo,
    VoucherType,
)
from settlement_kernel.exceptions import (
    AccountNotFoundError,
    AllocationAlreadyReversedError,
    AllocationGroupNotFoundError,
    AllocationValidationError,
    AmountDueChangedError,
    CounterAccountMisconfiguredError,
    CounterAccountNotConfiguredError,
    CounterpartyMismatchError,
    CounterpartyNotFoundError,
    OptimisticLockError,
    OwnedByAllocationError,
    TenantConfigNotFoundError,
)
from settlement_kernel.models.allocation import AllocationGroup, AllocationRecord
from settlement_kernel.models.audit_event import AuditEvent
from settlement_kernel.models.document import Document, DocumentSettlement
from settlement_kernel.models.voucher import Voucher
from settlement_kernel.selectors.account_selector import AccountSelector
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.document_service import DocumentService
from settlement_kernel.services.voucher_poster import VoucherPoster
from settlement_services.allocation_orchestrator import AllocationOrchestrator
from tests.conftest import TEST_ACTOR_ID, TEST_TENANT


def _count(session, model):
    return session.execute(select(func.count()).select_from(model)).scalar_one()


def _request(cash_account, counterparty, lines, total, direction=Direction.RECEIPT, tenant_id=TEST_TENANT):
    return CreateAllocationRequest(
        tenant_id=tenant_id,
        direction=direction,
        strategy=Strategy.MANUAL,
        total_amount=Decimal(total),
        currency="USD",
        payment_date=date(2024, 2, 1),
        cash_account_id=cash_account.id,
        counterparty_id=counterparty.id,
        lines=tuple(AllocationLineInput(doc.id, Decimal(amount)) for doc, amount in lines),
        actor_id=TEST_ACTOR_ID,
        reference="BANK-REF-1",
    )


@pytest.fixture
def orchestrator(session, chart, tenant_config, deterministic_clock):
    return AllocationOrchestrator(session, tenant_config, deterministic_clock)


class TestCreateReceipt:

    @pytest.fixture(autouse=True)
    def _setup(self, session, orchestrator, cash_account, client_party, invoices, chart):
        self.session = session
        self.orchestrator = orchestrator
        self.cash = cash_account
        self.client = client_party
        self.inv1, self.inv2, self.inv3 = invoices
        self.chart = chart

    def _create_450(self):
        return self.orchestrator.create(
            _request(self.cash, self.client, [(self.inv1, "300.00"), (self.inv2, "150.00")], "450.00"),
        )

    def test_450_settles_inv1_and_part_of_inv2(self):
        """INV-1 settled, INV-2 has 50.00 left, INV-3 untouched."""
        outcome = self._create_450()

        assert outcome.status == AllocationOutcomeStatus.POSTED
        assert outcome.is_success
        assert outcome.group.status == GroupStatus.POSTED
        assert outcome.group.allocated_amount == Decimal("450.00")
        assert [(r.document_id, r.amount) for r in outcome.group.records] == [
            (self.inv1.id, Decimal("300.00")),
            (self.inv2.id, Decimal("150.00")),
        ]

        inv1 = self.session.get(Document, self.inv1.id)
        inv2 = self.session.get(Document, self.inv2.id)
        inv3 = self.session.get(Document, self.inv3.id)
        assert inv1.status == DocumentStatus.SETTLED.value
        assert inv1.amount_due == Decimal("0")
        assert inv2.status == DocumentStatus.PARTIALLY_SETTLED.value
        assert inv2.amount_due == Decimal("50.00")
        assert inv3.status == DocumentStatus.OPEN.value
        assert inv3.amount_due == Decimal("150.00")

    def test_one_receipt_voucher_for_the_total(self):
        """Debit cash, credit the receivable counter-account, once."""
        outcome = self._create_450()
        voucher = outcome.voucher

        assert _count(self.session, Voucher) == 1
        assert voucher.voucher_type == VoucherType.RECEIPT
        assert voucher.voucher_to == VoucherTo.CLIENT
        assert voucher.status == VoucherStatus.POSTED
        assert voucher.amount == Decimal("450.00")
        assert voucher.debit_account_id == self.cash.id
        assert voucher.credit_account_id == self.chart["1200"].id
        assert voucher.beneficiary_name == self.client.name
        assert outcome.group.voucher_id == voucher.id

    def test_each_record_has_one_settlement(self):
        outcome = self._create_450()

        for record in outcome.group.records:
            settlement = self.session.get(DocumentSettlement, record.settlement_id)
            assert settlement.allocation_record_id == record.id
            assert settlement.amount == record.amount
            assert settlement.reference == "BANK-REF-1"

    def test_account_balances(self):
        self._create_450()
        accounts = AccountSelector(self.session)

        assert accounts.balance(self.cash.id).balance == Decimal("450.00")
        assert accounts.balance(self.chart["1200"].id).credit_total == Decimal("450.00")

    def test_commit_is_logged(self, captured_logs):
        outcome = self._create_450()

        committed = [r for r in captured_logs() if r["message"] == "allocation_committed"]
        assert len(committed) == 1
        assert committed[0]["group_id"] == str(outcome.group.id)
        assert committed[0]["tenant_id"] == TEST_TENANT

    def test_audit_chain_covers_every_posting(self):
        outcome = self._create_450()
        auditor = AuditorService(self.session)

        group_trace = auditor.get_trace("AllocationGroup", outcome.group.id)
        voucher_trace = auditor.get_trace("Voucher", outcome.voucher.id)

        assert [e.action for e in group_trace] == ["allocation_posted"]
        assert group_trace[0].payload["record_count"] == 2
        assert [e.action for e in voucher_trace] == ["voucher_posted"]
        assert _count(self.session, AuditEvent) == 4
        assert auditor.validate_chain()


class TestCreatePayment:

    def test_payment_to_vendor(self, session, orchestrator, cash_account, vendor_party, bills, chart):
        """PAYMENT debits the payable counter-account and credits cash."""
        bill1, bill2 = bills
        outcome = orchestrator.create(
            _request(
                cash_account, vendor_party,
                [(bill1, "400.00"), (bill2, "100.00")], "500.00",
                direction=Direction.PAYMENT,
            ),
        )

        assert outcome.voucher.voucher_type == VoucherType.PAYMENT
        assert outcome.voucher.voucher_to == VoucherTo.VENDOR
        assert outcome.voucher.debit_account_id == chart["2000"].id
        assert outcome.voucher.credit_account_id == cash_account.id
        assert outcome.voucher.voucher_number == "PAY-000001"
        assert session.get(Document, bill1.id).status == DocumentStatus.SETTLED.value
        assert session.get(Document, bill2.id).amount_due == Decimal("150.00")


class TestAtomicity:

    @pytest.fixture(autouse=True)
    def _setup(self, session, orchestrator, cash_account, client_party, invoices):
        self.session = session
        self.orchestrator = orchestrator
        self.cash = cash_account
        self.client = client_party
        self.invoices = invoices

    def _request_450(self):
        inv1, inv2, _ = self.invoices
        return _request(self.cash, self.client, [(inv1, "300.00"), (inv2, "150.00")], "450.00")

    def _assert_nothing_persisted(self):
        assert _count(self.session, AllocationGroup) == 0
        assert _count(self.session, AllocationRecord) == 0
        assert _count(self.session, Voucher) == 0
        assert _count(self.session, DocumentSettlement) == 0
        assert _count(self.session, AuditEvent) == 0
        for doc in self.invoices:
            refreshed = self.session.get(Document, doc.id)
            assert refreshed.amount_settled == Decimal("0")
            assert refreshed.status == DocumentStatus.OPEN.value

    def test_failure_after_voucher_and_first_settlement_rolls_back(self, monkeypatch):
        """The voucher and the first settlement vanish with the failure."""
        documents = self.orchestrator._documents
        real_record = documents.record_settlement
        calls = []

        def failing_record(**kwargs):
            calls.append(kwargs["document_id"])
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return real_record(**kwargs)

        monkeypatch.setattr(documents, "record_settlement", failing_record)

        with pytest.raises(RuntimeError, match="disk full"):
            self.orchestrator.create(self._request_450())

        assert len(calls) == 2
        self._assert_nothing_persisted()

    def test_voucher_numbers_roll_back_too(self, monkeypatch):
        """A failed attempt does not consume a voucher number."""
        poster = self.orchestrator._poster
        real_post = poster.post

        def failing_post(voucher_id, actor_id):
            real_post(voucher_id, actor_id)
            raise RuntimeError("crash after posting")

        monkeypatch.setattr(poster, "post", failing_post)
        with pytest.raises(RuntimeError):
            self.orchestrator.create(self._request_450())
        monkeypatch.undo()

        outcome = self.orchestrator.create(self._request_450())

        assert outcome.voucher.voucher_number == "RCT-000001"

    def test_validation_failure_persists_nothing(self):
        """Overpayment beyond the records is rejected before any write."""
        inv1, _, _ = self.invoices
        request = _request(self.cash, self.client, [(inv1, "300.00")], "450.00")

        with pytest.raises(AllocationValidationError) as exc_info:
            self.orchestrator.create(request)

        assert UNBALANCED_ALLOCATION in exc_info.value.rules
        self._assert_nothing_persisted()

    def test_amount_due_changed_under_lock(self, monkeypatch):
        """A settlement landing between validation and locking is caught."""
        documents = self.orchestrator._documents
        real_lock = documents.lock_documents
        inv1 = self.invoices[0]

        def lock_after_concurrent_settlement(document_ids):
            DocumentService(self.session).record_settlement(
                inv1.id, Decimal("200.00"), date(2024, 1, 31), TEST_ACTOR_ID,
            )
            return real_lock(document_ids)

        monkeypatch.setattr(documents, "lock_documents", lock_after_concurrent_settlement)

        with pytest.raises(AmountDueChangedError) as exc_info:
            self.orchestrator.create(self._request_450())

        assert exc_info.value.retryable
        assert exc_info.value.amount_due == Decimal("100.00")
        self._assert_nothing_persisted()

    def test_stale_version_maps_to_optimistic_lock_error(self, monkeypatch):
        def stale(request):
            raise StaleDataError("UPDATE statement on table 'documents' expected to update 1 row(s)")

        monkeypatch.setattr(self.orchestrator, "_do_create", stale)

        with pytest.raises(OptimisticLockError) as exc_info:
            self.orchestrator.create(self._request_450())

        assert exc_info.value.retryable
        assert exc_info.value.entity_type == "Document"

    def test_failure_is_logged(self, monkeypatch, captured_logs):
        def boom(group, actor_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(self.orchestrator._poster, "post_for_group", boom)

        with pytest.raises(RuntimeError):
            self.orchestrator.create(self._request_450())

        failed = [r for r in captured_logs() if r["message"] == "allocation_create_failed"]
        assert failed and failed[0]["exc_type"] == "RuntimeError"


class TestCreateRejections:

    @pytest.fixture(autouse=True)
    def _setup(self, session, orchestrator, cash_account, client_party, invoices, chart):
        self.session = session
        self.orchestrator = orchestrator
        self.cash = cash_account
        self.client = client_party
        self.invoices = invoices
        self.chart = chart

    def test_other_partys_invoice(self, make_document, other_client):
        """Records may only target the group's own counterparty."""
        foreign = make_document("INVOICE", "INV-X", other_client.id, Decimal("80.00"), date(2024, 1, 5))
        request = _request(
            self.cash, self.client, [(self.invoices[0], "100.00"), (foreign, "80.00")], "180.00",
        )

        with pytest.raises(CounterpartyMismatchError) as exc_info:
            self.orchestrator.create(request)

        assert exc_info.value.document_id == str(foreign.id)
        assert _count(self.session, AllocationGroup) == 0

    def test_unknown_counterparty(self):
        ghost = SimpleNamespace(id=uuid4())

        with pytest.raises(CounterpartyNotFoundError):
            self.orchestrator.create(_request(self.cash, ghost, [(self.invoices[0], "10.00")], "10.00"))

    def test_vendor_cannot_make_receipt(self, vendor_party, bills):
        with pytest.raises(AllocationValidationError):
            self.orchestrator.create(_request(self.cash, vendor_party, [(bills[0], "10.00")], "10.00"))

    def test_cash_account_must_be_asset(self):
        request = _request(self.chart["5000"], self.client, [(self.invoices[0], "10.00")], "10.00")

        with pytest.raises(AllocationValidationError):
            self.orchestrator.create(request)

    def test_other_tenant_rejected(self):
        request = _request(self.cash, self.client, [(self.invoices[0], "10.00")], "10.00", tenant_id="globex")

        with pytest.raises(TenantConfigNotFoundError):
            self.orchestrator.create(request)


class TestCounterAccountResolution:

    @pytest.fixture(autouse=True)
    def _setup(self, session, chart, cash_account, client_party, invoices, deterministic_clock):
        self.session = session
        self.chart = chart
        self.clock = deterministic_clock
        self.request = _request(cash_account, client_party, [(invoices[0], "100.00")], "100.00")

    def _orchestrator(self, **codes):
        config = TenantSettlementConfig(tenant_id=TEST_TENANT, base_currency="USD", **codes)
        return AllocationOrchestrator(self.session, config, self.clock)

    def test_fallback_used_when_primary_missing(self):
        """A missing receivable code falls back to the income account."""
        orchestrator = self._orchestrator(receivable_account_code="1299", income_account_code="4000")

        outcome = orchestrator.create(self.request)

        assert outcome.voucher.credit_account_id == self.chart["4000"].id

    def test_no_code_configured(self):
        orchestrator = self._orchestrator(payable_account_code="2000")

        with pytest.raises(CounterAccountNotConfiguredError):
            orchestrator.create(self.request)

    def test_code_not_in_chart(self):
        orchestrator = self._orchestrator(receivable_account_code="1299")

        with pytest.raises(CounterAccountNotConfiguredError) as exc_info:
            orchestrator.create(self.request)

        assert exc_info.value.account_code == "1299"

    def test_wrong_class(self):
        """Equity cannot receive a receipt."""
        orchestrator = self._orchestrator(receivable_account_code="3000")

        with pytest.raises(CounterAccountMisconfiguredError):
            orchestrator.create(self.request)


class TestReverse:

    @pytest.fixture(autouse=True)
    def _setup(self, session, orchestrator, cash_account, client_party, invoices, chart, deterministic_clock):
        self.session = session
        self.orchestrator = orchestrator
        self.cash = cash_account
        self.chart = chart
        self.clock = deterministic_clock
        self.client = client_party
        self.inv1, self.inv2, self.inv3 = invoices
        self.created = orchestrator.create(
            _request(cash_account, client_party, [(self.inv1, "300.00"), (self.inv2, "150.00")], "450.00"),
        )

    def test_reverse_restores_documents(self):
        outcome = self.orchestrator.reverse(self.created.group.id, "payment bounced", TEST_ACTOR_ID)

        assert outcome.status == AllocationOutcomeStatus.REVERSED
        assert outcome.group.status == GroupStatus.REVERSED
        assert outcome.group.reversal_reason == "payment bounced"
        assert outcome.group.reversed_at == self.clock.now()
        for doc, total in ((self.inv1, "300.00"), (self.inv2, "200.00")):
            refreshed = self.session.get(Document, doc.id)
            assert refreshed.status == DocumentStatus.OPEN.value
            assert refreshed.amount_due == Decimal(total)

    def test_reverse_keeps_history(self):
        """Records, settlements and voucher stay, marked reversed or voided."""
        outcome = self.orchestrator.reverse(self.created.group.id, "bounced", TEST_ACTOR_ID)

        assert len(outcome.group.records) == 2
        assert outcome.voucher.status == VoucherStatus.REVERSED
        assert outcome.voucher.amount == Decimal("450.00")
        settlements = self.session.execute(select(DocumentSettlement)).scalars().all()
        assert len(settlements) == 2
        assert all(s.voided_at is not None for s in settlements)

    def test_reverse_removes_balance_effect(self):
        self.orchestrator.reverse(self.created.group.id, "bounced", TEST_ACTOR_ID)

        assert AccountSelector(self.session).balance(self.cash.id).balance == Decimal("0")

    def _reversal_state(self):
        self.session.expire_all()
        voucher = self.session.get(Voucher, self.created.voucher.id)
        settlements = self.session.execute(
            select(DocumentSettlement).order_by(DocumentSettlement.id)
        ).scalars().all()
        return {
            "audit_events": _count(self.session, AuditEvent),
            "voucher": (voucher.status, voucher.reversed_at, voucher.reversal_reason),
            "settled": [
                self.session.get(Document, doc.id).amount_settled
                for doc in (self.inv1, self.inv2, self.inv3)
            ],
            "voids": [(s.voided_at, s.void_reason) for s in settlements],
            "cash_balance": AccountSelector(self.session).balance(self.cash.id).balance,
        }

    def test_reverse_twice(self):
        self.orchestrator.reverse(self.created.group.id, "bounced", TEST_ACTOR_ID)
        before = self._reversal_state()

        with pytest.raises(AllocationAlreadyReversedError):
            self.orchestrator.reverse(self.created.group.id, "again", TEST_ACTOR_ID)

        group = self.session.get(AllocationGroup, self.created.group.id)
        assert group.reversal_reason == "bounced"
        after = self._reversal_state()
        assert after == before
        assert after["voucher"][0] == VoucherStatus.REVERSED.value
        assert after["settled"] == [Decimal("0"), Decimal("0"), Decimal("0")]

    def test_unknown_group(self):
        with pytest.raises(AllocationGroupNotFoundError):
            self.orchestrator.reverse(uuid4(), "x", TEST_ACTOR_ID)

    def test_documents_reusable_after_reversal(self):
        """Reversed amounts can be allocated again."""
        self.orchestrator.reverse(self.created.group.id, "bounced", TEST_ACTOR_ID)

        again = self.orchestrator.create(
            _request(self.cash, self.client, [(self.inv1, "300.00")], "300.00"),
        )

        assert again.voucher.voucher_number == "RCT-000002"

    def test_reversal_is_audited_and_chain_valid(self):
        self.orchestrator.reverse(self.created.group.id, "bounced", TEST_ACTOR_ID)
        auditor = AuditorService(self.session)

        trace = auditor.get_trace("AllocationGroup", self.created.group.id)

        assert [e.action for e in trace] == ["allocation_posted", "allocation_reversed"]
        assert trace[1].payload["voided_settlements"] == 2
        assert auditor.validate_chain()

    def test_voucher_cannot_be_reversed_directly(self):
        poster = VoucherPoster(self.session, self.clock)

        with pytest.raises(OwnedByAllocationError):
            poster.reverse(self.created.voucher.id, "shortcut", TEST_ACTOR_ID)

    def test_settlement_cannot_be_voided_directly(self):
        record = self.created.group.records[0]

        with pytest.raises(OwnedByAllocationError):
            DocumentService(self.session, self.clock).void_settlement(
                record.settlement_id, "shortcut", TEST_ACTOR_ID,
            )


class TestSinks:

    @pytest.fixture(autouse=True)
    def _setup(self, orchestrator, cash_account, client_party, invoices):
        self.orchestrator = orchestrator
        self.client = client_party
        self.request = _request(cash_account, client_party, [(invoices[0], "300.00")], "300.00")

    def test_sink_receives_committed_outcome(self):
        received = []
        self.orchestrator.register_sink(received.append)

        outcome = self.orchestrator.create(self.request)

        assert received == [outcome]

    def test_sink_not_called_on_failure(self):
        received = []
        self.orchestrator.register_sink(received.append)
        bad = _request(SimpleNamespace(id=uuid4()), self.client, [], "10.00")

        with pytest.raises(AccountNotFoundError):
            self.orchestrator.create(bad)

        assert received == []

    def test_failing_sink_does_not_undo_commit(self, captured_logs):
        def broken_sink(outcome):
            raise RuntimeError("webhook down")

        seen = []
        self.orchestrator.register_sink(broken_sink)
        self.orchestrator.register_sink(seen.append)

        outcome = self.orchestrator.create(self.request)

        assert outcome.group.status == GroupStatus.POSTED
        assert seen == [outcome]
        assert any(r["message"] == "allocation_sink_failed" for r in captured_logs())
