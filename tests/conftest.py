"""
Pytest fixtures for the settlement test suite.

Provides:
- A fresh database per test (in-memory SQLite by default)
- A seeded chart of accounts, counterparties and documents for tenant "acme"
- Structured log capture

Environment Variables:
- DATABASE_URL: Database connection URL.  Defaults to in-memory SQLite.
  Concurrency tests only run when this points at PostgreSQL.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from settlement_config import get_tenant_config
from settlement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from settlement_kernel.domain.clock import DeterministicClock
from settlement_kernel.domain.dtos import (
    AccountClass,
    AccountSubtype,
    CounterpartyKind,
    DocumentKind,
)
from settlement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from settlement_kernel.models.account import LedgerAccount
from settlement_kernel.models.party import Counterparty
from settlement_kernel.services.document_service import DocumentService
from settlement_services.allocation_service import AllocationService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

TEST_TENANT = "acme"

DEFAULT_DATABASE_URL = "sqlite://"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "postgres: test requires a PostgreSQL DATABASE_URL"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture settlement_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, allocation_service):
            allocation_service.create_allocation(...)
            logs = captured_logs()
            assert any(r["message"] == "allocation_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("settlement_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def session():
    """A session bound to freshly created tables, dropped after the test."""
    init_engine_from_url(get_database_url())
    create_tables()
    db = get_session()
    yield db
    db.rollback()
    db.close()
    drop_tables()
    reset_engine()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


# =============================================================================
# Seed data
# =============================================================================


_CHART = (
    ("1000", "Cash at Bank", AccountClass.ASSET, AccountSubtype.BANK),
    ("1010", "Petty Cash", AccountClass.ASSET, AccountSubtype.CASH),
    ("1200", "Accounts Receivable", AccountClass.ASSET, AccountSubtype.RECEIVABLE),
    ("2000", "Accounts Payable", AccountClass.LIABILITY, AccountSubtype.PAYABLE),
    ("3000", "Retained Earnings", AccountClass.EQUITY, None),
    ("4000", "Sales Revenue", AccountClass.INCOME, None),
    ("5000", "Operating Expenses", AccountClass.EXPENSE, None),
)


@pytest.fixture
def chart(session):
    """Chart of accounts for the test tenant, keyed by account code."""
    accounts = {}
    for code, name, account_class, subtype in _CHART:
        account = LedgerAccount(
            tenant_id=TEST_TENANT,
            code=code,
            name=name,
            account_class=account_class.value,
            subtype=subtype.value if subtype else None,
            currency="USD",
            is_active=True,
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(account)
        accounts[code] = account
    session.commit()
    return accounts


@pytest.fixture
def cash_account(chart):
    return chart["1000"]


def _counterparty(session, code, name, kind):
    party = Counterparty(
        tenant_id=TEST_TENANT,
        code=code,
        name=name,
        kind=kind.value,
        is_active=True,
        created_by_id=TEST_ACTOR_ID,
    )
    session.add(party)
    session.commit()
    return party


@pytest.fixture
def client_party(session):
    return _counterparty(session, "C-001", "Kofi Mensah Ltd", CounterpartyKind.CLIENT)


@pytest.fixture
def other_client(session):
    return _counterparty(session, "C-002", "Adjoa Stores", CounterpartyKind.CLIENT)


@pytest.fixture
def vendor_party(session):
    return _counterparty(session, "V-001", "Tema Supplies", CounterpartyKind.VENDOR)


@pytest.fixture
def document_service(session, deterministic_clock):
    return DocumentService(session, deterministic_clock)


@pytest.fixture
def make_document(session, document_service):
    """
    Factory for committed documents.

    Usage::

        inv = make_document(DocumentKind.INVOICE, "INV-9", client.id,
                            Decimal("100.00"), date(2024, 2, 1))
    """

    def _make(kind, number, counterparty_id, total, due_date, currency="USD"):
        document = document_service.create_document(
            tenant_id=TEST_TENANT,
            kind=kind,
            number=number,
            counterparty_id=counterparty_id,
            issue_date=date(2024, 1, 1),
            due_date=due_date,
            total=total,
            currency=currency,
            actor_id=TEST_ACTOR_ID,
        )
        session.commit()
        return document

    return _make


@pytest.fixture
def invoices(make_document, client_party):
    """INV-1 300.00, INV-2 200.00, INV-3 150.00, due in that order."""
    return [
        make_document(DocumentKind.INVOICE, "INV-1", client_party.id, Decimal("300.00"), date(2024, 1, 10)),
        make_document(DocumentKind.INVOICE, "INV-2", client_party.id, Decimal("200.00"), date(2024, 1, 20)),
        make_document(DocumentKind.INVOICE, "INV-3", client_party.id, Decimal("150.00"), date(2024, 1, 30)),
    ]


@pytest.fixture
def bills(make_document, vendor_party):
    """BILL-1 400.00 and BILL-2 250.00 owed to the vendor."""
    return [
        make_document(DocumentKind.BILL, "BILL-1", vendor_party.id, Decimal("400.00"), date(2024, 1, 15)),
        make_document(DocumentKind.BILL, "BILL-2", vendor_party.id, Decimal("250.00"), date(2024, 2, 15)),
    ]


@pytest.fixture
def tenant_config():
    return get_tenant_config(TEST_TENANT)


@pytest.fixture
def allocation_service(session, chart, tenant_config, deterministic_clock):
    """AllocationService for the seeded tenant."""
    return AllocationService(
        session,
        TEST_TENANT,
        clock=deterministic_clock,
        config=tenant_config,
    )
