"""
AllocationValidator -- pure rule checks run before any state is persisted.

Responsibility:
    Given a CreateAllocationRequest and frozen snapshots of the referenced
    documents and accounts, report every rule the request breaks.  Runs once
    before the atomic unit opens; the per-document ceiling (rule 5) is
    re-checked by the orchestrator after locking.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Rules, in order:
    1. NO_RECORDS               at least one record
    2. NON_POSITIVE_AMOUNT      every record amount > 0
    3. UNKNOWN_DOCUMENT         each record names exactly one known document
       DUPLICATE_DOCUMENT       ... and no document appears twice
       COUNTERPARTY_MISMATCH    ... owned by the group's counterparty
       COUNTERPARTY_KIND_MISMATCH  CLIENT for RECEIPT, VENDOR for PAYMENT
       DOCUMENT_KIND_MISMATCH   ... INVOICE for RECEIPT, BILL for PAYMENT
       CURRENCY_MISMATCH        ... in the group's currency
    4. UNBALANCED_ALLOCATION    |sum(records) - total| <= tolerance
    5. EXCEEDS_AMOUNT_DUE       no record exceeds its document's amount due
    6. CASH_ACCOUNT_NOT_ASSET   cash account is an active ASSET
       CASH_ACCOUNT_INACTIVE
       SAME_DEBIT_CREDIT_ACCOUNT cash and counter account differ
    7. counter-account class    RECEIPT: INCOME or ASSET(receivable);
                                PAYMENT: EXPENSE or LIABILITY(payable)

Failure modes:
    - Rules 1-6 are collected into ValidationResult.violations.
    - Rule 7 is a deployment problem: it raises CounterAccountNotConfiguredError
      or CounterAccountMisconfiguredError immediately, never a violation.
    - raise_if_invalid() raises CounterpartyMismatchError (InvalidStateError)
      when any COUNTERPARTY_MISMATCH is present, else AllocationValidationError.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from settlement_kernel.domain.currency import CurrencyRegistry
from settlement_kernel.domain.dtos import (
    AccountClass,
    AccountInfo,
    AccountSubtype,
    CounterpartyInfo,
    CreateAllocationRequest,
    Direction,
    DocumentSnapshot,
)
from settlement_kernel.domain.voucher_rules import AccountSlot
from settlement_kernel.exceptions import (
    AllocationValidationError,
    CounterAccountMisconfiguredError,
    CounterAccountNotConfiguredError,
    CounterpartyMismatchError,
    Violation,
)
from settlement_kernel.logging_config import get_logger

logger = get_logger("domain.allocation_validator")

NO_RECORDS = "NO_RECORDS"
NON_POSITIVE_AMOUNT = "NON_POSITIVE_AMOUNT"
UNKNOWN_DOCUMENT = "UNKNOWN_DOCUMENT"
DUPLICATE_DOCUMENT = "DUPLICATE_DOCUMENT"
COUNTERPARTY_MISMATCH = "COUNTERPARTY_MISMATCH"
COUNTERPARTY_KIND_MISMATCH = "COUNTERPARTY_KIND_MISMATCH"
DOCUMENT_KIND_MISMATCH = "DOCUMENT_KIND_MISMATCH"
CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
UNBALANCED_ALLOCATION = "UNBALANCED_ALLOCATION"
EXCEEDS_AMOUNT_DUE = "EXCEEDS_AMOUNT_DUE"
CASH_ACCOUNT_NOT_ASSET = "CASH_ACCOUNT_NOT_ASSET"
CASH_ACCOUNT_INACTIVE = "CASH_ACCOUNT_INACTIVE"
SAME_DEBIT_CREDIT_ACCOUNT = "SAME_DEBIT_CREDIT_ACCOUNT"

COUNTER_ACCOUNT_SLOTS: dict[Direction, tuple[AccountSlot, ...]] = {
    Direction.RECEIPT: (
        AccountSlot(AccountClass.INCOME),
        AccountSlot(AccountClass.ASSET, AccountSubtype.RECEIVABLE),
    ),
    Direction.PAYMENT: (
        AccountSlot(AccountClass.EXPENSE),
        AccountSlot(AccountClass.LIABILITY, AccountSubtype.PAYABLE),
    ),
}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one validation pass."""

    violations: tuple[Violation, ...]
    counterparty_id: UUID | None = None

    @property
    def is_valid(self) -> bool:
        return not self.violations

    def by_rule(self, rule: str) -> tuple[Violation, ...]:
        return tuple(v for v in self.violations if v.rule == rule)

    def raise_if_invalid(self) -> None:
        """
        Raise the typed error for the collected violations.

        Raises:
            CounterpartyMismatchError: any record targets another party's document.
            AllocationValidationError: any other violation.
        """
        if self.is_valid:
            return
        mismatches = self.by_rule(COUNTERPARTY_MISMATCH)
        if mismatches:
            first = mismatches[0]
            raise CounterpartyMismatchError(
                document_id=first.document_id or "",
                expected_counterparty_id=str(self.counterparty_id),
                actual_counterparty_id=first.observed or "",
                violations=self.violations,
            )
        raise AllocationValidationError(self.violations)


class AllocationValidator:
    """
    Stateless validator for allocation requests.

    Contract:
        validate() never touches the database and never mutates its inputs.

    Guarantees:
        - Violations are returned in rule order, then record order.
        - A record whose document is unknown is not checked against rules
          that need the document (kind, currency, ceiling).
    """

    def __init__(self, tolerance: Decimal | None = None):
        self._tolerance_override = tolerance

    def tolerance_for(self, currency: str) -> Decimal:
        if self._tolerance_override is not None:
            return self._tolerance_override
        return CurrencyRegistry.get_rounding_tolerance(currency)

    def check_counter_account(
        self,
        tenant_id: str,
        direction: Direction,
        counter_account: AccountInfo | None,
    ) -> None:
        """
        Rule 7.

        Raises:
            CounterAccountNotConfiguredError: nothing resolved.
            CounterAccountMisconfiguredError: resolved to a disallowed class.
        """
        if counter_account is None:
            raise CounterAccountNotConfiguredError(tenant_id, direction.value)
        slots = COUNTER_ACCOUNT_SLOTS[direction]
        if not any(slot.accepts(counter_account) for slot in slots):
            logger.error(
                "counter_account_misconfigured",
                extra={
                    "direction": direction.value,
                    "account_code": counter_account.code,
                    "account_class": counter_account.account_class.value,
                },
            )
            raise CounterAccountMisconfiguredError(
                direction=direction.value,
                account_id=str(counter_account.id),
                account_class=counter_account.account_class.value,
                allowed=tuple(slot.label() for slot in slots),
            )

    def validate(
        self,
        request: CreateAllocationRequest,
        documents: Mapping[UUID, DocumentSnapshot],
        cash_account: AccountInfo,
        counter_account: AccountInfo | None,
        counterparty: CounterpartyInfo | None = None,
    ) -> ValidationResult:
        """
        Check a request against all rules.

        Preconditions:
            ``documents`` holds a snapshot for every document id the caller
            could resolve; missing ids are reported as UNKNOWN_DOCUMENT.

        Postconditions:
            Returns a ValidationResult; the caller decides whether to raise.

        Raises:
            FatalConfigurationError subclasses for rule 7.
        """
        self.check_counter_account(request.tenant_id, request.direction, counter_account)

        violations: list[Violation] = []
        lines = request.lines

        # Rule 1
        if not lines:
            violations.append(Violation(NO_RECORDS, "Allocation has no records"))

        # Rule 2
        for i, line in enumerate(lines):
            if line.amount is None or line.amount <= 0:
                violations.append(Violation(
                    NON_POSITIVE_AMOUNT,
                    f"Record {i} amount must be positive, got {line.amount}",
                    record_index=i,
                    document_id=str(line.document_id),
                ))

        # Rule 3
        if counterparty is not None and counterparty.kind != request.direction.counterparty_kind:
            violations.append(Violation(
                COUNTERPARTY_KIND_MISMATCH,
                f"{request.direction.value} requires a "
                f"{request.direction.counterparty_kind.value}, {counterparty.code} is a "
                f"{counterparty.kind.value}",
            ))
        seen: set[UUID] = set()
        expected_kind = request.direction.document_kind
        for i, line in enumerate(lines):
            doc_id = line.document_id
            doc = documents.get(doc_id) if doc_id is not None else None
            if doc is None:
                violations.append(Violation(
                    UNKNOWN_DOCUMENT,
                    f"Record {i} references unknown document {doc_id}",
                    record_index=i,
                    document_id=str(doc_id) if doc_id is not None else None,
                ))
                continue
            if doc_id in seen:
                violations.append(Violation(
                    DUPLICATE_DOCUMENT,
                    f"Document {doc.number} appears in more than one record",
                    record_index=i,
                    document_id=str(doc_id),
                ))
            seen.add(doc_id)
            if doc.counterparty_id != request.counterparty_id:
                violations.append(Violation(
                    COUNTERPARTY_MISMATCH,
                    f"Document {doc.number} belongs to counterparty {doc.counterparty_id}",
                    record_index=i,
                    document_id=str(doc_id),
                    observed=str(doc.counterparty_id),
                ))
            if doc.kind != expected_kind:
                violations.append(Violation(
                    DOCUMENT_KIND_MISMATCH,
                    f"{request.direction.value} cannot settle {doc.kind.value} {doc.number}",
                    record_index=i,
                    document_id=str(doc_id),
                ))
            if doc.currency != request.currency:
                violations.append(Violation(
                    CURRENCY_MISMATCH,
                    f"Document {doc.number} is in {doc.currency}, payment is in {request.currency}",
                    record_index=i,
                    document_id=str(doc_id),
                ))

        # Rule 4
        if lines:
            allocated = sum((line.amount for line in lines if line.amount is not None), Decimal("0"))
            tolerance = self.tolerance_for(request.currency)
            if abs(allocated - request.total_amount) > tolerance:
                violations.append(Violation(
                    UNBALANCED_ALLOCATION,
                    f"Records sum to {allocated}, payment total is {request.total_amount} "
                    f"(tolerance {tolerance})",
                ))

        # Rule 5
        for i, line in enumerate(lines):
            doc = documents.get(line.document_id) if line.document_id is not None else None
            if doc is None or line.amount is None or line.amount <= 0:
                continue
            if line.amount > doc.amount_due:
                violations.append(Violation(
                    EXCEEDS_AMOUNT_DUE,
                    f"Record {i} amount {line.amount} exceeds amount due "
                    f"{doc.amount_due} on {doc.number}",
                    record_index=i,
                    document_id=str(doc.id),
                ))

        # Rule 6
        if cash_account.account_class != AccountClass.ASSET:
            violations.append(Violation(
                CASH_ACCOUNT_NOT_ASSET,
                f"Cash account {cash_account.code} is {cash_account.account_class.value}, "
                "must be ASSET",
            ))
        if not cash_account.is_active:
            violations.append(Violation(
                CASH_ACCOUNT_INACTIVE,
                f"Cash account {cash_account.code} is inactive",
            ))
        if counter_account is not None and cash_account.id == counter_account.id:
            violations.append(Violation(
                SAME_DEBIT_CREDIT_ACCOUNT,
                f"Cash account {cash_account.code} is also the counter-account",
            ))

        result = ValidationResult(
            violations=tuple(violations),
            counterparty_id=request.counterparty_id,
        )
        if not result.is_valid:
            logger.info(
                "allocation_validation_failed",
                extra={
                    "rules": [v.rule for v in result.violations],
                    "violation_count": len(result.violations),
                },
            )
        return result
