"""
Typed Exception Hierarchy for the Settlement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the allocation engine must be able to tell a user-correctable
input problem from a missing record, an illegal state transition, a lost
race, or a broken deployment.  Parsing message strings for that is fragile.

Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example:
    try:
        service.create_allocation(...)
    except AllocationValidationError as e:
        return {"error": e.code, "violations": [v.as_dict() for v in e.violations]}
    except ConcurrencyError:
        retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from SettlementKernelError:

    SettlementKernelError (base)
    |
    +-- ValidationError                     (user-correctable input)
    |   +-- AllocationValidationError
    |   +-- UnknownVoucherTypeError
    |   +-- UnknownStrategyError
    |   +-- UnknownDirectionError
    |   +-- VoucherAccountClassError
    |   +-- SameDebitCreditAccountError
    |   +-- SettlementExceedsAmountDueError
    |   +-- DocumentKindMismatchError
    |   +-- InvalidAmountError
    |
    +-- NotFoundError
    |   +-- AllocationGroupNotFoundError
    |   +-- DocumentNotFoundError
    |   +-- AccountNotFoundError
    |   +-- CounterpartyNotFoundError
    |   +-- VoucherNotFoundError
    |   +-- SettlementNotFoundError
    |
    +-- InvalidStateError
    |   +-- AllocationAlreadyReversedError
    |   +-- CounterpartyMismatchError
    |   +-- InvalidVoucherTransitionError
    |   |   +-- VoucherAlreadyReversedError
    |   +-- OwnedByAllocationError
    |   +-- SettlementAlreadyVoidedError
    |
    +-- ConcurrencyError                    (retryable)
    |   +-- AmountDueChangedError
    |   +-- OptimisticLockError
    |
    +-- FatalConfigurationError             (deployment problem)
    |   +-- CounterAccountNotConfiguredError
    |   +-- CounterAccountMisconfiguredError
    |   +-- TenantConfigNotFoundError
    |
    +-- ImmutabilityViolationError
    |
    +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Validation      | ALLOCATION_VALIDATION_FAILED  | One or more allocation rules violated
                | UNKNOWN_VOUCHER_TYPE          | Type is not PAYMENT/RECEIPT/CONTRA/JOURNAL
                | UNKNOWN_STRATEGY              | Strategy is not FIFO/PRO_RATA/MANUAL
                | UNKNOWN_DIRECTION             | Direction is not RECEIPT/PAYMENT
                | VOUCHER_ACCOUNT_CLASS         | Account class not allowed for type
                | SAME_DEBIT_CREDIT_ACCOUNT     | Debit and credit account are equal
                | SETTLEMENT_EXCEEDS_AMOUNT_DUE | Settlement larger than amount due
                | DOCUMENT_KIND_MISMATCH        | Invoice/bill vs client/vendor mismatch
                | INVALID_AMOUNT                | Zero or negative amount
----------------|-------------------------------|---------------------------------------
Not found       | ALLOCATION_GROUP_NOT_FOUND    | Group id does not exist
                | DOCUMENT_NOT_FOUND            | Document id does not exist
                | ACCOUNT_NOT_FOUND             | Account id does not exist
                | COUNTERPARTY_NOT_FOUND        | Client/vendor id does not exist
                | VOUCHER_NOT_FOUND             | Voucher id does not exist
                | SETTLEMENT_NOT_FOUND          | Settlement id does not exist
----------------|-------------------------------|---------------------------------------
State           | ALLOCATION_ALREADY_REVERSED   | Reverse called twice
                | COUNTERPARTY_MISMATCH         | Document belongs to someone else
                | INVALID_VOUCHER_TRANSITION    | Status change outside the state machine
                | VOUCHER_ALREADY_REVERSED      | Voucher reversed twice
                | SETTLEMENT_ALREADY_VOIDED     | Settlement voided twice
                | OWNED_BY_ALLOCATION           | Direct reverse/void of allocation-owned row
----------------|-------------------------------|---------------------------------------
Concurrency     | AMOUNT_DUE_CHANGED            | Re-check after locking failed
                | OPTIMISTIC_LOCK_CONFLICT      | Version column mismatch
----------------|-------------------------------|---------------------------------------
Configuration   | COUNTER_ACCOUNT_NOT_CONFIGURED| Tenant has no counter-account
                | COUNTER_ACCOUNT_MISCONFIGURED | Counter-account class wrong for direction
                | TENANT_CONFIG_NOT_FOUND       | No settlement config for tenant
----------------|-------------------------------|---------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | Modifying a posted/append-only record
                | AUDIT_CHAIN_BROKEN            | Audit hash chain does not verify

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConcurrencyError carries ``retryable = True``.  Callers may retry the whole
   operation; nothing was persisted.

2. FatalConfigurationError is never the caller's fault and must not be
   presented as a validation problem.

3. Every error propagates synchronously.  Services roll back before
   re-raising; nothing is swallowed.
===============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any


class SettlementKernelError(Exception):
    """
    Base exception for all settlement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SETTLEMENT_KERNEL_ERROR"
    retryable: bool = False


# Validation errors


class ValidationError(SettlementKernelError):
    """Base exception for user-correctable input errors."""

    code: str = "VALIDATION_ERROR"


@dataclass(frozen=True)
class Violation:
    """A single failed allocation rule."""

    rule: str
    message: str
    record_index: int | None = None
    document_id: str | None = None
    observed: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule,
            "message": self.message,
            "record_index": self.record_index,
            "document_id": self.document_id,
            "observed": self.observed,
        }


class AllocationValidationError(ValidationError):
    """
    One or more allocation rules failed.

    Carries every violation found, in rule order.  The message names the
    first one.
    """

    code: str = "ALLOCATION_VALIDATION_FAILED"

    def __init__(self, violations: tuple[Violation, ...] | list[Violation]):
        self.violations = tuple(violations)
        first = self.violations[0].message if self.violations else "no violations"
        super().__init__(
            f"Allocation validation failed ({len(self.violations)} violation(s)): {first}"
        )

    @property
    def rules(self) -> tuple[str, ...]:
        return tuple(v.rule for v in self.violations)


class UnknownVoucherTypeError(ValidationError):
    """Voucher type string is not recognised."""

    code: str = "UNKNOWN_VOUCHER_TYPE"

    def __init__(self, voucher_type: str):
        self.voucher_type = voucher_type
        super().__init__(f"Unknown voucher type: {voucher_type!r}")


class UnknownStrategyError(ValidationError):
    """Allocation strategy is not recognised."""

    code: str = "UNKNOWN_STRATEGY"

    def __init__(self, strategy: str):
        self.strategy = strategy
        super().__init__(f"Unknown allocation strategy: {strategy!r}")


class UnknownDirectionError(ValidationError):
    """Allocation direction is not recognised."""

    code: str = "UNKNOWN_DIRECTION"

    def __init__(self, direction: str):
        self.direction = direction
        super().__init__(f"Unknown allocation direction: {direction!r}")


class VoucherAccountClassError(ValidationError):
    """An account's class is not permitted on this side of this voucher type."""

    code: str = "VOUCHER_ACCOUNT_CLASS"

    def __init__(
        self,
        voucher_type: str,
        side: str,
        account_id: str,
        account_class: str,
        allowed: tuple[str, ...],
    ):
        self.voucher_type = voucher_type
        self.side = side
        self.account_id = account_id
        self.account_class = account_class
        self.allowed = allowed
        super().__init__(
            f"{voucher_type} voucher {side} account {account_id} is {account_class}; "
            f"allowed: {', '.join(allowed)}"
        )


class SameDebitCreditAccountError(ValidationError):
    """Debit and credit sides reference the same account."""

    code: str = "SAME_DEBIT_CREDIT_ACCOUNT"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(
            f"Debit and credit account must differ, both are {account_id}"
        )


class SettlementExceedsAmountDueError(ValidationError):
    """A settlement would push amount_settled above the document total."""

    code: str = "SETTLEMENT_EXCEEDS_AMOUNT_DUE"

    def __init__(self, document_id: str, amount: Decimal, amount_due: Decimal):
        self.document_id = document_id
        self.amount = amount
        self.amount_due = amount_due
        super().__init__(
            f"Settlement of {amount} exceeds amount due {amount_due} "
            f"on document {document_id}"
        )


class DocumentKindMismatchError(ValidationError):
    """Invoice raised against a vendor, or bill against a client."""

    code: str = "DOCUMENT_KIND_MISMATCH"

    def __init__(self, document_kind: str, counterparty_kind: str):
        self.document_kind = document_kind
        self.counterparty_kind = counterparty_kind
        super().__init__(
            f"{document_kind} documents cannot belong to a {counterparty_kind} counterparty"
        )


class InvalidAmountError(ValidationError):
    """Amount is zero, negative, or not a number."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: Any):
        self.field = field
        self.amount = amount
        super().__init__(f"{field} must be a positive amount, got {amount!r}")


# Not-found errors


class NotFoundError(SettlementKernelError):
    """Base exception for references to entities that do not exist."""

    code: str = "NOT_FOUND"


class AllocationGroupNotFoundError(NotFoundError):
    """Allocation group was not found."""

    code: str = "ALLOCATION_GROUP_NOT_FOUND"

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Allocation group not found: {group_id}")


class DocumentNotFoundError(NotFoundError):
    """Invoice or bill was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class AccountNotFoundError(NotFoundError):
    """Ledger account was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class CounterpartyNotFoundError(NotFoundError):
    """Client or vendor was not found."""

    code: str = "COUNTERPARTY_NOT_FOUND"

    def __init__(self, counterparty_id: str):
        self.counterparty_id = counterparty_id
        super().__init__(f"Counterparty not found: {counterparty_id}")


class VoucherNotFoundError(NotFoundError):
    """Voucher was not found."""

    code: str = "VOUCHER_NOT_FOUND"

    def __init__(self, voucher_id: str):
        self.voucher_id = voucher_id
        super().__init__(f"Voucher not found: {voucher_id}")


class SettlementNotFoundError(NotFoundError):
    """Document settlement was not found."""

    code: str = "SETTLEMENT_NOT_FOUND"

    def __init__(self, settlement_id: str):
        self.settlement_id = settlement_id
        super().__init__(f"Settlement not found: {settlement_id}")


# State errors


class InvalidStateError(SettlementKernelError):
    """Base exception for operations illegal in the entity's current state."""

    code: str = "INVALID_STATE"


class AllocationAlreadyReversedError(InvalidStateError):
    """Allocation group has already been reversed."""

    code: str = "ALLOCATION_ALREADY_REVERSED"

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Allocation group {group_id} has already been reversed")


class CounterpartyMismatchError(InvalidStateError):
    """A document does not belong to the allocation's counterparty."""

    code: str = "COUNTERPARTY_MISMATCH"

    def __init__(
        self,
        document_id: str,
        expected_counterparty_id: str,
        actual_counterparty_id: str,
        violations: tuple[Violation, ...] = (),
    ):
        self.document_id = document_id
        self.expected_counterparty_id = expected_counterparty_id
        self.actual_counterparty_id = actual_counterparty_id
        self.violations = tuple(violations)
        super().__init__(
            f"Document {document_id} belongs to {actual_counterparty_id}, "
            f"not {expected_counterparty_id}"
        )


class InvalidVoucherTransitionError(InvalidStateError):
    """Voucher status change outside PENDING -> POSTED -> REVERSED."""

    code: str = "INVALID_VOUCHER_TRANSITION"

    def __init__(self, voucher_id: str, from_status: str, to_status: str):
        self.voucher_id = voucher_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Voucher {voucher_id} cannot move from {from_status} to {to_status}"
        )


class VoucherAlreadyReversedError(InvalidVoucherTransitionError):
    """Voucher has already been reversed."""

    code: str = "VOUCHER_ALREADY_REVERSED"

    def __init__(self, voucher_id: str):
        super().__init__(voucher_id, "REVERSED", "REVERSED")


class OwnedByAllocationError(InvalidStateError):
    """Voucher or settlement belongs to an allocation; reverse the allocation instead."""

    code: str = "OWNED_BY_ALLOCATION"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type} {entity_id} belongs to an allocation group; "
            "reverse the allocation instead"
        )


class SettlementAlreadyVoidedError(InvalidStateError):
    """Document settlement has already been voided."""

    code: str = "SETTLEMENT_ALREADY_VOIDED"

    def __init__(self, settlement_id: str):
        self.settlement_id = settlement_id
        super().__init__(f"Settlement {settlement_id} has already been voided")


# Concurrency errors


class ConcurrencyError(SettlementKernelError):
    """Base exception for lost races.  Safe to retry."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class AmountDueChangedError(ConcurrencyError):
    """A document's amount due changed between validation and locking."""

    code: str = "AMOUNT_DUE_CHANGED"

    def __init__(self, document_id: str, requested: Decimal, amount_due: Decimal):
        self.document_id = document_id
        self.requested = requested
        self.amount_due = amount_due
        super().__init__(
            f"Amount due on document {document_id} is now {amount_due}, "
            f"cannot apply {requested}"
        )


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Configuration errors


class FatalConfigurationError(SettlementKernelError):
    """Base exception for deployment problems the caller cannot fix."""

    code: str = "FATAL_CONFIGURATION"


class CounterAccountNotConfiguredError(FatalConfigurationError):
    """No usable counter-account is configured for this direction."""

    code: str = "COUNTER_ACCOUNT_NOT_CONFIGURED"

    def __init__(self, tenant_id: str, direction: str, account_code: str | None = None):
        self.tenant_id = tenant_id
        self.direction = direction
        self.account_code = account_code
        detail = f" (code {account_code} not found)" if account_code else ""
        super().__init__(
            f"No {direction} counter-account configured for tenant {tenant_id}{detail}"
        )


class CounterAccountMisconfiguredError(FatalConfigurationError):
    """The configured counter-account has a class not allowed for the direction."""

    code: str = "COUNTER_ACCOUNT_MISCONFIGURED"

    def __init__(
        self,
        direction: str,
        account_id: str,
        account_class: str,
        allowed: tuple[str, ...],
    ):
        self.direction = direction
        self.account_id = account_id
        self.account_class = account_class
        self.allowed = allowed
        super().__init__(
            f"{direction} counter-account {account_id} is {account_class}; "
            f"configured account must be one of: {', '.join(allowed)}"
        )


class TenantConfigNotFoundError(FatalConfigurationError):
    """No settlement configuration exists for the tenant."""

    code: str = "TENANT_CONFIG_NOT_FOUND"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"No settlement configuration for tenant {tenant_id}")


# Immutability errors


class ImmutabilityViolationError(SettlementKernelError):
    """Attempted modification of a posted or append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(SettlementKernelError):
    """Stored audit hash does not match its recomputed value or predecessor."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, event_id: str, expected_hash: str, actual_hash: str):
        self.event_id = event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
