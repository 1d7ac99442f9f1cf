"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing operations are driven by forms and scheduled batches whose callers
need to know *what kind* of failure happened without parsing messages:

  - a validation error is fixed by resubmitting corrected input,
  - an insufficient balance is fixed by reducing the amount,
  - a business-rule violation is shown to the user verbatim,
  - a concurrency conflict is retried transparently,
  - a fatal configuration error needs an operator.

Every exception therefore:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Has a KIND class attribute (the recovery category above)
  4. Carries structured DATA as attributes (see ``to_dict()``)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- ChargeNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- EgressNotFoundError
    |   +-- PayableNotFoundError
    |   +-- CreditNotFoundError
    |   +-- UnitNotFoundError
    |   +-- AccountNotFoundError
    |   +-- ReconciliationNotFoundError
    |
    +-- InsufficientBalanceError
    |   +-- InsufficientCreditError
    |
    +-- BusinessRuleViolation
    |   +-- ChargeNotPendingError
    |   +-- ChargeAlreadySettledError
    |   +-- ChargeHasAllocationsError
    |   +-- DocumentReconciledError
    |   +-- PayableNotPayableError
    |   +-- ReconciliationLockedError
    |   +-- CreditAlreadyConsumedError
    |
    +-- ConcurrencyConflict
    |
    +-- FatalConfigurationError
    |   +-- FolioCounterMissingError
    |
    +-- InvariantViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Kind                 | Code                        | When Raised
---------------------|-----------------------------|------------------------------------
validation           | VALIDATION_ERROR            | Malformed input, before any lock
not_found            | CHARGE_NOT_FOUND            | Charge id unknown for tenant
                     | PAYMENT_NOT_FOUND           | Payment id unknown
                     | EGRESS_NOT_FOUND            | Egress id unknown
                     | PAYABLE_NOT_FOUND           | Payable id unknown
                     | CREDIT_NOT_FOUND            | Credit lot id unknown
                     | UNIT_NOT_FOUND              | Unit id unknown for tenant
                     | ACCOUNT_NOT_FOUND           | Financial account unknown
                     | RECONCILIATION_NOT_FOUND    | Reconciliation id unknown
insufficient_balance | INSUFFICIENT_BALANCE        | Amount exceeds charge/payable balance
                     | INSUFFICIENT_CREDIT         | Debit exceeds unit credit balance
business_rule        | CHARGE_NOT_PENDING          | Charge cancelled / not pending
                     | CHARGE_ALREADY_SETTLED      | Clamped allocation is zero
                     | CHARGE_HAS_ALLOCATIONS      | Cancelling a charge with live payments
                     | DOCUMENT_RECONCILED         | Cancelling a reconciled document
                     | PAYABLE_NOT_PAYABLE         | Paying an unapproved/closed payable
                     | RECONCILIATION_LOCKED       | Editing a finalized reconciliation
                     | CREDIT_ALREADY_CONSUMED     | Cancelling a consumed credit lot
concurrency          | CONCURRENCY_CONFLICT        | Lock contention / stale row
fatal_configuration  | FOLIO_COUNTER_MISSING       | Tenant was never provisioned
invariant            | INVARIANT_VIOLATION         | Pre-commit invariant assertion failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CATCH SPECIFIC EXCEPTIONS:

    try:
        cancellation.cancel_payment(payment_id, reason, actor_id)
    except DocumentReconciledError as e:
        show_user(str(e))

2. USE STRUCTURED DATA:

    except InsufficientCreditError as e:
        return {"error": e.code, "available": e.available, "requested": e.requested}

3. RETRY BY CATEGORY:

    except ConcurrencyConflict:
        retry_in_new_transaction()

===============================================================================
"""

from decimal import Decimal
from typing import Any


def _status_text(status: Any) -> str:
    """Plain string for a status that may be a str Enum member or a raw value."""
    return str(getattr(status, "value", status))


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses carry a ``code`` and a ``kind`` class attribute.
    """

    code: str = "BILLING_KERNEL_ERROR"
    kind: str = "internal"

    def to_dict(self) -> dict[str, Any]:
        """Structured error payload (kind + code + message + details)."""
        details = {
            k: (str(v) if not isinstance(v, (str, int, bool, type(None))) else v)
            for k, v in vars(self).items()
            if not k.startswith("_")
        }
        return {
            "kind": self.kind,
            "code": self.code,
            "message": str(self),
            "details": details,
        }


# Validation


class ValidationError(BillingKernelError):
    """Malformed input. Raised before any lock is taken."""

    code: str = "VALIDATION_ERROR"
    kind: str = "validation"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# Lookups


class NotFoundError(BillingKernelError):
    """Base exception for missing rows."""

    code: str = "NOT_FOUND"
    kind: str = "not_found"
    entity: str = "record"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity.capitalize()} not found: {entity_id}")


class ChargeNotFoundError(NotFoundError):
    code: str = "CHARGE_NOT_FOUND"
    entity: str = "charge"


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"
    entity: str = "payment"


class EgressNotFoundError(NotFoundError):
    code: str = "EGRESS_NOT_FOUND"
    entity: str = "egress"


class PayableNotFoundError(NotFoundError):
    code: str = "PAYABLE_NOT_FOUND"
    entity: str = "payable"


class CreditNotFoundError(NotFoundError):
    code: str = "CREDIT_NOT_FOUND"
    entity: str = "credit"


class UnitNotFoundError(NotFoundError):
    code: str = "UNIT_NOT_FOUND"
    entity: str = "unit"


class AccountNotFoundError(NotFoundError):
    code: str = "ACCOUNT_NOT_FOUND"
    entity: str = "financial account"


class ReconciliationNotFoundError(NotFoundError):
    code: str = "RECONCILIATION_NOT_FOUND"
    entity: str = "reconciliation"


# Balances


class InsufficientBalanceError(BillingKernelError):
    """Requested amount exceeds the available balance."""

    code: str = "INSUFFICIENT_BALANCE"
    kind: str = "insufficient_balance"

    def __init__(
        self,
        target_id: Any,
        requested: Decimal,
        available: Decimal,
        message: str | None = None,
    ):
        self.target_id = str(target_id)
        self.requested = requested
        self.available = available
        super().__init__(
            message
            or f"Requested {requested} exceeds available balance {available} "
            f"for {target_id}"
        )


class InsufficientCreditError(InsufficientBalanceError):
    """A credit debit would drive the unit's credit balance negative."""

    code: str = "INSUFFICIENT_CREDIT"

    def __init__(self, unit_id: Any, requested: Decimal, available: Decimal):
        super().__init__(
            unit_id,
            requested,
            available,
            message=(
                f"Insufficient credit for unit {unit_id}: "
                f"requested {requested}, available {available}"
            ),
        )


# Business rules


class BusinessRuleViolation(BillingKernelError):
    """A domain rule forbids the operation. Shown to the user verbatim."""

    code: str = "BUSINESS_RULE_VIOLATION"
    kind: str = "business_rule"


class ChargeNotPendingError(BusinessRuleViolation):
    code: str = "CHARGE_NOT_PENDING"

    def __init__(self, charge_id: Any, status: str):
        self.charge_id = str(charge_id)
        self.status = _status_text(status)
        super().__init__(f"Charge {charge_id} is not pending (status: {self.status})")


class ChargeAlreadySettledError(BusinessRuleViolation):
    code: str = "CHARGE_ALREADY_SETTLED"

    def __init__(self, charge_id: Any):
        self.charge_id = str(charge_id)
        super().__init__(
            f"Invalid amount for charge {charge_id}: charge has no outstanding balance"
        )


class ChargeHasAllocationsError(BusinessRuleViolation):
    code: str = "CHARGE_HAS_ALLOCATIONS"

    def __init__(self, charge_id: Any):
        self.charge_id = str(charge_id)
        super().__init__(
            f"Charge {charge_id} has payments or credits applied; "
            "cancel or correct them first"
        )


class DocumentReconciledError(BusinessRuleViolation):
    code: str = "DOCUMENT_RECONCILED"

    def __init__(self, document_type: str, document_id: Any, reconciliation_id: Any):
        self.document_type = document_type
        self.document_id = str(document_id)
        self.reconciliation_id = str(reconciliation_id)
        super().__init__(
            f"Cannot cancel {document_type} {document_id}: it is part of a "
            "finalized reconciliation. Delete the reconciliation first."
        )


class PayableNotPayableError(BusinessRuleViolation):
    code: str = "PAYABLE_NOT_PAYABLE"

    def __init__(self, payable_id: Any, status: str):
        self.payable_id = str(payable_id)
        self.status = _status_text(status)
        super().__init__(
            f"Payable {payable_id} cannot be paid in status {self.status}; "
            "only approved payables can be paid"
        )


class ReconciliationLockedError(BusinessRuleViolation):
    code: str = "RECONCILIATION_LOCKED"

    def __init__(self, reconciliation_id: Any, status: str):
        self.reconciliation_id = str(reconciliation_id)
        self.status = _status_text(status)
        super().__init__(
            f"Reconciliation {reconciliation_id} is {self.status} and cannot be modified"
        )


class ReconciliationDraftExistsError(BusinessRuleViolation):
    code: str = "RECONCILIATION_DRAFT_EXISTS"

    def __init__(self, reconciliation_id: Any, cutoff_date: Any):
        self.reconciliation_id = str(reconciliation_id)
        self.cutoff_date = cutoff_date
        super().__init__(
            f"A draft reconciliation ({reconciliation_id}) already exists for this "
            f"account and cutoff {cutoff_date}; edit or delete it instead"
        )


class StaleReconciliationError(BusinessRuleViolation):
    """A draft's period no longer starts where the account's locked chain ends."""

    code: str = "RECONCILIATION_STALE"

    def __init__(self, reconciliation_id: Any, last_locked_id: Any, last_locked_cutoff: Any):
        self.reconciliation_id = str(reconciliation_id)
        self.last_locked_id = str(last_locked_id) if last_locked_id is not None else None
        self.last_locked_cutoff = last_locked_cutoff
        super().__init__(
            f"Reconciliation {reconciliation_id} was drafted before the account's "
            f"reconciliations changed (last locked cutoff: {last_locked_cutoff}); "
            "delete it and compute a new one"
        )


class CreditAlreadyConsumedError(BusinessRuleViolation):
    code: str = "CREDIT_ALREADY_CONSUMED"

    def __init__(self, credit_id: Any, remaining: Decimal, amount: Decimal):
        self.credit_id = str(credit_id)
        self.remaining = remaining
        self.amount = amount
        super().__init__(
            f"Credit {credit_id} has already been partly or fully used "
            f"({remaining} of {amount} remaining)"
        )


# Concurrency


class ConcurrencyConflict(BillingKernelError):
    """Lock contention or stale row detected. Retry in a new transaction."""

    code: str = "CONCURRENCY_CONFLICT"
    kind: str = "concurrency"

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        super().__init__(
            f"Concurrent modification during {operation}"
            + (f": {detail}" if detail else "")
        )


# Configuration


class FatalConfigurationError(BillingKernelError):
    """Missing provisioning. Not recoverable by the caller."""

    code: str = "FATAL_CONFIGURATION"
    kind: str = "fatal_configuration"


class FolioCounterMissingError(FatalConfigurationError):
    code: str = "FOLIO_COUNTER_MISSING"

    def __init__(self, tenant_id: Any, document_type: str):
        self.tenant_id = str(tenant_id)
        self.document_type = document_type
        super().__init__(
            f"Folio counter missing for tenant {tenant_id} ({document_type}); "
            "counters must be provisioned when the tenant is created"
        )


# Invariants


class InvariantViolationError(BillingKernelError):
    """A pre-commit invariant check failed. The transaction must roll back."""

    code: str = "INVARIANT_VIOLATION"
    kind: str = "invariant"

    def __init__(self, invariant: str, detail: str):
        self.invariant = invariant
        self.detail = detail
        super().__init__(f"Invariant {invariant} violated: {detail}")
