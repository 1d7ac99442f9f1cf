"""
Billing Invariants Contract.

These invariants are structural law for every multi-entity operation. No
tenant setting or caller flag may override them.

This module declares the invariants and provides the pre-commit assertion
helpers that services call after mutating rows and before handing control
back to the transaction owner. A failed assertion raises
InvariantViolationError so the whole transaction rolls back.
"""

from decimal import Decimal
from enum import Enum, unique
from typing import Iterable

from billing_kernel.db.types import MONEY_EPSILON, ZERO, to_money
from billing_kernel.exceptions import InvariantViolationError


@unique
class BillingInvariant(str, Enum):
    """Non-configurable invariants enforced by the billing kernel."""

    CHARGE_CONSERVATION = "charge_conservation"
    """paid_amount + balance == total_amount for every charge, and the
    balance is never negative."""

    CHARGE_STATUS = "charge_status"
    """A non-cancelled charge is paid iff its balance is below 0.01."""

    ALLOCATION_SUM = "allocation_sum"
    """A payment's or egress's allocations never exceed its total."""

    CREDIT_NON_NEGATIVE = "credit_non_negative"
    """A unit's credit balance (sum of its ledger) is never negative."""

    CREDIT_LOT_CONSISTENCY = "credit_lot_consistency"
    """The remaining amounts of a unit's active credit lots sum to the
    unit's credit balance."""

    CREDIT_BALANCE_CACHE = "credit_balance_cache"
    """Unit.credit_balance equals the sum of the unit's ledger amounts."""

    FOLIO_GAPLESS = "folio_gapless"
    """Folios are unique, strictly increasing and gapless per tenant and
    document type. Enforced by FolioService row locks."""

    RECONCILED_IMMUTABILITY = "reconciled_immutability"
    """Payments and egresses referenced by a finalized reconciliation
    cannot be cancelled. Enforced by CancellationService."""


ALL_BILLING_INVARIANTS: frozenset[BillingInvariant] = frozenset(BillingInvariant)

# The kernel package may not import from these packages.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "billing_services",
    "billing_config",
)


def assert_charge_consistent(charge) -> None:
    """Check conservation and status of a single charge row."""
    total = to_money(charge.total_amount)
    paid = to_money(charge.paid_amount)
    balance = to_money(charge.balance)

    if abs(paid + balance - total) >= MONEY_EPSILON:
        raise InvariantViolationError(
            BillingInvariant.CHARGE_CONSERVATION.value,
            f"charge {charge.id}: paid {paid} + balance {balance} != total {total}",
        )
    if balance < ZERO:
        raise InvariantViolationError(
            BillingInvariant.CHARGE_CONSERVATION.value,
            f"charge {charge.id}: negative balance {balance}",
        )
    if charge.status == "cancelled":
        return
    settled = abs(balance) < MONEY_EPSILON
    if settled != (charge.status == "paid"):
        raise InvariantViolationError(
            BillingInvariant.CHARGE_STATUS.value,
            f"charge {charge.id}: status {charge.status} with balance {balance}",
        )


def assert_allocation_sum(
    document_id, total_amount: Decimal, allocated: Iterable[Decimal]
) -> None:
    """Check that allocations do not exceed the document total."""
    allocated_sum = sum((to_money(a) for a in allocated), ZERO)
    if allocated_sum - to_money(total_amount) >= MONEY_EPSILON:
        raise InvariantViolationError(
            BillingInvariant.ALLOCATION_SUM.value,
            f"document {document_id}: allocated {allocated_sum} > total {total_amount}",
        )


def assert_credit_non_negative(unit_id, balance: Decimal) -> None:
    if to_money(balance) < ZERO:
        raise InvariantViolationError(
            BillingInvariant.CREDIT_NON_NEGATIVE.value,
            f"unit {unit_id}: credit balance {balance}",
        )


def assert_credit_lots_consistent(
    unit_id, balance: Decimal, lot_remaining: Iterable[Decimal]
) -> None:
    remaining = sum((to_money(r) for r in lot_remaining), ZERO)
    if abs(remaining - to_money(balance)) >= MONEY_EPSILON:
        raise InvariantViolationError(
            BillingInvariant.CREDIT_LOT_CONSISTENCY.value,
            f"unit {unit_id}: lots hold {remaining}, ledger balance {balance}",
        )


def assert_credit_cache_matches(unit_id, cached: Decimal, ledger: Decimal) -> None:
    if abs(to_money(cached) - to_money(ledger)) >= MONEY_EPSILON:
        raise InvariantViolationError(
            BillingInvariant.CREDIT_BALANCE_CACHE.value,
            f"unit {unit_id}: cached credit {cached}, ledger sum {ledger}",
        )
