"""
Module: billing_engines.billing_rules
Responsibility:
    Compute early-payment discounts and late-payment fees for a charge
    under a tenant's billing policy.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The ``as_of`` date is
    always passed in; posting the resulting charge is the caller's job
    (ChargeRunService.assess_late_fee).

Invariants enforced:
    - Cancelled or settled charges yield zero.
    - A late fee exists only once as_of > due_date + grace_days.  Elapsed
      periods = 1 + whole months between that date and as_of.
    - With ``compound`` each period's percentage applies to the basis
      already increased by the previous periods' fees.
    - The cumulative late fee never exceeds max_rate% of total_amount.
    - An early discount never exceeds its basis.
    - Each period's fee is rounded with round_money before accumulation.

Failure modes:
    - ValueError on malformed policies (negative value, day out of range).

Usage:
    from billing_engines.billing_rules import LateFeePolicy, PolicyType, compute_late_fee

    policy = LateFeePolicy(type=PolicyType.PERCENTAGE, value=Decimal("2"), grace_days=5)
    fee = compute_late_fee(charge, as_of=date(2024, 3, 20), policy=policy)
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum

from billing_engines.tracer import traced_engine
from billing_kernel.db.types import MONEY_EPSILON, ZERO, round_money, to_money
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.billing_rules")

_HUNDRED = Decimal("100")


class PolicyType(str, Enum):
    """How a policy value is interpreted."""

    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class ApplyOn(str, Enum):
    """Which charge amount a percentage is taken from."""

    BALANCE = "balance"
    TOTAL = "total"


def _non_negative(value: Decimal | int | str, field: str) -> Decimal:
    if isinstance(value, float):
        raise ValueError(f"{field} must not be a float")
    value = value if isinstance(value, Decimal) else Decimal(str(value))
    if value < 0:
        raise ValueError(f"{field} cannot be negative")
    return value


@dataclass(frozen=True)
class EarlyPaymentPolicy:
    """
    Discount for paying on or before ``cutoff_day`` of the due month.

    Guarantees:
        - ``value`` is non-negative; ``cutoff_day`` is in 1..31 and is
          clamped to the end of short months when evaluated.
    """

    type: PolicyType
    value: Decimal
    cutoff_day: int
    apply_on: ApplyOn = ApplyOn.BALANCE

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", PolicyType(self.type))
        object.__setattr__(self, "apply_on", ApplyOn(self.apply_on))
        object.__setattr__(self, "value", _non_negative(self.value, "value"))
        if not 1 <= self.cutoff_day <= 31:
            raise ValueError(f"cutoff_day must be between 1 and 31, got {self.cutoff_day}")


@dataclass(frozen=True)
class LateFeePolicy:
    """
    Fee per elapsed period once a charge is overdue past ``grace_days``.

    Guarantees:
        - ``value`` and ``grace_days`` are non-negative.
        - ``max_rate`` is None (uncapped) or a non-negative percentage of
          the charge total.
    """

    type: PolicyType
    value: Decimal
    grace_days: int = 0
    apply_on: ApplyOn = ApplyOn.BALANCE
    max_rate: Decimal | None = None
    compound: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", PolicyType(self.type))
        object.__setattr__(self, "apply_on", ApplyOn(self.apply_on))
        object.__setattr__(self, "value", _non_negative(self.value, "value"))
        if self.grace_days < 0:
            raise ValueError("grace_days cannot be negative")
        if self.max_rate is not None:
            object.__setattr__(self, "max_rate", _non_negative(self.max_rate, "max_rate"))


@dataclass(frozen=True)
class BillableCharge:
    """The charge fields the rules read.  ORM Charge rows work as well."""

    total_amount: Decimal
    balance: Decimal
    due_date: date
    status: str = "pending"


def _is_chargeable(charge) -> bool:
    status = getattr(charge.status, "value", charge.status)
    if status in ("cancelled", "paid"):
        return False
    return to_money(charge.balance) >= MONEY_EPSILON


def _basis(charge, apply_on: ApplyOn) -> Decimal:
    match apply_on:
        case ApplyOn.BALANCE:
            return to_money(charge.balance)
        case ApplyOn.TOTAL:
            return to_money(charge.total_amount)
        case _:
            raise ValueError(f"Unknown apply_on: {apply_on}")


def _clamp_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def early_payment_deadline(due_date: date, cutoff_day: int) -> date:
    """Last day the early discount applies, clamped to the month end."""
    return _clamp_day(due_date.year, due_date.month, cutoff_day)


def late_fee_start(due_date: date, grace_days: int) -> date:
    """Date after which a charge starts accruing late fees."""
    return due_date + timedelta(days=grace_days)


def elapsed_periods(start: date, as_of: date) -> int:
    """
    Billing periods elapsed after ``start``: 1 + whole months to ``as_of``.

    Zero when ``as_of`` is not after ``start``.  A month counts as whole
    when as_of's day reaches start's day (clamped to the end of as_of's
    month, so Jan 31 -> Feb 29 is one whole month).
    """
    if as_of <= start:
        return 0
    months = (as_of.year - start.year) * 12 + (as_of.month - start.month)
    anniversary = _clamp_day(as_of.year, as_of.month, start.day)
    if as_of < anniversary:
        months -= 1
    return 1 + months


@traced_engine("billing_rules.early_discount", "1.0", fingerprint_fields=("as_of", "policy"))
def compute_early_discount(charge, as_of: date, policy: EarlyPaymentPolicy) -> Decimal:
    """
    Discount due if the charge is paid on ``as_of``.

    Returns:
        A non-negative amount, zero when the deadline has passed.
    """
    if not _is_chargeable(charge):
        return ZERO
    if as_of > early_payment_deadline(charge.due_date, policy.cutoff_day):
        return ZERO

    basis = _basis(charge, policy.apply_on)
    match policy.type:
        case PolicyType.PERCENTAGE:
            discount = round_money(basis * policy.value / _HUNDRED)
        case PolicyType.FIXED_AMOUNT:
            discount = round_money(policy.value)
        case _:
            raise ValueError(f"Unknown policy type: {policy.type}")
    return min(discount, basis)


@traced_engine("billing_rules.late_fee", "1.0", fingerprint_fields=("as_of", "policy"))
def compute_late_fee(charge, as_of: date, policy: LateFeePolicy) -> Decimal:
    """
    Cumulative late fee owed on ``as_of``.

    The result covers every elapsed period, so callers that post fees
    incrementally subtract what they already charged.
    """
    if not _is_chargeable(charge):
        return ZERO
    periods = elapsed_periods(late_fee_start(charge.due_date, policy.grace_days), as_of)
    if periods == 0:
        return ZERO

    match policy.type:
        case PolicyType.PERCENTAGE:
            basis = _basis(charge, policy.apply_on)
            fee = ZERO
            for _ in range(periods):
                period_fee = round_money(basis * policy.value / _HUNDRED)
                fee += period_fee
                if policy.compound:
                    basis += period_fee
        case PolicyType.FIXED_AMOUNT:
            fee = round_money(policy.value * periods)
        case _:
            raise ValueError(f"Unknown policy type: {policy.type}")

    if policy.max_rate is not None:
        cap = round_money(to_money(charge.total_amount) * policy.max_rate / _HUNDRED)
        if fee > cap:
            logger.info(
                "late_fee_capped",
                extra={"fee": str(fee), "cap": str(cap), "periods": periods},
            )
            fee = cap
    return fee
