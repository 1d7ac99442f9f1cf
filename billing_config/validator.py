"""
Configuration Validator (``billing_config.validator``).

Checks a parsed ``TenantBillingSettings`` before it is handed to the
bridges.  Errors block use of the settings; warnings are logged.

Rules
-----
* An enabled policy needs a type in {percentage, fixed_amount} and a
  positive value.
* Percentages above 100 are errors.
* ``cutoff_day`` and ``default_due_day`` lie in 1..28 so every month has
  them.
* ``grace_days`` and ``max_rate`` are non-negative.
* ``distribution_method`` names a known method.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from billing_config.schema import TenantBillingSettings

POLICY_TYPES = ("percentage", "fixed_amount")
APPLY_ON = ("balance", "total")
DISTRIBUTION_METHODS = ("by_aliquot", "equal", "by_consumption")

_HUNDRED = Decimal("100")


@dataclass
class ConfigValidationResult:
    """
    Result of settings validation.

    ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def _check_day(result: ConfigValidationResult, key: str, day: int | None) -> None:
    if day is None:
        result.add_error(f"{key} is required")
    elif not 1 <= day <= 28:
        result.add_error(f"{key} must be between 1 and 28, got {day}")


def _check_policy(
    result: ConfigValidationResult, key: str, policy_type: str | None, value: Decimal, apply_on: str
) -> None:
    if policy_type not in POLICY_TYPES:
        result.add_error(f"{key}.type must be one of {', '.join(POLICY_TYPES)}")
    if value <= 0:
        result.add_error(f"{key}.value must be positive")
    elif policy_type == "percentage" and value > _HUNDRED:
        result.add_error(f"{key}.value is a percentage and cannot exceed 100")
    if apply_on not in APPLY_ON:
        result.add_error(f"{key}.apply_on must be one of {', '.join(APPLY_ON)}")


def validate_tenant_settings(settings: TenantBillingSettings) -> ConfigValidationResult:
    """Validate one tenant's billing settings."""
    result = ConfigValidationResult()

    early = settings.early_payment
    if early.enabled:
        _check_policy(result, "early_payment", early.type, early.value, early.apply_on)
        _check_day(result, "early_payment.cutoff_day", early.cutoff_day)

    late = settings.late_fee
    if late.enabled:
        _check_policy(result, "late_fee", late.type, late.value, late.apply_on)
        if late.grace_days < 0:
            result.add_error("late_fee.grace_days cannot be negative")
        if late.max_rate is not None and late.max_rate < 0:
            result.add_error("late_fee.max_rate cannot be negative")
        if late.max_rate is None and late.compound:
            result.add_warning("late_fee.compound without max_rate grows without bound")

    _check_day(result, "default_due_day", settings.default_due_day)

    if settings.distribution_method not in DISTRIBUTION_METHODS:
        result.add_error(
            f"distribution_method must be one of {', '.join(DISTRIBUTION_METHODS)}"
        )
    return result
