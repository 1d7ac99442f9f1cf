"""
Tenant billing settings schema.

The human-authored YAML file of a tenant is parsed into these frozen
dataclasses by the loader, checked by the validator, and turned into
engine policies by the bridges.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Billing rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EarlyPaymentSettings:
    """Early-payment (pronto pago) discount."""

    enabled: bool = False
    type: str | None = None  # "percentage" or "fixed_amount"
    value: Decimal = Decimal("0")
    cutoff_day: int | None = None
    apply_on: str = "balance"


@dataclass(frozen=True)
class LateFeeSettings:
    """Late-payment fee (mora)."""

    enabled: bool = False
    type: str | None = None  # "percentage" or "fixed_amount"
    value: Decimal = Decimal("0")
    grace_days: int = 0
    apply_on: str = "balance"  # "balance" or "total"
    max_rate: Decimal | None = None
    compound: bool = False


# ---------------------------------------------------------------------------
# Tenant settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TenantBillingSettings:
    """Everything the billing engines need to know about one tenant."""

    tenant: str
    early_payment: EarlyPaymentSettings = field(default_factory=EarlyPaymentSettings)
    late_fee: LateFeeSettings = field(default_factory=LateFeeSettings)
    default_due_day: int = 10
    distribution_method: str = "by_aliquot"
    source_path: str | None = None
    checksum: str = ""


# ---------------------------------------------------------------------------
# Process settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuntimeSettings:
    """Process-wide settings read from the environment."""

    database_url: str
    max_retries: int = 3
    log_level: str = "INFO"
    config_dir: str | None = None
