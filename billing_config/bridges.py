"""
Config -> Engine Bridges.

Convert validated TenantBillingSettings into the policy objects the
billing engines take.  These live in billing_config (the producer) so
that engines and the kernel never import configuration.

Usage:
    from billing_config import get_tenant_settings
    from billing_config.bridges import build_late_fee_policy

    settings = get_tenant_settings(tenant_id)
    policy = build_late_fee_policy(settings)   # None when disabled
"""

from __future__ import annotations

from billing_config.schema import TenantBillingSettings
from billing_engines.billing_rules import (
    ApplyOn,
    EarlyPaymentPolicy,
    LateFeePolicy,
    PolicyType,
)
from billing_engines.distribution import DistributionMethod


def build_early_payment_policy(settings: TenantBillingSettings) -> EarlyPaymentPolicy | None:
    early = settings.early_payment
    if not early.enabled:
        return None
    return EarlyPaymentPolicy(
        type=PolicyType(early.type),
        value=early.value,
        cutoff_day=early.cutoff_day,
        apply_on=ApplyOn(early.apply_on),
    )


def build_late_fee_policy(settings: TenantBillingSettings) -> LateFeePolicy | None:
    late = settings.late_fee
    if not late.enabled:
        return None
    return LateFeePolicy(
        type=PolicyType(late.type),
        value=late.value,
        grace_days=late.grace_days,
        apply_on=ApplyOn(late.apply_on),
        max_rate=late.max_rate,
        compound=late.compound,
    )


def build_distribution_method(settings: TenantBillingSettings) -> DistributionMethod:
    return DistributionMethod(settings.distribution_method)
