"""
Module: billing_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines.  This
    is the import surface for billing_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import the kernel's money helpers and logging.
    MUST NOT import billing_services or billing_config.

Invariants enforced:
    - Purity: engines never read the clock.  Dates are passed in.
    - Decimal-only arithmetic; floats are rejected at the boundary.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine entry point is wrapped with ``@traced_engine`` and emits
    a BILLING_ENGINE_TRACE log record.
"""

from billing_engines.billing_rules import (
    ApplyOn,
    BillableCharge,
    EarlyPaymentPolicy,
    LateFeePolicy,
    PolicyType,
    compute_early_discount,
    compute_late_fee,
    early_payment_deadline,
    elapsed_periods,
    late_fee_start,
)
from billing_engines.distribution import (
    ChargePreview,
    DistributionMethod,
    UnitShare,
    distribute,
    preview_total,
    rounding_drift,
)
from billing_engines.reconciliation import CashMovement, MatchResult, MatchStatus, match
from billing_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "ApplyOn",
    "BillableCharge",
    "CashMovement",
    "ChargePreview",
    "DistributionMethod",
    "EarlyPaymentPolicy",
    "LateFeePolicy",
    "MatchResult",
    "MatchStatus",
    "PolicyType",
    "UnitShare",
    "compute_early_discount",
    "compute_input_fingerprint",
    "compute_late_fee",
    "distribute",
    "early_payment_deadline",
    "elapsed_periods",
    "late_fee_start",
    "match",
    "preview_total",
    "rounding_drift",
    "traced_engine",
]
