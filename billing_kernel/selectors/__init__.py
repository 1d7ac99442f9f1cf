"""Read-only query selectors for the billing kernel."""

from billing_kernel.selectors.base import BaseSelector
from billing_kernel.selectors.charge_selector import ChargeSelector, OutstandingCharge
from billing_kernel.selectors.credit_selector import CreditLot, CreditSelector
from billing_kernel.selectors.reconciliation_selector import ReconciliationSelector

__all__ = [
    "BaseSelector",
    "ChargeSelector",
    "OutstandingCharge",
    "CreditSelector",
    "CreditLot",
    "ReconciliationSelector",
]
