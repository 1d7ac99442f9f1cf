"""Orchestration services and the BillingOperations facade."""

from billing_services.charge_run_service import ChargeRunService
from billing_services.operations import BillingOperations
from billing_services.reconciliation_service import (
    EgressSelection,
    ReconciliationService,
    coerce_egress_selections,
)
from billing_services.results import ErrorInfo, OperationResult

__all__ = [
    "BillingOperations",
    "ChargeRunService",
    "EgressSelection",
    "ErrorInfo",
    "OperationResult",
    "ReconciliationService",
    "coerce_egress_selections",
]
