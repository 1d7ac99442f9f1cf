"""Services for the billing kernel (write side)."""

from billing_kernel.services.audit_service import AuditService
from billing_kernel.services.base import BaseService, translate_lock_errors
from billing_kernel.services.cancellation_service import (
    CancellationResult,
    CancellationService,
)
from billing_kernel.services.charge_service import ChargeService
from billing_kernel.services.credit_ledger_service import (
    CreditApplicationResult,
    CreditLedgerService,
    TransferResult,
)
from billing_kernel.services.egress_service import EgressService, PayableAllocationRequest
from billing_kernel.services.folio_service import FolioService
from billing_kernel.services.payable_service import PayableService
from billing_kernel.services.payment_service import AllocationRequest, PaymentService

__all__ = [
    "AllocationRequest",
    "AuditService",
    "BaseService",
    "CancellationResult",
    "CancellationService",
    "ChargeService",
    "CreditApplicationResult",
    "CreditLedgerService",
    "EgressService",
    "FolioService",
    "PayableAllocationRequest",
    "PayableService",
    "PaymentService",
    "TransferResult",
    "translate_lock_errors",
]
