"""Domain models for the billing kernel."""

from billing_kernel.models.account import FinancialAccount
from billing_kernel.models.audit_log import AuditAction, AuditLog
from billing_kernel.models.charge import Charge, ChargeStatus, ChargeType
from billing_kernel.models.credit import (
    CreditApplication,
    CreditSource,
    CreditStatus,
    MovementType,
    UnitCredit,
)
from billing_kernel.models.egress import Egress, EgressAllocation, EgressStatus
from billing_kernel.models.folio import DocumentType, FolioCounter
from billing_kernel.models.payable import Payable, PayableStatus
from billing_kernel.models.payment import Payment, PaymentAllocation, PaymentStatus
from billing_kernel.models.reconciliation import (
    LOCKED_RECONCILIATION_STATUSES,
    Reconciliation,
    ReconciliationItem,
    ReconciliationStatus,
    TransactionType,
)
from billing_kernel.models.unit import Unit

__all__ = [
    "Unit",
    "FinancialAccount",
    "Charge",
    "ChargeStatus",
    "ChargeType",
    "Payment",
    "PaymentAllocation",
    "PaymentStatus",
    "Payable",
    "PayableStatus",
    "Egress",
    "EgressAllocation",
    "EgressStatus",
    "UnitCredit",
    "CreditApplication",
    "CreditSource",
    "CreditStatus",
    "MovementType",
    "FolioCounter",
    "DocumentType",
    "Reconciliation",
    "ReconciliationItem",
    "ReconciliationStatus",
    "TransactionType",
    "LOCKED_RECONCILIATION_STATUSES",
    "AuditLog",
    "AuditAction",
]
