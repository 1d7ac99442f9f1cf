"""
PayableService -- lifecycle of accounts-payable orders.

Payables are created pending approval, approved by an administrator and
then settled by egresses (EgressService).  Cancellation is allowed only
while nothing has been paid.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from billing_kernel.db.types import ZERO, to_money
from billing_kernel.exceptions import (
    BusinessRuleViolation,
    PayableNotFoundError,
    PayableNotPayableError,
    ValidationError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_log import AuditAction
from billing_kernel.models.payable import Payable, PayableStatus
from billing_kernel.services.audit_service import AuditService
from billing_kernel.services.base import BaseService

logger = get_logger("services.payable")


class PayableService(BaseService):
    """Creates, approves and cancels payables."""

    def create_payable(
        self,
        tenant_id: UUID,
        supplier_name: str,
        total_amount: Decimal,
        actor_id: UUID,
        invoice_number: str | None = None,
        description: str | None = None,
        due_date: date | None = None,
    ) -> Payable:
        total_amount = to_money(total_amount)
        if total_amount <= ZERO:
            raise ValidationError("Payable amount must be positive", field="total_amount")
        if not supplier_name:
            raise ValidationError("Supplier is required", field="supplier_name")

        payable = Payable(
            tenant_id=tenant_id,
            supplier_name=supplier_name,
            invoice_number=invoice_number,
            description=description,
            due_date=due_date,
            total_amount=total_amount,
            paid_amount=ZERO,
            status=PayableStatus.PENDING_APPROVAL.value,
            created_by_id=actor_id,
        )
        self.session.add(payable)
        self.session.flush()

        AuditService(self.session, self.clock).record(
            tenant_id,
            "payable",
            payable.id,
            AuditAction.PAYABLE_CREATED,
            actor_id,
            {"supplier_name": supplier_name, "total_amount": total_amount},
        )
        logger.info("payable_created", extra={"payable_id": str(payable.id)})
        return payable

    def approve_payable(self, tenant_id: UUID, payable_id: UUID, actor_id: UUID) -> Payable:
        payable = self._lock_row(Payable, payable_id, tenant_id, PayableNotFoundError)
        if payable.status == PayableStatus.APPROVED:
            return payable
        if payable.status != PayableStatus.PENDING_APPROVAL:
            raise PayableNotPayableError(payable.id, payable.status)

        payable.status = PayableStatus.APPROVED.value
        payable.approved_by_id = actor_id
        payable.updated_by_id = actor_id
        self.session.flush()

        AuditService(self.session, self.clock).record(
            tenant_id, "payable", payable.id, AuditAction.PAYABLE_APPROVED, actor_id
        )
        logger.info("payable_approved", extra={"payable_id": str(payable.id)})
        return payable

    def cancel_payable(
        self, tenant_id: UUID, payable_id: UUID, reason: str, actor_id: UUID
    ) -> Payable:
        payable = self._lock_row(Payable, payable_id, tenant_id, PayableNotFoundError)
        if payable.status == PayableStatus.CANCELLED:
            return payable
        if to_money(payable.paid_amount) > ZERO:
            raise BusinessRuleViolation(
                f"Payable {payable.id} has payments; cancel its egresses first"
            )

        payable.status = PayableStatus.CANCELLED.value
        payable.updated_by_id = actor_id
        self.session.flush()

        AuditService(self.session, self.clock).record(
            tenant_id,
            "payable",
            payable.id,
            AuditAction.PAYABLE_CANCELLED,
            actor_id,
            {"reason": reason},
        )
        logger.info("payable_cancelled", extra={"payable_id": str(payable.id)})
        return payable
