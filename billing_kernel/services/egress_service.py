"""
EgressService -- records outgoing payments against approved payables.

Responsibility:
    The mirror of PaymentService for money leaving an account: validates
    the requested payable allocations, reserves the EG folio, settles each
    payable, and decrements the financial account by the egress total.

Invariants enforced:
    - Only APPROVED or PARTIALLY_PAID payables of one supplier can be paid.
    - An allocation may not exceed the payable's balance.  Unlike charge
      allocations this is rejected, not clamped: the egress total is the
      amount that actually left the bank.
    - egress.total_amount == sum(allocations).

Failure modes:
    - ValidationError: empty or malformed allocations, total mismatch.
    - PayableNotPayableError: payable not approved, paid or cancelled.
    - InsufficientBalanceError: allocation above the payable balance.

Lock order:
    folio counter -> payables (ascending id) -> financial account.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping
from uuid import UUID

from sqlalchemy import select

from billing_kernel.db.types import MONEY_EPSILON, ZERO, round_money, to_money
from billing_kernel.exceptions import (
    AccountNotFoundError,
    BusinessRuleViolation,
    InsufficientBalanceError,
    PayableNotFoundError,
    PayableNotPayableError,
    ValidationError,
)
from billing_kernel.invariants import assert_allocation_sum
from billing_kernel.logging_config import get_logger
from billing_kernel.models.account import FinancialAccount
from billing_kernel.models.audit_log import AuditAction
from billing_kernel.models.egress import Egress, EgressAllocation, EgressStatus
from billing_kernel.models.folio import DocumentType
from billing_kernel.models.payable import Payable
from billing_kernel.services.audit_service import AuditService
from billing_kernel.services.base import BaseService
from billing_kernel.services.folio_service import FolioService

logger = get_logger("services.egress")


@dataclass(frozen=True)
class PayableAllocationRequest:
    payable_id: UUID
    amount: Decimal


def _coerce(
    allocations: Iterable[PayableAllocationRequest | Mapping[str, Any]],
) -> list[PayableAllocationRequest]:
    requests = []
    seen = set()
    for item in allocations:
        if not isinstance(item, PayableAllocationRequest):
            try:
                payable_id = item["payable_id"]
                amount = item["amount"]
                if not isinstance(payable_id, UUID):
                    payable_id = UUID(str(payable_id))
            except (KeyError, TypeError, ValueError):
                raise ValidationError(
                    "Each allocation needs a valid payable_id and an amount",
                    field="allocations",
                ) from None
            item = PayableAllocationRequest(payable_id, amount)
        try:
            amount = to_money(item.amount)
        except (TypeError, ArithmeticError):
            raise ValidationError(
                f"Invalid amount for payable {item.payable_id}", field="allocations"
            ) from None
        if amount <= ZERO:
            raise ValidationError(
                f"Allocation amount for payable {item.payable_id} must be greater than zero",
                field="allocations",
            )
        if item.payable_id in seen:
            raise ValidationError(
                f"Payable {item.payable_id} appears more than once", field="allocations"
            )
        seen.add(item.payable_id)
        requests.append(PayableAllocationRequest(item.payable_id, amount))
    if not requests:
        raise ValidationError("At least one payable is required", field="allocations")
    return requests


class EgressService(BaseService):
    """Registers egresses.  Flushes, never commits."""

    def register_egress(
        self,
        tenant_id: UUID,
        account_id: UUID,
        allocations: Iterable[PayableAllocationRequest | Mapping[str, Any]],
        actor_id: UUID,
        total_amount: Decimal | None = None,
        egress_date: date | None = None,
        payment_method: str | None = None,
        check_number: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> Egress:
        """
        Pay one or more approved payables of the same supplier.

        ``total_amount`` defaults to the sum of the allocations; when given
        it must match that sum.
        """
        requests = _coerce(allocations)
        allocated_total = round_money(sum((r.amount for r in requests), ZERO))
        if total_amount is not None and abs(to_money(total_amount) - allocated_total) >= MONEY_EPSILON:
            raise ValidationError(
                f"Egress total {total_amount} does not match allocations {allocated_total}",
                field="total_amount",
            )

        account_exists = self.session.execute(
            select(FinancialAccount.id).where(
                FinancialAccount.id == account_id,
                FinancialAccount.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        if account_exists is None:
            raise AccountNotFoundError(account_id)

        folio = FolioService(self.session, self.clock).next_folio(tenant_id, DocumentType.EG)

        egress = Egress(
            tenant_id=tenant_id,
            financial_account_id=account_id,
            egress_date=egress_date or self.clock.today(),
            total_amount=allocated_total,
            allocated_amount=ZERO,
            status=EgressStatus.ISSUED.value,
            folio_eg=folio,
            payment_method=payment_method,
            check_number=check_number or None,
            reference_number=reference_number,
            notes=notes,
            created_by_id=actor_id,
        )
        self.session.add(egress)
        self.session.flush()

        supplier = None
        allocated = ZERO
        for request in sorted(requests, key=lambda r: str(r.payable_id)):
            payable = self._lock_row(Payable, request.payable_id, tenant_id, PayableNotFoundError)
            if not payable.is_payable:
                raise PayableNotPayableError(payable.id, payable.status)
            if supplier is None:
                supplier = payable.supplier_name
            elif payable.supplier_name != supplier:
                raise BusinessRuleViolation("All payables of an egress must share one supplier")
            if request.amount - payable.balance >= MONEY_EPSILON:
                raise InsufficientBalanceError(
                    payable.id,
                    request.amount,
                    payable.balance,
                    message=(
                        f"Cannot pay {request.amount} on payable {payable.id}: "
                        f"balance is {payable.balance}"
                    ),
                )

            payable.apply_amount(request.amount)
            payable.updated_by_id = actor_id
            egress.allocations.append(
                EgressAllocation(payable_id=payable.id, amount_allocated=request.amount)
            )
            allocated = round_money(allocated + request.amount)

        egress.allocated_amount = allocated
        egress.supplier_name = supplier

        account = self._lock_row(FinancialAccount, account_id, tenant_id, AccountNotFoundError)
        account.current_balance = round_money(account.current_balance - egress.total_amount)
        account.updated_by_id = actor_id
        self.session.flush()

        assert_allocation_sum(
            egress.id, egress.total_amount, [a.amount_allocated for a in egress.allocations]
        )

        AuditService(self.session, self.clock).record(
            tenant_id,
            "egress",
            egress.id,
            AuditAction.EGRESS_REGISTERED,
            actor_id,
            {
                "folio_eg": folio,
                "total_amount": egress.total_amount,
                "check_number": egress.check_number,
                "allocations": [
                    {"payable_id": a.payable_id, "amount": a.amount_allocated}
                    for a in egress.allocations
                ],
            },
        )
        logger.info(
            "egress_registered",
            extra={
                "egress_id": str(egress.id),
                "folio_eg": folio,
                "total_amount": str(egress.total_amount),
            },
        )
        return egress
