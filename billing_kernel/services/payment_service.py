"""
PaymentService -- records incoming payments and allocates them to charges.

Responsibility:
    Validates an allocation request, reserves the REC folio, settles each
    requested charge up to its balance, records the allocations, moves the
    financial account balance by the payment total and, on request, turns
    the unallocated remainder into a unit credit.  All in the caller's
    transaction.

Architecture position:
    Kernel > Services.  Uses FolioService, CreditLedgerService and
    AuditService in the same session.

Invariants enforced:
    - Charge conservation and status after every allocation.
    - sum(allocations) == payment.allocated_amount <= payment.total_amount.
    - The account balance moves by the full payment total, allocated or not.
    - Validation happens before any lock is taken; a rejected request never
      consumes a folio.

Failure modes:
    - ValidationError: non-positive amounts, duplicate charges, allocations
      above the payment total, overpayment credit without a unit.
    - ChargeNotFoundError / AccountNotFoundError: unknown or foreign rows.
    - ChargeNotPendingError: a requested charge is cancelled.
    - ChargeAlreadySettledError: the clamped allocation is zero.

Lock order:
    folio counter -> charges (ascending id) -> financial account -> unit.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping
from uuid import UUID

from sqlalchemy import select

from billing_kernel.db.types import ZERO, round_money, to_money
from billing_kernel.exceptions import (
    AccountNotFoundError,
    ChargeAlreadySettledError,
    ChargeNotFoundError,
    ChargeNotPendingError,
    ValidationError,
)
from billing_kernel.invariants import assert_allocation_sum, assert_charge_consistent
from billing_kernel.logging_config import get_logger
from billing_kernel.models.account import FinancialAccount
from billing_kernel.models.audit_log import AuditAction
from billing_kernel.models.charge import Charge, ChargeStatus
from billing_kernel.models.folio import DocumentType
from billing_kernel.models.payment import Payment, PaymentAllocation, PaymentStatus
from billing_kernel.services.audit_service import AuditService
from billing_kernel.services.base import BaseService
from billing_kernel.services.credit_ledger_service import CreditLedgerService
from billing_kernel.services.folio_service import FolioService

logger = get_logger("services.payment")


@dataclass(frozen=True)
class AllocationRequest:
    """Requested amount to settle on one charge."""

    charge_id: UUID
    amount: Decimal


def coerce_allocations(
    allocations: Iterable[AllocationRequest | Mapping[str, Any]],
) -> list[AllocationRequest]:
    """Accept AllocationRequest objects or ``{"charge_id", "amount"}`` dicts."""
    requests = []
    for item in allocations:
        if isinstance(item, AllocationRequest):
            requests.append(item)
            continue
        try:
            charge_id = item["charge_id"]
            amount = item["amount"]
        except (KeyError, TypeError):
            raise ValidationError(
                "Each allocation needs a charge_id and an amount", field="allocations"
            ) from None
        if not isinstance(charge_id, UUID):
            try:
                charge_id = UUID(str(charge_id))
            except ValueError:
                raise ValidationError(
                    f"Invalid charge id: {charge_id!r}", field="allocations"
                ) from None
        requests.append(AllocationRequest(charge_id=charge_id, amount=amount))
    return requests


def validate_allocations(
    total_amount: Decimal, requests: list[AllocationRequest]
) -> list[AllocationRequest]:
    """Normalize amounts and reject malformed requests.  Pure, lock-free."""
    if total_amount <= ZERO:
        raise ValidationError("Total amount must be greater than zero", field="total_amount")

    normalized = []
    seen = set()
    for request in requests:
        try:
            amount = to_money(request.amount)
        except (TypeError, ArithmeticError):
            raise ValidationError(
                f"Invalid amount for charge {request.charge_id}", field="allocations"
            ) from None
        if amount <= ZERO:
            raise ValidationError(
                f"Allocation amount for charge {request.charge_id} must be greater than zero",
                field="allocations",
            )
        if request.charge_id in seen:
            raise ValidationError(
                f"Charge {request.charge_id} appears more than once", field="allocations"
            )
        seen.add(request.charge_id)
        normalized.append(AllocationRequest(request.charge_id, amount))

    requested = sum((r.amount for r in normalized), ZERO)
    if requested > total_amount:
        raise ValidationError(
            f"Allocations ({requested}) exceed the payment total ({total_amount})",
            field="allocations",
        )
    return normalized


class PaymentService(BaseService):
    """
    Applies payments to charges.

    Contract:
        apply_payment() either records the payment with all its allocations,
        the account movement and the audit row, or raises and leaves the
        caller's transaction to roll back.

    Non-goals:
        - Does NOT choose which charges to pay; the caller lists them.
        - Does NOT cancel payments; see CancellationService.
    """

    def apply_payment(
        self,
        tenant_id: UUID,
        account_id: UUID,
        total_amount: Decimal,
        allocations: Iterable[AllocationRequest | Mapping[str, Any]],
        actor_id: UUID,
        payment_date: date | None = None,
        unit_id: UUID | None = None,
        payment_method: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
        credit_overpayment: bool = False,
    ) -> Payment:
        """
        Record a payment and settle the listed charges.

        Each allocation is clamped to min(requested, charge balance); the
        clamp is deliberate and the actual amounts are on the returned
        payment's allocations.

        Returns:
            The flushed Payment with its folio and allocations.
        """
        try:
            total_amount = to_money(total_amount)
        except (TypeError, ArithmeticError):
            raise ValidationError("Invalid total amount", field="total_amount") from None
        requests = validate_allocations(total_amount, coerce_allocations(allocations))
        if credit_overpayment and unit_id is None:
            raise ValidationError(
                "A unit is required to credit an overpayment", field="unit_id"
            )

        account_exists = self.session.execute(
            select(FinancialAccount.id).where(
                FinancialAccount.id == account_id,
                FinancialAccount.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        if account_exists is None:
            raise AccountNotFoundError(account_id)

        folio = FolioService(self.session, self.clock).next_folio(
            tenant_id, DocumentType.REC
        )

        payment = Payment(
            tenant_id=tenant_id,
            financial_account_id=account_id,
            unit_id=unit_id,
            payment_date=payment_date or self.clock.today(),
            total_amount=total_amount,
            allocated_amount=ZERO,
            status=PaymentStatus.AVAILABLE.value,
            folio_rec=folio,
            payment_method=payment_method,
            reference_number=reference_number,
            notes=notes,
            created_by_id=actor_id,
        )
        self.session.add(payment)
        self.session.flush()

        charges = []
        allocated = ZERO
        for request in sorted(requests, key=lambda r: str(r.charge_id)):
            charge = self._lock_row(Charge, request.charge_id, tenant_id, ChargeNotFoundError)
            if charge.status == ChargeStatus.CANCELLED:
                raise ChargeNotPendingError(charge.id, charge.status)

            applied = min(request.amount, to_money(charge.balance))
            if applied <= ZERO:
                raise ChargeAlreadySettledError(charge.id)
            if applied < request.amount:
                logger.info(
                    "allocation_clamped",
                    extra={
                        "charge_id": str(charge.id),
                        "requested": str(request.amount),
                        "applied": str(applied),
                    },
                )

            charge.apply_amount(applied)
            charge.updated_by_id = actor_id
            payment.allocations.append(
                PaymentAllocation(charge_id=charge.id, amount_allocated=applied)
            )
            allocated = round_money(allocated + applied)
            charges.append(charge)

        payment.allocated_amount = allocated

        account = self._lock_row(FinancialAccount, account_id, tenant_id, AccountNotFoundError)
        account.current_balance = round_money(account.current_balance + total_amount)
        account.updated_by_id = actor_id
        self.session.flush()

        credit = None
        unallocated = round_money(total_amount - allocated)
        if credit_overpayment and unallocated > ZERO:
            credit = CreditLedgerService(self.session, self.clock).credit_from_payment(
                tenant_id, unit_id, payment.id, unallocated, actor_id
            )

        for charge in charges:
            assert_charge_consistent(charge)
        assert_allocation_sum(
            payment.id,
            payment.total_amount,
            [a.amount_allocated for a in payment.allocations],
        )

        AuditService(self.session, self.clock).record(
            tenant_id,
            "payment",
            payment.id,
            AuditAction.PAYMENT_APPLIED,
            actor_id,
            {
                "folio_rec": folio,
                "total_amount": total_amount,
                "allocated_amount": allocated,
                "allocations": [
                    {"charge_id": a.charge_id, "amount": a.amount_allocated}
                    for a in payment.allocations
                ],
                "credit_id": credit.id if credit is not None else None,
            },
        )
        logger.info(
            "payment_applied",
            extra={
                "payment_id": str(payment.id),
                "folio_rec": folio,
                "total_amount": str(total_amount),
                "allocated_amount": str(allocated),
                "allocation_count": len(charges),
            },
        )
        return payment
