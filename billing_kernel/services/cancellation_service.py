"""
CancellationService -- reverses payments and egresses.

Responsibility:
    Cancels a recorded payment (or egress): reverses every allocation on
    its charges (payables), moves the financial account back by the
    document total and, for payments, cancels the credit lots the payment
    created.  The document row itself is kept with status CANCELLED and
    its allocation rows stay as history.

Architecture position:
    Kernel > Services.  Uses ReconciliationSelector, CreditLedgerService
    and AuditService in the caller's session.

Invariants enforced:
    - A document referenced by a conciliada/cerrada reconciliation cannot
      be cancelled.  The check runs after the document row is locked, in
      the same transaction that performs the cancellation.
    - Cancelling an already cancelled document changes nothing.
    - Charge conservation holds for every touched charge.

Failure modes:
    - PaymentNotFoundError / EgressNotFoundError.
    - DocumentReconciledError: part of a finalized reconciliation.
    - CreditAlreadyConsumedError: credit created by the payment was used.

Lock order:
    document -> charges/payables (ascending id) -> financial account -> unit.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from billing_kernel.db.types import ZERO, round_money, to_money
from billing_kernel.exceptions import (
    AccountNotFoundError,
    ChargeNotFoundError,
    DocumentReconciledError,
    EgressNotFoundError,
    PayableNotFoundError,
    PaymentNotFoundError,
)
from billing_kernel.invariants import assert_charge_consistent
from billing_kernel.logging_config import get_logger
from billing_kernel.models.account import FinancialAccount
from billing_kernel.models.audit_log import AuditAction
from billing_kernel.models.charge import Charge
from billing_kernel.models.egress import Egress, EgressStatus
from billing_kernel.models.payable import Payable
from billing_kernel.models.payment import Payment, PaymentStatus
from billing_kernel.selectors.reconciliation_selector import ReconciliationSelector
from billing_kernel.services.audit_service import AuditService
from billing_kernel.services.base import BaseService
from billing_kernel.services.credit_ledger_service import CreditLedgerService

logger = get_logger("services.cancellation")


@dataclass(frozen=True)
class CancellationResult:
    """Outcome of a cancellation request."""

    document_id: UUID
    folio: int
    already_cancelled: bool
    reversed_amount: Decimal
    cancelled_credit: Decimal = ZERO


class CancellationService(BaseService):
    """
    Cancels payments and egresses.

    Contract:
        cancel_payment() / cancel_egress() leave the document CANCELLED
        with every effect on charges, payables, credits and the account
        undone, or raise without side effects on the caller's transaction
        beyond what rollback discards.

    Non-goals:
        - Does NOT delete rows.
        - Does NOT touch reconciliations; a borrador reconciliation keeps
          its snapshot and is recomputed by the caller.
    """

    def cancel_payment(
        self,
        tenant_id: UUID,
        payment_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> CancellationResult:
        payment = self._lock_row(Payment, payment_id, tenant_id, PaymentNotFoundError)
        if payment.status == PaymentStatus.CANCELLED:
            logger.info(
                "payment_already_cancelled", extra={"payment_id": str(payment.id)}
            )
            return CancellationResult(payment.id, payment.folio_rec, True, ZERO)

        reconciliation_id = ReconciliationSelector(self.session).locking_reconciliation_id(
            payment_id=payment.id
        )
        if reconciliation_id is not None:
            raise DocumentReconciledError("payment", payment.id, reconciliation_id)

        reversed_total = ZERO
        for allocation in sorted(payment.allocations, key=lambda a: str(a.charge_id)):
            charge = self._lock_row(Charge, allocation.charge_id, tenant_id, ChargeNotFoundError)
            charge.reverse_amount(allocation.amount_allocated)
            charge.updated_by_id = actor_id
            assert_charge_consistent(charge)
            reversed_total = round_money(reversed_total + to_money(allocation.amount_allocated))

        account = self._lock_row(
            FinancialAccount, payment.financial_account_id, tenant_id, AccountNotFoundError
        )
        account.current_balance = round_money(account.current_balance - payment.total_amount)
        account.updated_by_id = actor_id

        payment.status = PaymentStatus.CANCELLED.value
        payment.cancelled_at = self.clock.now()
        payment.cancelled_by_id = actor_id
        payment.cancellation_reason = reason
        payment.updated_by_id = actor_id
        self.session.flush()

        cancelled_credit = CreditLedgerService(self.session, self.clock).cancel_payment_credits(
            tenant_id, payment.id, reason, actor_id
        )

        AuditService(self.session, self.clock).record(
            tenant_id,
            "payment",
            payment.id,
            AuditAction.PAYMENT_CANCELLED,
            actor_id,
            {
                "folio_rec": payment.folio_rec,
                "reason": reason,
                "reversed_amount": reversed_total,
                "cancelled_credit": cancelled_credit,
            },
        )
        logger.info(
            "payment_cancelled",
            extra={
                "payment_id": str(payment.id),
                "folio_rec": payment.folio_rec,
                "reversed_amount": str(reversed_total),
            },
        )
        return CancellationResult(
            payment.id, payment.folio_rec, False, reversed_total, cancelled_credit
        )

    def cancel_egress(
        self,
        tenant_id: UUID,
        egress_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> CancellationResult:
        egress = self._lock_row(Egress, egress_id, tenant_id, EgressNotFoundError)
        if egress.status == EgressStatus.CANCELLED:
            logger.info("egress_already_cancelled", extra={"egress_id": str(egress.id)})
            return CancellationResult(egress.id, egress.folio_eg, True, ZERO)

        reconciliation_id = ReconciliationSelector(self.session).locking_reconciliation_id(
            egress_id=egress.id
        )
        if reconciliation_id is not None:
            raise DocumentReconciledError("egress", egress.id, reconciliation_id)

        reversed_total = ZERO
        for allocation in sorted(egress.allocations, key=lambda a: str(a.payable_id)):
            payable = self._lock_row(
                Payable, allocation.payable_id, tenant_id, PayableNotFoundError
            )
            payable.reverse_amount(allocation.amount_allocated)
            payable.updated_by_id = actor_id
            reversed_total = round_money(reversed_total + to_money(allocation.amount_allocated))

        account = self._lock_row(
            FinancialAccount, egress.financial_account_id, tenant_id, AccountNotFoundError
        )
        account.current_balance = round_money(account.current_balance + egress.total_amount)
        account.updated_by_id = actor_id

        egress.status = EgressStatus.CANCELLED.value
        egress.cancelled_at = self.clock.now()
        egress.cancelled_by_id = actor_id
        egress.cancellation_reason = reason
        egress.updated_by_id = actor_id
        self.session.flush()

        AuditService(self.session, self.clock).record(
            tenant_id,
            "egress",
            egress.id,
            AuditAction.EGRESS_CANCELLED,
            actor_id,
            {
                "folio_eg": egress.folio_eg,
                "reason": reason,
                "reversed_amount": reversed_total,
            },
        )
        logger.info(
            "egress_cancelled",
            extra={
                "egress_id": str(egress.id),
                "folio_eg": egress.folio_eg,
                "reversed_amount": str(reversed_total),
            },
        )
        return CancellationResult(egress.id, egress.folio_eg, False, reversed_total)
