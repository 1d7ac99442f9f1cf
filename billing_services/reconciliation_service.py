"""
billing_services.reconciliation_service -- bank reconciliation snapshots.

Responsibility:
    Builds a Reconciliation for one financial account and cutoff date from
    the payments and egresses the user selected: validates and locks the
    documents, runs the pure matcher, and persists the snapshot with its
    items.  Also edits drafts, closes and deletes reconciliations.

Architecture position:
    Services -- orchestration over the reconciliation matcher engine and
    the kernel's models, selectors and audit service.

Invariants enforced:
    - Opening balance is the closing_balance_calculated of the account's
      last conciliada/cerrada reconciliation, or the account's
      initial_balance for the first one.  period_start is the day after
      that reconciliation's cutoff.
    - Selected documents are locked FOR SHARE, belong to the account and
      tenant, are not cancelled, fall inside the period, and are not part
      of another finalized reconciliation.
    - At most one borrador per account and cutoff date.
    - A borrador is only recomputed while its period still starts where the
      account's locked chain ends; otherwise it must be recomputed from
      scratch.
    - A conciliada/cerrada reconciliation cannot be edited; a cerrada one
      cannot be deleted.  Reconciliations are deleted newest first.

Failure modes:
    - ValidationError: bad cutoff, documents outside the period or of
      another account, duplicate selections.
    - BusinessRuleViolation: cancelled document, closing a draft, deleting
      out of order.
    - DocumentReconciledError: document already in a finalized reconciliation.
    - ReconciliationLockedError: editing or deleting a locked snapshot.
    - ReconciliationDraftExistsError: a second borrador for the same cutoff.
    - StaleReconciliationError: editing a borrador after the account's
      locked chain moved.

Lock order:
    payments (ascending id) -> egresses (ascending id) -> account ->
    reconciliation.  Cancellation locks a document before the account, so
    the two never wait on each other in opposite order.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from billing_engines.reconciliation import CashMovement, MatchResult, MatchStatus, match
from billing_kernel.db.types import to_money
from billing_kernel.exceptions import (
    AccountNotFoundError,
    BusinessRuleViolation,
    ConcurrencyConflict,
    DocumentReconciledError,
    EgressNotFoundError,
    PaymentNotFoundError,
    ReconciliationLockedError,
    ReconciliationDraftExistsError,
    ReconciliationNotFoundError,
    StaleReconciliationError,
    ValidationError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.account import FinancialAccount
from billing_kernel.models.audit_log import AuditAction
from billing_kernel.models.egress import Egress, EgressStatus
from billing_kernel.models.payment import Payment, PaymentStatus
from billing_kernel.models.reconciliation import (
    Reconciliation,
    ReconciliationItem,
    ReconciliationStatus,
    TransactionType,
)
from billing_kernel.selectors.reconciliation_selector import ReconciliationSelector
from billing_kernel.services.audit_service import AuditService
from billing_kernel.services.base import BaseService

logger = get_logger("services.reconciliation")

# Period start of an account's first reconciliation.
FIRST_PERIOD_START = date(2000, 1, 1)


@dataclass(frozen=True)
class EgressSelection:
    """An egress chosen for a reconciliation and whether its check cleared."""

    egress_id: UUID
    is_check_cashed: bool = False


def _uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid id: {value!r}", field=field) from None


def coerce_egress_selections(
    selections: Iterable[EgressSelection | Mapping[str, Any] | UUID],
) -> list[EgressSelection]:
    """Accept EgressSelection, ``{"egress_id", "is_check_cashed"}`` or a bare id."""
    result = []
    for item in selections:
        if isinstance(item, EgressSelection):
            result.append(item)
        elif isinstance(item, Mapping):
            if "egress_id" not in item:
                raise ValidationError("Egress selection needs an egress_id", field="selected_egresses")
            result.append(
                EgressSelection(
                    _uuid(item["egress_id"], "selected_egresses"),
                    bool(item.get("is_check_cashed", False)),
                )
            )
        else:
            result.append(EgressSelection(_uuid(item, "selected_egresses")))
    return result


class ReconciliationService(BaseService):
    """
    Computes and manages bank reconciliations.

    Contract:
        Every method flushes in the caller's transaction and writes one
        audit row.

    Non-goals:
        - Does NOT import bank statements; the caller supplies the
          closing balance and the selection.
    """

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_in_period(self, kind: str, document_id: UUID, doc_date: date, start: date, end: date) -> None:
        if not start <= doc_date <= end:
            raise ValidationError(
                f"{kind} {document_id} dated {doc_date} is outside the period {start}..{end}",
                field="selected_documents",
            )

    def _check_not_reconciled(
        self,
        kind: str,
        document_id: UUID,
        exclude: UUID | None,
        **document: UUID,
    ) -> None:
        locking = ReconciliationSelector(self.session).locking_reconciliation_id(
            exclude_reconciliation_id=exclude, **document
        )
        if locking is not None:
            raise DocumentReconciledError(kind, document_id, locking)

    def _check_chain(self, reconciliation: Reconciliation, account: FinancialAccount) -> None:
        """Raise unless the draft still continues the account's locked chain.

        Caller must hold the account lock.
        """
        last = ReconciliationSelector(self.session).last_locked(
            reconciliation.tenant_id, reconciliation.financial_account_id
        )
        if last is None:
            expected_start = FIRST_PERIOD_START
            expected_opening = to_money(account.initial_balance)
        else:
            expected_start = last.cutoff_date + timedelta(days=1)
            expected_opening = to_money(last.closing_balance_calculated)

        if (
            (last is not None and last.cutoff_date >= reconciliation.cutoff_date)
            or reconciliation.period_start != expected_start
            or to_money(reconciliation.opening_balance) != expected_opening
        ):
            logger.warning(
                "reconciliation_stale",
                extra={
                    "reconciliation_id": str(reconciliation.id),
                    "period_start": reconciliation.period_start,
                    "expected_period_start": expected_start,
                },
            )
            raise StaleReconciliationError(
                reconciliation.id,
                last.id if last is not None else None,
                last.cutoff_date if last is not None else None,
            )

    def _lock_selection(
        self,
        tenant_id: UUID,
        account_id: UUID,
        payment_ids: list[UUID],
        egress_selections: list[EgressSelection],
        period_start: date,
        cutoff_date: date,
        exclude_reconciliation_id: UUID | None = None,
    ) -> tuple[list[tuple[Payment, CashMovement]], list[tuple[Egress, CashMovement]]]:
        if len(set(payment_ids)) != len(payment_ids):
            raise ValidationError("A payment is selected more than once", field="selected_payments")
        egress_ids = [s.egress_id for s in egress_selections]
        if len(set(egress_ids)) != len(egress_ids):
            raise ValidationError("An egress is selected more than once", field="selected_egresses")

        payments = []
        for payment_id in sorted(payment_ids, key=str):
            payment = self._lock_row(Payment, payment_id, tenant_id, PaymentNotFoundError, read=True)
            if payment.financial_account_id != account_id:
                raise ValidationError(
                    f"Payment {payment.id} belongs to another account", field="selected_payments"
                )
            if payment.status == PaymentStatus.CANCELLED:
                raise BusinessRuleViolation(f"Payment {payment.id} is cancelled")
            self._check_in_period("Payment", payment.id, payment.payment_date, period_start, cutoff_date)
            self._check_not_reconciled(
                "payment", payment.id, exclude_reconciliation_id, payment_id=payment.id
            )
            payments.append((payment, CashMovement(payment.id, payment.total_amount)))

        egresses = []
        for selection in sorted(egress_selections, key=lambda s: str(s.egress_id)):
            egress = self._lock_row(Egress, selection.egress_id, tenant_id, EgressNotFoundError, read=True)
            if egress.financial_account_id != account_id:
                raise ValidationError(
                    f"Egress {egress.id} belongs to another account", field="selected_egresses"
                )
            if egress.status == EgressStatus.CANCELLED:
                raise BusinessRuleViolation(f"Egress {egress.id} is cancelled")
            self._check_in_period("Egress", egress.id, egress.egress_date, period_start, cutoff_date)
            self._check_not_reconciled(
                "egress", egress.id, exclude_reconciliation_id, egress_id=egress.id
            )
            egresses.append(
                (
                    egress,
                    CashMovement(
                        egress.id,
                        egress.total_amount,
                        has_check=egress.has_check,
                        is_check_cashed=selection.is_check_cashed,
                    ),
                )
            )
        return payments, egresses

    def _write_snapshot(
        self,
        reconciliation: Reconciliation,
        outcome: MatchResult,
        payments: list[tuple[Payment, CashMovement]],
        egresses: list[tuple[Egress, CashMovement]],
        actor_id: UUID,
    ) -> None:
        reconciliation.closing_balance_calculated = outcome.books_balance
        reconciliation.in_transit_total = outcome.in_transit_total
        reconciliation.difference = outcome.difference
        reconciliation.status = ReconciliationStatus(outcome.status.value).value
        if outcome.status == MatchStatus.RECONCILED:
            reconciliation.reconciled_at = self.clock.now()
            reconciliation.reconciled_by_id = actor_id

        reconciliation.items.clear()
        self.session.flush()
        for payment, movement in payments:
            reconciliation.items.append(
                ReconciliationItem(
                    transaction_type=TransactionType.INGRESO.value,
                    payment_id=payment.id,
                    amount=movement.amount,
                    is_check_cashed=True,
                    is_in_transit=False,
                )
            )
        for egress, movement in egresses:
            reconciliation.items.append(
                ReconciliationItem(
                    transaction_type=TransactionType.EGRESO.value,
                    egress_id=egress.id,
                    amount=movement.amount,
                    is_check_cashed=movement.is_check_cashed or not movement.has_check,
                    is_in_transit=movement.in_transit,
                )
            )
        self.session.flush()

    def _match(
        self,
        opening: Decimal,
        bank: Decimal,
        payments: list[tuple[Payment, CashMovement]],
        egresses: list[tuple[Egress, CashMovement]],
    ) -> MatchResult:
        return match(opening, bank, [m for _, m in payments], [m for _, m in egresses])

    def _audit(self, tenant_id: UUID, reconciliation: Reconciliation, action: AuditAction, actor_id: UUID) -> None:
        AuditService(self.session, self.clock).record(
            tenant_id,
            "reconciliation",
            reconciliation.id,
            action,
            actor_id,
            {
                "status": reconciliation.status,
                "cutoff_date": reconciliation.cutoff_date,
                "difference": reconciliation.difference,
                "item_count": len(reconciliation.items),
            },
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def compute_reconciliation(
        self,
        tenant_id: UUID,
        account_id: UUID,
        cutoff_date: date,
        bank_closing_balance: Decimal,
        selected_payments: Iterable[UUID | str],
        selected_egresses: Iterable[EgressSelection | Mapping[str, Any] | UUID],
        actor_id: UUID,
        notes: str | None = None,
    ) -> Reconciliation:
        """
        Reconcile an account up to ``cutoff_date``.

        Returns:
            The persisted Reconciliation, status conciliada when the
            difference is below 0.01 and borrador otherwise.
        """
        try:
            bank = to_money(bank_closing_balance)
        except (TypeError, ArithmeticError):
            raise ValidationError("Invalid bank closing balance", field="bank_closing_balance") from None
        payment_ids = [_uuid(p, "selected_payments") for p in selected_payments]
        egress_selections = coerce_egress_selections(selected_egresses)

        selector = ReconciliationSelector(self.session)
        last = selector.last_locked(tenant_id, account_id)
        if last is not None:
            if cutoff_date <= last.cutoff_date:
                raise ValidationError(
                    f"Cutoff {cutoff_date} must be after the last reconciliation cutoff "
                    f"{last.cutoff_date}",
                    field="cutoff_date",
                )
            period_start = last.cutoff_date + timedelta(days=1)
        else:
            period_start = FIRST_PERIOD_START

        payments, egresses = self._lock_selection(
            tenant_id, account_id, payment_ids, egress_selections, period_start, cutoff_date
        )

        account = self._lock_row(FinancialAccount, account_id, tenant_id, AccountNotFoundError)
        latest = selector.last_locked(tenant_id, account_id)
        if (latest.id if latest else None) != (last.id if last else None):
            raise ConcurrencyConflict(
                "compute_reconciliation", "account was reconciled concurrently"
            )
        existing = selector.draft_for_cutoff(tenant_id, account_id, cutoff_date)
        if existing is not None:
            raise ReconciliationDraftExistsError(existing.id, cutoff_date)
        opening = (
            to_money(last.closing_balance_calculated)
            if last is not None
            else to_money(account.initial_balance)
        )

        outcome = self._match(opening, bank, payments, egresses)

        reconciliation = Reconciliation(
            tenant_id=tenant_id,
            financial_account_id=account_id,
            cutoff_date=cutoff_date,
            period_start=period_start,
            period_end=cutoff_date,
            opening_balance=opening,
            closing_balance_bank=bank,
            closing_balance_calculated=outcome.books_balance,
            in_transit_total=outcome.in_transit_total,
            difference=outcome.difference,
            status=ReconciliationStatus.BORRADOR.value,
            notes=notes,
            created_by_id=actor_id,
        )
        self.session.add(reconciliation)
        self.session.flush()
        self._write_snapshot(reconciliation, outcome, payments, egresses, actor_id)

        self._audit(tenant_id, reconciliation, AuditAction.RECONCILIATION_COMPUTED, actor_id)
        logger.info(
            "reconciliation_computed",
            extra={
                "reconciliation_id": str(reconciliation.id),
                "account_id": str(account_id),
                "status": reconciliation.status,
                "difference": str(outcome.difference),
            },
        )
        return reconciliation

    def update_draft(
        self,
        tenant_id: UUID,
        reconciliation_id: UUID,
        selected_payments: Iterable[UUID | str],
        selected_egresses: Iterable[EgressSelection | Mapping[str, Any] | UUID],
        actor_id: UUID,
        bank_closing_balance: Decimal | None = None,
        notes: str | None = None,
    ) -> Reconciliation:
        """Replace a borrador's selection (and optionally its bank balance) and recompute."""
        payment_ids = [_uuid(p, "selected_payments") for p in selected_payments]
        egress_selections = coerce_egress_selections(selected_egresses)

        current = self.session.get(Reconciliation, reconciliation_id)
        if current is None or current.tenant_id != tenant_id:
            raise ReconciliationNotFoundError(reconciliation_id)
        account_id = current.financial_account_id

        payments, egresses = self._lock_selection(
            tenant_id,
            account_id,
            payment_ids,
            egress_selections,
            current.period_start,
            current.cutoff_date,
            exclude_reconciliation_id=reconciliation_id,
        )
        account = self._lock_row(FinancialAccount, account_id, tenant_id, AccountNotFoundError)
        reconciliation = self._lock_row(
            Reconciliation, reconciliation_id, tenant_id, ReconciliationNotFoundError
        )
        if reconciliation.status != ReconciliationStatus.BORRADOR:
            raise ReconciliationLockedError(reconciliation.id, reconciliation.status)
        self._check_chain(reconciliation, account)

        if bank_closing_balance is not None:
            reconciliation.closing_balance_bank = to_money(bank_closing_balance)
        if notes is not None:
            reconciliation.notes = notes
        reconciliation.updated_by_id = actor_id

        outcome = self._match(
            to_money(reconciliation.opening_balance),
            to_money(reconciliation.closing_balance_bank),
            payments,
            egresses,
        )
        self._write_snapshot(reconciliation, outcome, payments, egresses, actor_id)

        self._audit(tenant_id, reconciliation, AuditAction.RECONCILIATION_UPDATED, actor_id)
        logger.info(
            "reconciliation_updated",
            extra={
                "reconciliation_id": str(reconciliation.id),
                "status": reconciliation.status,
                "difference": str(outcome.difference),
            },
        )
        return reconciliation

    def close_reconciliation(
        self, tenant_id: UUID, reconciliation_id: UUID, actor_id: UUID
    ) -> Reconciliation:
        """conciliada -> cerrada.  Closing a cerrada one is a no-op."""
        reconciliation = self._lock_row(
            Reconciliation, reconciliation_id, tenant_id, ReconciliationNotFoundError
        )
        if reconciliation.status == ReconciliationStatus.CERRADA:
            return reconciliation
        if reconciliation.status != ReconciliationStatus.CONCILIADA:
            raise BusinessRuleViolation(
                f"Reconciliation {reconciliation.id} has a difference of "
                f"{reconciliation.difference} and cannot be closed"
            )

        reconciliation.status = ReconciliationStatus.CERRADA.value
        reconciliation.closed_at = self.clock.now()
        reconciliation.closed_by_id = actor_id
        reconciliation.updated_by_id = actor_id
        self.session.flush()

        self._audit(tenant_id, reconciliation, AuditAction.RECONCILIATION_CLOSED, actor_id)
        logger.info("reconciliation_closed", extra={"reconciliation_id": str(reconciliation.id)})
        return reconciliation

    def delete_reconciliation(
        self, tenant_id: UUID, reconciliation_id: UUID, actor_id: UUID
    ) -> None:
        """
        Delete a borrador or conciliada reconciliation, releasing its documents.

        A conciliada reconciliation can only be deleted when it is the
        account's latest finalized one, so later opening balances stay valid.
        """
        reconciliation = self._lock_row(
            Reconciliation, reconciliation_id, tenant_id, ReconciliationNotFoundError
        )
        if reconciliation.status == ReconciliationStatus.CERRADA:
            raise ReconciliationLockedError(reconciliation.id, reconciliation.status)
        if reconciliation.status == ReconciliationStatus.CONCILIADA:
            last = ReconciliationSelector(self.session).last_locked(
                tenant_id, reconciliation.financial_account_id
            )
            if last is not None and last.id != reconciliation.id:
                raise BusinessRuleViolation(
                    f"Reconciliation {reconciliation.id} is not the latest for its "
                    "account; delete the later ones first"
                )

        self._audit(tenant_id, reconciliation, AuditAction.RECONCILIATION_DELETED, actor_id)
        self.session.delete(reconciliation)
        self.session.flush()
        logger.info("reconciliation_deleted", extra={"reconciliation_id": str(reconciliation_id)})

    def is_document_reconciled(
        self, *, payment_id: UUID | None = None, egress_id: UUID | None = None
    ) -> bool:
        return ReconciliationSelector(self.session).is_document_reconciled(
            payment_id=payment_id, egress_id=egress_id
        )
