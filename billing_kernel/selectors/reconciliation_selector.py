"""
ReconciliationSelector -- which documents are locked by a finalized
reconciliation, and where an account's reconciliation chain ends.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from billing_kernel.models.reconciliation import (
    LOCKED_RECONCILIATION_STATUSES,
    Reconciliation,
    ReconciliationItem,
    ReconciliationStatus,
)
from billing_kernel.selectors.base import BaseSelector

_LOCKED = [status.value for status in LOCKED_RECONCILIATION_STATUSES]


class ReconciliationSelector(BaseSelector):
    """Queries over reconciliations and their items."""

    def locking_reconciliation_id(
        self,
        *,
        payment_id: UUID | None = None,
        egress_id: UUID | None = None,
        exclude_reconciliation_id: UUID | None = None,
    ) -> UUID | None:
        """Id of a conciliada/cerrada reconciliation holding the document."""
        if (payment_id is None) == (egress_id is None):
            raise ValueError("Pass exactly one of payment_id or egress_id")

        stmt = (
            select(Reconciliation.id)
            .join(
                ReconciliationItem,
                ReconciliationItem.reconciliation_id == Reconciliation.id,
            )
            .where(Reconciliation.status.in_(_LOCKED))
        )
        if payment_id is not None:
            stmt = stmt.where(ReconciliationItem.payment_id == payment_id)
        else:
            stmt = stmt.where(ReconciliationItem.egress_id == egress_id)
        if exclude_reconciliation_id is not None:
            stmt = stmt.where(Reconciliation.id != exclude_reconciliation_id)
        return self.session.execute(stmt.limit(1)).scalar_one_or_none()

    def is_document_reconciled(
        self, *, payment_id: UUID | None = None, egress_id: UUID | None = None
    ) -> bool:
        return (
            self.locking_reconciliation_id(payment_id=payment_id, egress_id=egress_id)
            is not None
        )

    def last_locked(
        self, tenant_id: UUID, account_id: UUID
    ) -> Reconciliation | None:
        """Most recent conciliada/cerrada reconciliation of an account."""
        return self.session.execute(
            select(Reconciliation)
            .where(
                Reconciliation.tenant_id == tenant_id,
                Reconciliation.financial_account_id == account_id,
                Reconciliation.status.in_(_LOCKED),
            )
            .order_by(Reconciliation.cutoff_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def for_account(self, tenant_id: UUID, account_id: UUID) -> list[Reconciliation]:
        return list(
            self.session.execute(
                select(Reconciliation)
                .where(
                    Reconciliation.tenant_id == tenant_id,
                    Reconciliation.financial_account_id == account_id,
                )
                .order_by(Reconciliation.cutoff_date)
            ).scalars()
        )

    def draft_for_cutoff(
        self, tenant_id: UUID, account_id: UUID, cutoff_date: date
    ) -> Reconciliation | None:
        """The account's borrador reconciliation at ``cutoff_date``, if any."""
        return self.session.execute(
            select(Reconciliation)
            .where(
                Reconciliation.tenant_id == tenant_id,
                Reconciliation.financial_account_id == account_id,
                Reconciliation.cutoff_date == cutoff_date,
                Reconciliation.status == ReconciliationStatus.BORRADOR.value,
            )
            .limit(1)
        ).scalar_one_or_none()
