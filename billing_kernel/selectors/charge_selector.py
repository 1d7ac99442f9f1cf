"""
ChargeSelector -- read-only queries over charges and their settlements.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from billing_kernel.db.types import to_money
from billing_kernel.models.charge import Charge, ChargeStatus
from billing_kernel.models.credit import CreditApplication
from billing_kernel.models.payment import Payment, PaymentAllocation, PaymentStatus
from billing_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class OutstandingCharge:
    """A pending charge as shown on a unit's statement."""

    charge_id: UUID
    unit_id: UUID
    charge_type: str
    period: str | None
    due_date: date
    description: str
    total_amount: Decimal
    balance: Decimal


class ChargeSelector(BaseSelector):
    """Queries for charge balances and live settlements."""

    def outstanding_charges(
        self, tenant_id: UUID, unit_id: UUID | None = None
    ) -> list[OutstandingCharge]:
        """Pending charges ordered oldest due date first."""
        stmt = select(Charge).where(
            Charge.tenant_id == tenant_id,
            Charge.status == ChargeStatus.PENDING.value,
        )
        if unit_id is not None:
            stmt = stmt.where(Charge.unit_id == unit_id)
        stmt = stmt.order_by(Charge.due_date, Charge.id)

        return [
            OutstandingCharge(
                charge_id=charge.id,
                unit_id=charge.unit_id,
                charge_type=str(getattr(charge.charge_type, "value", charge.charge_type)),
                period=charge.period,
                due_date=charge.due_date,
                description=charge.description,
                total_amount=to_money(charge.total_amount),
                balance=to_money(charge.balance),
            )
            for charge in self.session.execute(stmt).scalars()
        ]

    def unit_balance_due(self, tenant_id: UUID, unit_id: UUID) -> Decimal:
        """Sum of pending balances for a unit."""
        total = self.session.execute(
            select(func.sum(Charge.balance)).where(
                Charge.tenant_id == tenant_id,
                Charge.unit_id == unit_id,
                Charge.status == ChargeStatus.PENDING.value,
            )
        ).scalar()
        return to_money(total)

    def live_payment_allocation_total(self, charge_id: UUID) -> Decimal:
        """Amount allocated to a charge by payments that are not cancelled."""
        total = self.session.execute(
            select(func.sum(PaymentAllocation.amount_allocated))
            .join(Payment, Payment.id == PaymentAllocation.payment_id)
            .where(
                PaymentAllocation.charge_id == charge_id,
                Payment.status == PaymentStatus.AVAILABLE.value,
            )
        ).scalar()
        return to_money(total)

    def live_credit_application_total(self, charge_id: UUID) -> Decimal:
        """Credit applied to a charge and not reversed."""
        total = self.session.execute(
            select(func.sum(CreditApplication.amount_applied)).where(
                CreditApplication.charge_id == charge_id,
                CreditApplication.is_reversed.is_(False),
            )
        ).scalar()
        return to_money(total)

    def child_charge_total(self, parent_charge_id: UUID) -> Decimal:
        """Total of non-cancelled charges generated from a parent charge."""
        total = self.session.execute(
            select(func.sum(Charge.total_amount)).where(
                Charge.parent_charge_id == parent_charge_id,
                Charge.status != ChargeStatus.CANCELLED.value,
            )
        ).scalar()
        return to_money(total)
