"""
CreditSelector -- read-only queries over the unit credit ledger.

The ledger sum is the authoritative credit balance; Unit.credit_balance is
a cache kept in step by CreditLedgerService.  ledger_balance() reads the
sum so tests and repair jobs can compare the two.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from billing_kernel.db.types import to_money
from billing_kernel.models.credit import CreditApplication, CreditStatus, UnitCredit
from billing_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class CreditLot:
    credit_id: UUID
    unit_id: UUID
    amount: Decimal
    remaining_amount: Decimal
    created_at: datetime
    entry_seq: int
    source: str


class CreditSelector(BaseSelector):
    """Queries for unit credit balances, lots and applications."""

    def ledger_balance(self, unit_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.sum(UnitCredit.amount)).where(UnitCredit.unit_id == unit_id)
        ).scalar()
        return to_money(total)

    def active_lots_total(self, unit_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.sum(UnitCredit.remaining_amount)).where(
                UnitCredit.unit_id == unit_id,
                UnitCredit.status == CreditStatus.ACTIVE.value,
            )
        ).scalar()
        return to_money(total)

    def active_lots(self, unit_id: UUID) -> list[CreditLot]:
        """Active lots in FIFO order (oldest first)."""
        rows = self.session.execute(
            select(UnitCredit)
            .where(
                UnitCredit.unit_id == unit_id,
                UnitCredit.status == CreditStatus.ACTIVE.value,
            )
            .order_by(UnitCredit.created_at, UnitCredit.entry_seq)
        ).scalars()
        return [
            CreditLot(
                credit_id=row.id,
                unit_id=row.unit_id,
                amount=to_money(row.amount),
                remaining_amount=to_money(row.remaining_amount),
                created_at=row.created_at,
                entry_seq=row.entry_seq,
                source=str(getattr(row.source, "value", row.source)),
            )
            for row in rows
        ]

    def ledger(self, unit_id: UUID) -> list[UnitCredit]:
        """All entries of a unit in ledger order."""
        return list(
            self.session.execute(
                select(UnitCredit)
                .where(UnitCredit.unit_id == unit_id)
                .order_by(UnitCredit.entry_seq)
            ).scalars()
        )

    def applications_for_charge(self, charge_id: UUID) -> list[CreditApplication]:
        return list(
            self.session.execute(
                select(CreditApplication)
                .where(CreditApplication.charge_id == charge_id)
                .order_by(CreditApplication.applied_at)
            ).scalars()
        )

    def unbalanced_transfer_ids(self, tenant_id: UUID) -> list[UUID]:
        """Transfers whose entries do not net to zero (half-applied)."""
        rows = self.session.execute(
            select(UnitCredit.transfer_id)
            .where(
                UnitCredit.tenant_id == tenant_id,
                UnitCredit.transfer_id.is_not(None),
            )
            .group_by(UnitCredit.transfer_id)
            .having(func.sum(UnitCredit.amount) != 0)
        ).scalars()
        return list(rows)
