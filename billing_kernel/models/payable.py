"""
Module: billing_kernel.models.payable
Responsibility: ORM persistence for accounts-payable orders (supplier
    invoices) that egresses settle.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - paid_amount <= total_amount.
    - Only APPROVED or PARTIALLY_PAID payables accept egress allocations.
    - recompute_status() derives PAID / PARTIALLY_PAID / APPROVED from
      paid_amount after every allocation or reversal.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.db.types import MONEY_EPSILON, ZERO, round_money


class PayableStatus(str, Enum):
    """Contract: PENDING_APPROVAL -> APPROVED -> PARTIALLY_PAID -> PAID.
    CANCELLED is reachable only while nothing has been paid."""

    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    CANCELLED = "cancelled"


PAYABLE_STATUSES = (PayableStatus.APPROVED, PayableStatus.PARTIALLY_PAID)


class Payable(TrackedBase):
    """A supplier invoice owed by the condominium."""

    __tablename__ = "payables"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="chk_payable_total_positive"),
        CheckConstraint("paid_amount <= total_amount", name="chk_payable_not_overpaid"),
    )

    supplier_name: Mapped[str] = mapped_column(String(200), nullable=False)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    status: Mapped[PayableStatus] = mapped_column(
        String(20),
        default=PayableStatus.PENDING_APPROVAL,
        nullable=False,
    )

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<Payable {self.supplier_name}: {self.paid_amount}/{self.total_amount}>"

    @property
    def balance(self) -> Decimal:
        return round_money(self.total_amount - self.paid_amount)

    @property
    def is_payable(self) -> bool:
        return self.status in PAYABLE_STATUSES

    def recompute_status(self) -> None:
        if self.status in (PayableStatus.CANCELLED, PayableStatus.PENDING_APPROVAL):
            return
        if abs(self.balance) < MONEY_EPSILON:
            self.status = PayableStatus.PAID.value
        elif self.paid_amount > ZERO:
            self.status = PayableStatus.PARTIALLY_PAID.value
        else:
            self.status = PayableStatus.APPROVED.value

    def apply_amount(self, amount: Decimal) -> None:
        amount = round_money(amount)
        if amount <= ZERO or amount - self.balance >= MONEY_EPSILON:
            raise ValueError(
                f"Cannot apply {amount} to payable {self.id} with balance {self.balance}"
            )
        self.paid_amount = round_money(self.paid_amount + amount)
        self.recompute_status()

    def reverse_amount(self, amount: Decimal) -> None:
        amount = round_money(amount)
        if amount <= ZERO or amount - self.paid_amount >= MONEY_EPSILON:
            raise ValueError(
                f"Cannot reverse {amount} on payable {self.id} with paid {self.paid_amount}"
            )
        self.paid_amount = round_money(self.paid_amount - amount)
        self.recompute_status()
