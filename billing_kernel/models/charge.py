"""
Module: billing_kernel.models.charge
Responsibility: ORM persistence for charges (receivables owed by a unit).
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - Conservation: paid_amount + balance == total_amount, balance >= 0.
    - Status: a non-cancelled charge is PAID iff |balance| < 0.01,
      otherwise PENDING.  recompute_status() is the only place that derives
      it.
    - Charges are never physically deleted; cancellation is a status.

Failure modes:
    - ValueError from apply_amount()/reverse_amount() when the requested
      change would break conservation.  Services check first and raise
      typed errors; the ValueError is a last line of defence.

Audit relevance:
    balance is stored (not derived on read) so that the row lock taken by
    PaymentService covers the value being decremented.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.db.types import MONEY_EPSILON, ZERO, round_money


class ChargeStatus(str, Enum):
    """Lifecycle status of a charge.

    Contract: PENDING <-> PAID as payments are applied and reversed.
    CANCELLED is terminal.
    """

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class ChargeType(str, Enum):
    MONTHLY_FEE = "monthly_fee"
    UTILITY = "utility"
    EXTRAORDINARY = "extraordinary"
    OPENING_BALANCE = "opening_balance"
    FINE = "fine"
    RESERVE = "reserve"
    INTEREST = "interest"
    EXTRAORDINARY_INSTALLMENT = "extraordinary_installment"
    OTHER = "other"


class Charge(TrackedBase):
    """
    An amount a unit owes.

    Contract:
        Mutated only through apply_amount() / reverse_amount() / cancel()
        while the row is locked by the calling service.

    Guarantees:
        - paid_amount + balance == total_amount after every mutator.
        - status is recomputed by every mutator.

    Non-goals:
        - This model does NOT check for live allocations before cancel();
          ChargeService does.
    """

    __tablename__ = "charges"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="chk_charge_total_positive"),
        CheckConstraint("balance >= 0", name="chk_charge_balance_non_negative"),
        Index("idx_charge_unit_status", "unit_id", "status"),
        Index("idx_charge_batch", "batch_id"),
    )

    unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("units.id"),
        nullable=False,
    )

    charge_type: Mapped[ChargeType] = mapped_column(
        String(30),
        default=ChargeType.MONTHLY_FEE,
        nullable=False,
    )

    # Billing period, "YYYY-MM"
    period: Mapped[str | None] = mapped_column(String(7), nullable=True)

    posted_date: Mapped[date] = mapped_column(Date, nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    description: Mapped[str] = mapped_column(String(2000), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    status: Mapped[ChargeStatus] = mapped_column(
        String(20),
        default=ChargeStatus.PENDING,
        nullable=False,
    )

    # Charges committed together from one distribution preview
    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Late-fee / interest charges point at the charge that generated them
    parent_charge_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("charges.id"),
        nullable=True,
    )

    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(
        String(2000), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Charge {self.id}: {self.balance}/{self.total_amount} {self.status}>"

    @property
    def is_cancelled(self) -> bool:
        return self.status == ChargeStatus.CANCELLED

    @property
    def is_settled(self) -> bool:
        return abs(self.balance) < MONEY_EPSILON

    def recompute_status(self) -> None:
        """Derive PENDING/PAID from the balance.  CANCELLED is left alone."""
        if self.status == ChargeStatus.CANCELLED:
            return
        self.status = (ChargeStatus.PAID if self.is_settled else ChargeStatus.PENDING).value

    def apply_amount(self, amount: Decimal) -> None:
        """Record a payment or credit of ``amount`` against this charge."""
        amount = round_money(amount)
        if amount <= ZERO or amount - self.balance >= MONEY_EPSILON:
            raise ValueError(
                f"Cannot apply {amount} to charge {self.id} with balance {self.balance}"
            )
        self.paid_amount = round_money(self.paid_amount + amount)
        self.balance = round_money(self.total_amount - self.paid_amount)
        self.recompute_status()

    def reverse_amount(self, amount: Decimal) -> None:
        """Undo a previously applied ``amount`` (payment or credit reversal)."""
        amount = round_money(amount)
        if amount <= ZERO or amount - self.paid_amount >= MONEY_EPSILON:
            raise ValueError(
                f"Cannot reverse {amount} on charge {self.id} with paid {self.paid_amount}"
            )
        self.paid_amount = round_money(self.paid_amount - amount)
        self.balance = round_money(self.total_amount - self.paid_amount)
        self.recompute_status()

    def cancel(self, actor_id: UUID, reason: str, cancelled_at: datetime) -> None:
        """Mark the charge CANCELLED.  Timestamp comes from the injected clock."""
        self.status = ChargeStatus.CANCELLED.value
        self.cancelled_at = cancelled_at
        self.cancelled_by_id = actor_id
        self.cancellation_reason = reason
        self.updated_by_id = actor_id
