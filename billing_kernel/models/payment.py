"""
Module: billing_kernel.models.payment
Responsibility: ORM persistence for incoming payments (ingresos) and their
    allocations against charges.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - allocated_amount == sum(allocations.amount_allocated) <= total_amount.
    - folio_rec is unique per tenant (uq_payment_folio).
    - CANCELLED is terminal.

Audit relevance:
    A payment's folio is the receipt number printed for the resident;
    it is reserved in the same transaction that inserts this row.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import Base, TrackedBase, UUIDString


class PaymentStatus(str, Enum):
    """Contract: AVAILABLE -> CANCELLED only."""

    AVAILABLE = "available"
    CANCELLED = "cancelled"


class Payment(TrackedBase):
    """
    Money received into a financial account.

    Guarantees:
        - total_amount > 0.
        - allocations are loaded with the payment (selectin).
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("tenant_id", "folio_rec", name="uq_payment_folio"),
        CheckConstraint("total_amount > 0", name="chk_payment_total_positive"),
        Index("idx_payment_account_date", "financial_account_id", "payment_date"),
    )

    financial_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("financial_accounts.id"),
        nullable=False,
    )

    unit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("units.id"),
        nullable=True,
    )

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    allocated_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    status: Mapped[PaymentStatus] = mapped_column(
        String(20),
        default=PaymentStatus.AVAILABLE,
        nullable=False,
    )

    folio_rec: Mapped[int] = mapped_column(BigInteger, nullable=False)

    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(
        String(2000), nullable=True
    )

    allocations: Mapped[list["PaymentAllocation"]] = relationship(
        back_populates="payment",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="PaymentAllocation.charge_id",
    )

    def __repr__(self) -> str:
        return f"<Payment REC-{self.folio_rec}: {self.total_amount} {self.status}>"

    @property
    def is_cancelled(self) -> bool:
        return self.status == PaymentStatus.CANCELLED

    @property
    def unallocated_amount(self) -> Decimal:
        return self.total_amount - self.allocated_amount


class PaymentAllocation(Base):
    """How much of a payment settled one charge."""

    __tablename__ = "payment_allocations"

    __table_args__ = (
        UniqueConstraint("payment_id", "charge_id", name="uq_payment_allocation"),
        CheckConstraint("amount_allocated > 0", name="chk_allocation_positive"),
        Index("idx_payment_allocation_charge", "charge_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id"),
        nullable=False,
    )

    charge_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("charges.id"),
        nullable=False,
    )

    amount_allocated: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    payment: Mapped[Payment] = relationship(back_populates="allocations")
