"""
Module: billing_kernel.models.egress
Responsibility: ORM persistence for outgoing payments (egresos) and their
    allocations against payables.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - allocated_amount == sum(allocations.amount_allocated) <= total_amount.
    - folio_eg is unique per tenant (uq_egress_folio).
    - An egress paid by a check that has not been cashed is "in transit"
      for reconciliation purposes.
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


class EgressStatus(str, Enum):
    """Contract: ISSUED -> CANCELLED only."""

    ISSUED = "issued"
    CANCELLED = "cancelled"


class Egress(TrackedBase):
    """Money paid out of a financial account to a supplier."""

    __tablename__ = "egresses"

    __table_args__ = (
        UniqueConstraint("tenant_id", "folio_eg", name="uq_egress_folio"),
        CheckConstraint("total_amount > 0", name="chk_egress_total_positive"),
        Index("idx_egress_account_date", "financial_account_id", "egress_date"),
    )

    financial_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("financial_accounts.id"),
        nullable=False,
    )

    egress_date: Mapped[date] = mapped_column(Date, nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    allocated_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    status: Mapped[EgressStatus] = mapped_column(
        String(20),
        default=EgressStatus.ISSUED,
        nullable=False,
    )

    folio_eg: Mapped[int] = mapped_column(BigInteger, nullable=False)

    supplier_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    check_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
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

    allocations: Mapped[list["EgressAllocation"]] = relationship(
        back_populates="egress",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="EgressAllocation.payable_id",
    )

    def __repr__(self) -> str:
        return f"<Egress EG-{self.folio_eg}: {self.total_amount} {self.status}>"

    @property
    def is_cancelled(self) -> bool:
        return self.status == EgressStatus.CANCELLED

    @property
    def has_check(self) -> bool:
        return bool(self.check_number)


class EgressAllocation(Base):
    """How much of an egress settled one payable."""

    __tablename__ = "egress_allocations"

    __table_args__ = (
        UniqueConstraint("egress_id", "payable_id", name="uq_egress_allocation"),
        CheckConstraint("amount_allocated > 0", name="chk_egress_allocation_positive"),
        Index("idx_egress_allocation_payable", "payable_id"),
    )

    egress_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("egresses.id"),
        nullable=False,
    )

    payable_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payables.id"),
        nullable=False,
    )

    amount_allocated: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    egress: Mapped[Egress] = relationship(back_populates="allocations")
