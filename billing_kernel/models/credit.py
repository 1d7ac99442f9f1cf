"""
Module: billing_kernel.models.credit
Responsibility: ORM persistence for the per-unit credit ledger (saldo a
    favor) and the applications that consume credit lots.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - The ledger is append-only: every movement is a new signed UnitCredit
      row.  running_balance is the unit balance after the entry.
    - Positive entries are credit lots; remaining_amount is what is left to
      consume.  The sum of remaining_amount over ACTIVE lots equals the
      unit's credit balance.
    - entry_seq is gapless per unit and breaks created_at ties for FIFO.

Audit relevance:
    CreditApplication rows make every consumption traceable back to the
    lot (and therefore the payment or manual adjustment) that funded it.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, TrackedBase, UUIDString


class MovementType(str, Enum):
    """Kind of ledger movement.

    Contract: CREDIT_IN and positive ADJUSTMENT entries create lots.
    CREDIT_OUT and negative ADJUSTMENT entries consume lots.  REVERSAL
    entries undo a specific earlier entry (reverses_entry_id) and carry the
    opposite sign.
    """

    CREDIT_IN = "credit_in"
    CREDIT_OUT = "credit_out"
    ADJUSTMENT = "adjustment"
    REVERSAL = "reversal"


class CreditStatus(str, Enum):
    """Lot status.  Only meaningful on positive entries."""

    ACTIVE = "active"
    APPLIED = "applied"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class CreditSource(str, Enum):
    """Why a lot exists or why a debit was taken."""

    OVERPAYMENT = "overpayment"
    MANUAL = "manual"
    TRANSFER = "transfer"
    REFUND = "refund"
    APPLICATION = "application"
    CANCELLATION = "cancellation"
    REPAIR = "repair"


class UnitCredit(TrackedBase):
    """
    One signed movement of a unit's credit balance.

    Guarantees:
        - (unit_id, entry_seq) is unique (uq_unit_credit_seq).
        - created_at is set from the injected clock by CreditLedgerService,
          never by the database, so FIFO order is deterministic.

    Non-goals:
        - This model does NOT maintain Unit.credit_balance; the service
          updates both under the unit row lock.
    """

    __tablename__ = "unit_credits"

    __table_args__ = (
        UniqueConstraint("unit_id", "entry_seq", name="uq_unit_credit_seq"),
        Index("idx_unit_credit_fifo", "unit_id", "status", "created_at", "entry_seq"),
        Index("idx_unit_credit_transfer", "transfer_id"),
        Index("idx_unit_credit_payment", "source_payment_id"),
    )

    unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("units.id"),
        nullable=False,
    )

    movement_type: Mapped[MovementType] = mapped_column(String(20), nullable=False)

    source: Mapped[CreditSource] = mapped_column(String(20), nullable=False)

    # Signed: positive adds credit, negative consumes it
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    running_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    entry_seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Lot fields (positive entries only)
    remaining_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0.00"),
        nullable=False,
    )
    status: Mapped[CreditStatus | None] = mapped_column(String(20), nullable=True)

    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    charge_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("charges.id"),
        nullable=True,
    )
    source_payment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id"),
        nullable=True,
    )
    transfer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reverses_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("unit_credits.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<UnitCredit #{self.entry_seq} {self.movement_type}: {self.amount}>"

    @property
    def is_lot(self) -> bool:
        return self.amount > 0


class CreditApplication(Base):
    """Amount of one lot consumed by one debit entry."""

    __tablename__ = "credit_applications"

    __table_args__ = (
        Index("idx_credit_application_credit", "credit_id"),
        Index("idx_credit_application_debit", "debit_entry_id"),
        Index("idx_credit_application_charge", "charge_id"),
    )

    credit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("unit_credits.id"),
        nullable=False,
    )

    debit_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("unit_credits.id"),
        nullable=False,
    )

    charge_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("charges.id"),
        nullable=True,
    )

    amount_applied: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    is_reversed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
