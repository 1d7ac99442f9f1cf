"""
Module: billing_kernel.models.reconciliation
Responsibility: ORM persistence for bank reconciliation snapshots and the
    payments / egresses they include.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Reconciliations of one account form a chain: each opening_balance is
      the previous locked reconciliation's closing_balance_calculated and
      each period_start is the previous cutoff_date + 1 day.
    - Once CONCILIADA or CERRADA, every referenced payment and egress is
      immutable (CancellationService refuses to cancel them).
    - CERRADA is terminal: no edits, no deletion.

Audit relevance:
    Items snapshot the amounts and check state at reconciliation time, so
    the report can be reproduced even if documents change later.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import Base, TrackedBase, UUIDString


class ReconciliationStatus(str, Enum):
    """Contract: BORRADOR <-> CONCILIADA (recomputed) -> CERRADA (terminal)."""

    BORRADOR = "borrador"
    CONCILIADA = "conciliada"
    CERRADA = "cerrada"


LOCKED_RECONCILIATION_STATUSES = (
    ReconciliationStatus.CONCILIADA,
    ReconciliationStatus.CERRADA,
)


class TransactionType(str, Enum):
    INGRESO = "ingreso"
    EGRESO = "egreso"


class Reconciliation(TrackedBase):
    """A bank reconciliation snapshot for one account and cutoff date."""

    __tablename__ = "reconciliations"

    __table_args__ = (
        Index("idx_reconciliation_account_cutoff", "financial_account_id", "cutoff_date"),
    )

    financial_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("financial_accounts.id"),
        nullable=False,
    )

    cutoff_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    closing_balance_bank: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    closing_balance_calculated: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False
    )
    in_transit_total: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0.00"),
        nullable=False,
    )
    difference: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    status: Mapped[ReconciliationStatus] = mapped_column(
        String(20),
        default=ReconciliationStatus.BORRADOR,
        nullable=False,
    )

    reconciled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    reconciled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    items: Mapped[list["ReconciliationItem"]] = relationship(
        back_populates="reconciliation",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Reconciliation {self.cutoff_date}: {self.status} diff {self.difference}>"

    @property
    def is_locked(self) -> bool:
        return self.status in LOCKED_RECONCILIATION_STATUSES


class ReconciliationItem(Base):
    """One payment or egress included in a reconciliation."""

    __tablename__ = "reconciliation_items"

    __table_args__ = (
        CheckConstraint(
            "(payment_id IS NOT NULL AND egress_id IS NULL) OR "
            "(payment_id IS NULL AND egress_id IS NOT NULL)",
            name="chk_reconciliation_item_one_document",
        ),
        Index("idx_reconciliation_item_payment", "payment_id"),
        Index("idx_reconciliation_item_egress", "egress_id"),
    )

    reconciliation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("reconciliations.id"),
        nullable=False,
    )

    transaction_type: Mapped[TransactionType] = mapped_column(String(10), nullable=False)

    payment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id"),
        nullable=True,
    )
    egress_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("egresses.id"),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    is_check_cashed: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_in_transit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    reconciliation: Mapped[Reconciliation] = relationship(back_populates="items")
