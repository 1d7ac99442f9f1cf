"""
Module: billing_kernel.models.account
Responsibility: ORM persistence for the condominium's bank / cash accounts.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - current_balance = initial_balance + live payments - live egresses.
      Payments add their full total (allocated or not); cancellation
      subtracts the same total.

Audit relevance:
    initial_balance is the opening balance of the first reconciliation.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class FinancialAccount(TrackedBase):
    """A bank or petty-cash account."""

    __tablename__ = "financial_accounts"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    bank_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    initial_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<FinancialAccount {self.name}: {self.current_balance}>"
