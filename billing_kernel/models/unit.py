"""
Module: billing_kernel.models.unit
Responsibility: ORM persistence for condominium units -- the parties that
    receive charges and hold credit balances.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - credit_balance equals the sum of the unit's UnitCredit amounts and is
      never negative.  Maintained by CreditLedgerService, which locks this
      row before every ledger write.
    - last_credit_seq is the entry_seq of the newest ledger entry for the
      unit; entry sequence numbers are gapless per unit.

Audit relevance:
    The unit row is the lock target for every credit movement, so two
    concurrent debits against the same unit are serialized here.
"""

from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class Unit(TrackedBase):
    """
    A unit (apartment, house, commercial space) of a condominium.

    Guarantees:
        - identifier is unique per tenant (uq_unit_identifier).
        - aliquot is the unit's ownership share used by by-aliquot
          charge distribution.
    """

    __tablename__ = "units"

    __table_args__ = (
        UniqueConstraint("tenant_id", "identifier", name="uq_unit_identifier"),
    )

    # Human identifier, e.g. "A-101"
    identifier: Mapped[str] = mapped_column(String(50), nullable=False)

    aliquot: Mapped[Decimal] = mapped_column(
        Numeric(18, 6),
        default=Decimal("0"),
        nullable=False,
    )

    # Cached sum of this unit's credit ledger
    credit_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    last_credit_seq: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Unit {self.identifier}: credit {self.credit_balance}>"
