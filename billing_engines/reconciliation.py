"""
Module: billing_engines.reconciliation
Responsibility:
    Compare recorded cash movements of one account against a bank
    statement closing balance.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ReconciliationService
    loads and locks the documents, then calls match().

Invariants enforced:
    - An egress paid by a check that has not been cashed is in transit;
      every other egress is settled.
    - books = opening + sum(ingresos) - sum(settled egresos)
    - difference = bank - (books + sum(in-transit egresos))
    - |difference| < 0.01 is reconciled (conciliada), otherwise the
      result stays a draft (borrador).

Failure modes:
    - ValueError on negative movement amounts or duplicate document ids.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_engines.tracer import traced_engine
from billing_kernel.db.types import ZERO, is_zero_money, round_money, to_money
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.reconciliation")


class MatchStatus(str, Enum):
    """Outcome status; values match the persisted reconciliation statuses."""

    RECONCILED = "conciliada"
    PENDING = "borrador"


@dataclass(frozen=True)
class CashMovement:
    """
    One payment (ingreso) or egress taking part in a reconciliation.

    ``has_check`` and ``is_check_cashed`` only matter for egresses.
    """

    document_id: UUID | str
    amount: Decimal
    has_check: bool = False
    is_check_cashed: bool = False

    def __post_init__(self) -> None:
        amount = to_money(self.amount)
        if amount < ZERO:
            raise ValueError(f"Movement {self.document_id} has a negative amount")
        object.__setattr__(self, "amount", amount)

    @property
    def in_transit(self) -> bool:
        return self.has_check and not self.is_check_cashed


@dataclass(frozen=True)
class MatchResult:
    """
    Reconciliation snapshot computed from the selected movements.

    Guarantees:
        - difference == bank_closing_balance - (books_balance + in_transit_total)
    """

    opening_balance: Decimal
    bank_closing_balance: Decimal
    ingresos_total: Decimal
    settled_total: Decimal
    in_transit_total: Decimal
    books_balance: Decimal
    difference: Decimal
    status: MatchStatus
    settled_ids: tuple[UUID | str, ...]
    in_transit_ids: tuple[UUID | str, ...]

    @property
    def is_reconciled(self) -> bool:
        return self.status == MatchStatus.RECONCILED


def _check_unique(movements: Sequence[CashMovement], kind: str) -> None:
    seen = set()
    for movement in movements:
        if movement.document_id in seen:
            raise ValueError(f"{kind} {movement.document_id} selected more than once")
        seen.add(movement.document_id)


@traced_engine(
    "reconciliation", "1.0", fingerprint_fields=("opening_balance", "bank_closing_balance")
)
def match(
    opening_balance: Decimal,
    bank_closing_balance: Decimal,
    ingresos: Sequence[CashMovement],
    egresos: Sequence[CashMovement],
) -> MatchResult:
    """Partition egresos and compute the books balance and difference."""
    _check_unique(ingresos, "Payment")
    _check_unique(egresos, "Egress")
    opening = to_money(opening_balance)
    bank = to_money(bank_closing_balance)

    settled = [e for e in egresos if not e.in_transit]
    in_transit = [e for e in egresos if e.in_transit]

    ingresos_total = sum((i.amount for i in ingresos), ZERO)
    settled_total = sum((e.amount for e in settled), ZERO)
    in_transit_total = sum((e.amount for e in in_transit), ZERO)

    books = round_money(opening + ingresos_total - settled_total)
    difference = round_money(bank - (books + in_transit_total))
    status = MatchStatus.RECONCILED if is_zero_money(difference) else MatchStatus.PENDING

    logger.info(
        "reconciliation_matched",
        extra={
            "books_balance": str(books),
            "in_transit_total": str(in_transit_total),
            "difference": str(difference),
            "status": status.value,
        },
    )
    return MatchResult(
        opening_balance=opening,
        bank_closing_balance=bank,
        ingresos_total=ingresos_total,
        settled_total=settled_total,
        in_transit_total=in_transit_total,
        books_balance=books,
        difference=difference,
        status=status,
        settled_ids=tuple(e.document_id for e in settled),
        in_transit_ids=tuple(e.document_id for e in in_transit),
    )
