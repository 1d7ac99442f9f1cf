"""
Module: billing_engines.distribution
Responsibility:
    Split a monetary total across units by ownership share (aliquot),
    equally, or by metered consumption, producing editable charge previews.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import the kernel's money helpers and logging.

Invariants enforced:
    - Each unit's share is rounded to 2 decimals independently
      (ROUND_HALF_UP).  There is no remainder correction: the sum of the
      previews may differ from the input total by a few cents.  Historical
      charges were posted this way and reconcile against this rule.
    - Purity: no clock access, no I/O.  Previews are immutable; editing
      returns a new preview.

Failure modes:
    - ValueError on a negative total, negative aliquot or consumption, a
      by-consumption unit without a reading, a rate that cannot be derived
      (zero total consumption), or a by-aliquot split whose aliquots are
      all zero.

Usage:
    from billing_engines.distribution import distribute, DistributionMethod, UnitShare

    previews = distribute(
        units=[UnitShare(unit_id=u1, aliquot=Decimal("60")),
               UnitShare(unit_id=u2, aliquot=Decimal("40"))],
        total=Decimal("1000.00"),
        method=DistributionMethod.BY_ALIQUOT,
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_engines.tracer import traced_engine
from billing_kernel.db.types import ZERO, round_money, to_money
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.distribution")


class DistributionMethod(str, Enum):
    """How a total is split across units."""

    BY_ALIQUOT = "by_aliquot"
    EQUAL = "equal"
    BY_CONSUMPTION = "by_consumption"


def _decimal(value: Decimal | int | str | None, field: str) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, float):
        raise ValueError(f"{field} must not be a float")
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class UnitShare:
    """
    One unit taking part in a distribution.

    Contract:
        ``aliquot`` is used by BY_ALIQUOT, ``consumption`` by BY_CONSUMPTION.
    Guarantees:
        - Neither value is negative.
    """

    unit_id: UUID | str
    label: str = ""
    aliquot: Decimal | None = None
    consumption: Decimal | None = None

    def __post_init__(self) -> None:
        aliquot = _decimal(self.aliquot, "aliquot")
        consumption = _decimal(self.consumption, "consumption")
        if aliquot is not None and aliquot < 0:
            raise ValueError(f"Aliquot of unit {self.unit_id} cannot be negative")
        if consumption is not None and consumption < 0:
            raise ValueError(f"Consumption of unit {self.unit_id} cannot be negative")
        object.__setattr__(self, "aliquot", aliquot)
        object.__setattr__(self, "consumption", consumption)


@dataclass(frozen=True)
class ChargePreview:
    """
    Suggested charge for one unit, editable before commit.

    ``suggested_amount`` is what the method computed; ``final_amount`` is
    what will be charged.  ``include`` drops the unit from the commit.
    """

    unit_id: UUID | str
    suggested_amount: Decimal
    final_amount: Decimal
    include: bool = True
    label: str = ""
    aliquot: Decimal | None = None
    consumption: Decimal | None = None

    def exclude(self) -> ChargePreview:
        return replace(self, include=False)

    def with_amount(self, amount: Decimal | int | str) -> ChargePreview:
        amount = to_money(amount)
        if amount < ZERO:
            raise ValueError("Preview amount cannot be negative")
        return replace(self, final_amount=amount)


def preview_total(previews: Sequence[ChargePreview]) -> Decimal:
    """Sum of final amounts of the included previews."""
    return sum((p.final_amount for p in previews if p.include), ZERO)


def rounding_drift(total: Decimal, previews: Sequence[ChargePreview]) -> Decimal:
    """Signed difference between the suggested amounts and ``total``."""
    return sum((p.suggested_amount for p in previews), ZERO) - to_money(total)


def _preview(unit: UnitShare, amount: Decimal) -> ChargePreview:
    return ChargePreview(
        unit_id=unit.unit_id,
        suggested_amount=amount,
        final_amount=amount,
        label=unit.label,
        aliquot=unit.aliquot,
        consumption=unit.consumption,
    )


@traced_engine("distribution", "1.0", fingerprint_fields=("total", "method", "unit_rate"))
def distribute(
    units: Sequence[UnitShare],
    total: Decimal | None,
    method: DistributionMethod | str,
    unit_rate: Decimal | None = None,
) -> list[ChargePreview]:
    """
    Split ``total`` across ``units``.

    Args:
        units: Participating units, in the order previews are returned.
        total: Amount to split.  For BY_CONSUMPTION it may be None when
            ``unit_rate`` is given.
        method: A DistributionMethod (or its value).
        unit_rate: Price per consumption unit.  When omitted for
            BY_CONSUMPTION it is derived as total / sum(consumption).

    Returns:
        One ChargePreview per unit.
    """
    method = DistributionMethod(method)
    if total is not None:
        total = to_money(total)
        if total < ZERO:
            raise ValueError("Total to distribute cannot be negative")
    elif method != DistributionMethod.BY_CONSUMPTION or unit_rate is None:
        raise ValueError(f"A total is required for {method.value} distribution")

    if not units:
        logger.warning("distribution_no_units", extra={"method": method.value})
        return []

    match method:
        case DistributionMethod.BY_ALIQUOT:
            previews = _by_aliquot(units, total)
        case DistributionMethod.EQUAL:
            share = round_money(total / Decimal(len(units)))
            previews = [_preview(unit, share) for unit in units]
        case DistributionMethod.BY_CONSUMPTION:
            previews = _by_consumption(units, total, unit_rate)
        case _:
            raise ValueError(f"Unknown distribution method: {method}")

    logger.info(
        "distribution_computed",
        extra={
            "method": method.value,
            "unit_count": len(units),
            "total": str(total) if total is not None else None,
            "distributed": str(sum((p.suggested_amount for p in previews), ZERO)),
        },
    )
    return previews


def _by_aliquot(units: Sequence[UnitShare], total: Decimal) -> list[ChargePreview]:
    aliquot_sum = sum((u.aliquot or ZERO for u in units), Decimal("0"))
    if aliquot_sum == 0:
        raise ValueError("Cannot distribute by aliquot: no participating unit has an aliquot")
    return [
        _preview(unit, round_money(total * (unit.aliquot or ZERO) / aliquot_sum))
        for unit in units
    ]


def _by_consumption(
    units: Sequence[UnitShare],
    total: Decimal | None,
    unit_rate: Decimal | None,
) -> list[ChargePreview]:
    missing = [str(u.unit_id) for u in units if u.consumption is None]
    if missing:
        raise ValueError(f"Consumption reading missing for units: {', '.join(missing)}")

    if unit_rate is None:
        consumption_sum = sum((u.consumption for u in units), Decimal("0"))
        if consumption_sum == 0:
            raise ValueError("Cannot derive a unit rate from zero total consumption")
        rate = total / consumption_sum
    else:
        rate = _decimal(unit_rate, "unit_rate")
        if rate < 0:
            raise ValueError("Unit rate cannot be negative")

    return [_preview(unit, round_money(unit.consumption * rate)) for unit in units]
