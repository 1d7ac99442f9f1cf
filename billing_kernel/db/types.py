"""
Module: billing_kernel.db.types
Responsibility: Annotated type aliases and utility functions for money
    columns.  Centralizes precision, rounding, and the equality epsilon so
    that every model, engine and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    selectors/ and by billing_engines.  MUST NOT import from any of those.

Invariants enforced:
    - Single currency, two decimal places.  round_money() is the ONLY
      sanctioned rounding function for monetary values.
    - No floats anywhere in the kernel.  All monetary amounts are Decimal.

Failure modes:
    - decimal.InvalidOperation on non-numeric input passed to to_money().
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String

# Monetary amount: 18 digits, 2 decimal places
Money = Annotated[Decimal, Numeric(18, 2)]

# Unit ownership share (aliquot), percentages and rates
Rate = Annotated[Decimal, Numeric(18, 6)]

# Monotonic folio / ledger sequence number
Sequence = Annotated[int, BigInteger]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for descriptions and reasons
LongText = Annotated[str, String(2000)]


MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

# Two amounts closer than this are considered equal.
MONEY_EPSILON = Decimal("0.01")

ZERO = Decimal("0.00")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    This is the ONLY sanctioned rounding function for monetary values in
    the entire system.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_money(value: Decimal | int | str | None) -> Decimal:
    """Coerce a database or user value to a rounded Decimal amount.

    ``None`` (an empty SUM) becomes zero.  Floats are rejected so that a
    binary-float amount can never enter the kernel silently.
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return round_money(value)


def money_equal(a: Decimal, b: Decimal) -> bool:
    """True when two amounts differ by less than MONEY_EPSILON."""
    return abs(a - b) < MONEY_EPSILON


def is_zero_money(value: Decimal) -> bool:
    """True when an amount is zero within MONEY_EPSILON."""
    return abs(value) < MONEY_EPSILON
