"""
Decimal arithmetic for money (``posting_spine.domain.decimal_math``).

Responsibility
--------------
Exact fixed-scale arithmetic on monetary amounts carried as decimal strings.
Every amount is converted to a scaled integer (``value * 10**4`` rounded half
up) before it is combined, and formatted back with exactly four fraction
digits.  No binary floats are involved at any point.

Architecture position
---------------------
**Domain layer** -- pure functions, ZERO I/O.

Invariants enforced
-------------------
* Results are always canonical 4-decimal strings (``"100.0000"``,
  ``"-0.0100"``).
* Money equality is string equality of canonical forms.

Failure modes
-------------
* ``InvalidAmountError`` from ``parse_amount`` for caller-supplied amounts
  that are malformed, negative or carry more than four fraction digits.
* ``decimal.InvalidOperation`` from the arithmetic helpers when handed a
  non-numeric string (internal callers only pass validated amounts).
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Union

from posting_spine.exceptions import InvalidAmountError

SCALE = 4
SCALE_FACTOR = 10**SCALE
ZERO_AMOUNT = "0.0000"
# NUMERIC(19, 4) leaves 15 digits before the point
MAX_INTEGER_DIGITS = 15

_QUANTUM = Decimal(1).scaleb(-SCALE)

AmountLike = Union[str, int, Decimal]


def to_scaled_int(value: AmountLike) -> int:
    """Convert an amount to integer units of 10**-4, rounding half up."""
    scaled = Decimal(str(value)) * SCALE_FACTOR
    return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))


def from_scaled_int(units: int) -> str:
    """Format integer units of 10**-4 as a canonical 4-decimal string."""
    sign = "-" if units < 0 else ""
    whole, frac = divmod(abs(units), SCALE_FACTOR)
    return f"{sign}{whole}.{frac:0{SCALE}d}"


def format_amount(value: AmountLike) -> str:
    """Canonical 4-decimal representation of ``value``."""
    return from_scaled_int(to_scaled_int(value))


def add_decimal(a: AmountLike, b: AmountLike) -> str:
    return from_scaled_int(to_scaled_int(a) + to_scaled_int(b))


def subtract_decimal(a: AmountLike, b: AmountLike) -> str:
    return from_scaled_int(to_scaled_int(a) - to_scaled_int(b))


def negate_decimal(a: AmountLike) -> str:
    return from_scaled_int(-to_scaled_int(a))


def sum_decimals(values: Iterable[AmountLike]) -> str:
    """Sum any number of amounts; an empty iterable sums to ``"0.0000"``."""
    return from_scaled_int(sum(to_scaled_int(v) for v in values))


def compare_decimal(a: AmountLike, b: AmountLike) -> int:
    """Return -1, 0 or 1 as ``a`` is less than, equal to or greater than ``b``."""
    left, right = to_scaled_int(a), to_scaled_int(b)
    return (left > right) - (left < right)


def amounts_equal(a: AmountLike, b: AmountLike) -> bool:
    """True when both amounts format to the same canonical string."""
    return format_amount(a) == format_amount(b)


def is_zero(value: AmountLike) -> bool:
    return to_scaled_int(value) == 0


def parse_amount(value: AmountLike) -> str:
    """Validate a caller-supplied posting amount and canonicalize it.

    Preconditions: ``value`` is a string, int or Decimal.  Floats are refused
        because they cannot be represented exactly.
    Postconditions: Returns the canonical 4-decimal string.

    Raises:
        InvalidAmountError: malformed, non-finite, negative, too large, or with
            more than four fraction digits.
    """
    if isinstance(value, (float, bool)) or not isinstance(value, (str, int, Decimal)):
        raise InvalidAmountError(repr(value), "amount must be a decimal string")
    try:
        dec = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidAmountError(str(value), "not a decimal number") from None
    if not dec.is_finite():
        raise InvalidAmountError(str(value), "amount must be finite")
    if dec < 0:
        raise InvalidAmountError(str(value), "amount must not be negative")
    if dec.adjusted() >= MAX_INTEGER_DIGITS:
        raise InvalidAmountError(str(value), f"more than {MAX_INTEGER_DIGITS} integer digits")
    if dec != dec.quantize(_QUANTUM):
        raise InvalidAmountError(str(value), f"more than {SCALE} decimal places")
    return format_amount(dec)
