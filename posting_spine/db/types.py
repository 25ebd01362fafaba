"""
Module: posting_spine.db.types
Responsibility: Fixed-scale column type for monetary amounts.
Architecture position: Spine > DB.  May be imported by models/ and services/.
    MUST NOT import from any of those layers.

Invariants enforced:
    - Amounts are persisted at a fixed scale of 4 fraction digits:
      Numeric(19, 4) on PostgreSQL, canonical text on other backends.
    - The Python-side value of an amount column is ALWAYS the canonical
      4-decimal string (e.g. "100.0000"), never a float and never a Decimal.

Failure modes:
    - decimal.InvalidOperation when a non-numeric value is bound to an amount
      column (services validate amounts before they reach this layer).
"""

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

AMOUNT_SCALE = 4
AMOUNT_PRECISION = 19

_QUANTUM = Decimal(1).scaleb(-AMOUNT_SCALE)


def canonical_amount(value) -> str:
    """Render any numeric value as a fixed 4-decimal string (half-up)."""
    return str(Decimal(str(value)).quantize(_QUANTUM, rounding=ROUND_HALF_UP))


class FixedScaleAmount(TypeDecorator):
    """
    Monetary amount column with fixed scale 4.

    Contract:
        Binds strings, Decimals or ints; always loads a canonical 4-decimal
        string.  PostgreSQL stores NUMERIC(19, 4) so SQL-side aggregation
        stays exact; SQLite stores the canonical text, which avoids SQLite's
        binary-float NUMERIC affinity.
    """

    impl = Numeric(AMOUNT_PRECISION, AMOUNT_SCALE)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(
                Numeric(AMOUNT_PRECISION, AMOUNT_SCALE, asdecimal=True)
            )
        return dialect.type_descriptor(String(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        text = canonical_amount(value)
        if dialect.name == "postgresql":
            return Decimal(text)
        return text

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return canonical_amount(value)

