"""
Column types and the one rounding helper for money.

Amounts are ``Decimal`` end to end and are stored as ``Numeric(38, 9)``.
UUIDs are stored as 36-character strings so SQLite and PostgreSQL share one
schema.
"""

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

MONEY_PRECISION = (38, 9)


def money_column_type() -> Numeric:
    return Numeric(*MONEY_PRECISION)


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, ``VARCHAR(36)`` in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


def round_money(value: Decimal, decimal_places: int = 2, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Quantize to ``decimal_places``; half-up unless told otherwise."""
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)
