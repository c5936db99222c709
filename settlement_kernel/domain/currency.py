"""Currencies the settlement kernel accepts, with their minor-unit precision."""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    decimal_places: int
    name: str

    @property
    def rounding_tolerance(self) -> Decimal:
        """One minor unit of the currency."""
        return Decimal(1).scaleb(-self.decimal_places)


def _table(*rows: tuple[str, int, str]) -> dict[str, CurrencyInfo]:
    return {code: CurrencyInfo(code, places, name) for code, places, name in rows}


class CurrencyRegistry:
    """
    Lookup of supported ISO 4217 codes.

    Codes are matched case-insensitively after stripping whitespace.
    Unknown codes fall back to two decimal places for tolerance purposes
    but fail ``validate``.
    """

    _by_code: ClassVar[dict[str, CurrencyInfo]] = _table(
        # Two minor digits
        ("USD", 2, "US Dollar"),
        ("EUR", 2, "Euro"),
        ("GBP", 2, "Pound Sterling"),
        ("CHF", 2, "Swiss Franc"),
        ("CAD", 2, "Canadian Dollar"),
        ("AUD", 2, "Australian Dollar"),
        ("GHS", 2, "Ghana Cedi"),
        ("NGN", 2, "Nigerian Naira"),
        ("KES", 2, "Kenyan Shilling"),
        ("ZAR", 2, "South African Rand"),
        # No minor unit
        ("XOF", 0, "West African CFA Franc"),
        ("XAF", 0, "Central African CFA Franc"),
        ("JPY", 0, "Japanese Yen"),
        # Fils
        ("KWD", 3, "Kuwaiti Dinar"),
        ("BHD", 3, "Bahraini Dinar"),
    )

    FALLBACK_PLACES: ClassVar[int] = 2

    @staticmethod
    def _normalize(code: object) -> str:
        return code.strip().upper() if isinstance(code, str) else ""

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return cls._normalize(code) in cls._by_code

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls._by_code.get(cls._normalize(code))
        return cls.FALLBACK_PLACES if info is None else info.decimal_places

    @classmethod
    def get_rounding_tolerance(cls, code: str) -> Decimal:
        return Decimal(1).scaleb(-cls.get_decimal_places(code))

    @classmethod
    def validate(cls, code: str) -> str:
        """Return the normalized code or raise ValueError."""
        normalized = cls._normalize(code)
        if normalized not in cls._by_code:
            raise ValueError(f"Unsupported currency code: {code!r}")
        return normalized
