"""
Currency Support Module

ISO 4217 currencies and the ``Money`` value every balance and transaction
amount is held in. Amounts are always Decimal, quantized to the currency's
minor unit with ROUND_HALF_UP. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP
from dataclasses import dataclass
from enum import Enum
from typing import Union


AmountLike = Union[Decimal, int, float, str]


class Currency(Enum):
    """Supported ledger currencies with their number of decimal places"""
    USD = ("USD", 2)
    EUR = ("EUR", 2)
    GBP = ("GBP", 2)
    JPY = ("JPY", 0)
    CAD = ("CAD", 2)
    CHF = ("CHF", 2)

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        """Smallest representable amount, e.g. Decimal('0.01')"""
        return Decimal(1).scaleb(-self.precision)


def to_decimal(value: AmountLike) -> Decimal:
    """Convert an incoming amount to Decimal, going through str for floats"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Amount must be numeric, not bool")
    return Decimal(str(value))


@dataclass(frozen=True)
class Money:
    """Amount in one currency, rounded to that currency's precision"""
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        rounded = to_decimal(self.amount).quantize(self.currency.quantum, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal(0), currency)

    def _same_currency(self, other: 'Money') -> None:
        if other.currency is not self.currency:
            raise ValueError(
                f"Currency mismatch: {self.currency.code} and {other.currency.code}"
            )

    def __add__(self, other: 'Money') -> 'Money':
        self._same_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._same_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __gt__(self, other: 'Money') -> bool:
        self._same_currency(other)
        return self.amount > other.amount

    def is_positive(self) -> bool:
        return self.amount > 0

    def to_string(self) -> str:
        """Display form, e.g. 'USD 1,234.50'"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
