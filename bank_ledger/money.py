"""
Money Module

Fixed-point monetary values. Amounts are Decimals quantized to the currency's
minor unit with ROUND_HALF_UP, so repeated operations never drift by a cent.
NEVER uses float for monetary values.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union
import re

from .errors import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28

# Plain decimal notation only; exponents and stray letters are rejected
_AMOUNT_PATTERN = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)$')
_CURRENCY_PREFIX = re.compile(r'^(₱|PHP)\s*', re.IGNORECASE)


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    PHP = ("PHP", 2)  # Philippine Peso

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        return Decimal('0.1') ** self.precision


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    """
    amount: Decimal
    currency: Currency = Currency.PHP

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        rounded = self.amount.quantize(self.currency.quantum, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency = Currency.PHP) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def to_storage(self) -> str:
        """Decimal string as persisted in documents"""
        return str(self.amount)

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def currency_from_code(code: str) -> Currency:
    try:
        return Currency[code.upper()]
    except KeyError:
        raise ValueError(f"Unsupported currency '{code}'")


def money_from_storage(value: Any, currency: Currency = Currency.PHP) -> Money:
    """Read a persisted amount; missing values count as zero"""
    if value is None or value == "":
        return Money.zero(currency)
    return Money(Decimal(str(value)), currency)


def parse_amount(value: Union[str, int, Decimal, None], currency: Currency = Currency.PHP) -> Money:
    """
    Parse user input into a strictly positive Money amount.

    Accepts Decimals, ints and strings in plain decimal notation (a leading
    currency symbol, whitespace and thousands separators are stripped).
    Floats are rejected so that binary rounding never reaches the ledger.

    Raises:
        InvalidAmount: If the value is missing, non-numeric, non-finite,
            non-positive, or rounds to zero at the currency's precision
    """
    if value is None or isinstance(value, (bool, float)):
        raise InvalidAmount(value)

    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, str):
        clean_value = _CURRENCY_PREFIX.sub('', value.strip().replace(',', ''))
        if not _AMOUNT_PATTERN.match(clean_value):
            raise InvalidAmount(value)
        number = Decimal(clean_value)
    else:
        raise InvalidAmount(value)

    if not number.is_finite():
        raise InvalidAmount(value)

    try:
        money = Money(number, currency)
    except InvalidOperation:
        # Too many digits to quantize at the context precision
        raise InvalidAmount(value)
    if not money.is_positive():
        raise InvalidAmount(value)
    return money

