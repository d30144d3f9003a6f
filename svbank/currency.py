"""
Money Module

Fixed-point money representation for every balance and ledger amount.
Amounts carry exactly two fraction digits and NEVER use float arithmetic.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .errors import InvalidAmount

CENTS = Decimal('0.01')


class Currency(Enum):
    """ISO 4217 currency codes supported by the bank (all two fraction digits)"""
    INR = ("INR", 2)
    USD = ("USD", 2)
    EUR = ("EUR", 2)
    GBP = ("GBP", 2)
    
    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision


@dataclass(frozen=True)
class Money:
    """
    Immutable money value with currency, rounded to currency precision.
    """
    amount: Decimal
    currency: Currency = Currency.INR
    
    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        
        rounded = self.amount.quantize(
            Decimal('0.1') ** self.currency.precision,
            rounding=ROUND_HALF_UP
        )
        object.__setattr__(self, 'amount', rounded)
    
    @classmethod
    def zero(cls, currency: Currency = Currency.INR) -> 'Money':
        return cls(Decimal('0'), currency)
    
    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)
    
    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)
    
    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)
    
    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount < other.amount
    
    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount <= other.amount
    
    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount > other.amount
    
    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount >= other.amount
    
    def _check_currency(self, other: 'Money') -> None:
        if self.currency != other.currency:
            raise ValueError(f"Currency mismatch: {self.currency.code} and {other.currency.code}")
    
    def is_zero(self) -> bool:
        return self.amount == Decimal('0')
    
    def is_positive(self) -> bool:
        return self.amount > Decimal('0')
    
    def is_negative(self) -> bool:
        return self.amount < Decimal('0')
    
    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def to_decimal(value: Any) -> Decimal:
    """
    Convert a request value (Decimal, int, float or numeric string) to Decimal.
    
    Floats are converted through their shortest string form so that 0.1
    becomes Decimal('0.1') rather than its binary expansion.
    
    Raises:
        InvalidAmount: If the value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmount("Amount must be a number")
    
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidAmount(f"Amount '{value}' is not a number")
    else:
        raise InvalidAmount("Amount must be a number")
    
    if not result.is_finite():
        raise InvalidAmount("Amount must be finite")
    
    return result


def parse_amount(
    value: Any,
    currency: Currency = Currency.INR,
    maximum: Optional[Decimal] = None
) -> Money:
    """
    Validate a caller-supplied amount for a money movement.
    
    Args:
        value: Raw amount
        currency: Currency of the target account
        maximum: Optional upper bound for a single operation
        
    Returns:
        Positive Money with exactly two fraction digits
        
    Raises:
        InvalidAmount: If non-numeric, non-finite, not positive, has more
            fraction digits than the currency allows or exceeds maximum
    """
    amount = to_decimal(value)
    
    if amount <= 0:
        raise InvalidAmount("Amount must be greater than zero")
    
    try:
        quantized = amount.quantize(Decimal('0.1') ** currency.precision, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount("Amount is too large")

    if amount != quantized:
        raise InvalidAmount(f"Amount cannot have more than {currency.precision} decimal places")
    
    if maximum is not None and amount > maximum:
        raise InvalidAmount(f"Amount exceeds the single transaction limit of {maximum}")
    
    return Money(amount, currency)
