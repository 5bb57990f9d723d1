"""
Currency Support Module

Currencies accepted for peer loans and an immutable Money value with proper
Decimal precision. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from typing import Union
from enum import Enum

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 currency codes with display symbol and precision"""
    NGN = ("NGN", "₦", 2)  # Nigerian Naira
    GHS = ("GHS", "₵", 2)  # Ghanaian Cedi
    
    def __init__(self, code: str, symbol: str, precision: int):
        self.code = code
        self.symbol = symbol
        self.precision = precision
    
    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code"""
        try:
            return cls[code.upper()]
        except KeyError:
            raise ValueError(f"Unsupported currency: {code}")


def to_decimal(value: Union[Decimal, int, float, str]) -> Decimal:
    """Convert a numeric input to Decimal without float artifacts"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All loan amounts MUST use this class.
    """
    amount: Decimal
    currency: Currency
    
    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))
        
        # Round to currency precision
        rounded = self.amount.quantize(
            Decimal('0.1') ** self.currency.precision,
            rounding=ROUND_HALF_UP
        )
        object.__setattr__(self, 'amount', rounded)
    
    def __add__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise ValueError(f"Cannot add {self.currency.code} and {other.currency.code}")
        return Money(self.amount + other.amount, self.currency)
    
    def __sub__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise ValueError(f"Cannot subtract {other.currency.code} from {self.currency.code}")
        return Money(self.amount - other.amount, self.currency)
    
    def __mul__(self, multiplier: Decimal) -> 'Money':
        return Money(self.amount * to_decimal(multiplier), self.currency)
    
    def __lt__(self, other: 'Money') -> bool:
        if self.currency != other.currency:
            raise ValueError(f"Cannot compare {self.currency.code} and {other.currency.code}")
        return self.amount < other.amount
    
    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')
    
    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')
    
    def to_string(self) -> str:
        """Format for display, e.g. NGN 5,000.00"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
    
    def to_display(self) -> str:
        """Format with the currency symbol, e.g. ₦5,000"""
        if self.amount == self.amount.to_integral_value():
            return f"{self.currency.symbol}{self.amount:,.0f}"
        return f"{self.currency.symbol}{self.amount:,.{self.currency.precision}f}"
    
    def to_dict(self) -> dict:
        """Serialize for storage"""
        return {"amount": str(self.amount), "currency": self.currency.code}
    
    @classmethod
    def from_dict(cls, data: dict) -> 'Money':
        """Deserialize from storage"""
        return cls(Decimal(data["amount"]), Currency.from_code(data["currency"]))
    
    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)
