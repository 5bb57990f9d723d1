"""
Interest Estimation Module

Simple daily interest accrued since the request date. Display only: nothing
here mutates a loan or feeds the amount a Loaner declares as repaid.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from typing import Optional, Union

from .currency import Money, to_decimal

DAYS_PER_YEAR = Decimal('365')

DateLike = Union[date, datetime]


def _as_utc(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def days_elapsed(start: DateLike, end: DateLike) -> int:
    """Whole days between two instants, fractional days truncated"""
    delta = _as_utc(end) - _as_utc(start)
    if delta.total_seconds() <= 0:
        return 0
    return delta.days


def estimate_interest(
    principal: Union[Decimal, int, str],
    annual_rate_percent: Union[Decimal, int, str],
    request_date: DateLike,
    as_of: Optional[DateLike] = None
) -> Decimal:
    """
    Estimate simple interest accrued on a principal
    
    principal * (rate / 100 / 365) * whole days since request_date
    
    Args:
        principal: Loan principal
        annual_rate_percent: Annual rate in percent, e.g. 36.5
        request_date: Start of accrual
        as_of: End of accrual (defaults to now)
        
    Returns:
        Accrued interest, 0 when the rate is 0 or as_of is not after request_date
    """
    rate = to_decimal(annual_rate_percent)
    if rate == 0:
        return Decimal('0')
    
    days = days_elapsed(request_date, as_of or datetime.now(timezone.utc))
    if days == 0:
        return Decimal('0')
    
    return to_decimal(principal) * (rate / Decimal('100') / DAYS_PER_YEAR) * days


def amount_due(loan, as_of: Optional[DateLike] = None) -> Money:
    """Principal plus estimated interest, in the loan's currency"""
    interest = estimate_interest(
        loan.amount.amount, loan.interest_rate, loan.request_date, as_of
    )
    return loan.amount + Money(interest, loan.amount.currency)
