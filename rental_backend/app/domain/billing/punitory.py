"""
Punitory Interest Calculator.

Simple (non-compounding) daily late-payment interest.

A payment is on time up to the due date: the grace day of the period (the
start day when the contract has none), moved to the next business day.
Past it, interest counts from the start day, or from the last payment when
a partial payment was made later than that.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from rental_backend.app.domain.billing.business_days import next_business_day
from rental_backend.app.domain.billing.money import round2, to_decimal, percent_of, ZERO


@dataclass(frozen=True)
class PunitoryResult:
    amount: Decimal
    days_late: int
    limit_date: date
    due_date: date
    from_date: date


def limit_date(period_month: int, period_year: int, punitory_start_day: int) -> date:
    """Day interest starts counting from."""
    return date(period_year, period_month, punitory_start_day)


def due_date(
    period_month: int,
    period_year: int,
    punitory_start_day: int,
    grace_day: Optional[int] = None,
    holidays: Iterable[date] = (),
) -> date:
    """Last day a payment for the period is on time."""
    day = max(grace_day or punitory_start_day, punitory_start_day)
    return next_business_day(date(period_year, period_month, day), holidays)


def accrual_start(
    period_month: int,
    period_year: int,
    punitory_start_day: int,
    last_payment_date: Optional[date] = None,
) -> date:
    start = limit_date(period_month, period_year, punitory_start_day)
    if last_payment_date is not None and last_payment_date > start:
        return last_payment_date
    return start


def days_late(
    payment_date: date,
    period_month: int,
    period_year: int,
    punitory_start_day: int,
    grace_day: Optional[int] = None,
    holidays: Iterable[date] = (),
    last_payment_date: Optional[date] = None,
) -> int:
    if payment_date <= due_date(period_month, period_year, punitory_start_day, grace_day, holidays):
        return 0
    start = accrual_start(period_month, period_year, punitory_start_day, last_payment_date)
    return max(0, (payment_date - start).days)


def punitory(base, punitory_percent, late_days: int) -> Decimal:
    """round2(base * punitory_percent/100 * max(0, late_days))"""
    if late_days <= 0 or to_decimal(base) <= 0:
        return ZERO
    return round2(percent_of(base, punitory_percent) * late_days)


def calculate(
    base,
    punitory_percent,
    payment_date: date,
    period_month: int,
    period_year: int,
    punitory_start_day: int,
    forgiven: bool = False,
    grace_day: Optional[int] = None,
    holidays: Iterable[date] = (),
    last_payment_date: Optional[date] = None,
) -> PunitoryResult:
    """
    Punitory owed for a payment made on payment_date.

    A forgiven transaction still reports the days late, with amount zero.
    """
    holidays = set(holidays)
    late = days_late(
        payment_date, period_month, period_year, punitory_start_day,
        grace_day, holidays, last_payment_date,
    )
    amount = ZERO if forgiven else punitory(base, punitory_percent, late)
    return PunitoryResult(
        amount=amount,
        days_late=late,
        limit_date=limit_date(period_month, period_year, punitory_start_day),
        due_date=due_date(period_month, period_year, punitory_start_day, grace_day, holidays),
        from_date=accrual_start(period_month, period_year, punitory_start_day, last_payment_date),
    )
