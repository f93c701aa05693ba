"""
Business-day calendar.

A period's due date falling on a weekend or a holiday moves to the next
business day. Holidays are stored once for every group.
"""

import logging
from datetime import date, timedelta
from typing import Iterable, List, Set

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from rental_backend.app.models.holiday import Holiday

logger = logging.getLogger("rental_billing.calendar")

# Argentine national holidays with a fixed date: (month, day, name)
FIXED_HOLIDAYS = [
    (1, 1, "Año Nuevo"),
    (3, 24, "Día Nacional de la Memoria"),
    (4, 2, "Día del Veterano y de los Caídos en Malvinas"),
    (5, 1, "Día del Trabajador"),
    (5, 25, "Día de la Revolución de Mayo"),
    (6, 20, "Paso a la Inmortalidad del Gral. Belgrano"),
    (7, 9, "Día de la Independencia"),
    (12, 8, "Inmaculada Concepción de María"),
    (12, 25, "Navidad"),
]


def is_business_day(day: date, holidays: Iterable[date] = ()) -> bool:
    return day.weekday() < 5 and day not in holidays


def next_business_day(day: date, holidays: Iterable[date] = ()) -> date:
    """day itself when it is a business day, else the first one after it."""
    holidays = set(holidays)
    while not is_business_day(day, holidays):
        day += timedelta(days=1)
    return day


async def holiday_dates(db: AsyncSession, start: date, end: date) -> Set[date]:
    result = await db.execute(
        select(Holiday.date).where(Holiday.date >= start, Holiday.date <= end)
    )
    return set(result.scalars().all())


async def list_holidays(db: AsyncSession, year: int) -> List[Holiday]:
    result = await db.execute(select(Holiday).where(Holiday.year == year).order_by(Holiday.date))
    return list(result.scalars().all())


async def add_holiday(db: AsyncSession, day: date, name: str) -> Holiday:
    """Store a holiday; a date already stored is renamed."""
    result = await db.execute(select(Holiday).where(Holiday.date == day))
    holiday = result.scalar_one_or_none()
    if holiday is None:
        holiday = Holiday(date=day, name=name, year=day.year)
        db.add(holiday)
    else:
        holiday.name = name
    await db.flush()
    return holiday


async def seed_holidays(db: AsyncSession, year: int) -> List[Holiday]:
    """Insert the fixed holidays of year; dates already stored are kept."""
    existing = {h.date for h in await list_holidays(db, year)}
    created = []
    for month, day, name in FIXED_HOLIDAYS:
        if date(year, month, day) in existing:
            continue
        created.append(Holiday(date=date(year, month, day), name=name, year=year))
    db.add_all(created)
    await db.flush()
    logger.info("Seeded %s holiday(s) for %s", len(created), year)
    return created
