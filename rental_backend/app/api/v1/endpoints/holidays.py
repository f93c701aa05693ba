"""
Holiday calendar API endpoints.
"""

from fastapi import APIRouter, Depends, Query, Header, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from rental_backend.app.db.session import get_db
from rental_backend.app.schemas.debt import HolidayCreate, HolidayResponse
from rental_backend.app.domain.billing.billing_service import BillingService

router = APIRouter(prefix="/holidays", tags=["Holidays"])


@router.get("", response_model=List[HolidayResponse])
async def list_holidays(
    year: int = Query(..., ge=2000),
    db: AsyncSession = Depends(get_db)
):
    holidays = await BillingService.list_holidays(db, year)
    return [HolidayResponse.model_validate(h) for h in holidays]


@router.post("", response_model=HolidayResponse, status_code=status.HTTP_201_CREATED)
async def add_holiday(
    body: HolidayCreate,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Add a holiday; an existing date is renamed.
    """
    holiday = await BillingService.add_holiday(db, body.date, body.name, actor_username=actor)
    response = HolidayResponse.model_validate(holiday)
    await db.commit()
    return response


@router.post("/seed", response_model=List[HolidayResponse], status_code=status.HTTP_201_CREATED)
async def seed_holidays(
    year: int = Query(..., ge=2000),
    db: AsyncSession = Depends(get_db)
):
    """
    Store the fixed national holidays of a year.
    """
    created = await BillingService.seed_holidays(db, year)
    response = [HolidayResponse.model_validate(h) for h in created]
    await db.commit()
    return response
