"""
Payment API endpoints.
"""

from fastapi import APIRouter, Depends, Path, Header
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from rental_backend.app.db.session import get_db
from rental_backend.app.schemas.billing import MonthlyRecordResponse
from rental_backend.app.domain.billing.billing_service import BillingService
from rental_backend.app.api.v1.endpoints.contracts import record_response

router = APIRouter(prefix="/groups/{group_id}/payments", tags=["Payments"])


@router.delete("/{transaction_id}", response_model=MonthlyRecordResponse)
async def delete_payment(
    group_id: int = Path(..., description="Group ID"),
    transaction_id: int = Path(..., description="Payment transaction ID"),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete a payment and return the record it was removed from.
    """
    record = await BillingService.delete_payment(db, group_id, transaction_id, actor_username=actor)
    response = await record_response(db, record)
    await db.commit()
    return response
