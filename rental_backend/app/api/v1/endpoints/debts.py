"""
Month close and debt API endpoints.
"""

from fastapi import APIRouter, Depends, Path, Query, Header, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from rental_backend.app.db.session import get_db
from rental_backend.app.models.billing_enums import DebtStatus
from rental_backend.app.schemas.debt import (
    CloseMonthRequest, ClosePreviewResponse, ClosePreviewItemResponse, CloseMonthResponse,
    DebtResponse, DebtSummaryResponse, DebtPaymentCreate, DebtPaymentResponse
)
from rental_backend.app.domain.billing.billing_service import BillingService

router = APIRouter(prefix="/groups/{group_id}", tags=["Debts"])


@router.post("/close-month/preview", response_model=ClosePreviewResponse)
async def preview_close_month(
    body: CloseMonthRequest,
    group_id: int = Path(..., description="Group ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Debts a close of the period would create. Nothing is persisted.
    """
    preview = await BillingService.preview_close_month(
        db, group_id, body.period_month, body.period_year, body.as_of
    )
    return ClosePreviewResponse(
        period_month=preview.period_month,
        period_year=preview.period_year,
        as_of=preview.as_of,
        already_closed=preview.already_closed,
        total_debt=preview.total_debt,
        items=[ClosePreviewItemResponse.model_validate(i) for i in preview.items],
    )


@router.post("/close-month", response_model=CloseMonthResponse, status_code=status.HTTP_201_CREATED)
async def close_month(
    body: CloseMonthRequest,
    group_id: int = Path(..., description="Group ID"),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Close the period: every unsettled record becomes a debt.
    """
    result = await BillingService.close_month(
        db, group_id, body.period_month, body.period_year, body.as_of, actor_username=actor
    )
    response = CloseMonthResponse(
        period_month=result.period_month,
        period_year=result.period_year,
        debts_created=len(result.debts),
        already_closed=result.already_closed,
        debts=[DebtResponse.model_validate(d) for d in result.debts],
        errors=result.errors,
    )
    await db.commit()
    return response


@router.get("/debts", response_model=List[DebtResponse])
async def list_debts(
    group_id: int = Path(..., description="Group ID"),
    debt_status: Optional[DebtStatus] = Query(None, alias="status"),
    contract_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    debts = await BillingService.list_debts(db, group_id, debt_status, contract_id)
    return [DebtResponse.model_validate(d) for d in debts]


@router.get("/debts/summary", response_model=DebtSummaryResponse)
async def debt_summary(
    group_id: int = Path(..., description="Group ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Totals of the unsettled debts of the group.
    """
    summary = await BillingService.debt_summary(db, group_id)
    return DebtSummaryResponse.model_validate(summary)


@router.post("/debts/{debt_id}/payments", response_model=DebtPaymentResponse, status_code=status.HTTP_201_CREATED)
async def pay_debt(
    body: DebtPaymentCreate,
    group_id: int = Path(..., description="Group ID"),
    debt_id: int = Path(..., description="Debt ID"),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Pay (part of) a debt; punitory keeps accruing until it is paid off.
    """
    debt, payment = await BillingService.pay_debt(
        db, group_id, debt_id,
        amount=body.amount,
        payment_date=body.payment_date,
        payment_method=body.payment_method,
        generate_receipt=body.generate_receipt,
        observations=body.observations,
        actor_username=actor,
    )
    response = DebtPaymentResponse(
        id=payment.id,
        debt_id=payment.debt_id,
        transaction_id=payment.transaction_id,
        payment_date=payment.payment_date,
        payment_method=payment.payment_method,
        amount=payment.amount,
        principal_portion=payment.principal_portion,
        punitory_portion=payment.punitory_portion,
        punitory_at_payment=payment.punitory_at_payment,
        debt=DebtResponse.model_validate(debt),
    )
    await db.commit()
    return response
