"""
Adjustment API endpoints.
"""

from fastapi import APIRouter, Depends, Path, Header, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from rental_backend.app.db.session import get_db
from rental_backend.app.models.billing_enums import AdjustmentOutcomeStatus
from rental_backend.app.schemas.adjustment import (
    AdjustmentApply, AdjustmentUndo, AdjustmentResult, AdjustmentHistoryResponse,
    ApplyAllResponse, AdjustmentOutcomeResponse, AdjustmentAlertsResponse, AdjustmentAlertResponse
)
from rental_backend.app.domain.billing.billing_service import BillingService

router = APIRouter(prefix="/groups/{group_id}", tags=["Adjustments"])


@router.post("/contracts/{contract_id}/adjustments", response_model=AdjustmentResult, status_code=status.HTTP_201_CREATED)
async def apply_adjustment(
    body: AdjustmentApply,
    group_id: int = Path(..., description="Group ID"),
    contract_id: int = Path(..., description="Contract ID"),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Apply a percentage increase, now or from a target month.
    """
    contract, history = await BillingService.apply_adjustment(
        db, group_id, contract_id, body.percentage_increase, body.target_month, actor_username=actor
    )
    await db.commit()
    await db.refresh(history)
    return AdjustmentResult(
        contract_id=contract.id,
        base_rent=contract.base_rent,
        adjustment=AdjustmentHistoryResponse.model_validate(history),
    )


@router.post("/contracts/{contract_id}/adjustments/undo", response_model=AdjustmentResult)
async def undo_adjustment(
    body: AdjustmentUndo,
    group_id: int = Path(..., description="Group ID"),
    contract_id: int = Path(..., description="Contract ID"),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Undo the active adjustment of a target month.
    """
    contract, history = await BillingService.undo_adjustment(
        db, group_id, contract_id, body.target_month, actor_username=actor
    )
    response = AdjustmentResult(
        contract_id=contract.id,
        base_rent=contract.base_rent,
        adjustment=AdjustmentHistoryResponse.model_validate(history),
    )
    await db.commit()
    return response


@router.post("/adjustments/apply-all-next-month", response_model=ApplyAllResponse)
async def apply_all_next_month(
    group_id: int = Path(..., description="Group ID"),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Apply every index due next month. Failures are reported per contract.
    """
    outcomes = await BillingService.apply_all_due_next_month(db, group_id, actor_username=actor)
    await db.commit()
    applied = sum(1 for o in outcomes if o.status == AdjustmentOutcomeStatus.APPLIED)
    return ApplyAllResponse(
        applied=applied,
        failed=len(outcomes) - applied,
        outcomes=[AdjustmentOutcomeResponse.model_validate(o) for o in outcomes],
    )


@router.get("/adjustments/alerts", response_model=AdjustmentAlertsResponse)
async def adjustment_alerts(
    group_id: int = Path(..., description="Group ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Contracts adjusting this month and next month.
    """
    alerts = await BillingService.adjustment_alerts(db, group_id)
    return AdjustmentAlertsResponse(
        this_month=[AdjustmentAlertResponse.model_validate(a) for a in alerts["this_month"]],
        next_month=[AdjustmentAlertResponse.model_validate(a) for a in alerts["next_month"]],
    )


@router.delete("/adjustment-indices/{index_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_adjustment_index(
    group_id: int = Path(..., description="Group ID"),
    index_id: int = Path(..., description="Adjustment index ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete an adjustment index no contract references.
    """
    await BillingService.delete_adjustment_index(db, group_id, index_id)
    await db.commit()
