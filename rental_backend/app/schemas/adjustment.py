"""
Adjustment Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from rental_backend.app.models.billing_enums import AdjustmentOutcomeStatus


class AdjustmentApply(BaseModel):
    """Schema for applying a rent adjustment."""
    percentage_increase: Decimal = Field(..., gt=-100, max_digits=9, decimal_places=4)
    target_month: Optional[int] = Field(None, ge=1)


class AdjustmentUndo(BaseModel):
    """Schema for undoing a rent adjustment."""
    target_month: int = Field(..., ge=1)


class AdjustmentHistoryResponse(BaseModel):
    """Schema for displaying an adjustment history row."""
    id: int
    contract_id: int
    target_month: int
    target_period_month: int
    target_period_year: int
    previous_base_rent: Decimal
    new_base_rent: Decimal
    percentage_applied: Decimal
    applied_at: Optional[datetime] = None
    undone_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AdjustmentResult(BaseModel):
    """Contract rent after an apply/undo, with the history row involved."""
    contract_id: int
    base_rent: Decimal
    adjustment: AdjustmentHistoryResponse


class AdjustmentOutcomeResponse(BaseModel):
    contract_id: int
    target_month: int
    status: AdjustmentOutcomeStatus
    percentage: Decimal
    previous_base_rent: Optional[Decimal] = None
    new_base_rent: Optional[Decimal] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    class Config:
        from_attributes = True


class ApplyAllResponse(BaseModel):
    applied: int
    failed: int
    outcomes: List[AdjustmentOutcomeResponse]


class AdjustmentAlertResponse(BaseModel):
    contract_id: int
    property_id: Optional[int] = None
    index_id: int
    index_name: str
    target_month: int
    period_month: int
    period_year: int
    current_rent: Decimal
    suggested_percentage: Decimal
    applied: bool

    class Config:
        from_attributes = True


class AdjustmentAlertsResponse(BaseModel):
    this_month: List[AdjustmentAlertResponse]
    next_month: List[AdjustmentAlertResponse]
