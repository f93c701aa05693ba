"""
Batch Distribution Schemas.
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List, Literal
from rental_backend.app.domain.billing.distribution import Phase


class ShareSchema(BaseModel):
    """One record's share in a distribution working set."""
    record_id: int
    percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    locked: bool = False
    contract_id: Optional[int] = None

    class Config:
        from_attributes = True


class RebalanceRequest(BaseModel):
    """
    One reducer step over a working set.

    select: replace the selection with record_ids
    start: enter distribution (initial equal split)
    set: set record_id to value and rebalance
    unlock: return record_id to the rebalancing pool
    confirm: check the set adds up to 100
    """
    action: Literal["select", "start", "set", "unlock", "confirm"]
    shares: List[ShareSchema] = []
    total_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=14, decimal_places=2)
    record_ids: List[int] = []
    record_id: Optional[int] = None
    value: Optional[Decimal] = None


class DistributionStateResponse(BaseModel):
    phase: Phase
    shares: List[ShareSchema]
    percentage_sum: Decimal
    amounts: dict[int, Decimal]
    residual: Decimal
    accepted: bool = True
    message: Optional[str] = None


class DistributionItemSchema(BaseModel):
    record_id: int
    percentage: Decimal = Field(..., ge=0, le=100)
    amount: Optional[Decimal] = Field(None, max_digits=14, decimal_places=2)
    version: Optional[int] = None


class BatchSubmit(BaseModel):
    """Schema for submitting a batch distribution."""
    period_month: int = Field(..., ge=1, le=12)
    period_year: int = Field(..., ge=2000)
    concept_type_id: int
    total_amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    distributions: List[DistributionItemSchema] = Field(..., min_length=2)
    description: Optional[str] = Field(None, max_length=255)
    template_name: Optional[str] = Field(None, min_length=1, max_length=100)


class BatchLineResponse(BaseModel):
    record_id: int
    contract_id: int
    percentage: Decimal
    amount: Decimal
    concept_id: int

    class Config:
        from_attributes = True


class BatchResponse(BaseModel):
    concept_type: str
    total_amount: Decimal
    lines: List[BatchLineResponse]
    residual: Decimal
    template_id: Optional[int] = None

    class Config:
        from_attributes = True


class TemplateItemSchema(BaseModel):
    contract_id: int
    percentage: Decimal = Field(..., ge=0, le=100)

    class Config:
        from_attributes = True


class TemplateCreate(BaseModel):
    """Schema for saving a distribution template."""
    name: str = Field(..., min_length=1, max_length=100)
    items: List[TemplateItemSchema] = Field(..., min_length=1)


class TemplateResponse(BaseModel):
    id: int
    name: str
    items: List[TemplateItemSchema]


class TemplateLoadRequest(BaseModel):
    period_month: int = Field(..., ge=1, le=12)
    period_year: int = Field(..., ge=2000)
    total_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=14, decimal_places=2)
