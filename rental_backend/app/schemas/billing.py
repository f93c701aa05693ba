"""
Billing Schemas: ledger entries, previews and payments.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from rental_backend.app.models.billing_enums import PaymentMethod, RecordStatus


class ConceptResponse(BaseModel):
    """Schema for one ledger concept line."""
    concept_type: str
    amount: Decimal
    is_automatic: bool
    description: Optional[str] = None
    is_corrective: bool = False

    class Config:
        from_attributes = True


class PreviewResponse(BaseModel):
    """Concepts owed for a payment made on a given date."""
    contract_id: int
    month_number: int
    period_month: int
    period_year: int
    record_id: Optional[int] = None
    concepts: List[ConceptResponse]
    total_due: Decimal
    amount_paid: Decimal
    punitory_days: int

    class Config:
        from_attributes = True


class OpenPeriodRequest(BaseModel):
    """Schema for opening a contract period; omit month_number for the next one."""
    month_number: Optional[int] = Field(None, ge=1)


class MonthlyRecordResponse(BaseModel):
    """Schema for displaying a monthly record."""
    id: int
    contract_id: int
    month_number: int
    period_month: int
    period_year: int
    total_due: Decimal
    amount_paid: Decimal
    status: RecordStatus
    full_payment_date: Optional[date] = None
    version: int
    concepts: List[ConceptResponse] = []

    class Config:
        from_attributes = True


class ConceptCreate(BaseModel):
    """Schema for adding an ad-hoc concept to a record."""
    concept_type: str = Field(..., min_length=1, max_length=50)
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    description: Optional[str] = Field(None, max_length=255)
    is_corrective: bool = False


class PaymentCreate(BaseModel):
    """Schema for recording a payment."""
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    payment_date: date
    payment_method: PaymentMethod = PaymentMethod.EFECTIVO
    punitory_forgiven: bool = False
    iva_amount: Optional[Decimal] = Field(None, ge=0, max_digits=14, decimal_places=2)
    generate_receipt: Optional[bool] = None
    observations: Optional[str] = Field(None, max_length=500)


class TransactionConceptResponse(BaseModel):
    concept_type: str
    amount: Decimal
    description: Optional[str] = None

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    """Schema for displaying a recorded payment and the record it settled."""
    id: int
    monthly_record_id: int
    payment_date: date
    payment_method: PaymentMethod
    amount: Decimal
    punitory_amount: Decimal
    punitory_days: int
    punitory_forgiven: bool
    receipt_number: Optional[str] = None
    created_at: Optional[datetime] = None
    concepts: List[TransactionConceptResponse] = []
    record: MonthlyRecordResponse

    class Config:
        from_attributes = True


class ContractSummary(BaseModel):
    """Schema for contract alert lists."""
    id: int
    property_id: Optional[int] = None
    current_month: int
    duration_months: int
    base_rent: Decimal
    status: str
    remaining_months: int
