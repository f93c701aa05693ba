"""
Debt Schemas: month close, debts and holidays.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from rental_backend.app.models.billing_enums import DebtStatus, PaymentMethod, RecordStatus


class CloseMonthRequest(BaseModel):
    """Period to close; as_of defaults to today."""
    period_month: int = Field(..., ge=1, le=12)
    period_year: int = Field(..., ge=2000)
    as_of: Optional[date] = None


class ClosePreviewItemResponse(BaseModel):
    record_id: int
    contract_id: int
    month_number: int
    status: RecordStatus
    total_due: Decimal
    amount_paid: Decimal
    unpaid_services: Decimal
    unpaid_rent: Decimal
    unpaid_punitory: Decimal
    closing_punitory: Decimal
    total_unpaid: Decimal
    will_generate_debt: bool

    class Config:
        from_attributes = True


class ClosePreviewResponse(BaseModel):
    period_month: int
    period_year: int
    as_of: date
    already_closed: int
    total_debt: Decimal
    items: List[ClosePreviewItemResponse]

    class Config:
        from_attributes = True


class DebtResponse(BaseModel):
    """Schema for displaying a debt."""
    id: int
    contract_id: int
    monthly_record_id: int
    period_month: int
    period_year: int
    original_amount: Decimal
    unpaid_services_amount: Decimal
    unpaid_rent_amount: Decimal
    previous_record_payment: Decimal
    accumulated_punitory: Decimal
    current_total: Decimal
    amount_paid: Decimal
    punitory_percent: Decimal
    punitory_start_date: date
    last_payment_date: Optional[date] = None
    status: DebtStatus
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CloseMonthResponse(BaseModel):
    period_month: int
    period_year: int
    debts_created: int
    already_closed: int
    debts: List[DebtResponse]
    errors: List[Dict[str, Any]] = []


class DebtSummaryResponse(BaseModel):
    open_debts: int
    total_debt: Decimal
    total_principal: Decimal
    total_punitory: Decimal
    blocked_contracts: int

    class Config:
        from_attributes = True


class DebtPaymentCreate(BaseModel):
    """Schema for paying a debt."""
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    payment_date: date
    payment_method: PaymentMethod = PaymentMethod.EFECTIVO
    generate_receipt: Optional[bool] = None
    observations: Optional[str] = Field(None, max_length=500)


class DebtPaymentResponse(BaseModel):
    id: int
    debt_id: int
    transaction_id: Optional[int] = None
    payment_date: date
    payment_method: PaymentMethod
    amount: Decimal
    principal_portion: Decimal
    punitory_portion: Decimal
    punitory_at_payment: Decimal
    debt: DebtResponse

    class Config:
        from_attributes = True


class HolidayCreate(BaseModel):
    date: date
    name: str = Field(..., min_length=1, max_length=100)


class HolidayResponse(BaseModel):
    id: int
    date: date
    name: str
    year: int

    class Config:
        from_attributes = True
