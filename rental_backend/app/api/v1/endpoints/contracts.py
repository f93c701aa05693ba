"""
Contract billing API endpoints.

Periods, previews, ad-hoc concepts and payments of one contract.
"""

from fastapi import APIRouter, Depends, Path, Query, Header, status
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date
from typing import List, Optional

from rental_backend.app.db.session import get_db
from rental_backend.app.schemas.billing import (
    PreviewResponse, ConceptResponse, OpenPeriodRequest, MonthlyRecordResponse,
    ConceptCreate, PaymentCreate, PaymentResponse, TransactionConceptResponse, ContractSummary
)
from rental_backend.app.domain.billing.billing_service import BillingService
from rental_backend.app.domain.billing.ledger_builder import LedgerBuilder
from rental_backend.app.domain.billing.reconciliation import PaymentReconciliation
from rental_backend.app.domain.billing import contract_state

router = APIRouter(prefix="/groups/{group_id}/contracts", tags=["Contracts - Billing"])


async def record_response(db: AsyncSession, record) -> MonthlyRecordResponse:
    concepts = await LedgerBuilder.get_concepts(db, record.id)
    response = MonthlyRecordResponse.model_validate(record)
    response.concepts = [ConceptResponse.model_validate(c) for c in concepts]
    return response


@router.get("/expiring", response_model=List[ContractSummary])
async def list_expiring_contracts(
    group_id: int = Path(..., description="Group ID"),
    horizon_months: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_db)
):
    """
    List active contracts ending within the horizon (default from settings).
    """
    contracts = await BillingService.expiring_contracts(db, group_id, horizon_months)
    return [
        ContractSummary(
            id=c.id,
            property_id=c.property_id,
            current_month=c.current_month,
            duration_months=c.duration_months,
            base_rent=c.base_rent,
            status=c.status.value,
            remaining_months=contract_state.remaining_months(c),
        )
        for c in contracts
    ]


@router.get("/{contract_id}/preview", response_model=PreviewResponse)
async def preview(
    group_id: int = Path(..., description="Group ID"),
    contract_id: int = Path(..., description="Contract ID"),
    payment_date: date = Query(..., description="Date the payment would be made"),
    db: AsyncSession = Depends(get_db)
):
    """
    Concepts owed if the contract paid on payment_date. Nothing is stored.
    """
    result = await BillingService.compute_preview(db, group_id, contract_id, payment_date)
    return PreviewResponse.model_validate(result)


@router.get("/{contract_id}/periods", response_model=List[MonthlyRecordResponse])
async def list_periods(
    group_id: int = Path(..., description="Group ID"),
    contract_id: int = Path(..., description="Contract ID"),
    db: AsyncSession = Depends(get_db)
):
    records = await BillingService.list_records(db, group_id, contract_id)
    return [await record_response(db, r) for r in records]


@router.post("/{contract_id}/periods", response_model=MonthlyRecordResponse, status_code=status.HTTP_201_CREATED)
async def open_period(
    body: OpenPeriodRequest,
    group_id: int = Path(..., description="Group ID"),
    contract_id: int = Path(..., description="Contract ID"),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Open a billing period. Without month_number the next period is opened.
    """
    record = await BillingService.open_period(db, group_id, contract_id, body.month_number, actor_username=actor)
    response = await record_response(db, record)
    await db.commit()
    return response


@router.post("/{contract_id}/periods/{month_number}/concepts", response_model=MonthlyRecordResponse, status_code=status.HTTP_201_CREATED)
async def add_concept(
    body: ConceptCreate,
    group_id: int = Path(..., description="Group ID"),
    contract_id: int = Path(..., description="Contract ID"),
    month_number: int = Path(..., ge=1),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Add an ad-hoc or corrective concept to a period.
    """
    await BillingService.add_concept(
        db, group_id, contract_id, month_number,
        body.concept_type, body.amount, body.description,
        is_corrective=body.is_corrective, actor_username=actor,
    )
    _, record = await BillingService.get_record(db, group_id, contract_id, month_number)
    response = await record_response(db, record)
    await db.commit()
    return response


@router.post("/{contract_id}/periods/{month_number}/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(
    body: PaymentCreate,
    group_id: int = Path(..., description="Group ID"),
    contract_id: int = Path(..., description="Contract ID"),
    month_number: int = Path(..., ge=1),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a payment against a period.
    """
    transaction, record = await BillingService.record_payment(
        db, group_id, contract_id, month_number,
        amount=body.amount,
        payment_date=body.payment_date,
        payment_method=body.payment_method,
        punitory_forgiven=body.punitory_forgiven,
        iva_amount=body.iva_amount,
        generate_receipt=body.generate_receipt,
        observations=body.observations,
        actor_username=actor,
    )
    snapshot = await PaymentReconciliation.get_snapshot(db, transaction.id)
    response = PaymentResponse(
        id=transaction.id,
        monthly_record_id=transaction.monthly_record_id,
        payment_date=transaction.payment_date,
        payment_method=transaction.payment_method,
        amount=transaction.amount,
        punitory_amount=transaction.punitory_amount,
        punitory_days=transaction.punitory_days,
        punitory_forgiven=transaction.punitory_forgiven,
        receipt_number=transaction.receipt_number,
        concepts=[TransactionConceptResponse.model_validate(c) for c in snapshot],
        record=await record_response(db, record),
    )
    await db.commit()
    return response
