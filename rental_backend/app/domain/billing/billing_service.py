"""
Billing Service (Domain Logic).

Caller-facing entry points of the billing engine. Every method works inside
the caller's transaction: it flushes, and the caller (endpoint, job) commits
or rolls back.
"""

from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from rental_backend.app.core.exceptions import ResourceNotFoundError
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.monthly_record import MonthlyRecord
from rental_backend.app.models.payment_transaction import PaymentTransaction
from rental_backend.app.models.adjustment_history import AdjustmentHistory
from rental_backend.app.models.property_group import PropertyGroup, PropertyGroupItem
from rental_backend.app.models.debt import Debt, DebtPayment
from rental_backend.app.models.holiday import Holiday
from rental_backend.app.models.billing_enums import DebtStatus, PaymentMethod
from rental_backend.app.domain.billing import business_days, contract_state
from rental_backend.app.domain.billing.ledger_builder import LedgerBuilder, PeriodPreview
from rental_backend.app.domain.billing.adjustment_service import (
    AdjustmentService, AdjustmentOutcome, AdjustmentAlert
)
from rental_backend.app.domain.billing.reconciliation import PaymentReconciliation
from rental_backend.app.domain.billing.batch_service import BatchService, BatchResult, DistributionItem
from rental_backend.app.domain.billing.distribution import DistributionState
from rental_backend.app.domain.billing.debt_service import DebtService, DebtSummary
from rental_backend.app.domain.billing.month_close import MonthCloseService, ClosePreview, CloseResult
from rental_backend.app.services.audit import log_event, AuditAction


class BillingService:

    @staticmethod
    async def get_contract(db: AsyncSession, group_id: int, contract_id: int) -> Contract:
        contract = await db.get(Contract, contract_id)
        if not contract or contract.group_id != group_id:
            raise ResourceNotFoundError("Contract", contract_id)
        return contract

    @staticmethod
    async def get_record(db: AsyncSession, group_id: int, contract_id: int, month_number: int) -> Tuple[Contract, MonthlyRecord]:
        contract = await BillingService.get_contract(db, group_id, contract_id)
        record = await LedgerBuilder.get_record(db, contract.id, month_number)
        if not record:
            raise ResourceNotFoundError("MonthlyRecord", f"{contract_id}/{month_number}")
        return contract, record

    @staticmethod
    async def compute_preview(db: AsyncSession, group_id: int, contract_id: int, payment_date: date) -> PeriodPreview:
        contract = await BillingService.get_contract(db, group_id, contract_id)
        return await LedgerBuilder.compute_preview(db, contract, payment_date)

    @staticmethod
    async def open_period(
        db: AsyncSession,
        group_id: int,
        contract_id: int,
        month_number: Optional[int] = None,
        actor_username: Optional[str] = None,
    ) -> MonthlyRecord:
        contract = await BillingService.get_contract(db, group_id, contract_id)
        return await LedgerBuilder.open_period(db, contract, month_number, actor_username=actor_username)

    @staticmethod
    async def add_concept(
        db: AsyncSession,
        group_id: int,
        contract_id: int,
        month_number: int,
        concept_type: str,
        amount,
        description: Optional[str] = None,
        is_corrective: bool = False,
        actor_username: Optional[str] = None,
    ):
        _, record = await BillingService.get_record(db, group_id, contract_id, month_number)
        return await LedgerBuilder.add_concept(
            db, record, concept_type, amount, description,
            is_corrective=is_corrective, actor_username=actor_username,
        )

    @staticmethod
    async def record_payment(
        db: AsyncSession,
        group_id: int,
        contract_id: int,
        month_number: int,
        amount,
        payment_date: date,
        payment_method: PaymentMethod = PaymentMethod.EFECTIVO,
        punitory_forgiven: bool = False,
        iva_amount=None,
        generate_receipt: Optional[bool] = None,
        observations: Optional[str] = None,
        actor_username: Optional[str] = None,
    ) -> Tuple[PaymentTransaction, MonthlyRecord]:
        contract, record = await BillingService.get_record(db, group_id, contract_id, month_number)
        transaction = await PaymentReconciliation.record_payment(
            db, contract, record, amount, payment_date,
            payment_method=payment_method,
            punitory_forgiven=punitory_forgiven,
            iva_amount=iva_amount,
            generate_receipt=generate_receipt,
            observations=observations,
            actor_username=actor_username,
        )
        return transaction, record

    @staticmethod
    async def delete_payment(
        db: AsyncSession, group_id: int, transaction_id: int, actor_username: Optional[str] = None
    ) -> MonthlyRecord:
        transaction = await db.get(PaymentTransaction, transaction_id)
        if not transaction or transaction.group_id != group_id:
            raise ResourceNotFoundError("PaymentTransaction", transaction_id)
        record = await db.get(MonthlyRecord, transaction.monthly_record_id)
        contract = await BillingService.get_contract(db, group_id, record.contract_id)
        return await PaymentReconciliation.delete_transaction(db, contract, transaction, actor_username=actor_username)

    @staticmethod
    async def apply_adjustment(
        db: AsyncSession,
        group_id: int,
        contract_id: int,
        percentage_increase,
        target_month: Optional[int] = None,
        actor_username: Optional[str] = None,
    ) -> Tuple[Contract, AdjustmentHistory]:
        contract = await BillingService.get_contract(db, group_id, contract_id)
        history = await AdjustmentService.apply(
            db, contract, percentage_increase, target_month, actor_username=actor_username
        )
        return contract, history

    @staticmethod
    async def undo_adjustment(
        db: AsyncSession,
        group_id: int,
        contract_id: int,
        target_month: int,
        actor_username: Optional[str] = None,
    ) -> Tuple[Contract, AdjustmentHistory]:
        contract = await BillingService.get_contract(db, group_id, contract_id)
        history = await AdjustmentService.undo(db, contract, target_month, actor_username=actor_username)
        return contract, history

    @staticmethod
    async def apply_all_due_next_month(
        db: AsyncSession, group_id: int, actor_username: Optional[str] = None
    ) -> List[AdjustmentOutcome]:
        return await AdjustmentService.apply_all_due_next_month(db, group_id, actor_username=actor_username)

    @staticmethod
    async def adjustment_alerts(db: AsyncSession, group_id: int) -> Dict[str, List[AdjustmentAlert]]:
        return await AdjustmentService.adjustment_alerts(db, group_id)

    @staticmethod
    async def delete_adjustment_index(db: AsyncSession, group_id: int, index_id: int) -> None:
        await AdjustmentService.delete_index(db, group_id, index_id)

    @staticmethod
    async def expiring_contracts(db: AsyncSession, group_id: int, horizon_months: Optional[int] = None) -> List[Contract]:
        return await contract_state.list_expiring(db, group_id, horizon_months)

    @staticmethod
    async def expire_contracts(db: AsyncSession, group_id: int, today: Optional[date] = None) -> List[Contract]:
        return await contract_state.auto_expire_contracts(db, group_id, today)

    @staticmethod
    async def submit_batch(
        db: AsyncSession,
        group_id: int,
        period_month: int,
        period_year: int,
        concept_type_id: int,
        total_amount,
        distributions: Sequence[DistributionItem],
        description: Optional[str] = None,
        template_name: Optional[str] = None,
        actor_username: Optional[str] = None,
    ) -> BatchResult:
        return await BatchService.submit_batch(
            db, group_id, period_month, period_year, concept_type_id, total_amount, distributions,
            description=description, template_name=template_name, actor_username=actor_username,
        )

    @staticmethod
    async def save_distribution_template(
        db: AsyncSession, group_id: int, name: str, items: Dict[int, object], actor_username: Optional[str] = None
    ) -> Tuple[PropertyGroup, List[PropertyGroupItem]]:
        return await BatchService.save_distribution_template(db, group_id, name, items, actor_username=actor_username)

    @staticmethod
    async def list_templates(db: AsyncSession, group_id: int):
        return await BatchService.list_templates(db, group_id)

    @staticmethod
    async def delete_template(db: AsyncSession, group_id: int, template_id: int, actor_username: Optional[str] = None) -> None:
        await BatchService.delete_template(db, group_id, template_id, actor_username=actor_username)

    @staticmethod
    async def distribution_from_template(
        db: AsyncSession, group_id: int, template_id: int, period_month: int, period_year: int, total_amount=0
    ) -> DistributionState:
        return await BatchService.distribution_from_template(
            db, group_id, template_id, period_month, period_year, total_amount
        )

    @staticmethod
    async def list_records(db: AsyncSession, group_id: int, contract_id: int) -> List[MonthlyRecord]:
        contract = await BillingService.get_contract(db, group_id, contract_id)
        result = await db.execute(
            select(MonthlyRecord).where(MonthlyRecord.contract_id == contract.id).order_by(MonthlyRecord.month_number)
        )
        return list(result.scalars().all())

    @staticmethod
    async def records_in_group(db: AsyncSession, group_id: int, record_ids: Sequence[int]) -> Dict[int, int]:
        """record_id -> contract_id of the given records, all of which must belong to group_id."""
        wanted = set(record_ids)
        if not wanted:
            return {}
        result = await db.execute(
            select(MonthlyRecord.id, MonthlyRecord.contract_id).where(
                MonthlyRecord.group_id == group_id,
                MonthlyRecord.id.in_(wanted),
            )
        )
        found = {record_id: contract_id for record_id, contract_id in result.all()}
        missing = sorted(wanted - set(found))
        if missing:
            raise ResourceNotFoundError("MonthlyRecord", missing[0])
        return found

    @staticmethod
    async def preview_close_month(
        db: AsyncSession, group_id: int, period_month: int, period_year: int, as_of: Optional[date] = None
    ) -> ClosePreview:
        return await MonthCloseService.preview_close_month(db, group_id, period_month, period_year, as_of)

    @staticmethod
    async def close_month(
        db: AsyncSession,
        group_id: int,
        period_month: int,
        period_year: int,
        as_of: Optional[date] = None,
        actor_username: Optional[str] = None,
    ) -> CloseResult:
        return await MonthCloseService.close_month(
            db, group_id, period_month, period_year, as_of, actor_username=actor_username
        )

    @staticmethod
    async def list_debts(
        db: AsyncSession, group_id: int, status: Optional[DebtStatus] = None, contract_id: Optional[int] = None
    ) -> List[Debt]:
        return await DebtService.list_debts(db, group_id, status, contract_id)

    @staticmethod
    async def debt_summary(db: AsyncSession, group_id: int) -> DebtSummary:
        return await DebtService.summary(db, group_id)

    @staticmethod
    async def get_debt(db: AsyncSession, group_id: int, debt_id: int) -> Debt:
        debt = await db.get(Debt, debt_id)
        if not debt or debt.group_id != group_id:
            raise ResourceNotFoundError("Debt", debt_id)
        return debt

    @staticmethod
    async def pay_debt(
        db: AsyncSession,
        group_id: int,
        debt_id: int,
        amount,
        payment_date: date,
        payment_method: PaymentMethod = PaymentMethod.EFECTIVO,
        generate_receipt: Optional[bool] = None,
        observations: Optional[str] = None,
        actor_username: Optional[str] = None,
    ) -> Tuple[Debt, DebtPayment]:
        debt = await BillingService.get_debt(db, group_id, debt_id)
        contract = await BillingService.get_contract(db, group_id, debt.contract_id)
        payment = await DebtService.pay_debt(
            db, contract, debt, amount, payment_date,
            payment_method=payment_method,
            generate_receipt=generate_receipt,
            observations=observations,
            actor_username=actor_username,
        )
        return debt, payment

    @staticmethod
    async def list_holidays(db: AsyncSession, year: int) -> List[Holiday]:
        return await business_days.list_holidays(db, year)

    @staticmethod
    async def add_holiday(db: AsyncSession, day: date, name: str, actor_username: Optional[str] = None) -> Holiday:
        holiday = await business_days.add_holiday(db, day, name)
        await log_event(
            db=db,
            action=AuditAction.HOLIDAY_ADDED,
            entity_type="holiday",
            entity_id=holiday.id,
            actor_username=actor_username,
            metadata={"date": day.isoformat(), "name": name},
        )
        return holiday

    @staticmethod
    async def seed_holidays(db: AsyncSession, year: int) -> List[Holiday]:
        return await business_days.seed_holidays(db, year)
