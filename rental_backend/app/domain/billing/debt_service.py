"""
Debt Service.

Debts are created by the month close (see month_close). While a contract has
an open debt no regular payment is accepted on any of its periods; the debt
is paid off through pay_debt, which mirrors every debt payment as a payment
transaction on the closed monthly record.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from rental_backend.app.core.exceptions import (
    DebtBlockError, DebtOverpaymentError, ImmutableCompletedPeriodError
)
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.debt import Debt, DebtPayment
from rental_backend.app.models.monthly_record import MonthlyRecord
from rental_backend.app.models.payment_transaction import TransactionConcept
from rental_backend.app.models.billing_enums import ConceptKind, DebtStatus, PaymentMethod
from rental_backend.app.domain.billing import punitory
from rental_backend.app.domain.billing.money import round2, ZERO
from rental_backend.app.domain.billing.ledger_builder import LedgerBuilder
from rental_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("rental_billing.debts")

UNSETTLED = (DebtStatus.OPEN, DebtStatus.PARTIAL)


@dataclass(frozen=True)
class DebtSummary:
    open_debts: int
    total_debt: Decimal
    total_principal: Decimal
    total_punitory: Decimal
    blocked_contracts: int


def remaining_principal(debt: Debt) -> Tuple[Decimal, Decimal]:
    """(services, rent) still unpaid; payments cover services first."""
    services = round2(debt.unpaid_services_amount)
    rent = round2(debt.unpaid_rent_amount)
    paid = round2(debt.amount_paid)
    services_paid = min(paid, services)
    rent_paid = min(paid - services_paid, rent)
    return services - services_paid, rent - rent_paid


def accrual_start(debt: Debt) -> date:
    if debt.last_payment_date and debt.last_payment_date > debt.punitory_start_date:
        return debt.last_payment_date
    return debt.punitory_start_date


def accrued_punitory(debt: Debt, as_of: date) -> Tuple[Decimal, int]:
    """Punitory the unpaid rent accrued since the close or the last payment."""
    days = max(0, (as_of - accrual_start(debt)).days)
    _, rent = remaining_principal(debt)
    return punitory.punitory(rent, debt.punitory_percent, days), days


def outstanding(debt: Debt, as_of: date) -> Decimal:
    if debt.status == DebtStatus.PAID:
        return ZERO
    services, rent = remaining_principal(debt)
    accrued, _ = accrued_punitory(debt, as_of)
    return round2(services + rent + round2(debt.accumulated_punitory) + accrued)


class DebtService:

    @staticmethod
    async def open_debts(db: AsyncSession, contract_id: int) -> List[Debt]:
        result = await db.execute(
            select(Debt).where(Debt.contract_id == contract_id, Debt.status.in_(UNSETTLED))
            .order_by(Debt.period_year, Debt.period_month)
        )
        return list(result.scalars().all())

    @staticmethod
    async def ensure_can_pay(db: AsyncSession, contract: Contract) -> None:
        """
        Raises:
            DebtBlockError: the contract has unsettled debts.
        """
        debts = await DebtService.open_debts(db, contract.id)
        if debts:
            logger.warning("Payment blocked on contract %s: %s open debt(s)", contract.id, len(debts))
            raise DebtBlockError(contract.id, [
                {
                    "debt_id": d.id,
                    "period_month": d.period_month,
                    "period_year": d.period_year,
                    "current_total": str(round2(d.current_total)),
                }
                for d in debts
            ])

    @staticmethod
    async def list_debts(
        db: AsyncSession,
        group_id: int,
        status: Optional[DebtStatus] = None,
        contract_id: Optional[int] = None,
    ) -> List[Debt]:
        query = select(Debt).where(Debt.group_id == group_id)
        if status is not None:
            query = query.where(Debt.status == status)
        if contract_id is not None:
            query = query.where(Debt.contract_id == contract_id)
        result = await db.execute(query.order_by(Debt.period_year, Debt.period_month, Debt.id))
        return list(result.scalars().all())

    @staticmethod
    async def summary(db: AsyncSession, group_id: int) -> DebtSummary:
        result = await db.execute(
            select(Debt).where(Debt.group_id == group_id, Debt.status.in_(UNSETTLED))
        )
        debts = list(result.scalars().all())
        principal = ZERO
        for debt in debts:
            services, rent = remaining_principal(debt)
            principal += services + rent
        return DebtSummary(
            open_debts=len(debts),
            total_debt=round2(sum((round2(d.current_total) for d in debts), ZERO)),
            total_principal=round2(principal),
            total_punitory=round2(sum((round2(d.accumulated_punitory) for d in debts), ZERO)),
            blocked_contracts=len({d.contract_id for d in debts}),
        )

    @staticmethod
    async def get_payments(db: AsyncSession, debt_id: int) -> List[DebtPayment]:
        result = await db.execute(
            select(DebtPayment).where(DebtPayment.debt_id == debt_id).order_by(DebtPayment.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def pay_debt(
        db: AsyncSession,
        contract: Contract,
        debt: Debt,
        amount,
        payment_date: date,
        payment_method: PaymentMethod = PaymentMethod.EFECTIVO,
        generate_receipt: Optional[bool] = None,
        observations: Optional[str] = None,
        actor_username: Optional[str] = None,
    ) -> DebtPayment:
        """
        Pay (part of) a debt.

        Punitory keeps accruing on the unpaid rent from the close, or from
        the last debt payment. The payment covers services, then rent, then
        punitory. The closed record receives a payment transaction carrying
        the punitory charged, so it turns COMPLETE exactly when the debt is
        paid off.

        Raises:
            ImmutableCompletedPeriodError: the debt is already paid.
            DebtOverpaymentError: amount exceeds what the debt owes.
            DuplicateReceiptError: a concurrent payment took the receipt number.
        """
        # Local import: reconciliation checks open debts before every payment
        from rental_backend.app.domain.billing.reconciliation import PaymentReconciliation

        if debt.status == DebtStatus.PAID:
            raise ImmutableCompletedPeriodError(
                f"Debt {debt.id} is already paid", record_id=debt.monthly_record_id,
            )

        amount = round2(amount)
        accrued, days = accrued_punitory(debt, payment_date)
        punitory_due = round2(debt.accumulated_punitory) + accrued
        services, rent = remaining_principal(debt)
        owed = round2(services + rent + punitory_due)
        if amount > owed:
            raise DebtOverpaymentError(debt.id, owed)

        principal_portion = min(amount, services + rent)
        punitory_portion = amount - principal_portion
        # The punitory accrued up to the close joins the record with the first payment
        charged = accrued + (round2(debt.closing_punitory) if round2(debt.amount_paid) == 0 else ZERO)

        record = await db.get(MonthlyRecord, debt.monthly_record_id)
        transaction = await PaymentReconciliation.add_transaction(
            db,
            record,
            amount=amount,
            payment_date=payment_date,
            payment_method=payment_method,
            punitory_amount=round2(charged),
            punitory_days=days,
            generate_receipt=generate_receipt,
            observations=observations,
        )
        snapshot = [
            (ConceptKind.ALQUILER_DEUDA.value, principal_portion, f"Deuda {debt.period_month:02d}/{debt.period_year}"),
            (ConceptKind.PUNITORIOS.value, punitory_portion, f"Punitorios ({days} dias)"),
        ]
        for i, (concept_type, value, description) in enumerate(l for l in snapshot if l[1] > 0):
            db.add(TransactionConcept(
                transaction_id=transaction.id,
                position=i,
                concept_type=concept_type,
                amount=round2(value),
                description=description,
            ))

        payment = DebtPayment(
            debt_id=debt.id,
            transaction_id=transaction.id,
            payment_date=payment_date,
            payment_method=payment_method,
            amount=amount,
            principal_portion=round2(principal_portion),
            punitory_portion=round2(punitory_portion),
            punitory_at_payment=round2(punitory_due),
            observations=observations,
        )
        db.add(payment)

        debt.amount_paid = round2(debt.amount_paid) + amount
        debt.accumulated_punitory = round2(punitory_due - punitory_portion)
        debt.last_payment_date = payment_date
        services, rent = remaining_principal(debt)
        debt.current_total = round2(services + rent + debt.accumulated_punitory)
        if debt.current_total <= 0:
            debt.status = DebtStatus.PAID
            debt.closed_at = datetime.now(timezone.utc)
        else:
            debt.status = DebtStatus.PARTIAL
        await db.flush()

        await PaymentReconciliation.sync_punitory(db, record)
        await LedgerBuilder.recalculate(db, record)
        await PaymentReconciliation.refresh_next_credit(db, contract, record)

        await log_event(
            db=db,
            action=AuditAction.DEBT_PAYMENT_RECORDED,
            group_id=debt.group_id,
            entity_type="debt",
            entity_id=debt.id,
            actor_username=actor_username,
            metadata={
                "transaction_id": transaction.id,
                "amount": str(amount),
                "punitory_charged": str(round2(charged)),
                "current_total": str(debt.current_total),
                "status": debt.status.value,
            },
        )
        logger.info(
            "Debt payment of %s on debt %s (record %s): %s left, status %s",
            amount, debt.id, record.id, debt.current_total, debt.status.value,
        )
        return payment
