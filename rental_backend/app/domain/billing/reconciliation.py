"""
Payment Reconciliation.

Matches payments against monthly records, derives record status and manages
the credit an overpayment carries into the next period.

Imputation order of a payment: services and other charges, then rent, then
punitory; anything left is an overpayment (SOBREPAGO). The surplus is never
stored on the next record eagerly: the next record recomputes its A_FAVOR
line while it has no payments of its own.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError

from rental_backend.app.core.config import settings
from rental_backend.app.core.exceptions import DuplicateReceiptError, ImmutableCompletedPeriodError
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.monthly_record import MonthlyRecord
from rental_backend.app.models.debt import Debt
from rental_backend.app.models.record_concept import RecordConcept
from rental_backend.app.models.payment_transaction import PaymentTransaction, TransactionConcept
from rental_backend.app.models.billing_enums import ConceptKind, PaymentMethod, RecordStatus
from rental_backend.app.domain.billing.money import round2, ZERO
from rental_backend.app.domain.billing.ledger_builder import LedgerBuilder, as_line, RANK_PUNITORY, RANK_IVA
from rental_backend.app.domain.billing.debt_service import DebtService
from rental_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("rental_billing.payments")


@dataclass(frozen=True)
class ImputationLine:
    concept_type: str
    amount: Decimal
    description: Optional[str] = None


def impute(concepts, previous_paid: Decimal, amount: Decimal) -> List[ImputationLine]:
    """
    Split one payment across the concepts of its record.

    Earlier payments (and, from the second payment on, credits) are consumed
    first in the same order. The first payment shows the credits it used as
    negative lines, so the snapshot always adds up to the payment amount.
    """
    services = [c for c in concepts if c.amount > 0 and c.concept_type not in (
        ConceptKind.ALQUILER.value, ConceptKind.PUNITORIOS.value)]
    rent = [c for c in concepts if c.concept_type == ConceptKind.ALQUILER.value and c.amount > 0]
    late = [c for c in concepts if c.concept_type == ConceptKind.PUNITORIOS.value and c.amount > 0]
    credits = [c for c in concepts if c.amount < 0]
    credit_total = -sum((c.amount for c in credits), ZERO)

    first = previous_paid == 0
    consumed = previous_paid + (ZERO if first else credit_total)
    pool = amount + (credit_total if first else ZERO)

    lines = []
    for concept in services + rent + late:
        need = round2(concept.amount)
        earlier = min(need, consumed)
        consumed -= earlier
        need -= earlier
        take = min(need, pool)
        if take > 0:
            pool -= take
            lines.append(ImputationLine(concept.concept_type, round2(take), concept.description))

    if pool > 0:
        lines.append(ImputationLine(ConceptKind.SOBREPAGO.value, round2(pool), "Pago en exceso"))
    if first:
        for concept in credits:
            lines.append(ImputationLine(concept.concept_type, round2(concept.amount), concept.description))
    return lines


class PaymentReconciliation:

    @staticmethod
    async def next_receipt_number(db: AsyncSession, group_id: int) -> str:
        """
        REC-000001 style, one past the highest number issued in the group.

        Deleted payments leave gaps; their numbers are never reissued while
        a higher one exists.
        """
        prefix = f"{settings.receipt_prefix}-"
        result = await db.execute(
            select(PaymentTransaction.receipt_number)
            .where(
                PaymentTransaction.group_id == group_id,
                PaymentTransaction.receipt_number.like(f"{prefix}%"),
            )
            .order_by(func.length(PaymentTransaction.receipt_number).desc(), PaymentTransaction.receipt_number.desc())
            .limit(1)
        )
        last = result.scalar_one_or_none()
        suffix = last[len(prefix):] if last else ""
        following = int(suffix) + 1 if suffix.isdigit() else 1
        return f"{prefix}{following:06d}"

    @staticmethod
    async def add_transaction(
        db: AsyncSession,
        record: MonthlyRecord,
        *,
        amount: Decimal,
        payment_date: date,
        payment_method: PaymentMethod,
        punitory_amount: Decimal,
        punitory_days: int,
        punitory_forgiven: bool = False,
        iva_amount=None,
        generate_receipt: Optional[bool] = None,
        observations: Optional[str] = None,
    ) -> PaymentTransaction:
        """
        Insert a payment transaction. Cash payments get a receipt number
        unless generate_receipt is False.

        Raises:
            DuplicateReceiptError: a concurrent payment took the receipt number.
        """
        if generate_receipt is None:
            generate_receipt = payment_method == PaymentMethod.EFECTIVO
        receipt_number = await PaymentReconciliation.next_receipt_number(db, record.group_id) if generate_receipt else None

        transaction = PaymentTransaction(
            group_id=record.group_id,
            monthly_record_id=record.id,
            payment_date=payment_date,
            payment_method=payment_method,
            amount=amount,
            punitory_amount=punitory_amount,
            punitory_days=punitory_days,
            punitory_forgiven=punitory_forgiven,
            iva_amount=round2(iva_amount) if iva_amount is not None else None,
            receipt_number=receipt_number,
            observations=observations,
        )

        # Unique (group_id, receipt_number) settles races past next_receipt_number
        try:
            async with db.begin_nested():
                db.add(transaction)
                await db.flush()
        except IntegrityError:
            if receipt_number is None:
                raise
            logger.warning("Receipt %s of group %s issued concurrently", receipt_number, record.group_id)
            raise DuplicateReceiptError(record.group_id, receipt_number)
        return transaction

    @staticmethod
    async def sync_punitory(db: AsyncSession, record: MonthlyRecord) -> None:
        """The PUNITORIOS line is the sum of what each transaction charged."""
        result = await db.execute(
            select(func.coalesce(func.sum(PaymentTransaction.punitory_amount), 0))
            .where(PaymentTransaction.monthly_record_id == record.id)
        )
        accrued = round2(result.scalar())
        concepts = await LedgerBuilder.get_concepts(db, record.id)
        line = next((c for c in concepts if c.concept_type == ConceptKind.PUNITORIOS.value), None)

        if line is None and accrued > 0:
            db.add(RecordConcept(
                monthly_record_id=record.id,
                position=RANK_PUNITORY,
                concept_type=ConceptKind.PUNITORIOS.value,
                amount=accrued,
                description="Punitorios",
                is_automatic=True,
            ))
        elif line is not None and accrued == 0:
            await db.delete(line)
        elif line is not None:
            line.amount = accrued
        await db.flush()

    @staticmethod
    async def set_iva(db: AsyncSession, record: MonthlyRecord, iva_amount) -> None:
        concepts = await LedgerBuilder.get_concepts(db, record.id)
        line = next((c for c in concepts if c.concept_type == ConceptKind.IVA.value), None)
        if line is None:
            db.add(RecordConcept(
                monthly_record_id=record.id,
                position=RANK_IVA,
                concept_type=ConceptKind.IVA.value,
                amount=round2(iva_amount),
                description="IVA",
                is_automatic=False,
            ))
        else:
            line.amount = round2(iva_amount)
        await db.flush()

    @staticmethod
    async def refresh_next_credit(db: AsyncSession, contract: Contract, record: MonthlyRecord) -> None:
        """
        Refresh the A_FAVOR line of the following records.

        A credit larger than a period's charges leaves that period with
        total_due below zero, which carries on to the period after it.
        """
        current = record
        while True:
            following = await LedgerBuilder.get_record(db, contract.id, current.month_number + 1)
            if following is None or not await LedgerBuilder.refresh_credit(db, contract, following):
                return
            current = following

    @staticmethod
    async def record_payment(
        db: AsyncSession,
        contract: Contract,
        record: MonthlyRecord,
        amount,
        payment_date: date,
        payment_method: PaymentMethod = PaymentMethod.EFECTIVO,
        punitory_forgiven: bool = False,
        iva_amount=None,
        generate_receipt: Optional[bool] = None,
        observations: Optional[str] = None,
        actor_username: Optional[str] = None,
    ) -> PaymentTransaction:
        """
        Record a payment against a monthly record.

        Punitory is computed at payment_date on the rent still unpaid, net
        of credits. Cash payments get a receipt number unless
        generate_receipt is False.

        Raises:
            ImmutableCompletedPeriodError: the record is already COMPLETE.
            DebtBlockError: the contract has open debts.
            DuplicateReceiptError: a concurrent payment took the receipt number.
        """
        if record.status == RecordStatus.COMPLETE:
            raise ImmutableCompletedPeriodError(
                f"Period {record.month_number} of contract {contract.id} is already fully paid",
                record_id=record.id,
            )
        await DebtService.ensure_can_pay(db, contract)

        amount = round2(amount)
        previous_paid = round2(record.amount_paid)
        lines = [as_line(c) for c in await LedgerBuilder.get_concepts(db, record.id)]
        late = await LedgerBuilder.late_charge(
            db, contract, record.month_number, lines, payment_date, record, forgiven=punitory_forgiven,
        )

        transaction = await PaymentReconciliation.add_transaction(
            db,
            record,
            amount=amount,
            payment_date=payment_date,
            payment_method=payment_method,
            punitory_amount=late.amount,
            punitory_days=late.days_late,
            punitory_forgiven=punitory_forgiven,
            iva_amount=iva_amount,
            generate_receipt=generate_receipt,
            observations=observations,
        )
        receipt_number = transaction.receipt_number

        await PaymentReconciliation.sync_punitory(db, record)
        if iva_amount is not None:
            await PaymentReconciliation.set_iva(db, record, iva_amount)

        concepts = await LedgerBuilder.get_concepts(db, record.id)
        for i, line in enumerate(impute(concepts, previous_paid, amount)):
            db.add(TransactionConcept(
                transaction_id=transaction.id,
                position=i,
                concept_type=line.concept_type,
                amount=line.amount,
                description=line.description,
            ))
        await db.flush()

        await LedgerBuilder.recalculate(db, record)
        await PaymentReconciliation.refresh_next_credit(db, contract, record)

        await log_event(
            db=db,
            action=AuditAction.PAYMENT_RECORDED,
            group_id=record.group_id,
            entity_type="payment_transaction",
            entity_id=transaction.id,
            actor_username=actor_username,
            metadata={
                "monthly_record_id": record.id,
                "amount": str(amount),
                "punitory_amount": str(late.amount),
                "punitory_days": late.days_late,
                "status": record.status.value,
                "receipt_number": receipt_number,
            },
        )
        logger.info(
            "Payment %s of %s on record %s (contract %s month %s): status %s",
            transaction.id, amount, record.id, contract.id, record.month_number, record.status.value,
        )
        return transaction

    @staticmethod
    async def get_snapshot(db: AsyncSession, transaction_id: int) -> List[TransactionConcept]:
        result = await db.execute(
            select(TransactionConcept)
            .where(TransactionConcept.transaction_id == transaction_id)
            .order_by(TransactionConcept.position)
        )
        return list(result.scalars().all())

    @staticmethod
    async def delete_transaction(
        db: AsyncSession,
        contract: Contract,
        transaction: PaymentTransaction,
        actor_username: Optional[str] = None,
    ) -> MonthlyRecord:
        """
        Delete a payment and reverse its effects on the record.

        Raises:
            ImmutableCompletedPeriodError: the record was closed into a debt,
                or a later period already paid against the credit this
                record carried.
        """
        record = await db.get(MonthlyRecord, transaction.monthly_record_id)
        debt = await db.execute(select(Debt.id).where(Debt.monthly_record_id == record.id))
        if debt.scalar_one_or_none() is not None:
            raise ImmutableCompletedPeriodError(
                f"Period {record.month_number} of contract {contract.id} was closed into a debt",
                record_id=record.id,
            )

        # Follow the credit while it passes through periods it fully covers
        current = record
        while True:
            following = await LedgerBuilder.get_record(db, contract.id, current.month_number + 1)
            if following is None:
                break
            if round2(following.amount_paid) > 0:
                concepts = await LedgerBuilder.get_concepts(db, following.id)
                credit = sum((c.amount for c in concepts if c.concept_type == ConceptKind.A_FAVOR.value), ZERO)
                if credit != 0:
                    logger.warning(
                        "Refusing to delete payment %s: credit already consumed by record %s",
                        transaction.id, following.id,
                    )
                    raise ImmutableCompletedPeriodError(
                        f"Period {following.month_number} already consumed the credit of period {record.month_number}",
                        record_id=following.id,
                    )
                break
            if round2(following.total_due) >= 0:
                break
            current = following

        transaction_id, amount = transaction.id, round2(transaction.amount)
        await db.execute(delete(TransactionConcept).where(TransactionConcept.transaction_id == transaction_id))
        await db.delete(transaction)
        await db.flush()

        await PaymentReconciliation.sync_punitory(db, record)
        await LedgerBuilder.recalculate(db, record)
        await PaymentReconciliation.refresh_next_credit(db, contract, record)

        await log_event(
            db=db,
            action=AuditAction.PAYMENT_DELETED,
            group_id=record.group_id,
            entity_type="payment_transaction",
            entity_id=transaction_id,
            actor_username=actor_username,
            metadata={"monthly_record_id": record.id, "amount": str(amount), "status": record.status.value},
        )
        logger.info("Deleted payment %s from record %s: status %s", transaction_id, record.id, record.status.value)
        return record
