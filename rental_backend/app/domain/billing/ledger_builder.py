"""
Period Ledger Builder.

Computes the ordered concept list of one contract period, opens monthly
records and keeps their totals in line with their concepts.

Concept order on a record:
1. ALQUILER (rent in force for the period)
2. PUNITORIOS (late-payment interest, only when non-zero)
3. A_FAVOR (negative, credit carried from the previous period)
4. Pass-through property charges matching the contract type
5. Ad-hoc concepts (batch distributions, corrective lines)
6. IVA slot, entered manually at payment time
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
from rental_backend.app.core.exceptions import (
    ContractExpiredError, DuplicatePeriodError, ImmutableCompletedPeriodError
)
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.monthly_record import MonthlyRecord
from rental_backend.app.models.record_concept import RecordConcept
from rental_backend.app.models.payment_transaction import PaymentTransaction
from rental_backend.app.models.property_charge import PropertyCharge
from rental_backend.app.models.service_concept_type import ServiceConceptType
from rental_backend.app.models.adjustment_index import AdjustmentIndex
from rental_backend.app.models.billing_enums import (
    ConceptKind, ContractStatus, ContractType, RecordStatus
)
from rental_backend.app.domain.billing import business_days, contract_state, punitory
from rental_backend.app.domain.billing.money import round2, ZERO
from rental_backend.app.domain.billing.rent_resolver import RentResolver
from rental_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("rental_billing.ledger")

# Position blocks keep the concept order stable when lines are added later
RANK_RENT = 0
RANK_PUNITORY = 1000
RANK_CREDIT = 2000
RANK_PASS_THROUGH = 3000
RANK_AD_HOC = 4000
RANK_IVA = 5000

ENGINE_KINDS = {k.value for k in ConceptKind}


@dataclass(frozen=True)
class ConceptLine:
    """One computed concept, persisted or not."""
    concept_type: str
    amount: Decimal
    is_automatic: bool = True
    description: Optional[str] = None
    service_concept_type_id: Optional[int] = None
    is_corrective: bool = False
    position: int = 0


@dataclass(frozen=True)
class PeriodPreview:
    contract_id: int
    month_number: int
    period_month: int
    period_year: int
    concepts: List[ConceptLine]
    total_due: Decimal
    amount_paid: Decimal
    punitory_days: int
    record_id: Optional[int] = None


def derive_status(amount_paid: Decimal, total_due: Decimal) -> RecordStatus:
    """
    COMPLETE iff amount_paid >= total_due; PARTIAL iff 0 < paid < due.

    A record whose credits cover everything (total_due <= 0) is COMPLETE
    without payments.
    """
    if amount_paid >= total_due:
        return RecordStatus.COMPLETE
    if amount_paid > 0:
        return RecordStatus.PARTIAL
    return RecordStatus.PENDING


def total_of(lines) -> Decimal:
    return round2(sum((round2(line.amount) for line in lines), ZERO))


def unpaid_rent(lines, amount_paid: Decimal) -> Decimal:
    """
    Rent still owed after previous payments and credits.

    Credits (A_FAVOR and discount lines) count alongside payments. Together
    they cover the other positive charges first, then rent, so the first
    payment of a period without credit owes interest on the full rent.
    """
    rent = sum((line.amount for line in lines if line.concept_type == ConceptKind.ALQUILER.value), ZERO)
    others = sum(
        (line.amount for line in lines
         if line.amount > 0
         and line.concept_type not in (ConceptKind.ALQUILER.value, ConceptKind.PUNITORIOS.value)),
        ZERO,
    )
    credits = -sum((line.amount for line in lines if line.amount < 0), ZERO)
    covered = min(max(amount_paid + credits - others, ZERO), rent)
    return round2(rent - covered)


def as_line(concept: RecordConcept) -> ConceptLine:
    return ConceptLine(
        concept_type=concept.concept_type,
        amount=round2(concept.amount),
        is_automatic=concept.is_automatic,
        description=concept.description,
        service_concept_type_id=concept.service_concept_type_id,
        is_corrective=concept.is_corrective,
        position=concept.position,
    )


class LedgerBuilder:

    @staticmethod
    async def get_record(db: AsyncSession, contract_id: int, month_number: int) -> Optional[MonthlyRecord]:
        result = await db.execute(
            select(MonthlyRecord).where(
                MonthlyRecord.contract_id == contract_id,
                MonthlyRecord.month_number == month_number,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_concepts(db: AsyncSession, record_id: int) -> List[RecordConcept]:
        result = await db.execute(
            select(RecordConcept)
            .where(RecordConcept.monthly_record_id == record_id)
            .order_by(RecordConcept.position, RecordConcept.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def sum_payments(db: AsyncSession, record_id: int) -> Decimal:
        result = await db.execute(
            select(func.coalesce(func.sum(PaymentTransaction.amount), 0))
            .where(PaymentTransaction.monthly_record_id == record_id)
        )
        return round2(result.scalar())

    @staticmethod
    async def last_payment_date(db: AsyncSession, record_id: int) -> Optional[date]:
        result = await db.execute(
            select(func.max(PaymentTransaction.payment_date))
            .where(PaymentTransaction.monthly_record_id == record_id)
        )
        return result.scalar()

    @staticmethod
    async def late_charge(
        db: AsyncSession,
        contract: Contract,
        month_number: int,
        lines,
        payment_date: date,
        record: Optional[MonthlyRecord] = None,
        forgiven: bool = False,
    ) -> punitory.PunitoryResult:
        """
        Punitory a payment made on payment_date would add to the period.

        Accrues on the rent still unpaid, from the start day or the record's
        last payment, whichever is later.
        """
        period_month, period_year = contract_state.calendar_period(contract, month_number)
        amount_paid = round2(record.amount_paid) if record else ZERO
        last_paid = await LedgerBuilder.last_payment_date(db, record.id) if record else None
        # Holidays after payment_date cannot make it late
        holidays = await business_days.holiday_dates(db, date(period_year, period_month, 1), payment_date)
        return punitory.calculate(
            unpaid_rent(lines, amount_paid),
            contract.punitory_percent,
            payment_date,
            period_month,
            period_year,
            contract.punitory_start_day,
            forgiven=forgiven,
            grace_day=contract.punitory_grace_day,
            holidays=holidays,
            last_payment_date=last_paid,
        )

    @staticmethod
    async def carried_credit(db: AsyncSession, contract_id: int, month_number: int) -> Decimal:
        """Overpayment of the previous period: max(0, amount_paid - total_due)."""
        if month_number <= 1:
            return ZERO
        previous = await LedgerBuilder.get_record(db, contract_id, month_number - 1)
        if not previous:
            return ZERO
        return max(round2(previous.amount_paid) - round2(previous.total_due), ZERO)

    @staticmethod
    async def pass_through_lines(db: AsyncSession, contract: Contract) -> List[ConceptLine]:
        """Active property charges whose applies_to matches the contract type."""
        if contract.property_id is None:
            return []
        result = await db.execute(
            select(PropertyCharge, ServiceConceptType)
            .join(ServiceConceptType, ServiceConceptType.id == PropertyCharge.service_concept_type_id)
            .where(
                PropertyCharge.property_id == contract.property_id,
                PropertyCharge.group_id == contract.group_id,
                PropertyCharge.applies_to == contract.contract_type,
                PropertyCharge.is_active == True,
            )
            .order_by(PropertyCharge.id)
        )
        lines = []
        for i, (charge, concept_type) in enumerate(result.all()):
            amount = round2(charge.amount)
            if concept_type.is_subtractive:
                amount = -abs(amount)
            lines.append(ConceptLine(
                concept_type=concept_type.name,
                amount=amount,
                is_automatic=True,
                description=charge.description or concept_type.label,
                service_concept_type_id=concept_type.id,
                position=RANK_PASS_THROUGH + i,
            ))
        return lines

    @staticmethod
    async def build_concepts(
        db: AsyncSession,
        contract: Contract,
        month_number: int,
        payment_date: Optional[date] = None,
        record: Optional[MonthlyRecord] = None,
    ) -> List[ConceptLine]:
        """
        Ordered concepts of a contract period.

        With an existing record its stored lines are the starting point; the
        punitory line is recomputed at payment_date and the credit line is
        refreshed while the record has no payments. The punitory is computed
        last since its base depends on the credit and the other charges.
        """
        stored = [as_line(c) for c in await LedgerBuilder.get_concepts(db, record.id)] if record else []
        amount_paid = round2(record.amount_paid) if record else ZERO

        lines: List[ConceptLine] = []

        # 1. Rent
        rent_line = next((l for l in stored if l.concept_type == ConceptKind.ALQUILER.value), None)
        if rent_line is None and contract.contract_type == ContractType.TENANT:
            rent = await RentResolver.rent_in_force(db, contract, month_number)
            rent_line = ConceptLine(
                concept_type=ConceptKind.ALQUILER.value,
                amount=rent,
                description=f"Alquiler mes {month_number}",
                position=RANK_RENT,
            )
        if rent_line is not None:
            lines.append(rent_line)

        # 3. Carried credit
        stored_credit = next((l for l in stored if l.concept_type == ConceptKind.A_FAVOR.value), None)
        if record is not None and amount_paid > 0:
            credit_line = stored_credit
        else:
            credit = await LedgerBuilder.carried_credit(db, contract.id, month_number)
            credit_line = ConceptLine(
                concept_type=ConceptKind.A_FAVOR.value,
                amount=-credit,
                description="Saldo a favor del periodo anterior",
                position=RANK_CREDIT,
            ) if credit > 0 else None
        if credit_line is not None:
            lines.append(credit_line)

        # 4. Pass-through and 5. ad-hoc
        if record is not None:
            lines.extend(l for l in stored if l.concept_type not in ENGINE_KINDS)
        else:
            lines.extend(await LedgerBuilder.pass_through_lines(db, contract))

        # 6. IVA slot
        stored_iva = next((l for l in stored if l.concept_type == ConceptKind.IVA.value), None)
        if stored_iva is not None:
            lines.append(stored_iva)
        elif contract.pays_iva:
            lines.append(ConceptLine(
                concept_type=ConceptKind.IVA.value,
                amount=ZERO,
                is_automatic=False,
                description="IVA",
                position=RANK_IVA,
            ))

        # 2. Punitory, right after the rent
        at = 1 if rent_line is not None else 0
        stored_punitory = next((l for l in stored if l.concept_type == ConceptKind.PUNITORIOS.value), None)
        if payment_date is not None and rent_line is not None:
            result = await LedgerBuilder.late_charge(db, contract, month_number, lines, payment_date, record)
            accrued = stored_punitory.amount if stored_punitory else ZERO
            if result.amount + accrued != 0:
                lines.insert(at, ConceptLine(
                    concept_type=ConceptKind.PUNITORIOS.value,
                    amount=round2(accrued + result.amount),
                    description=f"Punitorios ({result.days_late} dias)",
                    position=RANK_PUNITORY,
                ))
        elif stored_punitory is not None and stored_punitory.amount != 0:
            lines.insert(at, stored_punitory)

        return lines

    @staticmethod
    async def write_concepts(db: AsyncSession, record: MonthlyRecord, lines: List[ConceptLine]) -> None:
        """Replace the stored concepts of a record with lines."""
        await db.execute(delete(RecordConcept).where(RecordConcept.monthly_record_id == record.id))
        for line in lines:
            db.add(RecordConcept(
                monthly_record_id=record.id,
                service_concept_type_id=line.service_concept_type_id,
                position=line.position,
                concept_type=line.concept_type,
                amount=round2(line.amount),
                description=line.description,
                is_automatic=line.is_automatic,
                is_corrective=line.is_corrective,
            ))
        await db.flush()

    @staticmethod
    async def recalculate(db: AsyncSession, record: MonthlyRecord) -> MonthlyRecord:
        """Recompute total_due, amount_paid and status from stored rows."""
        concepts = await LedgerBuilder.get_concepts(db, record.id)
        record.total_due = total_of(concepts)
        record.amount_paid = await LedgerBuilder.sum_payments(db, record.id)
        record.status = derive_status(record.amount_paid, record.total_due)

        if record.status == RecordStatus.COMPLETE:
            result = await db.execute(
                select(func.max(PaymentTransaction.payment_date))
                .where(PaymentTransaction.monthly_record_id == record.id)
            )
            record.full_payment_date = result.scalar()
        else:
            record.full_payment_date = None

        await db.flush()
        return record

    @staticmethod
    async def open_period(
        db: AsyncSession,
        contract: Contract,
        month_number: Optional[int] = None,
        actor_username: Optional[str] = None,
    ) -> MonthlyRecord:
        """
        Create the monthly record of a contract period.

        Without month_number the current month is opened, advancing the
        contract first when the current month already has a record. Opening
        the final month expires the contract; an expired contract may only
        back-fill months up to its cursor.

        Raises:
            ContractExpiredError: month past the duration or contract expired.
            DuplicatePeriodError: a record already exists for the month.
        """
        if contract.status == ContractStatus.EXPIRED and (
            month_number is None or month_number > contract.current_month
        ):
            raise ContractExpiredError(contract.id, contract.duration_months)

        index = None
        if contract.adjustment_index_id:
            index = await db.get(AdjustmentIndex, contract.adjustment_index_id)
        frequency = index.frequency_months if index else None

        if month_number is None:
            if await LedgerBuilder.get_record(db, contract.id, contract.current_month):
                contract_state.advance_period(contract, frequency)
            month_number = contract.current_month
        elif month_number > contract.duration_months:
            raise ContractExpiredError(contract.id, contract.duration_months)

        if await LedgerBuilder.get_record(db, contract.id, month_number):
            raise DuplicatePeriodError(contract.id, month_number)

        if month_number > contract.current_month:
            contract.current_month = month_number

        if (
            index and settings.auto_apply_adjustments
            and index.current_value and index.current_value > 0
            and contract_state.is_adjustment_month(month_number, frequency)
        ):
            # Local import: the adjustment service re-prices records through this builder
            from rental_backend.app.domain.billing.adjustment_service import AdjustmentService
            active = await RentResolver.resolve_active_adjustment(db, contract.id, month_number)
            if not active or active.target_month != month_number:
                await AdjustmentService.apply(db, contract, index.current_value, month_number)

        # base_rent follows the rent in force at the cursor
        contract.base_rent = await RentResolver.rent_in_force(db, contract, contract.current_month)

        period_month, period_year = contract_state.calendar_period(contract, month_number)
        record = MonthlyRecord(
            group_id=contract.group_id,
            contract_id=contract.id,
            month_number=month_number,
            period_month=period_month,
            period_year=period_year,
            total_due=ZERO,
            amount_paid=ZERO,
            status=RecordStatus.PENDING,
        )

        # Unique (contract_id, month_number) settles races past the pre-check
        try:
            async with db.begin_nested():
                db.add(record)
                await db.flush()
        except IntegrityError:
            logger.warning("Period %s of contract %s opened concurrently", month_number, contract.id)
            raise DuplicatePeriodError(contract.id, month_number)

        lines = await LedgerBuilder.build_concepts(db, contract, month_number)
        await LedgerBuilder.write_concepts(db, record, lines)
        await LedgerBuilder.recalculate(db, record)

        if month_number == contract.duration_months and contract.status != ContractStatus.EXPIRED:
            contract_state.expire(contract)
            await log_event(
                db=db,
                action=AuditAction.CONTRACT_EXPIRED,
                group_id=contract.group_id,
                entity_type="contract",
                entity_id=contract.id,
                actor_username=actor_username,
                metadata={"last_month": month_number},
            )

        await log_event(
            db=db,
            action=AuditAction.PERIOD_OPENED,
            group_id=contract.group_id,
            entity_type="monthly_record",
            entity_id=record.id,
            actor_username=actor_username,
            metadata={
                "contract_id": contract.id,
                "month_number": month_number,
                "total_due": str(record.total_due),
            },
        )
        logger.info(
            "Opened period %s of contract %s (%02d/%s), total due %s",
            month_number, contract.id, period_month, period_year, record.total_due,
        )
        return record

    @staticmethod
    async def compute_preview(
        db: AsyncSession, contract: Contract, payment_date: date
    ) -> PeriodPreview:
        """
        Concepts owed if a payment were made on payment_date. Nothing is persisted.

        The period is the one payment_date falls in, or the current period when
        the date lies outside the contract term.
        """
        month_number = contract_state.month_number_for(contract, payment_date.month, payment_date.year)
        if month_number < 1 or month_number > contract.duration_months:
            month_number = contract.current_month

        record = await LedgerBuilder.get_record(db, contract.id, month_number)
        lines = await LedgerBuilder.build_concepts(db, contract, month_number, payment_date, record)
        period_month, period_year = contract_state.calendar_period(contract, month_number)

        amount_paid = round2(record.amount_paid) if record else ZERO
        days = 0
        if any(l.concept_type == ConceptKind.PUNITORIOS.value for l in lines):
            result = await LedgerBuilder.late_charge(db, contract, month_number, lines, payment_date, record)
            days = result.days_late

        return PeriodPreview(
            contract_id=contract.id,
            month_number=month_number,
            period_month=period_month,
            period_year=period_year,
            concepts=lines,
            total_due=total_of(lines),
            amount_paid=amount_paid,
            punitory_days=days,
            record_id=record.id if record else None,
        )

    @staticmethod
    async def refresh_credit(db: AsyncSession, contract: Contract, record: MonthlyRecord) -> bool:
        """
        Recompute the A_FAVOR line of a record with no payments yet.

        Returns whether the record changed.
        """
        if round2(record.amount_paid) > 0:
            return False
        credit = await LedgerBuilder.carried_credit(db, contract.id, record.month_number)
        concepts = await LedgerBuilder.get_concepts(db, record.id)
        current = next((c for c in concepts if c.concept_type == ConceptKind.A_FAVOR.value), None)

        if current is not None and round2(current.amount) == -credit:
            return False
        if current is None and credit == 0:
            return False

        if current is not None and credit == 0:
            await db.delete(current)
        elif current is not None:
            current.amount = -credit
        else:
            db.add(RecordConcept(
                monthly_record_id=record.id,
                position=RANK_CREDIT,
                concept_type=ConceptKind.A_FAVOR.value,
                amount=-credit,
                description="Saldo a favor del periodo anterior",
                is_automatic=True,
            ))
        await db.flush()
        await LedgerBuilder.recalculate(db, record)
        logger.info("Refreshed carried credit of record %s to %s", record.id, credit)
        return True

    @staticmethod
    async def add_concept(
        db: AsyncSession,
        record: MonthlyRecord,
        concept_type: str,
        amount,
        description: Optional[str] = None,
        service_concept_type_id: Optional[int] = None,
        is_corrective: bool = False,
        actor_username: Optional[str] = None,
    ) -> RecordConcept:
        """
        Add an ad-hoc concept to a record.

        Raises:
            ImmutableCompletedPeriodError: record is COMPLETE and the concept
                is not corrective.
        """
        if record.status == RecordStatus.COMPLETE and not is_corrective:
            raise ImmutableCompletedPeriodError(
                f"Period {record.month_number} is fully paid; only corrective concepts may be added",
                record_id=record.id,
            )

        result = await db.execute(
            select(func.count(RecordConcept.id)).where(
                RecordConcept.monthly_record_id == record.id,
                RecordConcept.position >= RANK_AD_HOC,
                RecordConcept.position < RANK_IVA,
            )
        )
        concept = RecordConcept(
            monthly_record_id=record.id,
            service_concept_type_id=service_concept_type_id,
            position=RANK_AD_HOC + result.scalar(),
            concept_type=concept_type,
            amount=round2(amount),
            description=description,
            is_automatic=False,
            is_corrective=is_corrective,
        )
        db.add(concept)
        await db.flush()
        await LedgerBuilder.recalculate(db, record)

        await log_event(
            db=db,
            action=AuditAction.CONCEPT_ADDED,
            group_id=record.group_id,
            entity_type="monthly_record",
            entity_id=record.id,
            actor_username=actor_username,
            metadata={"concept_type": concept_type, "amount": str(concept.amount), "corrective": is_corrective},
        )
        return concept

    @staticmethod
    async def refresh_rent(db: AsyncSession, contract: Contract, from_month: int) -> List[int]:
        """
        Re-price the rent line of untouched records from from_month on.

        Only PENDING records without payments are changed. Returns the ids of
        the records that were re-priced.
        """
        result = await db.execute(
            select(MonthlyRecord).where(
                MonthlyRecord.contract_id == contract.id,
                MonthlyRecord.month_number >= from_month,
                MonthlyRecord.status == RecordStatus.PENDING,
                MonthlyRecord.amount_paid == 0,
            ).order_by(MonthlyRecord.month_number)
        )
        changed = []
        for record in result.scalars().all():
            rent = await RentResolver.rent_in_force(db, contract, record.month_number)
            concepts = await LedgerBuilder.get_concepts(db, record.id)
            rent_concept = next((c for c in concepts if c.concept_type == ConceptKind.ALQUILER.value), None)
            if rent_concept is None or round2(rent_concept.amount) == rent:
                continue
            rent_concept.amount = rent
            await db.flush()
            await LedgerBuilder.recalculate(db, record)
            changed.append(record.id)
        return changed
