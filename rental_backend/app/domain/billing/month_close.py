"""
Month Close.

Closing a calendar month turns every unsettled monthly record of the period
into a debt. Payments and credits of the record are imputed to services,
then rent, then punitory; what they leave uncovered, plus the punitory the
unpaid rent accrued up to the close, is what the debt owes.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from rental_backend.app.core.exceptions import AppException
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.debt import Debt
from rental_backend.app.models.monthly_record import MonthlyRecord
from rental_backend.app.models.billing_enums import ConceptKind, DebtStatus, RecordStatus
from rental_backend.app.domain.billing.money import round2, ZERO
from rental_backend.app.domain.billing.ledger_builder import LedgerBuilder, as_line
from rental_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("rental_billing.close")


@dataclass(frozen=True)
class Unsettled:
    total_original: Decimal
    unpaid_services: Decimal
    unpaid_rent: Decimal
    unpaid_punitory: Decimal

    @property
    def total_unpaid(self) -> Decimal:
        return round2(self.unpaid_services + self.unpaid_rent + self.unpaid_punitory)


@dataclass(frozen=True)
class ClosePreviewItem:
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


@dataclass
class ClosePreview:
    period_month: int
    period_year: int
    as_of: date
    items: List[ClosePreviewItem] = field(default_factory=list)
    already_closed: int = 0

    @property
    def total_debt(self) -> Decimal:
        return round2(sum((i.total_unpaid for i in self.items if i.will_generate_debt), ZERO))


@dataclass
class CloseResult:
    period_month: int
    period_year: int
    debts: List[Debt] = field(default_factory=list)
    already_closed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


def unsettled(lines, amount_paid: Decimal, live_punitory: Decimal = ZERO) -> Unsettled:
    """
    Impute payments and credits of a record: services, then rent, then
    punitory (the stored line plus live_punitory).
    """
    rent = sum((l.amount for l in lines if l.concept_type == ConceptKind.ALQUILER.value), ZERO)
    stored_punitory = sum((l.amount for l in lines if l.concept_type == ConceptKind.PUNITORIOS.value), ZERO)
    services = sum(
        (l.amount for l in lines
         if l.amount > 0 and l.concept_type not in (ConceptKind.ALQUILER.value, ConceptKind.PUNITORIOS.value)),
        ZERO,
    )
    credits = -sum((l.amount for l in lines if l.amount < 0), ZERO)
    late = stored_punitory + live_punitory

    pool = round2(amount_paid) + credits
    services_covered = min(pool, services)
    pool -= services_covered
    rent_covered = min(pool, rent)
    pool -= rent_covered
    punitory_covered = min(pool, late)

    return Unsettled(
        total_original=round2(services + rent + late),
        unpaid_services=round2(services - services_covered),
        unpaid_rent=round2(rent - rent_covered),
        unpaid_punitory=round2(late - punitory_covered),
    )


class MonthCloseService:

    @staticmethod
    async def unsettled_records(db: AsyncSession, group_id: int, period_month: int, period_year: int) -> List[MonthlyRecord]:
        result = await db.execute(
            select(MonthlyRecord).where(
                MonthlyRecord.group_id == group_id,
                MonthlyRecord.period_month == period_month,
                MonthlyRecord.period_year == period_year,
                MonthlyRecord.status.in_((RecordStatus.PENDING, RecordStatus.PARTIAL)),
            ).order_by(MonthlyRecord.contract_id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def closed_record_ids(db: AsyncSession, record_ids: List[int]) -> set:
        if not record_ids:
            return set()
        result = await db.execute(select(Debt.monthly_record_id).where(Debt.monthly_record_id.in_(record_ids)))
        return set(result.scalars().all())

    @staticmethod
    async def assess(db: AsyncSession, contract: Contract, record: MonthlyRecord, as_of: date):
        """(unsettled amounts, live punitory at as_of) of one record."""
        lines = [as_line(c) for c in await LedgerBuilder.get_concepts(db, record.id)]
        live = await LedgerBuilder.late_charge(db, contract, record.month_number, lines, as_of, record)
        return unsettled(lines, record.amount_paid, live.amount), live

    @staticmethod
    async def preview_close_month(
        db: AsyncSession, group_id: int, period_month: int, period_year: int, as_of: Optional[date] = None
    ) -> ClosePreview:
        """Debts a close at as_of would create. Nothing is persisted."""
        as_of = as_of or date.today()
        records = await MonthCloseService.unsettled_records(db, group_id, period_month, period_year)
        closed = await MonthCloseService.closed_record_ids(db, [r.id for r in records])

        preview = ClosePreview(period_month, period_year, as_of, already_closed=len(closed))
        for record in records:
            if record.id in closed:
                continue
            contract = await db.get(Contract, record.contract_id)
            owed, live = await MonthCloseService.assess(db, contract, record, as_of)
            preview.items.append(ClosePreviewItem(
                record_id=record.id,
                contract_id=record.contract_id,
                month_number=record.month_number,
                status=record.status,
                total_due=round2(record.total_due),
                amount_paid=round2(record.amount_paid),
                unpaid_services=owed.unpaid_services,
                unpaid_rent=owed.unpaid_rent,
                unpaid_punitory=owed.unpaid_punitory,
                closing_punitory=live.amount,
                total_unpaid=owed.total_unpaid,
                will_generate_debt=owed.total_unpaid > 0,
            ))
        return preview

    @staticmethod
    async def create_debt(
        db: AsyncSession, contract: Contract, record: MonthlyRecord, as_of: date
    ) -> Optional[Debt]:
        owed, live = await MonthCloseService.assess(db, contract, record, as_of)
        if owed.total_unpaid <= 0:
            return None

        debt = Debt(
            group_id=record.group_id,
            contract_id=contract.id,
            monthly_record_id=record.id,
            period_month=record.period_month,
            period_year=record.period_year,
            original_amount=owed.total_original,
            unpaid_services_amount=owed.unpaid_services,
            unpaid_rent_amount=owed.unpaid_rent,
            previous_record_payment=round2(record.amount_paid),
            closing_punitory=live.amount,
            accumulated_punitory=owed.unpaid_punitory,
            current_total=owed.total_unpaid,
            amount_paid=ZERO,
            punitory_percent=contract.punitory_percent,
            punitory_start_date=as_of,
            status=DebtStatus.OPEN,
        )
        db.add(debt)
        await db.flush()
        return debt

    @staticmethod
    async def close_month(
        db: AsyncSession,
        group_id: int,
        period_month: int,
        period_year: int,
        as_of: Optional[date] = None,
        actor_username: Optional[str] = None,
    ) -> CloseResult:
        """
        Create a debt for every unsettled record of the period.

        Records already closed are skipped, so closing twice is harmless. A
        record that fails is reported in errors and the others still close.
        """
        as_of = as_of or date.today()
        records = await MonthCloseService.unsettled_records(db, group_id, period_month, period_year)
        closed = await MonthCloseService.closed_record_ids(db, [r.id for r in records])

        result = CloseResult(period_month, period_year, already_closed=len(closed))
        for record in records:
            if record.id in closed:
                continue
            contract = await db.get(Contract, record.contract_id)
            try:
                async with db.begin_nested():
                    debt = await MonthCloseService.create_debt(db, contract, record, as_of)
            except (AppException, IntegrityError) as exc:
                logger.warning("Could not close record %s of contract %s: %s", record.id, record.contract_id, exc)
                result.errors.append({
                    "record_id": record.id,
                    "contract_id": record.contract_id,
                    "error": getattr(exc, "message", str(exc)),
                })
                continue
            if debt is not None:
                result.debts.append(debt)

        await log_event(
            db=db,
            action=AuditAction.MONTH_CLOSED,
            group_id=group_id,
            entity_type="group",
            entity_id=group_id,
            actor_username=actor_username,
            metadata={
                "period": f"{period_month:02d}/{period_year}",
                "as_of": as_of.isoformat(),
                "debts_created": len(result.debts),
                "already_closed": result.already_closed,
                "errors": len(result.errors),
            },
        )
        logger.info(
            "Closed %02d/%s of group %s: %s debt(s), %s already closed, %s error(s)",
            period_month, period_year, group_id, len(result.debts), result.already_closed, len(result.errors),
        )
        return result
