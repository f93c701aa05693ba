"""
Adjustment Index Service.

Applies periodic percentage increases to contract rent and keeps a
reversible history of them. A contract bound to an index with frequency f
is adjusted on its own months f+1, 2f+1, ... (never on month 1, never
aligned to calendar anniversaries).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError

from rental_backend.app.core.exceptions import (
    AppException, ContractExpiredError, DuplicateAdjustmentError,
    NoAdjustmentToUndoError, IndexInUseError, ResourceNotFoundError
)
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.adjustment_index import AdjustmentIndex
from rental_backend.app.models.adjustment_history import AdjustmentHistory
from rental_backend.app.models.billing_enums import (
    ContractStatus, ContractType, AdjustmentOutcomeStatus
)
from rental_backend.app.domain.billing import contract_state
from rental_backend.app.domain.billing.money import round2, to_decimal, HUNDRED
from rental_backend.app.domain.billing.rent_resolver import RentResolver
from rental_backend.app.domain.billing.ledger_builder import LedgerBuilder
from rental_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("rental_billing.adjustments")


@dataclass(frozen=True)
class AdjustmentOutcome:
    """Per-contract result of apply_all_due_next_month."""
    contract_id: int
    target_month: int
    status: AdjustmentOutcomeStatus
    percentage: Decimal
    previous_base_rent: Optional[Decimal] = None
    new_base_rent: Optional[Decimal] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class AdjustmentAlert:
    contract_id: int
    property_id: Optional[int]
    index_id: int
    index_name: str
    target_month: int
    period_month: int
    period_year: int
    current_rent: Decimal
    suggested_percentage: Decimal
    applied: bool


def due_this_month(contract: Contract, index: Optional[AdjustmentIndex]) -> bool:
    if index is None:
        return False
    return contract_state.is_adjustment_month(contract.current_month, index.frequency_months)


def due_next_month(contract: Contract, index: Optional[AdjustmentIndex]) -> bool:
    if index is None:
        return False
    next_month = contract.current_month + 1
    if next_month > contract.duration_months:
        return False
    return contract_state.is_adjustment_month(next_month, index.frequency_months)


def next_adjustment_month(contract: Contract, index: Optional[AdjustmentIndex]) -> Optional[int]:
    """First trigger month after the current one, None past the contract end."""
    if index is None or not index.frequency_months:
        return None
    f = index.frequency_months
    month = ((contract.current_month - 1) // f + 1) * f + 1
    return month if month <= contract.duration_months else None


def adjusted_rent(rent, percentage_increase) -> Decimal:
    """round2(rent * (1 + p/100))"""
    return round2(to_decimal(rent) * (1 + to_decimal(percentage_increase) / HUNDRED))


class AdjustmentService:

    @staticmethod
    async def get_active(db: AsyncSession, contract_id: int, target_month: int) -> Optional[AdjustmentHistory]:
        result = await db.execute(
            select(AdjustmentHistory).where(
                AdjustmentHistory.contract_id == contract_id,
                AdjustmentHistory.target_month == target_month,
                AdjustmentHistory.undone_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def apply(
        db: AsyncSession,
        contract: Contract,
        percentage_increase,
        target_month: Optional[int] = None,
        actor_username: Optional[str] = None,
    ) -> AdjustmentHistory:
        """
        Apply a percentage increase to the rent in force at target_month.

        Without target_month the current month is used and base_rent changes
        immediately. A future target only writes the history row; base_rent
        follows when the contract reaches that month. Records that already
        received payments are never re-priced.

        Raises:
            DuplicateAdjustmentError: an active adjustment exists for the month.
            ContractExpiredError: target_month is past the contract duration.
        """
        target = target_month or contract.current_month
        if target > contract.duration_months:
            raise ContractExpiredError(contract.id, contract.duration_months)

        if await AdjustmentService.get_active(db, contract.id, target):
            logger.warning("Contract %s already adjusted for month %s", contract.id, target)
            raise DuplicateAdjustmentError(contract.id, target)

        if contract.initial_rent is None:
            contract.initial_rent = contract.base_rent

        percentage = to_decimal(percentage_increase)
        previous = await RentResolver.rent_in_force(db, contract, target)
        new_rent = adjusted_rent(previous, percentage)
        period_month, period_year = contract_state.calendar_period(contract, target)

        history = AdjustmentHistory(
            contract_id=contract.id,
            target_month=target,
            target_period_month=period_month,
            target_period_year=period_year,
            previous_base_rent=previous,
            new_base_rent=new_rent,
            percentage_applied=percentage,
        )

        # Partial unique index on active rows settles concurrent applies
        try:
            async with db.begin_nested():
                db.add(history)
                await db.flush()
        except IntegrityError:
            logger.warning("Concurrent adjustment for contract %s month %s", contract.id, target)
            raise DuplicateAdjustmentError(contract.id, target)

        if target <= contract.current_month:
            contract.base_rent = await RentResolver.rent_in_force(db, contract, contract.current_month)
        await db.flush()

        repriced = await LedgerBuilder.refresh_rent(db, contract, target)

        await log_event(
            db=db,
            action=AuditAction.ADJUSTMENT_APPLIED,
            group_id=contract.group_id,
            entity_type="contract",
            entity_id=contract.id,
            actor_username=actor_username,
            metadata={
                "target_month": target,
                "percentage": str(percentage),
                "previous_base_rent": str(previous),
                "new_base_rent": str(new_rent),
                "repriced_records": repriced,
            },
        )
        logger.info(
            "Applied %s%% to contract %s from month %s: %s -> %s",
            percentage, contract.id, target, previous, new_rent,
        )
        return history

    @staticmethod
    async def undo(
        db: AsyncSession,
        contract: Contract,
        target_month: int,
        actor_username: Optional[str] = None,
    ) -> AdjustmentHistory:
        """
        Undo the active adjustment of target_month and restore the rent in force.

        Raises:
            NoAdjustmentToUndoError: no active adjustment for the month.
        """
        # Conditional update: of two racing undos only one sees a row
        result = await db.execute(
            update(AdjustmentHistory)
            .where(
                AdjustmentHistory.contract_id == contract.id,
                AdjustmentHistory.target_month == target_month,
                AdjustmentHistory.undone_at.is_(None),
            )
            .values(undone_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("Nothing to undo for contract %s month %s", contract.id, target_month)
            raise NoAdjustmentToUndoError(contract.id, target_month)

        history = (await db.execute(
            select(AdjustmentHistory)
            .where(
                AdjustmentHistory.contract_id == contract.id,
                AdjustmentHistory.target_month == target_month,
                AdjustmentHistory.undone_at.is_not(None),
            )
            .order_by(AdjustmentHistory.undone_at.desc(), AdjustmentHistory.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )).scalar_one()

        contract.base_rent = await RentResolver.rent_in_force(db, contract, contract.current_month)
        await db.flush()

        repriced = await LedgerBuilder.refresh_rent(db, contract, target_month)

        await log_event(
            db=db,
            action=AuditAction.ADJUSTMENT_UNDONE,
            group_id=contract.group_id,
            entity_type="contract",
            entity_id=contract.id,
            actor_username=actor_username,
            metadata={
                "target_month": target_month,
                "restored_base_rent": str(history.previous_base_rent),
                "repriced_records": repriced,
            },
        )
        logger.info(
            "Undid adjustment of contract %s month %s, base rent now %s",
            contract.id, target_month, contract.base_rent,
        )
        return history

    @staticmethod
    async def due_contracts(db: AsyncSession, group_id: int):
        """Active TENANT contracts of the group bound to an index, with the index."""
        result = await db.execute(
            select(Contract, AdjustmentIndex)
            .join(AdjustmentIndex, AdjustmentIndex.id == Contract.adjustment_index_id)
            .where(
                Contract.group_id == group_id,
                Contract.active == True,
                Contract.status == ContractStatus.ACTIVE,
                Contract.contract_type == ContractType.TENANT,
            )
            .order_by(Contract.id)
        )
        return result.all()

    @staticmethod
    async def apply_all_due_next_month(
        db: AsyncSession, group_id: int, actor_username: Optional[str] = None
    ) -> List[AdjustmentOutcome]:
        """
        Apply each index's current value to every contract that triggers next month.

        Best effort: every contract runs in its own savepoint and failures are
        reported per item instead of aborting the batch.
        """
        outcomes = []
        for contract, index in await AdjustmentService.due_contracts(db, group_id):
            if not index.current_value or index.current_value <= 0:
                continue
            if not due_next_month(contract, index):
                continue

            contract_id = contract.id
            target = contract.current_month + 1
            percentage = to_decimal(index.current_value)
            try:
                async with db.begin_nested():
                    history = await AdjustmentService.apply(
                        db, contract, percentage, target, actor_username=actor_username
                    )
                outcomes.append(AdjustmentOutcome(
                    contract_id=contract_id,
                    target_month=target,
                    status=AdjustmentOutcomeStatus.APPLIED,
                    percentage=percentage,
                    previous_base_rent=round2(history.previous_base_rent),
                    new_base_rent=round2(history.new_base_rent),
                ))
            except AppException as exc:
                outcomes.append(AdjustmentOutcome(
                    contract_id=contract_id,
                    target_month=target,
                    status=AdjustmentOutcomeStatus.FAILED,
                    percentage=percentage,
                    error_code=exc.error_code,
                    message=exc.message,
                ))

        failed = sum(1 for o in outcomes if o.status == AdjustmentOutcomeStatus.FAILED)
        logger.info(
            "Group %s: applied %s next-month adjustment(s), %s failed",
            group_id, len(outcomes) - failed, failed,
        )
        return outcomes

    @staticmethod
    async def adjustment_alerts(db: AsyncSession, group_id: int) -> Dict[str, List[AdjustmentAlert]]:
        """Contracts adjusting this month and next month."""
        alerts = {"this_month": [], "next_month": []}
        for contract, index in await AdjustmentService.due_contracts(db, group_id):
            for key, due, target in (
                ("this_month", due_this_month(contract, index), contract.current_month),
                ("next_month", due_next_month(contract, index), contract.current_month + 1),
            ):
                if not due:
                    continue
                period_month, period_year = contract_state.calendar_period(contract, target)
                applied = await AdjustmentService.get_active(db, contract.id, target)
                current_rent = (
                    round2(applied.previous_base_rent) if applied
                    else await RentResolver.rent_in_force(db, contract, target)
                )
                alerts[key].append(AdjustmentAlert(
                    contract_id=contract.id,
                    property_id=contract.property_id,
                    index_id=index.id,
                    index_name=index.name,
                    target_month=target,
                    period_month=period_month,
                    period_year=period_year,
                    current_rent=current_rent,
                    suggested_percentage=to_decimal(index.current_value),
                    applied=applied is not None,
                ))
        return alerts

    @staticmethod
    async def delete_index(db: AsyncSession, group_id: int, index_id: int) -> None:
        """
        Delete an adjustment index.

        Raises:
            IndexInUseError: contracts still reference the index.
        """
        index = await db.get(AdjustmentIndex, index_id)
        if not index or index.group_id != group_id:
            raise ResourceNotFoundError("AdjustmentIndex", index_id)

        result = await db.execute(
            select(func.count(Contract.id)).where(Contract.adjustment_index_id == index_id)
        )
        in_use = result.scalar()
        if in_use:
            raise IndexInUseError(index_id, in_use)

        await db.delete(index)
        await db.flush()
        await log_event(
            db=db,
            action=AuditAction.INDEX_DELETED,
            group_id=group_id,
            entity_type="adjustment_index",
            entity_id=index_id,
            metadata={"name": index.name},
        )
