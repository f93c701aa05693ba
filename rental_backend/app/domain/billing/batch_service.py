"""
Batch Distribution submission and PropertyGroup templates.

A batch adds one concept per selected monthly record, derived server-side
from the percentages. It is all-or-nothing: a stale record version, an
optimistic-lock failure at flush or a duplicate concept rolls every record
back and raises BatchConflictError.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from rental_backend.app.core.exceptions import (
    BatchConflictError, ImmutableCompletedPeriodError, InvalidDistributionError,
    ResourceNotFoundError
)
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.monthly_record import MonthlyRecord
from rental_backend.app.models.record_concept import RecordConcept
from rental_backend.app.models.service_concept_type import ServiceConceptType
from rental_backend.app.models.property_group import PropertyGroup, PropertyGroupItem
from rental_backend.app.models.billing_enums import RecordStatus
from rental_backend.app.domain.billing import distribution
from rental_backend.app.domain.billing.money import round2, to_decimal
from rental_backend.app.domain.billing.ledger_builder import LedgerBuilder, RANK_AD_HOC, RANK_IVA
from rental_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("rental_billing.batch")


@dataclass(frozen=True)
class DistributionItem:
    record_id: int
    percentage: Decimal
    amount: Optional[Decimal] = None  # Must match the derived amount when sent
    version: Optional[int] = None  # Record version the caller saw


@dataclass(frozen=True)
class BatchLine:
    record_id: int
    contract_id: int
    percentage: Decimal
    amount: Decimal
    concept_id: int


@dataclass(frozen=True)
class BatchResult:
    concept_type: str
    total_amount: Decimal
    lines: List[BatchLine]
    residual: Decimal
    template_id: Optional[int] = None


class BatchService:

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
        """
        Add one distributed concept to every record of the batch.

        Raises:
            InvalidDistributionError: fewer than two records, repeated records,
                percentages not adding up to 100, a record outside the group or
                period, or a client amount that differs from the derived one.
            ImmutableCompletedPeriodError: a record is already COMPLETE.
            BatchConflictError: a record changed concurrently.
        """
        # Validate everything before touching any record
        if len(distributions) < 2:
            raise InvalidDistributionError("A batch needs at least two records", {"selected": len(distributions)})
        record_ids = [d.record_id for d in distributions]
        if len(set(record_ids)) != len(record_ids):
            raise InvalidDistributionError("A record appears more than once in the batch")
        if not distribution.is_complete(d.percentage for d in distributions):
            total = sum((to_decimal(d.percentage) for d in distributions), Decimal("0"))
            raise InvalidDistributionError(
                f"Percentages add up to {total}, expected 100", {"sum": str(total)}
            )

        concept_type = await db.get(ServiceConceptType, concept_type_id)
        if not concept_type or concept_type.group_id != group_id:
            raise ResourceNotFoundError("ServiceConceptType", concept_type_id)

        result = await db.execute(select(MonthlyRecord).where(MonthlyRecord.id.in_(record_ids)))
        records = {r.id: r for r in result.scalars().all()}
        missing = [rid for rid in record_ids if rid not in records]
        if missing:
            raise ResourceNotFoundError("MonthlyRecord", missing[0])

        for item in distributions:
            record = records[item.record_id]
            if record.group_id != group_id:
                raise InvalidDistributionError(
                    f"Record {record.id} does not belong to group {group_id}", {"record_id": record.id}
                )
            if (record.period_month, record.period_year) != (period_month, period_year):
                raise InvalidDistributionError(
                    f"Record {record.id} is not in period {period_month:02d}/{period_year}",
                    {"record_id": record.id},
                )
            if record.status == RecordStatus.COMPLETE:
                raise ImmutableCompletedPeriodError(
                    f"Record {record.id} is fully paid and cannot receive new concepts", record_id=record.id
                )
            if item.version is not None and item.version != record.version:
                logger.warning("Batch rejected: record %s is at version %s, caller saw %s",
                               record.id, record.version, item.version)
                raise BatchConflictError(details={"record_id": record.id, "version": record.version})

        shares = [distribution.Share(record_id=d.record_id, percentage=to_decimal(d.percentage)) for d in distributions]
        allocation = distribution.allocate(shares, total_amount)
        for item in distributions:
            derived = allocation.amounts[item.record_id]
            if item.amount is not None and round2(item.amount) != derived:
                raise InvalidDistributionError(
                    f"Amount for record {item.record_id} should be {derived}",
                    {"record_id": item.record_id, "expected": str(derived), "received": str(item.amount)},
                )

        sign = -1 if concept_type.is_subtractive else 1
        lines = []
        try:
            async with db.begin_nested():
                for item in distributions:
                    record = records[item.record_id]
                    amount = allocation.amounts[item.record_id]
                    positions = await LedgerBuilder.get_concepts(db, record.id)
                    concept = RecordConcept(
                        monthly_record_id=record.id,
                        service_concept_type_id=concept_type.id,
                        position=RANK_AD_HOC + sum(1 for c in positions if RANK_AD_HOC <= c.position < RANK_IVA),
                        concept_type=concept_type.name,
                        amount=sign * amount,
                        description=description or concept_type.label,
                        is_automatic=False,
                    )
                    db.add(concept)
                    await db.flush()
                    # Always bump the version, even when the totals do not move
                    flag_modified(record, "total_due")
                    await LedgerBuilder.recalculate(db, record)
                    lines.append(BatchLine(
                        record_id=record.id,
                        contract_id=record.contract_id,
                        percentage=to_decimal(item.percentage),
                        amount=sign * amount,
                        concept_id=concept.id,
                    ))
        except (IntegrityError, StaleDataError) as exc:
            logger.warning("Batch for group %s rolled back: %s", group_id, type(exc).__name__)
            raise BatchConflictError(details={"reason": type(exc).__name__})

        template_id = None
        if template_name:
            contract_shares = {records[d.record_id].contract_id: d.percentage for d in distributions}
            template, _ = await BatchService.save_distribution_template(
                db, group_id, template_name, contract_shares, actor_username=actor_username
            )
            template_id = template.id

        await log_event(
            db=db,
            action=AuditAction.BATCH_SUBMITTED,
            group_id=group_id,
            entity_type="service_concept_type",
            entity_id=concept_type.id,
            actor_username=actor_username,
            metadata={
                "period": f"{period_month:02d}/{period_year}",
                "total_amount": str(round2(total_amount)),
                "records": record_ids,
                "residual": str(allocation.residual),
            },
        )
        logger.info(
            "Batch %s of %s over %s records in group %s (residual %s)",
            concept_type.name, round2(total_amount), len(lines), group_id, allocation.residual,
        )
        return BatchResult(
            concept_type=concept_type.name,
            total_amount=round2(total_amount),
            lines=lines,
            residual=allocation.residual,
            template_id=template_id,
        )

    @staticmethod
    async def save_distribution_template(
        db: AsyncSession,
        group_id: int,
        name: str,
        items: Dict[int, Decimal],
        actor_username: Optional[str] = None,
    ) -> Tuple[PropertyGroup, List[PropertyGroupItem]]:
        """
        Create or replace the named template (contract_id -> percentage).

        Raises:
            InvalidDistributionError: percentages do not add up to 100.
            ResourceNotFoundError: a contract is not in the group.
        """
        if not items or not distribution.is_complete(items.values()):
            total = sum((to_decimal(p) for p in items.values()), Decimal("0"))
            raise InvalidDistributionError(
                f"Template percentages add up to {total}, expected 100", {"sum": str(total)}
            )

        result = await db.execute(
            select(Contract.id).where(Contract.id.in_(list(items)), Contract.group_id == group_id)
        )
        found = set(result.scalars().all())
        for contract_id in items:
            if contract_id not in found:
                raise ResourceNotFoundError("Contract", contract_id)

        result = await db.execute(
            select(PropertyGroup).where(PropertyGroup.group_id == group_id, PropertyGroup.name == name)
        )
        template = result.scalar_one_or_none()
        if template is None:
            template = PropertyGroup(group_id=group_id, name=name)
            db.add(template)
            await db.flush()
        else:
            await db.execute(delete(PropertyGroupItem).where(PropertyGroupItem.property_group_id == template.id))

        template_items = []
        for contract_id, percentage in items.items():
            item = PropertyGroupItem(
                property_group_id=template.id, contract_id=contract_id, percentage=round2(percentage)
            )
            db.add(item)
            template_items.append(item)
        await db.flush()

        await log_event(
            db=db,
            action=AuditAction.TEMPLATE_SAVED,
            group_id=group_id,
            entity_type="property_group",
            entity_id=template.id,
            actor_username=actor_username,
            metadata={"name": name, "contracts": list(items)},
        )
        logger.info("Saved distribution template '%s' (%s contracts) in group %s", name, len(items), group_id)
        return template, template_items

    @staticmethod
    async def get_template_items(db: AsyncSession, template_id: int) -> List[PropertyGroupItem]:
        result = await db.execute(
            select(PropertyGroupItem)
            .where(PropertyGroupItem.property_group_id == template_id)
            .order_by(PropertyGroupItem.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_template(db: AsyncSession, group_id: int, template_id: int) -> PropertyGroup:
        template = await db.get(PropertyGroup, template_id)
        if not template or template.group_id != group_id:
            raise ResourceNotFoundError("PropertyGroup", template_id)
        return template

    @staticmethod
    async def list_templates(db: AsyncSession, group_id: int) -> List[Tuple[PropertyGroup, List[PropertyGroupItem]]]:
        result = await db.execute(
            select(PropertyGroup).where(PropertyGroup.group_id == group_id).order_by(PropertyGroup.name)
        )
        return [
            (template, await BatchService.get_template_items(db, template.id))
            for template in result.scalars().all()
        ]

    @staticmethod
    async def delete_template(
        db: AsyncSession, group_id: int, template_id: int, actor_username: Optional[str] = None
    ) -> None:
        template = await BatchService.get_template(db, group_id, template_id)
        await db.execute(delete(PropertyGroupItem).where(PropertyGroupItem.property_group_id == template.id))
        await db.delete(template)
        await db.flush()
        await log_event(
            db=db,
            action=AuditAction.TEMPLATE_DELETED,
            group_id=group_id,
            entity_type="property_group",
            entity_id=template_id,
            actor_username=actor_username,
            metadata={"name": template.name},
        )

    @staticmethod
    async def distribution_from_template(
        db: AsyncSession,
        group_id: int,
        template_id: int,
        period_month: int,
        period_year: int,
        total_amount=0,
    ) -> distribution.DistributionState:
        """Working set for a period pre-selected from a saved template."""
        await BatchService.get_template(db, group_id, template_id)
        template = {
            item.contract_id: to_decimal(item.percentage)
            for item in await BatchService.get_template_items(db, template_id)
        }
        result = await db.execute(
            select(MonthlyRecord).where(
                MonthlyRecord.group_id == group_id,
                MonthlyRecord.period_month == period_month,
                MonthlyRecord.period_year == period_year,
                MonthlyRecord.contract_id.in_(list(template)),
            ).order_by(MonthlyRecord.id)
        )
        records = {r.id: r.contract_id for r in result.scalars().all()}
        state = distribution.DistributionState(total_amount=round2(total_amount))
        return distribution.load_template(state, records, template)
