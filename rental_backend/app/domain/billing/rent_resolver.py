"""
Rent Resolver.

Responsible for determining the rent in force for a contract month.
Follows priority:
1. Latest active adjustment whose target month is at or before the month
2. The contract's initial rent (its base rent when never adjusted)
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from rental_backend.app.models.contract import Contract
from rental_backend.app.models.adjustment_history import AdjustmentHistory
from rental_backend.app.domain.billing.money import round2


class RentResolver:

    @staticmethod
    async def resolve_active_adjustment(
        db: AsyncSession, contract_id: int, month_number: int
    ) -> Optional[AdjustmentHistory]:
        """Find the latest non-undone adjustment effective at month_number."""
        query = select(AdjustmentHistory).where(
            AdjustmentHistory.contract_id == contract_id,
            AdjustmentHistory.undone_at.is_(None),
            AdjustmentHistory.target_month <= month_number,
        ).order_by(AdjustmentHistory.target_month.desc(), AdjustmentHistory.id.desc()).limit(1)

        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def rent_in_force(db: AsyncSession, contract: Contract, month_number: int) -> Decimal:
        """
        Rent billed for month_number.

        Adjustments never apply retroactively: a row targeted at month 7 has
        no effect on months 1..6.
        """
        adjustment = await RentResolver.resolve_active_adjustment(db, contract.id, month_number)
        if adjustment:
            return round2(adjustment.new_base_rent)
        if contract.initial_rent is None:
            return round2(contract.base_rent)
        return round2(contract.initial_rent)
