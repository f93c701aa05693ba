"""
Contract State Model.

Tracks a contract's position within its term and maps contract months to
calendar months. Pure functions over a Contract row, plus the expiry alerts.
"""

import calendar
import logging
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from rental_backend.app.core.config import settings
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.billing_enums import ContractStatus
from rental_backend.app.core.exceptions import ContractExpiredError
from rental_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("rental_billing.contracts")


def is_adjustment_month(month_number: int, frequency_months: int) -> bool:
    """
    True when month_number triggers an adjustment for the given frequency.

    Month 1 never triggers; with frequency f the trigger months are
    f+1, 2f+1, ...
    """
    if not frequency_months or frequency_months < 1:
        return False
    return month_number > 1 and (month_number - 1) % frequency_months == 0


def advance_period(contract: Contract, frequency_months: int = None) -> bool:
    """
    Move the contract cursor one month forward.

    Returns whether the new month is an adjustment month.

    Raises:
        ContractExpiredError: the contract is already at its last month.
    """
    if contract.current_month >= contract.duration_months:
        raise ContractExpiredError(contract.id, contract.duration_months)
    contract.current_month += 1
    return is_adjustment_month(contract.current_month, frequency_months)


def expire(contract: Contract) -> None:
    """No new periods are opened for an expired contract."""
    contract.status = ContractStatus.EXPIRED
    contract.active = False


def is_expiring_soon(contract: Contract, horizon_months: int) -> bool:
    if contract.status != ContractStatus.ACTIVE:
        return False
    return contract.duration_months - contract.current_month <= horizon_months


def remaining_months(contract: Contract) -> int:
    return contract.duration_months - contract.current_month


def calendar_period(contract: Contract, month_number: int) -> Tuple[int, int]:
    """Return (month, year) of the given contract month; month 1 is the start month."""
    offset = contract.start_date.month - 1 + (month_number - 1)
    return offset % 12 + 1, contract.start_date.year + offset // 12


def month_number_for(contract: Contract, month: int, year: int) -> int:
    """Inverse of calendar_period; may fall outside 1..duration_months."""
    return (year - contract.start_date.year) * 12 + (month - contract.start_date.month) + 1


def add_months(start: date, months: int) -> date:
    total = start.month - 1 + months
    year, month = start.year + total // 12, total % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def end_date(contract: Contract) -> date:
    return add_months(contract.start_date, contract.duration_months)


async def list_expiring(db: AsyncSession, group_id: int, horizon_months: Optional[int] = None) -> List[Contract]:
    """Active contracts of the group with at most horizon_months left."""
    horizon = settings.expiring_horizon_months if horizon_months is None else horizon_months
    result = await db.execute(
        select(Contract).where(
            Contract.group_id == group_id,
            Contract.status == ContractStatus.ACTIVE,
            Contract.duration_months - Contract.current_month <= horizon,
        ).order_by(Contract.duration_months - Contract.current_month, Contract.id)
    )
    return [c for c in result.scalars().all() if is_expiring_soon(c, horizon)]


async def auto_expire_contracts(db: AsyncSession, group_id: int, today: Optional[date] = None) -> List[Contract]:
    """Mark ACTIVE contracts whose end date has passed as EXPIRED and inactive."""
    today = today or date.today()
    result = await db.execute(
        select(Contract).where(Contract.group_id == group_id, Contract.status == ContractStatus.ACTIVE)
    )
    expired = []
    for contract in result.scalars().all():
        if end_date(contract) > today:
            continue
        expire(contract)
        expired.append(contract)
        await log_event(
            db=db,
            action=AuditAction.CONTRACT_EXPIRED,
            group_id=group_id,
            entity_type="contract",
            entity_id=contract.id,
            metadata={"end_date": end_date(contract).isoformat()},
        )
    await db.flush()
    if expired:
        logger.info("Expired %s contract(s) in group %s", len(expired), group_id)
    return expired
