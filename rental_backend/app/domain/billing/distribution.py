"""
Batch Distribution Allocator (reducer).

Splits one total amount across N monthly records through lockable
percentages that always add up to exactly 100. Every operation takes a
DistributionState and returns a new one; nothing here touches the database.

Phases: SELECTION -> DISTRIBUTION -> CONFIRMATION.
"""

import enum
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from rental_backend.app.core.config import settings
from rental_backend.app.core.exceptions import DistributionOverflowError, InvalidDistributionError
from rental_backend.app.domain.billing.money import (
    floor_to, round0, round2, to_decimal, HUNDRED, ZERO
)


class Phase(str, enum.Enum):
    SELECTION = "SELECTION"
    DISTRIBUTION = "DISTRIBUTION"
    CONFIRMATION = "CONFIRMATION"


@dataclass(frozen=True)
class Share:
    record_id: int
    percentage: Optional[Decimal] = None
    locked: bool = False
    contract_id: Optional[int] = None


@dataclass(frozen=True)
class DistributionState:
    phase: Phase = Phase.SELECTION
    shares: Tuple[Share, ...] = ()
    total_amount: Decimal = ZERO
    decimals: int = field(default_factory=lambda: settings.distribution_decimals)

    def share(self, record_id: int) -> Share:
        for s in self.shares:
            if s.record_id == record_id:
                return s
        raise InvalidDistributionError(f"Record {record_id} is not selected", {"record_id": record_id})

    @property
    def percentage_sum(self) -> Decimal:
        return sum((s.percentage or ZERO for s in self.shares), ZERO)


@dataclass(frozen=True)
class Allocation:
    amounts: Dict[int, Decimal]
    residual: Decimal  # total - sum(amounts), signed


@dataclass(frozen=True)
class EditOutcome:
    state: DistributionState
    accepted: bool
    message: Optional[str] = None
    locked_sum: Optional[Decimal] = None


def equal_split(total, count: int, decimals: int) -> List[Decimal]:
    """
    floor(total / count) for every slot but the last, which takes the exact
    remainder so the parts add up to total.
    """
    if count <= 0:
        return []
    total = to_decimal(total)
    part = floor_to(total / count, decimals)
    parts = [part] * (count - 1)
    parts.append(total - part * (count - 1))
    return parts


def select(state: DistributionState, record_ids: Iterable[int], contract_ids: Optional[Dict[int, int]] = None) -> DistributionState:
    """Replace the selection; keeps percentages of records that stay selected."""
    if state.phase == Phase.CONFIRMATION:
        raise InvalidDistributionError("Distribution is already confirmed")
    contract_ids = contract_ids or {}
    previous = {s.record_id: s for s in state.shares}
    shares = []
    for record_id in dict.fromkeys(record_ids):
        kept = previous.get(record_id)
        shares.append(kept or Share(record_id=record_id, contract_id=contract_ids.get(record_id)))
    return replace(state, phase=Phase.SELECTION, shares=tuple(shares))


def start_distribution(state: DistributionState) -> DistributionState:
    """
    Move from SELECTION to DISTRIBUTION.

    When no percentages exist yet every record gets floor(100/count) and the
    last one the exact remainder.
    """
    if len(state.shares) < 2:
        raise InvalidDistributionError(
            "At least two records must be selected", {"selected": len(state.shares)}
        )
    shares = state.shares
    if any(s.percentage is None for s in shares):
        split = equal_split(HUNDRED, len(shares), state.decimals)
        shares = tuple(replace(s, percentage=p, locked=False) for s, p in zip(shares, split))
    return replace(state, phase=Phase.DISTRIBUTION, shares=shares)


def set_percentage(state: DistributionState, record_id: int, value) -> DistributionState:
    """
    Set one record's percentage, lock it and rebalance the unlocked rest.

    Raises:
        DistributionOverflowError: locked percentages would exceed 100. The
            state is left as it was.
    """
    value = min(max(to_decimal(value), ZERO), HUNDRED)
    value = floor_to(value, state.decimals)
    state.share(record_id)

    locked_sum = value + sum(
        (s.percentage or ZERO for s in state.shares if s.locked and s.record_id != record_id), ZERO
    )
    if locked_sum > HUNDRED:
        raise DistributionOverflowError(record_id, locked_sum)

    unlocked = [s.record_id for s in state.shares if not s.locked and s.record_id != record_id]
    split = dict(zip(unlocked, equal_split(HUNDRED - locked_sum, len(unlocked), state.decimals)))

    shares = []
    for s in state.shares:
        if s.record_id == record_id:
            shares.append(replace(s, percentage=value, locked=True))
        elif s.record_id in split:
            shares.append(replace(s, percentage=split[s.record_id]))
        else:
            shares.append(s)
    return replace(state, phase=Phase.DISTRIBUTION, shares=tuple(shares))


def unlock(state: DistributionState, record_id: int) -> DistributionState:
    """Return a record to the rebalancing pool; its percentage stays until the next edit."""
    state.share(record_id)
    shares = tuple(replace(s, locked=False) if s.record_id == record_id else s for s in state.shares)
    return replace(state, shares=shares)


def edit(state: DistributionState, record_id: int, value) -> EditOutcome:
    """set_percentage that reports a rejected edit instead of raising."""
    try:
        return EditOutcome(state=set_percentage(state, record_id, value), accepted=True)
    except DistributionOverflowError as exc:
        return EditOutcome(
            state=state,
            accepted=False,
            message=exc.message,
            locked_sum=to_decimal(exc.details["locked_sum"]),
        )


def allocate(shares: Iterable[Share], total_amount) -> Allocation:
    """
    amount = round0(total * percentage / 100) per record.

    The rounding residual (total - sum of amounts) is returned, never spread.
    """
    total = round2(total_amount)
    amounts = {s.record_id: round0(total * (s.percentage or ZERO) / HUNDRED) for s in shares}
    return Allocation(amounts=amounts, residual=round2(total - sum(amounts.values(), ZERO)))


def is_complete(percentages: Iterable, tolerance=None) -> bool:
    tolerance = to_decimal(tolerance if tolerance is not None else settings.percentage_tolerance)
    return abs(sum((to_decimal(p) for p in percentages), ZERO) - HUNDRED) <= tolerance


def confirm(state: DistributionState) -> DistributionState:
    """
    Move to CONFIRMATION.

    Raises:
        InvalidDistributionError: fewer than two records, or the percentages
            do not add up to 100.
    """
    if len(state.shares) < 2:
        raise InvalidDistributionError("At least two records must be selected", {"selected": len(state.shares)})
    if any(s.percentage is None for s in state.shares) or not is_complete(s.percentage for s in state.shares):
        raise InvalidDistributionError(
            f"Percentages add up to {state.percentage_sum}, expected 100",
            {"sum": str(state.percentage_sum)},
        )
    return replace(state, phase=Phase.CONFIRMATION)


def load_template(
    state: DistributionState,
    records: Dict[int, int],
    template: Dict[int, Decimal],
) -> DistributionState:
    """
    Pre-select the records whose contract is in the template.

    records maps record_id -> contract_id for the period being billed;
    template maps contract_id -> percentage. Loaded percentages are locked.
    """
    shares = tuple(
        Share(record_id=record_id, percentage=to_decimal(template[contract_id]), locked=True, contract_id=contract_id)
        for record_id, contract_id in records.items()
        if contract_id in template
    )
    return replace(state, phase=Phase.DISTRIBUTION if len(shares) >= 2 else Phase.SELECTION, shares=shares)
