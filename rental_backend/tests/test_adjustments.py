"""
Adjustment Index Service Tests.

Trigger months, apply/undo of rent increases and the best-effort
"apply all due next month" run.
"""

import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy import select

from rental_backend.app.core.exceptions import (
    ContractExpiredError, DuplicateAdjustmentError, IndexInUseError, NoAdjustmentToUndoError
)
from rental_backend.app.domain.billing.adjustment_service import (
    AdjustmentService, adjusted_rent, due_next_month, due_this_month, next_adjustment_month
)
from rental_backend.app.domain.billing.ledger_builder import LedgerBuilder
from rental_backend.app.domain.billing.reconciliation import PaymentReconciliation
from rental_backend.app.domain.billing.rent_resolver import RentResolver
from rental_backend.app.models.adjustment_history import AdjustmentHistory
from rental_backend.app.models.adjustment_index import AdjustmentIndex
from rental_backend.app.models.billing_enums import (
    AdjustmentOutcomeStatus, ConceptKind, ContractType, PaymentMethod
)
from rental_backend.app.models.contract import Contract


def rent_line(concepts):
    return next(c for c in concepts if c.concept_type == ConceptKind.ALQUILER.value)


@pytest.mark.parametrize("current_month, expected", [(1, False), (3, False), (4, True), (6, False), (7, True)])
def test_due_this_month_quarterly(current_month, expected):
    contract = Contract(current_month=current_month, duration_months=24)
    assert due_this_month(contract, AdjustmentIndex(frequency_months=3)) is expected


@pytest.mark.parametrize("current_month, expected", [(3, True), (4, False), (5, False), (6, True)])
def test_due_next_month_quarterly(current_month, expected):
    contract = Contract(current_month=current_month, duration_months=24)
    assert due_next_month(contract, AdjustmentIndex(frequency_months=3)) is expected


def test_no_index_never_triggers():
    contract = Contract(current_month=3, duration_months=24)
    assert due_this_month(contract, None) is False
    assert due_next_month(contract, None) is False
    assert next_adjustment_month(contract, None) is None


def test_next_adjustment_month():
    index = AdjustmentIndex(frequency_months=3)
    assert next_adjustment_month(Contract(current_month=1, duration_months=24), index) == 4
    assert next_adjustment_month(Contract(current_month=4, duration_months=24), index) == 7
    assert next_adjustment_month(Contract(current_month=5, duration_months=6), index) is None
    # Never past the last month
    assert due_next_month(Contract(current_month=6, duration_months=6), index) is False


def test_adjusted_rent_rounds_to_cents():
    assert adjusted_rent(Decimal("100000"), Decimal("10")) == Decimal("110000.00")
    assert adjusted_rent(Decimal("99999.99"), Decimal("3.33")) == Decimal("103329.99")


@pytest.mark.asyncio
async def test_apply_then_undo_restores_rent(db_session, make_contract):
    """100000 + 10% is 110000; undoing brings back 100000."""
    contract = await make_contract()

    history = await AdjustmentService.apply(db_session, contract, Decimal("10"))
    await db_session.commit()

    assert history.target_month == 1
    assert history.previous_base_rent == Decimal("100000")
    assert history.new_base_rent == Decimal("110000")
    assert contract.base_rent == Decimal("110000")

    undone = await AdjustmentService.undo(db_session, contract, 1)
    await db_session.commit()

    assert undone.id == history.id
    assert undone.undone_at is not None
    assert contract.base_rent == Decimal("100000")
    assert await AdjustmentService.get_active(db_session, contract.id, 1) is None


@pytest.mark.asyncio
async def test_duplicate_apply_is_rejected(db_session, make_contract):
    contract = await make_contract()
    await AdjustmentService.apply(db_session, contract, Decimal("10"))

    with pytest.raises(DuplicateAdjustmentError):
        await AdjustmentService.apply(db_session, contract, Decimal("5"))

    assert contract.base_rent == Decimal("110000")


@pytest.mark.asyncio
async def test_reapply_after_undo(db_session, make_contract):
    """An undone row does not block a new adjustment for the same month."""
    contract = await make_contract()
    await AdjustmentService.apply(db_session, contract, Decimal("10"))
    await AdjustmentService.undo(db_session, contract, 1)

    history = await AdjustmentService.apply(db_session, contract, Decimal("20"))
    await db_session.commit()

    assert history.new_base_rent == Decimal("120000")
    assert contract.base_rent == Decimal("120000")
    rows = (await db_session.execute(
        select(AdjustmentHistory).where(AdjustmentHistory.contract_id == contract.id)
    )).scalars().all()
    assert len(rows) == 2


@pytest.mark.asyncio
async def test_undo_without_active_adjustment(db_session, make_contract):
    contract = await make_contract()
    with pytest.raises(NoAdjustmentToUndoError):
        await AdjustmentService.undo(db_session, contract, 1)

    await AdjustmentService.apply(db_session, contract, Decimal("10"))
    await AdjustmentService.undo(db_session, contract, 1)
    with pytest.raises(NoAdjustmentToUndoError):
        await AdjustmentService.undo(db_session, contract, 1)


@pytest.mark.asyncio
async def test_first_adjustment_records_initial_rent(db_session, make_contract):
    contract = await make_contract(initial_rent=None)
    await AdjustmentService.apply(db_session, contract, Decimal("10"))
    await db_session.commit()

    assert contract.initial_rent == Decimal("100000")
    assert contract.base_rent == Decimal("110000")


@pytest.mark.asyncio
async def test_future_target_waits_for_the_month(db_session, make_contract):
    contract = await make_contract(current_month=1)

    history = await AdjustmentService.apply(db_session, contract, Decimal("10"), target_month=4)

    assert history.target_period_month == 4
    assert history.target_period_year == 2024
    assert contract.base_rent == Decimal("100000")
    assert await RentResolver.rent_in_force(db_session, contract, 3) == Decimal("100000")
    assert await RentResolver.rent_in_force(db_session, contract, 4) == Decimal("110000")
    assert await RentResolver.rent_in_force(db_session, contract, 12) == Decimal("110000")

    for _ in range(4):
        record = await LedgerBuilder.open_period(db_session, contract)
    await db_session.commit()

    assert record.month_number == 4
    assert rent_line(await LedgerBuilder.get_concepts(db_session, record.id)).amount == Decimal("110000")
    assert contract.base_rent == Decimal("110000")


@pytest.mark.asyncio
async def test_target_past_duration_is_rejected(db_session, make_contract):
    contract = await make_contract(duration_months=6)
    with pytest.raises(ContractExpiredError):
        await AdjustmentService.apply(db_session, contract, Decimal("10"), target_month=7)


@pytest.mark.asyncio
async def test_adjustments_compound_on_rent_in_force(db_session, make_contract):
    contract = await make_contract()
    await AdjustmentService.apply(db_session, contract, Decimal("10"), target_month=1)
    second = await AdjustmentService.apply(db_session, contract, Decimal("10"), target_month=4)

    assert second.previous_base_rent == Decimal("110000")
    assert second.new_base_rent == Decimal("121000")

    await AdjustmentService.undo(db_session, contract, 4)
    assert await RentResolver.rent_in_force(db_session, contract, 6) == Decimal("110000")


@pytest.mark.asyncio
async def test_apply_reprices_untouched_records_only(db_session, make_contract):
    """Open pending records follow the new rent; records with payments keep theirs."""
    paid = await make_contract()
    untouched = await make_contract()

    paid_record = await LedgerBuilder.open_period(db_session, paid)
    untouched_record = await LedgerBuilder.open_period(db_session, untouched)
    await PaymentReconciliation.record_payment(
        db_session, paid, paid_record, Decimal("1000"), date(2024, 1, 5),
        payment_method=PaymentMethod.TRANSFERENCIA,
    )

    await AdjustmentService.apply(db_session, paid, Decimal("10"))
    await AdjustmentService.apply(db_session, untouched, Decimal("10"))
    await db_session.commit()

    assert rent_line(await LedgerBuilder.get_concepts(db_session, paid_record.id)).amount == Decimal("100000")
    assert paid_record.total_due == Decimal("100000")
    assert rent_line(await LedgerBuilder.get_concepts(db_session, untouched_record.id)).amount == Decimal("110000")
    assert untouched_record.total_due == Decimal("110000")


@pytest.mark.asyncio
async def test_apply_all_due_next_month_is_best_effort(db_session, group_id, make_index, make_contract):
    """One contract failing does not stop the others."""
    index = await make_index(frequency_months=3, current_value="10")
    zero = await make_index(frequency_months=3, current_value="0", name="Flat")

    due = await make_contract(current_month=3, adjustment_index_id=index.id)
    already = await make_contract(current_month=3, adjustment_index_id=index.id)
    not_due = await make_contract(current_month=2, adjustment_index_id=index.id)
    owner = await make_contract(
        current_month=3, adjustment_index_id=index.id,
        contract_type=ContractType.OWNER_OBLIGATION, rent="0",
    )
    flat = await make_contract(current_month=3, adjustment_index_id=zero.id)

    await AdjustmentService.apply(db_session, already, Decimal("5"), target_month=4)
    await db_session.commit()

    outcomes = await AdjustmentService.apply_all_due_next_month(db_session, group_id)
    await db_session.commit()

    by_contract = {o.contract_id: o for o in outcomes}
    assert set(by_contract) == {due.id, already.id}
    assert not_due.id not in by_contract
    assert owner.id not in by_contract
    assert flat.id not in by_contract

    assert by_contract[due.id].status == AdjustmentOutcomeStatus.APPLIED
    assert by_contract[due.id].target_month == 4
    assert by_contract[due.id].new_base_rent == Decimal("110000")
    assert by_contract[already.id].status == AdjustmentOutcomeStatus.FAILED
    assert by_contract[already.id].error_code == "ERR_ADJUSTMENT_DUPLICATE"

    applied = await AdjustmentService.get_active(db_session, due.id, 4)
    assert applied.new_base_rent == Decimal("110000")
    # Future month: base rent moves when the contract gets there
    await db_session.refresh(due)
    assert due.base_rent == Decimal("100000")


@pytest.mark.asyncio
async def test_adjustment_alerts(db_session, group_id, make_index, make_contract):
    index = await make_index(frequency_months=3, current_value="8.5")
    this_month = await make_contract(current_month=4, adjustment_index_id=index.id)
    next_month = await make_contract(current_month=6, adjustment_index_id=index.id)
    await make_contract(current_month=5, adjustment_index_id=index.id)

    alerts = await AdjustmentService.adjustment_alerts(db_session, group_id)
    assert [a.contract_id for a in alerts["this_month"]] == [this_month.id]
    assert [a.contract_id for a in alerts["next_month"]] == [next_month.id]
    assert alerts["this_month"][0].applied is False
    assert alerts["next_month"][0].target_month == 7
    assert alerts["next_month"][0].period_month == 7
    assert alerts["next_month"][0].suggested_percentage == Decimal("8.5")

    await AdjustmentService.apply(db_session, this_month, Decimal("8.5"))
    alerts = await AdjustmentService.adjustment_alerts(db_session, group_id)
    alert = alerts["this_month"][0]
    assert alert.applied is True
    assert alert.current_rent == Decimal("100000")


@pytest.mark.asyncio
async def test_delete_index(db_session, group_id, make_index, make_contract):
    used = await make_index(name="ICL")
    unused = await make_index(name="Casa Propia")
    await make_contract(adjustment_index_id=used.id)

    with pytest.raises(IndexInUseError):
        await AdjustmentService.delete_index(db_session, group_id, used.id)

    await AdjustmentService.delete_index(db_session, group_id, unused.id)
    await db_session.commit()

    assert await db_session.get(AdjustmentIndex, unused.id) is None
    assert await db_session.get(AdjustmentIndex, used.id) is not None
