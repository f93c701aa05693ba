"""
Payment Reconciliation Tests.

Statuses, punitory at payment time, receipts, overpayment credit and
payment deletion.
"""

import pytest
from datetime import date
from decimal import Decimal

from rental_backend.app.core.exceptions import DuplicateReceiptError, ImmutableCompletedPeriodError
from rental_backend.app.domain.billing import business_days
from rental_backend.app.domain.billing.ledger_builder import LedgerBuilder
from rental_backend.app.domain.billing.reconciliation import PaymentReconciliation, impute
from rental_backend.app.models.billing_enums import ConceptKind, PaymentMethod, RecordStatus
from rental_backend.app.models.record_concept import RecordConcept


def concept(kind, amount):
    return RecordConcept(concept_type=kind, amount=Decimal(amount))


def amounts_by_kind(concepts):
    return {c.concept_type: c.amount for c in concepts}


async def pay(db, contract, record, amount, when=date(2024, 1, 5), **kwargs):
    kwargs.setdefault("payment_method", PaymentMethod.TRANSFERENCIA)
    return await PaymentReconciliation.record_payment(db, contract, record, Decimal(amount), when, **kwargs)


def test_impute_services_then_rent_then_punitory():
    concepts = [
        concept(ConceptKind.ALQUILER.value, "100000"),
        concept(ConceptKind.PUNITORIOS.value, "3000"),
        concept("EXPENSAS", "15000"),
    ]

    lines = impute(concepts, Decimal("0"), Decimal("50000"))
    assert [(l.concept_type, l.amount) for l in lines] == [
        ("EXPENSAS", Decimal("15000")),
        (ConceptKind.ALQUILER.value, Decimal("35000")),
    ]

    rest = impute(concepts, Decimal("50000"), Decimal("70000"))
    assert [(l.concept_type, l.amount) for l in rest] == [
        (ConceptKind.ALQUILER.value, Decimal("65000")),
        (ConceptKind.PUNITORIOS.value, Decimal("3000")),
        (ConceptKind.SOBREPAGO.value, Decimal("2000")),
    ]


def test_impute_shows_credit_used_by_first_payment():
    concepts = [
        concept(ConceptKind.ALQUILER.value, "100000"),
        concept(ConceptKind.A_FAVOR.value, "-20000"),
    ]
    lines = impute(concepts, Decimal("0"), Decimal("80000"))
    assert [(l.concept_type, l.amount) for l in lines] == [
        (ConceptKind.ALQUILER.value, Decimal("100000")),
        (ConceptKind.A_FAVOR.value, Decimal("-20000")),
    ]
    assert sum(l.amount for l in lines) == Decimal("80000")


@pytest.mark.asyncio
async def test_partial_then_complete(db_session, make_contract):
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)

    await pay(db_session, contract, record, "40000")
    assert record.status == RecordStatus.PARTIAL
    assert record.amount_paid == Decimal("40000")
    assert record.full_payment_date is None

    await pay(db_session, contract, record, "60000", when=date(2024, 1, 8))
    await db_session.commit()

    assert record.status == RecordStatus.COMPLETE
    assert record.amount_paid == Decimal("100000")
    assert record.full_payment_date == date(2024, 1, 8)


@pytest.mark.asyncio
async def test_late_payment_accrues_punitory(db_session, make_contract):
    """Rent 100000, 0.6% daily from the 10th, paid on the 15th: 3000 punitory."""
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)

    transaction = await pay(db_session, contract, record, "103000", when=date(2024, 1, 15))
    await db_session.commit()

    assert transaction.punitory_amount == Decimal("3000")
    assert transaction.punitory_days == 5
    concepts = await LedgerBuilder.get_concepts(db_session, record.id)
    assert amounts_by_kind(concepts)[ConceptKind.PUNITORIOS.value] == Decimal("3000")
    assert record.total_due == Decimal("103000")
    assert record.status == RecordStatus.COMPLETE


@pytest.mark.asyncio
async def test_punitory_accumulates_on_remaining_rent(db_session, make_contract):
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)

    on_time = await pay(db_session, contract, record, "50000", when=date(2024, 1, 5))
    late = await pay(db_session, contract, record, "40000", when=date(2024, 1, 15))

    assert on_time.punitory_amount == Decimal("0")
    # 50000 still owed when the second payment arrived, 5 days from the 10th
    assert late.punitory_amount == Decimal("1500")
    assert record.total_due == Decimal("101500")
    assert record.status == RecordStatus.PARTIAL

    last = await pay(db_session, contract, record, "11800", when=date(2024, 1, 20))
    # 10000 of rent still unpaid at 0.6% for the 5 days since the last payment
    assert last.punitory_amount == Decimal("300")
    assert last.punitory_days == 5
    assert record.total_due == Decimal("101800")
    assert record.status == RecordStatus.COMPLETE


@pytest.mark.asyncio
async def test_same_day_payments_add_no_punitory(db_session, make_contract):
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)

    first = await pay(db_session, contract, record, "50000", when=date(2024, 1, 15))
    second = await pay(db_session, contract, record, "1000", when=date(2024, 1, 15))

    assert first.punitory_amount == Decimal("3000")
    assert second.punitory_amount == Decimal("0")
    assert record.total_due == Decimal("103000")


@pytest.mark.asyncio
async def test_late_payment_on_period_with_credit(db_session, make_contract):
    """Month 2 carries 20000 credit; punitory accrues on the 80000 left, not the full rent."""
    contract = await make_contract()
    first = await LedgerBuilder.open_period(db_session, contract)
    await pay(db_session, contract, first, "120000")
    second = await LedgerBuilder.open_period(db_session, contract)

    # 2024-02-10 is a Saturday: on time until Monday the 12th, late days count from the 10th
    preview = await LedgerBuilder.compute_preview(db_session, contract, date(2024, 2, 12))
    assert preview.punitory_days == 0

    transaction = await pay(db_session, contract, second, "82400", when=date(2024, 2, 15))

    assert transaction.punitory_days == 5
    assert transaction.punitory_amount == Decimal("2400")
    assert second.total_due == Decimal("82400")
    assert second.status == RecordStatus.COMPLETE


@pytest.mark.asyncio
async def test_grace_day_moves_the_due_date(db_session, make_contract):
    contract = await make_contract(punitory_grace_day=15)
    record = await LedgerBuilder.open_period(db_session, contract)

    on_time = await pay(db_session, contract, record, "50000", when=date(2024, 1, 15))
    assert on_time.punitory_amount == Decimal("0")

    # Past the grace day interest counts from the last payment
    late = await pay(db_session, contract, record, "50000", when=date(2024, 1, 16))
    assert late.punitory_days == 1
    assert late.punitory_amount == Decimal("300")

    # or from the start day when nothing was paid before
    other = await make_contract(punitory_grace_day=15)
    unpaid = await LedgerBuilder.open_period(db_session, other)
    transaction = await pay(db_session, other, unpaid, "103600", when=date(2024, 1, 16))
    assert transaction.punitory_days == 6
    assert transaction.punitory_amount == Decimal("3600")
    assert unpaid.status == RecordStatus.COMPLETE


@pytest.mark.asyncio
async def test_holiday_on_the_due_date_moves_it(db_session, make_contract):
    await business_days.add_holiday(db_session, date(2024, 1, 10), "Feriado local")
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)

    transaction = await pay(db_session, contract, record, "100000", when=date(2024, 1, 11))

    assert transaction.punitory_amount == Decimal("0")
    assert record.status == RecordStatus.COMPLETE


@pytest.mark.asyncio
async def test_forgiven_punitory(db_session, make_contract):
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)

    transaction = await pay(db_session, contract, record, "100000", when=date(2024, 1, 15), punitory_forgiven=True)

    assert transaction.punitory_amount == Decimal("0")
    assert transaction.punitory_days == 5
    assert transaction.punitory_forgiven is True
    assert record.status == RecordStatus.COMPLETE
    concepts = await LedgerBuilder.get_concepts(db_session, record.id)
    assert ConceptKind.PUNITORIOS.value not in amounts_by_kind(concepts)


@pytest.mark.asyncio
async def test_completed_record_rejects_payments(db_session, make_contract):
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)
    await pay(db_session, contract, record, "100000")

    with pytest.raises(ImmutableCompletedPeriodError):
        await pay(db_session, contract, record, "1")


@pytest.mark.asyncio
async def test_overpayment_becomes_next_period_credit(db_session, make_contract):
    contract = await make_contract()
    first = await LedgerBuilder.open_period(db_session, contract)

    transaction = await pay(db_session, contract, first, "120000")
    snapshot = await PaymentReconciliation.get_snapshot(db_session, transaction.id)
    assert [(c.concept_type, c.amount) for c in snapshot] == [
        (ConceptKind.ALQUILER.value, Decimal("100000")),
        (ConceptKind.SOBREPAGO.value, Decimal("20000")),
    ]
    assert first.status == RecordStatus.COMPLETE

    second = await LedgerBuilder.open_period(db_session, contract)
    assert second.total_due == Decimal("80000")

    payment = await pay(db_session, contract, second, "80000", when=date(2024, 2, 5))
    assert second.status == RecordStatus.COMPLETE
    snapshot = await PaymentReconciliation.get_snapshot(db_session, payment.id)
    assert sum(c.amount for c in snapshot) == Decimal("80000")


@pytest.mark.asyncio
async def test_credit_refreshes_on_already_open_period(db_session, make_contract):
    """A later overpayment updates the credit of a next period with no payments."""
    contract = await make_contract()
    first = await LedgerBuilder.open_period(db_session, contract)
    second = await LedgerBuilder.open_period(db_session, contract)
    assert second.total_due == Decimal("100000")

    await pay(db_session, contract, first, "125000")

    concepts = await LedgerBuilder.get_concepts(db_session, second.id)
    assert amounts_by_kind(concepts)[ConceptKind.A_FAVOR.value] == Decimal("-25000")
    assert second.total_due == Decimal("75000")


@pytest.mark.asyncio
async def test_iva_entered_at_payment_time(db_session, make_contract):
    contract = await make_contract(pays_iva=True)
    record = await LedgerBuilder.open_period(db_session, contract)

    transaction = await pay(db_session, contract, record, "121000", iva_amount=Decimal("21000"))

    assert transaction.iva_amount == Decimal("21000")
    concepts = await LedgerBuilder.get_concepts(db_session, record.id)
    assert concepts[-1].concept_type == ConceptKind.IVA.value
    assert concepts[-1].amount == Decimal("21000")
    assert record.total_due == Decimal("121000")
    assert record.status == RecordStatus.COMPLETE


@pytest.mark.asyncio
async def test_cash_payments_get_sequential_receipts(db_session, make_contract):
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)

    cash = await pay(db_session, contract, record, "10000", payment_method=PaymentMethod.EFECTIVO)
    transfer = await pay(db_session, contract, record, "10000", payment_method=PaymentMethod.TRANSFERENCIA)
    requested = await pay(
        db_session, contract, record, "10000",
        payment_method=PaymentMethod.TRANSFERENCIA, generate_receipt=True,
    )
    skipped = await pay(
        db_session, contract, record, "10000",
        payment_method=PaymentMethod.EFECTIVO, generate_receipt=False,
    )

    assert cash.receipt_number == "REC-000001"
    assert transfer.receipt_number is None
    assert requested.receipt_number == "REC-000002"
    assert skipped.receipt_number is None


@pytest.mark.asyncio
async def test_delete_payment_reverses_status(db_session, make_contract):
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)
    transaction = await pay(db_session, contract, record, "40000", when=date(2024, 1, 15))
    assert record.status == RecordStatus.PARTIAL

    await PaymentReconciliation.delete_transaction(db_session, contract, transaction)
    await db_session.commit()

    assert record.status == RecordStatus.PENDING
    assert record.amount_paid == Decimal("0")
    assert record.total_due == Decimal("100000")
    concepts = await LedgerBuilder.get_concepts(db_session, record.id)
    assert ConceptKind.PUNITORIOS.value not in amounts_by_kind(concepts)


@pytest.mark.asyncio
async def test_delete_payment_drops_unconsumed_credit(db_session, make_contract):
    contract = await make_contract()
    first = await LedgerBuilder.open_period(db_session, contract)
    overpayment = await pay(db_session, contract, first, "120000")
    second = await LedgerBuilder.open_period(db_session, contract)
    assert second.total_due == Decimal("80000")

    await PaymentReconciliation.delete_transaction(db_session, contract, overpayment)

    assert first.status == RecordStatus.PENDING
    concepts = await LedgerBuilder.get_concepts(db_session, second.id)
    assert ConceptKind.A_FAVOR.value not in amounts_by_kind(concepts)
    assert second.total_due == Decimal("100000")


@pytest.mark.asyncio
async def test_delete_refused_once_credit_was_consumed(db_session, make_contract):
    contract = await make_contract()
    first = await LedgerBuilder.open_period(db_session, contract)
    overpayment = await pay(db_session, contract, first, "120000")
    second = await LedgerBuilder.open_period(db_session, contract)
    await pay(db_session, contract, second, "10000", when=date(2024, 2, 5))

    with pytest.raises(ImmutableCompletedPeriodError):
        await PaymentReconciliation.delete_transaction(db_session, contract, overpayment)

    assert first.status == RecordStatus.COMPLETE
    assert second.amount_paid == Decimal("10000")


@pytest.mark.asyncio
async def test_receipt_after_deleted_payment_is_not_reissued(db_session, make_contract):
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)

    first = await pay(db_session, contract, record, "10000", payment_method=PaymentMethod.EFECTIVO)
    second = await pay(db_session, contract, record, "10000", payment_method=PaymentMethod.EFECTIVO)
    assert (first.receipt_number, second.receipt_number) == ("REC-000001", "REC-000002")

    await PaymentReconciliation.delete_transaction(db_session, contract, first)
    third = await pay(db_session, contract, record, "10000", payment_method=PaymentMethod.EFECTIVO)
    await db_session.commit()

    assert third.receipt_number == "REC-000003"
    assert record.amount_paid == Decimal("20000")


@pytest.mark.asyncio
async def test_receipt_taken_concurrently_is_a_conflict(db_session, make_contract, mocker):
    contract = await make_contract()
    record = await LedgerBuilder.open_period(db_session, contract)
    await pay(db_session, contract, record, "10000", payment_method=PaymentMethod.EFECTIVO)

    # Another payment read the same highest number before this one was stored
    mocker.patch.object(
        PaymentReconciliation, "next_receipt_number", new=mocker.AsyncMock(return_value="REC-000001")
    )
    with pytest.raises(DuplicateReceiptError) as exc_info:
        await pay(db_session, contract, record, "10000", payment_method=PaymentMethod.EFECTIVO)

    assert exc_info.value.details["receipt_number"] == "REC-000001"
    assert await LedgerBuilder.sum_payments(db_session, record.id) == Decimal("10000")


@pytest.mark.asyncio
async def test_credit_cascades_through_fully_covered_period(db_session, make_contract):
    contract = await make_contract()
    first = await LedgerBuilder.open_period(db_session, contract)
    second = await LedgerBuilder.open_period(db_session, contract)
    third = await LedgerBuilder.open_period(db_session, contract)

    overpayment = await pay(db_session, contract, first, "220000")

    concepts = await LedgerBuilder.get_concepts(db_session, second.id)
    assert amounts_by_kind(concepts)[ConceptKind.A_FAVOR.value] == Decimal("-120000")
    assert second.total_due == Decimal("-20000")
    assert second.status == RecordStatus.COMPLETE

    concepts = await LedgerBuilder.get_concepts(db_session, third.id)
    assert amounts_by_kind(concepts)[ConceptKind.A_FAVOR.value] == Decimal("-20000")
    assert third.total_due == Decimal("80000")

    await PaymentReconciliation.delete_transaction(db_session, contract, overpayment)
    await db_session.commit()

    for record in (second, third):
        concepts = await LedgerBuilder.get_concepts(db_session, record.id)
        assert ConceptKind.A_FAVOR.value not in amounts_by_kind(concepts)
        assert record.total_due == Decimal("100000")
        assert record.status == RecordStatus.PENDING


@pytest.mark.asyncio
async def test_delete_refused_when_cascaded_credit_was_paid_against(db_session, make_contract):
    contract = await make_contract()
    first = await LedgerBuilder.open_period(db_session, contract)
    await LedgerBuilder.open_period(db_session, contract)
    third = await LedgerBuilder.open_period(db_session, contract)
    overpayment = await pay(db_session, contract, first, "220000")
    await pay(db_session, contract, third, "10000", when=date(2024, 3, 5))

    with pytest.raises(ImmutableCompletedPeriodError) as exc_info:
        await PaymentReconciliation.delete_transaction(db_session, contract, overpayment)

    assert exc_info.value.details["record_id"] == third.id
    assert first.amount_paid == Decimal("220000")
