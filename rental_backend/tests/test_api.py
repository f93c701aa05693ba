"""
API Tests.

Drives the billing engine through the HTTP surface and checks the error
envelope every AppException is mapped to.
"""

import pytest
from decimal import Decimal

from rental_backend.app.models.billing_enums import ConceptCategory


def money(value):
    return Decimal(str(value))


@pytest.mark.asyncio
async def test_health_and_root(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


@pytest.mark.asyncio
async def test_correlation_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers["X-Correlation-ID"] == "abc-123"

    response = await client.get("/health")
    assert response.headers["X-Correlation-ID"]


@pytest.mark.asyncio
async def test_period_preview_and_payment_flow(client, group_id, make_contract):
    contract = await make_contract()
    base = f"/v1/groups/{group_id}/contracts/{contract.id}"

    # 1. Preview a late payment
    response = await client.get(f"{base}/preview", params={"payment_date": "2024-01-15"})
    assert response.status_code == 200
    preview = response.json()
    assert [c["concept_type"] for c in preview["concepts"]] == ["ALQUILER", "PUNITORIOS"]
    assert money(preview["total_due"]) == Decimal("103000")
    assert preview["record_id"] is None

    # 2. Open the period
    response = await client.post(f"{base}/periods", json={}, headers={"X-Actor": "admin"})
    assert response.status_code == 201
    record = response.json()
    assert record["month_number"] == 1
    assert record["status"] == "PENDING"
    assert money(record["total_due"]) == Decimal("100000")

    # 3. Pay late, in cash
    response = await client.post(
        f"{base}/periods/1/payments",
        json={"amount": "103000", "payment_date": "2024-01-15"},
    )
    assert response.status_code == 201
    payment = response.json()
    assert money(payment["punitory_amount"]) == Decimal("3000")
    assert payment["punitory_days"] == 5
    assert payment["receipt_number"] == "REC-000001"
    assert payment["record"]["status"] == "COMPLETE"
    assert [c["concept_type"] for c in payment["concepts"]] == ["ALQUILER", "PUNITORIOS"]

    # 4. A settled period takes no more payments
    response = await client.post(
        f"{base}/periods/1/payments",
        json={"amount": "10", "payment_date": "2024-01-20"},
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_PERIOD_IMMUTABLE"

    # 5. Delete the payment
    response = await client.delete(f"/v1/groups/{group_id}/payments/{payment['id']}")
    assert response.status_code == 200
    assert response.json()["status"] == "PENDING"
    assert money(response.json()["total_due"]) == Decimal("100000")

    response = await client.get(f"{base}/periods")
    assert response.status_code == 200
    assert [r["month_number"] for r in response.json()] == [1]


@pytest.mark.asyncio
async def test_duplicate_period_returns_conflict(client, group_id, make_contract):
    contract = await make_contract()
    url = f"/v1/groups/{group_id}/contracts/{contract.id}/periods"

    assert (await client.post(url, json={"month_number": 1})).status_code == 201
    response = await client.post(url, json={"month_number": 1})

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "ERR_PERIOD_DUPLICATE"
    assert body["details"]["month_number"] == 1


@pytest.mark.asyncio
async def test_add_concept(client, group_id, make_contract):
    contract = await make_contract()
    base = f"/v1/groups/{group_id}/contracts/{contract.id}"
    await client.post(f"{base}/periods", json={})

    response = await client.post(
        f"{base}/periods/1/concepts",
        json={"concept_type": "REPARACION", "amount": "2500.50", "description": "Plomero"},
    )

    assert response.status_code == 201
    record = response.json()
    assert [c["concept_type"] for c in record["concepts"]] == ["ALQUILER", "REPARACION"]
    assert money(record["total_due"]) == Decimal("102500.50")


@pytest.mark.asyncio
async def test_unknown_contract_and_validation_errors(client, group_id, make_contract):
    response = await client.post(f"/v1/groups/{group_id}/contracts/999/periods", json={})
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"

    # Contracts are scoped to their group
    contract = await make_contract()
    response = await client.post(f"/v1/groups/{group_id + 1}/contracts/{contract.id}/periods", json={})
    assert response.status_code == 404

    response = await client.post(
        f"/v1/groups/{group_id}/contracts/{contract.id}/periods/1/payments",
        json={"amount": "-5", "payment_date": "2024-01-15"},
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_adjustment_apply_and_undo(client, group_id, make_contract):
    contract = await make_contract()
    url = f"/v1/groups/{group_id}/contracts/{contract.id}/adjustments"

    response = await client.post(url, json={"percentage_increase": "10"})
    assert response.status_code == 201
    body = response.json()
    assert money(body["base_rent"]) == Decimal("110000")
    assert money(body["adjustment"]["previous_base_rent"]) == Decimal("100000")
    assert body["adjustment"]["applied_at"] is not None

    response = await client.post(url, json={"percentage_increase": "10"})
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_ADJUSTMENT_DUPLICATE"

    response = await client.post(f"{url}/undo", json={"target_month": 1})
    assert response.status_code == 200
    assert money(response.json()["base_rent"]) == Decimal("100000")
    assert response.json()["adjustment"]["undone_at"] is not None

    response = await client.post(f"{url}/undo", json={"target_month": 1})
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_ADJUSTMENT_NOT_FOUND"


@pytest.mark.asyncio
async def test_apply_all_and_alerts(client, group_id, make_index, make_contract):
    index = await make_index(frequency_months=3, current_value="10")
    due = await make_contract(current_month=3, adjustment_index_id=index.id)

    response = await client.get(f"/v1/groups/{group_id}/adjustments/alerts")
    assert response.status_code == 200
    assert [a["contract_id"] for a in response.json()["next_month"]] == [due.id]

    response = await client.post(f"/v1/groups/{group_id}/adjustments/apply-all-next-month")
    assert response.status_code == 200
    body = response.json()
    assert (body["applied"], body["failed"]) == (1, 0)
    assert body["outcomes"][0]["status"] == "APPLIED"
    assert body["outcomes"][0]["target_month"] == 4

    # Running it again fails per contract instead of aborting
    response = await client.post(f"/v1/groups/{group_id}/adjustments/apply-all-next-month")
    body = response.json()
    assert (body["applied"], body["failed"]) == (0, 1)
    assert body["outcomes"][0]["error_code"] == "ERR_ADJUSTMENT_DUPLICATE"

    response = await client.delete(f"/v1/groups/{group_id}/adjustment-indices/{index.id}")
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_INDEX_IN_USE"


@pytest.mark.asyncio
async def test_expiring_contracts(client, group_id, make_contract):
    ending = await make_contract(duration_months=12, current_month=11)
    await make_contract(duration_months=12, current_month=2)

    response = await client.get(f"/v1/groups/{group_id}/contracts/expiring")

    assert response.status_code == 200
    assert [(c["id"], c["remaining_months"]) for c in response.json()] == [(ending.id, 1)]


@pytest.mark.asyncio
async def test_rebalance_steps(client, group_id, make_contract):
    url = f"/v1/groups/{group_id}/distributions/rebalance"
    record_ids = []
    for _ in range(3):
        contract = await make_contract()
        response = await client.post(f"/v1/groups/{group_id}/contracts/{contract.id}/periods", json={})
        record_ids.append(response.json()["id"])
    first, second, third = record_ids

    response = await client.post(url, json={"action": "select", "record_ids": record_ids})
    assert response.status_code == 200
    state = response.json()
    assert state["phase"] == "SELECTION"
    assert all(s["contract_id"] is not None for s in state["shares"])

    response = await client.post(url, json={"action": "start", "shares": state["shares"], "total_amount": "90000"})
    state = response.json()
    assert [money(s["percentage"]) for s in state["shares"]] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert money(state["amounts"][str(third)]) == Decimal("30006")

    response = await client.post(
        url, json={"action": "set", "shares": state["shares"], "record_id": first, "value": "60"}
    )
    state = response.json()
    assert state["accepted"] is True
    assert [money(s["percentage"]) for s in state["shares"]] == [Decimal("60"), Decimal("20"), Decimal("20")]

    response = await client.post(
        url, json={"action": "set", "shares": state["shares"], "record_id": second, "value": "50"}
    )
    assert response.status_code == 200
    rejected = response.json()
    assert rejected["accepted"] is False
    assert rejected["message"]
    assert rejected["shares"] == state["shares"]

    response = await client.post(url, json={"action": "confirm", "shares": state["shares"]})
    assert response.json()["phase"] == "CONFIRMATION"

    response = await client.post(url, json={"action": "start", "shares": [state["shares"][0]]})
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_DISTRIBUTION_INVALID"


@pytest.mark.asyncio
async def test_rebalance_rejects_records_of_other_groups(client, group_id, make_contract):
    url = f"/v1/groups/{group_id}/distributions/rebalance"
    contract = await make_contract()
    response = await client.post(f"/v1/groups/{group_id}/contracts/{contract.id}/periods", json={})
    record_id = response.json()["id"]

    response = await client.post(url, json={"action": "select", "record_ids": [record_id, 999]})
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"

    response = await client.post(
        f"/v1/groups/{group_id + 1}/distributions/rebalance",
        json={"action": "select", "record_ids": [record_id]},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_batch_submission_and_templates(client, group_id, make_contract, make_concept_type):
    concept_type = await make_concept_type("EXPENSAS", ConceptCategory.EXPENSA)
    contracts = [await make_contract(), await make_contract()]
    record_ids = []
    for contract in contracts:
        response = await client.post(f"/v1/groups/{group_id}/contracts/{contract.id}/periods", json={})
        record_ids.append(response.json()["id"])

    response = await client.post(
        f"/v1/groups/{group_id}/batch-distributions",
        json={
            "period_month": 1,
            "period_year": 2024,
            "concept_type_id": concept_type.id,
            "total_amount": "30000",
            "distributions": [
                {"record_id": record_ids[0], "percentage": "60"},
                {"record_id": record_ids[1], "percentage": "40", "amount": "12000"},
            ],
            "template_name": "Consorcio",
        },
        headers={"X-Actor": "admin"},
    )
    assert response.status_code == 201
    batch = response.json()
    assert [money(l["amount"]) for l in batch["lines"]] == [Decimal("18000"), Decimal("12000")]
    assert money(batch["residual"]) == Decimal("0")
    template_id = batch["template_id"]

    response = await client.get(f"/v1/groups/{group_id}/distribution-templates")
    assert [t["name"] for t in response.json()] == ["Consorcio"]

    response = await client.post(
        f"/v1/groups/{group_id}/distribution-templates/{template_id}/load",
        json={"period_month": 1, "period_year": 2024, "total_amount": "5000"},
    )
    assert response.status_code == 200
    loaded = response.json()
    assert [s["record_id"] for s in loaded["shares"]] == record_ids
    assert all(s["locked"] for s in loaded["shares"])

    response = await client.post(
        f"/v1/groups/{group_id}/distribution-templates",
        json={"name": "Mitad", "items": [{"contract_id": contracts[0].id, "percentage": "50"}]},
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_DISTRIBUTION_INVALID"

    response = await client.delete(f"/v1/groups/{group_id}/distribution-templates/{template_id}")
    assert response.status_code == 204
    response = await client.get(f"/v1/groups/{group_id}/distribution-templates")
    assert response.json() == []


@pytest.mark.asyncio
async def test_close_month_and_debt_payment_flow(client, group_id, make_contract):
    contract = await make_contract()
    base = f"/v1/groups/{group_id}/contracts/{contract.id}"
    await client.post(f"{base}/periods", json={})
    await client.post(
        f"{base}/periods/1/payments",
        json={"amount": "40000", "payment_date": "2024-01-15", "payment_method": "TRANSFERENCIA"},
    )
    close = {"period_month": 1, "period_year": 2024, "as_of": "2024-02-01"}

    response = await client.post(f"/v1/groups/{group_id}/close-month/preview", json=close)
    assert response.status_code == 200
    preview = response.json()
    assert money(preview["total_debt"]) == Decimal("69120")
    assert preview["items"][0]["will_generate_debt"] is True

    response = await client.post(f"/v1/groups/{group_id}/close-month", json=close, headers={"X-Actor": "admin"})
    assert response.status_code == 201
    assert response.json()["debts_created"] == 1
    debt = response.json()["debts"][0]
    assert debt["status"] == "OPEN"

    # The contract takes no regular payments while it owes a debt
    response = await client.post(
        f"{base}/periods/1/payments",
        json={"amount": "1000", "payment_date": "2024-02-05"},
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_DEBT_BLOCK"

    response = await client.get(f"/v1/groups/{group_id}/debts", params={"status": "OPEN"})
    assert [d["id"] for d in response.json()] == [debt["id"]]

    response = await client.get(f"/v1/groups/{group_id}/debts/summary")
    assert response.json()["blocked_contracts"] == 1

    url = f"/v1/groups/{group_id}/debts/{debt['id']}/payments"
    response = await client.post(url, json={"amount": "80000", "payment_date": "2024-02-11"})
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_DEBT_OVERPAYMENT"

    response = await client.post(url, json={"amount": "72720", "payment_date": "2024-02-11"})
    assert response.status_code == 201
    payment = response.json()
    assert payment["debt"]["status"] == "PAID"
    assert money(payment["punitory_portion"]) == Decimal("12720")

    response = await client.get(f"{base}/periods")
    assert response.json()[0]["status"] == "COMPLETE"

    response = await client.post(f"/v1/groups/{group_id}/debts/999/payments", json={"amount": "1", "payment_date": "2024-02-11"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_holiday_calendar(client):
    response = await client.post("/v1/holidays/seed", params={"year": 2024})
    assert response.status_code == 201
    assert len(response.json()) == 9

    response = await client.post("/v1/holidays/seed", params={"year": 2024})
    assert response.json() == []

    response = await client.post("/v1/holidays", json={"date": "2024-01-10", "name": "Feriado local"})
    assert response.status_code == 201
    assert response.json()["year"] == 2024

    response = await client.get("/v1/holidays", params={"year": 2024})
    assert response.status_code == 200
    dates = [h["date"] for h in response.json()]
    assert dates[:2] == ["2024-01-01", "2024-01-10"]
    assert len(dates) == 10
