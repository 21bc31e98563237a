"""
Integration tests for payment recording and allocation over HTTP.
"""

import pytest


@pytest.fixture
async def member_id(client):
    response = await client.post("/v1/members", json={
        "name": "Ahmed Khan", "join_date": "2024-01-15", "monthly_dues": 200
    })
    assert response.status_code == 201
    return response.json()["id"]


async def member_total(client, member_id):
    return (await client.get(f"/v1/members/{member_id}")).json()["total_debt"]


@pytest.mark.asyncio
async def test_record_payment_allocates_oldest_first(client, member_id):
    response = await client.post("/v1/payments", json={
        "member_id": member_id,
        "amount": 250,
        "payment_date": "2024-04-20",
        "receipt_number": "R-001",
    })

    assert response.status_code == 201
    data = response.json()
    assert data["allocation_status"] == "allocated"
    assert data["allocation_error"] is None
    assert data["month"] == 4 and data["year"] == 2024
    allocation = data["allocation"]
    assert allocation["applied_amount"] == 250.0
    assert allocation["unapplied_amount"] == 0.0
    assert len(allocation["settled_debt_ids"]) == 2
    assert allocation["remainder_amount"] == 150.0
    assert allocation["total_debt"] == 550.0

    assert await member_total(client, member_id) == 550.0

    pending = (await client.get(f"/v1/members/{member_id}/debts", params={"status": "pending"})).json()
    remainder = [d for d in pending["debts"] if d["id"] == allocation["remainder_debt_id"]][0]
    assert remainder["due_date"] == "2024-03-01"
    assert remainder["parent_debt_id"] == allocation["settled_debt_ids"][1]


@pytest.mark.asyncio
async def test_overpayment_reports_unapplied_amount(client, member_id):
    response = await client.post("/v1/payments", json={
        "member_id": member_id, "amount": 1000, "payment_date": "2024-04-20"
    })

    allocation = response.json()["allocation"]
    assert allocation["applied_amount"] == 800.0
    assert allocation["unapplied_amount"] == 200.0
    assert allocation["remainder_debt_id"] is None
    assert await member_total(client, member_id) == 0.0


@pytest.mark.asyncio
async def test_record_payment_unknown_member(client):
    response = await client.post("/v1/payments", json={
        "member_id": 9999, "amount": 10, "payment_date": "2024-04-20"
    })

    assert response.status_code == 404
    assert response.json()["details"]["resource"] == "Member"


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"amount": 0},
    {"amount": -10},
    {"amount": 10000},
    {"amount": 10.005},
    {"month": 13},
    {"year": 1899},
    {"notes": "x" * 501},
    {"receipt_number": "x" * 51},
])
async def test_record_payment_validation(client, member_id, overrides):
    payload = {"member_id": member_id, "amount": 10, "payment_date": "2024-04-20", **overrides}

    response = await client.post("/v1/payments", json=payload)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_allocation_failure_keeps_payment(client, member_id, mocker):
    mocker.patch(
        "masjid_backend.app.domain.ledger.ledger_engine.DebtLedgerEngine.process_payment",
        side_effect=RuntimeError("allocation exploded"),
    )

    response = await client.post("/v1/payments", json={
        "member_id": member_id, "amount": 250, "payment_date": "2024-04-20"
    })

    assert response.status_code == 201
    data = response.json()
    assert data["allocation_status"] == "failed"
    assert data["allocation_error"] == "allocation exploded"
    assert data["allocation"] is None

    listed = (await client.get("/v1/payments", params={"member_id": member_id})).json()
    assert listed["total"] == 1
    # Nothing was settled, the cached total still matches the debts
    assert await member_total(client, member_id) == 800.0


@pytest.mark.asyncio
async def test_list_payments_filters_and_order(client, member_id):
    for amount, paid_on, month in ((10, "2024-02-05", 2), (20, "2024-03-05", 3), (30, "2024-03-20", 3)):
        await client.post("/v1/payments", json={
            "member_id": member_id, "amount": amount, "payment_date": paid_on, "month": month, "year": 2024
        })

    everything = (await client.get("/v1/payments")).json()
    assert [p["amount"] for p in everything["payments"]] == [30.0, 20.0, 10.0]
    assert everything["total_amount"] == 60.0

    march = (await client.get("/v1/payments", params={"month": 3, "year": 2024})).json()
    assert march["total"] == 2


@pytest.mark.asyncio
async def test_increase_payment_allocates_difference(client, member_id):
    created = (await client.post("/v1/payments", json={
        "member_id": member_id, "amount": 100, "payment_date": "2024-04-20"
    })).json()
    assert await member_total(client, member_id) == 700.0

    response = await client.patch(f"/v1/payments/{created['id']}", json={"amount": 300})

    assert response.status_code == 200
    data = response.json()
    assert data["amount"] == 300.0
    assert data["allocation"]["applied_amount"] == 200.0
    assert await member_total(client, member_id) == 500.0


@pytest.mark.asyncio
async def test_decrease_payment_does_not_reopen_debts(client, member_id):
    created = (await client.post("/v1/payments", json={
        "member_id": member_id, "amount": 200, "payment_date": "2024-04-20"
    })).json()

    response = await client.patch(f"/v1/payments/{created['id']}", json={"amount": 50, "notes": "corrected"})

    assert response.status_code == 200
    assert response.json()["allocation"] is None
    assert response.json()["notes"] == "corrected"
    assert await member_total(client, member_id) == 600.0


@pytest.mark.asyncio
async def test_delete_payment_only_recalculates(client, member_id):
    created = (await client.post("/v1/payments", json={
        "member_id": member_id, "amount": 200, "payment_date": "2024-04-20"
    })).json()

    response = await client.delete(f"/v1/payments/{created['id']}")

    assert response.status_code == 204
    assert (await client.get(f"/v1/payments/{created['id']}")).status_code == 404
    paid = (await client.get("/v1/debts", params={"member_id": member_id, "status": "paid"})).json()
    assert paid["total"] == 1
    assert await member_total(client, member_id) == 600.0


@pytest.mark.asyncio
async def test_update_missing_payment(client):
    response = await client.patch("/v1/payments/9999", json={"amount": 10})

    assert response.status_code == 404
