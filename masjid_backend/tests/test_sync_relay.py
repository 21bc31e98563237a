"""
Offline sync replay tests.

Operations queued by a disconnected client are replayed through the same
services as the HTTP API, in client timestamp order, at most once.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from masjid_backend.app.db.record_store import RecordStore
from masjid_backend.app.models.dlq import DeadLetterQueue, DLQStatus
from masjid_backend.app.models.enums import AllocationStatus, SyncOperationStatus, DebtStatus
from masjid_backend.app.models.sync_operation import SyncOperation
from masjid_backend.app.schemas.sync import SyncOperationIn
from masjid_backend.app.services.sync_relay import CLAIM_KEY_PREFIX

BASE_TIME = datetime(2024, 4, 18, 9, 0, 0)


def op(client_id, operation_type, table, payload, minutes=0):
    return SyncOperationIn(
        client_operation_id=client_id,
        operation_type=operation_type,
        table=table,
        payload=payload,
        client_timestamp=BASE_TIME + timedelta(minutes=minutes),
    )


async def load_member(session_factory, member_id):
    async with session_factory() as session:
        return await RecordStore(session).members.get_by_id(member_id)


async def load_operation(session_factory, client_id):
    async with session_factory() as session:
        result = await session.execute(
            select(SyncOperation).where(SyncOperation.client_operation_id == client_id)
        )
        return result.scalar_one()


@pytest.mark.asyncio
async def test_enqueue_reports_duplicates(sync_relay):
    first = await sync_relay.enqueue([
        op("op-1", "CREATE", "members", {"name": "Offline Member"}),
        op("op-2", "CREATE", "members", {"name": "Second Member"}, minutes=1),
    ])
    again = await sync_relay.enqueue([
        op("op-1", "CREATE", "members", {"name": "Offline Member"}),
        op("op-3", "CREATE", "members", {"name": "Third Member"}, minutes=2),
    ])

    assert first.accepted == ["op-1", "op-2"]
    assert again.accepted == ["op-3"]
    assert again.duplicates == ["op-1"]

    status = await sync_relay.get_status()
    assert status["counts"]["QUEUED"] == 3


@pytest.mark.asyncio
async def test_replay_runs_through_services_in_timestamp_order(sync_relay, session_factory, make_member):
    member = await make_member()
    await sync_relay.enqueue([
        # Uploaded out of order; the payment was made after the debt was added
        op("pay-1", "CREATE", "payments", {
            "member_id": member.id, "amount": "250.00", "payment_date": "2024-04-18"
        }, minutes=5),
        op("debt-1", "CREATE", "debts", {
            "member_id": member.id, "amount": "100.00", "due_date": "2024-01-01", "type": "custom"
        }, minutes=1),
    ])

    report = await sync_relay.replay()

    assert report.applied == ["debt-1", "pay-1"]
    assert report.failed == {}
    assert report.halted is False

    # The custom debt was the only one outstanding; the other 150 is not kept
    async with session_factory() as session:
        debts = await RecordStore(session).debts.get_all(member_id=member.id)
    assert [d.status for d in debts] == [DebtStatus.PAID]
    assert (await load_member(session_factory, member.id)).total_debt == Decimal("0.00")

    applied = await load_operation(session_factory, "pay-1")
    assert applied.status == SyncOperationStatus.APPLIED
    assert applied.attempts == 1
    assert applied.applied_at is not None


@pytest.mark.asyncio
async def test_replayed_member_creation_backfills_dues(sync_relay, session_factory):
    await sync_relay.enqueue([
        op("member-1", "CREATE", "members", {"name": "Offline Member", "join_date": "2024-02-10", "monthly_dues": "100"}),
    ])

    report = await sync_relay.replay()

    assert report.applied == ["member-1"]
    async with session_factory() as session:
        members = await RecordStore(session).members.get_all()
    assert len(members) == 1
    assert members[0].total_debt == Decimal("300.00")


@pytest.mark.asyncio
async def test_replay_is_at_most_once(sync_relay, session_factory, make_member):
    member = await make_member(monthly_dues="0.00")
    await sync_relay.enqueue([
        op("debt-1", "CREATE", "debts", {"member_id": member.id, "amount": "40.00", "due_date": "2024-05-01"}),
    ])

    await sync_relay.replay()
    second = await sync_relay.replay()
    await sync_relay.enqueue([
        op("debt-1", "CREATE", "debts", {"member_id": member.id, "amount": "40.00", "due_date": "2024-05-01"}),
    ])
    third = await sync_relay.replay()

    assert second.applied == [] and third.applied == []
    assert (await load_member(session_factory, member.id)).total_debt == Decimal("40.00")


@pytest.mark.asyncio
async def test_claimed_operation_is_skipped(sync_relay, session_factory, redis_client, make_member):
    member = await make_member(monthly_dues="0.00")
    await sync_relay.enqueue([
        op("debt-1", "CREATE", "debts", {"member_id": member.id, "amount": "40.00", "due_date": "2024-05-01"}),
    ])
    await redis_client.set(f"{CLAIM_KEY_PREFIX}debt-1", "other-worker")

    report = await sync_relay.replay()

    assert report.in_flight == ["debt-1"]
    assert (await load_operation(session_factory, "debt-1")).status == SyncOperationStatus.QUEUED


@pytest.mark.asyncio
async def test_domain_failure_goes_to_dead_letter_queue(sync_relay, session_factory, make_member):
    member = await make_member(monthly_dues="0.00")
    await sync_relay.enqueue([
        op("bad-1", "UPDATE", "payments", {"id": 9999, "amount": "10.00"}),
        op("bad-2", "CREATE", "members", {"name": "X"}, minutes=1),
        op("bad-3", "DELETE", "debts", {"id": 1}, minutes=2),
        op("good-1", "CREATE", "debts", {"member_id": member.id, "amount": "40.00", "due_date": "2024-05-01"}, minutes=3),
    ])

    report = await sync_relay.replay()

    assert set(report.failed) == {"bad-1", "bad-2", "bad-3"}
    assert report.applied == ["good-1"]
    # Bad payloads are not connectivity problems
    assert report.halted is False
    assert sync_relay.breaker.state == "CLOSED"

    failed = await load_operation(session_factory, "bad-1")
    assert failed.status == SyncOperationStatus.FAILED
    assert "Payment with ID 9999 not found" in failed.last_error

    async with session_factory() as session:
        letters = (await session.execute(select(DeadLetterQueue))).scalars().all()
    assert len(letters) == 3
    assert all(letter.status == DLQStatus.FAILED for letter in letters)

    status = await sync_relay.get_status()
    assert status["counts"]["FAILED"] == 3
    assert status["dead_letters"] == 3


@pytest.mark.asyncio
async def test_retry_failed_requeues_and_marks_processed(sync_relay, session_factory, make_member):
    await sync_relay.enqueue([
        op("pay-1", "CREATE", "payments", {"member_id": 1, "amount": "50.00", "payment_date": "2024-04-18"}),
    ])
    first = await sync_relay.replay()
    assert "pay-1" in first.failed

    # The member the payment belongs to arrives later
    member = await make_member()
    assert member.id == 1

    report = await sync_relay.retry_failed()

    assert report.requeued == 1
    assert report.applied == ["pay-1"]
    operation = await load_operation(session_factory, "pay-1")
    assert operation.status == SyncOperationStatus.APPLIED
    assert operation.attempts == 2

    async with session_factory() as session:
        letter = (await session.execute(select(DeadLetterQueue))).scalar_one()
    assert letter.status == DLQStatus.PROCESSED
    assert letter.retry_count == 1


@pytest.mark.asyncio
async def test_sync_endpoints(client, make_member):
    member = await make_member(monthly_dues="0.00")
    batch = {"operations": [
        {
            "client_operation_id": "api-1",
            "operation_type": "CREATE",
            "table": "debts",
            "payload": {"member_id": member.id, "amount": "25.00", "due_date": "2024-05-01"},
            "client_timestamp": "2024-04-18T09:00:00",
        },
    ]}

    queued = await client.post("/v1/sync/operations", json=batch)
    duplicate = await client.post("/v1/sync/operations", json=batch)
    replayed = await client.post("/v1/sync/replay")
    status = await client.get("/v1/sync/status")

    assert queued.status_code == 202
    assert queued.json() == {"accepted": ["api-1"], "duplicates": []}
    assert duplicate.json() == {"accepted": [], "duplicates": ["api-1"]}
    assert replayed.json()["applied"] == ["api-1"]
    assert status.json()["counts"] == {"QUEUED": 0, "APPLIED": 1, "FAILED": 0}
    assert status.json()["breaker_state"] == "CLOSED"

    retried = await client.post("/v1/sync/retry-failed")
    assert retried.json()["requeued"] == 0


@pytest.mark.asyncio
async def test_sync_batch_validation(client):
    empty = await client.post("/v1/sync/operations", json={"operations": []})
    bad_type = await client.post("/v1/sync/operations", json={"operations": [{
        "client_operation_id": "x", "operation_type": "UPSERT", "table": "members",
        "payload": {}, "client_timestamp": "2024-04-18T09:00:00",
    }]})

    assert empty.status_code == 422
    assert bad_type.status_code == 422


def connection_reset():
    return OperationalError("INSERT INTO audit_logs", {}, ConnectionError("connection reset"))


@pytest.mark.asyncio
async def test_retry_after_late_failure_does_not_record_payment_twice(
    sync_relay, session_factory, ledger, make_member, mocker
):
    member_id = (await make_member()).id
    await ledger.generate_historical_debts(member_id)
    await sync_relay.enqueue([
        op("pay-1", "CREATE", "payments", {
            "member_id": member_id, "amount": "250.00", "payment_date": "2024-04-18"
        }),
    ])
    # Payment and allocation are committed, then the audit write fails
    audit = mocker.patch(
        "masjid_backend.app.services.payment_service.log_event",
        side_effect=connection_reset(),
    )

    first = await sync_relay.replay()
    audit.side_effect = None
    second = await sync_relay.retry_failed()

    assert "pay-1" in first.failed
    assert second.applied == ["pay-1"]
    async with session_factory() as session:
        payments = await RecordStore(session).payments.get_all(member_id=member_id)
    assert [p.amount for p in payments] == [Decimal("250.00")]
    assert payments[0].client_operation_id == "pay-1"
    assert (await load_member(session_factory, member_id)).total_debt == Decimal("550.00")


@pytest.mark.asyncio
async def test_replay_after_unrecorded_success_does_not_reapply(
    sync_relay, session_factory, ledger, make_member, mocker
):
    member_id = (await make_member()).id
    await ledger.generate_historical_debts(member_id)
    await sync_relay.enqueue([
        op("pay-1", "CREATE", "payments", {
            "member_id": member_id, "amount": "250.00", "payment_date": "2024-04-18"
        }),
        op("debt-1", "CREATE", "debts", {
            "member_id": member_id, "amount": "40.00", "due_date": "2024-05-01"
        }, minutes=1),
    ])
    real_mark_applied = sync_relay._mark_applied
    calls = []

    async def flaky_mark_applied(queued):
        calls.append(queued.client_operation_id)
        if len(calls) == 1:
            raise connection_reset()
        await real_mark_applied(queued)

    mocker.patch.object(sync_relay, "_mark_applied", side_effect=flaky_mark_applied)

    with pytest.raises(OperationalError):
        await sync_relay.replay()
    report = await sync_relay.replay()

    assert report.applied == ["pay-1", "debt-1"]
    async with session_factory() as session:
        store = RecordStore(session)
        payments = await store.payments.get_all(member_id=member_id)
        custom = [d for d in await store.debts.get_all(member_id=member_id) if d.client_operation_id]
    assert len(payments) == 1
    assert [d.client_operation_id for d in custom] == ["debt-1"]
    assert (await load_member(session_factory, member_id)).total_debt == Decimal("590.00")


@pytest.mark.asyncio
async def test_replayed_payment_with_uncommitted_allocation_is_allocated_once(
    sync_relay, session_factory, ledger, make_member, mocker
):
    member_id = (await make_member()).id
    await ledger.generate_historical_debts(member_id)
    await sync_relay.enqueue([
        op("pay-1", "CREATE", "payments", {
            "member_id": member_id, "amount": "250.00", "payment_date": "2024-04-18"
        }),
    ])
    # The payment row commits, then the connection drops before allocation
    mocker.patch(
        "masjid_backend.app.services.payment_service.PaymentService._allocate",
        side_effect=connection_reset(),
    )
    first = await sync_relay.replay()
    mocker.stopall()

    second = await sync_relay.retry_failed()

    assert "pay-1" in first.failed
    assert second.applied == ["pay-1"]
    async with session_factory() as session:
        payments = await RecordStore(session).payments.get_all(member_id=member_id)
    assert len(payments) == 1
    assert payments[0].allocation_status == AllocationStatus.ALLOCATED
    assert (await load_member(session_factory, member_id)).total_debt == Decimal("550.00")


@pytest.mark.asyncio
async def test_replayed_member_creation_registers_once(sync_relay, session_factory, mocker):
    await sync_relay.enqueue([
        op("member-1", "CREATE", "members", {"name": "Offline Member", "join_date": "2024-02-10", "monthly_dues": "100"}),
    ])
    mocker.patch(
        "masjid_backend.app.services.member_service.log_event",
        side_effect=connection_reset(),
    )
    first = await sync_relay.replay()
    mocker.stopall()

    second = await sync_relay.retry_failed()

    assert "member-1" in first.failed
    assert second.applied == ["member-1"]
    async with session_factory() as session:
        members = await RecordStore(session).members.get_all()
    assert len(members) == 1
    assert members[0].total_debt == Decimal("300.00")
