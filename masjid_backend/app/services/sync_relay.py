"""
Sync Relay.

Accepts mutations a client queued while it was offline and replays them
through the same services the HTTP API uses, so a payment created
offline is allocated and a member created offline gets its dues
backfilled exactly as if the client had been online.

Replay is sequential in client timestamp order. Each operation is
claimed in Redis before it runs so two overlapping replays never execute
the same operation. Store or connectivity failures go through a circuit
breaker; once it opens, replay stops and leaves the rest queued.

Created rows carry the client_operation_id, so an operation that runs
again after a partial failure finds its row instead of creating and
allocating a second one.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from masjid_backend.app.core.config import settings
from masjid_backend.app.core.exceptions import AppException, InvalidSyncOperationError
from masjid_backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from masjid_backend.app.db.record_store import RecordStore
from masjid_backend.app.domain.ledger.ledger_engine import DebtLedgerEngine
from masjid_backend.app.models.dlq import DeadLetterQueue, DLQStatus
from masjid_backend.app.models.enums import SyncOperationType, SyncTable, SyncOperationStatus
from masjid_backend.app.models.sync_operation import SyncOperation
from masjid_backend.app.schemas.debt import DebtCreate, DebtStatusUpdate
from masjid_backend.app.schemas.member import MemberCreate, MemberUpdate
from masjid_backend.app.schemas.payment import PaymentCreate, PaymentUpdate
from masjid_backend.app.schemas.sync import SyncOperationIn
from masjid_backend.app.services.audit import AuditSource
from masjid_backend.app.services.debt_service import DebtService
from masjid_backend.app.services.member_service import MemberService
from masjid_backend.app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

CLAIM_KEY_PREFIX = "sync:inflight:"
TASK_NAME = "sync_replay"


@dataclass
class EnqueueReport:
    accepted: List[str] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)


@dataclass
class ReplayReport:
    applied: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    in_flight: List[str] = field(default_factory=list)
    halted: bool = False
    halt_reason: Optional[str] = None
    requeued: int = 0


@dataclass
class _QueuedOperation:
    """Detached copy of a queued row, so no session stays open while it runs."""
    id: int
    client_operation_id: str
    operation_type: SyncOperationType
    table_name: SyncTable
    payload: Dict[str, Any]


def _require_id(payload: Dict[str, Any]) -> int:
    record_id = payload.get("id")
    if not isinstance(record_id, int) or isinstance(record_id, bool):
        raise InvalidSyncOperationError("Operation payload must carry an integer 'id'", {"payload": payload})
    return record_id


def _without_id(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if key != "id"}


class SyncRelay:

    def __init__(
        self,
        session_factory,
        redis_client,
        clock: Callable[[], datetime] = datetime.now,
        claim_ttl: int = settings.sync_claim_ttl_seconds,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.session_factory = session_factory
        self.redis = redis_client
        self.clock = clock
        self.claim_ttl = claim_ttl
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=settings.sync_failure_threshold,
            reset_timeout=settings.sync_reset_timeout,
            excluded=(AppException, ValidationError),
        )

    async def enqueue(self, operations: Iterable[SyncOperationIn]) -> EnqueueReport:
        """Store new operations; ids seen before are reported as duplicates."""
        report = EnqueueReport()
        async with self.session_factory() as db:
            for op in operations:
                existing = await db.execute(
                    select(SyncOperation.id).where(SyncOperation.client_operation_id == op.client_operation_id)
                )
                if existing.scalar_one_or_none() is not None:
                    report.duplicates.append(op.client_operation_id)
                    continue

                try:
                    async with db.begin_nested():
                        db.add(SyncOperation(
                            client_operation_id=op.client_operation_id,
                            operation_type=op.operation_type,
                            table_name=op.table,
                            payload=op.payload,
                            client_timestamp=op.client_timestamp,
                            status=SyncOperationStatus.QUEUED,
                        ))
                        await db.flush()
                except IntegrityError:
                    report.duplicates.append(op.client_operation_id)
                    continue
                report.accepted.append(op.client_operation_id)
            await db.commit()

        logger.info(
            "Queued %d offline operation(s), ignored %d duplicate(s)",
            len(report.accepted), len(report.duplicates)
        )
        return report

    async def _load_queue(self) -> List[_QueuedOperation]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(SyncOperation)
                .where(SyncOperation.status == SyncOperationStatus.QUEUED)
                .order_by(SyncOperation.client_timestamp, SyncOperation.id)
            )
            return [
                _QueuedOperation(
                    id=row.id,
                    client_operation_id=row.client_operation_id,
                    operation_type=row.operation_type,
                    table_name=row.table_name,
                    payload=dict(row.payload or {}),
                )
                for row in result.scalars().all()
            ]

    async def replay(self) -> ReplayReport:
        """Replay queued operations oldest first."""
        report = ReplayReport()

        for op in await self._load_queue():
            claim_key = f"{CLAIM_KEY_PREFIX}{op.client_operation_id}"
            try:
                claimed = await self.redis.set(claim_key, "1", nx=True, ex=self.claim_ttl)
            except Exception as e:
                logger.error("Cannot claim sync operation %s: %s", op.client_operation_id, e)
                report.halted = True
                report.halt_reason = "claim store unavailable"
                break

            if not claimed:
                report.in_flight.append(op.client_operation_id)
                continue

            try:
                await self.breaker.call(self._execute, op)
            except CircuitOpenError:
                report.halted = True
                report.halt_reason = "circuit open"
                break
            except Exception as e:
                logger.warning("Sync operation %s failed: %s", op.client_operation_id, e)
                await self._mark_failed(op, e)
                report.failed[op.client_operation_id] = str(e)
                if self.breaker.state == "OPEN":
                    report.halted = True
                    report.halt_reason = "circuit open"
                    break
            else:
                await self._mark_applied(op)
                report.applied.append(op.client_operation_id)
            finally:
                await self._release(claim_key)

        logger.info(
            "Sync replay finished: %d applied, %d failed, %d in flight%s",
            len(report.applied), len(report.failed), len(report.in_flight),
            " (halted: %s)" % report.halt_reason if report.halted else ""
        )
        return report

    async def retry_failed(self) -> ReplayReport:
        """Put failed operations back in the queue and replay."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(SyncOperation).where(SyncOperation.status == SyncOperationStatus.FAILED)
            )
            failed = list(result.scalars().all())
            failed_ids = [op.id for op in failed]
            for op in failed:
                op.status = SyncOperationStatus.QUEUED

            if failed_ids:
                letters = await db.execute(
                    select(DeadLetterQueue).where(
                        DeadLetterQueue.sync_operation_id.in_(failed_ids),
                        DeadLetterQueue.status == DLQStatus.FAILED,
                    )
                )
                for letter in letters.scalars().all():
                    letter.status = DLQStatus.RETRYING
                    letter.retry_count = (letter.retry_count or 0) + 1
                    letter.last_retry_at = self.clock()
            await db.commit()

        logger.info("Re-queued %d failed sync operation(s)", len(failed_ids))
        report = await self.replay()
        report.requeued = len(failed_ids)
        return report

    async def get_status(self) -> Dict[str, Any]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(SyncOperation.status, func.count(SyncOperation.id)).group_by(SyncOperation.status)
            )
            counts = {status.value: 0 for status in SyncOperationStatus}
            for status, count in result.all():
                counts[status.value] = count

            dead_letters = await db.execute(
                select(func.count(DeadLetterQueue.id)).where(DeadLetterQueue.status != DLQStatus.PROCESSED)
            )
            failed = await db.execute(
                select(SyncOperation)
                .where(SyncOperation.status == SyncOperationStatus.FAILED)
                .order_by(SyncOperation.client_timestamp, SyncOperation.id)
            )
            return {
                "counts": counts,
                "breaker_state": self.breaker.state,
                "dead_letters": dead_letters.scalar() or 0,
                "failed_operations": list(failed.scalars().all()),
            }

    async def _execute(self, op: _QueuedOperation) -> None:
        """Run one operation through the services in a session of its own."""
        async with self.session_factory() as db:
            store = RecordStore(db)
            engine = DebtLedgerEngine(store, clock=self.clock)
            payload = op.payload

            if op.table_name == SyncTable.MEMBERS:
                service = MemberService(store, engine, source=AuditSource.SYNC)
                if op.operation_type == SyncOperationType.CREATE:
                    await service.register_member(MemberCreate.model_validate(payload), op.client_operation_id)
                elif op.operation_type == SyncOperationType.UPDATE:
                    await service.update_member(_require_id(payload), MemberUpdate.model_validate(_without_id(payload)))
                else:
                    await service.delete_member(_require_id(payload))

            elif op.table_name == SyncTable.PAYMENTS:
                service = PaymentService(store, engine, source=AuditSource.SYNC)
                if op.operation_type == SyncOperationType.CREATE:
                    await service.record_payment(PaymentCreate.model_validate(payload), op.client_operation_id)
                elif op.operation_type == SyncOperationType.UPDATE:
                    await service.update_payment(_require_id(payload), PaymentUpdate.model_validate(_without_id(payload)))
                else:
                    await service.delete_payment(_require_id(payload))

            else:
                service = DebtService(store, engine, source=AuditSource.SYNC)
                if op.operation_type == SyncOperationType.CREATE:
                    await service.add_debt(DebtCreate.model_validate(payload), op.client_operation_id)
                elif op.operation_type == SyncOperationType.UPDATE:
                    update = DebtStatusUpdate.model_validate(_without_id(payload))
                    await service.update_status(_require_id(payload), update.status)
                else:
                    raise InvalidSyncOperationError(
                        "Debts cannot be deleted; mark them paid instead",
                        {"client_operation_id": op.client_operation_id}
                    )

    async def _mark_applied(self, op: _QueuedOperation) -> None:
        async with self.session_factory() as db:
            row = await db.get(SyncOperation, op.id)
            row.status = SyncOperationStatus.APPLIED
            row.attempts = (row.attempts or 0) + 1
            row.last_error = None
            row.applied_at = self.clock()

            letters = await db.execute(
                select(DeadLetterQueue).where(
                    DeadLetterQueue.sync_operation_id == op.id,
                    DeadLetterQueue.status == DLQStatus.RETRYING,
                )
            )
            for letter in letters.scalars().all():
                letter.status = DLQStatus.PROCESSED
            await db.commit()

    async def _mark_failed(self, op: _QueuedOperation, error: Exception) -> None:
        async with self.session_factory() as db:
            row = await db.get(SyncOperation, op.id)
            row.status = SyncOperationStatus.FAILED
            row.attempts = (row.attempts or 0) + 1
            row.last_error = str(error)

            result = await db.execute(
                select(DeadLetterQueue).where(
                    DeadLetterQueue.sync_operation_id == op.id,
                    DeadLetterQueue.status == DLQStatus.RETRYING,
                )
            )
            letter = result.scalars().first()
            if letter:
                letter.status = DLQStatus.FAILED
                letter.error_message = str(error)
            else:
                db.add(DeadLetterQueue(
                    task_name=TASK_NAME,
                    sync_operation_id=op.id,
                    error_message=str(error),
                    payload={
                        "client_operation_id": op.client_operation_id,
                        "operation_type": op.operation_type.value,
                        "table": op.table_name.value,
                        "payload": op.payload,
                    },
                    status=DLQStatus.FAILED,
                ))
            await db.commit()

    async def _release(self, claim_key: str) -> None:
        try:
            await self.redis.delete(claim_key)
        except Exception as e:
            logger.warning("Could not release sync claim %s (expires in %ds): %s", claim_key, self.claim_ttl, e)
