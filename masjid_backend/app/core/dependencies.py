"""
FastAPI dependencies.

Builds the record store, ledger engine and services per request, and
hands out the long-lived objects the lifespan put on app.state.
"""

from datetime import datetime
from typing import Callable, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from masjid_backend.app.db.session import get_db
from masjid_backend.app.db.record_store import RecordStore
from masjid_backend.app.domain.ledger.ledger_engine import DebtLedgerEngine
from masjid_backend.app.services.member_service import MemberService
from masjid_backend.app.services.payment_service import PaymentService
from masjid_backend.app.services.debt_service import DebtService
from masjid_backend.app.services.sync_relay import SyncRelay
from masjid_backend.app.services.scheduler import DebtScheduler


def get_clock() -> Callable[[], datetime]:
    """Source of "now" for the ledger; tests override it with a fixed clock."""
    return datetime.now


async def get_record_store(db: AsyncSession = Depends(get_db)) -> RecordStore:
    return RecordStore(db)


async def get_ledger_engine(
    store: RecordStore = Depends(get_record_store),
    clock: Callable[[], datetime] = Depends(get_clock)
) -> DebtLedgerEngine:
    return DebtLedgerEngine(store, clock=clock)


async def get_member_service(
    store: RecordStore = Depends(get_record_store),
    engine: DebtLedgerEngine = Depends(get_ledger_engine)
) -> MemberService:
    return MemberService(store, engine)


async def get_payment_service(
    store: RecordStore = Depends(get_record_store),
    engine: DebtLedgerEngine = Depends(get_ledger_engine)
) -> PaymentService:
    return PaymentService(store, engine)


async def get_debt_service(
    store: RecordStore = Depends(get_record_store),
    engine: DebtLedgerEngine = Depends(get_ledger_engine)
) -> DebtService:
    return DebtService(store, engine)


async def get_sync_relay(request: Request) -> SyncRelay:
    return request.app.state.sync_relay


async def get_debt_scheduler(request: Request) -> Optional[DebtScheduler]:
    return getattr(request.app.state, "debt_scheduler", None)


async def get_redis(request: Request):
    return getattr(request.app.state, "redis", None)
