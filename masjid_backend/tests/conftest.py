"""
Centralized Test Configuration.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from pydantic import ValidationError
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from masjid_backend.app.main import app
from masjid_backend.app.db.session import get_db, Base
from masjid_backend.app.db.record_store import RecordStore
from masjid_backend.app.core.dependencies import get_clock, get_redis, get_sync_relay
from masjid_backend.app.core.exceptions import AppException
from masjid_backend.app.core.reliability import CircuitBreaker
from masjid_backend.app.domain.ledger.ledger_engine import DebtLedgerEngine
from masjid_backend.app.models.enums import MemberStatus
from masjid_backend.app.services.sync_relay import SyncRelay

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints and let SQLAlchemy drive transactions."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    # Without this the driver never emits BEGIN and SAVEPOINT release commits
    dbapi_conn.isolation_level = None


@event.listens_for(engine.sync_engine, "begin")
def do_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# "Today" for the dues scenarios: four periods (Jan-Apr 2024) after a mid-January join
FIXED_NOW = datetime(2024, 4, 20, 10, 0, 0)


class FakeClock:
    """Callable clock a test can move."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def sync_relay(redis_client, clock):
    breaker = CircuitBreaker(failure_threshold=2, reset_timeout=60, excluded=(AppException, ValidationError))
    return SyncRelay(TestingSessionLocal, redis_client, clock=clock, breaker=breaker)


@pytest.fixture(autouse=True)
def apply_overrides(redis_client, sync_relay, clock):
    """Point the app at the test database, fixed clock, mock Redis and test relay."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_redis] = lambda: redis_client
    app.dependency_overrides[get_sync_relay] = lambda: sync_relay
    yield
    app.dependency_overrides = {}


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def store(db_session):
    return RecordStore(db_session)


@pytest.fixture
def ledger(store, clock):
    return DebtLedgerEngine(store, clock=clock)


@pytest.fixture
def make_member(store):
    """Insert a member directly, without the registration backfill."""

    async def _make(
        name: str = "Ahmed Khan",
        join_date: date = date(2024, 1, 15),
        monthly_dues: str = "200.00",
        status: MemberStatus = MemberStatus.ACTIVE,
        **extra
    ):
        member = await store.members.create(
            name=name,
            join_date=join_date,
            monthly_dues=Decimal(monthly_dues),
            total_debt=Decimal("0.00"),
            status=status,
            **extra
        )
        await store.commit()
        return member

    return _make


@pytest.fixture
def session_factory():
    """Fresh sessions for reading state written by another session."""
    return TestingSessionLocal
