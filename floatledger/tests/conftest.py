"""
Centralized Test Configuration.
"""

import itertools
from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from floatledger.app.main import app
from floatledger.app.db.session import get_db, Base
from floatledger.app.core.config import settings
from floatledger.app.core.dependencies import get_clock, get_notification_dispatcher
from floatledger.app.core.tokens import issue_access_token
from floatledger.app.core.locking import AccountLockManager
from floatledger.app.core.redis_client import get_redis
from floatledger.app.core.security import get_password_hash
from floatledger.app.models.enums import UserRole, UserStatus
from floatledger.app.models.user import User
from floatledger.app.schemas.permissions import Actor
from floatledger.app.services.notification_service import NotificationDispatcher
import floatledger.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed "now" for every test: a Tuesday afternoon, naive UTC.
NOW = datetime(2026, 3, 10, 14, 0, 0)


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# --- Collaborator doubles ---

class MockLock:
    def __init__(self, redis, name):
        self.redis = redis
        self.name = name

    async def acquire(self):
        if self.name in self.redis.held:
            return False
        self.redis.held.add(self.name)
        self.redis.acquired.append(self.name)
        return True

    async def release(self):
        self.redis.held.discard(self.name)


class MockRedis:
    """In-memory stand-in for the lock primitives used by AccountLockManager."""

    def __init__(self):
        self.held = set()
        self.acquired = []

    def lock(self, name, timeout=None, blocking_timeout=None):
        return MockLock(self, name)

    async def ping(self):
        return True

    async def flushdb(self):
        self.held = set()
        self.acquired = []


class FrozenClock:
    """Injected clock; tests move time explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, request):
        if self.fail:
            raise RuntimeError("notification backend unavailable")
        self.sent.append(request)


# --- Fixtures ---

@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier):
    return NotificationDispatcher(notifier)


@pytest.fixture
def lock_manager(redis_client_session):
    return AccountLockManager(redis_client_session, timeout=5, wait=0.1)


@pytest.fixture(autouse=True)
def apply_overrides(redis_client_session, clock, dispatcher):
    """Route the app's collaborators to the test doubles for each test."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    """Minimum bcrypt cost keeps user fixtures quick."""
    monkeypatch.setattr(settings, "access_code_bcrypt_rounds", 4)


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    return TestingSessionLocal


_phones = itertools.count(770000001)


@pytest.fixture
def make_user(db_session):
    """Factory creating committed users: ``await make_user(UserRole.SUPERVISOR, "Awa")``."""
    async def _make_user(role: UserRole, name: str, status: UserStatus = UserStatus.ACTIVE,
                         access_code: str = "1234") -> User:
        user = User(
            display_name=name,
            phone=f"+221{next(_phones)}",
            access_code_hash=get_password_hash(access_code),
            role=role,
            status=status,
        )
        db_session.add(user)
        await db_session.commit()
        return user
    return _make_user


@pytest.fixture
async def admin(make_user):
    return await make_user(UserRole.ADMIN, "Root Admin")


@pytest.fixture
async def supervisor(make_user):
    return await make_user(UserRole.SUPERVISOR, "Awa Ndiaye")


@pytest.fixture
def as_actor():
    def _as_actor(user: User) -> Actor:
        return Actor(id=user.id, role=user.role)
    return _as_actor


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict:
        token = issue_access_token(user)
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers
