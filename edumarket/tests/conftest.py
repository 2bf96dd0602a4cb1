"""
Centralized Test Configuration.
"""

import pytest
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from edumarket.app.main import app
from edumarket.app.db.session import get_db, Base
from edumarket.app.core.jwt import create_access_token
from edumarket.app.core.reliability import gateway_circuit_breaker
from edumarket.app.core.redis_client import get_redis
from edumarket.app.integrations.esewa import VerificationResult, get_payment_verifier
from edumarket.app.models.course import Course
from edumarket.app.models.enums import UserRole
from edumarket.app.models.ledger_enums import MeetingStatus, SessionPaymentStatus
from edumarket.app.models.meeting import Meeting
from edumarket.app.models.user import User
import edumarket.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

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


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        return not self._closed

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

    async def eval(self, script, numkeys, *keys_and_args):
        # Only the compare-and-delete release script is used
        if self._closed:
            return 0
        key, token = keys_and_args[0], keys_and_args[1]
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FakeVerifier:
    """Stands in for the eSewa client. Set `result` or `error` per test."""

    def __init__(self):
        self.result = VerificationResult(success=True, raw_response="<response_code>Success</response_code>")
        self.error = None
        self.calls = []

    async def verify(self, transaction_id, amount, external_ref):
        self.calls.append((transaction_id, amount, external_ref))
        if self.error is not None:
            raise self.error
        return self.result


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """
    # Patch the global redis client used by the settlement lock
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()
    gateway_circuit_breaker.reset_state()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def verifier():
    fake = FakeVerifier()
    app.dependency_overrides[get_payment_verifier] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_payment_verifier, None)


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


# --- Data helpers ---
# Fixtures hand out plain ids: services may roll the session back, which
# expires ORM instances.

async def make_user(db: AsyncSession, role: UserRole, username: str) -> int:
    user = User(email=f"{username}@edumarket.test", username=username, full_name=username.title(), role=role)
    db.add(user)
    await db.commit()
    return user.id


async def make_meeting(
    db: AsyncSession,
    student_id: int,
    teacher_id: int,
    price: Decimal = Decimal("1000.00"),
    status: MeetingStatus = MeetingStatus.COMPLETED,
    payment_status: SessionPaymentStatus = SessionPaymentStatus.PENDING
) -> int:
    meeting = Meeting(
        student_id=student_id,
        teacher_id=teacher_id,
        subject="Algebra revision",
        status=status,
        price=price,
        payment_status=payment_status,
    )
    db.add(meeting)
    await db.commit()
    return meeting.id


async def make_course(db: AsyncSession, teacher_id: int, price: Decimal = Decimal("500.00")) -> int:
    course = Course(title="Intro to Physics", price=price, uploaded_by_id=teacher_id)
    db.add(course)
    await db.commit()
    return course.id


def auth_headers(user_id: int, role: UserRole) -> dict:
    token = create_access_token({"sub": f"user-{user_id}", "user_id": user_id, "role": role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin_id(db_session):
    return await make_user(db_session, UserRole.ADMIN, "admin")


@pytest.fixture
async def teacher_id(db_session):
    return await make_user(db_session, UserRole.TEACHER, "teacher")


@pytest.fixture
async def student_id(db_session):
    return await make_user(db_session, UserRole.STUDENT, "student")


@pytest.fixture
def admin_headers(admin_id):
    return auth_headers(admin_id, UserRole.ADMIN)


@pytest.fixture
def teacher_headers(teacher_id):
    return auth_headers(teacher_id, UserRole.TEACHER)


@pytest.fixture
def student_headers(student_id):
    return auth_headers(student_id, UserRole.STUDENT)
