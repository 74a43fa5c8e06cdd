import os
from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

# Must be set before the app (and its engine) is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.database.base import Base
from src.core.database import get_db
from src.main import app
from src.modules.fees.models import FeeItem
from src.modules.students.models import Student
from src.modules.terms.models import Term, TermStatus

# Test database URL (in-memory SQLite for speed, or use test PostgreSQL)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

STAFF_ID = 7
STAFF_HEADERS = {"X-User-Id": str(STAFF_ID)}

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)


# pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
@event.listens_for(test_engine.sync_engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(test_engine.sync_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


test_async_session = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    async with test_async_session() as session:
        yield session


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def staff_headers() -> dict[str, str]:
    return dict(STAFF_HEADERS)


@pytest.fixture
async def school(db_session: AsyncSession) -> dict:
    """Two students, an active term and the Tuition/Books fee items."""
    term = Term(
        year=2024,
        term_number=1,
        display_name="2024-T1",
        status=TermStatus.ACTIVE.value,
        start_date=date(2024, 9, 1),
        end_date=date(2024, 12, 15),
    )
    ada = Student(admission_number="ADM-001", full_name="Ada Obi", class_name="JSS1")
    tunde = Student(admission_number="ADM-002", full_name="Tunde Bello", class_name="JSS1")
    tuition = FeeItem(name="Tuition", amount=Decimal("50000.00"), priority=1, installments=[])
    books = FeeItem(name="Books", amount=Decimal("10000.00"), priority=2, installments=[])
    db_session.add_all([term, ada, tunde, tuition, books])
    await db_session.commit()
    return {
        "term": term,
        "students": [ada, tunde],
        "fee_items": [tuition, books],
    }
