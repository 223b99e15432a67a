"""
Pytest configuration and fixtures for the correlation API tests
"""
import os

# Settings are read at import time; keep tests local and quiet
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_correlator.db"
os.environ["ENABLE_OTEL_EXPORTER"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, async_sessionmaker

from app.main import app
from app.db.database import get_db, build_engine, Base
from app.db.models import Case, Evidence
from app.db.repository import InMemoryObservableRepository
from app.core.audit import AuditTrail
from app.core.correlation import CorrelationEngine
from app.utils.helpers import utc_now


@pytest.fixture(scope="function")
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """A fresh SQLite database file per test, foreign keys enforced"""
    import app.db.models  # noqa: F401

    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'correlator.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine: AsyncEngine):
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client with one database session per request, like get_db"""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def memory_repository() -> InMemoryObservableRepository:
    return InMemoryObservableRepository()


@pytest.fixture
def correlation_engine(memory_repository) -> CorrelationEngine:
    return CorrelationEngine(memory_repository, audit=AuditTrail(actor="tester"))


@pytest.fixture
def make_case(db_session: AsyncSession):
    """Insert a case row and return it"""

    async def _make_case(title: str) -> Case:
        case = Case(title=title, tags=[])
        db_session.add(case)
        await db_session.commit()
        return case

    return _make_case


@pytest.fixture
def make_evidence(db_session: AsyncSession):
    """Insert an evidence row for a case and return it"""

    async def _make_evidence(case: Case, title: str = "evidence", content: str = "") -> Evidence:
        now = utc_now()
        evidence = Evidence(
            title=title,
            content=content,
            tags=[],
            files=[],
            observation_ts=now,
            imported_at=now,
            case_id=case.id
        )
        db_session.add(evidence)
        await db_session.commit()
        return evidence

    return _make_evidence


@pytest.fixture
def api_case(client: AsyncClient):
    """Create a case through the API and return its JSON"""

    async def _api_case(title: str) -> dict:
        response = await client.post("/api/v1/cases/", json={"title": title})
        assert response.status_code == 201
        return response.json()

    return _api_case
