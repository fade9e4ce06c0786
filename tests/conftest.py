"""
Global pytest fixtures for the deletion service test suite.

Provides:
- Async database session backed by a temporary SQLite file
- Async FastAPI test client sharing the test database
- Admin JWT factory
- Seed helpers for projects, environments, admins and events
"""
import os
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

# Set test environment BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-jwt-secret-for-testing-at-least-32-bytes"
# No sleeping between destructive-action retries in tests
os.environ["DELETION_EXECUTION_RETRY_MIN_WAIT"] = "0"
os.environ["DELETION_EXECUTION_RETRY_MAX_WAIT"] = "0"


# ============================================================================
# Async Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def async_engine():
    """Create async SQLite engine for testing using a temporary file."""
    from sqlalchemy.ext.asyncio import create_async_engine

    db_file = f"test_{uuid4().hex}.sqlite"
    db_url = f"sqlite+aiosqlite:///{db_file}"

    # Writers from concurrent sessions wait on the file lock instead of failing.
    engine = create_async_engine(db_url, echo=False, connect_args={"timeout": 15})

    from app.shared.db.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()

    # Cleanup
    for suffix in ("", "-journal", "-wal", "-shm"):
        if os.path.exists(db_file + suffix):
            os.remove(db_file + suffix)


@pytest.fixture
def session_factory(async_engine):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator:
    """Provide an async session on the test database."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest_asyncio.fixture
async def db(db_session):
    """Alias for db_session."""
    return db_session


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================

@pytest.fixture
def app():
    from app.main import app as auditvault_app

    return auditvault_app


@pytest_asyncio.fixture
async def async_client(app, session_factory) -> AsyncGenerator:
    """Async test client. Each request gets its own session on the test DB."""
    from httpx import ASGITransport, AsyncClient

    from app.shared.db.session import get_db

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    old_override = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    if old_override:
        app.dependency_overrides[get_db] = old_override
    else:
        app.dependency_overrides.pop(get_db, None)


# ============================================================================
# Authentication Fixtures
# ============================================================================

@pytest.fixture
def admin_token_factory():
    from tests.utils import create_test_token

    return create_test_token


def make_actor(user_id: UUID, project_id: str, environment_id: str | None):
    from app.shared.core.auth import CurrentUser

    return CurrentUser(
        id=user_id,
        project_id=project_id,
        environment_id=environment_id,
        scopes=["admin"],
    )


@pytest.fixture
def actor_factory():
    return make_actor


# ============================================================================
# Test Data Factories
# ============================================================================

async def seed_environment(
    db,
    *,
    project_id: str = "proj-1",
    environment_id: str = "env-42",
    admin_ids: list[UUID] | None = None,
    event_count: int = 1,
) -> list[UUID]:
    """Insert a project/environment with admins and ingested events."""
    from sqlalchemy import select

    from app.models.environment import (
        Environment,
        EnvironmentUser,
        IngestedEvent,
        Project,
    )

    admins = list(admin_ids) if admin_ids is not None else [uuid4(), uuid4()]
    existing = (
        await db.execute(select(Project).where(Project.id == project_id))
    ).scalar_one_or_none()
    if existing is None:
        db.add(Project(id=project_id, name=f"Project {project_id}"))
    db.add(Environment(id=environment_id, project_id=project_id, name=environment_id))
    await db.flush()
    for admin_id in admins:
        db.add(EnvironmentUser(environment_id=environment_id, user_id=admin_id))
    for index in range(event_count):
        db.add(
            IngestedEvent(
                project_id=project_id,
                environment_id=environment_id,
                action=f"user.login.{index}",
            )
        )
    await db.commit()
    return admins


@pytest.fixture
def environment_seeder():
    return seed_environment


class RecordingNotifier:
    """Captures issued codes the way a mail transport would receive them."""

    def __init__(self, fail_for: set[UUID] | None = None):
        self.sent: dict[UUID, str] = {}
        self.fail_for = fail_for or set()

    async def notify_approver(self, approver_id: UUID, request_id: UUID, code: str) -> None:
        if approver_id in self.fail_for:
            raise RuntimeError("smtp unavailable")
        self.sent[approver_id] = code


@pytest.fixture
def recording_notifier():
    return RecordingNotifier()


@pytest.fixture
def notifier_factory():
    return RecordingNotifier
