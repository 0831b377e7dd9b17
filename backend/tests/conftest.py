"""
Shared fixtures: in-memory SQLite database, sessions and test users.

Environment variables are set before any application module is imported so
the cached settings and the module-level engine pick them up.
"""

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-reconciliation-suite-0001")
os.environ["SEED_DEFAULT_CATEGORIES"] = "false"
os.environ["SENTRY_DSN"] = ""

import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database import Base
from services.auth import AuthUser, UserRole


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def owner():
    return AuthUser(id=str(uuid.uuid4()), email="owner@example.com", role=UserRole.user.value)


@pytest.fixture
def other_user():
    return AuthUser(id=str(uuid.uuid4()), email="other@example.com", role=UserRole.user.value)


@pytest.fixture
def admin_user():
    return AuthUser(id=str(uuid.uuid4()), email="admin@example.com", role=UserRole.admin.value)
