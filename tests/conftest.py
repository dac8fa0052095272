"""Shared fixtures for impact service tests.

Every test gets its own SQLite file database, so tests that open several
sessions at once see real write locking.
"""

import os
from contextlib import contextmanager
from typing import AsyncGenerator, Optional

from dotenv import load_dotenv

# Test settings must be in place before libs.db.config builds its engine.
env_test_path = os.path.join(os.path.dirname(__file__), "..", ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=False)
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./.pytest-impact.db"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.base import Base
from libs.db.config import build_engine, build_session_factory
from libs.db.session import get_async_db
from services.impact_service import models as _impact_models  # noqa: F401

get_settings.cache_clear()
settings = get_settings()

DEFAULT_MEMBER_ID = "member-1"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def make_member_user(
    user_id: str = DEFAULT_MEMBER_ID, email: Optional[str] = "member@test.com"
) -> AuthUser:
    return AuthUser(user_id=user_id, email=email, role="authenticated")


def make_service_user(user_id: str = "service-1") -> AuthUser:
    return AuthUser(user_id=user_id, email=None, role="service_role")


@contextmanager
def override_auth(app, user: AuthUser):
    """Temporarily authenticate requests to ``app`` as ``user``."""
    previous = app.dependency_overrides.get(get_current_user)
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        yield user
    finally:
        if previous is None:
            app.dependency_overrides.pop(get_current_user, None)
        else:
            app.dependency_overrides[get_current_user] = previous


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'impact.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def impact_client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient on the impact app, authenticated as ``DEFAULT_MEMBER_ID``."""
    from services.impact_service.app.main import app

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_test_db
    app.dependency_overrides[get_current_user] = lambda: make_member_user()

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
