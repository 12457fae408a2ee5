"""
Fixtures for HTTP-level tests.

The database dependency is replaced by an AsyncMock session and the shared
rate limiter is reset before every test.
"""

import pytest
from fastapi.testclient import TestClient

from app.core.database import get_db
from app.core.middleware import limiter
from app.main import app
from app.modules.auth.dependencies import get_current_admin


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def reset_limiter():
    limiter.reset()
    yield


@pytest.fixture
def db_session(mock_session):
    async def _override_get_db():
        yield mock_session

    app.dependency_overrides[get_db] = _override_get_db
    yield mock_session
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def login_as():
    """Bypass bearer auth and act as the given admin."""

    def _login_as(admin):
        app.dependency_overrides[get_current_admin] = lambda: admin
        return admin

    yield _login_as
    app.dependency_overrides.pop(get_current_admin, None)
