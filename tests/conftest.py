"""
Pytest configuration and shared fixtures.

Test environment variables are set here, before any app import, so the
cached settings and the engine are built against the test database.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_smsync.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("AUTH_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from smsync.config import get_settings
get_settings.cache_clear()

from smsync.main import app
from smsync.storage import Base, engine


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


def register(client, username: str, password: str = "s3cret") -> dict:
    response = client.post("/auth/register", json={"username": username, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def auth_headers(client) -> dict:
    """Authorization headers for a freshly registered user."""
    return register(client, "alice")


@pytest.fixture
def other_headers(client) -> dict:
    """Authorization headers for a second, unrelated user."""
    return register(client, "bob")
