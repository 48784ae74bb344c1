"""
Shared test configuration.

Tests never need a real PostgreSQL server: the app is built around a
FakePool (tests/support.py) that understands the SQL the API emits.
"""

from __future__ import annotations

import os
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

# Must be set before anything imports src.surveyors_api.main.
os.environ.setdefault("JWT_SECRET", "test-secret-not-real")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("APP_ENV", "test")

from src.surveyors_api.config import Settings  # noqa: E402
from src.surveyors_api.db import Database  # noqa: E402
from src.surveyors_api.main import create_app  # noqa: E402
from src.surveyors_api.profiles import ProfileService  # noqa: E402
from tests.support import FakePool, FakeStore, VALID_PASSWORD, registration_payload  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    # Cheapest bcrypt cost keeps the suite fast.
    return Settings(
        _env_file=None, jwt_secret="test-secret-not-real", bcrypt_rounds=4, environment="test", log_level="WARNING"
    )


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def ref_ids(store: FakeStore) -> Dict[str, int]:
    return store.seed_reference_data()


@pytest.fixture
def pool(store: FakeStore) -> FakePool:
    return FakePool(store)


@pytest.fixture
def database(pool: FakePool) -> Database:
    return Database(pool)


@pytest.fixture
def profiles(database: Database, settings: Settings) -> ProfileService:
    return ProfileService(database, settings)


@pytest.fixture
def client(settings: Settings, database: Database, ref_ids: Dict[str, int]) -> TestClient:
    app = create_app(settings=settings, database=database)
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def registered(client: TestClient) -> Dict[str, Any]:
    """A registered, logged-in surveyor: id, email, token and auth headers."""
    response = client.post("/api/registration/register-user", json=registration_payload())
    assert response.status_code == 201, response.text
    user_id = response.json()["user"]["id"]

    login = client.post("/api/auth/login", json={"email": "jane@example.com", "password": VALID_PASSWORD})
    assert login.status_code == 200, login.text
    token = login.json()["token"]
    return {
        "id": user_id,
        "email": "jane@example.com",
        "token": token,
        "headers": {"Authorization": f"Bearer {token}"},
    }
