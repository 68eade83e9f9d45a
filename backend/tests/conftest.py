from __future__ import annotations

import os
import tempfile
from unittest.mock import AsyncMock, MagicMock

# Set test environment BEFORE importing app modules.
# app.db creates the engine at module level using get_settings().db_url,
# so we must override the env vars before any app imports.
_test_tmp = tempfile.mkdtemp(prefix="mirror-test-")
os.environ.setdefault("DATA_DIR", os.path.join(_test_tmp, "data"))
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-for-integration-tests-only")
# Nothing listens on port 9: LLM health probes fail fast
os.environ.setdefault("OLLAMA_URL", "http://127.0.0.1:9")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from app import session_state
from app.client import MirrorClient
from app.db import get_engine
from app.dependencies import AuthSession, get_reflection_generator, require_auth
from app.main import app as fastapi_app
from app.models.auth import User
from app.services.llm import LLMResponse, LLMService
from app.services.reflection import LLMReflectionGenerator
from app.utils.crypto import hash_password

TEST_SESSION_ID = "test-session-id"
TEST_PASSWORD = "correct horse battery"


# ── Database fixtures ─────────────────────────────────────────────────


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine shared by every connection (StaticPool).

    Tables are recreated per test for full isolation.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="user")
def user_fixture(session) -> User:
    user = User(
        email="artist@example.com",
        password_hash=hash_password(TEST_PASSWORD),
        display_name="Artist",
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture(name="other_user")
def other_user_fixture(session) -> User:
    user = User(email="poet@example.com", password_hash=hash_password(TEST_PASSWORD))
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture(autouse=True)
def _clean_session_state():
    yield
    session_state.wipe_all()
    session_state._timeout_minutes = None


# ── Mock AI fixtures ──────────────────────────────────────────────────


@pytest.fixture(name="mock_generator")
def mock_generator_fixture() -> MagicMock:
    """Reflection generator that answers instantly with a fixed reflection."""
    mock = MagicMock(spec=LLMReflectionGenerator)
    mock.generate = AsyncMock(return_value="The colors you chose feel like a quiet celebration.")
    return mock


@pytest.fixture(name="mock_llm_service")
def mock_llm_service_fixture() -> MagicMock:
    mock = MagicMock(spec=LLMService)
    mock.model = "test-model"
    mock.has_fallback = False
    mock.generate = AsyncMock(
        return_value=LLMResponse(
            text="  Mock reflection.  ",
            model="test-model",
            total_duration_ms=100,
            backend="ollama",
        )
    )
    return mock


# ── HTTP client fixtures ──────────────────────────────────────────────


@pytest.fixture(name="client")
def client_fixture(engine, user, mock_generator):
    """TestClient authenticated as ``user`` with the test DB and mock generator."""

    def _require_auth_override() -> AuthSession:
        return AuthSession(session_id=TEST_SESSION_ID, user_id=user.id)

    fastapi_app.dependency_overrides[get_engine] = lambda: engine
    fastapi_app.dependency_overrides[require_auth] = _require_auth_override
    fastapi_app.dependency_overrides[get_reflection_generator] = lambda: mock_generator
    with TestClient(fastapi_app) as tc:
        session_state.open_session(TEST_SESSION_ID, user.id)
        yield tc
    fastapi_app.dependency_overrides.clear()


@pytest.fixture(name="client_no_auth")
def client_no_auth_fixture(engine, mock_generator):
    """TestClient with DB and generator overrides but real auth."""
    fastapi_app.dependency_overrides[get_engine] = lambda: engine
    fastapi_app.dependency_overrides[get_reflection_generator] = lambda: mock_generator
    with TestClient(fastapi_app) as tc:
        yield tc
    fastapi_app.dependency_overrides.clear()


@pytest.fixture(name="mirror_client")
def mirror_client_fixture(engine, mock_generator):
    """MirrorClient talking to the app in-process, with real auth."""
    fastapi_app.dependency_overrides[get_engine] = lambda: engine
    fastapi_app.dependency_overrides[get_reflection_generator] = lambda: mock_generator
    yield MirrorClient(
        base_url="http://testserver", transport=httpx.ASGITransport(app=fastapi_app)
    )
    fastapi_app.dependency_overrides.clear()
