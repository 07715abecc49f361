"""Shared fixtures: test environment, app client, and stubs for Google and Gemini."""

import os
import tempfile

_tmpdir = tempfile.mkdtemp(prefix="tutor-tests-")
DB_PATH = os.path.join(_tmpdir, "test.db")

os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id.apps.googleusercontent.com"
os.environ["GOOGLE_GEMINI_API_KEY"] = "test-gemini-key"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{DB_PATH}"
os.environ["MAX_DAILY_REQUESTS"] = "3"
os.environ["ENVIRONMENT"] = "development"
os.environ["DISABLE_DEV_LOGIN"] = "false"
os.environ.pop("GOOGLE_CLIENT_SECRET", None)

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

import auth
import main
from database import AsyncSessionLocal, create_db_and_tables
from rate_limit import limiter
from services import ai_service

CLIENT_ID = os.environ["GOOGLE_CLIENT_ID"]


def google_claims(sub="google-sub-1", **overrides):
    claims = {
        "iss": "https://accounts.google.com",
        "aud": CLIENT_ID,
        "sub": sub,
        "email": f"{sub}@example.com",
        "email_verified": True,
        "name": "Test Student",
        "picture": "https://example.com/avatar.png",
    }
    claims.update(overrides)
    return claims


@pytest.fixture(autouse=True)
def fresh_state():
    """Each test starts with an empty database and an empty quota map."""
    if os.path.exists(DB_PATH):
        os.remove(DB_PATH)
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def client():
    with TestClient(main.app) as test_client:
        yield test_client


@pytest.fixture
def google_tokens(monkeypatch):
    """
    Registry of fake ID tokens. Map a token string to the claims Google
    would return for it; unknown tokens are rejected as malformed.
    """
    tokens = {}

    def fake_verify(token, request, audience=None, clock_skew_in_seconds=0):
        if token not in tokens:
            raise ValueError("Wrong number of segments in token")
        return dict(tokens[token])

    monkeypatch.setattr(auth.google_id_token, "verify_oauth2_token", fake_verify)
    return tokens


@pytest.fixture
def fake_ai(monkeypatch):
    mock = AsyncMock(return_value="Photosynthesis turns light into chemical energy.")
    monkeypatch.setattr(ai_service, "generate_tutor_reply", mock)
    return mock


@pytest.fixture
def logged_in(client, google_tokens):
    """Sign in a student and return the bearer headers for the session."""
    google_tokens["valid-token"] = google_claims()
    response = client.post("/api/auth/login", json={"id_token": "valid-token"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest_asyncio.fixture
async def db_session():
    await create_db_and_tables()
    async with AsyncSessionLocal() as session:
        yield session
