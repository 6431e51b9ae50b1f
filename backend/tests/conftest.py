import hashlib
import hmac
import os
import secrets
import tempfile
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Configure the environment BEFORE any app import (settings are read once).
os.environ.setdefault("HSA_APP_ENV", "dev")
os.environ.setdefault("HSA_TRUSTED_HOSTS", "localhost,testserver")

# Default to a throwaway SQLite file; point HSA_DATABASE_URL at PostgreSQL to run against it.
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="hsa-tests-"))
os.environ.setdefault("HSA_DATABASE_URL", f"sqlite:///{_TEST_DB_DIR / 'ledger.db'}")

WEBHOOK_SECRET = "whsec_test_secret"
os.environ.setdefault("HSA_STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
os.environ.setdefault("HSA_STRIPE_SECRET_KEY", "sk_test_dummy")
for _credits in (1000, 5050, 11000, 23000, 62500, 140000):
    os.environ.setdefault(f"HSA_STRIPE_PRICE_ID_{_credits}", f"price_{_credits}")

TEST_PASSWORD = "testpassword123"


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create all tables once for the test session."""
    from backend.app.core.database import Database

    db = Database()
    db.create_all()
    yield
    db.dispose()


@pytest.fixture
def db():
    from backend.app.core.database import Database

    database = Database()
    yield database
    database.dispose()


@pytest.fixture
def user_store(db):
    from backend.app.core.auth import UserStore

    return UserStore(db=db)


@pytest.fixture
def credit_service(db):
    from backend.app.services.credits import CreditService

    return CreditService(db)


@pytest.fixture
def make_user(user_store):
    """Factory registering a fresh local user with the starting grant."""

    def _make(email: str | None = None):
        resolved = email or f"user_{secrets.token_hex(6)}@example.com"
        return user_store.register_local_user(resolved, TEST_PASSWORD, "Test User")

    return _make


@pytest.fixture
def sign_payload():
    """Build a ``Stripe-Signature`` header the way Stripe signs deliveries."""

    def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
        ts = int(time.time()) if timestamp is None else timestamp
        signature = hmac.new(
            secret.encode("utf-8"),
            f"{ts}.{payload}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"t={ts},v1={signature}"

    return _sign


@pytest.fixture
def client() -> TestClient:
    from backend.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def user_auth_headers(client: TestClient) -> dict[str, str]:
    # Use unique email per test to avoid conflicts
    email = f"test_{secrets.token_hex(4)}@example.com"

    client.post("/auth/register", json={"email": email, "password": TEST_PASSWORD, "name": "Test User"})
    token = client.post(
        "/auth/token",
        data={"username": email, "password": TEST_PASSWORD},
    ).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
