import os

import pytest

# Set test environment variables BEFORE importing the app
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-0123456789"
os.environ["BCRYPT_ROUNDS"] = "10"
os.environ["PUBLIC_ORIGIN"] = "https://app"
for var in ("DATABASE_URL", "SUPABASE_DB_URL", "REDIS_URL", "SCAN_LOG_WEBHOOK_URL", "SENTRY_DSN"):
    os.environ.pop(var, None)

from fastapi.testclient import TestClient

from qrtrack.client import ApiClient
from qrtrack.main import app as fastapi_app, configure_services
from qrtrack.ratelimit import LoginThrottle
from qrtrack.registry import MemoryQRStore
from qrtrack.scan_log import MemoryScanLog, MirroredScanLog
from qrtrack.users import MemoryUserStore

UUID = "550e8400-e29b-41d4-a716-446655440000"
EMAIL = "alice@qrtrack.io"
PASSWORD = "correct-horse-battery"


@pytest.fixture
def app():
    """The FastAPI app wired to fresh in-memory stores."""
    configure_services(
        fastapi_app,
        qr_store=MemoryQRStore(),
        user_store=MemoryUserStore(),
        scan_log=MirroredScanLog(MemoryScanLog()),
        throttle=LoginThrottle(None),
    )
    return fastapi_app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def token(client):
    response = client.post("/auth/register", json={"email": EMAIL, "password": PASSWORD})
    assert response.status_code == 201
    return response.json()["token"]


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api(client):
    """ApiClient talking to the in-process app."""
    return ApiClient("http://testserver", http=client)


@pytest.fixture
def logged_in_api(api, token):
    api.session.token = token
    return api
