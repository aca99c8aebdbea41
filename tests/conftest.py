import os
import sqlite3
import tempfile

import pytest

# the app reads its configuration at import time
_TMP = tempfile.mkdtemp(prefix="esummit-tests-")
DB_PATH = os.path.join(_TMP, "test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{DB_PATH}"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["AUTH_BACKEND"] = "mock"
os.environ["RESEND_API_KEY"] = "re_test"
os.environ["GOOGLE_SERVICE_ACCOUNT_CREDENTIALS"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

from fastapi.testclient import TestClient  # noqa: E402

from esummit.identity import mint_code  # noqa: E402
from esummit.server import app  # noqa: E402

# children first
TABLES = (
    "admin_access_logs", "admin_passwords", "event_logs", "tickets",
    "booking_groups", "merch_orders", "accommodation_requests", "profiles",
)


def _sql(statement, params=()):
    conn = sqlite3.connect(DB_PATH)
    try:
        cur = conn.execute(statement, params)
        conn.commit()
        return cur.fetchall()
    finally:
        conn.close()


@pytest.fixture(scope="session")
def _app_client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def client(_app_client):
    for table in TABLES:
        _sql(f"DELETE FROM {table}")
    app.state.cache.clear()
    _app_client.cookies.clear()
    yield _app_client
    _app_client.cookies.clear()


def sql(statement, params=()):
    return _sql(statement, params)


def login(client, email, name=None, next_path=None):
    """Sign in through the callback the identity provider redirects to."""
    client.cookies.clear()
    params = {"code": mint_code(email, name)}
    if next_path:
        params["next"] = next_path
    return client.get("/auth/callback", params=params, follow_redirects=False)


def set_role(email, role):
    sql("UPDATE profiles SET role = ? WHERE email = ?", (role, email.lower()))
    app.state.cache.clear()


def onboard(client, name="Test User", phone="9876543210", college="IIITDM"):
    r = client.post("/api/profile/onboarding", json={
        "fullName": name, "phone": phone, "collegeName": college,
    })
    assert r.status_code == 200, r.text
    return r.json()["profile"]


def signup(client, email, name="Test User", role=None, phone="9876543210"):
    """Log in, finish onboarding and optionally change the role."""
    login(client, email, name)
    profile = onboard(client, name=name, phone=phone)
    if role:
        set_role(email, role)
    return profile


def book_solo(client, utr="UTR123456"):
    r = client.post("/api/tickets/book", json={"passType": "solo", "utr": utr})
    assert r.status_code == 200, r.text
    return r.json()["tickets"][0]
