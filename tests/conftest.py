import os
import sys
import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

ROOT_DIR = os.path.dirname(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# keep the app's own engine off the developer's database file
os.environ.setdefault("DATABASE_URL", "sqlite://")

from config import Settings, get_settings  # noqa: E402
from main import app, get_session  # noqa: E402


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
DBSession = Session

TEST_SETTINGS = Settings(
    database_url="sqlite://",
    secret_key="test-secret-key",
    access_token_expire_minutes=30,
    admin_email="admin@example.com",
    admin_password="AdminPass123!",
)


@pytest.fixture
def settings():
    return TEST_SETTINGS


@pytest.fixture(scope="function")
def client():
    """Return a TestClient wired to a fresh in-memory database for each test."""
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)

    def override_get_session():
        with DBSession(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_settings] = lambda: TEST_SETTINGS

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    """A session on the same in-memory database the client uses."""
    with DBSession(test_engine) as session:
        yield session


@pytest.fixture
def auth_helpers(client):
    """
    Common auth utilities shared across test modules.
    Provides register/login helpers and token helpers for users and the admin.
    """

    def register_user(email: str, password: str, name: str = "Test User", **extra):
        body = {"name": name, "email": email, "password": password, **extra}
        return client.post("/auth/register", json=body)

    def login_user(email: str, password: str):
        return client.post("/auth/login", json={"email": email, "password": password})

    def get_token(email: str, password: str = "Password123!", name: str = "Test User") -> str:
        res_reg = register_user(email, password, name=name)
        assert res_reg.status_code in (201, 400)
        res_login = login_user(email, password)
        assert res_login.status_code == 200
        data = res_login.json()["data"]
        assert data["token"]
        return data["token"]

    def admin_token() -> str:
        res = client.post(
            "/auth/admin-login",
            json={"email": TEST_SETTINGS.admin_email, "password": TEST_SETTINGS.admin_password},
        )
        assert res.status_code == 200
        return res.json()["data"]["token"]

    def auth_headers(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def user_id(token: str) -> int:
        res = client.get("/auth/me", headers=auth_headers(token))
        assert res.status_code == 200
        return res.json()["data"]["user"]["id"]

    return {
        "register_user": register_user,
        "login_user": login_user,
        "get_token": get_token,
        "admin_token": admin_token,
        "auth_headers": auth_headers,
        "user_id": user_id,
    }


@pytest.fixture
def create_expense(client, auth_helpers):
    """POST an expense for the given token; returns the created expense dict."""

    def _create(token: str, **fields):
        body = {"title": "Coffee", "amount": 4.5, "category": "Food & Dining"}
        body.update(fields)
        res = client.post("/expenses", json=body, headers=auth_helpers["auth_headers"](token))
        assert res.status_code == 201, res.text
        return res.json()["data"]["expense"]

    return _create
