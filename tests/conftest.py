import os
import sys
import datetime as dt

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

ROOT_DIR = os.path.dirname(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from main import app, get_now, get_session  # noqa: E402
from models import User  # noqa: E402


# Thursday afternoon; every timeframe window in the API tests hangs off this.
FIXED_NOW = dt.datetime(2024, 6, 13, 15, 30)

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
DBSession = Session


@pytest.fixture(scope="function")
def client():
    """Return a TestClient wired to a fresh in-memory database for each test."""
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)

    def override_get_session():
        with DBSession(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_now] = lambda: FIXED_NOW

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    """A session on a fresh in-memory database, for service-level tests."""
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    with DBSession(test_engine) as session:
        yield session


@pytest.fixture
def make_user(db_session):
    """Insert a bare user row (no profile) and return its id."""
    def _make_user(email: str = "owner@example.com") -> int:
        user = User(email=email, hashed_password="not-a-real-hash")
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user.id

    return _make_user


@pytest.fixture
def auth_helpers(client):
    """
    Common auth utilities shared across test modules.
    Provides register/login helpers and a token helper.
    """

    def register_user(email: str, password: str, name: str = "Test User"):
        return client.post(
            "/auth/register",
            json={"email": email, "password": password, "name": name},
        )

    def login_user(email: str, password: str):
        return client.post("/auth/login", json={"email": email, "password": password})

    def get_token(email: str, password: str) -> str:
        res_reg = register_user(email, password)
        assert res_reg.status_code in (200, 201, 400)
        res_login = login_user(email, password)
        assert res_login.status_code == 200
        data = res_login.json()
        assert "access_token" in data
        return data["access_token"]

    def auth_headers(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def session_factory() -> Session:
        """A session on the same in-memory database the client uses."""
        return DBSession(test_engine)

    return {
        "register_user": register_user,
        "login_user": login_user,
        "get_token": get_token,
        "auth_headers": auth_headers,
        "session_factory": session_factory,
    }


@pytest.fixture
def headers(auth_helpers):
    """Authorization headers for a freshly registered user."""
    token = auth_helpers["get_token"]("alice@example.com", "SuperSecret123!")
    return auth_helpers["auth_headers"](token)


@pytest.fixture
def create_category(client, headers):
    """Create a category through the API and return its id."""
    def _create(name: str = "Food", monthly_budget: float = 100.0, **extra) -> int:
        res = client.post(
            "/api/categories",
            json={"name": name, "monthly_budget": monthly_budget, **extra},
            headers=headers,
        )
        assert res.status_code == 201, res.text
        return res.json()["id"]

    return _create


@pytest.fixture
def create_expense(client, headers):
    """Create an expense through the API and return the response body."""
    def _create(category_id: int, amount: float, date: str = "2024-06-10T12:00:00", description: str = "x"):
        res = client.post(
            "/api/expenses",
            json={
                "amount": amount,
                "category_id": category_id,
                "date": date,
                "description": description,
            },
            headers=headers,
        )
        assert res.status_code == 201, res.text
        return res.json()

    return _create
