import os

# main builds a default app at import time; keep it off the filesystem
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from budget_engine import BudgetEvaluator
from config import Settings
from database import (
    Base,
    Budget,
    Category,
    Transaction,
    User,
    build_engine,
    build_session_factory,
)
from main import create_app
from notifications import NotificationEmitter
from store import LedgerStore

TEST_SECRET = "test-secret-key-for-finance-tracker-0123456789"


@pytest.fixture
def session():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    db = build_session_factory(engine)()
    yield db
    db.close()
    engine.dispose()


@pytest.fixture
def store(session):
    return LedgerStore(session)


@pytest.fixture
def user(store):
    return store.add(User(name="Ana", email="ana@example.com", password_hash="x"))


@pytest.fixture
def other_user(store):
    return store.add(User(name="Budi", email="budi@example.com", password_hash="x"))


@pytest.fixture
def groceries(store, user):
    return store.add(Category(user_id=user.id, name="Groceries", type="expense"))


@pytest.fixture
def evaluator(store):
    return BudgetEvaluator(store, NotificationEmitter(store))


@pytest.fixture
def make_budget(store):
    def _make(user, category, limit, start=date(2024, 5, 1), end=date(2024, 5, 31)):
        return store.add(
            Budget(
                user_id=user.id,
                category_id=category.id,
                limit_amount=Decimal(str(limit)),
                start_date=start,
                end_date=end,
            )
        )

    return _make


@pytest.fixture
def make_transaction(store):
    def _make(user, category, amount, when=datetime(2024, 5, 10, 12, 0), note="spend"):
        return store.add(
            Transaction(
                user_id=user.id,
                category_id=category.id,
                amount=Decimal(str(amount)),
                date=when,
                note=note,
            )
        )

    return _make


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", secret_key=TEST_SECRET)


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def register(client):
    def _register(email="ana@example.com", name="Ana", password="secret123"):
        response = client.post(
            "/auth/register", json={"name": name, "email": email, "password": password}
        )
        assert response.status_code == 201, response.text
        response = client.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _register


@pytest.fixture
def auth_headers(register):
    return register()


@pytest.fixture
def category_id(client, auth_headers):
    response = client.post(
        "/categories", json={"name": "Groceries", "type": "expense"}, headers=auth_headers
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]
