from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./elsewhere.db")
    monkeypatch.setenv("BUDGET_NOTIFY_POLICY", "On_Transition")
    monkeypatch.setenv("BUDGET_NEAR_LIMIT_RATIO", "0.75")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.database_url == "sqlite:///./elsewhere.db"
    assert settings.notify_policy == "on_transition"
    assert settings.near_limit_ratio == Decimal("0.75")
    assert settings.log_level == "DEBUG"


def test_settings_reject_unknown_policy():
    with pytest.raises(ValueError):
        Settings(notify_policy="sometimes")


def test_settings_reject_bad_ratio():
    with pytest.raises(ValueError):
        Settings(near_limit_ratio=Decimal("1.5"))


def test_app_applies_configured_policy_and_ratio(settings):
    settings.notify_policy = "on_transition"
    settings.near_limit_ratio = Decimal("0.5")

    with TestClient(create_app(settings)) as client:
        client.post(
            "/auth/register",
            json={"name": "Ana", "email": "ana@example.com", "password": "secret123"},
        )
        token = client.post(
            "/auth/login", json={"email": "ana@example.com", "password": "secret123"}
        ).json()["access_token"]
        headers = {"Authorization": f"Bearer {token}"}
        category_id = client.post(
            "/categories", json={"name": "Fun", "type": "expense"}, headers=headers
        ).json()["id"]
        client.post(
            "/budgets",
            json={
                "category_id": category_id,
                "limit_amount": 100,
                "start_date": "2024-05-01",
                "end_date": "2024-05-31",
            },
            headers=headers,
        )

        statuses = []
        for amount in (50, 60, 10):
            statuses.append(
                client.post(
                    "/transactions",
                    json={
                        "category_id": category_id,
                        "amount": amount,
                        "date": "2024-05-10T10:00:00",
                        "note": "fun",
                    },
                    headers=headers,
                ).json()["budget_status"]
            )

        assert statuses == ["Near Limit", "Over Budget", "Over Budget"]
        assert len(client.get("/notifications", headers=headers).json()) == 1
