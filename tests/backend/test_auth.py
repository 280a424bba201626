from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from backend.fieldops.main import create_app


def _token(secret: str, subject: str, roles: list[str], *, hours: int = 1) -> str:
    payload = {
        "sub": subject,
        "roles": roles,
        "exp": datetime.now(timezone.utc) + timedelta(hours=hours),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture()
def secured_client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "true")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    return TestClient(create_app())


def test_auth_blocks_missing_token_when_enabled(secured_client) -> None:
    response = secured_client.post("/leads", json={"name": "Auth Test"})
    assert response.status_code == 401


def test_auth_rejects_expired_token(secured_client) -> None:
    token = _token("test-secret", "manager-1", ["manager"], hours=-1)
    response = secured_client.get("/leads", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "auth token expired"


def test_auth_allows_manager_token(secured_client) -> None:
    token = _token("test-secret", "manager-1", ["manager"])
    response = secured_client.post(
        "/quotes",
        headers={"Authorization": f"Bearer {token}"},
        json={"title": "Furnace service"},
    )
    assert response.status_code == 200


def test_technician_can_read_but_not_write(secured_client) -> None:
    token = _token("test-secret", "tech-1", ["technician"])
    headers = {"Authorization": f"Bearer {token}"}

    assert secured_client.get("/work-orders", headers=headers).status_code == 200
    check = secured_client.post(
        "/contacts/duplicates/check",
        headers=headers,
        json={"first_name": "Ada", "last_name": "Byron"},
    )
    assert check.status_code == 200
    assert secured_client.post("/accounts", headers=headers, json={"name": "X"}).status_code == 403


def test_token_without_roles_is_forbidden(secured_client) -> None:
    token = _token("test-secret", "nobody", [])
    response = secured_client.get("/leads", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_health_is_public(secured_client) -> None:
    assert secured_client.get("/health").status_code == 200
