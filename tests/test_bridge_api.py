"""Tests for the relay HTTP surface."""

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.relay_service import RelayService, get_relay_service
from conftest import FakeCRM, make_crm_client

client = TestClient(app)

ENDPOINT = "/api/bridge-webhook"
BODY = {
    "telegram_id": 123,
    "start_param": "camp1",
    "user_data": {
        "id": 123,
        "first_name": "Ivan",
        "last_name": "Petrov",
        "username": "ivanp",
        "language_code": "ru",
        "is_premium": False,
    },
    "init_data": "query_id=AAE&hash=x",
    "timestamp": "2026-01-15T10:00:00.000Z",
    "platform": "ios",
    "version": "7.10",
}


@pytest.fixture
def use_crm():
    """Routes the endpoint's relay to a FakeCRM; returns a setter."""
    def _use(fake: FakeCRM) -> FakeCRM:
        service = RelayService(make_crm_client(fake))
        app.dependency_overrides[get_relay_service] = lambda: service
        return fake

    yield _use
    app.dependency_overrides.clear()


def test_relay_success(use_crm):
    fake = use_crm(FakeCRM())

    response = client.post(ENDPOINT, json=BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["contact_id"] == 555
    assert data["contact_created"] is True
    assert data["variables_sent"] is True
    assert data["details"]["start_param"] == "camp1"
    assert len(fake.requests) == 2


def test_missing_telegram_id_rejected_before_crm(use_crm):
    fake = use_crm(FakeCRM())
    body = {k: v for k, v in BODY.items() if k != "telegram_id"}

    response = client.post(ENDPOINT, json=body)

    assert response.status_code == 400
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "telegram_id is required"
    assert data["code"] == "VALIDATION_ERROR"
    assert fake.requests == []


def test_malformed_json_is_400(use_crm):
    fake = use_crm(FakeCRM())

    response = client.post(
        ENDPOINT,
        content="{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert fake.requests == []


def test_unknown_contact_is_404(use_crm):
    use_crm(FakeCRM(contact=[(404, {})], webhook=[(404, {})]))

    response = client.post(ENDPOINT, json=BODY)

    assert response.status_code == 404
    data = response.json()
    assert data["success"] is False
    assert data["code"] == "NOT_FOUND"


def test_crm_unreachable_is_502(use_crm):
    request = httpx.Request("POST", "https://app.leadteh.test")
    use_crm(FakeCRM(error=httpx.ConnectError("refused", request=request)))

    response = client.post(ENDPOINT, json=BODY)

    assert response.status_code == 502
    assert response.json()["code"] == "EXTERNAL_SERVICE_ERROR"


def test_unexpected_error_is_generic_500():
    broken = RelayService(make_crm_client(FakeCRM()))
    broken.relay = AsyncMock(side_effect=RuntimeError("kaboom"))
    app.dependency_overrides[get_relay_service] = lambda: broken
    try:
        response = TestClient(app, raise_server_exceptions=False).post(ENDPOINT, json=BODY)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Internal server error"
    assert data["code"] == "INTERNAL_ERROR"


def test_plain_options_returns_cors_headers():
    response = client.options(ENDPOINT)

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "POST" in response.headers["access-control-allow-methods"]


def test_cors_preflight():
    response = client.options(
        ENDPOINT,
        headers={
            "Origin": "https://miniapp.example",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_other_methods_not_allowed():
    response = client.put(ENDPOINT, json=BODY)

    assert response.status_code == 405
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Method not allowed"


def test_endpoint_status_ping():
    response = client.get(ENDPOINT)

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_health_and_probes():
    health = client.get("/health").json()
    assert health["status"] in ("healthy", "degraded")
    assert "crm_webhook" in health["checks"]

    assert client.get("/live").json() == {"status": "alive"}
    assert client.get("/ready").status_code == 200
