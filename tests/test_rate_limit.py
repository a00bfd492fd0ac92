"""Tests for rate limiting middleware."""

import json
from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeBackend, make_batch
from fastapi import Request
from fastapi.testclient import TestClient

from app.config import get_settings
from app.db.storage import InMemoryStore
from app.main import app
from app.middleware.rate_limit import (
    DEFAULT_RETRY_AFTER,
    RATE_LIMITS,
    get_client_ip,
    get_limiter,
    rate_limit_exceeded_handler,
)


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Reset the rate limiter before each test."""
    get_limiter().reset()


@pytest.fixture
def client():
    app.state.store = InMemoryStore()
    yield TestClient(app)
    app.state.store = None


def make_request(remote: str, headers=None) -> MagicMock:
    request = MagicMock(spec=Request)
    request.headers = headers or {}
    request.client.host = remote
    return request


# Client IP Detection Tests


def test_client_ip_direct() -> None:
    with patch("app.middleware.rate_limit.get_remote_address", return_value="192.168.1.100"):
        assert get_client_ip(make_request("192.168.1.100")) == "192.168.1.100"


def test_forwarded_for_ignored_without_trusted_proxies() -> None:
    request = make_request("192.168.1.100", {"X-Forwarded-For": "10.0.0.1"})

    with patch("app.middleware.rate_limit.get_remote_address", return_value="192.168.1.100"):
        assert get_client_ip(request) == "192.168.1.100"


def test_forwarded_for_from_trusted_proxy(monkeypatch) -> None:
    monkeypatch.setenv("TRUSTED_PROXIES", "172.16.0.1, 172.16.0.2")
    get_settings.cache_clear()
    request = make_request("172.16.0.2", {"X-Forwarded-For": "10.0.0.1, 172.16.0.1"})

    with patch("app.middleware.rate_limit.get_remote_address", return_value="172.16.0.2"):
        assert get_client_ip(request) == "10.0.0.1"


def test_forwarded_for_from_untrusted_host(monkeypatch) -> None:
    monkeypatch.setenv("TRUSTED_PROXIES", "172.16.0.1")
    get_settings.cache_clear()
    request = make_request("8.8.8.8", {"X-Forwarded-For": "10.0.0.1"})

    with patch("app.middleware.rate_limit.get_remote_address", return_value="8.8.8.8"):
        assert get_client_ip(request) == "8.8.8.8"


# Handler Tests


def test_handler_response_body_and_headers() -> None:
    exc = MagicMock()
    exc.retry_after = 30
    exc.detail = "10 per 1 minute"

    response = rate_limit_exceeded_handler(MagicMock(spec=Request), exc)

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "30"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert response.headers["X-RateLimit-Limit"] == "10 per 1 minute"
    body = json.loads(response.body)
    assert body["retry_after"] == 30
    assert "30 segundos" in body["message"]


def test_handler_default_retry_after() -> None:
    exc = MagicMock(spec=[])

    response = rate_limit_exceeded_handler(MagicMock(spec=Request), exc)

    assert response.headers["Retry-After"] == str(DEFAULT_RETRY_AFTER)
    assert "X-RateLimit-Limit" not in response.headers


def test_limits_configured() -> None:
    assert RATE_LIMITS["generate"] == "10/minute"
    assert RATE_LIMITS["upload"] == "30/minute"
    assert RATE_LIMITS["reads"] == "100/minute"


# Endpoint Integration


def test_reads_limited_after_quota(client: TestClient) -> None:
    for _ in range(100):
        assert client.get("/api/activities").status_code == 200

    response = client.get("/api/activities")

    assert response.status_code == 429
    assert "Retry-After" in response.headers
    assert response.json()["detail"] == "Rate limit exceeded"


def test_generate_limited_after_quota(client: TestClient) -> None:
    app.state.model_backend = FakeBackend(make_batch("A"))
    form = {"subject": "Arte", "topic": "Cores", "grade": "7º Ano",
            "pillar": "Abstração", "level": "Fácil"}

    try:
        for _ in range(10):
            assert client.post("/api/activities/generate", data=form).status_code == 201
        assert client.post("/api/activities/generate", data=form).status_code == 429
    finally:
        app.state.model_backend = None
