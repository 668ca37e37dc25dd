"""Integration tests for the HTTP auth flow.

Drives the FastAPI app through ``TestClient`` with the in-memory store:
register, login, get_me, refresh rotation, logout and health.
"""

import time

import pytest
from fastapi.testclient import TestClient

from elsie import app as app_module
from elsie.service.runtime import get_runtime


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _register(client, name="Alice", email="alice@example.com", password="Wonderland123!"):
    return client.post(
        "/v1/auth/register",
        json={"name": name, "email": email, "password": password},
    )


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestRegister:
    def test_register_creates_user(self, client):
        response = _register(client)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        data = body["data"]
        assert data["user"]["email"] == "alice@example.com"
        assert "password" not in data["user"]
        assert "password_hash" not in data["user"]
        claims = get_runtime().tokens.verify_access_token(data["access_token"])
        assert claims.user_id == data["user"]["id"]

    def test_duplicate_email_conflict(self, client):
        _register(client)
        response = _register(client, name="Other Alice")

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "conflict"
        assert error["details"] == {"field": "email"}

    def test_invalid_email_rejected(self, client):
        response = _register(client, email="invalid-email")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    def test_short_password_rejected(self, client):
        response = _register(client, password="short")

        assert response.status_code == 422


class TestLogin:
    def test_login_success(self, client):
        _register(client)
        response = client.post(
            "/v1/auth/login",
            json={"email": "Alice@Example.com", "password": "Wonderland123!"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["user"]["name"] == "Alice"

    def test_wrong_password_unauthorized(self, client):
        _register(client)
        response = client.post(
            "/v1/auth/login",
            json={"email": "alice@example.com", "password": "WrongPassword1!"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_unknown_email_not_found(self, client):
        response = client.post(
            "/v1/auth/login",
            json={"email": "nobody@example.com", "password": "Wonderland123!"},
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"


class TestProtectedRoutes:
    def test_me_requires_token(self, client):
        response = client.get("/v1/auth/me")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_me_rejects_garbage_token(self, client):
        response = client.get("/v1/auth/me", headers=_bearer("garbage"))

        assert response.status_code == 401

    def test_response_carries_request_id(self, client):
        response = client.get("/v1/auth/me", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["request_id"] == "req-123"


def test_alice_end_to_end(client):
    """Register, use the token, let it expire, refresh and log out."""
    registered = _register(client).json()["data"]
    access = registered["access_token"]
    refresh = registered["refresh_token"]

    me = client.get("/v1/auth/me", headers=_bearer(access))
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "alice@example.com"

    # 16 minutes later the access token is stale
    runtime = get_runtime()
    base = time.time()
    runtime.tokens.clock = lambda: base + 16 * 60

    stale = client.get("/v1/auth/me", headers=_bearer(access))
    assert stale.status_code == 401

    refreshed = client.post("/v1/auth/refresh", json={"refresh_token": refresh})
    assert refreshed.status_code == 200
    pair = refreshed.json()["data"]
    assert set(pair) == {"access_token", "refresh_token"}

    me_again = client.get("/v1/auth/me", headers=_bearer(pair["access_token"]))
    assert me_again.status_code == 200
    assert me_again.json()["data"]["id"] == registered["user"]["id"]

    replay = client.post("/v1/auth/refresh", json={"refresh_token": refresh})
    assert replay.status_code == 401

    logout = client.post("/v1/auth/logout", json={"refresh_token": pair["refresh_token"]})
    assert logout.status_code == 200
    after_logout = client.post(
        "/v1/auth/refresh", json={"refresh_token": pair["refresh_token"]}
    )
    assert after_logout.status_code == 401


class TestHealth:
    def test_health_ok(self, client):
        response = client.get("/v1/health")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "ok"
        assert data["services"] == {"api": "healthy", "db": "healthy"}
        assert "error" not in data or data["error"] is None

    def test_healthz_degraded_when_store_fails(self, client, monkeypatch):
        def fail():
            raise RuntimeError("connection to 10.0.0.1 refused timeout")

        monkeypatch.setattr(get_runtime().store, "verify_connection", fail)
        response = client.get("/healthz")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["services"]["db"] == "unhealthy"
        assert body["error"]

    def test_health_with_token_degraded_during_outage(self, client, monkeypatch):
        token = _register(client).json()["data"]["access_token"]
        runtime = get_runtime()
        runtime.user_cache.clear()

        def fail(*args, **kwargs):
            raise RuntimeError("connection to 10.0.0.1 refused timeout")

        monkeypatch.setattr(runtime.store, "get_user", fail)
        monkeypatch.setattr(runtime.store, "verify_connection", fail)

        healthz = client.get("/healthz", headers=_bearer(token))
        assert healthz.status_code == 200
        assert healthz.json()["status"] == "degraded"

        health = client.get("/v1/health", headers=_bearer(token))
        assert health.status_code == 200
        assert health.json()["data"]["status"] == "degraded"

        # protected routes still surface the lookup failure, not a 401
        me = client.get("/v1/auth/me", headers=_bearer(token))
        assert me.status_code == 500
        assert me.json()["error"]["code"] == "server_error"

    def test_security_headers(self, client):
        response = client.get("/v1/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
