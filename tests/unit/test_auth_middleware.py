"""Unit tests for repolens/api/middleware/auth.py.

Tests are fully offline; the token verifier is a plain async function.

Coverage targets:
* Anonymous requests pass through with ``request.state.user_id = None``.
* A valid bearer token resolves to a user id.
* Malformed headers and rejected tokens receive 401.
* A token presented with no verifier configured receives 401.
* The verifier may come from ``app.state.auth_verifier``.
* Health and metrics paths never inspect credentials.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from repolens.api.middleware.auth import AuthenticationFailed, AuthMiddleware


async def _verifier(token: str) -> str:
    if token == "good-token":
        return "user-123"
    raise AuthenticationFailed("unknown token")


def _make_app(verifier=_verifier, state_verifier=None) -> FastAPI:
    app = FastAPI()
    app.state.auth_verifier = state_verifier

    @app.get("/v1/whoami")
    async def whoami(request: Request) -> dict:
        return {"user_id": request.state.user_id}

    @app.get("/healthz")
    async def health() -> dict:
        return {"status": "ok"}

    app.add_middleware(AuthMiddleware, verifier=verifier)
    return app


def test_anonymous_request_passes_through() -> None:
    client = TestClient(_make_app())
    response = client.get("/v1/whoami")
    assert response.status_code == 200
    assert response.json() == {"user_id": None}


def test_valid_token_sets_user_id() -> None:
    client = TestClient(_make_app())
    response = client.get("/v1/whoami", headers={"Authorization": "Bearer good-token"})
    assert response.status_code == 200
    assert response.json() == {"user_id": "user-123"}


def test_rejected_token_returns_401() -> None:
    client = TestClient(_make_app())
    response = client.get("/v1/whoami", headers={"Authorization": "Bearer bad-token"})
    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid or expired token"}


def test_non_bearer_scheme_returns_401() -> None:
    client = TestClient(_make_app())
    response = client.get("/v1/whoami", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert response.status_code == 401


def test_empty_bearer_token_returns_401() -> None:
    client = TestClient(_make_app())
    response = client.get("/v1/whoami", headers={"Authorization": "Bearer   "})
    assert response.status_code == 401


def test_token_without_verifier_returns_401() -> None:
    client = TestClient(_make_app(verifier=None))
    response = client.get("/v1/whoami", headers={"Authorization": "Bearer good-token"})
    assert response.status_code == 401
    assert response.json() == {"detail": "Authentication is not available"}


def test_verifier_from_app_state() -> None:
    client = TestClient(_make_app(verifier=None, state_verifier=_verifier))
    response = client.get("/v1/whoami", headers={"Authorization": "Bearer good-token"})
    assert response.json() == {"user_id": "user-123"}


def test_health_path_skips_authentication() -> None:
    client = TestClient(_make_app())
    response = client.get("/healthz", headers={"Authorization": "Bearer bad-token"})
    assert response.status_code == 200
