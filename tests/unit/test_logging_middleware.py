"""Unit tests for repolens/api/middleware/logging.py.

Tests are fully offline; no database or Redis connections are required.

Coverage targets:
* Correlation ID taken from X-Correlation-ID, then X-Request-ID, else a UUID v4.
* Correlation ID stored on request.state and echoed in the response header.
* One structured JSON log entry per request at INFO level.
* user_id is populated from request.state.user_id, null when anonymous.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from starlette.middleware.base import BaseHTTPMiddleware

from repolens.api.middleware.logging import RequestLoggingMiddleware

_LOGGER = "repolens.api.middleware.logging"


def _make_app(user_id: str | None = None) -> FastAPI:
    app = FastAPI()

    @app.get("/v1/scans/{scan_id}")
    async def scan(scan_id: str, request: Request) -> dict:
        return {"correlation_id": request.state.correlation_id}

    @app.get("/v1/missing")
    async def missing() -> Any:
        from fastapi import HTTPException

        raise HTTPException(status_code=404, detail="nope")

    # Stand-in for AuthMiddleware, registered first so it runs inside logging
    class _InjectUser(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next: Any) -> Any:
            request.state.user_id = user_id
            return await call_next(request)

    app.add_middleware(_InjectUser)
    app.add_middleware(RequestLoggingMiddleware)
    return app


def _log_entries(caplog: pytest.LogCaptureFixture) -> list[dict]:
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == _LOGGER]


def test_correlation_id_from_header(caplog: pytest.LogCaptureFixture) -> None:
    client = TestClient(_make_app())
    with caplog.at_level(logging.INFO, logger=_LOGGER):
        response = client.get("/v1/scans/abc", headers={"X-Correlation-ID": "corr-1"})

    assert response.headers["X-Correlation-ID"] == "corr-1"
    assert response.json() == {"correlation_id": "corr-1"}


def test_request_id_header_fallback() -> None:
    client = TestClient(_make_app())
    response = client.get("/v1/scans/abc", headers={"X-Request-ID": "req-7"})
    assert response.headers["X-Correlation-ID"] == "req-7"


def test_generated_correlation_id_is_uuid4() -> None:
    client = TestClient(_make_app())
    response = client.get("/v1/scans/abc")
    generated = response.headers["X-Correlation-ID"]
    assert uuid.UUID(generated).version == 4


def test_log_entry_fields(caplog: pytest.LogCaptureFixture) -> None:
    client = TestClient(_make_app(user_id="user-9"))
    with caplog.at_level(logging.INFO, logger=_LOGGER):
        client.get("/v1/scans/abc", headers={"X-Correlation-ID": "corr-2"})

    entries = _log_entries(caplog)
    assert len(entries) == 1
    entry = entries[0]
    assert entry["event"] == "http_request"
    assert entry["correlation_id"] == "corr-2"
    assert entry["user_id"] == "user-9"
    assert entry["method"] == "GET"
    assert entry["path"] == "/v1/scans/abc"
    assert entry["status_code"] == 200
    assert entry["duration_ms"] >= 0


def test_anonymous_user_logged_as_null(caplog: pytest.LogCaptureFixture) -> None:
    client = TestClient(_make_app())
    with caplog.at_level(logging.INFO, logger=_LOGGER):
        client.get("/v1/scans/abc")
    assert _log_entries(caplog)[0]["user_id"] is None


def test_error_status_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    client = TestClient(_make_app())
    with caplog.at_level(logging.INFO, logger=_LOGGER):
        response = client.get("/v1/missing")
    assert response.status_code == 404
    assert _log_entries(caplog)[0]["status_code"] == 404
