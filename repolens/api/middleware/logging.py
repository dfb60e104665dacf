"""Structured JSON request logging middleware for the RepoLens API.

:class:`RequestLoggingMiddleware` records every HTTP request as one JSON log
entry at ``INFO`` level, enriched with:

* A **correlation ID**, taken from the incoming ``X-Correlation-ID`` (or
  ``X-Request-ID``) header or generated as a UUID v4 when absent. It is
  stored on ``request.state.correlation_id`` and echoed back in the
  ``X-Correlation-ID`` response header.
* The **user id** resolved by :class:`~repolens.api.middleware.auth.AuthMiddleware`
  (``null`` for anonymous callers).
* HTTP method, path, response status code and wall-clock duration.

Register it after ``AuthMiddleware`` so it runs outermost and sees the
resolved user id::

    app.add_middleware(AuthMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

Log entry format
----------------
::

    {
      "event": "http_request",
      "correlation_id": "550e8400-e29b-41d4-a716-446655440000",
      "user_id": null,
      "method": "POST",
      "path": "/v1/scans",
      "status_code": 202,
      "duration_ms": 42.7
    }
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

_CORRELATION_HEADERS: tuple[str, ...] = ("x-correlation-id", "x-request-id")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = self._extract_correlation_id(request)
        request.state.correlation_id = correlation_id

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 2)

        logger.info(
            json.dumps(
                {
                    "event": "http_request",
                    "correlation_id": correlation_id,
                    "user_id": getattr(request.state, "user_id", None),
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                }
            )
        )

        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @staticmethod
    def _extract_correlation_id(request: Request) -> str:
        for header in _CORRELATION_HEADERS:
            value = request.headers.get(header, "").strip()
            if value:
                return value
        return str(uuid.uuid4())
