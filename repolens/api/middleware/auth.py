"""Optional bearer-token authentication for the RepoLens API.

Scans may be submitted anonymously; a bearer token only raises the caller's
quota. Token verification itself belongs to an external identity provider
and is plugged in as an :class:`AuthVerifier`: an async callable that maps a
token to a stable user id or raises :class:`AuthenticationFailed`.

The verifier is taken from the middleware constructor or, when none was
given, from ``request.app.state.auth_verifier`` at request time.

On success the user id is attached to ``request.state.user_id``; anonymous
requests get ``None``.

HTTP responses on failure:

* ``401 Unauthorized`` – malformed ``Authorization`` header, rejected token,
  or a token presented while no verifier is configured.
"""

import logging
from typing import Any, Awaitable, Callable, Protocol

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

# Paths that never look at credentials (health / metrics / docs)
_UNAUTHENTICATED_PATHS: frozenset[str] = frozenset(
    {"/healthz", "/metrics", "/v1/docs", "/v1/openapi.json"}
)


class AuthenticationFailed(Exception):
    """Raised by a verifier when a token is invalid or expired."""


class AuthVerifier(Protocol):
    def __call__(self, token: str) -> Awaitable[str]: ...


def _json_401(detail: str) -> JSONResponse:
    return JSONResponse({"detail": detail}, status_code=401)


class AuthMiddleware(BaseHTTPMiddleware):
    """Resolve an optional bearer token to ``request.state.user_id``."""

    def __init__(self, app: ASGIApp, verifier: AuthVerifier | None = None) -> None:
        super().__init__(app)
        self._verifier = verifier

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:  # type: ignore[override]
        request.state.user_id = None
        if request.url.path in _UNAUTHENTICATED_PATHS:
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header:
            return await call_next(request)
        if not auth_header.startswith("Bearer "):
            return _json_401("Missing or invalid Authorization header")

        token = auth_header[len("Bearer "):].strip()
        if not token:
            return _json_401("Missing or invalid Authorization header")

        verifier: Any = self._verifier or getattr(request.app.state, "auth_verifier", None)
        if verifier is None:
            logger.warning("Bearer token presented but no auth verifier is configured")
            return _json_401("Authentication is not available")

        try:
            user_id = await verifier(token)
        except AuthenticationFailed as exc:
            logger.info("Token rejected for %s %s: %s", request.method, request.url.path, exc)
            return _json_401("Invalid or expired token")

        request.state.user_id = user_id
        return await call_next(request)
