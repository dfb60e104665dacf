"""API routes for scan submission, status and quota.

Endpoints
---------
POST   /v1/scans
    Submit a repository URL. ``202 Accepted`` with ``cached=false`` when the
    scan is queued; ``200 OK`` with ``cached=true`` when an earlier scan of
    the same revision was reused.

GET    /v1/scans/{scan_id}
    Current state of a scan, including a user-facing explanation when it
    failed.

DELETE /v1/scans/{scan_id}
    Withdraw a scan that is still waiting in the queue. ``409 Conflict`` once
    the worker has picked it up.

GET    /v1/queue
    Number of pending scans and whether the worker is busy.

GET    /v1/quota
    The caller's scan quota in the current window.

Services are read from ``request.app.state`` (``submission``, ``store``,
``queue``, ``quota``), wired at startup by :mod:`repolens.main`. The caller
identity is ``request.state.user_id``, set by
:class:`~repolens.api.middleware.auth.AuthMiddleware`.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from repolens.core.errors import RepositoryNotAccessible, user_facing_error
from repolens.core.ip import get_client_ip
from repolens.schemas.scan import (
    QueueStatusOut,
    QuotaOut,
    ScanCreate,
    ScanOut,
    ScanSubmitted,
    UserFacingError,
)
from repolens.services.submission import QuotaRefused

router = APIRouter(prefix="/v1", tags=["scans"])


def _user_id(request: Request) -> str | None:
    return getattr(request.state, "user_id", None)


@router.post("/scans", response_model=ScanSubmitted, status_code=202)
async def create_scan(body: ScanCreate, request: Request) -> JSONResponse:
    submission = request.app.state.submission
    try:
        result = await submission.submit(body.repo_url, _user_id(request), get_client_ip(request))
    except QuotaRefused as exc:
        reset_at = exc.status.reset_at.isoformat()
        return JSONResponse(
            status_code=429,
            content={
                "detail": exc.message,
                "errorCode": exc.code.value,
                "remaining": exc.status.remaining,
                "resetAt": reset_at,
            },
            headers={
                "X-RateLimit-Limit": str(exc.status.limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    except RepositoryNotAccessible as exc:
        return JSONResponse(
            status_code=400,
            content={"detail": exc.message, "errorCode": exc.code.value},
        )

    payload = ScanSubmitted(scan_id=result.scan_id, status=result.status, cached=result.cached)
    return JSONResponse(
        status_code=200 if result.cached else 202,
        content=payload.model_dump(by_alias=True),
    )


@router.get("/scans/{scan_id}", response_model=ScanOut, response_model_by_alias=True)
async def get_scan(scan_id: str, request: Request) -> ScanOut:
    record = await request.app.state.store.get(scan_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Scan not found")

    out = ScanOut.model_validate(record)
    if record.status == "failed":
        out.user_error = UserFacingError(**user_facing_error(record.error_code))
    return out


@router.delete("/scans/{scan_id}", status_code=204)
async def cancel_scan(scan_id: str, request: Request) -> None:
    store = request.app.state.store
    record = await store.get(scan_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Scan not found")

    # Only the submitter (user id, or hashed IP for anonymous scans) may cancel
    caller, _ = request.app.state.submission.quota_identity(
        _user_id(request), get_client_ip(request)
    )
    owner = record.user_id or record.ip_hash
    if owner and owner != caller:
        raise HTTPException(status_code=404, detail="Scan not found")

    if not request.app.state.queue.cancel_if_queued(scan_id):
        raise HTTPException(status_code=409, detail="Scan is no longer queued")
    await store.delete(scan_id)


@router.get("/queue", response_model=QueueStatusOut, response_model_by_alias=True)
async def queue_status(request: Request) -> QueueStatusOut:
    status = request.app.state.queue.queue_depth()
    return QueueStatusOut(pending=status.pending, is_processing=status.is_processing)


@router.get("/quota", response_model=QuotaOut, response_model_by_alias=True)
async def quota_status(request: Request) -> QuotaOut:
    submission = request.app.state.submission
    identifier, is_authenticated = submission.quota_identity(
        _user_id(request), get_client_ip(request)
    )
    status = await request.app.state.quota.check_only(identifier, is_authenticated)
    return QuotaOut(
        max_scans=status.limit,
        used_scans=status.used,
        remaining_scans=status.remaining,
        reset_at=status.reset_at,
        is_authenticated=is_authenticated,
    )
