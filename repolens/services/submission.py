"""Caller-side scan submission.

:class:`ScanSubmissionService` turns a repository URL into a scan record:

1. Validate the URL.
2. Read-only quota check for the caller (nothing is charged here; the
   orchestrator charges when it picks the scan up).
3. Confirm the repository is publicly reachable.
4. Resolve the remote head revision, the cache key.
5. If a succeeded scan exists for the same URL and revision, create the new
   record directly as ``succeeded`` with the cached results and stop.
6. Otherwise create a ``queued`` record and hand its id to the queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from repolens.core.errors import InvalidRepositoryUrl, RateLimitExceeded, RepositoryNotAccessible
from repolens.core.fetcher import RepositoryFetcher
from repolens.core.ip import hash_ip, is_valid_ip
from repolens.core.locator import is_valid_url, parse
from repolens.models.scan_record import ScanRecord
from repolens.services.quota import QuotaStatus, QuotaTracker
from repolens.services.scan_queue import ScanQueue, scans_total
from repolens.services.scan_store import ScanStore

logger = logging.getLogger(__name__)


class QuotaRefused(RateLimitExceeded):
    """Submission refused up front; carries the caller's quota status."""

    def __init__(self, status: QuotaStatus) -> None:
        super().__init__("Scan quota exceeded")
        self.status = status


@dataclass(frozen=True)
class SubmissionResult:
    scan_id: str
    status: str
    cached: bool


class ScanSubmissionService:
    def __init__(
        self,
        store: ScanStore,
        queue: ScanQueue,
        quota: QuotaTracker,
        fetcher: RepositoryFetcher,
        ip_secret: str,
    ) -> None:
        self._store = store
        self._queue = queue
        self._quota = quota
        self._fetcher = fetcher
        self._ip_secret = ip_secret

    def quota_identity(self, user_id: str | None, client_ip: str) -> tuple[str, bool]:
        """Quota identifier and authentication flag for a caller."""
        if user_id:
            return user_id, True
        return hash_ip(client_ip, self._ip_secret), False

    async def submit(self, repo_url: str, user_id: str | None, client_ip: str) -> SubmissionResult:
        """Create a scan for *repo_url* on behalf of a caller.

        Raises:
            InvalidRepositoryUrl: The URL is not a supported repository URL.
            QuotaRefused: The caller has no quota left in the current window.
            RepositoryNotAccessible: The repository is private, missing or
                unreachable.
        """
        repo_url = (repo_url or "").strip()
        if not is_valid_url(repo_url):
            raise InvalidRepositoryUrl(
                "Invalid repository URL. Please provide a valid GitHub, GitLab, or Bitbucket URL."
            )

        identifier, is_authenticated = self.quota_identity(user_id, client_ip)
        allowance = await self._quota.check_only(identifier, is_authenticated)
        if not allowance.allowed:
            raise QuotaRefused(allowance)

        if not await self._fetcher.is_accessible(repo_url):
            raise RepositoryNotAccessible(
                "Repository is not accessible. Make sure it exists and is public."
            )

        location = parse(repo_url)
        commit_hash = await self._fetcher.get_latest_revision(repo_url)

        identity = {
            "user_id": user_id or None,
            "ip": client_ip if is_valid_ip(client_ip) else None,
            "ip_hash": None if is_authenticated else identifier,
        }
        repository = {
            "repo_url": location.normalized_url,
            "provider": location.provider,
            "owner": location.owner,
            "repo": location.repo,
            "commit_hash": commit_hash,
        }

        cached = await self._store.find_cached(location.normalized_url, commit_hash)
        if cached is not None:
            record = await self._store.create(
                **repository,
                **identity,
                status="succeeded",
                completed_at=datetime.now(timezone.utc),
                **{field: getattr(cached, field) for field in ScanRecord.RESULT_FIELDS},
            )
            scans_total.labels(outcome="cached").inc()
            logger.info(
                "Cache hit for %s@%s: scan %s reuses %s",
                location.normalized_url,
                commit_hash[:7],
                record.id,
                cached.id,
            )
            return SubmissionResult(scan_id=record.id, status=record.status, cached=True)

        record = await self._store.create(
            **repository,
            **identity,
            status="queued",
            progress={"stage": "cloning", "message": "Waiting in queue...", "percentage": 0},
        )
        self._queue.submit(record.id)
        return SubmissionResult(scan_id=record.id, status=record.status, cached=False)
