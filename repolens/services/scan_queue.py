"""Scan orchestrator: in-process FIFO queue and its single worker.

:class:`ScanQueue` owns the only write authority over a scan's status once
the record exists. :meth:`ScanQueue.submit` appends a scan id and starts the
worker task when idle; the worker drains the queue one scan at a time, so at
most one scan per process is ever ``running``.

Per-scan state machine::

    queued ──► running ──► succeeded
                  │
                  └──────► failed

While running, ``progress.stage`` advances
``cloning (10-20%) → analyzing (40%) → generating (70-85%) → completed (100%)``.

Quota is charged by the worker, not at submission: a read-only check first
(over-quota scans fail with ``RATE_LIMIT_EXCEEDED`` and are never charged),
then a direct consume. From that point any failure whose classification
allows it is refunded. The checkout directory is removed on every exit path.

The queue lives in memory and is lost on restart; queued records remain in
the store and can be resubmitted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from prometheus_client import Counter

from repolens.core.errors import (
    ErrorClassification,
    RateLimitExceeded,
    RepoLensError,
    classify_error,
)
from repolens.core.fetcher import RepositoryFetcher
from repolens.core.ip import hash_ip
from repolens.core.surveyor import RepositoryContext, summarize_context, survey
from repolens.models.scan_record import ScanRecord
from repolens.services.gemini import GeminiClient
from repolens.services.history import HistorySummarizer
from repolens.services.quota import QuotaTracker
from repolens.services.scan_store import ScanStore

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(
    "repolens.scan_queue",
    schema_url="https://opentelemetry.io/schemas/1.11.0",
)

scans_total = Counter(
    "repolens_scans_total",
    "Scans that reached a terminal state, by outcome",
    ["outcome"],  # succeeded | failed | cached
)
scan_failures_total = Counter(
    "repolens_scan_failures_total",
    "Failed scans by error code",
    ["error_code"],
)


class MalformedScanRecord(RepoLensError):
    default_message = "Scan record is missing its repository URL or quota identity"


@dataclass(frozen=True)
class QueueStatus:
    pending: int
    is_processing: bool
    current_scan_id: str | None = None


def _progress(stage: str, message: str, percentage: int) -> dict:
    return {"stage": stage, "message": message, "percentage": percentage}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ScanQueue:
    """Single-consumer FIFO of scan ids.

    Args:
        store: Scan record store.
        quota: Quota tracker charged per processed scan.
        fetcher: Git fetcher used for checkout, metadata and cleanup.
        ai_client: Generation provider client.
        history: Timeline summarizer (best-effort step).
        ip_secret: Key for hashing a record's raw IP when it carries no
            ``ip_hash``.
        clone_timeout_seconds / clone_depth: Checkout limits; the fetcher's
            defaults apply when ``None``.
        survey_fn: Content surveyor, run in a worker thread.
    """

    def __init__(
        self,
        store: ScanStore,
        quota: QuotaTracker,
        fetcher: RepositoryFetcher,
        ai_client: GeminiClient,
        history: HistorySummarizer,
        ip_secret: str = "",
        clone_timeout_seconds: float | None = None,
        clone_depth: int | None = None,
        survey_fn: Callable[[str, str], RepositoryContext] = survey,
    ) -> None:
        self._store = store
        self._quota = quota
        self._fetcher = fetcher
        self._ai = ai_client
        self._history = history
        self._ip_secret = ip_secret
        self._clone_timeout = clone_timeout_seconds
        self._clone_depth = clone_depth
        self._survey = survey_fn

        self._pending: deque[str] = deque()
        self._is_processing = False
        self._current: str | None = None
        self._worker: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Caller-facing contract
    # ------------------------------------------------------------------

    def submit(self, scan_id: str) -> None:
        """Append *scan_id* and start the worker if idle. Never blocks."""
        self._pending.append(scan_id)
        logger.info("Scan %s queued (pending=%d)", scan_id, len(self._pending))
        if not self._is_processing:
            self._is_processing = True
            self._worker = asyncio.create_task(self._drain(), name="repolens-scan-worker")

    def queue_depth(self) -> QueueStatus:
        return QueueStatus(
            pending=len(self._pending),
            is_processing=self._is_processing,
            current_scan_id=self._current,
        )

    def cancel_if_queued(self, scan_id: str) -> bool:
        """Remove *scan_id* if it has not been dequeued yet."""
        try:
            self._pending.remove(scan_id)
        except ValueError:
            return False
        logger.info("Scan %s removed from queue", scan_id)
        return True

    async def join(self) -> None:
        """Wait until the worker has drained the queue."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def shutdown(self) -> None:
        """Drop pending ids and stop the worker; an in-flight scan is abandoned."""
        self._pending.clear()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        # A worker cancelled before its first step never reaches its own reset
        self._is_processing = False
        self._current = None

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        try:
            await self._sweep()
            while self._pending:
                scan_id = self._pending.popleft()
                self._current = scan_id
                try:
                    await self.process(scan_id)
                except Exception:
                    # A failing scan must not stop the queue
                    logger.exception("Unhandled error while processing scan %s", scan_id)
                finally:
                    self._current = None
        finally:
            self._is_processing = False

    async def _sweep(self) -> None:
        try:
            removed = await self._fetcher.sweep_stale()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Stale checkout sweep failed: %s", exc)
            return
        if removed:
            logger.info("Removed %d stale checkouts", removed)

    def _quota_identity(self, record: ScanRecord) -> tuple[str | None, bool]:
        if record.user_id:
            return record.user_id, True
        if record.ip_hash:
            return record.ip_hash, False
        if record.ip:
            return hash_ip(record.ip, self._ip_secret), False
        return None, False

    async def process(self, scan_id: str) -> None:
        """Drive one scan from ``queued`` to a terminal state."""
        record = await self._store.get(scan_id)
        if record is None:
            logger.warning("Scan %s no longer exists; skipping", scan_id)
            return

        identifier, is_authenticated = self._quota_identity(record)
        if not record.repo_url or identifier is None:
            await self._fail(scan_id, MalformedScanRecord())
            return

        started = time.monotonic()
        consumed = False
        local_path: str | None = None

        with tracer.start_as_current_span("scan.process") as span:
            span.set_attribute("scan.id", scan_id)
            span.set_attribute("repo.url", record.repo_url)
            try:
                allowance = await self._quota.check_only(identifier, is_authenticated)
                if not allowance.allowed:
                    logger.info("Scan %s rejected: quota exhausted for %s", scan_id, identifier)
                    await self._fail(scan_id, RateLimitExceeded())
                    return

                consumed = await self._quota.consume(identifier)

                await self._store.update(
                    scan_id,
                    status="running",
                    started_at=_now(),
                    progress=_progress("cloning", "Cloning repository...", 10),
                )

                with tracer.start_as_current_span("scan.checkout"):
                    checkout = await self._fetcher.checkout(
                        record.repo_url,
                        depth=self._clone_depth,
                        timeout_seconds=self._clone_timeout,
                    )
                local_path = checkout.local_path
                await self._store.update(
                    scan_id, progress=_progress("cloning", "Repository cloned", 20)
                )

                await self._store.update(
                    scan_id,
                    progress=_progress("analyzing", "Analyzing repository structure...", 40),
                )
                with tracer.start_as_current_span("scan.survey"):
                    context = await asyncio.to_thread(self._survey, local_path, record.repo_url)
                    stats = await self._collect_stats(local_path, context)
                logger.info("Scan %s surveyed: %s", scan_id, summarize_context(context))

                await self._store.update(
                    scan_id,
                    progress=_progress("generating", "Generating AI assessment...", 70),
                )
                with tracer.start_as_current_span("scan.analyze"):
                    analysis = await self._ai.analyze(context)

                await self._store.update(
                    scan_id,
                    progress=_progress("generating", "Building project timeline...", 85),
                )
                timeline = await self._timeline(scan_id, local_path, record.repo_url)

                await self._store.update(
                    scan_id,
                    progress=_progress("completed", "Analysis complete", 100),
                )
                await self._store.update(
                    scan_id,
                    status="succeeded",
                    progress=None,
                    description=analysis.description,
                    tech_stack=list(analysis.tech_stack),
                    categorized_tech_stack=(
                        analysis.categorized_tech_stack.to_document()
                        if analysis.categorized_tech_stack
                        else None
                    ),
                    skill_level=analysis.skill_level,
                    repository_info=(
                        analysis.repository_info.to_document() if analysis.repository_info else None
                    ),
                    detailed_assessment=(
                        analysis.detailed_assessment.to_document()
                        if analysis.detailed_assessment
                        else None
                    ),
                    timeline=timeline,
                    stats=stats,
                    completed_at=_now(),
                )
                scans_total.labels(outcome="succeeded").inc()
                logger.info(
                    "Scan %s succeeded in %.1fs", scan_id, time.monotonic() - started
                )
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                classification = await self._fail(scan_id, exc)
                if consumed and classification.refund:
                    await self._quota.refund(identifier)
            finally:
                if local_path is not None:
                    await self._fetcher.cleanup(local_path)

    async def _collect_stats(self, local_path: str, context: RepositoryContext) -> dict:
        metadata = await self._fetcher.get_metadata(local_path)
        size_bytes = await self._fetcher.get_size(local_path)
        return {
            "totalFiles": context.total_files,
            "totalLines": context.total_lines,
            "languages": dict(context.languages),
            "sizeBytes": size_bytes,
            "defaultBranch": metadata.default_branch,
            "lastCommitDate": metadata.last_commit_date,
            "totalCommits": metadata.total_commits,
        }

    async def _timeline(self, scan_id: str, local_path: str, repo_url: str) -> list[dict]:
        try:
            with tracer.start_as_current_span("scan.timeline"):
                events = await self._history.summarize(local_path, repo_url)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Timeline generation failed for scan %s; continuing without it: %s", scan_id, exc)
            return []
        return [event.to_document() for event in events]

    async def _fail(self, scan_id: str, exc: BaseException) -> ErrorClassification:
        classification = classify_error(exc)
        scan_failures_total.labels(error_code=classification.code.value).inc()
        scans_total.labels(outcome="failed").inc()
        logger.warning(
            "Scan %s failed: code=%s type=%s refund=%s error=%s",
            scan_id,
            classification.code.value,
            classification.type.value,
            classification.refund,
            exc,
        )
        try:
            await self._store.update(
                scan_id,
                status="failed",
                progress=None,
                error=str(exc) or type(exc).__name__,
                error_code=classification.code.value,
                error_type=classification.type.value,
                description=None,
                tech_stack=None,
                categorized_tech_stack=None,
                skill_level=None,
                repository_info=None,
                detailed_assessment=None,
                timeline=None,
                completed_at=_now(),
            )
        except Exception:
            logger.exception("Could not record failure for scan %s", scan_id)
        return classification
