"""Scan record persistence with in-process change notification.

:class:`ScanStore` is the keyed document store behind the scan pipeline:
create / get / update / delete by scan id, the cache-hit query on
``repo_url + commit_hash + status``, and :meth:`ScanStore.watch`, an async
iterator of snapshots pushed on every update.

Watch subscribers are held in memory, so they only see updates made through
the same store instance (the same process). Each snapshot is a plain dict
copy of the row; subscribers never share ORM state with the writer.

Usage::

    store = ScanStore(AsyncSessionLocal)
    record = await store.create(repo_url=url, status="queued")
    async for snapshot in store.watch(record.id):
        print(snapshot["status"], snapshot["progress"])
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repolens.models.scan_record import ScanRecord

logger = logging.getLogger(__name__)

TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed"})


class ScanStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._watchers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    async def create(self, **fields: Any) -> ScanRecord:
        record = ScanRecord(**fields)
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        logger.info("Created scan %s for %s (status=%s)", record.id, record.repo_url, record.status)
        return record

    async def get(self, scan_id: str) -> ScanRecord | None:
        async with self._session_factory() as session:
            return await session.get(ScanRecord, scan_id)

    async def update(self, scan_id: str, **fields: Any) -> ScanRecord | None:
        """Apply *fields* to the record and notify watchers.

        Returns the updated record, or ``None`` when *scan_id* does not exist.
        Unknown field names raise ``AttributeError``.
        """
        async with self._session_factory() as session:
            record = await session.get(ScanRecord, scan_id)
            if record is None:
                return None
            for name, value in fields.items():
                if not hasattr(ScanRecord, name):
                    raise AttributeError(f"ScanRecord has no field {name!r}")
                setattr(record, name, value)
            record.updated_at = datetime.now(timezone.utc)
            await session.commit()

        self._notify(scan_id, record.snapshot())
        return record

    async def delete(self, scan_id: str) -> bool:
        async with self._session_factory() as session:
            record = await session.get(ScanRecord, scan_id)
            if record is None:
                return False
            await session.delete(record)
            await session.commit()

        logger.info("Deleted scan %s", scan_id)
        self._notify(scan_id, None)
        return True

    async def find_cached(self, repo_url: str, commit_hash: str) -> ScanRecord | None:
        """Newest succeeded scan of *repo_url* at *commit_hash*, if any."""
        stmt = (
            select(ScanRecord)
            .where(
                ScanRecord.repo_url == repo_url,
                ScanRecord.commit_hash == commit_hash,
                ScanRecord.status == "succeeded",
            )
            .order_by(ScanRecord.created_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def watch(self, scan_id: str) -> AsyncIterator[dict]:
        """Yield the current snapshot, then one per update.

        The iterator ends after a terminal status (``succeeded``/``failed``)
        or when the record is deleted or does not exist.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers[scan_id].add(queue)
        try:
            current = await self.get(scan_id)
            if current is None:
                return
            snapshot = current.snapshot()
            yield snapshot
            if snapshot["status"] in TERMINAL_STATUSES:
                return
            while True:
                snapshot = await queue.get()
                if snapshot is None:
                    return
                yield snapshot
                if snapshot["status"] in TERMINAL_STATUSES:
                    return
        finally:
            watchers = self._watchers.get(scan_id)
            if watchers is not None:
                watchers.discard(queue)
                if not watchers:
                    del self._watchers[scan_id]

    def _notify(self, scan_id: str, snapshot: dict | None) -> None:
        for queue in self._watchers.get(scan_id, ()):
            queue.put_nowait(snapshot)
