"""Integration tests for ScanStore against an in-memory SQLite database."""

from __future__ import annotations

import asyncio

import pytest

from repolens.services.scan_store import ScanStore

REPO_URL = "https://github.com/acme/widget.git"
HEAD = "0123456789abcdef0123456789abcdef01234567"


async def _create(store: ScanStore, **overrides):
    fields = {
        "repo_url": REPO_URL,
        "provider": "github",
        "owner": "acme",
        "repo": "widget",
        "commit_hash": HEAD,
        "status": "queued",
        "ip_hash": "ip_test",
    }
    fields.update(overrides)
    return await store.create(**fields)


async def test_create_and_get(store: ScanStore) -> None:
    record = await _create(store, progress={"stage": "cloning", "message": "Waiting", "percentage": 0})

    loaded = await store.get(record.id)
    assert loaded is not None
    assert loaded.repo_url == REPO_URL
    assert loaded.status == "queued"
    assert loaded.progress["stage"] == "cloning"
    assert loaded.created_at is not None
    assert len(loaded.id) == 36


async def test_get_missing(store: ScanStore) -> None:
    assert await store.get("does-not-exist") is None


async def test_update(store: ScanStore) -> None:
    record = await _create(store)
    updated = await store.update(record.id, status="running", progress={"stage": "analyzing", "message": "", "percentage": 40})

    assert updated.status == "running"
    assert updated.updated_at is not None
    loaded = await store.get(record.id)
    assert loaded.progress["percentage"] == 40


async def test_update_missing_returns_none(store: ScanStore) -> None:
    assert await store.update("missing", status="failed") is None


async def test_update_unknown_field_raises(store: ScanStore) -> None:
    record = await _create(store)
    with pytest.raises(AttributeError):
        await store.update(record.id, not_a_column=1)


async def test_delete(store: ScanStore) -> None:
    record = await _create(store)
    assert await store.delete(record.id) is True
    assert await store.get(record.id) is None
    assert await store.delete(record.id) is False


async def test_find_cached_returns_newest_succeeded(store: ScanStore) -> None:
    await _create(store, status="failed", description="failed run")
    await _create(store, status="succeeded", description="older")
    await asyncio.sleep(0.01)
    newest = await _create(store, status="succeeded", description="newer")
    await _create(store, status="queued")

    cached = await store.find_cached(REPO_URL, HEAD)
    assert cached is not None
    assert cached.id == newest.id
    assert cached.description == "newer"


async def test_find_cached_requires_matching_revision(store: ScanStore) -> None:
    await _create(store, status="succeeded")
    assert await store.find_cached(REPO_URL, "f" * 40) is None
    assert await store.find_cached("https://github.com/acme/other.git", HEAD) is None


async def test_snapshot_is_plain_dict(store: ScanStore) -> None:
    record = await _create(store, tech_stack=["Python"])
    snapshot = record.snapshot()
    assert snapshot["id"] == record.id
    assert snapshot["tech_stack"] == ["Python"]
    assert "ip_hash" in snapshot


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------


async def test_watch_yields_updates_until_terminal(store: ScanStore) -> None:
    record = await _create(store)
    watcher = store.watch(record.id)

    first = await watcher.__anext__()
    assert first["status"] == "queued"

    await store.update(record.id, status="running")
    assert (await watcher.__anext__())["status"] == "running"

    await store.update(record.id, status="succeeded", description="done")
    final = await watcher.__anext__()
    assert final["status"] == "succeeded"
    assert final["description"] == "done"

    with pytest.raises(StopAsyncIteration):
        await watcher.__anext__()


async def test_watch_terminal_record_yields_once(store: ScanStore) -> None:
    record = await _create(store, status="failed")
    snapshots = [snapshot async for snapshot in store.watch(record.id)]
    assert [s["status"] for s in snapshots] == ["failed"]


async def test_watch_missing_record(store: ScanStore) -> None:
    assert [s async for s in store.watch("missing")] == []


async def test_watch_ends_on_delete(store: ScanStore) -> None:
    record = await _create(store)
    watcher = store.watch(record.id)
    await watcher.__anext__()

    await store.delete(record.id)
    with pytest.raises(StopAsyncIteration):
        await watcher.__anext__()


async def test_watch_unsubscribes(store: ScanStore) -> None:
    record = await _create(store, status="succeeded")
    async for _ in store.watch(record.id):
        pass
    assert record.id not in store._watchers
