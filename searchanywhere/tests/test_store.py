"""Tests for the append-only history store."""

import json

import pytest

from searchanywhere.daemon.models import ItemKind
from searchanywhere.daemon.store import HistoryStore


@pytest.mark.asyncio
async def test_upsert_overwrites_same_key(store):
    await store.upsert(ItemKind.FILE, "a.txt", {}, updated_at_ms=1)
    await store.upsert(ItemKind.FILE, "b.txt", {}, updated_at_ms=2)
    await store.upsert(ItemKind.FILE, "a.txt", {}, updated_at_ms=3)

    entries = store.entries(ItemKind.FILE)
    assert [r.key for r in entries] == ["a.txt", "b.txt"]
    assert entries[0].updated_at_ms == 3


@pytest.mark.asyncio
async def test_kinds_are_independent(store):
    await store.upsert(ItemKind.APP, "same", {"label": "App"}, updated_at_ms=1)
    await store.upsert(ItemKind.SETTING, "same", {}, updated_at_ms=2)

    assert len(store.entries(ItemKind.APP)) == 1
    assert len(store.entries(ItemKind.SETTING)) == 1
    assert store.entries(ItemKind.FILE) == []


@pytest.mark.asyncio
async def test_delete(store):
    await store.upsert(ItemKind.FILE, "a.txt", {})
    assert await store.delete(ItemKind.FILE, "a.txt") is True
    assert await store.delete(ItemKind.FILE, "a.txt") is False
    assert store.entries(ItemKind.FILE) == []


@pytest.mark.asyncio
async def test_replay_restores_state(tmp_path):
    log = tmp_path / "history.jsonl"
    first = HistoryStore(log)
    await first.initialize()
    await first.upsert(ItemKind.APP, "Files" + "files.desktop", {"label": "Files"}, updated_at_ms=10)
    await first.upsert(ItemKind.FILE, "notes.md", {}, updated_at_ms=20)
    await first.delete(ItemKind.FILE, "notes.md")

    second = HistoryStore(log)
    await second.initialize()
    apps = second.entries(ItemKind.APP)
    assert [r.key for r in apps] == ["Filesfiles.desktop"]
    assert apps[0].payload == {"label": "Files"}
    assert second.entries(ItemKind.FILE) == []


@pytest.mark.asyncio
async def test_corrupt_lines_are_skipped(tmp_path):
    log = tmp_path / "history.jsonl"
    log.write_text(
        json.dumps({"op": "upsert", "kind": "file", "key": "ok.txt", "ts": 5, "payload": {}}) + "\n"
        + "{not json\n"
        + json.dumps({"op": "upsert", "kind": "unknown", "key": "x", "ts": 1}) + "\n"
    )
    store = HistoryStore(log)
    await store.initialize()
    assert [r.key for r in store.entries(ItemKind.FILE)] == ["ok.txt"]


@pytest.mark.asyncio
async def test_cap_evicts_least_recently_used(tmp_path):
    store = HistoryStore(tmp_path / "history.jsonl", max_entries_per_kind=2)
    await store.initialize()
    await store.upsert(ItemKind.FILE, "old", {}, updated_at_ms=1)
    await store.upsert(ItemKind.FILE, "mid", {}, updated_at_ms=2)
    await store.upsert(ItemKind.FILE, "new", {}, updated_at_ms=3)
    await store.upsert(ItemKind.APP, "app", {}, updated_at_ms=0)

    assert [r.key for r in store.entries(ItemKind.FILE)] == ["new", "mid"]
    assert len(store.entries(ItemKind.APP)) == 1

    reloaded = HistoryStore(tmp_path / "history.jsonl", max_entries_per_kind=2)
    await reloaded.initialize()
    assert [r.key for r in reloaded.entries(ItemKind.FILE)] == ["new", "mid"]


@pytest.mark.asyncio
async def test_log_is_compacted_on_start(tmp_path):
    log = tmp_path / "history.jsonl"
    log.write_text("".join(
        json.dumps({"op": "upsert", "kind": "file", "key": "same", "ts": ts, "payload": {}}) + "\n"
        for ts in range(10)
    ))

    store = HistoryStore(log)
    await store.initialize()
    assert len(log.read_text().splitlines()) == 1
    assert store.entries(ItemKind.FILE)[0].updated_at_ms == 9


@pytest.mark.asyncio
async def test_log_is_compacted_while_running(tmp_path):
    log = tmp_path / "history.jsonl"
    store = HistoryStore(log)
    await store.initialize()
    for ts in range(50):
        await store.upsert(ItemKind.FILE, "same", {}, updated_at_ms=ts)
        assert len(log.read_text().splitlines()) <= 2

    reloaded = HistoryStore(log)
    await reloaded.initialize()
    assert [r.updated_at_ms for r in reloaded.entries(ItemKind.FILE)] == [49]


@pytest.mark.asyncio
async def test_failed_write_leaves_state_unchanged(tmp_path):
    log = tmp_path / "history.jsonl"
    log.mkdir()
    store = HistoryStore(log)

    with pytest.raises(OSError):
        await store.upsert(ItemKind.FILE, "a.txt", {}, updated_at_ms=1)
    assert store.get(ItemKind.FILE, "a.txt") is None
    assert store.entries(ItemKind.FILE) == []


@pytest.mark.asyncio
async def test_bad_timestamp_skips_only_that_record(tmp_path):
    log = tmp_path / "history.jsonl"
    log.write_text(
        json.dumps({"op": "upsert", "kind": "file", "key": "bad.txt", "ts": "yesterday"}) + "\n"
        + json.dumps({"op": "upsert", "kind": "file", "key": "none.txt", "ts": None}) + "\n"
        + json.dumps({"op": "upsert", "kind": "file", "key": "ok.txt", "ts": 5}) + "\n"
    )
    store = HistoryStore(log)
    await store.initialize()
    assert [r.key for r in store.entries(ItemKind.FILE)] == ["ok.txt"]

@pytest.mark.asyncio
async def test_history_stream_publishes_changes(store):
    values = store.history(ItemKind.SETTING).subscribe()
    assert await values.__anext__() == []

    await store.upsert(ItemKind.SETTING, "ACTION_WIFI_SETTINGS", {}, updated_at_ms=1)
    records = await values.__anext__()
    assert [r.key for r in records] == ["ACTION_WIFI_SETTINGS"]
    await values.aclose()
