"""Tests for the aggregation of sources into one ranked state."""

import asyncio
import threading

import pytest

from searchanywhere.daemon.aggregator import PLACEHOLDER, rank
from searchanywhere.daemon.bus import MessageBus
from searchanywhere.daemon.models import (LOADING, AppItem, Error, FileItem, ItemKind, SourceResult,
                                          Success, WeightedItem)
from searchanywhere.daemon.query import parse
from searchanywhere.daemon.streams import first_matching

from conftest import make_app, make_setting

TIMEOUT = 5


async def settle(core, text):
    queries = parse(text)
    core.aggregator.set_query(queries)
    core.files.search(queries)
    return await first_matching(
        core.aggregator.state,
        lambda s: not s.placeholder and s.query == queries and s.files_query == queries and not s.loading,
        timeout=TIMEOUT,
    )


@pytest.mark.asyncio
async def test_aggregation_scenario(core_factory):
    core = core_factory(
        apps=[AppItem(id="a1", label="X The Everything Files App", package_name="a1.pkg", activity_name="run")],
        settings=[make_setting("settings_files"), make_setting("settings_wifi")],
        files=["file1", "file2.mp3"],
    )
    await core.load()
    core.aggregator.start()

    state = await settle(core, "file")
    names = [w.item.display_name for w in state.items]

    assert set(names) == {"X The Everything Files App", "Files", "file1", "file2.mp3"}
    assert "Wifi" not in names
    # Heaviest first, equal weights in settings, apps, files order
    assert names == ["Files", "file1", "file2.mp3", "X The Everything Files App"]


@pytest.mark.asyncio
async def test_placeholder_until_started(core_factory):
    core = core_factory(apps=[make_app("Files")])
    assert core.aggregator.state.value is PLACEHOLDER

    core.aggregator.start()
    state = await first_matching(core.aggregator.state, lambda s: not s.placeholder, timeout=TIMEOUT)
    assert state.items == ()
    assert set(state.loading) == {"settings", "apps", "files"}


@pytest.mark.asyncio
async def test_recomputes_on_query_change(core_factory):
    core = core_factory(apps=[make_app("Files"), make_app("Maps")], files=["maps.txt"])
    await core.load()
    core.aggregator.start()

    state = await settle(core, "files")
    assert [w.item.display_name for w in state.items] == ["Files"]

    state = await settle(core, "map")
    assert [w.item.display_name for w in state.items] == ["Maps", "maps.txt"]

    state = await settle(core, "")
    assert state.items == ()


@pytest.mark.asyncio
async def test_failed_source_reported_once(core_factory):
    bus = MessageBus(capacity=10)
    core = core_factory(
        apps=[make_app("Files")],
        settings=[make_setting("ACTION_FILES_SETTINGS")],
        app_error=PermissionError("denied"),
        bus=bus,
    )
    await core.load()
    core.aggregator.start()

    state = await settle(core, "files")
    assert [w.item.display_name for w in state.items] == ["Files Settings"]
    state = await settle(core, "fil")
    assert [w.item.display_name for w in state.items] == ["Files Settings"]

    assert core.aggregator.stats["errors_reported"] == 1
    assert bus.pending == 1


@pytest.mark.asyncio
async def test_new_error_occurrence_reported_again(core_factory):
    bus = MessageBus(capacity=10)
    core = core_factory(app_error=OSError("gone"), bus=bus)
    await core.load()
    core.aggregator.start()
    await settle(core, "a")

    await core.apps.load()
    await asyncio.sleep(0.05)
    await settle(core, "b")

    assert core.aggregator.stats["errors_reported"] == 2


@pytest.mark.asyncio
async def test_history_in_state(core_factory):
    maps = make_app("Maps")
    core = core_factory(apps=[maps])
    await core.load()
    await core.store.upsert(ItemKind.SETTING, "ACTION_WIFI_SETTINGS",
                            {"field_name": "ACTION_WIFI_SETTINGS", "field_value": "x"}, updated_at_ms=1)
    await core.store.upsert(ItemKind.FILE, "notes.md", {}, updated_at_ms=2)
    await core.store.upsert(ItemKind.APP, maps.id, {"label": "Maps", "package_name": maps.package_name,
                                                    "activity_name": maps.activity_name}, updated_at_ms=3)
    core.aggregator.start()

    state = await first_matching(
        core.aggregator.state,
        lambda s: s.history is not None and len(s.history) == 3,
        timeout=TIMEOUT,
    )
    assert [item.display_name for item in state.history] == ["Maps", "notes.md", "Wifi Settings"]

    await core.history.forget(FileItem("notes.md"))
    state = await first_matching(
        core.aggregator.state,
        lambda s: s.history is not None and len(s.history) == 2,
        timeout=TIMEOUT,
    )
    assert FileItem("notes.md") not in state.history


def test_rank_skips_loading_and_errors():
    settings = SourceResult(parse("a"), LOADING)
    apps = SourceResult(parse("a"), Error("failed"))
    files = SourceResult(parse("a"), Success([WeightedItem(1, FileItem("a")), WeightedItem(2, FileItem("ab"))]))

    ranked = rank([settings, apps, files])
    assert [w.item.display_name for w in ranked] == ["ab", "a"]


@pytest.mark.asyncio
async def test_stop_cancels_aggregation(core_factory):
    core = core_factory()
    task = core.aggregator.start()
    await asyncio.sleep(0.01)
    await core.aggregator.stop()
    assert task.done()


@pytest.mark.asyncio
async def test_file_results_of_earlier_query_are_hidden(core_factory):
    core = core_factory(apps=[make_app("Beta")], files=["alpha.txt", "beta.txt"])
    await core.load()
    core.aggregator.start()

    state = await settle(core, "alpha")
    assert [w.item.display_name for w in state.items] == ["alpha.txt"]

    held = threading.Event()
    core.index_service.search_gates["beta"] = held
    queries = parse("beta")
    core.aggregator.set_query(queries)
    search = core.files.search(queries)

    state = await first_matching(core.aggregator.state, lambda s: s.query == queries, timeout=TIMEOUT)
    assert [w.item.display_name for w in state.items] == ["Beta"]
    assert "files" in state.loading

    held.set()
    await search
    state = await first_matching(core.aggregator.state, lambda s: s.files_query == queries, timeout=TIMEOUT)
    assert {w.item.display_name for w in state.items} == {"Beta", "beta.txt"}
    assert state.loading == ()
