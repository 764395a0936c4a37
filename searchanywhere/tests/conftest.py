"""Fakes for the external collaborators and shared fixtures."""

import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from searchanywhere.daemon.aggregator import Aggregator
from searchanywhere.daemon.history import HistoryMerger
from searchanywhere.daemon.indexers import IndexLifecycle, IndexPaths
from searchanywhere.daemon.models import AppItem, SettingItem
from searchanywhere.daemon.sources import AppsSource, FilesSource, SettingsSource
from searchanywhere.daemon.store import HistoryStore
from searchanywhere.daemon.streams import Dispatchers, TaskScope


class FakeIndexService:
    """In-memory index; ``build`` can be held open with ``release``."""

    def __init__(self, paths: Optional[List[str]] = None, build_error: Optional[Exception] = None,
                 search_error: Optional[Exception] = None, hold_build: bool = False):
        self.paths = list(paths or [])
        self.build_error = build_error
        self.search_error = search_error
        self.build_calls = 0
        self.search_calls: List[List[str]] = []
        self.build_started = threading.Event()
        self.release = threading.Event()
        if not hold_build:
            self.release.set()
        self.search_gates: Dict[str, threading.Event] = {}

    def build(self, database_path: Path, scan_root: Path, temp_dir: Path) -> None:
        self.build_calls += 1
        self.build_started.set()
        self.release.wait(timeout=5)
        if self.build_error is not None:
            raise self.build_error
        Path(database_path).parent.mkdir(parents=True, exist_ok=True)
        Path(database_path).write_text("\n".join(self.paths) + "\n")

    def search(self, database_path: Path, terms: List[str], include_flags: List[bool]) -> List[str]:
        self.search_calls.append(list(terms))
        gate = self.search_gates.get(terms[0]) if terms else None
        if gate is not None:
            gate.wait(timeout=5)
        if self.search_error is not None:
            raise self.search_error
        found = []
        for path in self.paths:
            name = path.casefold()
            if all((term.casefold() in name) == include for term, include in zip(terms, include_flags)):
                found.append(path)
        return found

    def stat_indexed_count(self, database_path: Path) -> int:
        return len(self.paths)


class FakeAppProvider:
    def __init__(self, apps: List[AppItem], error: Optional[Exception] = None):
        self.apps = list(apps)
        self.error = error
        self.resolve_calls = 0

    def list_apps(self) -> List[AppItem]:
        if self.error is not None:
            raise self.error
        return list(self.apps)

    def resolve(self, package_name: str, activity_name: str) -> Optional[AppItem]:
        self.resolve_calls += 1
        for app in self.apps:
            if app.package_name == package_name and app.activity_name == activity_name:
                return app
        return None


class FakeSettingsProvider:
    def __init__(self, settings: List[SettingItem], error: Optional[Exception] = None):
        self.settings = list(settings)
        self.error = error

    def list_settings(self) -> List[SettingItem]:
        if self.error is not None:
            raise self.error
        return list(self.settings)


class FakeOpener:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.opened = []

    def open(self, item) -> None:
        if self.error is not None:
            raise self.error
        self.opened.append(item)


def make_app(label: str, package: str = None, activity: str = "run") -> AppItem:
    package = package or label.lower().replace(" ", ".")
    return AppItem(id=label + package, label=label, package_name=package, activity_name=activity)


def make_setting(field_name: str, value: str = "panel") -> SettingItem:
    return SettingItem(id=field_name, field_name=field_name, field_value=value)


@pytest.fixture
def dispatchers():
    pools = Dispatchers.create(io_workers=4, compute_workers=2)
    yield pools
    pools.shutdown()


@pytest_asyncio.fixture
async def scope():
    task_scope = TaskScope("test")
    yield task_scope
    await task_scope.cancel()


@pytest_asyncio.fixture
async def store(tmp_path):
    history_store = HistoryStore(tmp_path / "history.jsonl")
    await history_store.initialize()
    return history_store


class Core:
    """The aggregation core wired with fakes."""

    def __init__(self, tmp_path, store, dispatchers, scope, apps=(), settings=(), files=(),
                 app_error=None, settings_error=None, bus=None):
        self.app_provider = FakeAppProvider(list(apps), error=app_error)
        self.settings_provider = FakeSettingsProvider(list(settings), error=settings_error)
        self.index_service = FakeIndexService(paths=list(files))
        self.store = store
        self.scope = scope
        self.bus = bus

        self.lifecycle = IndexLifecycle(
            self.index_service,
            IndexPaths(database=tmp_path / "files.db", scan_root=tmp_path, temp_dir=tmp_path / "tmp"),
            dispatchers,
            bus=bus,
        )
        self.settings = SettingsSource(self.settings_provider, store, dispatchers, scope)
        self.apps = AppsSource(self.app_provider, store, dispatchers, scope)
        self.files = FilesSource(self.index_service, self.lifecycle, store, dispatchers, scope)
        self.history = HistoryMerger(self.settings, self.apps, self.files)
        self.aggregator = Aggregator(self.settings, self.apps, self.files, self.history,
                                     dispatchers, scope, bus=bus)

    async def load(self):
        await self.settings.load()
        await self.apps.load()
        await self.lifecycle.ensure_built()


@pytest.fixture
def core_factory(tmp_path, store, dispatchers, scope):
    def factory(**kwargs):
        return Core(tmp_path, store, dispatchers, scope, **kwargs)
    return factory
