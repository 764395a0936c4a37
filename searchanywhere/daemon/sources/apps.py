"""Installed applications source."""

from dataclasses import replace
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Set, Tuple

from loguru import logger

from ..models import AppItem, HistoryEntry, ItemKind
from ..store import HistoryRecord, HistoryStore
from ..streams import Dispatchers, TaskScope
from .base import CatalogSource


class AppCatalogProvider(Protocol):
    """The installed-application catalog of the host."""

    def list_apps(self) -> List[AppItem]:
        ...

    def resolve(self, package_name: str, activity_name: str) -> Optional[AppItem]:
        """Look up a still installed app, None if it is gone."""
        ...


def dedupe_apps(apps: List[AppItem]) -> List[AppItem]:
    """Some providers report the same app twice, keep the first."""
    seen: Set[str] = set()
    unique = []
    for app in apps:
        if app.id in seen:
            continue
        seen.add(app.id)
        unique.append(app)
    return unique


class AppsSource(CatalogSource[AppItem]):
    """
    Apps catalog plus app history.

    History entries are resolved against the provider on every read; entries
    of uninstalled apps are dropped and deleted from the store.
    """

    kind = ItemKind.APP
    name = "apps"
    error_message = "failed to read apps"

    def __init__(self, provider: AppCatalogProvider, store: HistoryStore,
                 dispatchers: Dispatchers, scope: TaskScope):
        super().__init__(store, dispatchers, scope)
        self.provider = provider
        self._pending_deletes: Set[str] = set()

    def fetch(self) -> List[AppItem]:
        return dedupe_apps(self.provider.list_apps())

    def to_payload(self, item: AppItem) -> Dict[str, Any]:
        return {
            "label": item.label,
            "package_name": item.package_name,
            "activity_name": item.activity_name,
        }

    def from_record(self, record: HistoryRecord) -> Optional[AppItem]:
        payload = record.payload
        return AppItem(
            id=record.key,
            label=payload.get("label", ""),
            package_name=payload.get("package_name", ""),
            activity_name=payload.get("activity_name", ""),
        )

    async def history(self) -> AsyncIterator[List[HistoryEntry]]:
        async for records in self.store.history(self.kind):
            entries, stale = await self.dispatchers.run_io(self._resolve_entries, records)
            for key in stale:
                self._forget_uninstalled(key)
            yield entries

    def _resolve_entries(self, records: List[HistoryRecord]) -> Tuple[List[HistoryEntry], List[str]]:
        entries = []
        stale = []
        for record in records:
            item = self.from_record(record)
            resolved = self.provider.resolve(item.package_name, item.activity_name)
            if resolved is None:
                stale.append(record.key)
                continue
            entries.append(HistoryEntry(
                item=replace(item, icon=resolved.icon),
                updated_at_ms=record.updated_at_ms,
            ))
        return entries, stale

    def _forget_uninstalled(self, key: str) -> None:
        # The same stale entry can be read again before its delete lands
        if key in self._pending_deletes or self.store.get(self.kind, key) is None:
            return
        self._pending_deletes.add(key)
        logger.debug(f"Dropping uninstalled app from history: {key}")

        task = self.scope.spawn(self.store.delete(self.kind, key), name="history-delete-app")
        task.add_done_callback(lambda _: self._pending_deletes.discard(key))
