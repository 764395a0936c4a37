"""Merges the per-kind histories into one recency-ordered list."""

import asyncio
from typing import AsyncIterable, AsyncIterator, List, Sequence, assert_never

from .models import AppItem, DisplayItem, FileItem, HistoryEntry, SettingItem
from .sources import AppsSource, FilesSource, SettingsSource
from .streams import combine_latest


def merge_entries(groups: Sequence[Sequence[HistoryEntry]]) -> List[DisplayItem]:
    """Flatten history groups, most recent first; ties keep group order."""
    flat = [entry for group in groups for entry in group]
    flat.sort(key=lambda entry: entry.updated_at_ms, reverse=True)
    return [entry.item for entry in flat]


async def merge(*streams: AsyncIterable[List[HistoryEntry]]) -> AsyncIterator[List[DisplayItem]]:
    async for groups in combine_latest(*streams):
        yield merge_entries(groups)


class HistoryMerger:
    """History of settings, apps and files as one stream, plus use/forget routing."""

    def __init__(self, settings: SettingsSource, apps: AppsSource, files: FilesSource):
        self.settings = settings
        self.apps = apps
        self.files = files

    def history(self) -> AsyncIterator[List[DisplayItem]]:
        return merge(self.settings.history(), self.apps.history(), self.files.history())

    def record_use(self, item: DisplayItem) -> asyncio.Task:
        """Upsert the item with the current time."""
        if isinstance(item, SettingItem):
            return self.settings.save_to_history(item)
        elif isinstance(item, AppItem):
            return self.apps.save_to_history(item)
        elif isinstance(item, FileItem):
            return self.files.save_to_history(item)
        else:
            assert_never(item)

    def forget(self, item: DisplayItem) -> asyncio.Task:
        if isinstance(item, SettingItem):
            return self.settings.delete_from_history(item)
        elif isinstance(item, AppItem):
            return self.apps.delete_from_history(item)
        elif isinstance(item, FileItem):
            return self.files.delete_from_history(item)
        else:
            assert_never(item)
