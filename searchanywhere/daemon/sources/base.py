"""Shared plumbing for the catalog adapters."""

import asyncio
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, TypeVar

from loguru import logger

from ..filtering import FilteredItems
from ..models import (LOADING, CatalogResult, Error, HistoryEntry, ItemKind, Queries, SourceResult,
                      Success, map_result)
from ..store import HistoryRecord, HistoryStore
from ..streams import Dispatchers, StateStream, TaskScope, combine_latest

T = TypeVar("T")


class HistoryBacked(Generic[T]):
    """History access for one item kind."""

    kind: ItemKind

    def __init__(self, store: HistoryStore, dispatchers: Dispatchers, scope: TaskScope):
        self.store = store
        self.dispatchers = dispatchers
        self.scope = scope

    def to_payload(self, item: T) -> Dict[str, Any]:
        raise NotImplementedError

    def from_record(self, record: HistoryRecord) -> Optional[T]:
        raise NotImplementedError

    async def history(self) -> AsyncIterator[List[HistoryEntry]]:
        """Most recent first, re-emitted whenever this kind's history changes."""
        async for records in self.store.history(self.kind):
            yield self._entries(records)

    def _entries(self, records: List[HistoryRecord]) -> List[HistoryEntry]:
        entries = []
        for record in records:
            item = self.from_record(record)
            if item is not None:
                entries.append(HistoryEntry(item=item, updated_at_ms=record.updated_at_ms))
        return entries

    def save_to_history(self, item: T) -> "asyncio.Task[HistoryRecord]":
        return self.scope.spawn(
            self.store.upsert(self.kind, item.key, self.to_payload(item)),
            name=f"history-save-{self.kind.value}",
        )

    def delete_from_history(self, item: T) -> "asyncio.Task[bool]":
        return self.scope.spawn(
            self.store.delete(self.kind, item.key),
            name=f"history-delete-{self.kind.value}",
        )


class CatalogSource(HistoryBacked[T]):
    """
    A source whose catalog is fetched once and filtered locally per query.

    The catalog starts as ``LOADING`` and becomes ``Success`` or ``Error``
    after ``load()``. Failures listed in ``recoverable`` become ``Error``
    results instead of propagating.
    """

    name: str = "catalog"
    error_message: str = "failed to read catalog"
    recoverable: tuple = (PermissionError, OSError)

    def __init__(self, store: HistoryStore, dispatchers: Dispatchers, scope: TaskScope):
        super().__init__(store, dispatchers, scope)
        self.catalog: StateStream[CatalogResult] = StateStream(LOADING)

    def fetch(self) -> List[T]:
        """Blocking catalog read, runs on the io pool."""
        raise NotImplementedError

    async def load(self) -> CatalogResult:
        try:
            items = await self.dispatchers.run_io(self.fetch)
            result: CatalogResult = Success(items)
            logger.info(f"Loaded {len(items)} {self.name}")
        except self.recoverable as e:
            logger.warning(f"Reading {self.name} failed: {e}")
            result = Error(self.error_message, e)
        self.catalog.set(result)
        return result

    async def filtered(self, queries: StateStream[Queries]) -> AsyncIterator[SourceResult]:
        """Filter the catalog against every new query or catalog value."""
        async for catalog, current in combine_latest(self.catalog, queries):
            yield SourceResult(
                queries=current,
                result=map_result(catalog, lambda items: FilteredItems(items, current)),
            )
