"""Indexed filesystem source."""

import asyncio
import time
from typing import Any, AsyncIterator, Dict, Optional, Sequence

from loguru import logger

from ..filtering import FilteredItems
from ..indexers import IndexLifecycle, IndexService
from ..models import (LOADING, CatalogResult, Error, FileItem, ItemKind, Queries, SearchQuery,
                      SourceResult, Success, map_result)
from ..query import to_index_arguments
from ..store import HistoryRecord, HistoryStore
from ..streams import Dispatchers, StateStream, TaskScope
from .base import HistoryBacked


class FilesSource(HistoryBacked[FileItem]):
    """
    Searches the filesystem index and keeps file history.

    Searches are numbered in issue order and run one at a time. A result is
    only published if no newer search was issued meanwhile, so a slow old
    search can never overwrite the results of a newer one. Until the index is
    ready every search succeeds with no files.
    """

    kind = ItemKind.FILE

    def __init__(self, service: IndexService, lifecycle: IndexLifecycle, store: HistoryStore,
                 dispatchers: Dispatchers, scope: TaskScope):
        super().__init__(store, dispatchers, scope)
        self.service = service
        self.lifecycle = lifecycle
        self.results: StateStream[SourceResult] = StateStream(SourceResult(queries=(), result=LOADING))

        self._issued = 0
        self._search_lock = asyncio.Lock()
        self.discarded = 0

    @property
    def latest_sequence(self) -> int:
        return self._issued

    def search(self, queries: Sequence[SearchQuery]) -> "asyncio.Task[None]":
        """Issue a search; returns the task that publishes its result."""
        self._issued += 1
        return self.scope.spawn(self._run_search(self._issued, tuple(queries)), name="files-search")

    async def _run_search(self, sequence: int, queries: Queries) -> None:
        async with self._search_lock:
            if sequence != self._issued:
                self._discard(sequence)
                return

            result = await self._query_index(queries)

            if sequence != self._issued:
                self._discard(sequence)
                return
            self.results.set(SourceResult(queries=queries, result=result))

    async def _query_index(self, queries: Queries) -> CatalogResult:
        if not queries:
            return Success([])

        if not self.lifecycle.is_ready:
            # The index may still be building; never block the search path on it
            logger.debug("File search skipped: index not ready")
            return Success([])

        terms, include_flags = to_index_arguments(queries)
        start = time.perf_counter()
        try:
            files = await self.dispatchers.run_io(
                self.service.search,
                self.lifecycle.paths.database,
                terms,
                include_flags,
            )
        except Exception as e:
            logger.warning(f"File search failed: {e}")
            return Error("failed to search files", e)

        logger.debug(f"Index search: {(time.perf_counter() - start) * 1000:.1f} ms, {len(files)} files")
        return Success(list(files))

    def _discard(self, sequence: int) -> None:
        self.discarded += 1
        logger.debug(f"Discarding superseded file search #{sequence} (latest #{self._issued})")

    async def filtered(self) -> AsyncIterator[SourceResult]:
        """Weigh the latest search result; files are already matched by the index."""
        async for current in self.results:
            yield SourceResult(
                queries=current.queries,
                result=map_result(
                    current.result,
                    lambda paths, q=current.queries: FilteredItems([FileItem(p) for p in paths], q,
                                                                   prefiltered=True),
                ),
            )

    def to_payload(self, item: FileItem) -> Dict[str, Any]:
        return {}

    def from_record(self, record: HistoryRecord) -> Optional[FileItem]:
        return FileItem(record.key)
