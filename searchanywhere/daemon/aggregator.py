"""Fan-in of the per-source results into one ranked state."""

import asyncio
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .bus import Message, MessageBus
from .history import HistoryMerger
from .models import LOADING, DisplayItem, Error, Loading, Queries, SourceResult, Success, WeightedItem
from .sources import AppsSource, FilesSource, SettingsSource
from .streams import Dispatchers, StateStream, TaskScope, combine_latest

# Fan-in order, also the tie order of equally weighted items
SOURCE_ORDER = ("settings", "apps", "files")


@dataclass(frozen=True)
class UiState:
    """
    One coherent snapshot for the consumer.

    ``history`` is None only in the placeholder.
    ``loading`` lists the sources that have not produced a catalog yet.
    """
    items: Tuple[WeightedItem, ...] = ()
    history: Optional[Tuple[DisplayItem, ...]] = None
    query: Queries = ()
    files_query: Queries = ()
    loading: Tuple[str, ...] = SOURCE_ORDER
    placeholder: bool = False


PLACEHOLDER = UiState(placeholder=True)


def rank(results: Sequence[SourceResult]) -> Tuple[WeightedItem, ...]:
    """Concatenate the successful results in source order, heaviest first.

    Loading and failed sources contribute nothing. The sort is stable so
    equal weights keep the fan-in order.
    """
    collected: List[WeightedItem] = []
    for result in results:
        if isinstance(result.result, Success):
            collected.extend(result.result.data)
    collected.sort(key=lambda weighted: weighted.weight, reverse=True)
    return tuple(collected)


class Aggregator:
    """
    Combine-latest over the three filtered sources and the merged history.

    Nothing but ``PLACEHOLDER`` is published until every upstream produced a
    value. Each ``Error`` result is reported on the message bus once, however
    many times it is re-emitted with a new query.
    """

    def __init__(self,
                 settings: SettingsSource,
                 apps: AppsSource,
                 files: FilesSource,
                 history: HistoryMerger,
                 dispatchers: Dispatchers,
                 scope: TaskScope,
                 bus: Optional[MessageBus] = None):
        self.settings = settings
        self.apps = apps
        self.files = files
        self.history = history
        self.dispatchers = dispatchers
        self.scope = scope
        self.bus = bus

        self.query: StateStream[Queries] = StateStream(())
        self.state: StateStream[UiState] = StateStream(PLACEHOLDER)

        self._reported: Dict[str, Error] = {}
        self._task: Optional[asyncio.Task] = None
        self.stats = {"recomputes": 0, "errors_reported": 0}

    def set_query(self, queries: Queries) -> None:
        self.query.set(tuple(queries))

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = self.scope.spawn(self._run(), name="aggregator")
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _run(self) -> None:
        updates = combine_latest(
            self.settings.filtered(self.query),
            self.apps.filtered(self.query),
            self.files.filtered(),
            self.history.history(),
        )
        async with aclosing(updates) as combined:
            async for settings, apps, files, history in combined:
                if settings.queries != apps.queries:
                    # One local source has not caught up with a new query yet
                    continue
                if files.queries != settings.queries:
                    # File matches of an earlier query are never shown under a newer one
                    files = SourceResult(queries=files.queries, result=LOADING)
                results = (settings, apps, files)
                self._report_errors(results)

                start = time.perf_counter()
                items = await self.dispatchers.run_compute(rank, results)
                self.stats["recomputes"] += 1
                logger.debug(f"Ranked {len(items)} items in {(time.perf_counter() - start) * 1000:.1f} ms")

                self.state.set(UiState(
                    items=items,
                    history=tuple(history),
                    query=settings.queries,
                    files_query=files.queries,
                    loading=tuple(name for name, r in zip(SOURCE_ORDER, results)
                                  if isinstance(r.result, Loading)),
                ))

    def _report_errors(self, results: Sequence[SourceResult]) -> None:
        for name, result in zip(SOURCE_ORDER, results):
            error = result.result
            if not isinstance(error, Error) or self._reported.get(name) is error:
                continue
            self._reported[name] = error
            self.stats["errors_reported"] += 1
            logger.warning(f"{name} source error: {error.describe()}")
            if self.bus is not None:
                self.bus.emit_nowait(Message(text=error.describe(), type="catalog.error", source=name))
