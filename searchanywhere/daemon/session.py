"""The user-facing search session: query input, permission flow and item actions."""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Union, assert_never

from loguru import logger

from .aggregator import Aggregator
from .history import HistoryMerger
from .indexers import IndexLifecycle
from .models import DisplayItem, Queries
from .opener import ItemActivator
from .query import parse
from .sources import FilesSource
from .streams import Dispatchers


class PermissionStatus(Enum):
    GRANTED = "granted"
    DENIED = "denied"
    SHOW_RATIONALE = "show_rationale"


@dataclass(frozen=True)
class PermissionOutcome:
    """
    Result of a permission request.

    ``SHOW_RATIONALE`` outcomes carry ``retry``, which asks again once the
    user has seen why access is needed.
    """
    status: PermissionStatus
    retry: Optional[Callable[[], Awaitable["PermissionOutcome"]]] = None


GRANTED = PermissionOutcome(PermissionStatus.GRANTED)
DENIED = PermissionOutcome(PermissionStatus.DENIED)


class PermissionGate(Protocol):
    async def request(self) -> PermissionOutcome:
        ...


class ScanRootPermissionGate:
    """Access to the scan root, with one rationale round before denying."""

    def __init__(self, scan_root: Path, dispatchers: Dispatchers):
        self.scan_root = scan_root
        self.dispatchers = dispatchers
        self._rationale_shown = False

    async def request(self) -> PermissionOutcome:
        if await self.is_granted():
            return GRANTED
        if not self._rationale_shown:
            self._rationale_shown = True
            return PermissionOutcome(PermissionStatus.SHOW_RATIONALE, retry=self._retry)
        return DENIED

    async def _retry(self) -> PermissionOutcome:
        return GRANTED if await self.is_granted() else DENIED

    async def is_granted(self) -> bool:
        """Check access without any user interaction."""
        return await self.dispatchers.run_io(os.access, self.scan_root, os.R_OK | os.X_OK)


@dataclass(frozen=True)
class Open:
    item: DisplayItem


@dataclass(frozen=True)
class DeleteFromHistory:
    item: DisplayItem


ItemAction = Union[Open, DeleteFromHistory]

RationaleCallback = Callable[[], Awaitable[bool]]


class SearchSession:
    """
    Routes user input to the aggregation core.

    The query is parsed once and fanned out to the aggregator; file searches
    are only issued once access to the scan root was granted.
    """

    def __init__(self,
                 aggregator: Aggregator,
                 files: FilesSource,
                 lifecycle: IndexLifecycle,
                 history: HistoryMerger,
                 activator: ItemActivator,
                 gate: PermissionGate,
                 show_rationale: Optional[RationaleCallback] = None):
        self.aggregator = aggregator
        self.files = files
        self.lifecycle = lifecycle
        self.history = history
        self.activator = activator
        self.gate = gate
        self.show_rationale = show_rationale
        self.files_allowed = False

    def on_search_changed(self, text: str) -> Queries:
        queries = parse(text)
        self.aggregator.set_query(queries)
        if self.files_allowed:
            self.files.search(queries)
        return queries

    async def on_search_focused(self) -> PermissionStatus:
        outcome = await self.gate.request()
        while outcome.status is PermissionStatus.SHOW_RATIONALE:
            accepted = await self.show_rationale() if self.show_rationale is not None else False
            if not accepted or outcome.retry is None:
                outcome = DENIED
                break
            outcome = await outcome.retry()

        if outcome.status is not PermissionStatus.GRANTED:
            logger.info("Scan root access denied, file search disabled")
            self.files_allowed = False
            return outcome.status

        self.files_allowed = True
        await self.lifecycle.ensure_built()
        self.refresh_files()
        return outcome.status

    async def on_item_action(self, action: ItemAction) -> bool:
        if isinstance(action, Open):
            return await self.activator.open(action.item)
        elif isinstance(action, DeleteFromHistory):
            return await self.history.forget(action.item)
        else:
            assert_never(action)

    async def on_reindex(self) -> None:
        await self.lifecycle.rebuild()
        self.refresh_files()

    def refresh_files(self) -> None:
        # Searches issued before the index was ready returned nothing
        if self.files_allowed:
            self.files.search(self.aggregator.query.value)
