"""Build/rebuild lifecycle of the filesystem index.

States: Unbuilt -> Building -> Ready, Building -> Failed, Failed -> Building
and Ready -> Building on an explicit rebuild. At most one build runs at a time;
concurrent requests join the build in flight.
"""

import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from ..bus import Message, MessageBus
from ..models import Building, Failed, IndexState, Ready, Unbuilt, UnixTimeMs, now_ms
from ..streams import Dispatchers, StateStream
from .locate import IndexService


class IndexBuildError(RuntimeError):
    """An index build failed for a reason other than missing permissions."""


@dataclass(frozen=True)
class IndexPaths:
    database: Path
    scan_root: Path
    temp_dir: Path


def is_permission_denied(error: BaseException) -> bool:
    if isinstance(error, PermissionError):
        return True
    return "permission denied" in str(error).lower()


class IndexLifecycle:
    """Owns the ``IndexState`` and every call that builds the index."""

    def __init__(self,
                 service: IndexService,
                 paths: IndexPaths,
                 dispatchers: Dispatchers,
                 bus: Optional[MessageBus] = None,
                 clock: Callable[[], UnixTimeMs] = now_ms):
        self.service = service
        self.paths = paths
        self.dispatchers = dispatchers
        self.bus = bus
        self._clock = clock

        self.state: StateStream[IndexState] = StateStream(Unbuilt())
        self.indexed_count: StateStream[int] = StateStream(0)

        self._inflight: Optional[asyncio.Future] = None
        self._last_built_at: UnixTimeMs = 0
        self.build_count = 0

    @property
    def is_ready(self) -> bool:
        return isinstance(self.state.value, Ready)

    async def ensure_built(self) -> None:
        """Build the index unless it is ready, building, or already on disk."""
        current = self.state.value
        if isinstance(current, Ready):
            return
        if self._building:
            await self._join_inflight()
            return

        exists = await self.dispatchers.run_io(os.path.isfile, self.paths.database)
        if self._building:
            # A rebuild started while the artifact was being checked
            await self._join_inflight()
            return
        if self.is_ready:
            return
        if exists:
            await self._adopt_existing()
            return

        await self._start_build()

    async def rebuild(self) -> None:
        """Rebuild unconditionally, joining a build that is already running."""
        await self._start_build()

    @property
    def _building(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def _join_inflight(self) -> None:
        if self._inflight is not None:
            await asyncio.shield(self._inflight)

    async def _start_build(self) -> None:
        if not self._building:
            self._inflight = asyncio.ensure_future(self._build())
        await asyncio.shield(self._inflight)

    async def _adopt_existing(self) -> None:
        try:
            count = await self.dispatchers.run_io(self.service.stat_indexed_count, self.paths.database)
            mtime = await self.dispatchers.run_io(os.path.getmtime, self.paths.database)
        except Exception as e:
            if not is_permission_denied(e):
                raise
            self._fail(f"permission denied reading {self.paths.database}")
            return

        if self._building:
            await self._join_inflight()
            return
        self._mark_ready(count, int(mtime * 1000))
        logger.info(f"Using existing index at {self.paths.database} ({count} files)")

    async def _build(self) -> None:
        self.state.set(Building())
        self.build_count += 1
        logger.info(f"Building file index for {self.paths.scan_root}")

        start = time.perf_counter()
        try:
            await self.dispatchers.run_io(
                self.service.build,
                self.paths.database,
                self.paths.scan_root,
                self.paths.temp_dir,
            )
            count = await self.dispatchers.run_io(self.service.stat_indexed_count, self.paths.database)
        except Exception as e:
            if is_permission_denied(e):
                self._fail(f"permission denied: {e}")
                return
            self.state.set(Failed(str(e) or type(e).__name__))
            raise IndexBuildError(f"index build failed: {e}") from e

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Index build: {duration_ms:.0f} ms, {count} files")
        self._mark_ready(count, self._clock())

    def _mark_ready(self, count: int, built_at: UnixTimeMs) -> None:
        # Build timestamps never go backwards
        built_at = max(built_at, self._last_built_at + 1)
        self._last_built_at = built_at
        self.indexed_count.set(count)
        self.state.set(Ready(built_at_ms=built_at, indexed_count=count))

    def _fail(self, reason: str) -> None:
        logger.error(f"Index build failed: {reason}")
        self.state.set(Failed(reason))
        if self.bus is not None:
            self.bus.emit_nowait(Message(
                text="File index unavailable: permission denied",
                type="index.failed",
                source="index",
            ))
