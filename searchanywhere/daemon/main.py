"""Main daemon process for SearchAnywhere."""

import asyncio
import signal
import sys
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Optional

import psutil
from loguru import logger

from .. import __version__
from .aggregator import Aggregator
from .bus import Message, MessageBus
from .config import Config
from .history import HistoryMerger
from .indexers import IndexLifecycle, IndexPaths, IndexService, LocateIndexService
from .models import ItemKind, describe_index_state
from .opener import CommandOpener, ItemActivator, ItemOpener
from .session import RationaleCallback, ScanRootPermissionGate, SearchSession
from .sources import (AppCatalogProvider, AppsSource, DesktopEntryProvider, FilesSource, SettingsProvider,
                      SettingsSource, StaticSettingsProvider)
from .store import HistoryStore
from .streams import Dispatchers, TaskScope

VERSION = __version__


class SearchAnywhereDaemon:
    """Wires the sources, index, history and aggregator together."""

    def __init__(self,
                 config: Config,
                 app_provider: Optional[AppCatalogProvider] = None,
                 settings_provider: Optional[SettingsProvider] = None,
                 index_service: Optional[IndexService] = None,
                 opener: Optional[ItemOpener] = None,
                 show_rationale: Optional[RationaleCallback] = None):
        self.config = config
        self.start_time = datetime.now(timezone.utc)
        paths = config.paths

        # Core services
        self.bus = MessageBus(capacity=config.performance.message_capacity)
        self.dispatchers = Dispatchers.create(
            io_workers=config.performance.io_workers,
            compute_workers=config.performance.compute_workers,
        )
        self.scope = TaskScope("daemon")
        self.store = HistoryStore(paths.history_path, config.history.max_entries_per_kind)

        self.index_service = index_service or LocateIndexService()
        self.lifecycle = IndexLifecycle(
            self.index_service,
            IndexPaths(database=paths.database_path, scan_root=paths.scan_root, temp_dir=paths.temp_path),
            self.dispatchers,
            bus=self.bus,
        )

        # Sources
        self.settings = SettingsSource(
            settings_provider or StaticSettingsProvider(config.settings.extra),
            self.store, self.dispatchers, self.scope,
        )
        self.apps = AppsSource(
            app_provider or DesktopEntryProvider(config.apps.desktop_dirs),
            self.store, self.dispatchers, self.scope,
        )
        self.files = FilesSource(self.index_service, self.lifecycle, self.store, self.dispatchers, self.scope)

        self.history = HistoryMerger(self.settings, self.apps, self.files)
        self.aggregator = Aggregator(
            self.settings, self.apps, self.files, self.history, self.dispatchers, self.scope, bus=self.bus,
        )
        self.gate = ScanRootPermissionGate(paths.scan_root, self.dispatchers)
        self.activator = ItemActivator(
            opener or CommandOpener(paths.scan_root), self.history, self.dispatchers, bus=self.bus,
        )
        self.session = SearchSession(
            self.aggregator, self.files, self.lifecycle, self.history, self.activator, self.gate,
            show_rationale=show_rationale,
        )

        self.startup_index: Optional[asyncio.Task] = None
        self.messages: Deque[Message] = deque(maxlen=50)
        self.stats = {"message_count": 0}

    async def start(self, prepare_index: bool = True) -> None:
        """Start all daemon services.

        With ``prepare_index`` the index is built or adopted in the
        background, otherwise the caller runs ``prepare_index()`` itself.
        """
        logger.info("Starting SearchAnywhere daemon...")

        await self.bus.start()
        self.bus.subscribe("*", self._on_message)

        await self.store.initialize()
        self.aggregator.start()
        await asyncio.gather(self.settings.load(), self.apps.load())

        if prepare_index:
            self.startup_index = self.scope.spawn(self.prepare_index(), name="startup-index")
        logger.info("SearchAnywhere daemon started successfully")

    async def prepare_index(self, rebuild: Optional[bool] = None) -> bool:
        """Enable file search if the scan root is readable; rebuild or adopt the index."""
        if not await self.gate.is_granted():
            logger.info(f"No access to {self.config.paths.scan_root}, skipping index")
            return False

        if rebuild is None:
            rebuild = self.config.index.reindex_on_startup

        self.session.files_allowed = True
        if rebuild:
            await self.session.on_reindex()
        else:
            await self.lifecycle.ensure_built()
            self.session.refresh_files()
        return True

    async def wait_until_stopped(self, stopping: asyncio.Event) -> None:
        """Block until ``stopping`` is set; a failed startup index build is re-raised."""
        stop = asyncio.ensure_future(stopping.wait())
        try:
            startup = self.startup_index
            if startup is not None:
                done, _ = await asyncio.wait({stop, startup}, return_when=asyncio.FIRST_COMPLETED)
                if startup in done and not startup.cancelled():
                    # Raises IndexBuildError for environment failures
                    startup.result()
            await stop
        finally:
            stop.cancel()

    async def stop(self) -> None:
        """Stop all daemon services."""
        logger.info("Stopping SearchAnywhere daemon...")

        await self.aggregator.stop()
        await self.scope.cancel()
        await self.bus.stop()
        self.dispatchers.shutdown()

    async def _on_message(self, message: Message) -> None:
        self.stats["message_count"] += 1
        self.messages.append(message)

    def get_status(self) -> Dict[str, Any]:
        """Get daemon status and statistics."""
        process = psutil.Process()
        uptime = (datetime.now(timezone.utc) - self.start_time).total_seconds()

        return {
            "status": "running",
            "version": VERSION,
            "uptime": f"{uptime:.0f}s",
            "index": {
                "state": describe_index_state(self.lifecycle.state.value),
                "indexed_count": self.lifecycle.indexed_count.value,
                "builds": self.lifecycle.build_count,
            },
            "history": {kind.value: len(self.store.entries(kind)) for kind in ItemKind},
            "stats": {
                "message_count": self.stats["message_count"],
                "bus": self.bus.get_stats(),
                "memory_mb": process.memory_info().rss / 1024 / 1024,
                "cpu_percent": process.cpu_percent(),
            },
            "config": {
                "scan_root": str(self.config.paths.scan_root),
                "database": str(self.config.paths.database_path),
                "reindex_on_startup": self.config.index.reindex_on_startup,
            },
        }


def setup_logging(log_dir: Path, level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
    )

    # Also log to file
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "daemon.log",
        rotation="1 day",
        retention="7 days",
        level="DEBUG",
    )


async def main(config_path: Optional[str] = None,
               on_message: Optional[Callable[[Message], Any]] = None) -> None:
    """Main entry point for the daemon."""
    try:
        config = Config.load(Path(config_path) if config_path else None)
    except FileNotFoundError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config.paths.data_dir / "logs")

    daemon = SearchAnywhereDaemon(config)
    stopping = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stopping.set)

    try:
        await daemon.start()
        if on_message is not None:
            daemon.bus.subscribe("*", on_message)
        await daemon.wait_until_stopped(stopping)
        logger.info("Shutdown signal received")
    except Exception as e:
        logger.exception(f"Daemon error: {e}")
        raise
    finally:
        await daemon.stop()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
