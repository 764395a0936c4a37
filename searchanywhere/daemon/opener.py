"""Activation of selected items."""

import shlex
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, assert_never

from loguru import logger

from .bus import Message, MessageBus
from .history import HistoryMerger
from .models import AppItem, DisplayItem, FileItem, SettingItem
from .sources.desktop import strip_field_codes
from .streams import Dispatchers

FILE_OPENER = "xdg-open"


class ItemOpener(Protocol):
    def open(self, item: DisplayItem) -> None:
        """Launch the item; raises OSError or ValueError when it cannot be opened."""
        ...


def launch_command(item: DisplayItem, scan_root: Path) -> List[str]:
    """The command that opens ``item``."""
    if isinstance(item, AppItem):
        return shlex.split(strip_field_codes(item.activity_name))
    elif isinstance(item, SettingItem):
        return shlex.split(item.field_value)
    elif isinstance(item, FileItem):
        return [FILE_OPENER, str(scan_root / item.display_name)]
    else:
        assert_never(item)


class CommandOpener:
    """Starts the launch command of an item as a detached process."""

    def __init__(self, scan_root: Path):
        self.scan_root = scan_root

    def open(self, item: DisplayItem) -> None:
        command = launch_command(item, self.scan_root)
        if not command:
            raise ValueError(f"nothing to launch for {item.display_name!r}")
        if isinstance(item, FileItem) and not (self.scan_root / item.display_name).exists():
            raise FileNotFoundError(f"{item.display_name} no longer exists")

        logger.debug(f"Launching: {command}")
        subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )


class ItemActivator:
    """Opens items off the loop; success lands in history, failure on the bus."""

    def __init__(self, opener: ItemOpener, history: HistoryMerger, dispatchers: Dispatchers,
                 bus: Optional[MessageBus] = None):
        self.opener = opener
        self.history = history
        self.dispatchers = dispatchers
        self.bus = bus

    async def open(self, item: DisplayItem) -> bool:
        try:
            await self.dispatchers.run_io(self.opener.open, item)
        except (OSError, ValueError) as e:
            logger.warning(f"Opening {item.display_name!r} failed: {e}")
            if self.bus is not None:
                self.bus.emit_nowait(Message(
                    text=f"Could not open {item.display_name}",
                    type="open.failed",
                    source="opener",
                ))
            return False

        logger.info(f"Opened {item.display_name!r}")
        await self.history.record_use(item)
        return True
