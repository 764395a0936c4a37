"""Application catalog read from XDG ``.desktop`` entries."""

import configparser
import re
from pathlib import Path
from typing import Iterable, List, Optional

from loguru import logger

from ..models import AppItem

_FIELD_CODE = re.compile(r"%[fFuUdDnNickvm]")


def strip_field_codes(exec_line: str) -> str:
    """Remove ``%f``/``%U``-style placeholders from an ``Exec`` value."""
    return _FIELD_CODE.sub("", exec_line).replace("%%", "%").strip()


class DesktopEntryProvider:
    """
    Reads launchable applications from desktop entry directories.

    The package name is the desktop file id, the activity name its ``Exec``
    command. Directories that cannot be read raise ``PermissionError``.
    """

    def __init__(self, directories: Iterable[Path]):
        self.directories = [Path(d) for d in directories]

    def list_apps(self) -> List[AppItem]:
        apps = []
        for path in self._entries():
            app = self._load(path)
            if app is not None:
                apps.append(app)
        apps.sort(key=lambda a: a.label.casefold())
        return apps

    def resolve(self, package_name: str, activity_name: str) -> Optional[AppItem]:
        for directory in self.directories:
            path = directory / package_name
            if path.is_file():
                app = self._load(path)
                if app is not None and app.activity_name == activity_name:
                    return app
        return None

    def _entries(self) -> List[Path]:
        entries = []
        for directory in self.directories:
            if not directory.is_dir():
                continue
            # Raises PermissionError for unreadable directories
            entries.extend(sorted(p for p in directory.iterdir() if p.suffix == ".desktop"))
        return entries

    def _load(self, path: Path) -> Optional[AppItem]:
        parser = configparser.ConfigParser(interpolation=None, strict=False)
        parser.optionxform = str
        try:
            parser.read(path, encoding="utf-8")
        except (configparser.Error, UnicodeDecodeError) as e:
            logger.debug(f"Skipping malformed desktop entry {path}: {e}")
            return None

        if not parser.has_section("Desktop Entry"):
            return None
        entry = parser["Desktop Entry"]

        if entry.get("Type", "Application") != "Application":
            return None
        if entry.get("NoDisplay", "false").lower() == "true" or entry.get("Hidden", "false").lower() == "true":
            return None

        label = entry.get("Name")
        exec_line = entry.get("Exec")
        if not label or not exec_line:
            return None

        package_name = path.name
        return AppItem(
            id=label + package_name,
            label=label,
            package_name=package_name,
            activity_name=exec_line,
            icon=entry.get("Icon"),
        )
