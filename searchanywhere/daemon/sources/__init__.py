from .apps import AppCatalogProvider, AppsSource
from .desktop import DesktopEntryProvider
from .files import FilesSource
from .settings import SettingsProvider, SettingsSource, StaticSettingsProvider

__all__ = [
    "AppCatalogProvider",
    "AppsSource",
    "DesktopEntryProvider",
    "FilesSource",
    "SettingsProvider",
    "SettingsSource",
    "StaticSettingsProvider",
]
