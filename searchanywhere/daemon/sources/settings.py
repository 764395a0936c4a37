"""OS configuration screens source."""

from typing import Any, Dict, List, Mapping, Optional, Protocol

from ..models import ItemKind, SettingItem
from ..store import HistoryRecord, HistoryStore
from ..streams import Dispatchers, TaskScope
from .base import CatalogSource

SETTING_PREFIX = "ACTION_"

# GNOME control center panels, keyed the same way as the settings actions
DEFAULT_SETTINGS: Dict[str, str] = {
    "ACTION_WIFI_SETTINGS": "gnome-control-center wifi",
    "ACTION_NETWORK_SETTINGS": "gnome-control-center network",
    "ACTION_BLUETOOTH_SETTINGS": "gnome-control-center bluetooth",
    "ACTION_DISPLAY_SETTINGS": "gnome-control-center display",
    "ACTION_SOUND_SETTINGS": "gnome-control-center sound",
    "ACTION_POWER_SETTINGS": "gnome-control-center power",
    "ACTION_PRINTERS_SETTINGS": "gnome-control-center printers",
    "ACTION_KEYBOARD_SETTINGS": "gnome-control-center keyboard",
    "ACTION_MOUSE_SETTINGS": "gnome-control-center mouse",
    "ACTION_PRIVACY_SETTINGS": "gnome-control-center privacy",
    "ACTION_DATE_SETTINGS": "gnome-control-center datetime",
    "ACTION_LOCALE_SETTINGS": "gnome-control-center region",
    "ACTION_ACCESSIBILITY_SETTINGS": "gnome-control-center universal-access",
    "ACTION_APPLICATION_SETTINGS": "gnome-control-center applications",
    "ACTION_USER_SETTINGS": "gnome-control-center users",
    "ACTION_WALLPAPER_SETTINGS": "gnome-control-center background",
}


class SettingsProvider(Protocol):
    def list_settings(self) -> List[SettingItem]:
        ...


class StaticSettingsProvider:
    """Settings from a fixed table of action names to commands."""

    def __init__(self, extra: Optional[Mapping[str, str]] = None):
        self.table = dict(DEFAULT_SETTINGS)
        self.table.update(extra or {})

    def list_settings(self) -> List[SettingItem]:
        return [
            SettingItem(id=name, field_name=name, field_value=value)
            for name, value in self.table.items()
            if name.startswith(SETTING_PREFIX)
        ]


class SettingsSource(CatalogSource[SettingItem]):
    kind = ItemKind.SETTING
    name = "settings"
    error_message = "Error: failed to read settings"

    def __init__(self, provider: SettingsProvider, store: HistoryStore,
                 dispatchers: Dispatchers, scope: TaskScope):
        super().__init__(store, dispatchers, scope)
        self.provider = provider

    def fetch(self) -> List[SettingItem]:
        return self.provider.list_settings()

    def to_payload(self, item: SettingItem) -> Dict[str, Any]:
        return {"field_name": item.field_name, "field_value": item.field_value}

    def from_record(self, record: HistoryRecord) -> Optional[SettingItem]:
        return SettingItem(
            id=record.key,
            field_name=record.payload.get("field_name", record.key),
            field_value=record.payload.get("field_value", ""),
        )
