"""Data models shared by the search sources, history and aggregation."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, Optional, Tuple, TypeVar, Union, assert_never

T = TypeVar("T")
R = TypeVar("R")

UnixTimeMs = int


def now_ms() -> UnixTimeMs:
    """Current wall clock time in unix milliseconds."""
    return int(time.time() * 1000)


class MatchType(Enum):
    """Whether a term must or must not appear in a display name."""
    INCLUDE = "include"
    EXCLUDE = "exclude"


@dataclass(frozen=True)
class SearchQuery:
    """One parsed token of the query language."""
    term: str
    match_type: MatchType = MatchType.INCLUDE


Queries = Tuple[SearchQuery, ...]


class ItemKind(Enum):
    """The closed set of item kinds the launcher can show."""
    SETTING = "setting"
    APP = "app"
    FILE = "file"


def humanize_field_name(field_name: str) -> str:
    """Turn ``ACTION_WIFI_SETTINGS`` into ``Wifi Settings``.

    The first underscore separated part is a namespace prefix and is dropped.
    """
    parts = field_name.lower().split("_")[1:]
    return " ".join(part[:1].upper() + part[1:] for part in parts)


@dataclass(frozen=True)
class AppItem:
    """An installed, launchable application."""
    id: str
    label: str
    package_name: str
    activity_name: str
    icon: Optional[str] = field(default=None, compare=False)

    @property
    def display_name(self) -> str:
        return self.label

    @property
    def key(self) -> str:
        return self.id


@dataclass(frozen=True)
class SettingItem:
    """An OS configuration screen."""
    id: str
    field_name: str
    field_value: str
    display_name: str = field(init=False)

    def __post_init__(self):
        # Derived once, the display name never changes for an item
        object.__setattr__(self, "display_name", humanize_field_name(self.field_name))

    @property
    def key(self) -> str:
        return self.id


@dataclass(frozen=True)
class FileItem:
    """A file path relative to the scan root."""
    display_name: str

    @property
    def key(self) -> str:
        return self.display_name


DisplayItem = Union[SettingItem, AppItem, FileItem]


def item_kind(item: DisplayItem) -> ItemKind:
    """Exhaustive mapping from an item to its kind."""
    if isinstance(item, SettingItem):
        return ItemKind.SETTING
    elif isinstance(item, AppItem):
        return ItemKind.APP
    elif isinstance(item, FileItem):
        return ItemKind.FILE
    else:
        assert_never(item)


@dataclass(frozen=True)
class WeightedItem(Generic[T]):
    """A matching item with its relevance weight for the current query."""
    weight: int
    item: T


class Loading:
    """The source has not produced its first result yet."""

    _instance: Optional["Loading"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "LOADING"


LOADING = Loading()


@dataclass(frozen=True)
class Success(Generic[T]):
    data: T


@dataclass(frozen=True, eq=False)
class Error:
    """A recoverable source failure.

    Equality is identity: every failure is a distinct occurrence.
    """
    message: Optional[str] = None
    cause: Optional[BaseException] = None

    def describe(self) -> str:
        if self.message:
            return self.message
        if self.cause is not None:
            return str(self.cause) or type(self.cause).__name__
        return "unknown error"


CatalogResult = Union[Loading, Success[T], Error]


def map_result(result: "CatalogResult", transform: Callable[[Any], R]) -> "CatalogResult":
    """Apply ``transform`` to the data of a success, pass anything else through."""
    if isinstance(result, Success):
        return Success(transform(result.data))
    return result


@dataclass(frozen=True)
class SourceResult(Generic[T]):
    """A source result tagged with the query it was produced for."""
    queries: Queries
    result: CatalogResult


@dataclass(frozen=True)
class HistoryEntry:
    """The last time an item was used."""
    item: DisplayItem
    updated_at_ms: UnixTimeMs


@dataclass(frozen=True)
class Unbuilt:
    pass


@dataclass(frozen=True)
class Building:
    pass


@dataclass(frozen=True)
class Ready:
    built_at_ms: UnixTimeMs
    indexed_count: int = 0


@dataclass(frozen=True)
class Failed:
    reason: str


IndexState = Union[Unbuilt, Building, Ready, Failed]


def describe_index_state(state: IndexState) -> str:
    if isinstance(state, Unbuilt):
        return "unbuilt"
    elif isinstance(state, Building):
        return "building"
    elif isinstance(state, Ready):
        return f"ready ({state.indexed_count} files)"
    elif isinstance(state, Failed):
        return f"failed: {state.reason}"
    else:
        assert_never(state)
