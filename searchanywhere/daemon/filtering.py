"""Per-source filtering and relevance weighting."""

import re
from typing import Iterable, Iterator, Sequence, TypeVar

from .models import FileItem, MatchType, SearchQuery, WeightedItem

T = TypeVar("T")

_WHITESPACE = re.compile(r"\s+")


def weigh(display_name: str, term: str) -> int:
    """Relevance of ``display_name`` for ``term``, case-insensitive.

    +2 when the name starts with the term, +1 when the term equals one
    whitespace separated word of the name.
    """
    name = display_name.casefold()
    term = term.casefold()

    weight = 0
    if name.startswith(term):
        weight += 2
    if any(part == term for part in _WHITESPACE.split(name)):
        weight += 1
    return weight


def _matches(display_name: str, queries: Sequence[SearchQuery]) -> bool:
    name = display_name.casefold()
    for query in queries:
        contains = query.term.casefold() in name
        if query.match_type is MatchType.INCLUDE and not contains:
            return False
        if query.match_type is MatchType.EXCLUDE and contains:
            return False
    return True


def _is_empty_query(queries: Sequence[SearchQuery]) -> bool:
    return not queries or not queries[0].term


def filter_items(items: Iterable[T], queries: Sequence[SearchQuery]) -> Iterator[WeightedItem[T]]:
    """Lazily yield the items matching every token, weighed by the first term.

    An empty query matches nothing.
    """
    if _is_empty_query(queries):
        return
    reference = queries[0].term
    for item in items:
        if _matches(item.display_name, queries):
            yield WeightedItem(weigh(item.display_name, reference), item)


def weigh_files(items: Iterable[FileItem], queries: Sequence[SearchQuery]) -> Iterator[WeightedItem[FileItem]]:
    """Weigh file paths the index already matched against ``queries``."""
    if _is_empty_query(queries):
        return
    reference = queries[0].term
    for item in items:
        yield WeightedItem(weigh(item.display_name, reference), item)


class FilteredItems(Iterable[WeightedItem[T]]):
    """A filter result that is re-evaluated from scratch on every iteration."""

    def __init__(self, items: Sequence[T], queries: Sequence[SearchQuery], prefiltered: bool = False):
        self._items = items
        self._queries = tuple(queries)
        self._prefiltered = prefiltered

    def __iter__(self) -> Iterator[WeightedItem[T]]:
        if self._prefiltered:
            return weigh_files(self._items, self._queries)
        return filter_items(self._items, self._queries)

    def __repr__(self) -> str:
        return f"FilteredItems(items={len(self._items)}, queries={self._queries!r})"
