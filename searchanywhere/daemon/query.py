"""Query language: ``&`` separates include terms, ``!`` starts an exclude term.

``\\&`` and ``\\!`` are literal characters. For example ``lol&lmao!tldr!stfu&cool``
parses to ``[lol, lmao, !tldr, !stfu, cool]``.
"""

import re
from typing import List, Sequence, Tuple

from .models import MatchType, Queries, SearchQuery

INCLUDE_CHARACTER = "&"
EXCLUDE_CHARACTER = "!"

_INCLUDE_DELIMITER = re.compile(r"(?<!\\)" + re.escape(INCLUDE_CHARACTER))
_EXCLUDE_DELIMITER = re.compile(r"(?<!\\)" + re.escape(EXCLUDE_CHARACTER))


def parse(raw: str) -> Queries:
    """Split a raw search string into ordered include/exclude tokens.

    Empty tokens are dropped, so an empty string (or one made only of
    delimiters) gives no tokens at all.
    """
    if not raw:
        return ()

    if INCLUDE_CHARACTER not in raw and EXCLUDE_CHARACTER not in raw:
        return (SearchQuery(raw, MatchType.INCLUDE),)

    tokens: List[SearchQuery] = []
    for include in _INCLUDE_DELIMITER.split(raw):
        include = include.replace("\\" + INCLUDE_CHARACTER, INCLUDE_CHARACTER)

        pieces = _EXCLUDE_DELIMITER.split(include)
        for index, piece in enumerate(pieces):
            piece = piece.replace("\\" + EXCLUDE_CHARACTER, EXCLUDE_CHARACTER)
            if not piece:
                continue
            match_type = MatchType.INCLUDE if index == 0 else MatchType.EXCLUDE
            tokens.append(SearchQuery(piece, match_type))

    return tuple(tokens)


def to_index_arguments(queries: Sequence[SearchQuery]) -> Tuple[List[str], List[bool]]:
    """Convert tokens to the positional ``terms``/``include_flags`` pair of the index."""
    terms = [query.term for query in queries]
    include_flags = [query.match_type is MatchType.INCLUDE for query in queries]
    return terms, include_flags
