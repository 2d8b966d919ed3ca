from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, TypeVar


class Named(Protocol):
    name: str


NamedT = TypeVar("NamedT", bound=Named)


class SupplementMatcher:
    """Case-insensitive lookup: exact name first, then a supplement whose name contains the query."""

    def match(self, query: str, supplements: Iterable[NamedT]) -> NamedT | None:
        needle = query.strip().casefold()
        if not needle:
            return None
        candidates = list(supplements)
        for supplement in candidates:
            if supplement.name.strip().casefold() == needle:
                return supplement
        for supplement in candidates:
            if needle in supplement.name.casefold():
                return supplement
        return None
