from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import Optional, TypeVar

T = TypeVar("T")
C = TypeVar("C")

# A page fetcher receives the cursor of the page to fetch (None for the first
# page) and returns the items of that page and the cursor of the next one
# (None when exhausted).
PageFetcher = Callable[[Optional[C]], tuple[Iterable[T], Optional[C]]]


def paginate(fetch_page: PageFetcher) -> Iterator[T]:
    """Follow cursors until the last page, yielding items one by one."""
    cursor = None
    seen_cursors = set()
    while True:
        items, cursor = fetch_page(cursor)
        yield from items
        if cursor is None:
            return
        if cursor in seen_cursors:
            raise RuntimeError(f"Pagination cursor {cursor!r} repeated")
        seen_cursors.add(cursor)


def dedupe(items: Iterable[T], key: Callable[[T], object]) -> list[T]:
    """Drop later items whose key was already seen, keeping order."""
    seen = set()
    result = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(item)
    return result
