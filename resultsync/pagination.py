"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Offset/limit pagination for list-style remote calls.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Generic, TypeVar

from resultsync.models import PageCursor

logger = logging.getLogger("resultsync.pagination")

T = TypeVar("T")

DEFAULT_LIMIT = 10


def validate_page_args(limit: int, offset: int) -> None:
    """
    Raises:
        ValueError: ``limit`` is not positive or ``offset`` is negative
    """
    if limit is None or limit <= 0:
        raise ValueError(f"limit must be a positive integer, got {limit!r}")
    if offset is None or offset < 0:
        raise ValueError(f"offset must not be negative, got {offset!r}")


def build_page(items: Sequence[T], limit: int, offset: int, count: int | None = None) -> PageCursor[T]:
    """
    Wrap one fetched page.

    A full page means more records may follow, so ``next_offset`` points past
    it. A service that ignores the limit and returns more items moves the
    cursor past everything it returned.
    """
    validate_page_args(limit, offset)
    items = list(items)

    if len(items) == limit:
        next_offset = offset + limit
    elif len(items) > limit:
        logger.warning(f"Service returned {len(items)} items for limit {limit}")
        next_offset = offset + len(items)
    else:
        next_offset = None

    return PageCursor(
        items=items,
        count=count if count is not None else offset + len(items),
        next_offset=next_offset,
    )


class PaginatedIterator(Generic[T]):
    """Walks every page of a list call, yielding items."""

    def __init__(
        self,
        fetch: Callable[[int, int], PageCursor[T]],
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        max_pages: int | None = None,
    ):
        """
        Initialize the iterator.

        Args:
            fetch: ``fetch(limit, offset)`` returning one page
            limit: Page size
            offset: Starting offset
            max_pages: Stop after this many pages (``None`` for no bound)
        """
        validate_page_args(limit, offset)
        self.fetch = fetch
        self.limit = limit
        self.next_offset: int | None = offset
        self.max_pages = max_pages
        self.pages_fetched = 0
        self.total_count: int | None = None
        self._buffer: list[T] = []
        self._index = 0

    def __iter__(self):
        return self

    def __next__(self) -> T:
        while self._index >= len(self._buffer):
            if self.next_offset is None:
                raise StopIteration
            if self.max_pages is not None and self.pages_fetched >= self.max_pages:
                raise StopIteration
            self._fetch_next_page()

        item = self._buffer[self._index]
        self._index += 1
        return item

    def _fetch_next_page(self) -> None:
        page = self.fetch(self.limit, self.next_offset)
        self.pages_fetched += 1
        self.total_count = page.count
        self._buffer = list(page.items)
        self._index = 0
        logger.debug(
            f"Fetched page {self.pages_fetched}: {len(self._buffer)} items at offset {self.next_offset}"
        )
        self.next_offset = page.next_offset
