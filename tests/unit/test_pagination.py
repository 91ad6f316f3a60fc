"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

import pytest

from resultsync.pagination import PaginatedIterator, build_page, validate_page_args


@pytest.mark.unit
class TestBuildPage:
    def test_full_page_has_next_offset(self):
        page = build_page(list(range(10)), limit=10, offset=0, count=17)

        assert page.next_offset == 10
        assert page.has_more
        assert page.count == 17

    def test_short_page_is_last(self):
        page = build_page(list(range(7)), limit=10, offset=10)

        assert page.next_offset is None
        assert not page.has_more
        assert page.count == 17

    def test_oversized_page_moves_past_returned_items(self):
        page = build_page(list(range(12)), limit=10, offset=20)
        assert page.next_offset == 32

    def test_empty_page(self):
        assert build_page([], limit=5, offset=0).next_offset is None

    @pytest.mark.parametrize("limit, offset", [(0, 0), (-1, 0), (10, -1)])
    def test_invalid_arguments(self, limit, offset):
        with pytest.raises(ValueError):
            validate_page_args(limit, offset)


@pytest.mark.unit
class TestPaginatedIterator:
    @pytest.fixture
    def records(self):
        return [f"item-{i}" for i in range(23)]

    @pytest.fixture
    def fetch(self, records):
        calls = []

        def _fetch(limit, offset):
            calls.append((limit, offset))
            return build_page(records[offset : offset + limit], limit, offset, count=len(records))

        _fetch.calls = calls
        return _fetch

    def test_walks_every_page(self, fetch, records):
        assert list(PaginatedIterator(fetch, limit=10)) == records
        assert fetch.calls == [(10, 0), (10, 10), (10, 20)]

    def test_exact_multiple_needs_one_empty_page(self, records):
        calls = []

        def fetch(limit, offset):
            calls.append(offset)
            return build_page(records[:20][offset : offset + limit], limit, offset)

        assert len(list(PaginatedIterator(fetch, limit=10))) == 20
        assert calls == [0, 10, 20]

    def test_max_pages(self, fetch):
        iterator = PaginatedIterator(fetch, limit=5, max_pages=2)

        assert len(list(iterator)) == 10
        assert iterator.pages_fetched == 2
        assert iterator.total_count == 23

    def test_start_offset(self, fetch, records):
        assert list(PaginatedIterator(fetch, limit=10, offset=15)) == records[15:]
