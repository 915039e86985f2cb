"""Tests for pagination helpers."""

import pytest

from teamsync.pagination import dedupe, paginate


class TestPaginate:
    """Tests for paginate."""

    def test_follows_cursors(self):
        pages = {None: ([1, 2], "b"), "b": ([3], "c"), "c": ([], None)}
        assert list(paginate(lambda cursor: pages[cursor])) == [1, 2, 3]

    def test_single_page(self):
        assert list(paginate(lambda cursor: ([1], None))) == [1]

    def test_repeated_cursor(self):
        pages = {None: ([1], "a"), "a": ([2], "a")}
        with pytest.raises(RuntimeError, match="repeated"):
            list(paginate(lambda cursor: pages[cursor]))


class TestDedupe:
    """Tests for dedupe."""

    def test_keeps_first(self):
        items = [("a", 1), ("b", 2), ("a", 3)]
        assert dedupe(items, key=lambda i: i[0]) == [("a", 1), ("b", 2)]
