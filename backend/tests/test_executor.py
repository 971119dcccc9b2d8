"""Tests for the list executor: paging, cursors, counts and facets.

All tests run against the in-memory document store so page boundaries can
be checked exactly.

See Also:
    - backend/geocontent/query/executor.py for the executor.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import pytest

from geocontent.core import errors
from geocontent.db import database
from geocontent.query import executor, handlers, types


def _store(count: int = 25) -> database.InMemoryDocumentStore:
    store = database.InMemoryDocumentStore()
    layers = store.collection("layers")
    for number in range(1, count + 1):
        asyncio.run(
            layers.add(
                {
                    "id": f"{number:02d}",
                    "name": f"Layer {number:02d}",
                    "type": ("raster", "vector", "geojson")[number % 3],
                    "category": "Marine" if number % 2 else "Biodiversity",
                }
            )
        )
    return store


def _options(query: str) -> types.QueryOptions:
    return handlers.QueryParser().parse(query)


def _list(
    store: database.InMemoryDocumentStore,
    query: str,
    **kwargs: Any,
) -> executor.ListResult:
    return asyncio.run(
        executor.list_documents(store.collection("layers"), _options(query), **kwargs)
    )


def _ids(result: executor.ListResult) -> list[str]:
    return [doc["id"] for doc in result.docs]


def test_offset_pages() -> None:
    """Test that page numbers skip whole pages."""
    store = _store()
    first = _list(store, "page[size]=10")
    third = _list(store, "page[number]=3&page[size]=10")
    assert _ids(first) == [f"{n:02d}" for n in range(1, 11)]
    assert _ids(third) == [f"{n:02d}" for n in range(21, 26)]
    assert first.total == third.total == 25
    assert first.previous_cursor is None

    following = _list(store, f"page[size]=10&page[cursor]={first.next_cursor}")
    assert _ids(following) == [f"{n:02d}" for n in range(11, 21)]


def test_zero_limit_returns_no_documents() -> None:
    """Test that a page size of zero still reports the total."""
    result = _list(_store(), "page[size]=0")
    assert result.docs == []
    assert result.total == 25
    assert result.next_cursor is None


def test_cursor_pages_are_contiguous() -> None:
    """Test forward paging from the start sentinel until exhaustion."""
    store = _store()
    first = _list(store, "page[size]=10&page[cursor]=-1")
    assert _ids(first) == [f"{n:02d}" for n in range(1, 11)]
    assert first.previous_cursor is None
    assert first.next_cursor is not None

    second = _list(store, f"page[size]=10&page[cursor]={first.next_cursor}")
    assert _ids(second) == [f"{n:02d}" for n in range(11, 21)]
    assert second.total == 15
    assert second.previous_cursor is not None

    third = _list(store, f"page[size]=10&page[cursor]={second.next_cursor}")
    assert _ids(third) == [f"{n:02d}" for n in range(21, 26)]
    assert third.next_cursor is None
    assert third.previous_cursor is not None


def test_previous_cursor_returns_preceding_page_in_order() -> None:
    """Test that paging back yields the previous page in forward order."""
    store = _store()
    first = _list(store, "page[size]=10&page[cursor]=-1")
    second = _list(store, f"page[size]=10&page[cursor]={first.next_cursor}")
    third = _list(store, f"page[size]=10&page[cursor]={second.next_cursor}")

    back = _list(store, f"page[size]=10&page[cursor]={third.previous_cursor}")
    assert _ids(back) == [f"{n:02d}" for n in range(11, 21)]
    assert back.next_cursor is not None
    assert back.previous_cursor is not None

    start = _list(store, f"page[size]=10&page[cursor]={back.previous_cursor}")
    assert _ids(start) == [f"{n:02d}" for n in range(1, 11)]
    assert start.previous_cursor is None

    forward = _list(store, f"page[size]=10&page[cursor]={start.next_cursor}")
    assert _ids(forward) == _ids(back)


def test_cursor_paging_with_ties_visits_every_document_once() -> None:
    """Test that the id tiebreaker keeps pages stable under duplicate sort values."""
    store = _store()
    seen: list[str] = []
    token = "-1"
    while token:
        page = _list(store, f"sort=-type&page[size]=4&page[cursor]={token}")
        seen.extend(_ids(page))
        token = page.next_cursor
    assert sorted(seen) == [f"{n:02d}" for n in range(1, 26)]
    assert len(seen) == 25
    types_seen = [
        ("raster", "vector", "geojson")[int(i) % 3] for i in seen
    ]
    assert types_seen == sorted(types_seen, reverse=True)


def test_changing_sort_under_cursor_is_rejected() -> None:
    """Test that a cursor only works with the sort it was created under."""
    store = _store()
    first = _list(store, "sort=name&page[size]=5&page[cursor]=-1")
    with pytest.raises(errors.ValidationError):
        _options(f"sort=-name&page[size]=5&page[cursor]={first.next_cursor}")


def test_projection_without_sort_path_still_pages() -> None:
    """Test that cursors are built even when ``select`` drops the sort path."""
    store = _store()
    first = _list(store, "select=name&sort=type&page[size]=5")
    assert _ids(first) == ["02", "05", "08", "11", "14"]
    assert all(set(doc) == {"id", "name"} for doc in first.docs)
    assert first.next_cursor is not None

    second = _list(store, f"select=name&sort=type&page[size]=5&page[cursor]={first.next_cursor}")
    assert _ids(second) == ["17", "20", "23", "03", "06"]
    assert all("type" not in doc for doc in second.docs)

    back = _list(
        store, f"select=name&sort=type&page[size]=5&page[cursor]={second.previous_cursor}"
    )
    assert _ids(back) == _ids(first)


def test_projection_without_id_still_pages() -> None:
    """Test offset and cursor pages when the id is excluded."""
    store = _store()

    def names(result: executor.ListResult) -> list[str]:
        return [doc["name"] for doc in result.docs]

    first = _list(store, "select=-id&page[size]=5")
    assert names(first) == [f"Layer {n:02d}" for n in range(1, 6)]
    assert all("id" not in doc for doc in first.docs)

    second = _list(store, f"select=-id&page[size]=5&page[cursor]={first.next_cursor}")
    assert names(second) == [f"Layer {n:02d}" for n in range(6, 11)]
    assert all("id" not in doc for doc in second.docs)

    start = _list(store, "select=-id&page[size]=5&page[cursor]=-1")
    assert names(start) == names(first)
    back = _list(store, f"select=-id&page[size]=5&page[cursor]={second.previous_cursor}")
    assert names(back) == names(first)


def test_cursor_encoding_fails_when_documents_lack_sort_path() -> None:
    """Test that sorting on a field absent from stored documents is a server error."""
    with pytest.raises(errors.CursorEncodingError) as exc_info:
        _list(_store(), "sort=color&page[size]=5")
    assert exc_info.value.code == 500


def test_filter_ids_restrict_and_order_the_page() -> None:
    """Test that external ids both restrict and order the result."""
    result = _list(_store(), "", filter_ids=["05", "02", "99"])
    assert _ids(result) == ["05", "02"]
    assert result.total == 2


def test_facets_ignore_their_own_filter() -> None:
    """Test facet counts with zero-count enum values and own-filter omission."""
    result = _list(_store(), "filter=category==Marine", facets=["category"])
    assert result.total == 13
    counts = {facet["value"]: facet["count"] for facet in result.aggs}
    assert counts["Marine"] == 13
    assert counts["Biodiversity"] == 12
    assert counts["Restoration"] == 0
    values = [facet["value"] for facet in result.aggs]
    assert values == sorted(values)
    assert {facet["key"] for facet in result.aggs} == {"category"}


def test_facets_respect_other_filters() -> None:
    """Test that facets still apply every other filter."""
    result = _list(_store(), "filter=type==raster", facets=["category"])
    counts = {facet["value"]: facet["count"] for facet in result.aggs}
    assert counts["Marine"] + counts["Biodiversity"] == result.total


class _Resolver:
    def __init__(self, values: Sequence[Any]) -> None:
        self.values = values

    async def resolve_known_values(self, field: str) -> Sequence[Any]:
        return self.values


def test_facets_include_resolver_values() -> None:
    """Test that externally known values appear with zero counts."""
    result = _list(_store(), "", facets=["type"], resolver=_Resolver(["video", "raster"]))
    counts = {facet["value"]: facet["count"] for facet in result.aggs}
    assert counts["video"] == 0
    assert counts["raster"] == 8
    assert counts["group"] == 0


def test_search_restricts_documents() -> None:
    """Test free-text search through the executor."""
    result = _list(_store(), "search=layer 1")
    assert _ids(result) == [f"{n:02d}" for n in range(10, 20)]
