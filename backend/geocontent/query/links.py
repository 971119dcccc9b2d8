"""Pagination link building for list responses.

Offset mode links carry ``page[number]``; once the client paginates with a
cursor the links carry ``page[cursor]`` instead, and ``first``/``last`` are
omitted because a cursor has no notion of absolute page positions.
"""

from __future__ import annotations

import copy
import dataclasses
import math
import urllib.parse
from collections.abc import Mapping
from typing import Any

from typing_extensions import TypedDict

from geocontent.query import params


class PaginationLinks(TypedDict):
    self: str | None
    next: str | None
    prev: str | None
    first: str | None
    last: str | None


def _flatten(tree: Mapping[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten a parameter tree into ``(a[b][c], value)`` pairs."""
    pairs: list[tuple[str, str]] = []
    for key, value in tree.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, Mapping):
            pairs.extend(_flatten(value, name))
        elif value is not None:
            pairs.append((name, str(value)))
    return pairs


def encode_query_to_url(base_url: str, query: Mapping[str, Any]) -> str:
    """Render a nested parameter tree as ``base_url?a[b]=c&...``."""
    encoded = urllib.parse.urlencode(
        _flatten(query),
        quote_via=urllib.parse.quote,
        safe="[],;*",
    )
    return f"{base_url}?{encoded}" if encoded else base_url


def _set(tree: dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path, creating intermediate dicts."""
    *parents, leaf = path.split(".")
    node = tree
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[leaf] = value


def _unset(tree: dict[str, Any], path: str) -> None:
    """Remove a dotted path if present."""
    *parents, leaf = path.split(".")
    node: Any = tree
    for part in parents:
        node = node.get(part) if isinstance(node, dict) else None
    if isinstance(node, dict):
        node.pop(leaf, None)


@dataclasses.dataclass(frozen=True)
class PaginationHelper:
    """Page arithmetic and link rendering for one list response.

    Attributes:
        size_total: Number of matching documents.
        page_size: Requested page size.
        current_page: Requested page number (offset mode).
        current_cursor: Cursor the page was requested with, if any.
        next_cursor: Cursor of the following page, if any.
        previous_cursor: Cursor of the preceding page, if any.
    """

    size_total: int
    page_size: int
    current_page: int = 1
    current_cursor: str | None = None
    next_cursor: str | None = None
    previous_cursor: str | None = None

    @property
    def page_count(self) -> int:
        """Number of pages of ``page_size`` needed for ``size_total``."""
        if self.page_size <= 0:
            return 0
        return math.ceil(self.size_total / self.page_size)

    @property
    def cursor_mode(self) -> bool:
        """True once the page was requested with a cursor."""
        return bool(self.current_cursor)

    def first_page(self) -> int | None:
        """Page 1, or None when there are no pages."""
        return 1 if self.page_count >= 1 else None

    def last_page(self) -> int | None:
        """The last page number, or None when there are no pages."""
        return self.page_count or None

    def next_page(self) -> int | None:
        """The following page number, if documents remain."""
        if self.current_page * self.page_size < self.size_total:
            return self.current_page + 1
        return None

    def previous_page(self) -> int | None:
        """The preceding page number, if any."""
        return self.current_page - 1 if self.current_page > 1 else None

    def pagination_links(
        self,
        base_url: str,
        query: Mapping[str, Any] | str | None,
    ) -> PaginationLinks:
        """Build ``self/next/prev/first/last`` links preserving ``query``.

        Args:
            base_url: URL of the collection without a query string.
            query: The request's query parameters (raw or decoded).

        Returns:
            Links with None for every relation that does not exist.
        """
        base = params.decode_params(query)
        _set(base, "page.size", self.page_size)

        def page_link(number: int | None) -> str | None:
            if number is None:
                return None
            tree = copy.deepcopy(base)
            _unset(tree, "page.cursor")
            _set(tree, "page.number", number)
            return encode_query_to_url(base_url, tree)

        def cursor_link(token: str | None) -> str | None:
            if not token:
                return None
            tree = copy.deepcopy(base)
            _unset(tree, "page.number")
            _set(tree, "page.cursor", token)
            return encode_query_to_url(base_url, tree)

        if self.cursor_mode:
            return PaginationLinks(
                self=cursor_link(self.current_cursor),
                next=cursor_link(self.next_cursor),
                prev=cursor_link(self.previous_cursor),
                first=None,
                last=None,
            )
        return PaginationLinks(
            self=page_link(self.current_page),
            next=page_link(self.next_page()),
            prev=page_link(self.previous_page()),
            first=page_link(self.first_page()),
            last=page_link(self.last_page()),
        )
