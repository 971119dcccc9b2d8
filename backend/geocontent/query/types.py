"""Typed building blocks of a compiled query.

Every value in this module is immutable: transformations return new
instances, so a ``QueryOptions`` handed to the list executor can never be
changed behind its back. Field paths are dotted strings (``owner.team.name``)
and are only ever addressed through the accessor methods below.

Example:
    Build masks and a filter tree by hand:
        >>> select = FieldMask({"name": 1, "secret": 0})
        >>> sort = OrderedFieldMask([("name", 1), ("createdAt", -1)])
        >>> tree = FilterTree().with_condition("age", Operator.GTE, "5")
        >>> tree.to_dict()
        {'age': {'gte': '5'}}
"""

from __future__ import annotations

import dataclasses
import enum
import types
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, Self

WILDCARD = "*"
WILDCARD_PREFIX = "*."


class Operator(enum.StrEnum):
    """Comparison operators understood by every document collection."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NIN = "nin"
    EXISTS = "exists"


class FieldMask(Mapping[str, int]):
    """Immutable mapping of dotted field path to a flag.

    Used for projections (1 = include, 0 = exclude). Equality ignores key
    order.
    """

    __slots__ = ("_fields",)

    def __init__(
        self,
        fields: Mapping[str, int] | Iterable[tuple[str, int]] = (),
    ) -> None:
        self._fields: dict[str, int] = dict(fields)

    def __getitem__(self, path: str) -> int:
        return self._fields[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._fields!r})"

    def with_field(self, path: str, value: int) -> Self:
        """Return a copy with ``path`` set to ``value``."""
        fields = dict(self._fields)
        fields[path] = value
        return type(self)(fields)

    def without(self, paths: Iterable[str]) -> Self:
        """Return a copy without the given paths."""
        dropped = set(paths)
        return type(self)((k, v) for k, v in self._fields.items() if k not in dropped)

    def merge(self, other: Mapping[str, int]) -> Self:
        """Return a copy updated with ``other`` (``other`` wins)."""
        fields = dict(self._fields)
        fields.update(other)
        return type(self)(fields)

    def split_prefix(self, prefix: str) -> dict[str, str]:
        """Map filter keys directly below ``prefix`` to their relation-local name."""
        """Map keys directly below ``prefix`` to their relation-local name.

        Only keys naming a field of the relation itself are returned, so with
        prefix ``owner.`` the key ``owner.name`` maps to ``name`` while
        ``owner.team.name`` is left for the nested ``team`` relation.
        """
        return _split_prefix(self._fields, prefix)

    def to_dict(self) -> dict[str, int]:
        """Plain dict copy of the mask."""
        return dict(self._fields)


class OrderedFieldMask(FieldMask):
    """Field mask whose key order is significant (sort specifications)."""

    __slots__ = ()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            return list(self.items()) == list(other.items())
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def reversed(self) -> Self:
        """Return the same paths with every order inverted."""
        return type(self)((k, -v) for k, v in self.items())


def _split_prefix(keys: Iterable[str], prefix: str) -> dict[str, str]:
    """Map wildcard or ``prefix`` keys naming a direct relation field to that field."""
    local: dict[str, str] = {}
    for key in keys:
        if key.startswith(WILDCARD_PREFIX):
            name = key[len(WILDCARD_PREFIX):]
        elif key.startswith(prefix):
            name = key[len(prefix):]
        else:
            continue
        if name and "." not in name:
            local[key] = name
    return local


Condition = Mapping[Operator, Any]


class FilterTree(Mapping[str, Condition]):
    """Immutable ``{field path: {operator: value}}`` conjunction.

    Several operators on the same key form a range (``gte`` and ``lt``);
    assigning the same operator twice keeps the last value.
    """

    __slots__ = ("_tree",)

    def __init__(
        self,
        tree: Mapping[str, Mapping[Operator | str, Any]] | None = None,
    ) -> None:
        self._tree: dict[str, dict[Operator, Any]] = {
            key: {Operator(op): value for op, value in condition.items()}
            for key, condition in (tree or {}).items()
        }

    def __getitem__(self, key: str) -> Condition:
        return types.MappingProxyType(self._tree[key])

    def __iter__(self) -> Iterator[str]:
        return iter(self._tree)

    def __len__(self) -> int:
        return len(self._tree)

    def __repr__(self) -> str:
        return f"FilterTree({self.to_dict()!r})"

    def with_condition(self, key: str, op: Operator, value: Any) -> FilterTree:
        """Return a copy with ``op: value`` set on ``key``."""
        tree = self.to_nested()
        tree.setdefault(key, {})[op] = value
        return FilterTree(tree)

    def merge(self, other: Mapping[str, Mapping[Operator, Any]]) -> FilterTree:
        """Deep-merge conditions key by key (``other`` wins per operator)."""
        tree = self.to_nested()
        for key, condition in other.items():
            tree.setdefault(key, {}).update(condition)
        return FilterTree(tree)

    def without(self, keys: Iterable[str]) -> FilterTree:
        """Return a copy without the conditions on ``keys``."""
        dropped = set(keys)
        return FilterTree({k: v for k, v in self._tree.items() if k not in dropped})

    def without_wildcards(self) -> FilterTree:
        """Drop keys that only exist to be distributed into populations."""
        return self.without(k for k in self._tree if k.startswith(WILDCARD))

    def split_prefix(self, prefix: str) -> dict[str, str]:
        return _split_prefix(self._tree, prefix)

    def to_nested(self) -> dict[str, dict[Operator, Any]]:
        """Mutable copy keyed by ``Operator`` members."""
        return {key: dict(condition) for key, condition in self._tree.items()}

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """Plain JSON-friendly rendering with operator names as keys."""
        return {
            key: {op.value: value for op, value in condition.items()}
            for key, condition in self._tree.items()
        }


@dataclasses.dataclass(frozen=True)
class FilterClause:
    """A single ``key op value`` filter as written by a client or server.

    ``op`` is either a grammar token (``==``, ``!=``, ``>=``, ``<=``, ``>``,
    ``<``), an operator name (``in``, ``nin``), or None/empty for an
    existence check.
    """

    key: str
    op: str | None
    value: str | list[str] | Any


@dataclasses.dataclass(frozen=True)
class PopulationNode:
    """A relation to resolve for every returned document.

    Attributes:
        path: Relation field on the parent document (``owner``).
        select: Projection applied to the related documents.
        sort: Ordering of related documents in array relations.
        filter: Conditions related documents must match to be kept.
        children: Relations of the related documents to resolve in turn.
    """

    path: str
    select: FieldMask = dataclasses.field(default_factory=FieldMask)
    sort: OrderedFieldMask = dataclasses.field(default_factory=OrderedFieldMask)
    filter: FilterTree = dataclasses.field(default_factory=FilterTree)
    children: tuple[PopulationNode, ...] = ()

    def merge(self, other: PopulationNode) -> PopulationNode:
        """Deep-merge a node addressing the same path."""
        return dataclasses.replace(
            self,
            select=self.select.merge(other.select),
            sort=self.sort.merge(other.sort),
            filter=self.filter.merge(other.filter),
            children=merge_nodes(self.children + other.children),
        )

    def to_dict(self) -> dict[str, Any]:
        """Render the node tree for logging and debugging."""
        rendered: dict[str, Any] = {"path": self.path}
        if self.select:
            rendered["select"] = self.select.to_dict()
        if self.sort:
            rendered["sort"] = self.sort.to_dict()
        if self.filter:
            rendered["match"] = self.filter.to_dict()
        if self.children:
            rendered["populate"] = [child.to_dict() for child in self.children]
        return rendered


def merge_nodes(nodes: Iterable[PopulationNode]) -> tuple[PopulationNode, ...]:
    """Group nodes by path, keeping first-seen order, and deep-merge groups."""
    grouped: dict[str, PopulationNode] = {}
    for node in nodes:
        if node.path in grouped:
            grouped[node.path] = grouped[node.path].merge(node)
        else:
            grouped[node.path] = node
    return tuple(grouped.values())


@dataclasses.dataclass(frozen=True)
class Cursor:
    """Decoded pagination state.

    ``sort`` maps every sort path to ``(value, effective_order)`` where the
    effective order is already inverted for reverse cursors. The empty cursor
    (no id, no sort) stands for "first page, cursor mode".
    """

    id: Any = None
    sort: Mapping[str, tuple[Any, int]] = dataclasses.field(default_factory=dict)
    reverse: bool = False

    @classmethod
    def empty(cls) -> Cursor:
        """The start sentinel: first page in cursor mode."""
        return cls()

    @property
    def is_empty(self) -> bool:
        """True for the start sentinel."""
        return self.id is None and not self.sort and not self.reverse

    def sort_spec(self) -> OrderedFieldMask:
        """Return the sort specification the cursor was created under."""
        return OrderedFieldMask(
            (path, -order if self.reverse else order)
            for path, (_, order) in self.sort.items()
        )

    def to_payload(self) -> dict[str, Any]:
        """JSON payload as carried inside a cursor token."""
        return {
            "id": self.id,
            "sort": {path: [value, order] for path, (value, order) in self.sort.items()},
            "reverse": self.reverse,
        }


@dataclasses.dataclass(frozen=True)
class CursorParam:
    """The cursor as received (``encoded``) and as understood (``decoded``).

    ``decoded`` is None when the client sent no cursor at all.
    """

    encoded: str | None = None
    decoded: Cursor | None = None


@dataclasses.dataclass(frozen=True)
class QueryOptions:
    """Structured, store-agnostic description of a list request.

    Both ``skip``/``limit`` and ``cursor`` are always populated so links can
    be built for either mode; a non-empty decoded cursor selects cursor
    pagination.
    """

    select: FieldMask = dataclasses.field(default_factory=FieldMask)
    populate: tuple[PopulationNode, ...] = ()
    sort: OrderedFieldMask = dataclasses.field(default_factory=OrderedFieldMask)
    filter: FilterTree = dataclasses.field(default_factory=FilterTree)
    search: str | None = None
    limit: int = 100
    skip: int = 1
    cursor: CursorParam = dataclasses.field(default_factory=CursorParam)

    @property
    def cursor_engaged(self) -> bool:
        """True once the client opted into cursor pagination (even ``-1``)."""
        return self.cursor.decoded is not None

    @property
    def seeks(self) -> bool:
        """True when a non-empty cursor drives the page position."""
        return self.cursor.decoded is not None and not self.cursor.decoded.is_empty
