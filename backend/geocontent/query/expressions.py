"""Store-agnostic predicates compiled from ``QueryOptions``.

Document collections never see a ``FilterTree`` directly: the executor turns
filters, search text, id restrictions and cursor seek predicates into a small
expression tree that every backend knows how to evaluate (in memory) or
compile (to SQL).
"""

from __future__ import annotations

import dataclasses
import datetime
import decimal
from collections.abc import Iterable, Mapping
from typing import Any

from geocontent.query import types

ID_FIELD = "id"


def ordering_key(value: Any) -> tuple[Any, ...]:
    """Total order over heterogeneous document values.

    Follows PostgreSQL ``jsonb`` ordering, the order SQL pages use:
    missing and null values first, then strings, numbers, booleans, arrays
    and objects. Arrays and objects with more elements sort after shorter
    ones; object pairs compare in ``jsonb`` storage order (shorter keys
    first). Dates compare as the UTC ISO-8601 strings documents store.
    """
    if value is None:
        return 0, 0
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.UTC)
        return 1, value.astimezone(datetime.UTC).isoformat()
    if isinstance(value, datetime.date):
        return 1, value.isoformat()
    if isinstance(value, str):
        return 1, value
    if isinstance(value, bool):
        return 3, value
    if isinstance(value, (int, float, decimal.Decimal)):
        return 2, value
    if isinstance(value, (list, tuple)):
        return 4, len(value), tuple(ordering_key(v) for v in value)
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda item: (len(item[0]), item[0]))
        return 5, len(items), tuple((k, ordering_key(v)) for k, v in items)
    return 6, str(value)


@dataclasses.dataclass(frozen=True)
class Condition:
    path: str
    op: types.Operator
    value: Any


@dataclasses.dataclass(frozen=True)
class And:
    items: tuple[Expression, ...] = ()


@dataclasses.dataclass(frozen=True)
class Or:
    items: tuple[Expression, ...] = ()


@dataclasses.dataclass(frozen=True)
class TextSearch:
    """Case-insensitive match of ``text`` against the searchable fields."""

    text: str


Expression = Condition | And | Or | TextSearch

MATCH_ALL = And()


def conjunction(*expressions: Expression | None) -> Expression:
    """AND the given expressions together, flattening nested conjunctions."""
    items: list[Expression] = []
    for expression in expressions:
        if expression is None:
            continue
        if isinstance(expression, And):
            items.extend(expression.items)
        else:
            items.append(expression)
    if len(items) == 1:
        return items[0]
    return And(tuple(items))


def from_filter(tree: types.FilterTree) -> Expression:
    """Turn ``{path: {op: value}}`` into a conjunction of conditions."""
    return conjunction(
        *(
            Condition(path, op, value)
            for path, condition in tree.items()
            for op, value in condition.items()
        )
    )


def id_membership(ids: Iterable[Any], id_field: str = ID_FIELD) -> Condition:
    return Condition(id_field, types.Operator.IN, list(ids))


def base_query(
    options: types.QueryOptions,
    filter_ids: Iterable[Any] | None = None,
    omit: Iterable[str] = (),
) -> Expression:
    """Filter, search and id restriction, without any pagination predicate.

    Args:
        options: Parsed query options.
        filter_ids: Optional ids the result must be restricted to.
        omit: Filter paths to leave out (a facet ignores its own filter).
    """
    tree = options.filter.without(omit) if omit else options.filter
    search = TextSearch(options.search) if options.search else None
    ids = id_membership(filter_ids) if filter_ids is not None else None
    return conjunction(search, from_filter(tree), ids)


def build_seek_query(
    options: types.QueryOptions,
    id_field: str = ID_FIELD,
) -> tuple[Expression | None, types.OrderedFieldMask]:
    """Build the keyset predicate and the scan order for a page.

    For cursor sort entries ``(p1, v1), (p2, v2)`` the predicate reads::

        p1 > v1
        OR (p1 = v1 AND p2 > v2)
        OR (p1 = v1 AND p2 = v2 AND id > cursor.id)

    where each comparison is ``>`` for a positive effective order and ``<``
    otherwise, and the id comparison is ``<`` for reverse cursors. Reverse
    cursors also invert the scan order; the executor flips the fetched page
    back.

    Returns:
        ``(predicate, sort)``; the predicate is None unless a non-empty
        cursor drives the page position.
    """
    sort = options.sort
    if id_field not in sort:
        sort = sort.with_field(id_field, 1)

    decoded = options.cursor.decoded
    if decoded is None or decoded.is_empty:
        return None, sort

    disjuncts: list[Expression] = []
    equalities: list[Expression] = []
    for path, (value, order) in decoded.sort.items():
        op = types.Operator.GT if order > 0 else types.Operator.LT
        disjuncts.append(conjunction(*equalities, Condition(path, op, value)))
        equalities.append(Condition(path, types.Operator.EQ, value))

    id_op = types.Operator.LT if decoded.reverse else types.Operator.GT
    disjuncts.append(conjunction(*equalities, Condition(id_field, id_op, decoded.id)))

    if decoded.reverse:
        sort = sort.reversed()
    return Or(tuple(disjuncts)), sort
