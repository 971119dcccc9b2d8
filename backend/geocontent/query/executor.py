"""Execute ``QueryOptions`` against a document collection.

Two pagination strategies exist. Offset mode (the default) skips
``(page - 1) * limit`` documents. Cursor mode, selected by a non-empty
decoded cursor, adds a keyset predicate built from the cursor and scans in
the cursor's direction. In both modes the sort gets a unique id tiebreaker so
page boundaries are stable.

Every request also counts the matching documents (with the keyset predicate
but without skip/limit) and optionally computes facet counts; the page
fetch, the count and every facet run concurrently.

Example:
    >>> result = asyncio.run(list_documents(collection, options))
    >>> result.docs, result.total, result.next_cursor
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any, Protocol

from typing_extensions import TypedDict

from geocontent.db import matching
from geocontent.query import cursor as cursor_codec
from geocontent.query import expressions, types

if TYPE_CHECKING:
    from geocontent.db import database

logger = logging.getLogger(__name__)


class FacetCount(TypedDict):
    key: str
    value: Any
    count: int


class KnownValuesResolver(Protocol):
    """Supplies facet values that exist outside the collection itself."""

    async def resolve_known_values(self, field: str) -> Sequence[Any]: ...


@dataclasses.dataclass(frozen=True)
class ListResult:
    """A page of documents plus pagination and facet metadata.

    Attributes:
        docs: Documents in logical (forward) order.
        total: Matching documents, keyset predicate included.
        next_cursor: Token positioned on the last document, if more follow.
        previous_cursor: Reverse token positioned on the first document,
            if the page was reached through a cursor.
        aggs: Facet counts, sorted by field request order then value.
    """

    docs: list[dict[str, Any]]
    total: int
    next_cursor: str | None = None
    previous_cursor: str | None = None
    aggs: list[FacetCount] = dataclasses.field(default_factory=list)


async def aggregate_count(
    collection: database.DocumentCollectionProtocol,
    expression: expressions.Expression,
    field: str,
    resolver: KnownValuesResolver | None = None,
) -> list[FacetCount]:
    """Count documents per distinct value of ``field``.

    Array fields count once per element. Known values (schema enum options
    and resolver values) that match no document are reported with count 0.

    Args:
        collection: Collection to aggregate.
        expression: Filter the counted documents must match.
        field: Dotted path to group by.
        resolver: Optional source of externally known values.

    Returns:
        Counts sorted by value ascending.
    """
    grouped = await collection.aggregate(field, expression)
    counts: dict[Any, int] = {}
    for value, count in grouped:
        key = _hashable(value)
        counts[key] = counts.get(key, 0) + count

    known = list(collection.schema.enums.get(field, ()))
    if resolver is not None:
        known.extend(await resolver.resolve_known_values(field))
    for value in known:
        counts.setdefault(_hashable(value), 0)

    facets = [FacetCount(key=field, value=value, count=count) for value, count in counts.items()]
    return sorted(facets, key=lambda f: expressions.ordering_key(f["value"]))


def _hashable(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_hashable(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, _hashable(v)) for k, v in value.items()))
    return value


def _order_by_ids(docs: list[dict[str, Any]], ids: Sequence[Any]) -> list[dict[str, Any]]:
    by_id = {doc[expressions.ID_FIELD]: doc for doc in docs}
    return [by_id[i] for i in ids if i in by_id]


async def list_documents(
    collection: database.DocumentCollectionProtocol,
    options: types.QueryOptions,
    *,
    filter_ids: Sequence[Any] | None = None,
    facets: Iterable[str] = (),
    resolver: KnownValuesResolver | None = None,
) -> ListResult:
    """Fetch one page of documents described by ``options``.

    Args:
        collection: Collection to read from.
        options: Parsed and validated query options.
        filter_ids: Ids from an external index; restricts the result to
            them and orders the page like them.
        facets: Fields to compute facet counts for. Facets ignore
            pagination and their own field's filter.
        resolver: Supplies known facet values absent from the collection.

    Returns:
        The page, total count, cursors and facets.

    Raises:
        CursorEncodingError: If a sort path is missing from a returned
            document.
    """
    decoded = options.cursor.decoded
    if options.seeks:
        logger.debug("received cursor: %s", decoded.to_payload())

    seek, sort = expressions.build_seek_query(options)
    query = expressions.conjunction(expressions.base_query(options, filter_ids), seek)
    skip = 0 if options.seeks else (options.skip - 1) * options.limit

    # cursors are encoded from the id and sort paths, which the client
    # projection may drop; it is applied once they are encoded
    fetch = collection.find(
        query,
        projection=matching.widen_projection(options.select, options.sort),
        sort=sort,
        skip=skip,
        limit=options.limit,
        populate=options.populate,
    )
    aggregations = [
        aggregate_count(
            collection,
            expressions.base_query(options, filter_ids, omit=[field]),
            field,
            resolver,
        )
        for field in facets
    ]
    docs, total, *facet_counts = await asyncio.gather(
        fetch, collection.count(query), *aggregations
    )

    reverse = decoded is not None and decoded.reverse
    if reverse:
        docs = list(reversed(docs))

    has_more = total > options.limit
    next_cursor = previous_cursor = None
    if docs and (has_more or reverse):
        last = docs[-1]
        next_cursor = cursor_codec.encode_cursor(
            last[expressions.ID_FIELD], options.sort, last
        )
    if docs and options.seeks and (has_more or not reverse):
        first = docs[0]
        previous_cursor = cursor_codec.encode_cursor(
            first[expressions.ID_FIELD], options.sort, first, reverse=True
        )

    if filter_ids:
        docs = _order_by_ids(docs, filter_ids)

    if options.select:
        projection = matching.keep_relations(options.select, options.populate)
        docs = [matching.project(doc, projection) for doc in docs]

    return ListResult(
        docs=docs,
        total=total,
        next_cursor=next_cursor,
        previous_cursor=previous_cursor,
        aggs=[facet for counts in facet_counts for facet in counts],
    )
