"""List and retrieve content documents for the HTTP layer.

This module glues the query compiler to the document store: it parses the
request's query parameters under the caller's tenant scope, coerces filter
values to the collection's field types, executes the query and assembles
the response body with pagination links and facet counts.

Example:
    >>> body = await list_resource(
    ...     store.collection("layers"),
    ...     "filter=type==raster&page[size]=10",
    ...     base_url="/api/v1/layers",
    ...     parser=handlers.QueryParser(),
    ...     context=handlers.ParserContext(predefined=predefined_filters(["org"])),
    ...     facets=("category",),
    ... )
    >>> body["meta"]["results"], body["links"]["next"]
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from typing_extensions import TypedDict

from geocontent.core import errors
from geocontent.db import models
from geocontent.query import executor, expressions, handlers, links, types
from geocontent.services import coercion

if TYPE_CHECKING:
    from geocontent.db import database

# Directives that make no sense when retrieving a single document.
SINGLE_DOCUMENT_EXCLUDES = ("sort", "skip", "limit", "cursor", "search")


@dataclasses.dataclass(frozen=True)
class ResourceConfig:
    """How one content collection is exposed.

    Attributes:
        schema: Collection schema.
        facets: Fields counted in ``meta.filters`` of list responses.
        published_only: Hide unpublished documents and relations.
    """

    schema: models.CollectionSchema
    facets: tuple[str, ...] = ()
    published_only: bool = True


RESOURCES: Mapping[str, ResourceConfig] = {
    "layers": ResourceConfig(models.LAYERS, facets=("category",)),
    "locations": ResourceConfig(models.LOCATIONS, facets=("type",)),
    "widgets": ResourceConfig(models.WIDGETS, facets=("metrics",)),
    "dashboards": ResourceConfig(models.DASHBOARDS),
}


class Pagination(TypedDict, total=False):
    total: int
    size: int
    page: int
    nextCursor: str | None
    previousCursor: str | None


class ListMeta(TypedDict):
    results: int
    pagination: Pagination
    filters: list[executor.FacetCount]


class ListResponse(TypedDict):
    data: list[dict[str, Any]]
    meta: ListMeta
    links: links.PaginationLinks


class DocumentResponse(TypedDict):
    data: dict[str, Any]


class StaticValuesResolver:
    """Known facet values taken from configuration."""

    def __init__(self, values: Mapping[str, Sequence[Any]]) -> None:
        self.values = values

    async def resolve_known_values(self, field: str) -> Sequence[Any]:
        return list(self.values.get(field, ()))


def predefined_filters(
    groups: Iterable[str],
    published_only: bool = True,
    public_only: bool = False,
) -> tuple[types.FilterClause, ...]:
    """Server-side clauses scoping a request to the caller's organizations.

    Args:
        groups: Organizations the caller belongs to.
        published_only: Also require published documents and relations.
        public_only: Also require ``publicResource`` (locations).
    """
    clauses = []
    if published_only:
        clauses.append(types.FilterClause("published", "==", "true"))
        clauses.append(types.FilterClause("*.published", "==", "true"))
    clauses.append(types.FilterClause("organization", "in", list(groups)))
    if public_only:
        clauses.append(types.FilterClause("publicResource", "==", "true"))
    return tuple(clauses)


async def list_resource(
    collection: database.DocumentCollectionProtocol,
    query: str | Mapping[str, Any] | None,
    *,
    base_url: str,
    parser: handlers.QueryParser,
    context: handlers.ParserContext,
    facets: Iterable[str] = (),
    resolver: executor.KnownValuesResolver | None = None,
    filter_ids: Sequence[Any] | None = None,
) -> ListResponse:
    """Run a list request end to end.

    Args:
        collection: Collection to list.
        query: The request's query string or parameters.
        base_url: Path of the collection, used for links.
        parser: Query parser configured with the page size bounds.
        context: Predefined clauses and prefix scoping.
        facets: Fields to compute facet counts for.
        resolver: Known facet values source.
        filter_ids: Optional external id restriction.

    Returns:
        Response body with ``data``, ``meta`` and ``links``.

    Raises:
        ValidationError: On malformed query parameters.
    """
    options = parser.parse(query, context)
    options = coercion.coerce_options(options, collection.schema)

    result = await executor.list_documents(
        collection,
        options,
        filter_ids=filter_ids,
        facets=facets,
        resolver=resolver,
    )

    paginator = links.PaginationHelper(
        size_total=result.total,
        page_size=options.limit,
        current_page=options.skip,
        current_cursor=options.cursor.encoded,
        next_cursor=result.next_cursor,
        previous_cursor=result.previous_cursor,
    )
    pagination = Pagination(total=paginator.page_count, size=options.limit)
    if options.cursor_engaged:
        pagination["nextCursor"] = result.next_cursor
        pagination["previousCursor"] = result.previous_cursor
    else:
        pagination["page"] = options.skip

    return ListResponse(
        data=result.docs,
        meta=ListMeta(results=result.total, pagination=pagination, filters=result.aggs),
        links=paginator.pagination_links(base_url, query),
    )


async def get_resource(
    collection: database.DocumentCollectionProtocol,
    key: str,
    query: str | Mapping[str, Any] | None,
    *,
    parser: handlers.QueryParser,
    context: handlers.ParserContext,
) -> DocumentResponse:
    """Retrieve one visible document by id or slug.

    Raises:
        RecordNotFound: If no visible document has that id or slug.
    """
    options = parser.parse(query, context, exclude=SINGLE_DOCUMENT_EXCLUDES)
    options = coercion.coerce_options(options, collection.schema)
    document = await collection.get(
        key,
        expressions.from_filter(options.filter),
        projection=options.select,
        populate=options.populate,
    )
    if document is None:
        raise errors.RecordNotFound()
    return DocumentResponse(data=document)
