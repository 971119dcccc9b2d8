"""Content collection list and retrieval API endpoints.

Every collection in ``listing.RESOURCES`` is served by the same two routes.
Requests are scoped to the organizations named in the ``X-Groups`` header
and, for public collections, to published documents.

Example:
    List raster layers, ten per page, newest first:
        >>> response = client.get(
        ...     "/api/v1/layers",
        ...     params={"filter": "type==raster", "sort": "-createdAt",
        ...             "page[size]": "10"},
        ...     headers={"X-Groups": "org-a"},
        ... )
        >>> response.json()["links"]["next"]

    Get a location by slug with its published intersections:
        >>> response = client.get(
        ...     "/api/v1/locations/kenya",
        ...     params={"include": "intersections"},
        ...     headers={"X-Groups": "org-a"},
        ... )
"""

import fastapi

from geocontent.core import config
from geocontent.db import database
from geocontent.query import handlers
from geocontent.services import listing

router = fastapi.APIRouter(tags=["content"])


def _get_store(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.DocumentStoreProtocol:
    """Resolve the document store dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        DocumentStoreProtocol implementation selected by
            ``storage_backend``.
    """
    return database.get_document_store(settings)


def _get_parser(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> handlers.QueryParser:
    return handlers.QueryParser(
        handlers.ParserOptions(
            default_limit=settings.default_page_size,
            max_result_window=settings.max_result_window,
        )
    )


def get_groups(
    x_groups: str | None = fastapi.Header(default=None),  # noqa: B008
) -> list[str]:
    """Organizations the caller may read, from the ``X-Groups`` header.

    A missing header yields no groups, which matches no document.

    The header is trusted as-is: it must be set by an authenticating
    gateway in front of this service, which also strips any client-supplied
    ``X-Groups``. Exposing the API directly lets callers read every
    organization's content.
    """
    if not x_groups:
        return []
    return [group.strip() for group in x_groups.split(",") if group.strip()]


def _resource(name: str) -> listing.ResourceConfig:
    resource = listing.RESOURCES.get(name)
    if resource is None:
        raise fastapi.HTTPException(
            status_code=404,
            detail="Resource not found",
        )
    return resource


@router.get("/{resource_name}")
async def list_documents(
    resource_name: str,
    request: fastapi.Request,
    public: bool = False,
    store: database.DocumentStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
    parser: handlers.QueryParser = fastapi.Depends(_get_parser),  # noqa: B008
    groups: list[str] = fastapi.Depends(get_groups),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> listing.ListResponse:
    """List the documents of a collection.

    Supports ``filter``, ``sort``, ``select``, ``include``, ``search``,
    ``page[number]``, ``page[size]`` and ``page[cursor]``. Collections with
    facets report value counts in ``meta.filters``.

    Args:
        resource_name: Collection name (layers, locations, widgets,
            dashboards).
        request: Incoming request, for its raw query string and path.
        public: Only list public resources.
        store: Document store (injected via FastAPI Depends).
        parser: Query parser (injected via FastAPI Depends).
        groups: Caller's organizations (injected via FastAPI Depends).
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        Response body with ``data``, ``meta`` and ``links``.

    Raises:
        HTTPException: If the collection does not exist (404 status code).
    """
    resource = _resource(resource_name)
    context = handlers.ParserContext(
        predefined=listing.predefined_filters(
            groups,
            published_only=resource.published_only,
            public_only=public,
        )
    )
    return await listing.list_resource(
        store.collection(resource.schema.name),
        request.url.query,
        base_url=request.url.path,
        parser=parser,
        context=context,
        facets=resource.facets,
        resolver=listing.StaticValuesResolver({"metrics": settings.known_metrics}),
    )


@router.get("/{resource_name}/{key}")
async def get_document(
    resource_name: str,
    key: str,
    request: fastapi.Request,
    store: database.DocumentStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
    parser: handlers.QueryParser = fastapi.Depends(_get_parser),  # noqa: B008
    groups: list[str] = fastapi.Depends(get_groups),  # noqa: B008
) -> listing.DocumentResponse:
    """Get one document by id or slug.

    Supports ``select`` and ``include``; ``filter`` further restricts which
    document is visible.

    Raises:
        HTTPException: If the collection does not exist (404 status code).
        RecordNotFound: If no visible document matches ``key``.
    """
    resource = _resource(resource_name)
    context = handlers.ParserContext(
        predefined=listing.predefined_filters(
            groups, published_only=resource.published_only
        )
    )
    return await listing.get_resource(
        store.collection(resource.schema.name),
        key,
        request.url.query,
        parser=parser,
        context=context,
    )
