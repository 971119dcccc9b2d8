"""Tests for the FastAPI application factory and the content endpoints.

This module validates that:
    - The FastAPI app is correctly instantiated via main.create_app,
    - OpenAPI metadata (title, version) matches the project contract,
    - The /health endpoint returns the expected response,
    - Collection routes list and retrieve documents scoped by ``X-Groups``,
    - Client errors are rendered as ``{"errors": [...]}`` bodies.

The document store is always injected using dependency overrides so no
database is needed.

See Also:
    - backend/geocontent/main.py for the application factory,
    - backend/geocontent/api/resources.py for the routes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import cast

import pytest
from fastapi import testclient

from geocontent import main
from geocontent.api import resources
from geocontent.db import database

DOCUMENTS = {
    "layers": [
        {
            "id": "l1",
            "slug": "forest",
            "name": "Forest cover",
            "type": "raster",
            "category": "Land Cover",
            "organization": "org-a",
            "published": True,
            "references": ["l2"],
        },
        {
            "id": "l2",
            "slug": "alerts",
            "name": "Alerts",
            "type": "vector",
            "category": "Human Impact",
            "organization": "org-a",
            "published": True,
        },
        {
            "id": "l3",
            "slug": "hidden",
            "name": "Hidden",
            "type": "raster",
            "category": "Land Cover",
            "organization": "org-b",
            "published": True,
        },
    ],
    "locations": [
        {
            "id": "c1",
            "slug": "kenya",
            "name": "Kenya",
            "type": "Country",
            "organization": "org-a",
            "published": True,
            "publicResource": True,
        },
        {
            "id": "c2",
            "slug": "private",
            "name": "Private area",
            "type": "Jurisdiction",
            "organization": "org-a",
            "published": True,
            "publicResource": False,
        },
    ],
}

GROUPS = {"X-Groups": "org-a, org-c"}


@pytest.fixture
def client() -> Iterator[testclient.TestClient]:
    """Test client over an in-memory store holding ``DOCUMENTS``."""
    store = database.InMemoryDocumentStore()
    for name, documents in DOCUMENTS.items():
        for document in documents:
            asyncio.run(store.collection(name).add(document))
    app = main.create_app()
    app.dependency_overrides[resources._get_store] = lambda: store
    try:
        yield testclient.TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_create_app() -> None:
    """Test that create_app returns a configured FastAPI instance."""
    app = main.create_app()
    assert app.title == "Geo Content API"
    assert app.version == "0.1.0"
    routes = [cast(str, getattr(route, "path", "")) for route in app.routes]
    assert "/health" in routes
    assert "/api/v1/{resource_name}" in routes
    assert "/api/v1/{resource_name}/{key}" in routes


def test_health_endpoint(client: testclient.TestClient) -> None:
    """Test the health check endpoint returns ok status."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_get_groups_splits_header() -> None:
    """Test parsing of the comma separated groups header."""
    assert resources.get_groups(" a, ,b ") == ["a", "b"]
    assert resources.get_groups(None) == []


def test_list_layers(client: testclient.TestClient) -> None:
    """Test listing with filters, facets and links."""
    response = client.get(
        "/api/v1/layers",
        params={"filter": "type==raster", "page[size]": "10"},
        headers=GROUPS,
    )
    assert response.status_code == 200
    body = response.json()
    assert [doc["id"] for doc in body["data"]] == ["l1"]
    assert body["meta"]["results"] == 1
    assert body["meta"]["pagination"] == {"total": 1, "size": 10, "page": 1}
    counts = {facet["value"]: facet["count"] for facet in body["meta"]["filters"]}
    assert counts["Land Cover"] == 1
    assert counts["Human Impact"] == 0
    assert counts["Marine"] == 0
    assert body["links"]["self"].startswith("/api/v1/layers?")
    assert body["links"]["next"] is None


def test_list_without_groups_is_empty(client: testclient.TestClient) -> None:
    """Test that requests without ``X-Groups`` see nothing."""
    response = client.get("/api/v1/layers")
    assert response.status_code == 200
    assert response.json()["data"] == []


def test_list_public_locations(client: testclient.TestClient) -> None:
    """Test that ``public`` restricts locations to public resources."""
    response = client.get("/api/v1/locations", params={"public": "true"}, headers=GROUPS)
    assert [doc["slug"] for doc in response.json()["data"]] == ["kenya"]
    everything = client.get("/api/v1/locations", headers=GROUPS)
    assert len(everything.json()["data"]) == 2


def test_cursor_pagination_through_links(client: testclient.TestClient) -> None:
    """Test following ``next`` links in cursor mode."""
    response = client.get(
        "/api/v1/layers",
        params={"page[size]": "1", "page[cursor]": "-1"},
        headers=GROUPS,
    )
    first = response.json()
    assert [doc["id"] for doc in first["data"]] == ["l1"]
    assert first["links"]["first"] is None

    second = client.get(first["links"]["next"], headers=GROUPS).json()
    assert [doc["id"] for doc in second["data"]] == ["l2"]
    assert second["meta"]["pagination"]["nextCursor"] is None

    back = client.get(second["links"]["prev"], headers=GROUPS).json()
    assert [doc["id"] for doc in back["data"]] == ["l1"]


def test_select_without_sort_field(client: testclient.TestClient) -> None:
    """Test that projections dropping the sort field or id still list."""
    response = client.get(
        "/api/v1/layers",
        params={"select": "name", "sort": "-type", "page[size]": "1"},
        headers=GROUPS,
    )
    assert response.status_code == 200
    assert response.json()["data"] == [{"id": "l2", "name": "Alerts"}]

    response = client.get(
        "/api/v1/layers",
        params={"select": "-id", "page[size]": "1", "page[cursor]": "-1"},
        headers=GROUPS,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["data"][0]["slug"] == "forest"
    assert "id" not in body["data"][0]
    following = client.get(body["links"]["next"], headers=GROUPS).json()
    assert [doc["slug"] for doc in following["data"]] == ["alerts"]


def test_invalid_filter_is_bad_request(client: testclient.TestClient) -> None:
    """Test that parse errors are returned as error objects."""
    response = client.get("/api/v1/layers", params={"filter": "a=b"}, headers=GROUPS)
    assert response.status_code == 400
    assert response.json() == {
        "errors": [
            {
                "code": 400,
                "source": {"parameter": "filter"},
                "title": "ValidationError",
                "detail": "Invalid filter expression: a=b",
            }
        ]
    }


def test_invalid_cursor_is_bad_request(client: testclient.TestClient) -> None:
    """Test that undecodable cursors name the cursor parameter."""
    response = client.get("/api/v1/layers", params={"page[cursor]": "!!"}, headers=GROUPS)
    assert response.status_code == 400
    assert response.json()["errors"][0]["source"] == {"parameter": "cursor"}


def test_unknown_resource(client: testclient.TestClient) -> None:
    """Test that unknown collections are not found."""
    response = client.get("/api/v1/tiles", headers=GROUPS)
    assert response.status_code == 404
    assert response.json() == {"detail": "Resource not found"}


def test_get_document_by_slug_with_include(client: testclient.TestClient) -> None:
    """Test single document retrieval with a populated relation."""
    response = client.get(
        "/api/v1/layers/forest",
        params={"include": "references", "select": "name,references.name"},
        headers=GROUPS,
    )
    assert response.status_code == 200
    assert response.json() == {
        "data": {
            "id": "l1",
            "name": "Forest cover",
            "references": [{"id": "l2", "name": "Alerts"}],
        }
    }


def test_get_foreign_document_is_not_found(client: testclient.TestClient) -> None:
    """Test that documents of other organizations are not visible."""
    response = client.get("/api/v1/layers/hidden", headers=GROUPS)
    assert response.status_code == 404
    assert response.json()["errors"][0]["title"] == "RecordNotFound"
