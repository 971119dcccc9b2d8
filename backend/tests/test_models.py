"""Tests for the content collection schemas.

See Also:
    - backend/geocontent/db/models.py for the schemas.
"""

from __future__ import annotations

from geocontent.db import models


def test_schemas_registered_by_name() -> None:
    """Test that every schema is reachable under its collection name."""
    assert set(models.SCHEMAS) == {"locations", "layers", "widgets", "dashboards"}
    for name, schema in models.SCHEMAS.items():
        assert schema.name == name


def test_relations_point_at_known_collections() -> None:
    """Test that every relation targets a registered schema."""
    for schema in models.SCHEMAS.values():
        for path, target in schema.relations.items():
            assert target in models.SCHEMAS
            assert schema.field_type(path) == "array"


def test_field_types() -> None:
    """Test field type lookup, including unknown fields."""
    assert models.LOCATIONS.field_type("areaKm2") == "number"
    assert models.LAYERS.field_type("published") == "boolean"
    assert models.LAYERS.field_type("createdAt") == "datetime"
    assert models.LAYERS.field_type("config.tiles") is None


def test_enums_back_facets() -> None:
    """Test enum options used for zero-count facet values."""
    assert "raster" in models.LAYERS.enums["type"]
    assert models.LOCATIONS.enums["type"] == models.LOCATION_TYPES
    assert models.WIDGETS.enums == {}
