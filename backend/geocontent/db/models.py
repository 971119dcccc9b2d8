"""Collection schemas for the geospatial content documents.

Documents are schemaless JSON objects; a ``CollectionSchema`` only records
what the query layer needs to know about them: field types for filter value
coercion, enum options for facet counts, relation paths for population,
which fields free-text search looks at and which fields identify a document
besides its id.

Example:
    Look up the relation target of a layer's ``references`` field:
        >>> from geocontent.db.models import LAYERS
        >>> LAYERS.relations["references"]
        'layers'
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Literal

FieldType = Literal["string", "number", "integer", "boolean", "datetime", "object", "array"]

LAYER_CATEGORIES = (
    "Biodiversity",
    "Climate & Carbon",
    "Ecosystem Services",
    "Human Impact",
    "Land Cover",
    "Marine",
    "Natural Hazards",
    "Protected Areas",
    "Restoration",
    "Socio-Economic",
    "Habitats and Biomes",
    "Protected and Conserved Areas",
)
LAYER_TYPES = ("raster", "vector", "geojson", "group", "video")
LAYER_PROVIDERS = ("cartodb", "gee", "mapbox", "leaflet")
LOCATION_TYPES = (
    "Country",
    "Jurisdiction",
    "Biome",
    "Protected Area",
    "Species Area",
    "Collection",
)

_COMMON_FIELDS: Mapping[str, FieldType] = {
    "id": "string",
    "slug": "string",
    "name": "string",
    "description": "string",
    "published": "boolean",
    "featured": "boolean",
    "organization": "string",
    "version": "integer",
    "createdAt": "datetime",
    "updatedAt": "datetime",
}


@dataclasses.dataclass(frozen=True)
class CollectionSchema:
    """What the query layer knows about one document collection.

    Attributes:
        name: Collection name; doubles as the table name and the URL
            segment.
        fields: Dotted field path to its type.
        relations: Reference field to the name of the related collection.
            Values of a relation field are an id or a list of ids.
        enums: Field to its closed set of values.
        search_fields: Fields matched by free-text search.
        unique_fields: Fields that identify a document besides ``id``.
    """

    name: str
    fields: Mapping[str, FieldType]
    relations: Mapping[str, str] = dataclasses.field(default_factory=dict)
    enums: Mapping[str, tuple[str, ...]] = dataclasses.field(default_factory=dict)
    search_fields: tuple[str, ...] = ("name", "description")
    unique_fields: tuple[str, ...] = ("slug",)

    def field_type(self, path: str) -> FieldType | None:
        return self.fields.get(path)


LAYERS = CollectionSchema(
    name="layers",
    fields={
        **_COMMON_FIELDS,
        "category": "string",
        "type": "string",
        "provider": "string",
        "references": "array",
        "config": "object",
    },
    relations={"references": "layers"},
    enums={
        "category": LAYER_CATEGORIES,
        "type": LAYER_TYPES,
        "provider": LAYER_PROVIDERS,
    },
)

LOCATIONS = CollectionSchema(
    name="locations",
    fields={
        **_COMMON_FIELDS,
        "type": "string",
        "areaKm2": "number",
        "centroid": "object",
        "bbox2d": "array",
        "publicResource": "boolean",
        "intersections": "array",
    },
    relations={"intersections": "locations"},
    enums={"type": LOCATION_TYPES},
)

WIDGETS = CollectionSchema(
    name="widgets",
    fields={
        **_COMMON_FIELDS,
        "metrics": "array",
        "layers": "array",
        "config": "object",
    },
    relations={"layers": "layers"},
)

DASHBOARDS = CollectionSchema(
    name="dashboards",
    fields={
        **_COMMON_FIELDS,
        "layers": "array",
        "widgets": "array",
    },
    relations={"layers": "layers", "widgets": "widgets"},
)

SCHEMAS: Mapping[str, CollectionSchema] = {
    schema.name: schema for schema in (LOCATIONS, LAYERS, WIDGETS, DASHBOARDS)
}
