"""Convert filter values from query strings to the types documents store.

Every filter value arrives as a string. Before comparing, values on typed
fields are converted according to the collection schema: booleans accept
``true/false/1/0/yes/no``, numbers are parsed, datetimes are normalised to
UTC ISO-8601 strings (the representation documents are stored with).
Unknown and string fields are left untouched.
"""

from __future__ import annotations

import dataclasses
import datetime
from collections.abc import Mapping
from typing import Any

from geocontent.core import errors
from geocontent.db import models
from geocontent.query import types

_TRUE = {"1", "true", "t", "yes", "y", "on"}
_FALSE = {"0", "false", "f", "no", "n", "off"}


def _invalid(field: str, kind: str, value: Any) -> errors.ValidationError:
    return errors.ValidationError(
        [errors.error_object("filter", f'Invalid {kind} value "{value}" for field "{field}"')]
    )


def _coerce_bool(field: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise _invalid(field, "boolean", value)


def _coerce_number(field: str, value: Any, integer: bool) -> int | float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    text = str(value).strip()
    try:
        number = float(text)
    except ValueError:
        raise _invalid(field, "integer" if integer else "number", value) from None
    if number.is_integer() and (integer or "." not in text):
        return int(number)
    if integer:
        raise _invalid(field, "integer", value)
    return number


def _coerce_datetime(field: str, value: Any) -> str:
    if isinstance(value, datetime.datetime):
        parsed = value
    else:
        text = str(value).strip()
        try:
            parsed = datetime.datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise _invalid(field, "datetime", value) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.UTC)
    return parsed.astimezone(datetime.UTC).isoformat()


def coerce_value(field: str, field_type: models.FieldType | None, value: Any) -> Any:
    """Convert one filter value for a field of ``field_type``.

    Raises:
        ValidationError: If the value cannot represent ``field_type``.
    """
    if value is None:
        return None
    if field_type == "boolean":
        return _coerce_bool(field, value)
    if field_type in ("number", "integer"):
        return _coerce_number(field, value, integer=field_type == "integer")
    if field_type == "datetime":
        return _coerce_datetime(field, value)
    return value


def coerce_filter(
    tree: types.FilterTree,
    schema: models.CollectionSchema,
) -> types.FilterTree:
    """Coerce every condition value of ``tree`` using ``schema``."""
    coerced: dict[str, dict[types.Operator, Any]] = {}
    for field, condition in tree.items():
        field_type = schema.field_type(field)
        coerced[field] = {}
        for op, value in condition.items():
            if op is types.Operator.EXISTS:
                coerced[field][op] = _coerce_bool(field, value) if value != "" else True
            elif isinstance(value, list):
                coerced[field][op] = [coerce_value(field, field_type, v) for v in value]
            else:
                coerced[field][op] = coerce_value(field, field_type, value)
    return types.FilterTree(coerced)


def _coerce_node(
    node: types.PopulationNode,
    schema: models.CollectionSchema,
    schemas: Mapping[str, models.CollectionSchema],
) -> types.PopulationNode:
    target = schemas.get(schema.relations.get(node.path, ""))
    if target is None:
        return node
    return dataclasses.replace(
        node,
        filter=coerce_filter(node.filter, target),
        children=tuple(_coerce_node(child, target, schemas) for child in node.children),
    )


def coerce_options(
    options: types.QueryOptions,
    schema: models.CollectionSchema,
    schemas: Mapping[str, models.CollectionSchema] = models.SCHEMAS,
) -> types.QueryOptions:
    """Coerce the top-level filter and every population node's filter."""
    return dataclasses.replace(
        options,
        filter=coerce_filter(options.filter, schema),
        populate=tuple(_coerce_node(n, schema, schemas) for n in options.populate),
    )
