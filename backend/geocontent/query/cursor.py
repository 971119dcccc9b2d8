"""Opaque pagination cursor encoding and decoding.

A cursor token is the standard base64 encoding of compact UTF-8 JSON::

    {"id": "<last seen id>", "sort": {"<path>": [<value>, <1|-1>]}, "reverse": false}

The token is self-contained: it records, for every active sort path, the
value of the record the page ended on and the effective comparison order
(inverted when paging backwards). No pagination state is kept server side.

To start cursor pagination a client sends the reserved sentinel ``-1``.

Example:
    >>> token = encode_cursor("a1", {"name": 1}, {"id": "a1", "name": "Kenya"})
    >>> decode_cursor(token)
    Cursor(id='a1', sort={'name': ('Kenya', 1)}, reverse=False)
    >>> decode_cursor("-1").is_empty
    True
"""

from __future__ import annotations

import base64
import datetime
import decimal
import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any

from geocontent.core import errors
from geocontent.query import types

CURSOR_SENTINEL = "-1"

logger = logging.getLogger(__name__)

_MISSING = object()


def read_path(record: Any, path: str, default: Any = _MISSING) -> Any:
    """Read a dotted path off a mapping or attribute-style record."""
    node = record
    for part in path.split("."):
        if isinstance(node, Mapping):
            if part not in node:
                return default
            node = node[part]
        else:
            node = getattr(node, part, _MISSING)
            if node is _MISSING:
                return default
    return node


def json_default(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_cursor(
    last_id: Any,
    sort: Mapping[str, int],
    record: Any,
    reverse: bool = False,
) -> str:
    """Build a cursor token positioned on ``record``.

    Args:
        last_id: Unique id of the record the page ends (or starts) on.
        sort: Active sort specification, path to 1 (asc) or -1 (desc).
        record: The record to read the sort values from.
        reverse: True for a cursor that pages backwards from ``record``.

    Returns:
        Base64 token safe to hand to clients.

    Raises:
        CursorEncodingError: If a sort path is absent from ``record``.
    """
    entries: dict[str, list[Any]] = {}
    for path, order in sort.items():
        value = read_path(record, path)
        if value is _MISSING:
            logger.error("cannot paginate on sort path %r absent from record %r", path, last_id)
            raise errors.CursorEncodingError(path)
        entries[path] = [value, -order if reverse else order]

    payload = {"id": last_id, "sort": entries, "reverse": reverse}
    raw = json.dumps(
        payload,
        separators=(",", ":"),
        ensure_ascii=False,
        default=json_default,
    )
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _invalid_cursor() -> errors.ValidationError:
    return errors.ValidationError(
        [errors.error_object("cursor", "Could not decode query parameter.")]
    )


def _from_payload(payload: Any) -> types.Cursor:
    if not isinstance(payload, dict):
        raise _invalid_cursor()
    sort = payload.get("sort") or {}
    reverse = payload.get("reverse", False)
    if not isinstance(sort, dict) or not isinstance(reverse, bool):
        raise _invalid_cursor()

    entries: dict[str, tuple[Any, int]] = {}
    for path, entry in sort.items():
        if not isinstance(entry, list) or len(entry) != 2 or entry[1] not in (1, -1):
            raise _invalid_cursor()
        entries[path] = (entry[0], int(entry[1]))

    return types.Cursor(id=payload.get("id"), sort=entries, reverse=reverse)


def decode_cursor(
    token: str | None,
    initial_value: str = CURSOR_SENTINEL,
) -> types.Cursor | None:
    """Decode a cursor token.

    Args:
        token: Token received from the client.
        initial_value: Sentinel that starts cursor pagination.

    Returns:
        None for a missing or blank token (offset pagination), an empty
        cursor for the sentinel, otherwise the decoded cursor.

    Raises:
        ValidationError: If the token is not a valid cursor.
    """
    if token is None or not token.strip():
        return None
    sanitized = token.strip()
    if sanitized == initial_value:
        return types.Cursor.empty()

    # tolerate url-safe alphabet, stripped padding and form-decoded "+"
    normalized = sanitized.replace(" ", "+").replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        raw = base64.b64decode(normalized, validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except ValueError as exc:
        raise _invalid_cursor() from exc
    return _from_payload(payload)
