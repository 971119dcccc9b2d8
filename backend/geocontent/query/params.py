"""Decode flat query parameters into nested parameter trees.

Clients address nested directives either with brackets or with dots, so
``page[number]=2`` and ``page.number=2`` both decode to
``{"page": {"number": "2"}}``. Already nested mappings (for example the
parameters FastAPI hands over) go through the same normalisation, which makes
decoding idempotent.

Example:
    >>> decode_params("page[number]=2&page.size=5&sort=-name")
    {'page': {'number': '2', 'size': '5'}, 'sort': '-name'}
    >>> get_param(decode_params("page[size]=5"), "page.size")
    '5'
"""

from __future__ import annotations

import re
import urllib.parse
from collections.abc import Mapping
from typing import Any

ParamTree = dict[str, Any]

_BRACKETS = re.compile(r"\[([^\[\]]*)\]")
_LIST_SEPARATOR = ","


def split_key(key: str) -> list[str]:
    """Split ``a[b][c]`` or ``a.b.c`` into ``["a", "b", "c"]``."""
    dotted = _BRACKETS.sub(lambda m: "." + m.group(1), key)
    return [part for part in dotted.split(".") if part]


def _assign(tree: ParamTree, parts: list[str], value: Any) -> None:
    node = tree
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    leaf = parts[-1]
    existing = node.get(leaf)
    if isinstance(existing, str) and isinstance(value, str):
        # repeated keys extend the comma separated directive list
        node[leaf] = _LIST_SEPARATOR.join((existing, value))
    elif isinstance(existing, dict) and isinstance(value, dict):
        for key, nested in value.items():
            _assign(existing, [key], nested)
    else:
        node[leaf] = value


def _normalize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return _decode_mapping(value)
    if isinstance(value, (list, tuple)):
        return _LIST_SEPARATOR.join(str(v) for v in value)
    return value


def _decode_mapping(params: Mapping[str, Any]) -> ParamTree:
    tree: ParamTree = {}
    for key, value in params.items():
        parts = split_key(str(key))
        if parts:
            _assign(tree, parts, _normalize(value))
    return tree


def decode_params(query: str | Mapping[str, Any] | None) -> ParamTree:
    """Turn a query string or parameter mapping into a nested tree.

    Args:
        query: Raw query string (with or without a leading ``?``), a flat or
            nested mapping, or None.

    Returns:
        Nested dictionary keyed by path segment. Leaf values are strings for
        query-string input; repeated keys are joined with commas.
    """
    if query is None:
        return {}
    if isinstance(query, str):
        pairs = urllib.parse.parse_qsl(
            query.lstrip("?"),
            keep_blank_values=True,
        )
        tree: ParamTree = {}
        for key, value in pairs:
            parts = split_key(key)
            if parts:
                _assign(tree, parts, value)
        return tree
    return _decode_mapping(query)


def get_param(tree: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Read the value stored under a dotted key of a decoded tree."""
    node: Any = tree
    for part in split_key(key):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node
