"""In-memory evaluation of query expressions over JSON documents.

Semantics follow a document store rather than Python equality: a condition
on a path holding an array matches when any element matches, missing values
compare like null, and values of different kinds are ordered by
``expressions.ordering_key``.
"""

from __future__ import annotations

import functools
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from geocontent.core import errors
from geocontent.query import expressions, types

_MISSING = object()


def read_values(document: Any, path: str) -> list[Any]:
    """Every value reachable at ``path``, descending into arrays."""
    nodes = [document]
    for part in path.split("."):
        found = []
        for node in nodes:
            if isinstance(node, Mapping):
                if part in node:
                    found.append(node[part])
            elif isinstance(node, list):
                for item in node:
                    if isinstance(item, Mapping) and part in item:
                        found.append(item[part])
        nodes = found
    return nodes


def read_value(document: Any, path: str) -> Any:
    """The value at ``path``, or None when it is missing."""
    values = read_values(document, path)
    return values[0] if values else None


def _candidates(document: Any, path: str) -> list[Any]:
    """Values a condition on ``path`` is tested against; arrays add their elements."""
    values = read_values(document, path)
    if not values:
        return [None]
    candidates = []
    for value in values:
        candidates.append(value)
        if isinstance(value, list):
            candidates.extend(value)
    return candidates


def _equal(left: Any, right: Any) -> bool:
    """Equality without cross-kind coercion (``1`` never equals ``True``)."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return expressions.ordering_key(left)[0] == expressions.ordering_key(right)[0] and left == right


def _compare(left: Any, right: Any) -> int:
    """Three-way comparison in ``ordering_key`` order."""
    lkey, rkey = expressions.ordering_key(left), expressions.ordering_key(right)
    return (lkey > rkey) - (lkey < rkey)


def _truthy(value: Any) -> bool:
    """Interpret an ``exists`` operand; ``"false"`` and ``"0"`` are false."""
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0")
    return bool(value)


def _match_condition(document: Any, condition: expressions.Condition) -> bool:
    """Evaluate a single condition; any matching candidate satisfies it."""
    op, value = condition.op, condition.value
    if op is types.Operator.EXISTS:
        present = bool(read_values(document, condition.path))
        return present is _truthy(value)

    candidates = _candidates(document, condition.path)
    if op is types.Operator.EQ:
        return any(_equal(c, value) for c in candidates)
    if op is types.Operator.NE:
        return not any(_equal(c, value) for c in candidates)
    if op is types.Operator.IN:
        return any(_equal(c, v) for c in candidates for v in value)
    if op is types.Operator.NIN:
        return not any(_equal(c, v) for c in candidates for v in value)

    wanted = {
        types.Operator.GT: lambda r: r > 0,
        types.Operator.GTE: lambda r: r >= 0,
        types.Operator.LT: lambda r: r < 0,
        types.Operator.LTE: lambda r: r <= 0,
    }[op]
    return any(wanted(_compare(c, value)) for c in candidates)


def _match_text(
    document: Any,
    search: expressions.TextSearch,
    search_fields: Iterable[str],
) -> bool:
    """Case-insensitive substring search over the string values of ``search_fields``."""
    needle = search.text.casefold()
    for path in search_fields:
        for value in _candidates(document, path):
            if isinstance(value, str) and needle in value.casefold():
                return True
    return False


def matches(
    document: Any,
    expression: expressions.Expression,
    search_fields: Sequence[str] = ("name",),
) -> bool:
    """Evaluate ``expression`` against ``document``."""
    if isinstance(expression, expressions.Condition):
        return _match_condition(document, expression)
    if isinstance(expression, expressions.And):
        return all(matches(document, item, search_fields) for item in expression.items)
    if isinstance(expression, expressions.Or):
        return any(matches(document, item, search_fields) for item in expression.items)
    if isinstance(expression, expressions.TextSearch):
        return _match_text(document, expression, search_fields)
    raise TypeError(f"Unsupported expression: {expression!r}")


def sort_documents(
    documents: Iterable[Mapping[str, Any]],
    sort: Mapping[str, int],
) -> list[Mapping[str, Any]]:
    """Sort by every ``path: ±1`` entry, first entry most significant."""

    def compare(left: Mapping[str, Any], right: Mapping[str, Any]) -> int:
        for path, order in sort.items():
            result = _compare(read_value(left, path), read_value(right, path))
            if result:
                return result * order
        return 0

    return sorted(documents, key=functools.cmp_to_key(compare))


def _mask_tree(paths: Iterable[str]) -> dict[str, Any]:
    """Nest dotted inclusion paths; a shorter path swallows its descendants."""
    tree: dict[str, Any] = {}
    for path in paths:
        *parents, leaf = path.split(".")
        node = tree
        for part in parents:
            child = node.get(part)
            if child is True:
                break
            node = node.setdefault(part, {})
        else:
            node[leaf] = True
    return tree


def _include(value: Any, tree: Mapping[str, Any]) -> Any:
    """Copy the parts of ``value`` named by ``tree``, mapping over arrays."""
    if isinstance(value, list):
        return [_include(item, tree) for item in value if isinstance(item, Mapping)]
    if not isinstance(value, Mapping):
        return _MISSING
    included: dict[str, Any] = {}
    for key, subtree in tree.items():
        if key not in value:
            continue
        if subtree is True:
            included[key] = _deepcopy(value[key])
        else:
            picked = _include(value[key], subtree)
            if picked is not _MISSING:
                included[key] = picked
    return included


def _drop(document: dict[str, Any], parts: list[str]) -> None:
    """Remove a path in place, descending into arrays of objects."""
    head, *rest = parts
    if head not in document:
        return
    if not rest:
        del document[head]
        return
    value = document[head]
    if isinstance(value, dict):
        _drop(value, rest)
    elif isinstance(value, list):
        for item in value:
            if isinstance(item, dict):
                _drop(item, rest)


def _deepcopy(value: Any) -> Any:
    """Copy JSON containers; scalars are shared."""
    if isinstance(value, Mapping):
        return {k: _deepcopy(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_deepcopy(v) for v in value]
    return value


def project(
    document: Mapping[str, Any],
    mask: Mapping[str, int] | None,
    id_field: str = expressions.ID_FIELD,
) -> dict[str, Any]:
    """Apply an inclusion or exclusion projection to a copy of ``document``.

    The id is always included unless explicitly excluded.

    Raises:
        DocumentError: If the mask mixes inclusions and exclusions.
    """
    if not mask:
        return _deepcopy(document)
    flags = {path: flag for path, flag in mask.items() if path != id_field}
    inclusive = {bool(flag) for flag in flags.values()}
    if len(inclusive) > 1:
        raise errors.DocumentError(
            "Could not retrieve documents. Cannot have a mix of inclusion and exclusion.",
            400,
        )

    if True in inclusive or (not flags and mask.get(id_field)):
        projected: dict[str, Any] = {}
        if mask.get(id_field, 1) and id_field in document:
            projected[id_field] = document[id_field]
        projected.update(_include(document, _mask_tree(flags)))
        return projected

    projected = _deepcopy(document)
    for path in mask:
        if not mask[path]:
            _drop(projected, path.split("."))
    return projected


def keep_relations(
    projection: Mapping[str, int] | None,
    populate: Sequence[types.PopulationNode],
    id_field: str = expressions.ID_FIELD,
) -> Mapping[str, int] | None:
    """Keep populated relation fields in an inclusion projection.

    Relations are resolved from the reference ids stored on the document,
    so an inclusion mask that names only relation-local fields would
    otherwise drop the ids before population runs.
    """
    if not projection or not populate:
        return projection
    if not any(flag for path, flag in projection.items() if path != id_field):
        return projection
    return {**projection, **{node.path: 1 for node in populate}}


def widen_projection(
    projection: Mapping[str, int] | None,
    required: Iterable[str],
    id_field: str = expressions.ID_FIELD,
) -> Mapping[str, int] | None:
    """Return a projection that also keeps every path in ``required``.

    Inclusion masks gain the required paths. Exclusion masks lose any
    exclusion that would remove a required path or one of its parents.

    Args:
        projection: Client projection, possibly None.
        required: Dotted paths the fetched documents must carry.
        id_field: Name of the id field.

    Returns:
        The widened projection; None or the input when nothing changes.
    """
    if not projection:
        return projection
    paths = [id_field, *required]
    if any(flag for path, flag in projection.items() if path != id_field):
        return {**projection, **{path: 1 for path in paths}}

    def _covers(excluded: str) -> bool:
        return any(p == excluded or p.startswith(excluded + ".") for p in paths)

    return {path: flag for path, flag in projection.items() if not _covers(path)}


def group_counts(
    documents: Iterable[Mapping[str, Any]],
    field: str,
) -> list[tuple[Any, int]]:
    """Count documents per value of ``field``, one count per array element.

    Documents where the field is missing or null are not counted.
    """
    counts: dict[Any, int] = {}
    keys: dict[Any, Any] = {}
    for document in documents:
        for value in read_values(document, field):
            items = value if isinstance(value, list) else [value]
            for item in items:
                if item is None:
                    continue
                key = (expressions.ordering_key(item)[0], repr(item))
                keys.setdefault(key, item)
                counts[key] = counts.get(key, 0) + 1
    return [(keys[key], count) for key, count in counts.items()]
