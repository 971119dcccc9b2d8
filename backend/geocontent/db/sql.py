"""Compile query expressions into PostgreSQL JSONB SQL.

Documents live in a ``data JSONB`` column. Paths are passed as ``text[]``
parameters to the ``#>`` operator and values as JSON-encoded ``jsonb``
parameters, so only table names are ever interpolated into SQL, and those
are validated and quoted first.

Missing paths are coalesced to JSON ``null`` so comparisons, ordering and
keyset predicates agree on where documents without a value belong.

Example:
    >>> fragment = compile_expression(
    ...     expressions.Condition("type", types.Operator.EQ, "Country")
    ... )
    >>> fragment.sql
    "(COALESCE(data #> %s, 'null'::jsonb) = %s::jsonb OR COALESCE(data #> %s, 'null'::jsonb) @> %s::jsonb)"
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from geocontent.query import cursor as cursor_codec
from geocontent.query import expressions, types

_COMPARISONS = {
    types.Operator.GT: ">",
    types.Operator.GTE: ">=",
    types.Operator.LT: "<",
    types.Operator.LTE: "<=",
}


@dataclasses.dataclass(frozen=True)
class Fragment:
    sql: str
    params: tuple[Any, ...] = ()


TRUE = Fragment("TRUE")
FALSE = Fragment("FALSE")


def validate_identifier(name: str) -> str:
    """Allow only alphanumerics and underscores in table names.

    Raises:
        ValueError: If ``name`` contains anything else.
    """
    if not name or not name.replace("_", "").isalnum():
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


def json_param(value: Any) -> str:
    return json.dumps(value, default=cursor_codec.json_default)


def _path(path: str) -> list[str]:
    return path.split(".")


def _value(path: str) -> tuple[str, tuple[Any, ...]]:
    return "COALESCE(data #> %s, 'null'::jsonb)", (_path(path),)


def _equals(path: str, value: Any) -> Fragment:
    column, params = _value(path)
    # scalar equality or membership in an array field
    return Fragment(
        f"({column} = %s::jsonb OR {column} @> %s::jsonb)",
        params + (json_param(value),) + params + (json_param([value]),),
    )


def _any_of(path: str, values: Iterable[Any]) -> Fragment:
    fragments = [_equals(path, value) for value in values]
    if not fragments:
        return FALSE
    return _join(" OR ", fragments)


def _join(separator: str, fragments: Sequence[Fragment]) -> Fragment:
    sql = separator.join(f.sql for f in fragments)
    params = tuple(p for f in fragments for p in f.params)
    return Fragment(f"({sql})", params)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0")
    return bool(value)


def _condition(condition: expressions.Condition) -> Fragment:
    op, path, value = condition.op, condition.path, condition.value
    if op is types.Operator.EQ:
        return _equals(path, value)
    if op is types.Operator.NE:
        inner = _equals(path, value)
        return Fragment(f"NOT {inner.sql}", inner.params)
    if op is types.Operator.IN:
        return _any_of(path, value)
    if op is types.Operator.NIN:
        inner = _any_of(path, value)
        return Fragment(f"NOT {inner.sql}", inner.params)
    if op is types.Operator.EXISTS:
        check = "IS NOT NULL" if _truthy(value) else "IS NULL"
        return Fragment(f"(data #> %s) {check}", (_path(path),))
    column, params = _value(path)
    return Fragment(f"{column} {_COMPARISONS[op]} %s::jsonb", params + (json_param(value),))


def _text_search(search: expressions.TextSearch, search_fields: Sequence[str]) -> Fragment:
    if not search_fields:
        return FALSE
    pattern = "%" + search.text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
    fragments = [Fragment("(data #>> %s) ILIKE %s", (_path(f), pattern)) for f in search_fields]
    return _join(" OR ", fragments)


def compile_expression(
    expression: expressions.Expression,
    search_fields: Sequence[str] = ("name",),
) -> Fragment:
    """Compile an expression into a WHERE clause fragment."""
    if isinstance(expression, expressions.Condition):
        return _condition(expression)
    if isinstance(expression, expressions.And):
        if not expression.items:
            return TRUE
        return _join(" AND ", [compile_expression(i, search_fields) for i in expression.items])
    if isinstance(expression, expressions.Or):
        if not expression.items:
            return FALSE
        return _join(" OR ", [compile_expression(i, search_fields) for i in expression.items])
    if isinstance(expression, expressions.TextSearch):
        return _text_search(expression, search_fields)
    raise TypeError(f"Unsupported expression: {expression!r}")


def compile_sort(sort: Mapping[str, int]) -> Fragment:
    """Compile ``{path: ±1}`` into an ORDER BY list."""
    if not sort:
        return Fragment("")
    parts = []
    params: list[Any] = []
    for path, order in sort.items():
        column, column_params = _value(path)
        parts.append(f"{column} {'ASC' if order > 0 else 'DESC'}")
        params.extend(column_params)
    return Fragment(" ORDER BY " + ", ".join(parts), tuple(params))


def select_sql(
    table: str,
    where: Fragment,
    sort: Fragment,
    skip: int = 0,
    limit: int | None = None,
) -> Fragment:
    sql = f"SELECT data FROM {table} WHERE {where.sql}{sort.sql}"
    params = where.params + sort.params
    if limit is not None:
        sql += " LIMIT %s"
        params += (limit,)
    if skip:
        sql += " OFFSET %s"
        params += (skip,)
    return Fragment(sql, params)


def count_sql(table: str, where: Fragment) -> Fragment:
    return Fragment(f"SELECT count(*) FROM {table} WHERE {where.sql}", where.params)


def group_count_sql(table: str, field: str, where: Fragment) -> Fragment:
    """Count per value of ``field``, unwinding arrays and skipping nulls."""
    path = _path(field)
    return Fragment(
        f"""
        SELECT value, count(*) FROM {table},
        LATERAL jsonb_array_elements(
            CASE WHEN jsonb_typeof(data #> %s) = 'array'
                THEN data #> %s
                ELSE jsonb_build_array(data #> %s)
            END
        ) AS value
        WHERE {where.sql} AND value <> 'null'::jsonb
        GROUP BY value
        """,
        (path, path, path) + where.params,
    )
