"""Directive handlers and the query parser.

Each directive of the query language (select, populate, sort, skip, limit,
cursor, filter, search) is parsed by one pure function taking the raw
parameter value and a ``ParserContext``. ``QueryParser`` looks every
directive up under its configurable key, threads an immutable
``QueryOptions`` through the handlers, and finishes with the population
merge, wildcard stripping and cursor validation passes.

Query language summary:
    - ``select=name,-secret``: include ``name``, exclude ``secret``.
    - ``sort=-createdAt,name``: descending ``createdAt``, then ``name``.
    - ``include=owner.team,layers``: relations to populate.
    - ``filter=type==Country,areaKm2>=10,slug==a;b``: conjunction of
      conditions; ``;`` lists turn ``==``/``!=`` into ``in``/``nin``.
    - ``page[number]=2&page[size]=20``: offset pagination.
    - ``page[cursor]=-1``: start cursor pagination.
    - ``search=kenya``: free-text search.

Example:
    >>> parser = QueryParser()
    >>> options = parser.parse("filter=age>=5&sort=-name&page[size]=10")
    >>> options.filter.to_dict(), options.sort.to_dict(), options.limit
    ({'age': {'gte': '5'}}, {'name': -1}, 10)
"""

from __future__ import annotations

import dataclasses
import functools
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any, NamedTuple

from geocontent.core import errors
from geocontent.query import cursor as cursor_codec
from geocontent.query import params, population, types

DEFAULT_LIMIT = 100
MAX_RESULT_WINDOW = 100

LIST_SEPARATOR = ","
VALUE_SEPARATOR = ";"

# Tried in order: two-character operators first so that ``>=`` is never
# read as ``>`` followed by a value starting with ``=``.
FILTER_OPERATORS: tuple[str, ...] = ("==", "!=", ">=", "<=", ">", "<")

_INTEGER = re.compile(r"^\s*([+-]?\d+)")


@dataclasses.dataclass(frozen=True)
class ParserOptions:
    """Lookup keys of every directive plus pagination bounds."""

    select_key: str = "select"
    populate_key: str = "include"
    sort_key: str = "sort"
    skip_key: str = "page.number"
    limit_key: str = "page.size"
    cursor_key: str = "page.cursor"
    filter_key: str = "filter"
    search_key: str = "search"
    default_limit: int = DEFAULT_LIMIT
    max_result_window: int = MAX_RESULT_WINDOW


@dataclasses.dataclass(frozen=True)
class ParserContext:
    """Per-request parsing context supplied by the caller.

    Attributes:
        predefined: Server-side filter clauses (tenant scoping, publication
            state). Appended after client filters and never affected by the
            prefix options below.
        include_key_prefix: Keep only list entries below this relation and
            strip the prefix from them.
        exclude_key_prefix: Drop list entries below this relation.
    """

    predefined: tuple[types.FilterClause, ...] = ()
    include_key_prefix: str | None = None
    exclude_key_prefix: str | None = None


Handler = Callable[[Any, ParserContext], Any]


class DirectiveHandler(NamedTuple):
    directive: str
    method: Handler
    key_name: str
    default_key: str


def _as_text(value: Any, parameter: str) -> str | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise errors.ValidationError(
        [errors.error_object(parameter, f"Invalid query parameter: {parameter}")]
    )


def _prefix_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"^([-+]*)({re.escape(prefix)})\.(.*)")


def filter_by_prefix(prefix: str, key: str) -> bool:
    """True when ``key`` (optionally signed) lives below ``prefix``."""
    return _prefix_pattern(prefix).match(key) is not None


def remove_prefix_key(prefix: str, key: str) -> str:
    """Strip ``prefix.`` from ``key`` keeping any leading sign."""
    matcher = _prefix_pattern(prefix).match(key)
    if matcher:
        return matcher.group(1) + matcher.group(3)
    return key


def query_param_group(value: str | None, context: ParserContext) -> list[str]:
    """Split a comma separated directive and apply the prefix context."""
    if not value:
        return []
    entries = [e.strip() for e in value.split(LIST_SEPARATOR) if e.strip()]
    if context.exclude_key_prefix:
        entries = [
            e for e in entries if not filter_by_prefix(context.exclude_key_prefix, e)
        ]
    if context.include_key_prefix:
        entries = [
            remove_prefix_key(context.include_key_prefix, e)
            for e in entries
            if filter_by_prefix(context.include_key_prefix, e)
        ]
    return entries


def _parse_unary(entry: str) -> tuple[str, bool]:
    """Return ``(path, negative)`` for ``-a.b``, ``+a.b`` or ``a.-b``."""
    negative = entry.startswith("-")
    path = entry.lstrip("+-").strip()
    head, dot, field = path.rpartition(".")
    if dot and field[:1] in ("+", "-"):
        negative = field.startswith("-")
        path = f"{head}.{field.lstrip('+-')}"
    return path, negative


def _parse_unaries(
    value: Any,
    context: ParserContext,
    plus: int,
    minus: int,
    parameter: str,
) -> list[tuple[str, int]]:
    result = []
    for entry in query_param_group(_as_text(value, parameter), context):
        path, negative = _parse_unary(entry)
        if path:
            result.append((path, minus if negative else plus))
    return result


def parse_select(value: Any, context: ParserContext) -> types.FieldMask:
    """Specify which document fields to include (1) or exclude (0)."""
    return types.FieldMask(_parse_unaries(value, context, 1, 0, "select"))


def parse_sort(value: Any, context: ParserContext) -> types.OrderedFieldMask:
    """Set the sort order, ascending unless the path is prefixed with ``-``."""
    return types.OrderedFieldMask(_parse_unaries(value, context, 1, -1, "sort"))


def _parse_integer(value: Any, parameter: str) -> int | None:
    text = _as_text(value, parameter)
    if text is None or not text.strip():
        return None
    matcher = _INTEGER.match(text)
    if matcher is None:
        raise errors.ValidationError(
            [errors.error_object(parameter, f"Invalid integer value: {text}")]
        )
    return int(matcher.group(1))


def parse_skip(value: Any, context: ParserContext, parameter: str = "page.number") -> int:
    """Page number, 1-based; defaults to and never goes below 1."""
    number = _parse_integer(value, parameter)
    if number is None:
        return 1
    return max(number, 1)


def parse_limit(
    value: Any,
    context: ParserContext,
    default: int = DEFAULT_LIMIT,
    maximum: int = MAX_RESULT_WINDOW,
    parameter: str = "page.size",
) -> int:
    """Page size clamped into ``[0, maximum]``."""
    size = _parse_integer(value, parameter)
    if size is None:
        return min(default, maximum)
    return min(max(size, 0), maximum)


def parse_search(value: Any, context: ParserContext) -> str | None:
    """Free-text search term; blank means no search."""
    text = _as_text(value, "search")
    if text and text.strip():
        return text.strip()
    return None


def parse_cursor(
    value: Any,
    context: ParserContext,
    parameter: str = "page.cursor",
) -> types.CursorParam:
    """Decode the cursor, keeping the raw token for link building."""
    text = _as_text(value, parameter)
    return types.CursorParam(encoded=text, decoded=cursor_codec.decode_cursor(text))


def match_filter_expression(expression: str) -> types.FilterClause | None:
    """Split ``key op value`` using the first operator that fits.

    Operators are tried in ``FILTER_OPERATORS`` order; within an operator the
    leftmost occurrence wins. Both key and value must be non-empty.
    """
    for token in FILTER_OPERATORS:
        key, separator, value = expression.partition(token)
        if separator and key.strip() and value.strip():
            return types.FilterClause(key=key.strip(), op=token, value=value.strip())
    return None


def _split_values(value: Any) -> list[Any] | None:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str) and VALUE_SEPARATOR in value:
        return [v for v in value.split(VALUE_SEPARATOR) if v]
    return None


def to_condition(op: str | None, value: Any) -> tuple[types.Operator, Any]:
    """Map a grammar token or operator name to an operator and value.

    Raises:
        ValidationError: If ``op`` is not a supported operator.
    """
    if op in ("==", "eq", "!=", "ne"):
        values = _split_values(value)
        if op in ("==", "eq"):
            return (types.Operator.IN, values) if values is not None else (types.Operator.EQ, value)
        return (types.Operator.NIN, values) if values is not None else (types.Operator.NE, value)
    if op in ("in", "nin"):
        values = _split_values(value)
        if values is None:
            values = [value]
        return types.Operator(op), values
    if not op:
        return types.Operator.EXISTS, value
    comparisons = {
        ">": types.Operator.GT,
        ">=": types.Operator.GTE,
        "<": types.Operator.LT,
        "<=": types.Operator.LTE,
        "gt": types.Operator.GT,
        "gte": types.Operator.GTE,
        "lt": types.Operator.LT,
        "lte": types.Operator.LTE,
        "exists": types.Operator.EXISTS,
    }
    if op in comparisons:
        return comparisons[op], value
    raise errors.ValidationError(
        [errors.error_object("filter", f"Unsupported filter operator: {op}")]
    )


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_filter(
    value: Any,
    context: ParserContext,
    parameter: str = "filter",
) -> types.FilterTree:
    """Build the conjunction of client filters and predefined clauses.

    Raises:
        ValidationError: If an expression matches no operator; the error
            carries the whole raw filter string.
    """
    text = _as_text(value, parameter)
    clauses: list[types.FilterClause] = []
    for expression in query_param_group(text, context):
        clause = match_filter_expression(expression)
        if clause is None:
            raise errors.ValidationError(
                [errors.error_object(parameter, f"Invalid filter expression: {text}")]
            )
        clauses.append(clause)

    clauses.extend(c for c in context.predefined if not _is_blank(c.value))

    tree: dict[str, dict[types.Operator, Any]] = {}
    for clause in clauses:
        operator, parsed = to_condition(clause.op, clause.value)
        tree.setdefault(clause.key, {})[operator] = parsed
    return types.FilterTree(tree)


def parse_populate(
    value: Any,
    context: ParserContext,
) -> tuple[types.PopulationNode, ...]:
    """Turn ``a.b.c,d`` into one node chain per distinct relation path."""
    paths = query_param_group(_as_text(value, "include"), context)
    chains = []
    for path in dict.fromkeys(paths):
        segments = [s for s in path.split(".") if s]
        node: types.PopulationNode | None = None
        for segment in reversed(segments):
            children = (node,) if node is not None else ()
            node = types.PopulationNode(path=segment, children=children)
        if node is not None:
            chains.append(node)
    return tuple(chains)


def validate_cursor(options: types.QueryOptions) -> types.QueryOptions:
    """Reject cursors created under a different sort specification.

    Raises:
        ValidationError: If the cursor's sort paths or orders differ from
            the active sort.
    """
    decoded = options.cursor.decoded
    if decoded is not None and not decoded.is_empty:
        if decoded.sort_spec() != options.sort:
            raise errors.ValidationError(
                [
                    errors.error_object(
                        "cursor",
                        "Sort order cannot be changed while using cursor-based pagination.",
                    )
                ]
            )
    return options


class QueryParser:
    """Convert API query parameters into ``QueryOptions``.

    Example:
        Rename the filter key and parse with tenant scoping:
            >>> parser = QueryParser(ParserOptions(filter_key="where"))
            >>> context = ParserContext(
            ...     predefined=(types.FilterClause("organization", "in", ["a"]),)
            ... )
            >>> parser.parse({"where": "type==Country"}, context).filter.to_dict()
            {'type': {'eq': 'Country'}, 'organization': {'in': ['a']}}
    """

    def __init__(self, options: ParserOptions | None = None) -> None:
        self.options = options or ParserOptions()
        opts = self.options
        self.handlers: tuple[DirectiveHandler, ...] = (
            DirectiveHandler("select", parse_select, "select_key", "select"),
            DirectiveHandler("populate", parse_populate, "populate_key", "include"),
            DirectiveHandler("sort", parse_sort, "sort_key", "sort"),
            DirectiveHandler(
                "skip",
                functools.partial(parse_skip, parameter=opts.skip_key),
                "skip_key",
                "page.number",
            ),
            DirectiveHandler(
                "limit",
                functools.partial(
                    parse_limit,
                    default=opts.default_limit,
                    maximum=opts.max_result_window,
                    parameter=opts.limit_key,
                ),
                "limit_key",
                "page.size",
            ),
            DirectiveHandler(
                "cursor",
                functools.partial(parse_cursor, parameter=opts.cursor_key),
                "cursor_key",
                "page.cursor",
            ),
            DirectiveHandler(
                "filter",
                functools.partial(parse_filter, parameter=opts.filter_key),
                "filter_key",
                "filter",
            ),
            DirectiveHandler("search", parse_search, "search_key", "search"),
        )

    def _lookup_key(self, handler: DirectiveHandler) -> str:
        return getattr(self.options, handler.key_name) or handler.default_key

    def parse(
        self,
        query: str | Mapping[str, Any] | None,
        context: ParserContext | None = None,
        exclude: Iterable[str] = (),
    ) -> types.QueryOptions:
        """Parse a query string or parameter mapping.

        Args:
            query: Raw query string or (nested) parameter mapping.
            context: Predefined filters and prefix scoping.
            exclude: Directive names to skip entirely; their fields keep
                the ``QueryOptions`` defaults.

        Returns:
            Immutable options with populations merged and the cursor
            validated against the active sort.

        Raises:
            ValidationError: On malformed directives or a cursor that does
                not match the active sort.
        """
        context = context or ParserContext()
        skipped = set(exclude)
        tree = params.decode_params(query)

        options = types.QueryOptions(
            limit=min(self.options.default_limit, self.options.max_result_window)
        )
        for handler in self.handlers:
            if handler.directive in skipped:
                continue
            raw = params.get_param(tree, self._lookup_key(handler))
            clause = handler.method(raw, context)
            options = dataclasses.replace(options, **{handler.directive: clause})

        steps = (
            population.merge_populations,
            population.strip_wildcards,
            validate_cursor,
        )
        return functools.reduce(lambda acc, step: step(acc), steps, options)
