"""Tests for compiling query expressions into PostgreSQL JSONB SQL.

These tests only inspect the generated SQL text and parameters; no database
connection is needed.

See Also:
    - backend/geocontent/db/sql.py for the compiler.
"""

from __future__ import annotations

import datetime

import pytest

from geocontent.db import sql
from geocontent.query import expressions, types

Condition = expressions.Condition
Op = types.Operator

VALUE = "COALESCE(data #> %s, 'null'::jsonb)"


def test_equality_matches_scalars_and_array_members() -> None:
    """Test that equality also matches arrays containing the value."""
    fragment = sql.compile_expression(Condition("type", Op.EQ, "Country"))
    assert fragment.sql == f"({VALUE} = %s::jsonb OR {VALUE} @> %s::jsonb)"
    assert fragment.params == (["type"], '"Country"', ["type"], '["Country"]')


def test_negations_wrap_equality() -> None:
    """Test ``ne`` and ``nin`` as negated equality."""
    ne = sql.compile_expression(Condition("owner.name", Op.NE, "Ana"))
    assert ne.sql.startswith("NOT (")
    assert ne.params[0] == ["owner", "name"]

    nin = sql.compile_expression(Condition("slug", Op.NIN, ["a", "b"]))
    assert nin.sql.startswith("NOT ((")
    assert len(nin.params) == 8


def test_empty_membership_matches_nothing() -> None:
    """Test that ``in []`` compiles to FALSE and ``nin []`` to its negation."""
    assert sql.compile_expression(Condition("organization", Op.IN, [])) == sql.FALSE
    assert sql.compile_expression(Condition("organization", Op.NIN, [])).sql == "NOT FALSE"


@pytest.mark.parametrize(
    ("op", "symbol"),
    [(Op.GT, ">"), (Op.GTE, ">="), (Op.LT, "<"), (Op.LTE, "<=")],
)
def test_comparisons(op: types.Operator, symbol: str) -> None:
    """Test range operators against JSON encoded values."""
    fragment = sql.compile_expression(Condition("areaKm2", op, 5))
    assert fragment.sql == f"{VALUE} {symbol} %s::jsonb"
    assert fragment.params == (["areaKm2"], "5")


def test_exists() -> None:
    """Test existence checks on the raw path without null coalescing."""
    present = sql.compile_expression(Condition("owner.name", Op.EXISTS, True))
    absent = sql.compile_expression(Condition("owner.name", Op.EXISTS, "false"))
    assert present == sql.Fragment("(data #> %s) IS NOT NULL", (["owner", "name"],))
    assert absent.sql == "(data #> %s) IS NULL"


def test_boolean_combinators() -> None:
    """Test AND/OR joins and their empty identities."""
    assert sql.compile_expression(expressions.And()) == sql.TRUE
    assert sql.compile_expression(expressions.Or()) == sql.FALSE
    both = sql.compile_expression(
        expressions.And((Condition("a", Op.GT, 1), Condition("b", Op.LT, 2)))
    )
    assert both.sql == f"({VALUE} > %s::jsonb AND {VALUE} < %s::jsonb)"
    assert both.params == (["a"], "1", ["b"], "2")


def test_text_search_escapes_like_wildcards() -> None:
    """Test free-text search across fields with escaped patterns."""
    fragment = sql.compile_expression(
        expressions.TextSearch("50%_off"), ("name", "description")
    )
    assert fragment.sql == "((data #>> %s) ILIKE %s OR (data #>> %s) ILIKE %s)"
    assert fragment.params == (["name"], "%50\\%\\_off%", ["description"], "%50\\%\\_off%")
    assert sql.compile_expression(expressions.TextSearch("x"), ()) == sql.FALSE


def test_compile_sort() -> None:
    """Test ORDER BY rendering in sort key order."""
    fragment = sql.compile_sort(types.OrderedFieldMask([("name", -1), ("id", 1)]))
    assert fragment.sql == f" ORDER BY {VALUE} DESC, {VALUE} ASC"
    assert fragment.params == (["name"], ["id"])
    assert sql.compile_sort({}) == sql.Fragment("")


def test_select_and_count_statements() -> None:
    """Test statement assembly with paging parameters."""
    select = sql.select_sql('"layers"', sql.TRUE, sql.Fragment(""), skip=20, limit=10)
    assert select == sql.Fragment('SELECT data FROM "layers" WHERE TRUE LIMIT %s OFFSET %s', (10, 20))
    first_page = sql.select_sql('"layers"', sql.TRUE, sql.Fragment(""), limit=10)
    assert "OFFSET" not in first_page.sql

    count = sql.count_sql('"layers"', sql.compile_expression(Condition("a", Op.GT, 1)))
    assert count.sql == f'SELECT count(*) FROM "layers" WHERE {VALUE} > %s::jsonb'


def test_group_count_statement() -> None:
    """Test that facet counts unwind arrays and skip nulls."""
    fragment = sql.group_count_sql('"widgets"', "metrics", sql.TRUE)
    assert "jsonb_array_elements" in fragment.sql
    assert "GROUP BY value" in fragment.sql
    assert fragment.params == (["metrics"], ["metrics"], ["metrics"])


def test_validate_identifier() -> None:
    """Test that only alphanumeric table names are accepted."""
    assert sql.validate_identifier("layer_groups") == "layer_groups"
    with pytest.raises(ValueError):
        sql.validate_identifier("layers; DROP TABLE layers")
    with pytest.raises(ValueError):
        sql.validate_identifier("")


def test_json_param_serialises_dates() -> None:
    """Test that dates are sent as ISO strings."""
    assert sql.json_param(datetime.date(2024, 1, 2)) == '"2024-01-02"'
    assert sql.json_param(True) == "true"
