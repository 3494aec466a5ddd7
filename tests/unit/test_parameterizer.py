"""
Tests for filter-metadata parameterization.
"""

import pytest

from app.domain.query.parameterizer import (
    build_condition,
    build_filtered_query,
    cast_value,
    create_date_range_filter_meta,
    create_equality_filter_meta,
    is_valid_column_name,
    validate_filter_meta,
)
from app.shared.types.models import FilterBinding


def binding(id, column=None, operator="eq", type="text", table=None):
    return FilterBinding(id=id, column=column or id, operator=operator, type=type, table=table)


# =============================================================================
# VALIDATION
# =============================================================================

class TestValidateFilterMeta:

    def test_valid_metadata(self):
        bindings = create_date_range_filter_meta("order_date") + [
            binding("region", operator="in"),
            binding("active", type="boolean"),
            binding("name", operator="like"),
            binding("amount", operator="range", type="number"),
        ]
        assert validate_filter_meta(bindings) == []

    def test_accepts_wire_aliases(self):
        raw = [{"filterKey": "region", "column": "region", "operator": "eq", "valueType": "text"}]
        assert validate_filter_meta(raw) == []

    def test_missing_fields(self):
        problems = validate_filter_meta([FilterBinding(column="", operator="")])
        assert "Filter missing required 'id' field" in problems
        assert "Filter '?' missing required 'column' field" in problems
        assert "Filter '?' missing required 'operator' field" in problems

    def test_duplicate_ids(self):
        problems = validate_filter_meta([binding("region"), binding("region")])
        assert problems == ["Duplicate filter ID: region"]

    def test_invalid_column(self):
        problems = validate_filter_meta([binding("region", column="region; DROP TABLE x")])
        assert problems == ["Filter 'region' has invalid column name: 'region; DROP TABLE x'"]

    def test_unknown_operator_and_type(self):
        assert validate_filter_meta([binding("x", operator="contains")]) == [
            "Filter 'x' has unknown operator: contains"
        ]
        assert validate_filter_meta([binding("x", type="money")]) == ["Filter 'x' has unknown type: money"]

    @pytest.mark.parametrize("operator,value_type,message", [
        ("like", "number", "Filter 'x': like requires type 'text', got 'number'"),
        ("ilike", "date", "Filter 'x': ilike requires type 'text', got 'date'"),
        ("range", "text", "Filter 'x': range requires type 'number' or 'date', got 'text'"),
        ("gte", "boolean", "Filter 'x': gte requires type 'number' or 'date', got 'boolean'"),
        ("in", "boolean", "Filter 'x': boolean filters only support eq/neq"),
    ])
    def test_operator_type_mismatch(self, operator, value_type, message):
        assert validate_filter_meta([binding("x", operator=operator, type=value_type)]) == [message]

    def test_table_qualifier(self):
        assert validate_filter_meta([binding("region", table="s")]) == []
        assert validate_filter_meta([binding("region", table="s x")]) == [
            "Filter 'region' has invalid table qualifier: 's x'"
        ]
        assert validate_filter_meta([binding("region", column="s.region", table="s")]) == [
            "Filter 'region' qualifies an already qualified column"
        ]


def test_is_valid_column_name():
    assert is_valid_column_name("order_date")
    assert is_valid_column_name("s.order_date")
    assert not is_valid_column_name("a.b.c")
    assert not is_valid_column_name("1abc")
    assert not is_valid_column_name("a" * 129)
    assert not is_valid_column_name("")


# =============================================================================
# CONDITIONS
# =============================================================================

class TestBuildCondition:

    def test_scalar_comparison(self):
        assert build_condition(binding("amount", operator="gt", type="number"), "10") == ("amount > ?", [10])

    def test_list_on_eq_becomes_in(self):
        assert build_condition(binding("region"), ["EU", "US"]) == ("region IN (?, ?)", ["EU", "US"])

    def test_list_on_neq_becomes_not_in(self):
        assert build_condition(binding("region", operator="neq"), ["EU"]) == ("region NOT IN (?)", ["EU"])

    def test_like_wraps_wildcards(self):
        assert build_condition(binding("name", operator="like"), "wid") == ("name LIKE ?", ["%wid%"])
        assert build_condition(binding("name", operator="ilike"), "wid%") == ("name ILIKE ?", ["wid%"])

    def test_range_needs_both_ends(self):
        b = binding("d", column="order_date", operator="range", type="date")
        assert build_condition(b, {"from": "2024-01-01", "to": "2024-01-31"}) == (
            "order_date BETWEEN ? AND ?", ["2024-01-01", "2024-01-31"]
        )
        assert build_condition(b, {"from": "2024-01-01"}) is None
        assert build_condition(b, {"from": "2024-01-01", "to": ""}) is None

    @pytest.mark.parametrize("value", [None, "", "   ", [], {}])
    def test_empty_values_contribute_nothing(self, value):
        assert build_condition(binding("region"), value) is None

    def test_unparseable_number_is_skipped(self):
        assert build_condition(binding("amount", type="number"), "lots") is None

    def test_table_qualifier(self):
        assert build_condition(binding("region", table="s"), "EU") == ("s.region = ?", ["EU"])


@pytest.mark.parametrize("value,value_type,expected", [
    ("42", "number", 42),
    ("4.5", "number", 4.5),
    (7, "number", 7),
    ("yes", "boolean", True),
    ("0", "boolean", False),
    (True, "boolean", True),
    ("2024-01-01", "date", "2024-01-01"),
    (12, "text", "12"),
])
def test_cast_value(value, value_type, expected):
    assert cast_value(value, value_type) == expected


# =============================================================================
# QUERY BUILDING
# =============================================================================

class TestBuildFilteredQuery:

    def test_inserts_before_group_by(self):
        result = build_filtered_query(
            "SELECT region, SUM(revenue) FROM daily_metrics GROUP BY region",
            [binding("date_from", column="date", operator="gte", type="date"), binding("region")],
            {"date_from": "2024-01-01", "region": ["West", "East"]},
        )
        assert result.sql == (
            "SELECT region, SUM(revenue) FROM daily_metrics "
            "WHERE date >= ? AND region IN (?, ?) GROUP BY region"
        )
        assert result.params == ["2024-01-01", "West", "East"]
        assert result.where_clause == "WHERE date >= ? AND region IN (?, ?)"
        assert result.has_filters

    def test_appends_to_existing_where(self):
        result = build_filtered_query("SELECT * FROM t WHERE a = 1", [binding("region")], {"region": "EU"})
        assert result.sql == "SELECT * FROM t WHERE a = 1 AND region = ?"

    def test_parenthesizes_top_level_or(self):
        result = build_filtered_query(
            "SELECT * FROM t WHERE a = 1 OR b = 2 ORDER BY id", [binding("region")], {"region": "EU"}
        )
        assert result.sql == "SELECT * FROM t WHERE (a = 1 OR b = 2) AND region = ? ORDER BY id"

    def test_ignores_where_in_subquery(self):
        result = build_filtered_query(
            "SELECT * FROM (SELECT * FROM t WHERE x = 1) s", [binding("region")], {"region": "EU"}
        )
        assert result.sql == "SELECT * FROM (SELECT * FROM t WHERE x = 1) s WHERE region = ?"

    def test_ignores_keywords_in_literals(self):
        result = build_filtered_query(
            "SELECT * FROM t WHERE note = 'x or y limit 1'", [binding("region")], {"region": "EU"}
        )
        assert result.sql == "SELECT * FROM t WHERE note = 'x or y limit 1' AND region = ?"

    def test_drops_trailing_semicolon(self):
        result = build_filtered_query("SELECT * FROM t;", [binding("region")], {"region": "EU"})
        assert result.sql == "SELECT * FROM t WHERE region = ?"

    def test_values_are_never_in_sql(self):
        value = "EU' OR '1'='1"
        result = build_filtered_query("SELECT * FROM t", [binding("region")], {"region": value})
        assert value not in result.sql
        assert result.sql.count("?") == len(result.params)

    def test_no_values_returns_template(self):
        sql = "SELECT * FROM t"
        result = build_filtered_query(sql, [binding("region")], {"other": "x"})
        assert result.sql == sql
        assert result.params == []
        assert not result.has_filters


def test_create_equality_filter_meta():
    meta = create_equality_filter_meta("store", "store_id", value_type="number", table="s")
    assert meta == FilterBinding(id="store", column="store_id", operator="eq", type="number", table="s")
