"""
Tests for the in-memory SELECT engine.
"""

import pytest

from app.infrastructure.memory.engine import (
    ColumnNotFoundError,
    MemoryEngine,
    SQLParseError,
    TableNotFoundError,
    UnsupportedQueryError,
    parse_select,
)


@pytest.fixture
def engine(sales_store):
    return MemoryEngine(sales_store)


def ids(rows):
    return [row["id"] for row in rows]


# =============================================================================
# BASICS
# =============================================================================

def test_order_by_desc_with_limit(store):
    store.add_table("t", [{"id": 1, "name": "A"}, {"id": 2, "name": "B"}])
    assert MemoryEngine(store).query("SELECT * FROM t ORDER BY id DESC LIMIT 1") == [{"id": 2, "name": "B"}]


def test_count_and_sum(store):
    store.add_table("t", [{"v": 10}, {"v": 20}, {"v": 30}])
    assert MemoryEngine(store).query("SELECT COUNT(*) as c, SUM(v) as s FROM t") == [{"c": 3, "s": 60}]


def test_numeric_strings_filter_and_sum(store):
    store.add_table("t", [{"v": "10"}, {"v": "2.5"}, {"v": ""}])
    engine = MemoryEngine(store)
    assert engine.query("SELECT SUM(v) AS s FROM t") == [{"s": 12.5}]
    assert engine.query("SELECT v FROM t WHERE v > 5") == [{"v": "10"}]


def test_projection_and_aliases(engine):
    result = engine.execute("SELECT s.id, region AS r, 'x' tag FROM sales s WHERE s.id = 1")
    assert result.columns == ["id", "r", "tag"]
    assert result.rows == [{"id": 1, "r": "EU", "tag": "x"}]


def test_star_keeps_schema_order(engine):
    result = engine.execute("SELECT * FROM sales LIMIT 1")
    assert result.columns == ["id", "region", "product", "amount", "order_date", "active"]


def test_names_are_case_insensitive(engine):
    assert engine.query("SELECT ID FROM SALES WHERE Region = 'US'") == [{"ID": 2}]


def test_quoted_identifier(engine):
    assert engine.query('SELECT "region" FROM sales WHERE id = 3') == [{"region": "EU"}]


def test_trailing_semicolon(engine):
    assert ids(engine.query("SELECT id FROM sales WHERE id = 4;")) == [4]


# =============================================================================
# CONDITIONS
# =============================================================================

@pytest.mark.parametrize("where,expected", [
    ("amount > 100", [2]),
    ("amount > '100'", [2]),
    ("region = 'EU' AND amount < 100", [3]),
    ("region != 'EU'", [2, 4]),
    ("product LIKE 'wid%'", [1, 4]),
    ("product NOT LIKE 'gad%'", [1, 4]),
    ("region IN ('EU', 'APAC')", [1, 3, 4]),
    ("region NOT IN ('EU')", [2, 4]),
    ("order_date BETWEEN '2024-02-01' AND '2024-03-16'", [2, 3]),
    ("amount NOT BETWEEN 80 AND 300", [3]),
    ("amount IS NULL", [4]),
    ("amount IS NOT NULL", [1, 2, 3]),
    ("amount = NULL", []),
    ("active = TRUE", [1, 2, 4]),
    ("active = 'false'", [3]),
    ("active", [1, 2, 4]),
    ("id >= -1 AND id <= 2", [1, 2]),
])
def test_where(engine, where, expected):
    assert ids(engine.query(f"SELECT id FROM sales WHERE {where} ORDER BY id")) == expected


# =============================================================================
# ORDERING, DISTINCT, PAGING
# =============================================================================

def test_nulls_sort_last_ascending_first_descending(engine):
    assert ids(engine.query("SELECT id, amount FROM sales ORDER BY amount")) == [3, 1, 2, 4]
    assert ids(engine.query("SELECT id, amount FROM sales ORDER BY amount DESC")) == [4, 2, 1, 3]


def test_order_by_alias_and_position(engine):
    assert ids(engine.query("SELECT id, amount AS a FROM sales WHERE amount IS NOT NULL ORDER BY a")) == [3, 1, 2]
    assert ids(engine.query("SELECT region, id FROM sales ORDER BY 1, 2 DESC")) == [4, 3, 1, 2]


def test_order_by_position_out_of_range(engine):
    with pytest.raises(SQLParseError):
        engine.query("SELECT id FROM sales ORDER BY 2")


def test_distinct(engine):
    rows = engine.query("SELECT DISTINCT region FROM sales ORDER BY region")
    assert rows == [{"region": "APAC"}, {"region": "EU"}, {"region": "US"}]


def test_limit_and_offset(engine):
    assert ids(engine.query("SELECT id FROM sales ORDER BY id LIMIT 2 OFFSET 1")) == [2, 3]
    assert ids(engine.query("SELECT id FROM sales ORDER BY id OFFSET 3")) == [4]


# =============================================================================
# AGGREGATES
# =============================================================================

def test_aggregates_skip_nulls(engine):
    rows = engine.query(
        "SELECT COUNT(*) AS c, COUNT(amount) AS n, SUM(amount) AS total, AVG(amount) AS mean, "
        "MIN(order_date) AS first, MAX(amount) AS top FROM sales"
    )
    assert rows == [{
        "c": 4, "n": 3, "total": 425.5, "mean": 425.5 / 3, "first": "2024-01-05", "top": 250.0,
    }]


def test_count_distinct_and_default_label(engine):
    assert engine.query("SELECT COUNT(DISTINCT region) FROM sales") == [{"COUNT(DISTINCT region)": 3}]


def test_aggregates_over_no_rows(engine):
    rows = engine.query("SELECT COUNT(*) AS c, SUM(amount) AS s, MAX(id) AS m FROM sales WHERE region = 'MARS'")
    assert rows == [{"c": 0, "s": None, "m": None}]


# =============================================================================
# ERRORS
# =============================================================================

def test_unknown_table(engine):
    with pytest.raises(TableNotFoundError) as exc_info:
        engine.query("SELECT * FROM missing")
    assert "Available tables: sales" in str(exc_info.value)


def test_unknown_column_names_the_table(engine):
    with pytest.raises(ColumnNotFoundError) as exc_info:
        engine.query("SELECT id FROM sales WHERE store = 'x'")
    assert str(exc_info.value).startswith("Unknown column 'store' in table 'sales'")


def test_unknown_qualifier(engine):
    with pytest.raises(ColumnNotFoundError):
        engine.query("SELECT x.id FROM sales s")


@pytest.mark.parametrize("sql", [
    "SELECT region, COUNT(*) FROM sales GROUP BY region",
    "SELECT id FROM sales WHERE region = 'EU' OR region = 'US'",
    "SELECT id FROM sales WHERE (region = 'EU')",
    "SELECT id FROM sales WHERE NOT region = 'EU'",
    "SELECT id FROM sales JOIN stores ON sales.id = stores.id",
    "SELECT id FROM sales, stores",
    "SELECT id FROM (SELECT id FROM sales) s",
    "SELECT id FROM sales UNION SELECT id FROM sales",
    "WITH x AS (SELECT id FROM sales) SELECT id FROM x",
    "SELECT UPPER(region) FROM sales",
    "SELECT region, COUNT(*) FROM sales",
    "SELECT 1",
])
def test_unsupported_queries(engine, sql):
    with pytest.raises(UnsupportedQueryError):
        engine.query(sql)


@pytest.mark.parametrize("sql", [
    "SELECT FROM sales",
    "SELECT id FROM sales WHERE",
    "SELECT id FROM sales WHERE region = 'EU",
    "SELECT id FROM sales LIMIT ten",
    "DELETE FROM sales",
    "SELECT SUM(*) FROM sales",
])
def test_parse_errors(sql):
    with pytest.raises(SQLParseError):
        parse_select(sql)
