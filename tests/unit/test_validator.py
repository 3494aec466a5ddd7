"""
Tests for the read-only SQL validator.
"""

import pytest

from app.domain.query.validator import Invalid, Valid, is_safe_query, validate_query


class TestAccepted:
    """Queries that must pass."""

    @pytest.mark.parametrize("sql", [
        "SELECT * FROM sales",
        "select region, amount from sales where amount > 10",
        "WITH eu AS (SELECT * FROM sales WHERE region = 'EU') SELECT * FROM eu",
        "SELECT s.region, SUM(s.amount) AS total FROM sales s "
        "JOIN regions r ON r.code = s.region GROUP BY s.region ORDER BY total DESC",
        "SELECT * FROM sales;",
        "  (SELECT 1)",
        "SELECT created_at, updated_by, deleted FROM audit",
    ])
    def test_read_only_queries_are_valid(self, sql):
        verdict = validate_query(sql)
        assert verdict == Valid()
        assert verdict.valid

    def test_parse_check_accepts_union(self):
        assert validate_query("SELECT 1 UNION SELECT 2", parse_check=True).valid


class TestRejected:
    """Queries that must fail, with the reason shown to the caller."""

    @pytest.mark.parametrize("sql", ["", "   ", None])
    def test_empty(self, sql):
        assert validate_query(sql) == Invalid("Query is empty")

    @pytest.mark.parametrize("sql", [
        "DELETE FROM sales",
        "UPDATE sales SET amount = 0",
        "SHOW TABLES",
        "EXPLAIN SELECT 1",
    ])
    def test_first_keyword_must_be_select_or_with(self, sql):
        verdict = validate_query(sql)
        assert not verdict.valid
        assert verdict.reason == "Only SELECT queries are allowed"

    @pytest.mark.parametrize("sql", [
        "SELECT 1; DROP TABLE sales",
        "SELECT 1;SELECT 2",
    ])
    def test_stacked_statements(self, sql):
        assert validate_query(sql).reason == "Multiple statements are not allowed"

    @pytest.mark.parametrize("sql", [
        "SELECT * FROM sales -- WHERE region = 'EU'",
        "SELECT * FROM sales /* hidden */",
        "SELECT * FROM sales */",
    ])
    def test_comments(self, sql):
        assert validate_query(sql).reason == "SQL comments are not allowed"

    @pytest.mark.parametrize("sql,keyword", [
        ("WITH d AS (DELETE FROM sales RETURNING *) SELECT * FROM d", "DELETE"),
        ("SELECT * FROM sales WHERE id IN (SELECT id FROM x) AND pg_sleep(5) IS NULL", "PG_SLEEP"),
        ("SELECT pg_read_file('/etc/passwd')", "PG_READ_FILE"),
        ("SELECT * INTO OUTFILE '/tmp/x' FROM sales", "OUTFILE"),
        ("select benchmark(1000000, md5('a'))", "BENCHMARK"),
    ])
    def test_denied_keywords_anywhere(self, sql, keyword):
        assert validate_query(sql).reason == f"Query contains forbidden keyword: {keyword}"

    @pytest.mark.parametrize("function", [
        "read_csv", "read_csv_auto", "read_parquet", "read_json",
        "read_json_auto", "read_text", "read_blob", "glob",
    ])
    def test_file_reader_functions(self, function):
        sql = f"SELECT * FROM {function}('/etc/secret.csv')"
        assert validate_query(sql).reason == f"Query contains forbidden function: {function.upper()}"

    def test_file_reader_in_subquery(self):
        sql = "SELECT * FROM sales WHERE id IN (SELECT id FROM READ_PARQUET ('/data/x.parquet'))"
        assert validate_query(sql).reason == "Query contains forbidden function: READ_PARQUET"

    @pytest.mark.parametrize("sql", [
        "SELECT * FROM '/etc/x.csv'",
        "select * from'/etc/x.csv'",
        "SELECT * FROM ('/etc/x.csv')",
        "SELECT * FROM sales s JOIN '/data/users.parquet' u ON u.id = s.id",
        'SELECT * FROM "/etc/x.csv"',
        "SELECT * FROM sales, '/etc/x.csv'",
    ])
    def test_quoted_file_path_as_table(self, sql):
        assert validate_query(sql).reason == "Reading files by path is not allowed"

    def test_glob_operator_and_string_lists_still_allowed(self):
        assert validate_query("SELECT * FROM files WHERE name GLOB 'a*'").valid
        assert validate_query("SELECT * FROM sales WHERE region IN ('EU', 'US')").valid

    def test_length_limit(self):
        sql = "SELECT " + "x" * 5000 + " FROM sales"
        verdict = validate_query(sql, max_length=5000)
        assert verdict.reason == "Query exceeds maximum length of 5000 characters"

    def test_custom_length_limit(self):
        assert not validate_query("SELECT * FROM sales", max_length=10).valid
        assert validate_query("SELECT * FROM sales", max_length=100).valid


def test_is_safe_query():
    assert is_safe_query("SELECT 1")
    assert not is_safe_query("DROP TABLE sales")
    assert not is_safe_query(None)
