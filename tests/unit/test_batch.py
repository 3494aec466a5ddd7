"""
Tests for batch execution.
"""

import asyncio

import pytest

from app.batch import BatchExecutor, run_batch
from app.domain.query.orchestrator import FILTERS_SKIPPED_NOTE, QueryOrchestrator
from app.errors import ErrorCode, QueryGateError
from app.shared.types.models import DataSource, ExecuteQueriesRequest, FileData, QueryTemplate


def batch(*queries, **kwargs):
    templates = [QueryTemplate(key=key, sql=sql) for key, sql in queries]
    return ExecuteQueriesRequest(queries=templates, **kwargs)


def test_partial_failure(sales_store):
    request = batch(
        ("rows", "SELECT id FROM sales ORDER BY id"),
        ("bad", "SELECT * FROM sales; DROP TABLE sales"),
        ("total", "SELECT SUM(amount) AS total FROM sales"),
    )
    response = run_batch(request, store=sales_store)

    assert set(response.results) == {"rows", "total"}
    assert response.results["total"] == [{"total": 425.5}]
    assert len(response.results["rows"]) == 4
    assert response.errors["bad"].kind == "validation"
    assert response.errors["bad"].code == "ERR_3008"
    assert response.errors["bad"].message == "Multiple statements are not allowed"
    assert response.executedSql["bad"] == "SELECT * FROM sales; DROP TABLE sales"


def test_every_key_lands_in_exactly_one_map(sales_store):
    request = batch(
        ("a", "SELECT id FROM sales"),
        ("b", "SELECT id FROM missing"),
        ("c", "DELETE FROM sales"),
        ("d", "SELECT region, COUNT(*) FROM sales GROUP BY region"),
    )
    response = run_batch(request, store=sales_store)
    for key in "abcd":
        assert (key in response.results) != (key in response.errors)
    assert response.errors["b"].code == "ERR_4006"
    assert response.errors["d"].code == "ERR_4007"


def test_filters_and_retry(sales_store):
    request = ExecuteQueriesRequest(
        queries=[
            QueryTemplate(key="eu", sql="SELECT id FROM sales ORDER BY id"),
            QueryTemplate(key="distinct-region", sql="SELECT DISTINCT region FROM sales ORDER BY region"),
        ],
        filterParams={"region": "EU", "status": "open"},
    )
    response = run_batch(request, store=sales_store)

    assert response.results["distinct-region"] == [{"region": "APAC"}, {"region": "EU"}, {"region": "US"}]
    assert response.executedSql["distinct-region"] == "SELECT DISTINCT region FROM sales ORDER BY region"
    assert response.results["eu"] == [{"id": 1}, {"id": 2}, {"id": 3}, {"id": 4}]
    assert response.executedSql["eu"] == "SELECT id FROM sales ORDER BY id" + FILTERS_SKIPPED_NOTE


def test_executed_sql_has_no_values(sales_store):
    request = batch(("q", "SELECT id FROM sales"), filterParams={"region": "EU"})
    response = run_batch(request, store=sales_store)
    assert response.executedSql["q"] == "SELECT id FROM sales WHERE region = ?"
    assert "EU" not in response.executedSql["q"]
    assert response.results["q"] == [{"id": 1}, {"id": 3}]


def test_file_data_is_loaded_first(store):
    request = batch(
        ("count", "SELECT COUNT(*) AS n FROM uploads"),
        fileData=FileData(tableName="uploads", rows=[{"a": 1}, {"a": 2}]),
    )
    response = run_batch(request, store=store)
    assert response.results["count"] == [{"n": 2}]
    assert store.has_table("uploads")


def test_duplicate_keys_rejected(sales_store):
    request = batch(("a", "SELECT id FROM sales"), ("a", "SELECT region FROM sales"))
    with pytest.raises(QueryGateError) as exc_info:
        run_batch(request, store=sales_store)
    assert exc_info.value.code == ErrorCode.ERR_DUPLICATE_QUERY_KEY


def test_batch_too_large(sales_store):
    request = batch(*[(f"q{i}", "SELECT id FROM sales") for i in range(3)])
    executor = BatchExecutor(sales_store, max_queries=2)
    try:
        with pytest.raises(QueryGateError) as exc_info:
            asyncio.run(executor.execute(request))
    finally:
        executor.shutdown()
    assert exc_info.value.code == ErrorCode.ERR_LIMIT_EXCEEDED


def test_connection_failure_reported_for_every_key(tmp_path):
    request = batch(
        ("a", "SELECT 1"),
        ("b", "SELECT 2"),
        dataSource=DataSource(type="database", engine="sqlite", config={"database": str(tmp_path / "nope.db")}),
    )
    response = run_batch(request)
    assert response.results == {}
    assert set(response.errors) == {"a", "b"}
    assert all(entry.code == "ERR_4003" for entry in response.errors.values())


def test_unsupported_engine_fails_the_request():
    request = batch(("a", "SELECT 1"), dataSource=DataSource(type="database", engine="teradata"))
    with pytest.raises(QueryGateError) as exc_info:
        run_batch(request)
    assert exc_info.value.code == ErrorCode.ERR_ENGINE_UNSUPPORTED


def test_sqlite_source(tmp_path):
    from app.adapters.sqlite_adapter import SQLiteAdapter

    path = str(tmp_path / "shop.db")
    seed = SQLiteAdapter({"database": path, "create": True, "read_only": False})
    seed.connect()
    seed.execute_script(
        "CREATE TABLE orders (id INTEGER, region TEXT);"
        "INSERT INTO orders VALUES (1, 'EU'), (2, 'US');"
    )
    seed.disconnect()

    request = batch(
        ("orders", "SELECT id FROM orders"),
        filterParams={"region": "US"},
        dataSource=DataSource(type="database", engine="sqlite", config={"database": path}),
    )
    response = run_batch(request)
    assert response.results["orders"] == [{"id": 2}]


def test_duckdb_source_cannot_read_server_files(tmp_path):
    pytest.importorskip("duckdb")
    secret = tmp_path / "secret.csv"
    secret.write_text("user,password\nadmin,hunter2\n")

    request = batch(
        ("reader", f"SELECT * FROM read_csv_auto('{secret}')"),
        ("path", f"SELECT * FROM '{secret}'"),
        ("joined", f"SELECT 1 AS n FROM (SELECT 1 AS id) a JOIN '{secret}' b ON TRUE"),
        dataSource=DataSource(type="database", engine="duckdb", config={}),
    )
    response = run_batch(request)

    assert response.results == {}
    assert set(response.errors) == {"reader", "path", "joined"}
    for entry in response.errors.values():
        assert entry.kind == "validation"
        assert entry.code == "ERR_3008"
        assert "hunter2" not in entry.message


def test_crashing_query_becomes_internal_error(sales_store, monkeypatch):
    original = QueryOrchestrator.run

    def run(self, template, values=None):
        if template.key == "boom":
            raise RuntimeError("kaboom")
        return original(self, template, values)

    monkeypatch.setattr(QueryOrchestrator, "run", run)
    response = run_batch(batch(("ok", "SELECT id FROM sales"), ("boom", "SELECT id FROM sales")), store=sales_store)

    assert len(response.results["ok"]) == 4
    assert response.errors["boom"].code == "ERR_9001"
    assert "boom" not in response.executedSql
