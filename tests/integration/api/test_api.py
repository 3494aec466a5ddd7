"""
Tests for core API endpoints.
"""

import pytest


@pytest.fixture
def loaded_client(client, sales_rows):
    """Client with the sales table uploaded."""
    response = client.post("/v1/tables", json={"name": "sales", "rows": sales_rows})
    assert response.status_code == 200
    return client


class TestTables:
    """Tests for /v1/tables endpoints."""

    def test_load_table_returns_schema(self, client, sales_rows):
        """Test uploading rows returns the inferred schema."""
        response = client.post("/v1/tables", json={"tableName": "sales", "data": sales_rows})
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "sales"
        assert data["rowCount"] == 4
        types = {c["name"]: c["type"] for c in data["columns"]}
        assert types == {
            "id": "number",
            "region": "text",
            "product": "text",
            "amount": "number",
            "order_date": "date",
            "active": "boolean",
        }

    def test_list_tables(self, loaded_client):
        """Test listing loaded tables."""
        response = loaded_client.get("/v1/tables")
        assert response.status_code == 200
        assert [t["name"] for t in response.json()] == ["sales"]

    def test_delete_table(self, loaded_client):
        """Test dropping one table, then a missing one."""
        assert loaded_client.delete("/v1/tables/SALES").json() == {"dropped": "SALES"}
        response = loaded_client.delete("/v1/tables/sales")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_4006"

    def test_reset_tables(self, loaded_client):
        """Test dropping every table."""
        assert loaded_client.delete("/v1/tables").json() == {"dropped": 1}
        assert loaded_client.get("/v1/tables").json() == []

    def test_invalid_table_name(self, client):
        """Test that a bad table name is rejected with a structured error."""
        response = client.post("/v1/tables", json={"name": "bad name", "rows": [{"a": 1}]})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_5001"


class TestValidate:
    """Tests for /v1/validate endpoint."""

    def test_valid_query(self, client):
        response = client.post("/v1/validate", json={"sql": "SELECT * FROM orders"})
        assert response.status_code == 200
        assert response.json() == {"valid": True, "reason": None}

    @pytest.mark.parametrize("sql,reason", [
        ("SELECT * FROM orders; DROP TABLE orders", "Multiple statements are not allowed"),
        ("SELECT * FROM orders -- all", "SQL comments are not allowed"),
        ("UPDATE orders SET a = 1", "Only SELECT queries are allowed"),
        ("", "Query is empty"),
    ])
    def test_invalid_query(self, client, sql, reason):
        response = client.post("/v1/validate", json={"sql": sql})
        assert response.status_code == 200
        assert response.json() == {"valid": False, "reason": reason}


class TestExecuteQueries:
    """Tests for /v1/execute-queries endpoint."""

    def test_batch_with_filters(self, loaded_client):
        """Test explicit, inferred and lookup queries in one batch."""
        response = loaded_client.post("/v1/execute-queries", json={
            "queries": [
                {
                    "key": "eu-orders",
                    "sql": "SELECT id FROM sales ORDER BY id",
                    "filterMeta": [
                        {"filterKey": "region", "column": "region", "operator": "in", "valueType": "text"}
                    ],
                },
                {"key": "total", "sql": "SELECT SUM(amount) AS total FROM sales"},
                {"key": "distinct-region", "sql": "SELECT DISTINCT region FROM sales ORDER BY region"},
            ],
            "filterParams": {"region": ["EU"]},
        })
        assert response.status_code == 200
        data = response.json()
        assert data["errors"] == {}
        assert data["results"]["eu-orders"] == [{"id": 1}, {"id": 3}]
        assert data["results"]["total"] == [{"total": 175.5}]
        assert len(data["results"]["distinct-region"]) == 3
        assert data["executedSql"] == {
            "eu-orders": "SELECT id FROM sales WHERE region IN (?) ORDER BY id",
            "total": "SELECT SUM(amount) AS total FROM sales WHERE region IN (?)",
            "distinct-region": "SELECT DISTINCT region FROM sales ORDER BY region",
        }

    def test_partial_failure(self, loaded_client):
        """Test that a rejected query does not fail its siblings."""
        response = loaded_client.post("/v1/execute-queries", json={
            "queries": [
                {"key": "ok", "sql": "SELECT id FROM sales"},
                {"key": "unsafe", "sql": "SELECT id FROM sales; DELETE FROM sales"},
                {"key": "bad-meta", "sql": "SELECT id FROM sales",
                 "filterMeta": [{"id": "region", "column": "region", "operator": "approx"}]},
            ],
            "filterParams": {"region": "US"},
        })
        assert response.status_code == 200
        data = response.json()
        assert data["results"] == {"ok": [{"id": 2}]}
        assert data["errors"]["unsafe"]["kind"] == "validation"
        assert data["errors"]["unsafe"]["code"] == "ERR_3008"
        assert data["errors"]["bad-meta"]["kind"] == "metadata"
        assert data["errors"]["bad-meta"]["message"] == (
            "Invalid filter metadata: Filter 'region' has unknown operator: approx"
        )
        assert "US" not in str(data["executedSql"])

    def test_file_data(self, client):
        """Test that fileData is loaded before the batch runs."""
        response = client.post("/v1/execute-queries", json={
            "queries": [{"key": "n", "sql": "SELECT COUNT(*) AS n FROM uploads"}],
            "dataSource": {"type": "file"},
            "fileData": {"tableName": "uploads", "rows": [{"a": 1}, {"a": 2}, {"a": 3}]},
        })
        assert response.status_code == 200
        assert response.json()["results"] == {"n": [{"n": 3}]}
        assert [t["name"] for t in client.get("/v1/tables").json()] == ["uploads"]

    def test_duplicate_keys(self, loaded_client):
        """Test that duplicate query keys fail the whole request."""
        response = loaded_client.post("/v1/execute-queries", json={
            "queries": [{"key": "a", "sql": "SELECT 1"}, {"key": "a", "sql": "SELECT 2"}],
        })
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "ERR_3010"
        assert error["details"]["keys"] == ["a"]

    def test_unsupported_engine(self, client):
        """Test that an unknown database engine is a request error."""
        response = client.post("/v1/execute-queries", json={
            "queries": [{"key": "a", "sql": "SELECT 1"}],
            "dataSource": {"type": "database", "engine": "teradata"},
        })
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_4005"

    def test_malformed_body(self, client):
        """Test that a malformed body returns the structured error format."""
        response = client.post(
            "/v1/execute-queries", json={"queries": "nope"}, headers={"X-Request-ID": "req-1"}
        )
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "ERR_3001"
        assert error["request_id"] == "req-1"
