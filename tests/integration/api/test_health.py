"""
Tests for health check endpoint.
"""


def test_health_check(client):
    """Test that health endpoint returns OK."""
    response = client.get("/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"


def test_health_check_includes_version_and_engines(client):
    """Test that health endpoint reports version and available engines."""
    data = client.get("/v1/health").json()
    assert data["version"] == "1.0.0"
    assert data["service"] == "QueryGate"
    assert "memory" in data["engines"]
    assert "sqlite" in data["engines"]


def test_health_check_reports_tables_and_limits(client, sales_rows):
    """Test that health endpoint counts loaded tables and shows guard limits."""
    assert client.get("/v1/health").json()["tables"] == 0

    client.post("/v1/tables", json={"name": "sales", "rows": sales_rows})
    data = client.get("/v1/health").json()
    assert data["tables"] == 1
    assert data["safety_guards"]["limits"]["batch_max_queries"] == 50


def test_request_id_is_echoed(client):
    """Test that a caller-supplied request ID comes back in the response."""
    response = client.get("/v1/health", headers={"X-Request-ID": "trace-42"})
    assert response.headers["X-Request-ID"] == "trace-42"
    assert client.get("/v1/health").headers["X-Request-ID"]
