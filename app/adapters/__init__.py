"""
Execution Adapters for QueryGate

This package provides a unified interface for running queries.
Each adapter handles:
- Connection management
- Query execution
- Parameter marker conversion
- Result formatting

Supported Engines:
- In-memory engine over uploaded tables (built-in)
- SQLite (built-in, zero dependencies)
- DuckDB
- PostgreSQL (optional extra)
- MySQL / MariaDB (optional extra)
"""

from app.adapters.base import (
    AdapterError,
    AdapterResult,
    BaseAdapter,
    ConnectionError,
    EmbeddedAdapter,
    PooledAdapter,
    QueryError,
)
from app.adapters.factory import (
    get_adapter,
    get_adapter_for_source,
    register_adapter,
    list_adapters,
    close_all_adapters,
    get_adapters_status
)

__all__ = [
    "BaseAdapter",
    "AdapterError",
    "AdapterResult",
    "ConnectionError",
    "QueryError",
    "EmbeddedAdapter",
    "PooledAdapter",
    "get_adapter",
    "get_adapter_for_source",
    "register_adapter",
    "list_adapters",
    "close_all_adapters",
    "get_adapters_status"
]
