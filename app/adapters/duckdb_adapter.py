"""
DuckDB Adapter for QueryGate

Embedded analytical engine for local files (DuckDB databases, or
Parquet/CSV read through DuckDB SQL). In-memory by default.
"""

import logging
from typing import Any, Dict, Optional, Type

try:
    import duckdb
    DUCKDB_AVAILABLE = True
except ImportError:
    DUCKDB_AVAILABLE = False
    duckdb = None

from app.adapters.base import ConnectionError, EmbeddedAdapter

logger = logging.getLogger(__name__)


class DuckDBAdapter(EmbeddedAdapter):
    """
    Adapter for DuckDB embedded database.

    Example:
        adapter = DuckDBAdapter({"database": ":memory:"})
        adapter.connect()
        result = adapter.execute("SELECT ? + 1 AS answer", [41])
    """

    ENGINE = "duckdb"
    LABEL = "DuckDB"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if not DUCKDB_AVAILABLE:
            raise ConnectionError(
                "DuckDB not installed. Run: pip install duckdb",
                engine=self.ENGINE
            )
        super().__init__(config)

    def driver_error(self) -> Type[Exception]:
        return duckdb.Error

    def _open(self):
        # an in-memory database cannot be opened read-only
        return duckdb.connect(database=self.database, read_only=self.read_only and not self.is_memory)
