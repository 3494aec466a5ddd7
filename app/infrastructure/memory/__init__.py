"""
In-Memory Infrastructure

Table store and SQL-subset engine for uploaded row data.
"""

from app.infrastructure.memory.store import TableSchema, TableStore, get_table_store, reset_table_store
from app.infrastructure.memory.engine import (
    ColumnNotFoundError,
    MemoryEngine,
    MemoryEngineError,
    SQLParseError,
    TableNotFoundError,
    UnsupportedQueryError,
)

__all__ = [
    "TableSchema",
    "TableStore",
    "get_table_store",
    "reset_table_store",
    "ColumnNotFoundError",
    "MemoryEngine",
    "MemoryEngineError",
    "SQLParseError",
    "TableNotFoundError",
    "UnsupportedQueryError",
]
