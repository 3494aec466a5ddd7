"""
Shared Types

Common data models and types.
"""

from app.shared.types.models import (
    FilterBinding,
    QueryTemplate,
    DataSource,
    FileData,
    ExecuteQueriesRequest,
    ExecuteQueriesResponse,
    QueryErrorEntry,
    TableLoadRequest,
    TableInfo,
    ColumnInfo,
    ValidateRequest,
    ValidateResponse,
)

__all__ = [
    "FilterBinding",
    "QueryTemplate",
    "DataSource",
    "FileData",
    "ExecuteQueriesRequest",
    "ExecuteQueriesResponse",
    "QueryErrorEntry",
    "TableLoadRequest",
    "TableInfo",
    "ColumnInfo",
    "ValidateRequest",
    "ValidateResponse",
]
