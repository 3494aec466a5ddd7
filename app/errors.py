"""
QueryGate - Structured Error Handling

This module provides clear, actionable error responses for debugging.

ERROR DESIGN PRINCIPLES:
------------------------
1. Every error has a unique code for log searching
2. Messages are human-readable and actionable
3. Suggestions guide users to fix the issue
4. Request IDs enable cross-system tracing

PER-QUERY ERROR KINDS:
----------------------
A batch never fails as a whole because one of its queries failed. Each
query that fails is reported under its key with one of three kinds:

- validation: the final SQL was rejected by the safety validator.
  Nothing was executed and nothing is retried.
- metadata:   the filter metadata attached to the template is
  inconsistent (a template-authoring defect, not a user error).
- execution:  the backend or the in-memory engine rejected the SQL.

ERROR RESPONSE FORMAT:
----------------------
{
    "error": {
        "code": "ERR_3008",
        "message": "Query contains forbidden keyword: DROP",
        "details": {"keyword": "DROP"},
        "suggestion": "Only read-only SELECT/WITH queries are allowed",
        "request_id": "abc-123"
    }
}
"""

import logging
import uuid
from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CODES
# =============================================================================

class ErrorCode(str, Enum):
    """Unique error codes for every error type."""

    # Request (3xxx)
    ERR_QUERY_INVALID = "ERR_3001"
    ERR_LIMIT_EXCEEDED = "ERR_3002"
    ERR_SQL_UNSAFE = "ERR_3008"
    ERR_FILTER_METADATA_INVALID = "ERR_3009"
    ERR_DUPLICATE_QUERY_KEY = "ERR_3010"
    ERR_PLACEHOLDER_UNRESOLVED = "ERR_3011"

    # Query Execution (4xxx)
    ERR_QUERY_FAILED = "ERR_4002"
    ERR_CONNECTION_FAILED = "ERR_4003"
    ERR_ENGINE_UNSUPPORTED = "ERR_4005"
    ERR_TABLE_NOT_FOUND = "ERR_4006"
    ERR_UNSUPPORTED_SQL = "ERR_4007"
    ERR_SQL_PARSE = "ERR_4008"
    ERR_COLUMN_NOT_FOUND = "ERR_4009"

    # Table data (5xxx)
    ERR_TABLE_DATA_INVALID = "ERR_5001"

    # Internal (9xxx)
    ERR_INTERNAL = "ERR_9001"


class ErrorKind(str, Enum):
    """Per-query failure classes reported in batch responses."""

    VALIDATION = "validation"
    METADATA = "metadata"
    EXECUTION = "execution"


# =============================================================================
# ERROR RESPONSE
# =============================================================================

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class QueryGateError(Exception):
    """
    Structured error with all context needed for debugging.

    Attributes:
        code: Unique error code for searching logs
        message: Human-readable error message
        status_code: HTTP status code
        details: Additional context (dict)
        suggestion: How to fix the issue
        request_id: Request tracing ID
    """
    code: ErrorCode
    message: str
    status_code: int = 400
    details: Dict[str, Any] = field(default_factory=dict)
    suggestion: Optional[str] = None
    request_id: Optional[str] = None

    kind = ErrorKind.EXECUTION

    def __post_init__(self):
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Wire format: {"error": {...}} with empty optional fields left out."""
        body = {"code": self.code.value, "message": self.message}
        optional = {
            "details": self.details,
            "suggestion": self.suggestion,
            "request_id": self.request_id,
        }
        body.update({name: value for name, value in optional.items() if value})
        body["timestamp"] = _now()
        return {"error": body}

    def to_query_error(self) -> Dict[str, Any]:
        """Compact form used for a single key inside a batch response."""
        entry = {
            "kind": self.kind.value,
            "code": self.code.value,
            "message": self.message,
        }
        if self.suggestion:
            entry["suggestion"] = self.suggestion
        return entry

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())

    def log(self, level: str = "error"):
        parts = [f"[{self.code.value}] {self.message}"]
        if self.details:
            parts.append(f"details={self.details}")
        if self.request_id:
            parts.append(f"request_id={self.request_id}")
        getattr(logger, level)(" | ".join(parts))


class SQLValidationError(QueryGateError):
    """SQL rejected by the safety validator."""
    kind = ErrorKind.VALIDATION


class FilterMetadataError(QueryGateError):
    """Filter metadata attached to a template is inconsistent."""
    kind = ErrorKind.METADATA


class QueryExecutionError(QueryGateError):
    """Backend or in-memory engine rejected the SQL."""
    kind = ErrorKind.EXECUTION


# =============================================================================
# ERROR FACTORY FUNCTIONS
# =============================================================================

def sql_unsafe(reason: str, request_id: Optional[str] = None) -> SQLValidationError:
    """Create SQL validation error."""
    return SQLValidationError(
        code=ErrorCode.ERR_SQL_UNSAFE,
        message=reason,
        status_code=400,
        details={"reason": reason},
        suggestion="Only single read-only SELECT or WITH statements without comments are allowed",
        request_id=request_id
    )


def filter_metadata_invalid(
    problems: List[str],
    query_key: Optional[str] = None,
    request_id: Optional[str] = None
) -> FilterMetadataError:
    """Create filter metadata error listing every problem found."""
    details: Dict[str, Any] = {"problems": problems}
    if query_key:
        details["query_key"] = query_key

    return FilterMetadataError(
        code=ErrorCode.ERR_FILTER_METADATA_INVALID,
        message=f"Invalid filter metadata: {', '.join(problems)}",
        status_code=400,
        details=details,
        suggestion="Fix the filterMeta entries of this query template",
        request_id=request_id
    )


def placeholder_residue(
    placeholders: List[str],
    request_id: Optional[str] = None
) -> QueryExecutionError:
    """Create error for placeholders that survived every rewrite stage."""
    return QueryExecutionError(
        code=ErrorCode.ERR_PLACEHOLDER_UNRESOLVED,
        message=f"Unresolved placeholders remain: {', '.join(placeholders)}",
        status_code=500,
        details={"placeholders": placeholders},
        suggestion="Supply values for these filters or remove them from the template",
        request_id=request_id
    )


def query_failed(
    message: str,
    engine: Optional[str] = None,
    code: ErrorCode = ErrorCode.ERR_QUERY_FAILED,
    request_id: Optional[str] = None
) -> QueryExecutionError:
    """Create query execution error."""
    details = {}
    if engine:
        details["engine"] = engine

    suggestions = {
        ErrorCode.ERR_TABLE_NOT_FOUND: "Load the table first with POST /v1/tables or check the table name",
        ErrorCode.ERR_UNSUPPORTED_SQL: "Simplify the query or use a database data source",
        ErrorCode.ERR_SQL_PARSE: "Check the SQL syntax",
        ErrorCode.ERR_COLUMN_NOT_FOUND: "Check the column names against GET /v1/tables",
    }

    return QueryExecutionError(
        code=code,
        message=message,
        status_code=422,
        details=details,
        suggestion=suggestions.get(code),
        request_id=request_id
    )


def connection_failed(
    engine: str,
    reason: str,
    request_id: Optional[str] = None
) -> QueryExecutionError:
    """Create connection failed error."""
    return QueryExecutionError(
        code=ErrorCode.ERR_CONNECTION_FAILED,
        message=f"Failed to connect to data source '{engine}': {reason}",
        status_code=503,
        details={"engine": engine, "reason": reason},
        suggestion="Check data source credentials and network connectivity",
        request_id=request_id
    )


def engine_unsupported(
    engine: str,
    available: Optional[List[str]] = None,
    request_id: Optional[str] = None
) -> QueryGateError:
    """Create unsupported engine error."""
    details: Dict[str, Any] = {"engine": engine}
    if available:
        details["available_engines"] = available

    return QueryGateError(
        code=ErrorCode.ERR_ENGINE_UNSUPPORTED,
        message=f"Unsupported database engine '{engine}'",
        status_code=400,
        details=details,
        suggestion="Install the driver extra for this engine or pick an available one",
        request_id=request_id
    )


def request_invalid(
    message: str,
    field: Optional[str] = None,
    request_id: Optional[str] = None
) -> QueryGateError:
    """Create request validation error."""
    details = {}
    if field:
        details["field"] = field

    return QueryGateError(
        code=ErrorCode.ERR_QUERY_INVALID,
        message=message,
        status_code=400,
        details=details,
        suggestion="Check the request body against the API documentation",
        request_id=request_id
    )


def duplicate_query_keys(keys: List[str], request_id: Optional[str] = None) -> QueryGateError:
    """Create duplicate key error for a batch."""
    return QueryGateError(
        code=ErrorCode.ERR_DUPLICATE_QUERY_KEY,
        message=f"Duplicate query keys in batch: {', '.join(keys)}",
        status_code=400,
        details={"keys": keys},
        suggestion="Give every query in a batch a unique key",
        request_id=request_id
    )


def batch_too_large(count: int, limit: int, request_id: Optional[str] = None) -> QueryGateError:
    """Create batch size error."""
    return QueryGateError(
        code=ErrorCode.ERR_LIMIT_EXCEEDED,
        message=f"Too many queries: {count} exceeds limit of {limit}",
        status_code=400,
        details={"actual": count, "limit": limit},
        suggestion="Split the batch into several requests",
        request_id=request_id
    )


def table_data_invalid(name: str, reason: str, request_id: Optional[str] = None) -> QueryGateError:
    """Create error for rows that cannot be loaded as a table."""
    return QueryGateError(
        code=ErrorCode.ERR_TABLE_DATA_INVALID,
        message=f"Cannot load table '{name}': {reason}",
        status_code=400,
        details={"table": name, "reason": reason},
        suggestion="Rows must be a list of JSON objects with scalar values",
        request_id=request_id
    )


def table_not_found(
    name: str,
    available_tables: Optional[List[str]] = None,
    request_id: Optional[str] = None
) -> QueryGateError:
    """Create table not found error for table management endpoints."""
    details: Dict[str, Any] = {"table": name}
    if available_tables:
        details["available_tables"] = available_tables[:10]

    return QueryGateError(
        code=ErrorCode.ERR_TABLE_NOT_FOUND,
        message=f"Table '{name}' not found",
        status_code=404,
        details=details,
        suggestion="List loaded tables with GET /v1/tables",
        request_id=request_id
    )


def internal_error(
    message: str = "An unexpected error occurred",
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> QueryGateError:
    """Create internal error - use sparingly, prefer specific errors."""
    return QueryGateError(
        code=ErrorCode.ERR_INTERNAL,
        message=message,
        status_code=500,
        details=details or {},
        suggestion="If this persists, check the server logs for the request ID",
        request_id=request_id
    )


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())[:8]


async def querygate_error_handler(request: Request, exc: QueryGateError) -> JSONResponse:
    """Handle QueryGateError and return structured response."""
    if not exc.request_id:
        exc.request_id = _request_id(request)

    exc.log()

    return exc.to_response()


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Plain HTTPExceptions (404 route, 405 method) in the same envelope."""
    request_id = _request_id(request)
    code = f"ERR_HTTP_{exc.status_code}"
    logger.warning(f"[{code}] {exc.detail} | request_id={request_id}")
    body = {"code": code, "message": str(exc.detail), "request_id": request_id, "timestamp": _now()}
    return JSONResponse(status_code=exc.status_code, content={"error": body})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Turn pydantic body errors into the structured 400 format."""
    problems = [
        f"{'.'.join(str(p) for p in err.get('loc', []))}: {err.get('msg', '')}"
        for err in exc.errors()
    ]
    error = request_invalid(
        message=f"Malformed request: {'; '.join(problems)}",
        request_id=_request_id(request)
    )
    error.log(level="warning")
    return error.to_response()


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = _request_id(request)
    logger.exception(f"Unhandled {type(exc).__name__} | request_id={request_id}")
    return internal_error(details={"exception_type": type(exc).__name__}, request_id=request_id).to_response()


# =============================================================================
# HELPER TO INSTALL HANDLERS
# =============================================================================

def install_error_handlers(app):
    """Install error handlers on FastAPI app."""
    app.add_exception_handler(QueryGateError, querygate_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    logger.info("Structured error handlers installed")
