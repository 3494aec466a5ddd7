"""
QueryGate - Main Application

Runs dashboard query templates with end-user filters applied safely.

PRODUCTION FEATURES:
--------------------
- Batch execution with per-query failure isolation
- Read-only SQL validation before anything reaches a backend
- Three filter strategies: explicit metadata, auto-inference, legacy placeholders
- In-memory tables for uploaded file data, or a real database backend
- Structured errors (codes, suggestions, request IDs)
- Structured Logging (request tracing)
"""

import uuid
import logging
from contextvars import ContextVar
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.adapters import close_all_adapters, get_adapters_status
from app.batch import BatchExecutor
from app.core.config import settings
from app.core.dependencies import get_batch_executor, get_store, shutdown_batch_executor
from app.domain.query.validator import validate_query
from app.errors import install_error_handlers, table_not_found
from app.guards import get_safety_status
from app.infrastructure.memory.store import TableStore
from app.shared.types.models import (
    ExecuteQueriesRequest,
    ExecuteQueriesResponse,
    TableInfo,
    TableLoadRequest,
    ValidateRequest,
    ValidateResponse,
)


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)


# Add request_id filter
class RequestIdFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = request_id_var.get()
        return True


for handler in logging.root.handlers:
    handler.addFilter(RequestIdFilter())

logger = logging.getLogger(__name__)


# =============================================================================
# STARTUP & SHUTDOWN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    status = get_adapters_status()
    logger.info(f"Startup completed, engines: {', '.join(status['registered_engines'])}")
    yield
    closed = close_all_adapters()
    shutdown_batch_executor()
    logger.info(f"Shutdown completed, {closed} adapters closed")


# =============================================================================
# APPLICATION INITIALIZATION
# =============================================================================

app = FastAPI(
    title=f"{settings.app_name} API",
    version=settings.app_version,
    description="Safe filter application and execution for dashboard SQL templates",
    lifespan=lifespan,
)

install_error_handlers(app)


# =============================================================================
# MIDDLEWARE
# =============================================================================

# Request ID middleware for tracing
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID for tracing and structured logging."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
    request.state.request_id = request_id
    token = request_id_var.set(request_id)

    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)

    response.headers["X-Request-ID"] = request_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# =============================================================================
# PUBLIC ENDPOINTS
# =============================================================================

@app.get("/v1/health", tags=["Health"])
def health(store: TableStore = Depends(get_store)):
    """Public health check endpoint."""
    adapters = get_adapters_status()

    return {
        "status": "ok",
        "service": settings.app_name,
        "time": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
        "engines": adapters["registered_engines"],
        "tables": len(store.table_names()),
        "safety_guards": get_safety_status(),
    }


@app.post("/v1/validate", response_model=ValidateResponse, tags=["Query"])
def validate(req: ValidateRequest):
    """
    Check SQL against the read-only safety rules without running it.

    Example:
        POST /v1/validate
        {"sql": "SELECT * FROM orders; DROP TABLE orders"}
        -> {"valid": false, "reason": "Multiple statements are not allowed"}
    """
    verdict = validate_query(req.sql)
    return ValidateResponse(valid=verdict.valid, reason=verdict.reason)


# =============================================================================
# QUERY EXECUTION
# =============================================================================

@app.post("/v1/execute-queries", response_model=ExecuteQueriesResponse, tags=["Query"])
async def execute_queries(
    req: ExecuteQueriesRequest,
    executor: BatchExecutor = Depends(get_batch_executor),
):
    """
    Execute a batch of query templates with the user's filters applied.

    Every requested key comes back in exactly one of `results` or
    `errors`. `executedSql` shows the final SQL with ? markers; filter
    values are never echoed.

    Example:
        POST /v1/execute-queries
        {
            "queries": [
                {"key": "revenue-by-region", "sql": "SELECT region, amount FROM sales"},
                {"key": "distinct-region", "sql": "SELECT DISTINCT region FROM sales"}
            ],
            "filterParams": {"region": "EU"},
            "dataSource": {"type": "memory"},
            "fileData": {"tableName": "sales", "rows": [{"region": "EU", "amount": 10}]}
        }
    """
    logger.info(
        f"Batch: queries={len(req.queries)} source={req.dataSource.type} "
        f"filters={sorted(req.filterParams)}"
    )
    return await executor.execute(req)


# =============================================================================
# TABLE MANAGEMENT
# =============================================================================

@app.get("/v1/tables", response_model=List[TableInfo], tags=["Tables"])
def list_tables(store: TableStore = Depends(get_store)):
    """List loaded in-memory tables with their inferred schemas."""
    return [schema.to_dict() for schema in store.get_schemas()]


@app.post("/v1/tables", response_model=TableInfo, tags=["Tables"])
def load_table(req: TableLoadRequest, store: TableStore = Depends(get_store)):
    """Load (or replace) an in-memory table from JSON rows."""
    schema = store.add_table(req.name, req.rows)
    return schema.to_dict()


@app.delete("/v1/tables", tags=["Tables"])
def reset_tables(store: TableStore = Depends(get_store)):
    """Drop every in-memory table."""
    dropped = len(store.table_names())
    store.reset()
    return {"dropped": dropped}


@app.delete("/v1/tables/{name}", tags=["Tables"])
def delete_table(name: str, store: TableStore = Depends(get_store)):
    """Drop one in-memory table."""
    if not store.remove_table(name):
        raise table_not_found(name, store.table_names())
    return {"dropped": name}
