"""
Batch Queries for QueryGate

Execute every query template of a dashboard in a single request:
- Parallel execution, bounded by batch_max_parallel
- Partial failure handling: one failing query never fails its siblings
- Every requested key gets rows or an error entry

Adapters are synchronous, so each query runs on a worker thread while the
event loop waits for the whole batch to join.

Flow:
    request -> guards (size, unique keys) -> optional fileData load
            -> adapter for dataSource -> orchestrator per query (parallel)
            -> {results, executedSql, errors}
"""

import asyncio
import contextvars
import time
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from app.adapters import get_adapter_for_source
from app.adapters.base import AdapterError
from app.core.config import settings
from app.domain.query.orchestrator import QueryOrchestrator, QueryOutcome
from app.errors import connection_failed, internal_error
from app.guards import check_result_size, validate_batch_size, validate_unique_keys
from app.infrastructure.memory.store import TableStore, get_table_store
from app.shared.types.models import (
    ExecuteQueriesRequest,
    ExecuteQueriesResponse,
    QueryErrorEntry,
    QueryTemplate,
)

logger = logging.getLogger(__name__)


class BatchExecutor:
    """
    Execute batch requests.

    Usage:
        executor = BatchExecutor(store)
        response = await executor.execute(request)
    """

    def __init__(
        self,
        store: Optional[TableStore] = None,
        max_parallel: Optional[int] = None,
        max_queries: Optional[int] = None,
    ):
        self.store = store or get_table_store()
        self.max_parallel = max_parallel or settings.batch_max_parallel
        self.max_queries = max_queries or settings.batch_max_queries
        self._pool = ThreadPoolExecutor(max_workers=self.max_parallel, thread_name_prefix="querygate")

    async def execute(self, request: ExecuteQueriesRequest) -> ExecuteQueriesResponse:
        """
        Execute batch request.

        Raises:
            QueryGateError: request-level problems (too many queries,
                duplicate keys, unloadable fileData, unsupported engine)
        """
        validate_batch_size(len(request.queries), self.max_queries)
        validate_unique_keys([q.key for q in request.queries])

        started = time.perf_counter()
        loop = asyncio.get_running_loop()

        if request.fileData is not None:
            self.store.add_table(request.fileData.tableName, request.fileData.rows)

        source = request.dataSource
        try:
            adapter = await loop.run_in_executor(
                self._pool, get_adapter_for_source, source, self.store
            )
        except AdapterError as e:
            logger.error(f"Data source connection failed: {e}")
            error = connection_failed(e.engine, str(e))
            return ExecuteQueriesResponse(
                errors={q.key: QueryErrorEntry(**error.to_query_error()) for q in request.queries}
            )

        orchestrator = QueryOrchestrator(adapter, engine_name=source.engine or adapter.ENGINE)
        outcomes = await self._execute_parallel(orchestrator, request.queries, request.filterParams)

        response = self._compile(request.queries, outcomes)

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Batch of {len(request.queries)} queries on {adapter.ENGINE}: "
            f"{len(response.results)} ok, {len(response.errors)} failed in {duration_ms:.1f}ms"
        )
        return response

    async def _execute_parallel(
        self,
        orchestrator: QueryOrchestrator,
        queries: List[QueryTemplate],
        values: Dict[str, Any],
    ) -> List[Any]:
        """Execute queries in parallel."""
        semaphore = asyncio.Semaphore(self.max_parallel)
        loop = asyncio.get_running_loop()

        async def execute_with_semaphore(template: QueryTemplate) -> QueryOutcome:
            async with semaphore:
                context = contextvars.copy_context()
                return await loop.run_in_executor(
                    self._pool, context.run, orchestrator.run, template, values
                )

        tasks = [execute_with_semaphore(q) for q in queries]
        return await asyncio.gather(*tasks, return_exceptions=True)

    def _compile(self, queries: List[QueryTemplate], outcomes: List[Any]) -> ExecuteQueriesResponse:
        response = ExecuteQueriesResponse()

        for template, outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Query {template.key} crashed: {outcome!r}", exc_info=outcome)
                error = internal_error(f"Query {template.key} failed unexpectedly")
                response.errors[template.key] = QueryErrorEntry(**error.to_query_error())
                continue

            if outcome.executed_sql is not None:
                response.executedSql[template.key] = outcome.executed_sql

            if outcome.ok:
                check_result_size(outcome.rows, key=template.key)
                response.results[template.key] = outcome.rows
            else:
                response.errors[template.key] = QueryErrorEntry(**outcome.error.to_query_error())

        return response

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False)


def run_batch(request: ExecuteQueriesRequest, store: Optional[TableStore] = None) -> ExecuteQueriesResponse:
    """Synchronous entry point (CLI, scripts)."""
    executor = BatchExecutor(store)
    try:
        return asyncio.run(executor.execute(request))
    finally:
        executor.shutdown()
