"""
Query Orchestrator

Turns one query template plus the user's filter values into executed
rows, or into a structured per-query error.

STRATEGY PRIORITY (first match wins):
-------------------------------------
(a) explicit    filterMeta present and filter values present:
                validate the metadata, then parameterize
(b) lookup      template flagged as lookup, or key with a lookup prefix
                (default "distinct-"): run unmodified, since it feeds the
                filter option lists themselves
(c) inferred    filter values present, no {{placeholders}}: auto-inference,
                unmodified when nothing could be inferred
(d) legacy      filter values present, {{placeholders}} present: the
                inject / remove / strip ladder
(e) unfiltered  no filter values: run unmodified

Every final statement goes through the validator before it reaches the
adapter. A query whose inferred filters hit an unknown column is retried
exactly once without any filters.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.adapters.base import AdapterError, BaseAdapter, ConnectionError
from app.core.config import settings
from app.domain.query.error_classifier import is_unknown_column_error
from app.domain.query.inference import build_auto_filtered_query
from app.domain.query.parameterizer import build_filtered_query, validate_filter_meta
from app.domain.query.placeholders import apply_legacy_ladder, extract_placeholders, has_unresolved_placeholders
from app.domain.query.validator import validate_query
from app.errors import (
    ErrorCode,
    QueryGateError,
    connection_failed,
    filter_metadata_invalid,
    placeholder_residue,
    query_failed,
    sql_unsafe,
)
from app.infrastructure.memory.engine import (
    ColumnNotFoundError,
    SQLParseError,
    TableNotFoundError,
    UnsupportedQueryError,
)
from app.shared.types.models import QueryTemplate

logger = logging.getLogger(__name__)


FILTERS_SKIPPED_NOTE = " /* filters skipped: column not found */"


class Strategy(str, Enum):
    EXPLICIT = "explicit"
    LOOKUP = "lookup"
    AUTO_INFERRED = "auto_inferred"
    LEGACY = "legacy"
    UNFILTERED = "unfiltered"


@dataclass
class PreparedQuery:
    """Final SQL for one template, before validation and execution."""
    key: str
    sql: str
    params: List[Any] = field(default_factory=list)
    strategy: Strategy = Strategy.UNFILTERED
    original_sql: str = ""
    residue: List[str] = field(default_factory=list)


@dataclass
class QueryOutcome:
    """Rows or error for one key. executed_sql never contains bound values."""
    key: str
    rows: Optional[List[Dict[str, Any]]] = None
    executed_sql: Optional[str] = None
    error: Optional[QueryGateError] = None
    strategy: Optional[Strategy] = None
    retried: bool = False
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


_ENGINE_ERROR_CODES = (
    (TableNotFoundError, ErrorCode.ERR_TABLE_NOT_FOUND),
    (UnsupportedQueryError, ErrorCode.ERR_UNSUPPORTED_SQL),
    (SQLParseError, ErrorCode.ERR_SQL_PARSE),
    (ColumnNotFoundError, ErrorCode.ERR_COLUMN_NOT_FOUND),
)


class QueryOrchestrator:
    """
    Prepares and runs templates against one adapter.

    Usage:
        orchestrator = QueryOrchestrator(adapter)
        outcome = orchestrator.run(template, {"region": "EU"})
        if outcome.ok:
            rows = outcome.rows
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        engine_name: Optional[str] = None,
        lookup_prefixes: Optional[Sequence[str]] = None,
    ):
        self.adapter = adapter
        self.engine_name = engine_name or adapter.ENGINE
        self.lookup_prefixes = tuple(
            settings.lookup_key_prefixes if lookup_prefixes is None else lookup_prefixes
        )

    # =========================================================================
    # STRATEGY SELECTION
    # =========================================================================

    def is_lookup(self, template: QueryTemplate) -> bool:
        return template.lookup or template.key.startswith(self.lookup_prefixes)

    def prepare(self, template: QueryTemplate, values: Optional[Mapping[str, Any]] = None) -> PreparedQuery:
        """
        Pick a strategy and build the final SQL.

        Raises:
            FilterMetadataError: explicit filter metadata is inconsistent
        """
        values = values or {}
        sql = template.sql
        prepared = PreparedQuery(key=template.key, sql=sql, original_sql=sql)

        if template.filterMeta and values:
            problems = validate_filter_meta(template.filterMeta)
            if problems:
                raise filter_metadata_invalid(problems, query_key=template.key)
            built = build_filtered_query(sql, template.filterMeta, values)
            prepared.sql, prepared.params = built.sql, built.params
            prepared.strategy = Strategy.EXPLICIT

        elif self.is_lookup(template):
            prepared.strategy = Strategy.LOOKUP

        elif values and not has_unresolved_placeholders(sql):
            built = build_auto_filtered_query(sql, values, self.adapter.known_columns(sql))
            prepared.strategy = Strategy.AUTO_INFERRED
            if built is not None and built.params:
                prepared.sql, prepared.params = built.sql, built.params

        elif values:
            outcome = apply_legacy_ladder(sql, values)
            prepared.sql = outcome.sql
            prepared.strategy = Strategy.LEGACY

        prepared.residue = extract_placeholders(prepared.sql)
        if prepared.residue:
            log = logger.error if prepared.strategy == Strategy.LEGACY else logger.warning
            log(f"Query {template.key} still has placeholders: {', '.join(prepared.residue)}")

        logger.debug(
            f"Query {template.key}: strategy={prepared.strategy.value} params={len(prepared.params)}"
        )
        return prepared

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def run(self, template: QueryTemplate, values: Optional[Mapping[str, Any]] = None) -> QueryOutcome:
        """Prepare, validate and execute one template. Never raises for query-level failures."""
        start_time = time.perf_counter()
        outcome = QueryOutcome(key=template.key)

        try:
            prepared = self.prepare(template, values)
        except QueryGateError as e:
            outcome.error = e
            return self._finish(outcome, start_time)

        outcome.strategy = prepared.strategy
        outcome.executed_sql = prepared.sql

        try:
            outcome.rows = self._validate_and_execute(prepared.sql, prepared.params)

        except QueryGateError as e:
            outcome.error = e

        except AdapterError as e:
            if self._should_retry(prepared, values, e):
                logger.warning(
                    f"Query {template.key} - inferred filter caused column error, "
                    f"retrying without filters: {e}"
                )
                outcome.retried = True
                outcome.executed_sql = prepared.original_sql + FILTERS_SKIPPED_NOTE
                try:
                    outcome.rows = self._validate_and_execute(prepared.original_sql, [])
                except QueryGateError as retry_error:
                    outcome.error = retry_error
                except AdapterError as retry_error:
                    outcome.error = self._execution_error(retry_error, prepared)
            else:
                outcome.error = self._execution_error(e, prepared)

        return self._finish(outcome, start_time)

    def _finish(self, outcome: QueryOutcome, start_time: float) -> QueryOutcome:
        outcome.duration_ms = (time.perf_counter() - start_time) * 1000
        if outcome.error is not None:
            outcome.rows = None
            outcome.error.log("warning")
        else:
            logger.info(
                f"Query {outcome.key} returned {len(outcome.rows)} rows "
                f"in {outcome.duration_ms:.1f}ms"
            )
        return outcome

    def _validate_and_execute(self, sql: str, params: List[Any]) -> List[Dict[str, Any]]:
        verdict = validate_query(sql)
        if not verdict.valid:
            raise sql_unsafe(verdict.reason)
        return self.adapter.execute(sql, params).rows

    def _should_retry(
        self,
        prepared: PreparedQuery,
        values: Optional[Mapping[str, Any]],
        error: AdapterError,
    ) -> bool:
        return (
            prepared.strategy == Strategy.AUTO_INFERRED
            and bool(prepared.params)
            and bool(values)
            and not isinstance(error, ConnectionError)
            and is_unknown_column_error(str(error), self.engine_name)
        )

    def _execution_error(self, error: AdapterError, prepared: PreparedQuery) -> QueryGateError:
        if isinstance(error, ConnectionError):
            return connection_failed(error.engine, str(error))

        if prepared.residue:
            residue_error = placeholder_residue(prepared.residue)
            residue_error.details["backend_error"] = str(error)
            return residue_error

        code = ErrorCode.ERR_QUERY_FAILED
        for error_type, error_code in _ENGINE_ERROR_CODES:
            if isinstance(error.original_error, error_type):
                code = error_code
                break
        else:
            if is_unknown_column_error(str(error), self.engine_name):
                code = ErrorCode.ERR_COLUMN_NOT_FOUND

        return query_failed(str(error), engine=error.engine, code=code)
