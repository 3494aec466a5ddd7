"""
In-Memory Adapter for QueryGate

Runs queries on the in-memory engine over TableStore tables, used when a
batch targets uploaded data instead of a database.

The engine has no parameter binding, so ? markers are replaced by
literals before execution:
- numbers as numbers
- booleans as TRUE / FALSE
- None as NULL
- dates and datetimes as quoted ISO-8601
- everything else as a quoted string with embedded quotes doubled
"""

import time
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from app.adapters.base import BaseAdapter, AdapterResult, QueryError
from app.domain.query.sqltext import count_markers, replace_markers
from app.infrastructure.memory.engine import MemoryEngine, MemoryEngineError, parse_select
from app.infrastructure.memory.store import TableStore, get_table_store

logger = logging.getLogger(__name__)


def to_literal(value: Any) -> str:
    """Render one bound value as a SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (date, datetime)):
        return f"'{value.isoformat()}'"
    text = str(value).replace("'", "''")
    return f"'{text}'"


def inline_params(sql: str, params: Optional[List[Any]] = None) -> str:
    """Replace ? markers outside string literals with literal values."""
    values = list(params or [])
    expected = count_markers(sql)
    if expected != len(values):
        raise QueryError(
            f"Parameter count mismatch: {expected} markers, {len(values)} values",
            engine=MemoryAdapter.ENGINE
        )
    if not values:
        return sql
    return replace_markers(sql, "?", lambda index: to_literal(values[index]))


class MemoryAdapter(BaseAdapter):
    """
    Adapter over the in-memory engine.

    Config options:
        none; the table store is passed by handle

    Example:
        store = TableStore()
        store.add_table("sales", rows)
        adapter = MemoryAdapter(store=store)
        result = adapter.execute("SELECT * FROM sales WHERE region = ?", ["EU"])
    """

    ENGINE = "memory"
    PLACEHOLDER = "?"

    def __init__(self, config: Optional[Dict[str, Any]] = None, store: Optional[TableStore] = None):
        super().__init__(config)
        self.store = store or get_table_store()
        self.engine = MemoryEngine(self.store)

    def connect(self) -> None:
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def execute(self, sql: str, params: Optional[List[Any]] = None) -> AdapterResult:
        self._update_last_used()
        start_time = time.perf_counter()

        inlined = inline_params(sql, params)
        try:
            result = self.engine.execute(inlined)
        except MemoryEngineError as e:
            raise QueryError(str(e), engine=self.ENGINE, original_error=e)

        execution_time = (time.perf_counter() - start_time) * 1000
        return AdapterResult(
            rows=result.rows,
            columns=result.columns,
            execution_time_ms=execution_time,
            engine=self.ENGINE,
            sql=sql,
            metadata={"tables": len(self.store.table_names())}
        )

    def health_check(self) -> bool:
        return True

    def known_columns(self, sql: str) -> List[str]:
        """Columns of the table a query reads, used by auto-inference."""
        try:
            statement = parse_select(sql)
        except MemoryEngineError:
            return []
        table = self.store.find_table(statement.table)
        return table.schema.column_names if table else []
