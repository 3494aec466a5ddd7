"""
In-Memory Table Store

Process-wide registry of row tables that the in-memory engine reads from.
Tables arrive as JSON-style row arrays (uploaded files, fixtures). The
schema of each table is inferred once when the table is loaded and stays
fixed until the table is replaced.

TYPE INFERENCE:
None and "" count as missing. Over the remaining values of a column:
- number:  every value is int/float (booleans excluded) or a numeric string
- boolean: every value is a bool or the string "true" or "false"
- date:    every value is a date/datetime or an ISO-8601 string
- text:    anything else, and columns with no present values

Rows keep their raw values; the engine coerces numeric and boolean
strings when it compares or aggregates them. Columns are ordered by first
appearance across rows. A column is nullable when any row holds None or
"" for it, or lacks it.

THREAD SAFETY:
Writes are serialized by a lock. Readers receive immutable snapshots, so a
query that started before a reload keeps seeing the old rows.
"""

import logging
import re
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.errors import table_data_invalid, table_not_found

logger = logging.getLogger(__name__)


TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,127}$")

ISO_DATE_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)


# =============================================================================
# SCHEMA
# =============================================================================

@dataclass(frozen=True)
class ColumnSchema:
    name: str
    type: str
    nullable: bool


@dataclass(frozen=True)
class TableSchema:
    name: str
    columns: Tuple[ColumnSchema, ...]
    row_count: int

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def find_column(self, name: str) -> Optional[ColumnSchema]:
        """Column lookup, exact spelling first, then case-insensitive."""
        for column in self.columns:
            if column.name == name:
                return column
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "columns": [
                {"name": c.name, "type": c.type, "nullable": c.nullable}
                for c in self.columns
            ],
            "rowCount": self.row_count,
        }


@dataclass(frozen=True)
class Table:
    schema: TableSchema
    rows: Tuple[Dict[str, Any], ...]

    @property
    def name(self) -> str:
        return self.schema.name


NUMERIC_STRING_PATTERN = re.compile(r"^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?\s*$")
BOOLEAN_STRINGS = ("true", "false")


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _is_number_value(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and bool(NUMERIC_STRING_PATTERN.match(value))


def _is_boolean_value(value: Any) -> bool:
    return isinstance(value, bool) or value in BOOLEAN_STRINGS


def _is_date_value(value: Any) -> bool:
    if isinstance(value, (date, datetime)):
        return True
    return isinstance(value, str) and bool(ISO_DATE_PATTERN.match(value))


def infer_column_type(values: Sequence[Any]) -> str:
    present = [v for v in values if not _is_missing(v)]
    if not present:
        return "text"
    if all(_is_number_value(v) for v in present):
        return "number"
    if all(_is_boolean_value(v) for v in present):
        return "boolean"
    if all(_is_date_value(v) for v in present):
        return "date"
    return "text"


def infer_schema(name: str, rows: Sequence[Dict[str, Any]]) -> TableSchema:
    order: List[str] = []
    seen = set()
    for row in rows:
        for column in row:
            if column not in seen:
                seen.add(column)
                order.append(column)

    columns = []
    for column in order:
        values = [row.get(column) for row in rows]
        columns.append(ColumnSchema(
            name=column,
            type=infer_column_type(values),
            nullable=any(_is_missing(v) for v in values),
        ))

    return TableSchema(name=name, columns=tuple(columns), row_count=len(rows))


# =============================================================================
# TABLE STORE
# =============================================================================

class TableStore:
    """
    Lock-protected registry of in-memory tables.

    Names are matched case-insensitively. Adding a table under an existing
    name replaces it.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._tables: Dict[str, Table] = {}

    def add_table(self, name: str, rows: Sequence[Dict[str, Any]]) -> TableSchema:
        if not isinstance(name, str) or not TABLE_NAME_PATTERN.match(name):
            raise table_data_invalid(str(name), "table name must be a plain identifier")
        if not isinstance(rows, (list, tuple)):
            raise table_data_invalid(name, "rows must be a list of objects")
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                raise table_data_invalid(name, f"row {index} is not an object")

        schema = infer_schema(name, rows)
        columns = schema.column_names
        normalized = tuple({c: row.get(c) for c in columns} for row in rows)

        with self._lock:
            replaced = name.lower() in self._tables
            self._tables[name.lower()] = Table(schema=schema, rows=normalized)

        action = "Replaced" if replaced else "Loaded"
        logger.info(f"{action} table '{name}': {schema.row_count} rows, {len(columns)} columns")
        return schema

    def find_table(self, name: str) -> Optional[Table]:
        with self._lock:
            return self._tables.get(name.lower())

    def get_table(self, name: str) -> Table:
        table = self.find_table(name)
        if table is None:
            raise table_not_found(name, self.table_names())
        return table

    def has_table(self, name: str) -> bool:
        with self._lock:
            return name.lower() in self._tables

    def get_schema(self, name: str) -> TableSchema:
        return self.get_table(name).schema

    def get_schemas(self) -> List[TableSchema]:
        with self._lock:
            return [t.schema for t in self._tables.values()]

    def table_names(self) -> List[str]:
        with self._lock:
            return [t.name for t in self._tables.values()]

    def remove_table(self, name: str) -> bool:
        with self._lock:
            removed = self._tables.pop(name.lower(), None)
        if removed is not None:
            logger.info(f"Removed table '{removed.name}'")
        return removed is not None

    def reset(self) -> None:
        with self._lock:
            count = len(self._tables)
            self._tables.clear()
        logger.info(f"Table store reset ({count} tables dropped)")


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_table_store: Optional[TableStore] = None
_store_lock = threading.Lock()


def get_table_store() -> TableStore:
    """Get the process-wide table store."""
    global _table_store

    with _store_lock:
        if _table_store is None:
            _table_store = TableStore()
        return _table_store


def reset_table_store() -> None:
    """Drop every table from the process-wide store."""
    get_table_store().reset()
