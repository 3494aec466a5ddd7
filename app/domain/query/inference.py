"""
Auto-Inference Matcher

Best-effort mapping from filter keys to columns for templates that carry
neither filter metadata nor {{placeholders}}. The output is a list of
FilterBindings fed to the regular parameterizer, so values are still
bound through ? markers.

Matching rules, first hit wins for each key:

1. date_from / start_date / from_date  -> gte on the detected date column
   date_to / end_date / to_date        -> lte on the detected date column
2. {from, to} value                    -> range on the matching column, or on
                                          the date column for date-like keys
3. Key names a column of the query     -> eq (in for lists)
4. Common categorical key              -> eq (in for lists)
5. *_id -> eq, *_min -> gte, *_max -> lte (numeric)

Mis-targeted guesses are expected. The orchestrator retries a query once
without filters when the backend reports an unknown column.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app.domain.query.parameterizer import ParameterizedQuery, build_filtered_query, is_valid_column_name
from app.domain.query.sqltext import mask_literals
from app.shared.types.models import FilterBinding

logger = logging.getLogger(__name__)


DATE_FROM_KEYS = ("date_from", "start_date", "from_date")
DATE_TO_KEYS = ("date_to", "end_date", "to_date")
DATE_RANGE_KEYS = ("date", "date_range", "period")

COMMON_DATE_COLUMNS = [
    "date",
    "created_at",
    "updated_at",
    "order_date",
    "transaction_date",
    "timestamp",
    "datetime",
    "time",
    "day",
    "event_date",
    "sale_date",
    "purchase_date",
]

CATEGORICAL_KEYS = (
    "category", "region", "status", "type", "department",
    "product", "customer", "country", "state", "city",
)

_IDENTIFIER = re.compile(r"(?<![.\w])(?:[A-Za-z_][A-Za-z0-9_]*\.)?([A-Za-z_][A-Za-z0-9_]*)\b")
_TABLE_POSITION = re.compile(r"\b(?:FROM|JOIN)\s+([A-Za-z_][A-Za-z0-9_.]*)", re.IGNORECASE)
_NUMERIC = re.compile(r"^-?\d+(?:\.\d+)?$")


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, tuple, dict)) and not value)


def referenced_identifiers(sql: str) -> Dict[str, str]:
    """
    Identifiers used in a statement, lower-cased name -> spelling.

    Table names right after FROM/JOIN are excluded so a filter key equal
    to a table name is not taken for a column.
    """
    masked = mask_literals(sql)
    tables = {m.group(1).split(".")[-1].lower() for m in _TABLE_POSITION.finditer(masked)}
    found: Dict[str, str] = {}
    for match in _IDENTIFIER.finditer(masked):
        name = match.group(1)
        lowered = name.lower()
        if lowered in tables or lowered in found:
            continue
        found[lowered] = name
    return found


def detect_date_column(sql: Optional[str], columns: Optional[Iterable[str]] = None) -> Optional[str]:
    """First known date column, preferring the table's real columns over the SQL text."""
    if columns:
        by_lower = {c.lower(): c for c in columns}
        for candidate in COMMON_DATE_COLUMNS:
            if candidate in by_lower:
                return by_lower[candidate]

    if sql:
        masked = mask_literals(sql)
        for candidate in COMMON_DATE_COLUMNS:
            if re.search(rf"(?<![\w]){candidate}\b", masked, re.IGNORECASE):
                return candidate

    return None


def _scalar_type(value: Any) -> str:
    sample = value[0] if isinstance(value, (list, tuple)) and value else value
    if isinstance(sample, bool):
        return "boolean"
    if isinstance(sample, (int, float)):
        return "number"
    return "text"


def _range_type(key: str, value: Mapping[str, Any]) -> str:
    if _is_date_key(key):
        return "date"
    ends = [value.get("from"), value.get("to")]
    if all(isinstance(v, (int, float)) or (isinstance(v, str) and _NUMERIC.match(v)) for v in ends):
        return "number"
    return "date"


def _is_date_key(key: str) -> bool:
    return key in DATE_RANGE_KEYS or "date" in key


def _equality(key: str, column: str, value: Any) -> FilterBinding:
    operator = "in" if isinstance(value, (list, tuple)) else "eq"
    return FilterBinding(id=key, column=column, operator=operator, type=_scalar_type(value))


def infer_filter_bindings(
    values: Mapping[str, Any],
    sql: Optional[str] = None,
    columns: Optional[Iterable[str]] = None,
) -> List[FilterBinding]:
    """
    Guess a binding for every filter key that matches a rule.

    Args:
        values: Filter values keyed by filter id
        sql: Template the filters will be applied to
        columns: Real column names, when known (in-memory tables)
    """
    column_list = list(columns or [])
    known: Dict[str, str] = {c.lower(): c for c in column_list}
    if sql:
        for lowered, spelling in referenced_identifiers(sql).items():
            known.setdefault(lowered, spelling)

    date_column = detect_date_column(sql, column_list)
    bindings: List[FilterBinding] = []

    for key, value in values.items():
        if _is_empty(value):
            continue
        lowered = key.lower()
        binding: Optional[FilterBinding] = None

        if lowered in DATE_FROM_KEYS or lowered in DATE_TO_KEYS:
            if date_column:
                operator = "gte" if lowered in DATE_FROM_KEYS else "lte"
                binding = FilterBinding(id=key, column=date_column, operator=operator, type="date")

        elif isinstance(value, Mapping):
            column = known.get(lowered) or (date_column if _is_date_key(lowered) else None)
            if column:
                binding = FilterBinding(id=key, column=column, operator="range", type=_range_type(lowered, value))

        elif lowered in known:
            binding = _equality(key, known[lowered], value)

        elif lowered in CATEGORICAL_KEYS:
            binding = _equality(key, key, value)

        elif lowered.endswith("_id"):
            operator = "in" if isinstance(value, (list, tuple)) else "eq"
            binding = FilterBinding(id=key, column=key, operator=operator, type="number")

        elif lowered.endswith("_min") or lowered.endswith("_max"):
            stem = key[:-4]
            column = known.get(stem.lower(), stem)
            operator = "gte" if lowered.endswith("_min") else "lte"
            binding = FilterBinding(id=key, column=column, operator=operator, type="number")

        if binding is None:
            continue
        if not is_valid_column_name(binding.column):
            logger.debug(f"Dropping inferred filter '{key}': invalid column {binding.column!r}")
            continue
        bindings.append(binding)

    if bindings:
        inferred = ", ".join(f"{b.id}->{b.column}({b.operator})" for b in bindings)
        logger.debug(f"Inferred filters: {inferred}")

    return bindings


def build_auto_filtered_query(
    sql: str,
    values: Mapping[str, Any],
    columns: Optional[Iterable[str]] = None,
) -> Optional[ParameterizedQuery]:
    """Infer bindings and apply them. None when no key could be matched."""
    bindings = infer_filter_bindings(values, sql, columns)
    if not bindings:
        return None
    return build_filtered_query(sql, bindings, values)
