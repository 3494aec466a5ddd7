"""
Filter-Metadata Parameterizer

Applies user filters to a SQL template through positional ? markers
instead of string substitution. Each FilterBinding names the column, the
operator and the value type; the user's value is only ever appended to
the params list.

EXAMPLE:
--------
    result = build_filtered_query(
        "SELECT region, SUM(revenue) FROM daily_metrics GROUP BY region",
        [
            FilterBinding(id="date_from", column="date", operator="gte", type="date"),
            FilterBinding(id="region", column="region", operator="eq", type="text"),
        ],
        {"date_from": "2024-01-01", "region": ["West", "East"]},
    )
    result.sql
    # SELECT region, SUM(revenue) FROM daily_metrics
    #   WHERE date >= ? AND region IN (?, ?) GROUP BY region
    result.params
    # ['2024-01-01', 'West', 'East']

INVARIANTS:
-----------
- Marker count always equals len(params)
- Filter values never appear in the SQL text
- Empty values ("", None, [], {}) add nothing
- A range adds BETWEEN ? AND ? only when both ends are present
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from app.domain.query.sqltext import collapse_whitespace, mask_literals
from app.shared.types.models import FilterBinding

logger = logging.getLogger(__name__)


OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "in", "not_in", "like", "ilike", "range", "between")
VALUE_TYPES = ("text", "number", "date", "boolean")

_COMPARISON_SQL = {"eq": "=", "neq": "<>", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}
_ORDERED_OPERATORS = ("gt", "gte", "lt", "lte", "range", "between")

COLUMN_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
TABLE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 128

_TERMINATORS = r"GROUP\s+BY|ORDER\s+BY|HAVING|LIMIT|OFFSET|FETCH|UNION|INTERSECT|EXCEPT|WINDOW"
_STRUCTURE = re.compile(rf"[()]|\b(?:WHERE|{_TERMINATORS}|OR)\b", re.IGNORECASE)
_TERMINATOR_WORD = re.compile(rf"^(?:{_TERMINATORS})$", re.IGNORECASE)
_TRAILING_SEMICOLON = re.compile(r";\s*$")


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class ParameterizedQuery:
    """SQL with ? markers plus the values bound to them, in marker order."""
    sql: str
    params: List[Any] = field(default_factory=list)
    where_clause: str = ""

    @property
    def has_filters(self) -> bool:
        return bool(self.params)


BindingLike = Union[FilterBinding, Mapping[str, Any]]


def _coerce(bindings: Iterable[BindingLike]) -> List[FilterBinding]:
    return [b if isinstance(b, FilterBinding) else FilterBinding.model_validate(dict(b)) for b in bindings]


# =============================================================================
# VALIDATION
# =============================================================================

def is_valid_column_name(name: str) -> bool:
    """Letters, digits, underscore and one optional qualifying dot."""
    return bool(name) and len(name) <= MAX_IDENTIFIER_LENGTH and bool(COLUMN_PATTERN.match(name))


def validate_filter_meta(bindings: Iterable[BindingLike]) -> List[str]:
    """
    Return every problem found in a set of bindings.

    An empty list means the metadata is usable.
    """
    errors: List[str] = []
    seen = set()

    for binding in _coerce(bindings):
        label = binding.id or "?"

        if not binding.id:
            errors.append("Filter missing required 'id' field")
        elif binding.id in seen:
            errors.append(f"Duplicate filter ID: {binding.id}")
        seen.add(binding.id)

        if not binding.column:
            errors.append(f"Filter '{label}' missing required 'column' field")
        elif not is_valid_column_name(binding.column):
            errors.append(f"Filter '{label}' has invalid column name: {binding.column!r}")

        if binding.table is not None:
            if not TABLE_PATTERN.match(binding.table) or len(binding.table) > MAX_IDENTIFIER_LENGTH:
                errors.append(f"Filter '{label}' has invalid table qualifier: {binding.table!r}")
            elif "." in binding.column:
                errors.append(f"Filter '{label}' qualifies an already qualified column")

        if not binding.operator:
            errors.append(f"Filter '{label}' missing required 'operator' field")
            continue
        if binding.operator not in OPERATORS:
            errors.append(f"Filter '{label}' has unknown operator: {binding.operator}")
            continue

        if not binding.type:
            errors.append(f"Filter '{label}' missing required 'type' field")
            continue
        if binding.type not in VALUE_TYPES:
            errors.append(f"Filter '{label}' has unknown type: {binding.type}")
            continue

        if binding.operator in ("like", "ilike") and binding.type != "text":
            errors.append(f"Filter '{label}': {binding.operator} requires type 'text', got '{binding.type}'")
        elif binding.operator in _ORDERED_OPERATORS and binding.type not in ("number", "date"):
            errors.append(
                f"Filter '{label}': {binding.operator} requires type 'number' or 'date', got '{binding.type}'"
            )
        elif binding.type == "boolean" and binding.operator not in ("eq", "neq"):
            errors.append(f"Filter '{label}': boolean filters only support eq/neq")

    return errors


# =============================================================================
# VALUE CASTING
# =============================================================================

class _Skip(Exception):
    """Value cannot be used for this binding."""


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    if isinstance(value, (list, tuple, dict)) and len(value) == 0:
        return True
    return False


def cast_value(value: Any, value_type: str) -> Any:
    """Convert a raw filter value to the Python type the driver should bind."""
    if value is None:
        return None

    if value_type == "number":
        if isinstance(value, bool):
            raise _Skip(f"boolean is not a number: {value!r}")
        if isinstance(value, (int, float)):
            return value
        text = str(value).strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            raise _Skip(f"not a number: {value!r}")

    if value_type == "boolean":
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("true", "1", "yes")

    return value if isinstance(value, str) else str(value)


def _range_ends(value: Any) -> Tuple[Any, Any]:
    if isinstance(value, Mapping):
        return value.get("from"), value.get("to")
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return value[0], value[1]
    raise _Skip("range value must be {from, to} or a two-item list")


# =============================================================================
# CONDITION BUILDING
# =============================================================================

def _column_ref(binding: FilterBinding) -> str:
    return f"{binding.table}.{binding.column}" if binding.table else binding.column


def _in_list(col: str, values: List[Any], negate: bool) -> Tuple[str, List[Any]]:
    markers = ", ".join("?" for _ in values)
    keyword = "NOT IN" if negate else "IN"
    return f"{col} {keyword} ({markers})", values


def build_condition(binding: FilterBinding, value: Any) -> Optional[Tuple[str, List[Any]]]:
    """
    Render one binding as (condition, params).

    Returns None when the value contributes nothing (empty, partial range,
    or not castable to the binding's type).
    """
    if _is_empty(value):
        return None

    col = _column_ref(binding)
    op = binding.operator

    try:
        if op in ("range", "between"):
            start, end = _range_ends(value)
            if _is_empty(start) or _is_empty(end):
                return None
            return f"{col} BETWEEN ? AND ?", [cast_value(start, binding.type), cast_value(end, binding.type)]

        if isinstance(value, Mapping):
            raise _Skip(f"{op} does not accept a range value")

        if op in ("in", "not_in") or (op in ("eq", "neq") and isinstance(value, (list, tuple))):
            items = value if isinstance(value, (list, tuple)) else [value]
            cast = [cast_value(v, binding.type) for v in items if not _is_empty(v)]
            if not cast:
                return None
            return _in_list(col, cast, negate=op in ("neq", "not_in"))

        if isinstance(value, (list, tuple)):
            raise _Skip(f"{op} does not accept a list value")

        if op in ("like", "ilike"):
            pattern = cast_value(value, "text")
            if "%" not in pattern:
                pattern = f"%{pattern}%"
            return f"{col} {op.upper()} ?", [pattern]

        return f"{col} {_COMPARISON_SQL[op]} ?", [cast_value(value, binding.type)]

    except _Skip as e:
        logger.warning(f"Skipping filter '{binding.id}' on {col}: {e}")
        return None


# =============================================================================
# INJECTION POINT
# =============================================================================

@dataclass
class InjectionPoint:
    """Where new conditions go in a statement."""
    position: int                     # insert conditions here
    has_existing_where: bool
    where_body_start: int = -1        # first char after the top-level WHERE
    has_top_level_or: bool = False


def find_where_injection_point(sql: str) -> InjectionPoint:
    """
    Locate the top-level WHERE (or the spot a new one belongs).

    Only depth-0 keywords outside string literals count, so WHEREs inside
    subqueries and CTE bodies are ignored.
    """
    masked = mask_literals(sql)
    depth = 0
    where_body = -1
    has_or = False

    for match in _STRUCTURE.finditer(masked):
        token = match.group(0)
        if token == "(":
            depth += 1
            continue
        if token == ")":
            depth -= 1
            continue
        if depth != 0:
            continue

        word = token.upper()
        if word == "WHERE" and where_body < 0:
            where_body = match.end()
        elif word == "OR":
            if where_body >= 0:
                has_or = True
        elif _TERMINATOR_WORD.match(token):
            return InjectionPoint(
                position=match.start(),
                has_existing_where=where_body >= 0,
                where_body_start=where_body,
                has_top_level_or=has_or,
            )

    return InjectionPoint(
        position=len(sql),
        has_existing_where=where_body >= 0,
        where_body_start=where_body,
        has_top_level_or=has_or,
    )


def inject_conditions(sql: str, conditions_text: str) -> Tuple[str, str]:
    """Insert AND-joined conditions at the top-level WHERE. Returns (sql, applied clause)."""
    base = _TRAILING_SEMICOLON.sub("", sql).strip()
    point = find_where_injection_point(base)
    head, tail = base[:point.position], base[point.position:]

    if not point.has_existing_where:
        return collapse_whitespace(f"{head} WHERE {conditions_text} {tail}"), f"WHERE {conditions_text}"

    if point.has_top_level_or:
        prefix = base[:point.where_body_start]
        existing = base[point.where_body_start:point.position].strip()
        head = f"{prefix} ({existing})"

    return collapse_whitespace(f"{head} AND {conditions_text} {tail}"), f"AND {conditions_text}"


# =============================================================================
# BUILDERS
# =============================================================================

def build_filtered_query(
    sql: str,
    bindings: Iterable[BindingLike],
    values: Optional[Mapping[str, Any]],
) -> ParameterizedQuery:
    """Apply every binding that has a usable value. See module docstring."""
    values = values or {}
    conditions: List[str] = []
    params: List[Any] = []

    for binding in _coerce(bindings):
        rendered = build_condition(binding, values.get(binding.id))
        if rendered is None:
            continue
        condition, bound = rendered
        conditions.append(condition)
        params.extend(bound)

    if not conditions:
        return ParameterizedQuery(sql=sql)

    filtered_sql, clause = inject_conditions(sql, " AND ".join(conditions))

    logger.debug(f"Applied {len(conditions)} filter condition(s) with {len(params)} parameter(s)")

    return ParameterizedQuery(sql=filtered_sql, params=params, where_clause=clause)


def create_date_range_filter_meta(column: str, table: Optional[str] = None) -> List[FilterBinding]:
    """date_from / date_to bindings on one date column."""
    return [
        FilterBinding(id="date_from", column=column, operator="gte", type="date", table=table),
        FilterBinding(id="date_to", column=column, operator="lte", type="date", table=table),
    ]


def create_equality_filter_meta(
    filter_id: str,
    column: str,
    value_type: str = "text",
    table: Optional[str] = None,
) -> FilterBinding:
    return FilterBinding(id=filter_id, column=column, operator="eq", type=value_type, table=table)
