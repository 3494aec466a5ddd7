"""
Column Error Classifier

Decides whether a backend error message means "the query referenced a
column that does not exist". Only that class of failure is eligible for
the unfiltered retry of auto-inferred queries.

Each engine has its own rule table. Unknown engines are matched against
the union of all tables.
"""

import re
from typing import Dict, List, Optional, Pattern

# =============================================================================
# RULE TABLES
# =============================================================================

ENGINE_RULES: Dict[str, List[Pattern]] = {
    "postgres": [
        re.compile(r"column \"?[\w.]+\"? does not exist", re.IGNORECASE),
    ],
    "mysql": [
        re.compile(r"unknown column", re.IGNORECASE),
        re.compile(r"\b1054\b"),
    ],
    "sqlite": [
        re.compile(r"no such column", re.IGNORECASE),
    ],
    "duckdb": [
        re.compile(r"referenced column \"?[\w.]+\"? not found", re.IGNORECASE),
        re.compile(r"column \"?[\w.]+\"? not found", re.IGNORECASE),
        re.compile(r"column with name [\w.]+ does not exist", re.IGNORECASE),
    ],
    "memory": [
        re.compile(r"unknown column", re.IGNORECASE),
    ],
}

ENGINE_ALIASES = {
    "postgresql": "postgres",
    "redshift": "postgres",
    "mariadb": "mysql",
    "sqlite3": "sqlite",
    "file": "memory",
}

_UNION_RULES: List[Pattern] = [rule for rules in ENGINE_RULES.values() for rule in rules]


def rules_for(engine: Optional[str]) -> List[Pattern]:
    if not engine:
        return _UNION_RULES
    name = engine.lower()
    name = ENGINE_ALIASES.get(name, name)
    return ENGINE_RULES.get(name, _UNION_RULES)


def is_unknown_column_error(message: Optional[str], engine: Optional[str] = None) -> bool:
    """
    True when the message reports a missing column.

    Example:
        >>> is_unknown_column_error('no such column: order_date', "sqlite")
        True
        >>> is_unknown_column_error('relation "x" does not exist', "postgres")
        False
    """
    if not message:
        return False
    return any(rule.search(message) for rule in rules_for(engine))
