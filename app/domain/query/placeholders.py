"""
Legacy Placeholder Ladder

Older templates carry their filters as {{name}} tokens spliced directly
into the SQL text. This module turns such a template into executable SQL
through three stages, each more aggressive than the last:

1. inject_filter_params()
   Replace tokens whose key has a value. Values are quote-escaped and,
   outside a string literal, rendered as a literal of their own.

2. remove_unresolved_conditions()
   Drop whole WHERE conditions that still reference a token, together
   with their AND/OR connector. A dropped first condition becomes 1=1.

3. strip_all_unresolved_placeholders()
   Catch-all for whatever stage 2 cannot see: LIMIT/OFFSET tokens,
   guarded CASE expressions, casts and date parsing around a token.
   Every token that is left becomes the NULL keyword. The output never
   contains {{ and running it twice changes nothing.

Each stage is a plain str -> str function and can be used on its own.

Usage:
    sql = apply_legacy_ladder(template, {"region": "West"}).sql
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from app.core.config import settings
from app.domain.query.sqltext import (
    collapse_whitespace,
    literal_spans,
    mask_literals,
    protect_literals,
    restore_literals,
)

logger = logging.getLogger(__name__)


PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

_WHITESPACE = re.compile(r"\s+")
_NUMERIC_TEXT = re.compile(r"^-?\d+(?:\.\d+)?$")
_MAX_STRIP_PASSES = 20


# =============================================================================
# HELPERS
# =============================================================================

def extract_placeholders(sql: str) -> List[str]:
    """Unique placeholder names in order of first appearance."""
    seen: Dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(sql or ""):
        seen.setdefault(match.group(1), None)
    return list(seen)


def has_unresolved_placeholders(sql: str) -> bool:
    """True if any {{name}} token remains."""
    return bool(PLACEHOLDER_PATTERN.search(sql or ""))


# =============================================================================
# STAGE 1: INJECT
# =============================================================================

def _escape(text: str) -> str:
    # injected text must never form a new token
    return text.replace("'", "''").replace("{{", "{ {").replace("}}", "} }")


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _as_literal(value: Any) -> str:
    """Render one value for a position outside any string literal."""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    text = _as_text(value)
    if _NUMERIC_TEXT.match(text):
        return text
    return f"'{_escape(text)}'"


def _render(value: Any, in_literal: bool) -> str:
    if isinstance(value, (list, tuple)):
        if in_literal:
            return "', '".join(_escape(_as_text(v)) for v in value)
        return ", ".join(_as_literal(v) for v in value) if value else "NULL"
    if in_literal:
        return _escape(_as_text(value))
    return _as_literal(value)


def _flatten_values(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Expand {from, to} range values into key_from / key_to entries."""
    flat: Dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, Mapping):
            for end in ("from", "to"):
                if value.get(end) not in (None, ""):
                    flat.setdefault(f"{key}_{end}", value[end])
            continue
        flat[key] = value
    return flat


def inject_filter_params(sql: str, values: Optional[Mapping[str, Any]]) -> str:
    """
    Replace every {{key}} that has a value.

    Keys without a value (missing, None or an empty list) are left in place
    for the later stages. Inside a quoted literal the escaped text is
    inserted as-is; outside one the value becomes a literal of its own.
    A key matches its token by exact text, so names such as "date range"
    or "1st" work too.
    """
    if not sql or not values:
        return sql

    flat = {}
    for key, value in _flatten_values(values).items():
        if value is None or (isinstance(value, (list, tuple)) and not value):
            continue
        flat[key] = value

    if not flat:
        return sql

    spans = list(literal_spans(sql))

    def inside_literal(pos: int) -> bool:
        return any(start < pos < end for start, end in spans)

    def replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in flat:
            return match.group(0)
        return _render(flat[key], inside_literal(match.start()))

    return PLACEHOLDER_PATTERN.sub(replace, sql)


# =============================================================================
# STAGE 2: REMOVE UNRESOLVED CONDITIONS
# =============================================================================

_COL = r"[\w.]+"
_OP = r"(?:\s*(?:<=|>=|<>|!=|=|<|>)\s*|\s+(?:NOT\s+)?(?:IN|I?LIKE)\s*)"
_TOKEN = r"\{\{[^}]+\}\}"
_QUOTED_TOKEN = rf"'[^']*{_TOKEN}[^']*'"
_VALUE = rf"(?:{_QUOTED_TOKEN}|\([^)]*{_TOKEN}[^)]*\)|{_TOKEN})"
_BETWEEN = rf"{_COL}\s+(?:NOT\s+)?BETWEEN\s+{_QUOTED_TOKEN}\s+AND\s+{_QUOTED_TOKEN}"
_CLAUSE_END = r"(?=AND\b|OR\b|GROUP\b|ORDER\b|LIMIT\b|OFFSET\b|HAVING\b|\)|$)"

_AND_BETWEEN = re.compile(rf"\s+AND\s+{_BETWEEN}", re.IGNORECASE)
_CONNECTED_CONDITION = re.compile(rf"\s+(?:AND|OR)\s+{_COL}{_OP}{_VALUE}", re.IGNORECASE)
_WHERE_BETWEEN = re.compile(rf"\bWHERE\s+{_BETWEEN}\s*{_CLAUSE_END}", re.IGNORECASE)
_WHERE_CONDITION = re.compile(rf"\bWHERE\s+{_COL}{_OP}{_VALUE}\s*{_CLAUSE_END}", re.IGNORECASE)
_DOUBLE_TAUTOLOGY = re.compile(r"\bWHERE\s+1\s*=\s*1\s+AND\s+1\s*=\s*1\b", re.IGNORECASE)


def remove_unresolved_conditions(sql: str) -> str:
    """
    Drop self-contained conditions that still hold a placeholder.

    Examples:
        "... WHERE date > 'X' AND region = '{{region}}'" -> "... WHERE date > 'X'"
        "... WHERE region = '{{region}}' AND date > 'X'" -> "... WHERE 1=1 AND date > 'X'"
    """
    if not has_unresolved_placeholders(sql):
        return sql

    result = _AND_BETWEEN.sub("", sql)
    result = _CONNECTED_CONDITION.sub("", result)
    result = _WHERE_BETWEEN.sub("WHERE 1=1 ", result)
    result = _WHERE_CONDITION.sub("WHERE 1=1 ", result)

    while True:
        cleaned = _DOUBLE_TAUTOLOGY.sub("WHERE 1=1", result)
        if cleaned == result:
            break
        result = cleaned

    return collapse_whitespace(result)


# =============================================================================
# STAGE 3: STRIP EVERYTHING ELSE
# =============================================================================

_LIMIT_TOKEN = re.compile(rf"\bLIMIT\s+'?{_TOKEN}'?", re.IGNORECASE)
_OFFSET_TOKEN = re.compile(rf"\bOFFSET\s+'?{_TOKEN}'?", re.IGNORECASE)
_DATE_FUNCTION = re.compile(
    rf"\b(?:to_date|to_timestamp|str_to_date|parse_date|parse_timestamp|date_parse|strptime|date|datetime|timestamp)"
    rf"\s*\(\s*(?:{_QUOTED_TOKEN}|{_TOKEN})(?:\s*,\s*'[^']*')?\s*\)",
    re.IGNORECASE,
)
_COALESCE_NULLIF = re.compile(
    rf"\bCOALESCE\s*\(\s*NULLIF\s*\(\s*(?:{_QUOTED_TOKEN}|{_TOKEN})\s*,\s*'[^']*'\s*\)\s*,\s*([^(),]+?)\s*\)",
    re.IGNORECASE,
)
_CAST_TAIL = re.compile(r"\s*::\s*\w+(?:\s*\([\d\s,]*\))?")
_BARE_CAST = re.compile(rf"{_TOKEN}{_CAST_TAIL.pattern}")
_CAST_CALL = re.compile(
    rf"\bCAST\s*\(\s*(?:{_QUOTED_TOKEN}|{_TOKEN})\s+AS\s+\w+(?:\s+\w+)*(?:\s*\([\d\s,]*\))?\s*\)",
    re.IGNORECASE,
)
_BARE = re.compile(_TOKEN)

_CASE_TOKENS = re.compile(r"\b(?:CASE|WHEN|THEN|ELSE|END)\b|[()]", re.IGNORECASE)
_TRUE_IN_PARENS = re.compile(r"(\b\w+\s*)?\(\s*TRUE\s*\)", re.IGNORECASE)
_BOOLEAN_CONTEXT = {"AND", "OR", "NOT", "WHERE", "HAVING", "ON", "WHEN", "THEN", "ELSE"}
_FOLLOWS_CONDITION = r"(?=\s+(?:AND|OR|GROUP|ORDER|LIMIT|OFFSET|HAVING|WINDOW|UNION)\b|\s*\)|\s*;?\s*$)"

_CLEANUP_RULES: List[Tuple["re.Pattern[str]", str]] = [
    (re.compile(r"\bWHERE\s+TRUE\s+AND\s+", re.IGNORECASE), "WHERE "),
    (re.compile(r"\(\s*TRUE\s+AND\s+", re.IGNORECASE), "("),
    (re.compile(rf"\s+AND\s+TRUE\b{_FOLLOWS_CONDITION}", re.IGNORECASE), ""),
    (re.compile(
        r"\bWHERE\s+(?:TRUE|1\s*=\s*1)\s*(?=(?:GROUP|ORDER|LIMIT|OFFSET|HAVING|WINDOW|UNION)\b|\)|;|$)",
        re.IGNORECASE,
    ), ""),
    (re.compile(r"\bWHERE\s*(?=(?:GROUP|ORDER|LIMIT|OFFSET|HAVING|WINDOW|UNION)\b|\)|;|$)", re.IGNORECASE), ""),
]


@dataclass
class _CaseParts:
    start: int
    end: int
    guard: str
    then_branch: str
    else_branch: str


def _find_case(sql: str, masked: str, tokens: List["re.Match[str]"], index: int) -> Optional[_CaseParts]:
    """Split the CASE starting at tokens[index] into guard and branches."""
    case = tokens[index]
    if index + 1 >= len(tokens):
        return None
    first = tokens[index + 1]
    if first.group(0).upper() != "WHEN" or masked[case.end():first.start()].strip():
        # simple CASE <operand> WHEN ... form
        return None

    depth = 0
    parens = 0
    top: Dict[str, List["re.Match[str]"]] = {"WHEN": [], "THEN": [], "ELSE": []}
    for token in tokens[index + 1:]:
        word = token.group(0).upper()
        if word == "(":
            parens += 1
        elif word == ")":
            parens -= 1
            if parens < 0:
                return None
        elif word == "CASE":
            depth += 1
        elif word == "END":
            if depth == 0 and parens == 0:
                if len(top["WHEN"]) != 1 or len(top["THEN"]) != 1 or len(top["ELSE"]) != 1:
                    return None
                when, then, otherwise = top["WHEN"][0], top["THEN"][0], top["ELSE"][0]
                return _CaseParts(
                    start=case.start(),
                    end=token.end(),
                    guard=sql[when.end():then.start()],
                    then_branch=sql[then.end():otherwise.start()],
                    else_branch=sql[otherwise.end():token.start()],
                )
            depth -= 1
        elif depth == 0 and parens == 0:
            top[word].append(token)
    return None


def collapse_guarded_case(sql: str) -> str:
    """
    CASE WHEN <guard with placeholder> THEN x ELSE y END -> TRUE.

    Applies when either branch is TRUE. Both authored shapes reduce to
    "no filter" once the placeholder has no value:
        CASE WHEN '{{d}}' ~ '...' THEN date >= '{{d}}'::date ELSE TRUE END
        CASE WHEN '{{r}}' = '' THEN TRUE ELSE region = '{{r}}' END
    """
    while True:
        masked = mask_literals(sql)
        tokens = list(_CASE_TOKENS.finditer(masked))
        replaced = False
        for i, token in enumerate(tokens):
            if token.group(0).upper() != "CASE":
                continue
            parts = _find_case(sql, masked, tokens, i)
            if parts is None or not has_unresolved_placeholders(parts.guard):
                continue
            branches = {parts.then_branch.strip().upper(), parts.else_branch.strip().upper()}
            if "TRUE" in branches:
                sql = sql[:parts.start] + "TRUE" + sql[parts.end:]
                replaced = True
                break
        if not replaced:
            return sql


def _unwrap_true(match: "re.Match[str]") -> str:
    prefix = match.group(1)
    if prefix and prefix.strip().upper() not in _BOOLEAN_CONTEXT:
        return match.group(0)
    return f"{prefix or ''}TRUE"


def _null_token_literals(sql: str) -> str:
    """Literals holding a placeholder, plus any ::type cast after them, become NULL."""
    out: List[str] = []
    pos = 0
    for start, end in literal_spans(sql):
        if start < pos or not has_unresolved_placeholders(sql[start:end]):
            continue
        out.append(sql[pos:start])
        out.append("NULL")
        tail = _CAST_TAIL.match(sql, end)
        pos = tail.end() if tail else end
    out.append(sql[pos:])
    return "".join(out)


def _cleanup_vestiges(sql: str) -> str:
    text, literals = protect_literals(sql)
    while True:
        before = text
        text = _TRUE_IN_PARENS.sub(_unwrap_true, text)
        for pattern, replacement in _CLEANUP_RULES:
            text = pattern.sub(replacement, text)
        text = _WHITESPACE.sub(" ", text).strip()
        if text == before:
            return restore_literals(text, literals)


def strip_all_unresolved_placeholders(
    sql: str,
    default_limit: Optional[int] = None,
    default_offset: Optional[int] = None,
) -> str:
    """
    Remove every remaining placeholder.

    Postcondition: the result contains no {{...}} token, and calling this
    again on the result returns it unchanged.
    """
    limit = settings.default_limit if default_limit is None else default_limit
    offset = settings.default_offset if default_offset is None else default_offset

    result = sql
    passes = 0
    while has_unresolved_placeholders(result) and passes < _MAX_STRIP_PASSES:
        before = result

        result = _LIMIT_TOKEN.sub(f"LIMIT {limit}", result)
        result = _OFFSET_TOKEN.sub(f"OFFSET {offset}", result)
        result = collapse_guarded_case(result)
        result = _DATE_FUNCTION.sub("NULL", result)
        result = _COALESCE_NULLIF.sub(r"\1", result)
        result = _CAST_CALL.sub("NULL", result)
        result = _BARE_CAST.sub("NULL", result)
        result = _null_token_literals(result)

        passes += 1
        if result == before:
            break

    result = _BARE.sub("NULL", result)
    return _cleanup_vestiges(result)


# =============================================================================
# FULL LADDER
# =============================================================================

@dataclass
class LadderOutcome:
    """SQL produced by the ladder and how far it had to go."""
    sql: str
    stripped: bool = False
    residue: List[str] = field(default_factory=list)


def apply_legacy_ladder(sql: str, values: Optional[Mapping[str, Any]]) -> LadderOutcome:
    """Run inject, remove and (only if still needed) strip in order."""
    result = inject_filter_params(sql, values)
    result = remove_unresolved_conditions(result)

    if not has_unresolved_placeholders(result):
        return LadderOutcome(sql=result)

    unresolved = extract_placeholders(result)
    logger.warning(
        f"Unresolved placeholders after condition removal: {', '.join(unresolved)}. "
        f"Using fallback stripping."
    )
    result = strip_all_unresolved_placeholders(result)

    return LadderOutcome(sql=result, stripped=True, residue=extract_placeholders(result))
