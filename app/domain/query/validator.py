"""
Query Validator

Static allow/deny classifier applied to every SQL statement right before
it is executed. It is defense-in-depth, not a parser: anything ambiguous
is rejected.

RULES (first failure wins):
---------------------------
1. Text must be non-empty and at most `max_sql_length` characters
2. No comment markers (--, /*, */)
3. No statement separator followed by more text (a single trailing ; is fine)
4. First keyword must be SELECT or WITH
5. No deny-listed keyword anywhere, matched as a whole word, so DML
   hidden inside a CTE or subquery is caught too
6. No call to a table function that reads server files (read_csv, glob, ...)
7. No quoted file path in table position (FROM '/data/x.csv')

Optionally the statement is also parsed with SQLGlot and must be a
single read-only query expression (QUERYGATE_VALIDATOR_PARSE_CHECK).

Usage:
    verdict = validate_query("SELECT * FROM orders")
    if not verdict.valid:
        raise sql_unsafe(verdict.reason)
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

import sqlglot
from sqlglot import expressions as exp
from sqlglot.errors import ParseError

from app.core.config import settings

logger = logging.getLogger(__name__)


# =============================================================================
# VERDICT
# =============================================================================

@dataclass(frozen=True)
class Valid:
    """SQL passed every check."""
    valid: bool = True
    reason: Optional[str] = None


@dataclass(frozen=True)
class Invalid:
    """SQL was rejected; reason is safe to show to the caller."""
    reason: str
    valid: bool = False


ValidationVerdict = Union[Valid, Invalid]


# =============================================================================
# RULES
# =============================================================================

DENIED_KEYWORDS = (
    # DML / DDL / privileges
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER", "TRUNCATE",
    "GRANT", "REVOKE", "MERGE", "EXEC", "EXECUTE", "CALL", "COPY",
    # Delays
    "pg_sleep", "sleep", "benchmark", "waitfor",
    # File and large-object access
    "pg_read_file", "pg_read_binary_file", "pg_ls_dir", "load_file",
    "lo_import", "lo_export", "outfile", "dumpfile",
)

# Table functions that read files from the server (DuckDB). Matched only as
# calls, so the SQLite GLOB operator stays usable.
FILE_READER_FUNCTIONS = (
    "read_csv", "read_csv_auto", "sniff_csv",
    "read_parquet", "parquet_scan", "parquet_metadata", "parquet_schema",
    "read_json", "read_json_auto", "read_json_objects", "read_ndjson",
    "read_ndjson_auto", "read_ndjson_objects",
    "read_text", "read_blob", "glob", "load_extension",
)

_DENIED_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in DENIED_KEYWORDS) + r")\b",
    re.IGNORECASE,
)
_FILE_READER_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(f) for f in FILE_READER_FUNCTIONS) + r")\s*\(",
    re.IGNORECASE,
)
# DuckDB scans a quoted path used as a table: FROM '/data/x.csv'
_FILE_PATH_SOURCE = re.compile(
    r"(?:\b(?:FROM|JOIN)\s*\(?\s*(?:'|\"[^\"]*[./\\][^\"]*\"))"
    r"|(?:,\s*'[^']*\.(?:csv|tsv|parquet|json|jsonl|ndjson|txt|gz|zst)')",
    re.IGNORECASE,
)
_COMMENT_PATTERN = re.compile(r"--|/\*|\*/")
_STACKED_PATTERN = re.compile(r";\s*\S")
_FIRST_KEYWORD = re.compile(r"^\s*\(*\s*([A-Za-z]+)")

_READ_ONLY_ROOTS = (exp.Select, exp.Union, exp.Intersect, exp.Except)
_WRITE_NODES = (exp.Insert, exp.Update, exp.Delete, exp.Drop, exp.Create, exp.Alter, exp.Command)


def validate_query(
    sql: Optional[str],
    max_length: Optional[int] = None,
    parse_check: Optional[bool] = None,
) -> ValidationVerdict:
    """Classify SQL as Valid or Invalid(reason)."""
    max_length = max_length if max_length is not None else settings.max_sql_length
    parse_check = settings.validator_parse_check if parse_check is None else parse_check

    if not sql or not sql.strip():
        return Invalid("Query is empty")

    if len(sql) > max_length:
        return Invalid(f"Query exceeds maximum length of {max_length} characters")

    if _COMMENT_PATTERN.search(sql):
        return Invalid("SQL comments are not allowed")

    if _STACKED_PATTERN.search(sql):
        return Invalid("Multiple statements are not allowed")

    first = _FIRST_KEYWORD.match(sql)
    if not first or first.group(1).upper() not in ("SELECT", "WITH"):
        return Invalid("Only SELECT queries are allowed")

    denied = _DENIED_PATTERN.search(sql)
    if denied:
        return Invalid(f"Query contains forbidden keyword: {denied.group(1).upper()}")

    reader = _FILE_READER_PATTERN.search(sql)
    if reader:
        return Invalid(f"Query contains forbidden function: {reader.group(1).upper()}")

    if _FILE_PATH_SOURCE.search(sql):
        return Invalid("Reading files by path is not allowed")

    if parse_check:
        return _parse_verdict(sql)

    return Valid()


def _parse_verdict(sql: str) -> ValidationVerdict:
    """Second opinion from the SQLGlot parser."""
    try:
        statements = [s for s in sqlglot.parse(sql.rstrip().rstrip(";")) if s is not None]
    except ParseError as e:
        logger.debug(f"SQLGlot rejected query: {e}")
        return Invalid("Query could not be parsed")

    if len(statements) != 1:
        return Invalid("Multiple statements are not allowed")

    root = statements[0]
    if not isinstance(root, _READ_ONLY_ROOTS):
        return Invalid("Only SELECT queries are allowed")

    if root.find(*_WRITE_NODES) is not None:
        return Invalid("Query contains a data-modifying statement")

    return Valid()


def is_safe_query(sql: Optional[str]) -> bool:
    """Shorthand for validate_query(sql).valid."""
    return validate_query(sql).valid
