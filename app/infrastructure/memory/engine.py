"""
In-Memory Query Engine

Executes a small SELECT dialect directly over TableStore rows. Used when a
batch targets uploaded data instead of a database.

SUPPORTED GRAMMAR:
    SELECT [DISTINCT] <items> FROM <table> [[AS] alias]
        [WHERE <cond> [AND <cond>]...]
        [ORDER BY <col|alias|position> [ASC|DESC] [, ...]]
        [LIMIT <n>] [OFFSET <m>] [;]

    items: *, t.*, columns, literals, COUNT(*), COUNT([DISTINCT] col),
           SUM/AVG/MIN/MAX(col), each with an optional [AS] alias
    cond:  <operand> (= | != | <> | < | > | <= | >=) <operand>
           <operand> [NOT] LIKE | ILIKE <operand>
           <operand> [NOT] IN (<operand>, ...)
           <operand> [NOT] BETWEEN <operand> AND <operand>
           <operand> IS [NOT] NULL
           <operand>

LIMITS:
OR, parenthesized conditions, GROUP BY, HAVING, JOIN, UNION, subqueries,
function calls and arithmetic raise UnsupportedQueryError rather than
being evaluated incorrectly. Aggregates cannot be mixed with plain columns.

SEMANTICS:
- Table and column names are matched case-insensitively
- Any comparison with NULL is false
- LIKE and ILIKE are both case-insensitive (% and _ wildcards)
- Numbers compare numerically against numeric strings
- ORDER BY puts NULLs last ascending and first descending
"""

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from app.infrastructure.memory.store import Table, TableStore, get_table_store

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class MemoryEngineError(Exception):
    """Base exception for in-memory query failures."""
    pass


class TableNotFoundError(MemoryEngineError):
    def __init__(self, table: str, available: Optional[Sequence[str]] = None):
        self.table = table
        self.available = list(available or [])
        listing = ", ".join(self.available) if self.available else "none"
        super().__init__(f"Table '{table}' not found. Available tables: {listing}")


class SQLParseError(MemoryEngineError):
    pass


class UnsupportedQueryError(MemoryEngineError):
    pass


class ColumnNotFoundError(MemoryEngineError):
    def __init__(self, column: str, table: str, available: Optional[Sequence[str]] = None):
        self.column = column
        self.table = table
        message = f"Unknown column '{column}' in table '{table}'"
        if available:
            message += f". Available columns: {', '.join(available)}"
        super().__init__(message)


# =============================================================================
# TOKENIZER
# =============================================================================

_TOKEN = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<string>'(?:[^']|'')*')
    |(?P<number>(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)
    |(?P<ident>[A-Za-z_][A-Za-z0-9_$]*)
    |(?P<qident>"(?:[^"]|"")+"|`[^`]+`)
    |(?P<op><=|>=|<>|!=|==|=|<|>)
    |(?P<punct>[(),.*;+\-/%])
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any
    text: str
    pos: int


def tokenize(sql: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(sql):
        match = _TOKEN.match(sql, pos)
        if match is None:
            if sql[pos] == "'":
                raise SQLParseError(f"Unterminated string literal at position {pos}")
            raise SQLParseError(f"Unexpected character {sql[pos]!r} at position {pos}")
        kind = match.lastgroup
        text = match.group()
        if kind == "string":
            tokens.append(Token("string", text[1:-1].replace("''", "'"), text, pos))
        elif kind == "number":
            is_float = any(c in text for c in ".eE")
            tokens.append(Token("number", float(text) if is_float else int(text), text, pos))
        elif kind == "qident":
            inner = text[1:-1].replace('""', '"') if text[0] == '"' else text[1:-1]
            tokens.append(Token("qident", inner, text, pos))
        elif kind != "ws":
            tokens.append(Token(kind, text, text, pos))
        pos = match.end()
    tokens.append(Token("end", None, "", len(sql)))
    return tokens


# =============================================================================
# SYNTAX TREE
# =============================================================================

@dataclass(frozen=True)
class ColumnRef:
    name: str
    qualifier: Optional[str] = None

    @property
    def display(self) -> str:
        return f"{self.qualifier}.{self.name}" if self.qualifier else self.name


@dataclass(frozen=True)
class Literal:
    value: Any
    text: str


@dataclass(frozen=True)
class Aggregate:
    function: str
    argument: Optional[ColumnRef]   # None for COUNT(*)
    distinct: bool = False

    @property
    def label(self) -> str:
        inner = "*" if self.argument is None else self.argument.display
        if self.distinct:
            inner = f"DISTINCT {inner}"
        return f"{self.function}({inner})"


@dataclass(frozen=True)
class Star:
    qualifier: Optional[str] = None


Operand = Union[ColumnRef, Literal]


@dataclass(frozen=True)
class SelectItem:
    expression: Union[ColumnRef, Literal, Aggregate, Star]
    alias: Optional[str] = None


@dataclass(frozen=True)
class Comparison:
    left: Operand
    operator: str
    right: Operand


@dataclass(frozen=True)
class LikeCondition:
    operand: Operand
    pattern: Operand
    negated: bool = False


@dataclass(frozen=True)
class InCondition:
    operand: Operand
    values: Tuple[Operand, ...]
    negated: bool = False


@dataclass(frozen=True)
class BetweenCondition:
    operand: Operand
    low: Operand
    high: Operand
    negated: bool = False


@dataclass(frozen=True)
class NullCondition:
    operand: Operand
    negated: bool = False


@dataclass(frozen=True)
class TruthCondition:
    operand: Operand


Condition = Union[Comparison, LikeCondition, InCondition, BetweenCondition, NullCondition, TruthCondition]


@dataclass(frozen=True)
class OrderItem:
    target: Union[ColumnRef, int]
    descending: bool = False


@dataclass(frozen=True)
class SelectStatement:
    """Parsed form of a supported SELECT."""
    items: Tuple[SelectItem, ...]
    table: str
    alias: Optional[str] = None
    distinct: bool = False
    where: Tuple[Condition, ...] = ()
    order_by: Tuple[OrderItem, ...] = ()
    limit: Optional[int] = None
    offset: int = 0

    @property
    def is_aggregate(self) -> bool:
        return any(isinstance(item.expression, Aggregate) for item in self.items)


# =============================================================================
# PARSER
# =============================================================================

AGGREGATE_FUNCTIONS = {"COUNT", "SUM", "AVG", "MIN", "MAX"}

RESERVED = {
    "SELECT", "DISTINCT", "ALL", "FROM", "WHERE", "AND", "OR", "NOT", "AS",
    "GROUP", "ORDER", "BY", "HAVING", "LIMIT", "OFFSET", "UNION", "INTERSECT",
    "EXCEPT", "WINDOW", "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "CROSS",
    "OUTER", "NATURAL", "ON", "USING", "ASC", "DESC", "IN", "LIKE", "ILIKE",
    "BETWEEN", "IS", "NULL", "TRUE", "FALSE",
}

JOIN_WORDS = ("JOIN", "INNER", "LEFT", "RIGHT", "FULL", "CROSS", "NATURAL")
SET_OPERATIONS = ("UNION", "INTERSECT", "EXCEPT")


class _Parser:
    def __init__(self, sql: str):
        self.tokens = tokenize(sql)
        self.index = 0

    # -- token helpers --------------------------------------------------------

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.index + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.peek()
        self.index += 1
        return token

    def at_keyword(self, *words: str, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token.kind == "ident" and token.value.upper() in words

    def accept_keyword(self, word: str) -> bool:
        if self.at_keyword(word):
            self.advance()
            return True
        return False

    def expect_keyword(self, word: str) -> None:
        if not self.accept_keyword(word):
            raise self.error(f"Expected {word}")

    def at_punct(self, char: str, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token.kind == "punct" and token.value == char

    def accept_punct(self, char: str) -> bool:
        if self.at_punct(char):
            self.advance()
            return True
        return False

    def expect_punct(self, char: str) -> None:
        if not self.accept_punct(char):
            raise self.error(f"Expected '{char}'")

    def error(self, message: str) -> SQLParseError:
        token = self.peek()
        found = "end of query" if token.kind == "end" else f"'{token.text}'"
        return SQLParseError(f"{message}, found {found} at position {token.pos}")

    def at_alias(self) -> bool:
        token = self.peek()
        if token.kind == "qident":
            return True
        return token.kind == "ident" and token.value.upper() not in RESERVED

    def identifier(self, what: str) -> str:
        token = self.peek()
        if token.kind == "qident" or (token.kind == "ident" and token.value.upper() not in RESERVED):
            self.advance()
            return token.value
        raise self.error(f"Expected {what}")

    # -- statement ------------------------------------------------------------

    def parse(self) -> SelectStatement:
        if self.at_keyword("WITH"):
            raise UnsupportedQueryError(
                "WITH clauses are not supported by the in-memory engine; inline the query"
            )
        if not self.accept_keyword("SELECT"):
            raise self.error("Only SELECT statements are supported")

        distinct = self.accept_keyword("DISTINCT")
        if not distinct:
            self.accept_keyword("ALL")

        items = [self.parse_select_item()]
        while self.accept_punct(","):
            items.append(self.parse_select_item())

        if not self.accept_keyword("FROM"):
            if self.peek().kind == "end":
                raise UnsupportedQueryError("SELECT without FROM is not supported by the in-memory engine")
            raise self.error("Expected FROM")

        table, alias = self.parse_table()

        where: List[Condition] = []
        if self.accept_keyword("WHERE"):
            where = self.parse_conditions()

        if self.at_keyword("GROUP"):
            raise UnsupportedQueryError(
                "GROUP BY is not supported by the in-memory engine; "
                "use aggregates without GROUP BY or run the query against a database"
            )
        if self.at_keyword("HAVING"):
            raise UnsupportedQueryError("HAVING is not supported by the in-memory engine")

        order_by: List[OrderItem] = []
        if self.accept_keyword("ORDER"):
            self.expect_keyword("BY")
            order_by.append(self.parse_order_item())
            while self.accept_punct(","):
                order_by.append(self.parse_order_item())

        limit: Optional[int] = None
        offset = 0
        if self.accept_keyword("LIMIT"):
            limit = self.parse_count("LIMIT")
        if self.accept_keyword("OFFSET"):
            offset = self.parse_count("OFFSET")

        if self.at_keyword(*SET_OPERATIONS):
            raise UnsupportedQueryError(
                f"{self.peek().value.upper()} is not supported by the in-memory engine"
            )

        self.accept_punct(";")
        if self.peek().kind != "end":
            raise self.error("Unexpected input")

        statement = SelectStatement(
            items=tuple(items),
            table=table,
            alias=alias,
            distinct=distinct,
            where=tuple(where),
            order_by=tuple(order_by),
            limit=limit,
            offset=offset,
        )
        if statement.is_aggregate and any(
            isinstance(item.expression, (ColumnRef, Star)) for item in statement.items
        ):
            raise UnsupportedQueryError(
                "Mixing aggregates with plain columns requires GROUP BY, "
                "which the in-memory engine does not support"
            )
        return statement

    def parse_select_item(self) -> SelectItem:
        if self.accept_punct("*"):
            return SelectItem(Star())
        if self.peek().kind in ("ident", "qident") and self.at_punct(".", 1) and self.at_punct("*", 2):
            qualifier = self.advance().value
            self.advance()
            self.advance()
            return SelectItem(Star(qualifier))

        expression = self.parse_operand(allow_aggregate=True)
        alias = None
        if self.accept_keyword("AS"):
            alias = self.identifier("alias after AS")
        elif self.at_alias():
            alias = self.advance().value
        return SelectItem(expression, alias)

    def parse_table(self) -> Tuple[str, Optional[str]]:
        if self.at_punct("("):
            raise UnsupportedQueryError("Subqueries are not supported by the in-memory engine")
        name = self.identifier("table name")
        while self.accept_punct("."):
            name = self.identifier("table name")

        alias = None
        if self.accept_keyword("AS"):
            alias = self.identifier("table alias")
        elif self.at_alias():
            alias = self.advance().value

        if self.at_punct(",") or self.at_keyword(*JOIN_WORDS):
            raise UnsupportedQueryError(
                "JOINs are not supported by the in-memory engine; query one table at a time"
            )
        return name, alias

    def parse_conditions(self) -> List[Condition]:
        conditions = [self.parse_condition()]
        while True:
            if self.accept_keyword("AND"):
                conditions.append(self.parse_condition())
            elif self.at_keyword("OR"):
                raise UnsupportedQueryError(
                    "OR is not supported by the in-memory engine; use IN (...) or separate queries"
                )
            else:
                return conditions

    def parse_condition(self) -> Condition:
        if self.at_punct("("):
            raise UnsupportedQueryError(
                "Parenthesized conditions are not supported by the in-memory engine"
            )
        if self.at_keyword("NOT"):
            raise UnsupportedQueryError(
                "NOT before a condition is not supported by the in-memory engine; "
                "use != or NOT IN / NOT LIKE"
            )

        left = self.parse_operand()
        token = self.peek()

        if token.kind == "op":
            self.advance()
            operator = {"==": "=", "!=": "<>"}.get(token.value, token.value)
            return Comparison(left, operator, self.parse_operand())

        if self.accept_keyword("IS"):
            negated = self.accept_keyword("NOT")
            self.expect_keyword("NULL")
            return NullCondition(left, negated)

        negated = False
        if self.at_keyword("NOT") and self.at_keyword("LIKE", "ILIKE", "IN", "BETWEEN", offset=1):
            self.advance()
            negated = True

        if self.accept_keyword("LIKE") or self.accept_keyword("ILIKE"):
            return LikeCondition(left, self.parse_operand(), negated)

        if self.accept_keyword("IN"):
            self.expect_punct("(")
            if self.at_keyword("SELECT"):
                raise UnsupportedQueryError("Subqueries are not supported by the in-memory engine")
            values = [self.parse_operand()]
            while self.accept_punct(","):
                values.append(self.parse_operand())
            self.expect_punct(")")
            return InCondition(left, tuple(values), negated)

        if self.accept_keyword("BETWEEN"):
            low = self.parse_operand()
            self.expect_keyword("AND")
            high = self.parse_operand()
            return BetweenCondition(left, low, high, negated)

        if token.kind == "punct" and token.value in "+-*/%":
            raise UnsupportedQueryError("Arithmetic is not supported by the in-memory engine")

        return TruthCondition(left)

    def parse_order_item(self) -> OrderItem:
        token = self.peek()
        if token.kind == "number" and isinstance(token.value, int):
            self.advance()
            target: Union[ColumnRef, int] = token.value
        else:
            operand = self.parse_operand()
            if not isinstance(operand, ColumnRef):
                raise SQLParseError(f"ORDER BY expects a column, found '{token.text}'")
            target = operand

        descending = False
        if self.accept_keyword("DESC"):
            descending = True
        else:
            self.accept_keyword("ASC")
        return OrderItem(target, descending)

    def parse_count(self, clause: str) -> int:
        token = self.peek()
        if token.kind != "number" or not isinstance(token.value, int):
            raise self.error(f"{clause} expects a non-negative integer")
        self.advance()
        return token.value

    # -- operands -------------------------------------------------------------

    def parse_operand(self, allow_aggregate: bool = False):
        token = self.peek()

        if token.kind == "string":
            self.advance()
            return Literal(token.value, token.text)

        if token.kind == "number":
            self.advance()
            return Literal(token.value, token.text)

        if token.kind == "punct" and token.value == "-" and self.peek(1).kind == "number":
            self.advance()
            number = self.advance()
            return Literal(-number.value, f"-{number.text}")

        if token.kind == "punct" and token.value == "(":
            if self.at_keyword("SELECT", offset=1):
                raise UnsupportedQueryError("Subqueries are not supported by the in-memory engine")
            raise UnsupportedQueryError("Parenthesized expressions are not supported by the in-memory engine")

        if token.kind == "ident":
            upper = token.value.upper()
            if upper in ("TRUE", "FALSE"):
                self.advance()
                return Literal(upper == "TRUE", upper)
            if upper == "NULL":
                self.advance()
                return Literal(None, "NULL")
            if upper in ("DATE", "TIMESTAMP") and self.peek(1).kind == "string":
                self.advance()
                literal = self.advance()
                return Literal(literal.value, literal.text)
            if self.at_punct("(", 1):
                if upper in AGGREGATE_FUNCTIONS:
                    if not allow_aggregate:
                        raise UnsupportedQueryError(
                            f"{upper}() is only supported in the SELECT list"
                        )
                    return self.parse_aggregate()
                raise UnsupportedQueryError(
                    f"Function {token.value}() is not supported by the in-memory engine"
                )
            if upper in RESERVED:
                raise self.error("Expected a column or value")

        if token.kind in ("ident", "qident"):
            self.advance()
            if self.at_punct(".") and self.peek(1).kind in ("ident", "qident"):
                self.advance()
                column = self.advance()
                return ColumnRef(column.value, qualifier=token.value)
            return ColumnRef(token.value)

        raise self.error("Expected a column or value")

    def parse_aggregate(self) -> Aggregate:
        function = self.advance().value.upper()
        self.expect_punct("(")
        if self.accept_punct("*"):
            if function != "COUNT":
                raise SQLParseError(f"{function}(*) is not valid; only COUNT(*) accepts *")
            self.expect_punct(")")
            return Aggregate(function, None)

        distinct = self.accept_keyword("DISTINCT")
        argument = self.parse_operand()
        if not isinstance(argument, ColumnRef):
            raise UnsupportedQueryError(f"{function}() over an expression is not supported by the in-memory engine")
        self.expect_punct(")")
        return Aggregate(function, argument, distinct)


def parse_select(sql: str) -> SelectStatement:
    """Parse a query into a SelectStatement, or raise a MemoryEngineError."""
    return _Parser(sql).parse()


# =============================================================================
# VALUE SEMANTICS
# =============================================================================

_TRUE_WORDS = {"true", "t", "1", "yes"}
_FALSE_WORDS = {"false", "f", "0", "no"}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _comparable(left: Any, right: Any) -> Tuple[Any, Any]:
    left, right = _normalize(left), _normalize(right)

    if _is_number(left) and _is_number(right):
        return left, right
    if isinstance(left, bool) and isinstance(right, bool):
        return left, right

    if _is_number(left) and isinstance(right, str):
        try:
            return left, float(right)
        except ValueError:
            return str(left), right
    if isinstance(left, str) and _is_number(right):
        try:
            return float(left), right
        except ValueError:
            return left, str(right)

    if isinstance(left, bool) and isinstance(right, str) and right.lower() in _TRUE_WORDS | _FALSE_WORDS:
        return left, right.lower() in _TRUE_WORDS
    if isinstance(left, str) and isinstance(right, bool) and left.lower() in _TRUE_WORDS | _FALSE_WORDS:
        return left.lower() in _TRUE_WORDS, right
    if isinstance(left, bool) and _is_number(right):
        return int(left), right
    if _is_number(left) and isinstance(right, bool):
        return left, int(right)

    if isinstance(left, str) and isinstance(right, str):
        return left, right
    return str(left), str(right)


_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "=": lambda a, b: a == b,
    "<>": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    ">": lambda a, b: a > b,
    "<=": lambda a, b: a <= b,
    ">=": lambda a, b: a >= b,
}


def compare(operator: str, left: Any, right: Any) -> bool:
    """SQL comparison; anything compared with NULL is false."""
    if left is None or right is None:
        return False
    a, b = _comparable(left, right)
    return _COMPARATORS[operator](a, b)


@lru_cache(maxsize=256)
def like_to_regex(pattern: str) -> "re.Pattern":
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def _sort_key(value: Any) -> Tuple[int, int, Any]:
    value = _normalize(value)
    if value is None:
        return (1, 0, 0)
    if isinstance(value, bool):
        return (0, 0, int(value))
    if _is_number(value):
        return (0, 0, value)
    if isinstance(value, str):
        return (0, 1, value)
    return (0, 2, repr(value))


def _hashable(value: Any) -> Any:
    if isinstance(value, (list, dict, set)):
        return repr(value)
    return value


def _to_number(value: Any) -> Optional[float]:
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


# =============================================================================
# EXECUTION
# =============================================================================

@dataclass
class MemoryResult:
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)


class _Scope:
    """Column resolution against one table and its alias."""

    def __init__(self, table: Table, alias: Optional[str]):
        self.table = table
        self.names = {table.name.lower()}
        if alias:
            self.names.add(alias.lower())
        self._resolved: Dict[Tuple[Optional[str], str], str] = {}

    def resolve(self, ref: ColumnRef) -> str:
        key = (ref.qualifier, ref.name)
        if key in self._resolved:
            return self._resolved[key]
        if ref.qualifier and ref.qualifier.lower() not in self.names:
            raise ColumnNotFoundError(ref.display, self.table.name)
        column = self.table.schema.find_column(ref.name)
        if column is None:
            raise ColumnNotFoundError(ref.display, self.table.name, self.table.schema.column_names)
        self._resolved[key] = column.name
        return column.name

    def value(self, operand: Operand, row: Dict[str, Any]) -> Any:
        if isinstance(operand, Literal):
            return operand.value
        return row.get(self.resolve(operand))

    def check_star(self, star: Star) -> None:
        if star.qualifier and star.qualifier.lower() not in self.names:
            raise ColumnNotFoundError(f"{star.qualifier}.*", self.table.name)


def _operands(condition: Condition) -> List[Operand]:
    if isinstance(condition, Comparison):
        return [condition.left, condition.right]
    if isinstance(condition, LikeCondition):
        return [condition.operand, condition.pattern]
    if isinstance(condition, InCondition):
        return [condition.operand, *condition.values]
    if isinstance(condition, BetweenCondition):
        return [condition.operand, condition.low, condition.high]
    return [condition.operand]


def _matches(condition: Condition, row: Dict[str, Any], scope: _Scope) -> bool:
    value = scope.value(_operands(condition)[0], row)

    if isinstance(condition, Comparison):
        return compare(condition.operator, value, scope.value(condition.right, row))

    if isinstance(condition, NullCondition):
        return (value is not None) if condition.negated else (value is None)

    if value is None:
        return False

    if isinstance(condition, LikeCondition):
        pattern = scope.value(condition.pattern, row)
        if pattern is None:
            return False
        hit = like_to_regex(str(pattern)).fullmatch(str(_normalize(value))) is not None
        return hit != condition.negated

    if isinstance(condition, InCondition):
        candidates = [scope.value(v, row) for v in condition.values]
        hit = any(compare("=", value, c) for c in candidates)
        if condition.negated:
            return not hit and all(c is not None for c in candidates)
        return hit

    if isinstance(condition, BetweenCondition):
        low = scope.value(condition.low, row)
        high = scope.value(condition.high, row)
        if low is None or high is None:
            return False
        hit = compare(">=", value, low) and compare("<=", value, high)
        return hit != condition.negated

    return bool(value)


def _aggregate(aggregate: Aggregate, rows: List[Dict[str, Any]], scope: _Scope) -> Any:
    if aggregate.argument is None:
        return len(rows)

    values = [scope.value(aggregate.argument, row) for row in rows]
    values = [v for v in values if v is not None]
    if aggregate.distinct:
        seen = {}
        for v in values:
            seen.setdefault(_hashable(v), v)
        values = list(seen.values())

    if aggregate.function == "COUNT":
        return len(values)

    if aggregate.function in ("SUM", "AVG"):
        numbers = [n for n in (_to_number(v) for v in values) if n is not None]
        if not numbers:
            return None
        total = sum(numbers)
        return total if aggregate.function == "SUM" else total / len(numbers)

    if not values:
        return None
    if all(_to_number(v) is not None for v in values) and any(_is_number(v) for v in values):
        numbers = [_to_number(v) for v in values]
        picked = min(numbers) if aggregate.function == "MIN" else max(numbers)
        return picked
    keyed = sorted(values, key=_sort_key)
    return keyed[0] if aggregate.function == "MIN" else keyed[-1]


class MemoryEngine:
    """
    Runs parsed SELECT statements against a TableStore.

    Usage:
        engine = MemoryEngine(store)
        rows = engine.query("SELECT region, amount FROM sales WHERE amount > 100")
    """

    def __init__(self, store: Optional[TableStore] = None):
        self.store = store or get_table_store()

    def query(self, sql: str) -> List[Dict[str, Any]]:
        return self.execute(sql).rows

    def execute(self, sql: str) -> MemoryResult:
        statement = parse_select(sql)
        table = self.store.find_table(statement.table)
        if table is None:
            raise TableNotFoundError(statement.table, self.store.table_names())

        scope = _Scope(table, statement.alias)
        outputs = self._expand_items(statement, scope)
        order_keys = self._resolve_order(statement, outputs, scope)
        for condition in statement.where:
            for operand in _operands(condition):
                if isinstance(operand, ColumnRef):
                    scope.resolve(operand)

        rows = [row for row in table.rows if all(_matches(c, row, scope) for c in statement.where)]

        if statement.is_aggregate:
            result = {}
            for name, expression in outputs:
                if isinstance(expression, Aggregate):
                    result[name] = _aggregate(expression, rows, scope)
                else:
                    result[name] = expression.value
            projected = [result]
        else:
            for expression, descending in reversed(order_keys):
                rows.sort(key=lambda r: _sort_key(scope.value(expression, r)), reverse=descending)
            projected = [
                {name: scope.value(expression, row) for name, expression in outputs}
                for row in rows
            ]

        if statement.distinct:
            seen = set()
            unique = []
            for row in projected:
                marker = tuple(_hashable(v) for v in row.values())
                if marker not in seen:
                    seen.add(marker)
                    unique.append(row)
            projected = unique

        end = None if statement.limit is None else statement.offset + statement.limit
        projected = projected[statement.offset:end]

        logger.debug(f"In-memory query on '{table.name}' returned {len(projected)} rows")
        return MemoryResult(columns=[name for name, _ in outputs], rows=projected)

    def _expand_items(self, statement: SelectStatement, scope: _Scope):
        outputs: List[Tuple[str, Any]] = []
        for item in statement.items:
            expression = item.expression
            if isinstance(expression, Star):
                scope.check_star(expression)
                for name in scope.table.schema.column_names:
                    outputs.append((name, ColumnRef(name)))
            elif isinstance(expression, ColumnRef):
                scope.resolve(expression)
                outputs.append((item.alias or expression.name, expression))
            elif isinstance(expression, Aggregate):
                if expression.argument is not None:
                    scope.resolve(expression.argument)
                outputs.append((item.alias or expression.label, expression))
            else:
                outputs.append((item.alias or expression.text, expression))
        return outputs

    def _resolve_order(self, statement: SelectStatement, outputs, scope: _Scope):
        keys: List[Tuple[Operand, bool]] = []
        aliases = {
            item.alias.lower(): item.expression
            for item in statement.items
            if item.alias and not isinstance(item.expression, Star)
        }
        for order in statement.order_by:
            target = order.target
            if isinstance(target, int):
                if not 1 <= target <= len(outputs):
                    raise SQLParseError(f"ORDER BY position {target} is out of range")
                expression = outputs[target - 1][1]
            elif target.qualifier is None and target.name.lower() in aliases:
                expression = aliases[target.name.lower()]
            else:
                scope.resolve(target)
                expression = target
            if isinstance(expression, Aggregate):
                continue
            keys.append((expression, order.descending))
        return keys
