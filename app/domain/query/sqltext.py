"""
Literal-aware SQL text helpers.

The rewriters in this package work on raw SQL text. Anything that looks
for keywords, markers or parentheses must skip over the contents of
single-quoted string literals, otherwise a filter value such as
'a ? b' or 'x) OR (1=1' would be mistaken for SQL structure.
"""

import re
from typing import Callable, Iterator, List, Tuple

_WHITESPACE = re.compile(r"\s+")


def literal_spans(sql: str) -> Iterator[Tuple[int, int]]:
    """
    Yield (start, end) spans of single-quoted literals, quotes included.

    Doubled quotes ('') inside a literal are treated as an escaped quote.
    An unterminated literal runs to the end of the text.
    """
    i = 0
    n = len(sql)
    while i < n:
        if sql[i] != "'":
            i += 1
            continue
        start = i
        i += 1
        while i < n:
            if sql[i] == "'":
                if i + 1 < n and sql[i + 1] == "'":
                    i += 2
                    continue
                break
            i += 1
        end = min(i + 1, n)
        yield start, end
        i = end


def mask_literals(sql: str, fill: str = "_") -> str:
    """Replace literal contents with filler so offsets stay aligned."""
    chars = list(sql)
    for start, end in literal_spans(sql):
        for j in range(start + 1, end - 1):
            chars[j] = fill
    return "".join(chars)


def outside_literals(sql: str) -> List[Tuple[bool, str]]:
    """Split SQL into (is_literal, text) chunks."""
    chunks: List[Tuple[bool, str]] = []
    pos = 0
    for start, end in literal_spans(sql):
        if start > pos:
            chunks.append((False, sql[pos:start]))
        chunks.append((True, sql[start:end]))
        pos = end
    if pos < len(sql):
        chunks.append((False, sql[pos:]))
    return chunks


def map_outside_literals(sql: str, fn: Callable[[str], str]) -> str:
    """Apply fn to every chunk of text that is not inside a literal."""
    return "".join(text if is_literal else fn(text) for is_literal, text in outside_literals(sql))


def protect_literals(sql: str) -> Tuple[str, List[str]]:
    """
    Swap every literal for an opaque \\x00n\\x00 token.

    Regex rewrites can then run over the whole statement without ever
    matching inside a literal. Undo with restore_literals().
    """
    literals: List[str] = []
    out: List[str] = []
    for is_literal, text in outside_literals(sql):
        if is_literal:
            out.append(f"\x00{len(literals)}\x00")
            literals.append(text)
        else:
            out.append(text)
    return "".join(out), literals


def restore_literals(text: str, literals: List[str]) -> str:
    """Inverse of protect_literals()."""
    return re.sub(r"\x00(\d+)\x00", lambda m: literals[int(m.group(1))], text)


def collapse_whitespace(sql: str) -> str:
    """Collapse runs of whitespace to one space, leaving literals untouched."""
    return map_outside_literals(sql, lambda text: _WHITESPACE.sub(" ", text)).strip()


def replace_markers(sql: str, marker: str, replacement: Callable[[int], str]) -> str:
    """
    Replace positional markers that sit outside literals.

    replacement receives the zero-based marker index and returns the text
    to put in its place.
    """
    counter = iter(range(len(sql) + 1))

    def swap(text: str) -> str:
        parts = text.split(marker)
        out = [parts[0]]
        for part in parts[1:]:
            out.append(replacement(next(counter)))
            out.append(part)
        return "".join(out)

    return map_outside_literals(sql, swap)


def count_markers(sql: str, marker: str = "?") -> int:
    """Count positional markers outside literals."""
    return sum(text.count(marker) for is_literal, text in outside_literals(sql) if not is_literal)
