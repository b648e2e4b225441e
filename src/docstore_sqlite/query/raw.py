"""
Raw SQL predicates.

An escape hatch for conditions the filter document cannot express
(``OR``, parenthesised groups, ...). Bare field names are rewritten into
``json_extract`` calls by a token-level substitution that skips string
literals and quoted identifiers.

The clause is **not** validated or sanitised; only values passed as
parameters are safe from injection.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from .fragments import BODY_COLUMN, FIXED_COLUMNS, SYSTEM_FIELD_COLUMNS, extract

_TOKEN_RE = re.compile(
    r"""
    (?P<string>'(?:[^']|'')*')
  | (?P<quoted>"(?:[^"]|"")*")
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)
  | (?P<space>\s+)
  | (?P<op><=|>=|<>|!=|==|[=<>])
  | (?P<other>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_WHERE_RE = re.compile(r"^\s*where\b", re.IGNORECASE)

KEYWORDS: frozenset[str] = frozenset(
    {
        "AND", "AS", "ASC", "BETWEEN", "BY", "CASE", "CAST", "COLLATE", "DESC",
        "DISTINCT", "ELSE", "END", "ESCAPE", "EXISTS", "FALSE", "FROM", "GLOB",
        "IN", "INTEGER", "IS", "LIKE", "LIMIT", "MATCH", "NOCASE", "NOT", "NULL",
        "OFFSET", "OR", "ORDER", "REAL", "REGEXP", "SELECT", "TEXT", "THEN",
        "TRUE", "WHEN", "WHERE",
    }
)  # fmt: skip

_COMPARISON_KEYWORDS = frozenset({"LIKE", "IN", "NOT", "IS", "BETWEEN", "GLOB"})
_NUMERIC_OPERATORS = frozenset({"<", ">", "<=", ">="})
_ROW_ALIASES = frozenset({"NEW", "OLD"})
_SYSTEM_TOKENS = frozenset({*FIXED_COLUMNS, *SYSTEM_FIELD_COLUMNS, "rowid"})


class Token(NamedTuple):
    kind: str
    text: str


def tokenize(sql: str) -> list[Token]:
    return [Token(m.lastgroup or "other", m.group()) for m in _TOKEN_RE.finditer(sql)]


def _next_significant(tokens: list[Token], start: int) -> Token | None:
    for token in tokens[start:]:
        if token.kind != "space":
            return token
    return None


def _is_field(token: Token) -> bool:
    if token.kind != "ident" or token.text.upper() in KEYWORDS:
        return False
    return token.text.split(".", 1)[0].upper() not in _ROW_ALIASES


def _references_system_column(tokens: list[Token]) -> bool:
    return any(
        t.kind == "ident" and t.text.lower() in _SYSTEM_TOKENS for t in tokens
    )


def prepare_raw_predicate(clause: str, source: str = BODY_COLUMN) -> str:
    """
    Normalise a caller-supplied predicate into a ``WHERE`` clause.

    ``WHERE`` is prefixed when absent. Clauses that already call
    ``json_extract`` or mention a system column are left as written;
    otherwise every bare field compared with an operator is rewritten to
    read from the body, cast to ``REAL`` for range comparisons.
    """
    text = clause.strip()
    if not _WHERE_RE.match(text):
        text = f"WHERE {text}"

    tokens = tokenize(text)
    if "json_extract" in text.lower() or _references_system_column(tokens):
        return text

    out: list[str] = []
    for i, token in enumerate(tokens):
        if not _is_field(token):
            out.append(token.text)
            continue
        nxt = _next_significant(tokens, i + 1)
        if nxt is None or nxt.text == "(":
            out.append(token.text)
        elif nxt.kind == "op":
            expr = extract(token.text, source)
            if nxt.text in _NUMERIC_OPERATORS:
                expr = f"CAST({expr} AS REAL)"
            out.append(expr)
        elif nxt.kind == "ident" and nxt.text.upper() in _COMPARISON_KEYWORDS:
            out.append(extract(token.text, source))
        else:
            out.append(token.text)
    return "".join(out)


def rewrite_expression(expression: str, source: str = "NEW.data") -> str:
    """
    Rewrite every bare field in ``expression`` to read from ``source``.

    Used for check-constraint triggers, where the body is ``NEW.data``.
    System fields map onto the row's own columns.
    """
    row = source.rsplit(".", 1)[0] if "." in source else None
    tokens = tokenize(expression)
    out: list[str] = []
    for i, token in enumerate(tokens):
        if not _is_field(token):
            out.append(token.text)
            continue
        nxt = _next_significant(tokens, i + 1)
        if nxt is not None and nxt.text == "(":
            out.append(token.text)
            continue
        column = SYSTEM_FIELD_COLUMNS.get(token.text)
        if column is not None:
            out.append(f"{row}.{column}" if row else column)
        else:
            out.append(extract(token.text, source))
    return "".join(out)
