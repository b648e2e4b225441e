"""Pattern operators.

``$regex`` degrades to ``LIKE``: only the ``^``/``$`` anchors are honoured
and every other character matches literally. SQLite's ``LIKE`` is
case-insensitive for ASCII.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from ...exceptions import CompileError
from ..ast import QueryOperator
from ..fragments import SQLFragment
from ..strategy import SQLOperator

if TYPE_CHECKING:
    from ..fragments import FieldRef

LIKE_ESCAPE = "\\"
_REGEX_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)


def escape_like(text: str) -> str:
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


def regex_to_like(pattern: str) -> str:
    """
    Translate an anchored or unanchored pattern to a LIKE pattern.

    ``^abc`` -> ``abc%``, ``abc$`` -> ``%abc``, ``^abc$`` -> ``abc``,
    ``abc`` -> ``%abc%``. Backslash escapes match the escaped character
    (``a\\.b\\$`` matches ``a.b$`` anywhere).
    """
    body = pattern
    starts = body.startswith("^")
    if starts:
        body = body[1:]
    head = body[:-1]
    # An odd run of backslashes before the final "$" escapes it.
    ends = body.endswith("$") and (len(head) - len(head.rstrip("\\"))) % 2 == 0
    if ends:
        body = head
    like = escape_like(_REGEX_ESCAPE_RE.sub(r"\1", body))
    return f"{'' if starts else '%'}{like}{'' if ends else '%'}"


class RegexOperator(SQLOperator):
    @property
    def name(self) -> QueryOperator:
        return QueryOperator.REGEX

    def apply(self, field: FieldRef, value: Any) -> SQLFragment:
        if not isinstance(value, str):
            raise CompileError(
                f"$regex requires a string pattern for '{field.path}'", key=field.path
            )
        return SQLFragment(
            f"{field.expr} LIKE ? ESCAPE '{LIKE_ESCAPE}'", (regex_to_like(value),)
        )
