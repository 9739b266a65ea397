"""Read-only SQL guardrails for queries written by the model."""
from __future__ import annotations

import re
from typing import Iterable, List, Set, Tuple

DEFAULT_ALLOWED_TABLES = ("products", "sales")
DEFAULT_ROW_LIMIT = 1000

FORBIDDEN_KEYWORDS = (
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "ALTER",
    "CREATE",
    "PRAGMA",
    "ATTACH",
    "DETACH",
    "BEGIN",
    "COMMIT",
    "ROLLBACK",
    "VACUUM",
    "REINDEX",
    "ANALYZE",
    "TRIGGER",
    "VIEW",
)
FORBIDDEN_SQL = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)

TOKEN = re.compile(
    r"""
      (?P<space>\s+)
    | (?P<comment>--[^\n]*|/\*.*?(?:\*/|\Z))
    | (?P<string>'(?:[^']|'')*')
    | (?P<quoted>"(?:[^"]|"")*"|`(?:[^`]|``)*`|\[[^\]]*\])
    | (?P<word>[A-Za-z_][\w$]*)
    | (?P<number>\d+(?:\.\d*)?(?:[eE][-+]?\d+)?)
    | (?P<punct>.)
    """,
    re.VERBOSE | re.DOTALL,
)
QUOTE_CHARS = {"'", '"', "`", "["}

# keywords that close a FROM/JOIN list at the current nesting level
FROM_LIST_END = {
    "WHERE", "GROUP", "ORDER", "LIMIT", "HAVING", "WINDOW",
    "UNION", "EXCEPT", "INTERSECT", "SELECT", "VALUES",
}
SUBQUERY_START = {"SELECT", "WITH", "VALUES"}

Token = Tuple[str, str]


class SQLValidationError(ValueError):
    """Raised when a statement is refused by the guardrails."""


def _tokenize(query: str) -> List[Token]:
    tokens: List[Token] = []
    for match in TOKEN.finditer(query):
        kind = match.lastgroup
        text = match.group()
        if kind == "space":
            continue
        if kind == "comment":
            raise SQLValidationError("SQL comments are not allowed.")
        if kind == "punct" and text in QUOTE_CHARS:
            raise SQLValidationError("Unterminated quoted string or identifier.")
        tokens.append((kind, text))
    return tokens


def _is_word(tokens: List[Token], i: int, *words: str) -> bool:
    return i < len(tokens) and tokens[i][0] == "word" and tokens[i][1].upper() in words


def _is_punct(tokens: List[Token], i: int, char: str) -> bool:
    return i < len(tokens) and tokens[i] == ("punct", char)


def _name(token: Token) -> str:
    kind, text = token
    if kind == "quoted":
        text = text[1:-1]
    return text.upper()


def _skip_group(tokens: List[Token], i: int) -> int:
    """Index just past the parenthesis group opening at ``i``."""
    depth = 0
    while i < len(tokens):
        if _is_punct(tokens, i, "("):
            depth += 1
        elif _is_punct(tokens, i, ")"):
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return i


def _cte_names(tokens: List[Token]) -> Set[str]:
    """Names declared by every ``WITH [RECURSIVE] name [(cols)] AS (...) [, ...]`` list."""
    names: Set[str] = set()
    for start, _ in enumerate(tokens):
        if not _is_word(tokens, start, "WITH"):
            continue
        i = start + 1
        if _is_word(tokens, i, "RECURSIVE"):
            i += 1
        while i < len(tokens) and tokens[i][0] in ("word", "quoted"):
            candidate = _name(tokens[i])
            i += 1
            if _is_punct(tokens, i, "("):
                i = _skip_group(tokens, i)
            if not _is_word(tokens, i, "AS"):
                break
            i += 1
            while _is_word(tokens, i, "NOT", "MATERIALIZED"):
                i += 1
            if not _is_punct(tokens, i, "("):
                break
            i = _skip_group(tokens, i)
            names.add(candidate)
            if not _is_punct(tokens, i, ","):
                break
            i += 1
    return names


def _check_table_refs(tokens: List[Token], allowed: Set[str]) -> None:
    """Every table named in a FROM/JOIN list, at any nesting level, must be allowed."""
    # one frame per open parenthesis: [expecting_table, inside_from_list]
    frames = [[False, False]]
    for kind, text in tokens:
        frame = frames[-1]
        upper = text.upper()
        if kind == "punct" and text == "(":
            if frame[0]:
                # parenthesised join or subquery used as a table
                frame[0] = False
                frames.append([True, True])
            else:
                frames.append([False, False])
            continue
        if kind == "punct" and text == ")":
            if len(frames) > 1:
                frames.pop()
            continue
        if kind == "punct" and text == ",":
            if frame[1] and not frame[0]:
                frame[0] = True
            continue
        if kind not in ("word", "quoted"):
            continue
        if frame[0]:
            frame[0] = False
            if kind == "word" and upper in SUBQUERY_START:
                frame[1] = False
                continue
            if _name((kind, text)) not in allowed:
                raise SQLValidationError(
                    f"Unknown or disallowed table referenced: {_name((kind, text)).lower()}"
                )
            continue
        if kind == "word" and upper in ("FROM", "JOIN"):
            frame[0] = True
            frame[1] = True
        elif kind == "word" and upper in FROM_LIST_END:
            frame[1] = False


def _has_top_level_limit(tokens: List[Token]) -> bool:
    depth = 0
    for i, token in enumerate(tokens):
        if token == ("punct", "("):
            depth += 1
        elif token == ("punct", ")"):
            depth -= 1
        elif depth == 0 and _is_word(tokens, i, "LIMIT"):
            return True
    return False


def validate_and_prepare_query(
    input_query: str,
    allowed_tables: Iterable[str] = DEFAULT_ALLOWED_TABLES,
    row_limit: int = DEFAULT_ROW_LIMIT,
) -> str:
    """Return a runnable version of ``input_query`` or raise ``SQLValidationError``.

    Only a single comment-free SELECT (or WITH ... SELECT) statement is
    accepted. Every table named in a FROM/JOIN list must be in
    ``allowed_tables`` or be a CTE the statement defines itself. A
    ``LIMIT row_limit`` clause is appended when the outer query has none.
    """
    query = (input_query or '').strip()

    if ";" in query:
        raise SQLValidationError("Only single, semicolon-free SELECT statements are allowed.")

    upper = query.upper()
    if not (upper.startswith("SELECT") or upper.startswith("WITH")):
        raise SQLValidationError("Only SELECT queries are permitted.")

    tokens = _tokenize(query)

    if FORBIDDEN_SQL.search(query):
        raise SQLValidationError("Query contains forbidden operation.")

    allowed = {t.upper() for t in allowed_tables} | _cte_names(tokens)
    _check_table_refs(tokens, allowed)

    if not _has_top_level_limit(tokens):
        return f"{query} LIMIT {row_limit}"
    return query
