"""Identifier quoting and placeholder handling."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

# Dialects that use ANSI double quotes for identifiers. Everything else
# (mysql, mariadb, sqlite, ...) gets backticks.
ANSI_QUOTE_DIALECTS = frozenset({"postgresql", "mssql", "oracle", "sybase"})


def detect_quote_character(dialect_name: str) -> str:
    """Return the identifier quote character for a SQLAlchemy dialect name.

    Examples:
        >>> detect_quote_character("postgresql")
        '"'
        >>> detect_quote_character("sqlite")
        '`'
    """
    if dialect_name in ANSI_QUOTE_DIALECTS:
        return '"'
    return "`"


@dataclass(frozen=True)
class IdentifierQuoter:
    """Quotes table and column names with a single quote character.

    Dotted identifiers are quoted segment by segment and ``*`` is passed
    through, so ``user.*`` becomes ``"user".*``.
    """

    quote_character: str

    def quote(self, identifier: str) -> str:
        return ".".join(self.quote_part(part) for part in identifier.split("."))

    def quote_part(self, part: str) -> str:
        if part == "*":
            return part
        q = self.quote_character
        return f"{q}{part.replace(q, q + q)}{q}"


def create_placeholders(count: int) -> str:
    """Return ``count`` question marks separated by commas, e.g. ``?, ?, ?``."""
    return ", ".join(["?"] * count)


def translate_placeholders(
    sql: str,
    params: Sequence[Any],
    paramstyle: str,
) -> tuple[str, Sequence[Any] | Mapping[str, Any]]:
    """Rewrite ``?`` placeholders into the driver's DBAPI paramstyle.

    Question marks inside quoted literals or quoted identifiers are left
    alone. For ``format``/``pyformat`` drivers literal ``%`` signs are
    doubled so the driver does not read them as placeholders.

    Examples:
        >>> translate_placeholders("a = ? AND b = ?", [1, 2], "format")
        ('a = %s AND b = %s', (1, 2))
        >>> translate_placeholders("a = ?", [1], "named")
        ('a = :p1', {'p1': 1})
    """
    if paramstyle == "qmark":
        return sql, tuple(params)

    out: list[str] = []
    quote: str | None = None
    index = 0
    for char in sql:
        if quote is not None:
            if char == quote:
                quote = None
            out.append(_escape_percent(char, paramstyle))
            continue
        if char in ("'", '"', "`"):
            quote = char
            out.append(char)
        elif char == "?":
            index += 1
            out.append(_placeholder(index, paramstyle))
        else:
            out.append(_escape_percent(char, paramstyle))

    translated = "".join(out)
    if paramstyle == "named":
        return translated, {f"p{i + 1}": value for i, value in enumerate(params)}
    return translated, tuple(params)


def _placeholder(index: int, paramstyle: str) -> str:
    if paramstyle in ("format", "pyformat"):
        return "%s"
    if paramstyle == "numeric":
        return f":{index}"
    if paramstyle == "named":
        return f":p{index}"
    raise ValueError(f"Unsupported DBAPI paramstyle: {paramstyle!r}")


def _escape_percent(char: str, paramstyle: str) -> str:
    if char == "%" and paramstyle in ("format", "pyformat"):
        return "%%"
    return char
