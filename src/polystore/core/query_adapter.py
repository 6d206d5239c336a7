# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Placeholder translation and result normalization per relational engine.

Callers write one logical query with ``?`` markers. The numbered adapter
rewrites them to ``$1, $2, ...`` for asyncpg; the positional adapter emits the
aiomysql ``%s`` marker. Markers inside string literals, quoted identifiers and
comments are left alone, so ``WHERE note = 'why?'`` keeps its question mark.

Parameter values are never touched: a ``"42"`` stays a ``str`` and a
``Decimal`` stays a ``Decimal``; the driver decides how to bind them.
"""

import re
from collections.abc import Sequence
from typing import Any

from attrs import frozen
from beartype import beartype

from polystore.models.backend import PlaceholderStyle
from polystore.models.query import NativeResult, QueryRequest, QueryResult

from .errors import QueryError, QueryErrorKind

TEXT = "text"
QMARK = "qmark"
NUMBERED = "numbered"

_DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z_0-9]*)?\$")
_STATUS_COUNT = re.compile(r"(\d+)\s*$")


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


@frozen
class SqlScanner:
    """Splits SQL text into plain text, ``?`` markers and ``$n`` markers.

    Dialect flags control what counts as a quote or comment:
    ``backslash_escapes`` for MySQL string literals, ``hash_comments`` for
    MySQL ``#`` comments and ``dollar_quotes`` for PostgreSQL ``$tag$`` bodies.
    """

    backslash_escapes: bool = False
    hash_comments: bool = False
    dollar_quotes: bool = False

    @beartype
    def tokens(self, text: str, backend: str | None = None) -> list[tuple[str, str]]:
        """Tokenize ``text``; raises ``QueryError(MALFORMED)`` on unterminated quotes."""
        tokens: list[tuple[str, str]] = []
        buf: list[str] = []
        n = len(text)
        i = 0

        def flush() -> None:
            if buf:
                tokens.append((TEXT, "".join(buf)))
                buf.clear()

        while i < n:
            ch = text[i]

            if ch in "'\"`":
                end = self._skip_quoted(text, i, ch)
                if end < 0:
                    raise QueryError(
                        f"unterminated {ch} quote starting at offset {i}",
                        kind=QueryErrorKind.MALFORMED,
                        backend=backend,
                    )
                buf.append(text[i:end])
                i = end
                continue

            if text.startswith("--", i) or (self.hash_comments and ch == "#"):
                end = text.find("\n", i)
                end = n if end == -1 else end
                buf.append(text[i:end])
                i = end
                continue

            if text.startswith("/*", i):
                end = text.find("*/", i + 2)
                if end == -1:
                    raise QueryError(
                        f"unterminated block comment starting at offset {i}",
                        kind=QueryErrorKind.MALFORMED,
                        backend=backend,
                    )
                buf.append(text[i : end + 2])
                i = end + 2
                continue

            if ch == "?":
                flush()
                tokens.append((QMARK, "?"))
                i += 1
                continue

            if ch == "$" and (i == 0 or not _is_word_char(text[i - 1])):
                j = i + 1
                while j < n and text[j].isdigit():
                    j += 1
                if j > i + 1:
                    flush()
                    tokens.append((NUMBERED, text[i:j]))
                    i = j
                    continue
                if self.dollar_quotes:
                    match = _DOLLAR_TAG.match(text, i)
                    if match:
                        tag = match.group(0)
                        end = text.find(tag, match.end())
                        if end == -1:
                            raise QueryError(
                                f"unterminated {tag} quote starting at offset {i}",
                                kind=QueryErrorKind.MALFORMED,
                                backend=backend,
                            )
                        buf.append(text[i : end + len(tag)])
                        i = end + len(tag)
                        continue

            buf.append(ch)
            i += 1

        flush()
        return tokens

    def _skip_quoted(self, text: str, start: int, quote: str) -> int:
        """Index just past the closing quote, or -1 when unterminated."""
        i = start + 1
        n = len(text)
        while i < n:
            ch = text[i]
            if self.backslash_escapes and ch == "\\" and quote != "`":
                i += 2
                continue
            if ch == quote:
                # Doubled quote is an escaped quote
                if i + 1 < n and text[i + 1] == quote:
                    i += 2
                    continue
                return i + 1
            i += 1
        return -1


class QueryAdapter:
    """Base adapter: shared result normalization."""

    placeholder_style: PlaceholderStyle
    scanner: SqlScanner

    @beartype
    def __init__(self, backend: str | None = None) -> None:
        self.backend = backend

    def translate(self, request: QueryRequest) -> tuple[str, tuple[Any, ...] | None]:
        raise NotImplementedError

    def _count(self, tokens: list[tuple[str, str]]) -> int:
        qmarks = sum(1 for kind, _ in tokens if kind == QMARK)
        numbered = [int(chunk[1:]) for kind, chunk in tokens if kind == NUMBERED]
        if qmarks and numbered:
            raise QueryError(
                "query mixes ? and $n placeholders",
                kind=QueryErrorKind.MALFORMED,
                backend=self.backend,
            )
        if numbered:
            highest = max(numbered)
            missing = set(range(1, highest + 1)) - set(numbered)
            if missing:
                raise QueryError(
                    f"numbered placeholders skip ${min(missing)}",
                    kind=QueryErrorKind.MALFORMED,
                    backend=self.backend,
                )
            return highest
        return qmarks

    def _check_count(self, expected: int, params: Sequence[Any]) -> None:
        if expected != len(params):
            raise QueryError(
                f"query expects {expected} parameter(s) but {len(params)} were given",
                kind=QueryErrorKind.PARAM_MISMATCH,
                backend=self.backend,
            )

    @beartype
    def normalize(self, native: NativeResult) -> QueryResult:
        """Convert a driver result into a :class:`QueryResult`."""
        names = [column.name for column in native.columns]
        rows = [dict(zip(names, record, strict=False)) for record in native.records]
        if native.columns:
            row_count = len(rows)
        else:
            row_count = self._affected_rows(native.status)
        return QueryResult(rows=rows, row_count=row_count, fields=native.columns)

    @staticmethod
    def _affected_rows(status: str | int | None) -> int:
        if status is None:
            return 0
        if isinstance(status, int):
            # MySQL reports -1 when no count applies
            return max(status, 0)
        match = _STATUS_COUNT.search(status)
        return int(match.group(1)) if match else 0


class NumberedAdapter(QueryAdapter):
    """``?`` -> ``$n`` for engines with numbered placeholders (PostgreSQL)."""

    placeholder_style = PlaceholderStyle.NUMBERED
    scanner = SqlScanner(dollar_quotes=True)

    @beartype
    def translate(self, request: QueryRequest) -> tuple[str, tuple[Any, ...] | None]:
        tokens = self.scanner.tokens(request.text, self.backend)
        self._check_count(self._count(tokens), request.params)

        parts: list[str] = []
        position = 0
        for kind, chunk in tokens:
            if kind == QMARK:
                position += 1
                parts.append(f"${position}")
            else:
                parts.append(chunk)
        return "".join(parts), request.params


class PositionalAdapter(QueryAdapter):
    """``?`` -> ``%s`` for engines with positional placeholders (MySQL).

    aiomysql interpolates with ``%`` formatting whenever arguments are passed,
    so literal ``%`` is doubled in that case. Without arguments the text is
    sent exactly as written.
    """

    placeholder_style = PlaceholderStyle.POSITIONAL
    scanner = SqlScanner(backslash_escapes=True, hash_comments=True)

    @beartype
    def translate(self, request: QueryRequest) -> tuple[str, tuple[Any, ...] | None]:
        tokens = self.scanner.tokens(request.text, self.backend)
        if any(kind == NUMBERED for kind, _ in tokens):
            raise QueryError(
                "numbered $n placeholders are not supported by this engine; use ?",
                kind=QueryErrorKind.MALFORMED,
                backend=self.backend,
            )
        self._check_count(self._count(tokens), request.params)

        if not request.params:
            return request.text, None

        parts: list[str] = []
        for kind, chunk in tokens:
            if kind == QMARK:
                parts.append("%s")
            else:
                parts.append(chunk.replace("%", "%%"))
        return "".join(parts), request.params


ADAPTERS: dict[PlaceholderStyle, type[QueryAdapter]] = {
    PlaceholderStyle.NUMBERED: NumberedAdapter,
    PlaceholderStyle.POSITIONAL: PositionalAdapter,
}


@beartype
def adapter_for(style: PlaceholderStyle, *, backend: str | None = None) -> QueryAdapter:
    """Adapter instance for a placeholder style."""
    return ADAPTERS[style](backend)
