# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Uniform query request/result shapes and the raw driver result."""

from collections.abc import Sequence
from typing import Any

from attrs import field, frozen


def _as_tuple(params: Sequence[Any] | None) -> tuple[Any, ...]:
    if params is None:
        return ()
    if isinstance(params, (str, bytes)):
        raise TypeError("query params must be a sequence of values, not a string")
    return tuple(params)


@frozen
class QueryRequest:
    """One logical query with ``?`` (or ``$n``) markers and its parameters."""

    text: str = field()
    params: tuple[Any, ...] = field(default=(), converter=_as_tuple)


@frozen
class FieldDescriptor:
    """Name and engine type of one result column."""

    name: str = field()
    data_type: str | None = field(default=None)


@frozen
class QueryResult:
    """Backend-independent query result."""

    rows: list[dict[str, Any]] = field(factory=list)
    row_count: int = field(default=0)
    fields: tuple[FieldDescriptor, ...] = field(default=())

    @property
    def field_names(self) -> list[str]:
        """Column names in result order."""
        return [f.name for f in self.fields]

    def first(self) -> dict[str, Any] | None:
        """First row or None."""
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        """First column of the first row, or None."""
        row = self.first()
        if not row:
            return None
        return next(iter(row.values()))


@frozen
class NativeResult:
    """What a driver hands back before normalization.

    ``status`` is whatever the engine reports about the statement: the
    PostgreSQL command tag (``"INSERT 0 3"``) or the MySQL cursor rowcount.
    """

    columns: tuple[FieldDescriptor, ...] = field(default=())
    records: list[Sequence[Any]] = field(factory=list)
    status: str | int | None = field(default=None)
