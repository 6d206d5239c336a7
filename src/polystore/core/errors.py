# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Error taxonomy for the connection layer.

Every error carries the backend it originated from so that callers and logs
can tell a secondary-engine constraint violation apart from a document-store
outage without string matching.
"""

from enum import Enum

from beartype import beartype


class QueryErrorKind(str, Enum):
    """Why a query was rejected or failed."""

    PARAM_MISMATCH = "param_mismatch"
    MALFORMED = "malformed"
    SYNTAX = "syntax"
    CONSTRAINT_VIOLATION = "constraint_violation"
    STATEMENT_TIMEOUT = "statement_timeout"
    EXECUTION = "execution"


class DataStoreError(Exception):
    """Base class for all connection-layer errors."""

    @beartype
    def __init__(self, message: str, *, backend: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.backend = backend

    def __str__(self) -> str:
        if self.backend:
            return f"[{self.backend}] {self.message}"
        return self.message


class ConfigError(DataStoreError):
    """A backend descriptor cannot be used to open a connection."""


class PoolTimeoutError(DataStoreError):
    """No pooled connection became available before the acquire timeout."""

    @beartype
    def __init__(
        self, message: str, *, backend: str | None = None, timeout_ms: int = 0
    ) -> None:
        super().__init__(message, backend=backend)
        self.timeout_ms = timeout_ms


class BackendUnavailableError(DataStoreError):
    """The backend is not connected, refused the connection or dropped it."""


class QueryError(DataStoreError):
    """A query was malformed, mismatched its parameters or failed to execute."""

    @beartype
    def __init__(
        self,
        message: str,
        *,
        kind: QueryErrorKind,
        backend: str | None = None,
    ) -> None:
        super().__init__(message, backend=backend)
        self.kind = kind


class TransactionError(DataStoreError):
    """Begin, commit or rollback failed.

    When a rollback fails after the unit of work raised, both errors are kept:
    ``original_error`` is what the unit of work raised and ``rollback_error``
    is what the rollback raised.
    """

    @beartype
    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        original_error: BaseException | None = None,
        rollback_error: BaseException | None = None,
    ) -> None:
        super().__init__(message, backend=backend)
        self.original_error = original_error
        self.rollback_error = rollback_error


class ProbeError(DataStoreError):
    """Internal to the health monitor; converted into a status, never raised outward."""


__all__ = [
    "BackendUnavailableError",
    "ConfigError",
    "DataStoreError",
    "PoolTimeoutError",
    "ProbeError",
    "QueryError",
    "QueryErrorKind",
    "TransactionError",
]
