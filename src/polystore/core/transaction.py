# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Run a unit of work inside one backend-native transaction.

The coordinator owns the whole life of the connection: acquire, begin, run
the caller's function, commit or roll back, release exactly once. Callers
only ever see a :class:`TransactionHandle`, which stops accepting queries as
soon as the unit of work returns or raises.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from beartype import beartype

from polystore.models.query import QueryRequest, QueryResult

from .errors import TransactionError
from .pool import PooledConnection, PoolHandle
from .query_adapter import QueryAdapter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionHandle:
    """Query surface scoped to one transaction's connection."""

    def __init__(
        self, pool: PooledConnection, handle: PoolHandle, adapter: QueryAdapter
    ) -> None:
        self._pool = pool
        self._handle = handle
        self._adapter = adapter
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def _ensure_active(self) -> None:
        if not self._active:
            raise TransactionError(
                "transaction handle used after its transaction ended",
                backend=self._pool.backend,
            )

    @beartype
    async def query(self, text: str, params: Sequence[Any] | None = None) -> QueryResult:
        """Run one query on the transaction's connection."""
        self._ensure_active()
        native_query, native_params = self._adapter.translate(
            QueryRequest(text=text, params=params)
        )
        native = await self._pool.raw_query(self._handle, native_query, native_params)
        return self._adapter.normalize(native)

    @beartype
    async def execute_script(self, script: str) -> None:
        """Run a multi-statement script on the transaction's connection."""
        self._ensure_active()
        await self._pool.execute_script(self._handle, script)

    def close(self) -> None:
        self._active = False


class TransactionCoordinator:
    """Begin / commit / rollback around a caller-supplied unit of work."""

    @beartype
    def __init__(self, pool: PooledConnection, adapter: QueryAdapter) -> None:
        self._pool = pool
        self._adapter = adapter

    @property
    def backend(self) -> str:
        return self._pool.backend

    async def _rollback_or_wrap(
        self, handle: PoolHandle, native_tx: Any, original: BaseException
    ) -> TransactionError | None:
        """Roll back; return the error to raise instead of ``original`` if rollback fails."""
        try:
            await self._pool.rollback(handle, native_tx)
        except Exception as rollback_error:
            logger.error(
                f"{self.backend}: rollback failed after {type(original).__name__}: "
                f"{rollback_error}"
            )
            return TransactionError(
                f"rollback failed ({rollback_error}) after: {original}",
                backend=self.backend,
                original_error=original,
                rollback_error=rollback_error,
            )
        return None

    async def run(self, fn: Callable[[TransactionHandle], Awaitable[T]]) -> T:
        """Run ``fn`` in a transaction and return its result.

        Raises whatever ``fn`` raised after rolling back, a
        :class:`TransactionError` if begin or commit fails, or a
        :class:`TransactionError` carrying both errors if the rollback fails.
        """
        handle = await self._pool.acquire()
        discard = False
        tx_handle: TransactionHandle | None = None
        try:
            try:
                native_tx = await self._pool.begin(handle)
            except Exception as e:
                discard = True
                raise TransactionError(
                    f"begin failed: {e}", backend=self.backend, original_error=e
                ) from e

            tx_handle = TransactionHandle(self._pool, handle, self._adapter)
            try:
                result = await fn(tx_handle)
            except BaseException as original:
                tx_handle.close()
                wrapped = await self._rollback_or_wrap(handle, native_tx, original)
                if wrapped is not None:
                    discard = True
                    raise wrapped from original
                raise

            tx_handle.close()
            try:
                await self._pool.commit(handle, native_tx)
            except Exception as commit_error:
                wrapped = await self._rollback_or_wrap(handle, native_tx, commit_error)
                if wrapped is not None:
                    discard = True
                    raise wrapped from commit_error
                raise TransactionError(
                    f"commit failed: {commit_error}",
                    backend=self.backend,
                    original_error=commit_error,
                ) from commit_error
            return result
        finally:
            if tx_handle is not None:
                tx_handle.close()
            await self._pool.release(handle, discard=discard)
