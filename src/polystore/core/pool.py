# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Bounded connection pool over a relational driver.

The native pool (asyncpg or aiomysql) owns the sockets and closes idle ones;
this wrapper adds what both engines need uniformly:

- a FIFO slot gate capped at ``max_connections`` with an acquire timeout
- idempotent release, with discard for connections that must not be reused
- statement timeouts and driver error translation
- a consistent ``total = idle + in_use`` status snapshot
"""

import asyncio
import contextlib
import itertools
import logging
import time
from collections.abc import AsyncIterator, Sequence
from typing import Any

from attrs import define, field
from beartype import beartype

from polystore.models.backend import BackendDescriptor
from polystore.models.query import NativeResult
from polystore.schemas.health import PoolStatus

from .errors import BackendUnavailableError, PoolTimeoutError, QueryError, QueryErrorKind
from .types import RelationalDriver

logger = logging.getLogger(__name__)

PROBE_QUERY = "SELECT 1"


@define
class PoolHandle:
    """One checked-out connection."""

    handle_id: int = field()
    connection: Any = field(repr=False)
    acquired_at: float = field(factory=time.monotonic)
    released: bool = field(default=False)
    discard: bool = field(default=False)


class PooledConnection:
    """Bounded pool of connections to one relational backend."""

    @beartype
    def __init__(
        self,
        descriptor: BackendDescriptor,
        driver: RelationalDriver,
        *,
        slow_query_threshold_ms: float = 1000.0,
    ) -> None:
        self.descriptor = descriptor
        self.driver = driver
        self.slow_query_threshold_ms = slow_query_threshold_ms
        self._native: Any = None
        self._slots = asyncio.Semaphore(descriptor.connection_params.max_connections)
        self._waiting = 0
        self._in_use: dict[int, PoolHandle] = {}
        self._ids = itertools.count(1)

    @property
    def backend(self) -> str:
        return self.descriptor.kind.value

    @property
    def is_open(self) -> bool:
        """Check if the native pool exists."""
        return self._native is not None

    @property
    def in_use_count(self) -> int:
        return len(self._in_use)

    def _translate(self, exc: BaseException) -> Exception:
        return self.driver.translate_error(exc, self.backend)

    @beartype
    async def open(self) -> None:
        """Create the native pool."""
        if self._native is not None:
            return
        params = self.descriptor.connection_params
        logger.info(
            f"Opening {self.descriptor.engine} pool at {self.descriptor.safe_location} "
            f"(min={params.min_connections}, max={params.max_connections})"
        )
        try:
            self._native = await self.driver.create_pool(self.descriptor)
        except Exception as e:
            raise BackendUnavailableError(
                f"could not open pool at {self.descriptor.safe_location}: {e}",
                backend=self.backend,
            ) from e

    @beartype
    async def acquire(self) -> PoolHandle:
        """Check out a connection, waiting at most ``connection_timeout_ms``."""
        if self._native is None:
            raise BackendUnavailableError("pool is not open", backend=self.backend)

        params = self.descriptor.connection_params
        waiting = True
        self._waiting += 1
        try:
            async with asyncio.timeout(params.connection_timeout_seconds):
                await self._slots.acquire()
                self._waiting -= 1
                waiting = False
                native = self._native
                if native is None:
                    # closed while this caller was queued
                    self._slots.release()
                    raise BackendUnavailableError("pool is closed", backend=self.backend)
                try:
                    conn = await self.driver.acquire(native)
                except BaseException:
                    self._slots.release()
                    raise
        except TimeoutError as e:
            raise PoolTimeoutError(
                f"no connection available within {params.connection_timeout_ms} ms "
                f"({len(self._in_use)}/{params.max_connections} in use)",
                backend=self.backend,
                timeout_ms=params.connection_timeout_ms,
            ) from e
        except Exception as e:
            translated = self._translate(e)
            if translated is e:
                raise
            raise translated from e
        finally:
            if waiting:
                self._waiting -= 1

        handle = PoolHandle(handle_id=next(self._ids), connection=conn)
        self._in_use[handle.handle_id] = handle
        return handle

    @beartype
    async def release(self, handle: PoolHandle, *, discard: bool = False) -> None:
        """Return a connection to the pool. Releasing twice is a no-op."""
        if handle.released:
            logger.debug(f"{self.backend}: handle {handle.handle_id} already released")
            return
        handle.released = True
        self._in_use.pop(handle.handle_id, None)
        try:
            if self._native is not None:
                await self.driver.release(
                    self._native, handle.connection, discard=discard or handle.discard
                )
        except Exception as e:
            logger.warning(f"{self.backend}: error releasing connection: {e}")
        finally:
            self._slots.release()

    @contextlib.asynccontextmanager
    async def connection(self) -> AsyncIterator[PoolHandle]:
        """Acquire a connection for the duration of the block."""
        handle = await self.acquire()
        try:
            yield handle
        finally:
            await self.release(handle)

    def _check_handle(self, handle: PoolHandle) -> None:
        if handle.released:
            raise BackendUnavailableError(
                "connection handle used after release", backend=self.backend
            )

    async def _bounded(self, handle: PoolHandle, operation: Any) -> Any:
        """Await a driver call under the statement timeout."""
        timeout_ms = self.descriptor.connection_params.statement_timeout_ms
        try:
            async with asyncio.timeout(timeout_ms / 1000 if timeout_ms else None):
                return await operation
        except TimeoutError as e:
            # Connection state is unknown after a client-side cancel
            handle.discard = True
            raise QueryError(
                f"statement exceeded {timeout_ms} ms",
                kind=QueryErrorKind.STATEMENT_TIMEOUT,
                backend=self.backend,
            ) from e
        except Exception as e:
            translated = self._translate(e)
            if isinstance(translated, BackendUnavailableError):
                handle.discard = True
            if translated is e:
                raise
            raise translated from e

    @beartype
    async def raw_query(
        self, handle: PoolHandle, query: str, params: Sequence[Any] | None = None
    ) -> NativeResult:
        """Run an already translated statement on a checked-out connection."""
        self._check_handle(handle)
        start = time.perf_counter()
        result = await self._bounded(
            handle, self.driver.execute(handle.connection, query, params)
        )
        duration_ms = (time.perf_counter() - start) * 1000
        if duration_ms > self.slow_query_threshold_ms:
            logger.warning(
                f"Slow query on {self.backend} ({duration_ms:.1f} ms): {query[:100]}"
            )
        return result

    @beartype
    async def execute_script(self, handle: PoolHandle, script: str) -> None:
        """Run a multi-statement script (migrations) without a client-side timeout."""
        self._check_handle(handle)
        try:
            await self.driver.execute_script(handle.connection, script)
        except Exception as e:
            translated = self._translate(e)
            if translated is e:
                raise
            raise translated from e

    async def begin(self, handle: PoolHandle) -> Any:
        self._check_handle(handle)
        return await self._bounded(handle, self.driver.begin(handle.connection))

    async def commit(self, handle: PoolHandle, transaction: Any) -> None:
        self._check_handle(handle)
        await self._bounded(handle, self.driver.commit(handle.connection, transaction))

    async def rollback(self, handle: PoolHandle, transaction: Any) -> None:
        self._check_handle(handle)
        await self._bounded(handle, self.driver.rollback(handle.connection, transaction))

    @beartype
    async def ping(self, timeout: float) -> None:
        """Run the probe query on a pooled connection."""
        async with asyncio.timeout(timeout):
            async with self.connection() as handle:
                await self.raw_query(handle, PROBE_QUERY)

    @beartype
    def status(self) -> PoolStatus:
        """Current pool counts."""
        params = self.descriptor.connection_params
        in_use = len(self._in_use)
        native_size = self.driver.pool_size(self._native) if self._native is not None else 0
        total = max(native_size, in_use)
        return PoolStatus(
            total_count=total,
            idle_count=total - in_use,
            waiting_count=self._waiting,
            max_connections=params.max_connections,
            min_connections=params.min_connections,
        )

    @beartype
    async def close(self, timeout: float) -> None:
        """Close the native pool, terminating it if closing takes too long."""
        native, self._native = self._native, None
        if native is None:
            return
        if self._in_use:
            logger.warning(
                f"{self.backend}: closing pool with {len(self._in_use)} connection(s) in use"
            )
        try:
            async with asyncio.timeout(timeout):
                await self.driver.close_pool(native)
        except TimeoutError:
            logger.warning(f"{self.backend}: pool close exceeded {timeout}s; terminating")
            self.driver.terminate_pool(native)
        self._in_use.clear()
        logger.info(f"Closed {self.descriptor.engine} pool at {self.descriptor.safe_location}")
