# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Orchestrates the relational backend and the document store.

One :class:`ConnectionManager` instance owns every live handle. It is created
by the process entry point and passed to collaborators; there is no module
level singleton. Each backend moves through::

    uninitialized -> connecting -> connected | unreachable
    connected --failed probe--> degraded --failures over budget--> unreachable
    degraded | unreachable --successful probe or reconnect--> connected

All writes to a backend's :class:`ConnectionState` happen under that
backend's ``asyncio.Lock`` or from the event loop without an intervening
suspension point.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from pathlib import Path
from typing import Any, TypeVar

from attrs import define, field
from beartype import beartype

from polystore.models.backend import (
    ENGINE_NAMES,
    BackendDescriptor,
    BackendKind,
    BackendStatus,
    ConnectionState,
)
from polystore.models.query import QueryRequest, QueryResult
from polystore.schemas.health import (
    BackendHealth,
    BackendReport,
    ConnectionSnapshot,
    HealthReport,
    InitializeResult,
    PoolStatus,
    StateTransition,
)

from .config import Settings, get_settings
from .document_store import DocumentStore
from .drivers import AiomysqlDriver, AsyncpgDriver
from .errors import BackendUnavailableError, ConfigError
from .health_monitor import HealthMonitor
from .pool import PooledConnection
from .query_adapter import QueryAdapter, adapter_for
from .resolver import ConfigResolver
from .result_types import Err, Ok, Result
from .transaction import TransactionCoordinator, TransactionHandle
from .types import BackendHandle

logger = logging.getLogger(__name__)

T = TypeVar("T")

HandleFactory = Callable[[BackendDescriptor, Settings], BackendHandle]
Subscriber = Callable[[StateTransition], None]


def _primary_pool(descriptor: BackendDescriptor, settings: Settings) -> PooledConnection:
    return PooledConnection(
        descriptor,
        AsyncpgDriver(application_name=settings.application_name),
        slow_query_threshold_ms=settings.slow_query_threshold_ms,
    )


def _secondary_pool(descriptor: BackendDescriptor, settings: Settings) -> PooledConnection:
    return PooledConnection(
        descriptor,
        AiomysqlDriver(application_name=settings.application_name),
        slow_query_threshold_ms=settings.slow_query_threshold_ms,
    )


def _document_store(descriptor: BackendDescriptor, settings: Settings) -> DocumentStore:
    return DocumentStore(descriptor, application_name=settings.application_name)


DEFAULT_STRATEGIES: dict[BackendKind, HandleFactory] = {
    BackendKind.PRIMARY: _primary_pool,
    BackendKind.SECONDARY: _secondary_pool,
    BackendKind.DOCUMENT: _document_store,
}


@define
class _BackendSlot:
    """Everything the manager tracks for one backend."""

    state: ConnectionState = field(factory=ConnectionState)
    lock: asyncio.Lock = field(factory=asyncio.Lock)
    descriptor: BackendDescriptor | None = field(default=None)


class ConnectionManager:
    """Lifecycle, routing and health for every managed backend."""

    @beartype
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        resolver: ConfigResolver | None = None,
        strategies: Mapping[BackendKind, HandleFactory] | None = None,
        health_monitor: HealthMonitor | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._resolver = resolver or ConfigResolver.from_environment()
        self._strategies: dict[BackendKind, HandleFactory] = {
            **DEFAULT_STRATEGIES,
            **(strategies or {}),
        }
        self._monitor = health_monitor or HealthMonitor.from_settings(self._settings)

        self._relational_kind = self._settings.relational_kind
        kinds = [self._relational_kind]
        if self._settings.document_store_enabled:
            kinds.append(BackendKind.DOCUMENT)
        self._kinds: tuple[BackendKind, ...] = tuple(kinds)

        self._slots: dict[BackendKind, _BackendSlot] = {kind: _BackendSlot() for kind in kinds}
        self._acquisition_order: list[BackendKind] = []
        self._adapter: QueryAdapter | None = None
        self._subscribers: list[Subscriber] = []
        self._monitor_task: asyncio.Task[None] | None = None
        self._reconnect_tasks: dict[BackendKind, asyncio.Task[bool]] = {}

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def enabled_kinds(self) -> tuple[BackendKind, ...]:
        """Backends this manager is responsible for."""
        return self._kinds

    @property
    def relational_kind(self) -> BackendKind:
        return self._relational_kind

    @property
    def database_type(self) -> str:
        """Active relational engine name (``postgresql`` or ``mysql``)."""
        return ENGINE_NAMES[self._relational_kind]

    @beartype
    def status_of(self, kind: BackendKind) -> BackendStatus:
        """Lifecycle status of one backend."""
        slot = self._slots.get(kind)
        return slot.state.status if slot else BackendStatus.UNINITIALIZED

    @beartype
    def descriptor(self, kind: BackendKind) -> BackendDescriptor | None:
        """Resolved descriptor, once the backend has been initialized."""
        slot = self._slots.get(kind)
        return slot.descriptor if slot else None

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    @beartype
    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a state-transition callback; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(
        self,
        kind: BackendKind,
        previous: BackendStatus,
        current: BackendStatus,
        error: str | None = None,
    ) -> None:
        if previous == current:
            return
        logger.info(f"{kind.value}: {previous.value} -> {current.value}")
        transition = StateTransition(kind=kind, previous=previous, current=current, error=error)
        for callback in list(self._subscribers):
            try:
                callback(transition)
            except Exception:
                logger.exception(f"State transition subscriber failed for {kind.value}")

    def _set_status(
        self, kind: BackendKind, status: BackendStatus, error: str | None = None
    ) -> None:
        state = self._slots[kind].state
        previous = state.status
        state.status = status
        if error is not None:
            state.last_error = error
        self._publish(kind, previous, status, error)

    # ------------------------------------------------------------------
    # Initialization and reconnection
    # ------------------------------------------------------------------

    async def _close_quietly(self, kind: BackendKind, handle: BackendHandle) -> None:
        try:
            await handle.close(self._settings.shutdown_timeout_seconds)
        except Exception as e:
            logger.error(f"Error closing {kind.value} handle: {e}")

    async def _connect(self, kind: BackendKind, slot: _BackendSlot) -> Result[BackendHandle, str]:
        """Resolve, open and verify one backend. Caller holds ``slot.lock``."""
        try:
            descriptor = self._resolver.resolve(kind)
            self._resolver.validate(descriptor)
        except ConfigError as e:
            logger.error(f"Invalid configuration for {kind.value}: {e}")
            self._set_status(kind, BackendStatus.UNREACHABLE, str(e))
            return Err(str(e))

        slot.descriptor = descriptor
        self._set_status(kind, BackendStatus.CONNECTING)
        try:
            return await self._open_with_retries(kind, slot, descriptor)
        except asyncio.CancelledError:
            # No handle is held; the next unreachable probe schedules a reconnect
            self._set_status(kind, BackendStatus.UNREACHABLE, "connection attempt cancelled")
            raise

    async def _open_with_retries(
        self, kind: BackendKind, slot: _BackendSlot, descriptor: BackendDescriptor
    ) -> Result[BackendHandle, str]:
        attempts = self._settings.connect_retry_attempts
        for attempt in range(1, attempts + 1):
            slot.state.attempt_count += 1
            handle = self._strategies[kind](descriptor, self._settings)
            try:
                await handle.open()
                health = await self._monitor.probe(kind, handle)
                if not health.is_reachable:
                    raise BackendUnavailableError(health.message, backend=kind.value)
            except Exception as e:
                slot.state.last_error = str(e)
                logger.warning(
                    f"{descriptor.engine} connection attempt {attempt}/{attempts} "
                    f"to {descriptor.safe_location} failed: {e}"
                )
                await self._close_quietly(kind, handle)
                if attempt < attempts:
                    await asyncio.sleep(self._settings.retry_delay(attempt))
                continue
            except BaseException:
                await self._close_quietly(kind, handle)
                raise

            previous = slot.state.status
            slot.state.mark_connected(handle)
            if kind in self._acquisition_order:
                self._acquisition_order.remove(kind)
            self._acquisition_order.append(kind)
            if kind.is_relational and descriptor.placeholder_style is not None:
                self._adapter = adapter_for(descriptor.placeholder_style, backend=kind.value)
            logger.info(
                f"Connected to {descriptor.engine} at {descriptor.safe_location} "
                f"(attempt {attempt}/{attempts})"
            )
            self._publish(kind, previous, BackendStatus.CONNECTED)
            return Ok(handle)

        error = slot.state.last_error or "connection failed"
        logger.error(
            f"Failed to connect to {descriptor.engine} at {descriptor.safe_location} "
            f"after {attempts} attempts: {error}"
        )
        self._set_status(kind, BackendStatus.UNREACHABLE, error)
        return Err(error)

    async def _initialize_backend(self, kind: BackendKind) -> Result[BackendHandle, str]:
        slot = self._slots[kind]
        async with slot.lock:
            if slot.state.handle is not None:
                logger.debug(f"{kind.value} already initialized")
                return Ok(slot.state.handle)
            return await self._connect(kind, slot)

    @beartype
    async def initialize(self) -> InitializeResult:
        """Connect every enabled backend concurrently.

        Safe to call repeatedly: a backend with a live handle is left alone.
        """
        outcomes = await asyncio.gather(
            *(self._initialize_backend(kind) for kind in self._kinds)
        )
        results = dict(zip(self._kinds, outcomes, strict=True))

        relational = results[self._relational_kind].is_ok()
        document_result = results.get(BackendKind.DOCUMENT)
        document = document_result is not None and document_result.is_ok()
        result = InitializeResult(
            relational=relational, document=document, overall=relational or document
        )
        if result.overall:
            logger.info(
                f"Initialization complete: {self.database_type}={relational}, "
                f"mongodb={document}"
            )
        else:
            logger.error("Initialization failed: no backend is reachable")
        return result

    @beartype
    async def reconnect(self, kind: BackendKind) -> bool:
        """Replace the backend's handle with a fresh one.

        Skipped (returns ``False``) when another initialize or reconnect for
        the same backend is already running.
        """
        slot = self._slots.get(kind)
        if slot is None:
            raise BackendUnavailableError("backend is not enabled", backend=kind.value)
        if slot.lock.locked():
            logger.info(f"{kind.value}: reconnect already in progress; skipping")
            return False
        async with slot.lock:
            old = slot.state.handle
            if old is not None:
                slot.state.handle = None
                await self._close_quietly(kind, old)
            logger.info(f"Reconnecting {kind.value}")
            result = await self._connect(kind, slot)
            return result.is_ok()

    def _schedule_reconnect(self, kind: BackendKind) -> None:
        task = self._reconnect_tasks.get(kind)
        if task is not None and not task.done():
            logger.debug(f"{kind.value}: reconnect task already scheduled")
            return
        self._reconnect_tasks[kind] = asyncio.create_task(
            self.reconnect(kind), name=f"polystore-reconnect-{kind.value}"
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def _apply_probe(self, kind: BackendKind, health: BackendHealth) -> None:
        """Advance the state machine for one probe outcome."""
        slot = self._slots[kind]
        state = slot.state
        if state.status in (BackendStatus.UNINITIALIZED, BackendStatus.CONNECTING):
            return

        if health.status == "healthy":
            if state.status != BackendStatus.CONNECTED:
                state.attempt_count = 0
            state.failed_probes = 0
            self._set_status(kind, BackendStatus.CONNECTED)
            return

        if health.status == "degraded":
            # Slow but answering; not counted as a failure
            self._set_status(kind, BackendStatus.DEGRADED, health.message)
            return

        state.failed_probes += 1
        state.last_error = health.message
        if state.status == BackendStatus.CONNECTED:
            self._set_status(kind, BackendStatus.DEGRADED, health.message)
            return
        if (
            state.status == BackendStatus.DEGRADED
            and state.failed_probes <= self._settings.reconnect_failure_budget
        ):
            return
        self._set_status(kind, BackendStatus.UNREACHABLE, health.message)
        self._schedule_reconnect(kind)

    async def _check_backend(self, kind: BackendKind) -> BackendReport:
        slot = self._slots[kind]
        health = await self._monitor.probe(kind, slot.state.handle)
        self._apply_probe(kind, health)
        return BackendReport(
            kind=kind,
            engine=ENGINE_NAMES[kind],
            status=health.status,
            connection_state=slot.state.status,
            latency_ms=health.latency_ms,
            message=health.message,
            attempt_count=slot.state.attempt_count,
        )

    @beartype
    async def health_check(self) -> HealthReport:
        """Probe every enabled backend. Never raises."""
        reports = await asyncio.gather(*(self._check_backend(kind) for kind in self._kinds))
        statuses = [report.status for report in reports]
        if all(status == "healthy" for status in statuses):
            overall = "healthy"
        elif all(status == "unreachable" for status in statuses):
            overall = "unhealthy"
        else:
            overall = "degraded"
        return HealthReport(
            status=overall,
            database=self.database_type,
            pool_status=self._pool_status(self._relational_kind),
            per_backend=tuple(reports),
        )

    @beartype
    async def test_connection(self) -> bool:
        """Probe the relational backend once."""
        kind = self._relational_kind
        health = await self._monitor.probe(kind, self._slots[kind].state.handle)
        if health.is_reachable:
            logger.info(f"{self.database_type} connection test successful")
        else:
            logger.error(f"{self.database_type} connection test failed: {health.message}")
        return health.is_reachable

    def _pool_status(self, kind: BackendKind) -> PoolStatus:
        slot = self._slots[kind]
        handle = slot.state.handle
        if handle is not None:
            return handle.status()
        if slot.descriptor is not None:
            params = slot.descriptor.connection_params
            return PoolStatus(
                max_connections=params.max_connections,
                min_connections=params.min_connections,
            )
        return PoolStatus()

    @beartype
    def get_pool_status(self) -> dict[BackendKind, PoolStatus]:
        """Pool counts for every enabled backend."""
        return {kind: self._pool_status(kind) for kind in self._kinds}

    @beartype
    def connection_status(self) -> dict[BackendKind, ConnectionSnapshot]:
        """Status, attempts, last error and handle availability per backend."""
        return {
            kind: ConnectionSnapshot(
                kind=kind,
                status=slot.state.status,
                attempt_count=slot.state.attempt_count,
                last_error=slot.state.last_error,
                handle_available=slot.state.handle is not None,
            )
            for kind, slot in self._slots.items()
        }

    # ------------------------------------------------------------------
    # Background monitoring
    # ------------------------------------------------------------------

    async def _monitor_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                report = await self.health_check()
            except Exception:
                logger.exception("Background health check failed")
                continue
            if report.status != "healthy":
                logger.warning(f"Backend health is {report.status}")

    @beartype
    def start_monitoring(self, interval_seconds: float = 30.0) -> None:
        """Run ``health_check`` periodically until stopped or shut down."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._monitor_task = asyncio.create_task(
            self._monitor_loop(interval_seconds), name="polystore-health-monitor"
        )
        logger.info(f"Health monitoring started (every {interval_seconds}s)")

    @beartype
    async def stop_monitoring(self) -> None:
        """Cancel the background monitor and wait for it to finish."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Health monitoring stopped")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    @beartype
    async def shutdown(self) -> None:
        """Stop monitoring and close every handle in reverse acquisition order.

        Close errors are logged and never raised.
        """
        await self.stop_monitoring()

        tasks = [task for task in self._reconnect_tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reconnect_tasks.clear()

        for kind in reversed(self._acquisition_order):
            slot = self._slots[kind]
            async with slot.lock:
                handle = slot.state.handle
                slot.state.handle = None
                if handle is not None:
                    logger.info(f"Closing {kind.value}")
                    await self._close_quietly(kind, handle)
        self._acquisition_order.clear()
        self._adapter = None

        for kind, slot in self._slots.items():
            previous = slot.state.status
            slot.state.reset()
            self._publish(kind, previous, BackendStatus.UNINITIALIZED)
        logger.info("All backend connections closed")

    # ------------------------------------------------------------------
    # Relational operations
    # ------------------------------------------------------------------

    def _relational(self) -> tuple[PooledConnection, QueryAdapter]:
        handle = self._slots[self._relational_kind].state.handle
        if handle is None or self._adapter is None:
            raise BackendUnavailableError(
                f"{self.database_type} is not connected",
                backend=self._relational_kind.value,
            )
        return handle, self._adapter

    @beartype
    async def query(self, text: str, params: Sequence[Any] | None = None) -> QueryResult:
        """Run one query on the relational backend with ``?`` placeholders."""
        pool, adapter = self._relational()
        native_query, native_params = adapter.translate(QueryRequest(text=text, params=params))
        async with pool.connection() as handle:
            native = await pool.raw_query(handle, native_query, native_params)
        return adapter.normalize(native)

    @beartype
    async def transaction(self, fn: Callable[[TransactionHandle], Awaitable[T]]) -> T:
        """Run ``fn`` inside one relational transaction."""
        pool, adapter = self._relational()
        return await TransactionCoordinator(pool, adapter).run(fn)

    @beartype
    async def run_migration(self, script: str) -> None:
        """Execute a migration script inside a transaction."""

        async def apply(tx: TransactionHandle) -> None:
            await tx.execute_script(script)

        await self.transaction(apply)
        logger.info(f"Migration executed successfully on {self.database_type}")

    @beartype
    async def run_migration_file(self, path: str | Path) -> None:
        """Read a migration script from disk and execute it."""
        script = Path(path).read_text(encoding="utf-8")
        logger.info(f"Running migration {Path(path).name}")
        await self.run_migration(script)

    # ------------------------------------------------------------------
    # Document store
    # ------------------------------------------------------------------

    @beartype
    def document_database(self) -> Any:
        """The live document database handle (``AsyncIOMotorDatabase``)."""
        slot = self._slots.get(BackendKind.DOCUMENT)
        if slot is None:
            raise BackendUnavailableError(
                "document store is disabled", backend=BackendKind.DOCUMENT.value
            )
        handle = slot.state.handle
        if handle is None:
            raise BackendUnavailableError(
                "document store is not connected", backend=BackendKind.DOCUMENT.value
            )
        return handle.database
