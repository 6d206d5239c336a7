# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""MongoDB client handle built on motor.

motor keeps its own connection pool; pool counts are collected through a
pymongo ``ConnectionPoolListener`` because the client does not expose them.
"""

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Any

from beartype import beartype
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import monitoring
from pymongo.errors import PyMongoError

from polystore.models.backend import BackendDescriptor
from polystore.schemas.health import PoolStatus

from .errors import BackendUnavailableError

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]


class PoolEventCounter(monitoring.ConnectionPoolListener):
    """Counts open, checked-out and waiting connections from pool events.

    pymongo publishes these events from its own threads, so counters are
    guarded by a lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.open_connections = 0
        self.checked_out = 0
        self.waiting = 0

    def _adjust(self, **deltas: int) -> None:
        with self._lock:
            for name, delta in deltas.items():
                setattr(self, name, max(getattr(self, name) + delta, 0))

    def snapshot(self) -> tuple[int, int, int]:
        """``(open, checked_out, waiting)``."""
        with self._lock:
            return self.open_connections, self.checked_out, self.waiting

    def pool_created(self, event: Any) -> None:
        pass

    def pool_ready(self, event: Any) -> None:
        pass

    def pool_cleared(self, event: Any) -> None:
        pass

    def pool_closed(self, event: Any) -> None:
        with self._lock:
            self.open_connections = 0
            self.checked_out = 0
            self.waiting = 0

    def connection_created(self, event: Any) -> None:
        self._adjust(open_connections=1)

    def connection_ready(self, event: Any) -> None:
        pass

    def connection_closed(self, event: Any) -> None:
        self._adjust(open_connections=-1)

    def connection_check_out_started(self, event: Any) -> None:
        self._adjust(waiting=1)

    def connection_check_out_failed(self, event: Any) -> None:
        self._adjust(waiting=-1)

    def connection_checked_out(self, event: Any) -> None:
        self._adjust(waiting=-1, checked_out=1)

    def connection_checked_in(self, event: Any) -> None:
        self._adjust(checked_out=-1)


class DocumentStore:
    """Lifecycle and probing for the document store client."""

    @beartype
    def __init__(
        self,
        descriptor: BackendDescriptor,
        *,
        application_name: str = "polystore",
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.application_name = application_name
        self._client_factory = client_factory or AsyncIOMotorClient
        self._client: Any = None
        self.pool_events = PoolEventCounter()

    @property
    def backend(self) -> str:
        return self.descriptor.kind.value

    def _client_options(self) -> dict[str, Any]:
        params = self.descriptor.connection_params
        options: dict[str, Any] = {
            "maxPoolSize": params.max_connections,
            "minPoolSize": params.min_connections,
            "maxIdleTimeMS": params.idle_timeout_ms or None,
            "serverSelectionTimeoutMS": params.connection_timeout_ms,
            "connectTimeoutMS": params.connection_timeout_ms,
            "socketTimeoutMS": params.statement_timeout_ms or None,
            "appname": self.application_name,
            "event_listeners": [self.pool_events],
        }
        if params.ssl:
            options["tls"] = True
        if params.auth_source:
            options["authSource"] = params.auth_source
        if params.dsn is None:
            options["host"] = params.host
            options["port"] = params.port
            if params.user:
                options["username"] = params.user
                options["password"] = params.password
        return options

    @beartype
    async def open(self) -> None:
        """Create the client and confirm the server answers."""
        if self._client is not None:
            return
        params = self.descriptor.connection_params
        logger.info(f"Opening mongodb client for {self.descriptor.safe_location}")
        options = self._client_options()
        try:
            if params.dsn is not None:
                self._client = self._client_factory(params.dsn, **options)
            else:
                self._client = self._client_factory(**options)
        except (PyMongoError, ValueError, TypeError) as e:
            raise BackendUnavailableError(
                f"invalid document store client options: {e}", backend=self.backend
            ) from e
        # motor connects lazily; a ping forces server selection
        await self.ping(params.connection_timeout_seconds)

    @property
    def client(self) -> Any:
        if self._client is None:
            raise BackendUnavailableError("document store is not connected", backend=self.backend)
        return self._client

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """The configured database on the live client."""
        return self.client[self.descriptor.connection_params.database]

    @beartype
    async def ping(self, timeout: float) -> None:
        """Run the ``ping`` admin command."""
        try:
            async with asyncio.timeout(timeout):
                await self.database.command("ping")
        except PyMongoError as e:
            raise BackendUnavailableError(f"{type(e).__name__}: {e}", backend=self.backend) from e

    @beartype
    def status(self) -> PoolStatus:
        """Pool counts collected from driver events."""
        params = self.descriptor.connection_params
        total, in_use, waiting = self.pool_events.snapshot()
        total = max(total, in_use)
        return PoolStatus(
            total_count=total,
            idle_count=total - in_use,
            waiting_count=waiting,
            max_connections=params.max_connections,
            min_connections=params.min_connections,
        )

    @beartype
    async def close(self, timeout: float) -> None:
        """Close the client. motor's ``close`` is synchronous and bounded."""
        client, self._client = self._client, None
        if client is None:
            return
        client.close()
        logger.info(f"Closed mongodb client for {self.descriptor.safe_location}")
