# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Backend identity, descriptors and per-backend connection state."""

from enum import Enum
from typing import Any

from attrs import define, field, frozen
from beartype import beartype


class BackendKind(str, Enum):
    """The three data stores the connection layer can manage."""

    PRIMARY = "relational-primary"
    SECONDARY = "relational-secondary"
    DOCUMENT = "document"

    @property
    def is_relational(self) -> bool:
        """Check if the backend speaks SQL."""
        return self is not BackendKind.DOCUMENT


class PlaceholderStyle(str, Enum):
    """Positional parameter syntax of a relational engine."""

    NUMBERED = "numbered"  # $1, $2, ...
    POSITIONAL = "positional"  # ?


class BackendStatus(str, Enum):
    """Lifecycle status of one backend as tracked by the orchestrator."""

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"


ENGINE_NAMES: dict[BackendKind, str] = {
    BackendKind.PRIMARY: "postgresql",
    BackendKind.SECONDARY: "mysql",
    BackendKind.DOCUMENT: "mongodb",
}


@frozen
class ConnectionParams:
    """Immutable connection parameters for one backend."""

    host: str = field()
    port: int = field()
    user: str = field()
    password: str = field(repr=False)
    database: str = field()
    min_connections: int = field()
    max_connections: int = field()
    idle_timeout_ms: int = field()
    connection_timeout_ms: int = field()
    statement_timeout_ms: int = field()
    ssl: bool = field(default=False)
    dsn: str | None = field(default=None, repr=False)
    auth_source: str | None = field(default=None)

    @property
    def connection_timeout_seconds(self) -> float:
        """Acquire/connect timeout in seconds."""
        return self.connection_timeout_ms / 1000

    @property
    def statement_timeout_seconds(self) -> float:
        """Statement timeout in seconds."""
        return self.statement_timeout_ms / 1000

    @property
    def idle_timeout_seconds(self) -> float:
        """Idle connection lifetime in seconds."""
        return self.idle_timeout_ms / 1000


@frozen
class BackendDescriptor:
    """Resolved, immutable identity of one backend."""

    kind: BackendKind = field()
    connection_params: ConnectionParams = field()
    placeholder_style: PlaceholderStyle | None = field(default=None)

    @property
    def engine(self) -> str:
        """Engine name used in logs and health reports."""
        return ENGINE_NAMES[self.kind]

    @property
    @beartype
    def safe_location(self) -> str:
        """Host, port and database without credentials, for logs."""
        params = self.connection_params
        return f"{params.host}:{params.port}/{params.database}"


@define
class ConnectionState:
    """Mutable per-backend state, written only by the orchestrator."""

    status: BackendStatus = field(default=BackendStatus.UNINITIALIZED)
    attempt_count: int = field(default=0)
    handle: Any = field(default=None, repr=False)
    last_error: str | None = field(default=None)
    failed_probes: int = field(default=0)

    @beartype
    def mark_connected(self, handle: Any) -> None:
        """Install a live handle and reset failure counters."""
        self.handle = handle
        self.status = BackendStatus.CONNECTED
        self.attempt_count = 0
        self.failed_probes = 0
        self.last_error = None

    @beartype
    def reset(self) -> None:
        """Forget everything after shutdown."""
        self.status = BackendStatus.UNINITIALIZED
        self.attempt_count = 0
        self.handle = None
        self.last_error = None
        self.failed_probes = 0
