# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Health, pool and lifecycle report schemas."""

from datetime import datetime, timezone

from pydantic import Field

from polystore.models.backend import BackendKind, BackendStatus
from polystore.models.base import BaseModelConfig


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackendHealth(BaseModelConfig):
    """Result of probing one backend."""

    kind: BackendKind = Field(..., description="Backend that was probed")
    status: str = Field(..., pattern=r"^(healthy|degraded|unreachable)$")
    latency_ms: float = Field(
        default=0.0, ge=0, description="Probe round-trip latency in milliseconds"
    )
    message: str = Field(default="", description="Status message")

    @property
    def is_reachable(self) -> bool:
        """Check if the probe reached the backend at all."""
        return self.status != "unreachable"


class PoolStatus(BaseModelConfig):
    """Snapshot of one backend's connection pool."""

    total_count: int = Field(default=0, ge=0, description="Open connections")
    idle_count: int = Field(default=0, ge=0, description="Open and not checked out")
    waiting_count: int = Field(default=0, ge=0, description="Callers queued for a slot")
    max_connections: int = Field(default=0, ge=0, description="Hard cap")
    min_connections: int = Field(default=0, ge=0, description="Kept warm")


class BackendReport(BaseModelConfig):
    """Per-backend entry of a health report."""

    kind: BackendKind = Field(..., description="Backend kind")
    engine: str = Field(..., min_length=1, description="Engine name")
    status: str = Field(..., pattern=r"^(healthy|degraded|unreachable)$")
    connection_state: BackendStatus = Field(..., description="Lifecycle status")
    latency_ms: float = Field(default=0.0, ge=0)
    message: str = Field(default="")
    attempt_count: int = Field(default=0, ge=0)


class HealthReport(BaseModelConfig):
    """Unified health report across every managed backend."""

    status: str = Field(..., pattern=r"^(healthy|degraded|unhealthy)$")
    database: str = Field(..., min_length=1, description="Active relational engine")
    timestamp: datetime = Field(default_factory=_utcnow)
    pool_status: PoolStatus = Field(..., description="Relational pool snapshot")
    per_backend: tuple[BackendReport, ...] = Field(default=())

    def backend(self, kind: BackendKind) -> BackendReport | None:
        """Look up the entry for one backend."""
        for entry in self.per_backend:
            if entry.kind == kind:
                return entry
        return None


class InitializeResult(BaseModelConfig):
    """Outcome of ``ConnectionManager.initialize()``."""

    relational: bool = Field(..., description="Relational backend connected")
    document: bool = Field(..., description="Document store connected")
    overall: bool = Field(..., description="At least one backend connected")


class ConnectionSnapshot(BaseModelConfig):
    """Point-in-time view of one backend's connection state."""

    kind: BackendKind
    status: BackendStatus
    attempt_count: int = Field(default=0, ge=0)
    last_error: str | None = Field(default=None)
    handle_available: bool = Field(default=False)


class StateTransition(BaseModelConfig):
    """Published to subscribers whenever a backend changes status."""

    kind: BackendKind
    previous: BackendStatus
    current: BackendStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    error: str | None = Field(default=None)


__all__ = [
    "BackendHealth",
    "BackendReport",
    "ConnectionSnapshot",
    "HealthReport",
    "InitializeResult",
    "PoolStatus",
    "StateTransition",
]
