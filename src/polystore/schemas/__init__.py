"""Health, pool and lifecycle report schemas."""

from .health import (
    BackendHealth,
    BackendReport,
    ConnectionSnapshot,
    HealthReport,
    InitializeResult,
    PoolStatus,
    StateTransition,
)

__all__ = [
    "BackendHealth",
    "BackendReport",
    "ConnectionSnapshot",
    "HealthReport",
    "InitializeResult",
    "PoolStatus",
    "StateTransition",
]
