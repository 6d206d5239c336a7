"""Domain models for backend identity, connection state and queries."""

from .backend import (
    BackendDescriptor,
    BackendKind,
    BackendStatus,
    ConnectionParams,
    ConnectionState,
    PlaceholderStyle,
)
from .base import BaseModelConfig
from .query import FieldDescriptor, NativeResult, QueryRequest, QueryResult

__all__ = [
    # Backend identity
    "BackendDescriptor",
    "BackendKind",
    "BackendStatus",
    "ConnectionParams",
    "ConnectionState",
    "PlaceholderStyle",
    # Base models
    "BaseModelConfig",
    # Queries
    "FieldDescriptor",
    "NativeResult",
    "QueryRequest",
    "QueryResult",
]
