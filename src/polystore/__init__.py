# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""PolyStore - connection and health management for relational and document backends."""

__version__ = "0.1.0"

from .core.connection_manager import ConnectionManager
from .core.config import Settings, get_settings
from .core.errors import (
    BackendUnavailableError,
    ConfigError,
    DataStoreError,
    PoolTimeoutError,
    QueryError,
    QueryErrorKind,
    TransactionError,
)
from .models.backend import BackendKind, BackendStatus

__all__ = [
    "BackendKind",
    "BackendStatus",
    "BackendUnavailableError",
    "ConfigError",
    "ConnectionManager",
    "DataStoreError",
    "PoolTimeoutError",
    "QueryError",
    "QueryErrorKind",
    "Settings",
    "TransactionError",
    "get_settings",
]
