# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Core infrastructure: configuration, pooling, transactions and health."""

from .config import get_settings
from .connection_manager import ConnectionManager
from .health_monitor import HealthMonitor
from .pool import PooledConnection
from .resolver import ConfigResolver
from .transaction import TransactionCoordinator

__all__ = [
    "ConfigResolver",
    "ConnectionManager",
    "HealthMonitor",
    "PooledConnection",
    "TransactionCoordinator",
    "get_settings",
]
