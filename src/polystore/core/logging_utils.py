# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Central logging utilities for the connection layer.

Key Features
------------
1. configure_logging(): idempotent initialization of the root logger.
2. get_logger(name): typed helper that always returns a configured logger.
3. redact_dsn(dsn): strip the password from a connection string before it
   reaches a log line.

Library modules use ``logging.getLogger(__name__)`` and never configure
handlers themselves; ``configure_logging`` is for process entry points.
"""

from __future__ import annotations

import logging
from typing import Final
from urllib.parse import urlsplit, urlunsplit

from beartype import beartype

__all__: Final = [
    "configure_logging",
    "get_logger",
    "redact_dsn",
]

_DEFAULT_LOG_FORMAT: Final = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_is_configured: bool = False


@beartype
def configure_logging(
    *, level: int = logging.INFO, fmt: str = _DEFAULT_LOG_FORMAT
) -> None:
    """Configure the root logger exactly once.

    Calling this function multiple times is safe – configuration will only
    be applied on the first invocation.
    """
    global _is_configured
    if _is_configured:
        return

    logging.basicConfig(level=level, format=fmt)
    _is_configured = True


@beartype
def get_logger(name: str | None = None, *, level: int | None = None) -> logging.Logger:
    """Return a module-scoped logger that is guaranteed to be configured."""
    configure_logging()
    logger = logging.getLogger(name or "polystore")
    if level is not None:
        logger.setLevel(level)
    return logger


@beartype
def redact_dsn(dsn: str) -> str:
    """Replace the password in a connection string with ``***``."""
    try:
        parts = urlsplit(dsn)
    except ValueError:
        return "<unparseable dsn>"
    if not parts.password:
        return dsn
    netloc = parts.netloc.rsplit("@", 1)
    credentials = netloc[0].split(":", 1)[0]
    return urlunsplit(parts._replace(netloc=f"{credentials}:***@{netloc[1]}"))
