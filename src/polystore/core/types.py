# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Core lightweight protocol interfaces so that production drivers and test fakes both satisfy them.

These protocols are **runtime_checkable** so beartype ``isinstance`` checks
succeed against fakes as long as the required attributes exist. They cover
only the narrow surface the pool, the document store and the health monitor
need from a native client library.
"""

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from polystore.models.backend import BackendDescriptor, PlaceholderStyle
from polystore.models.query import NativeResult
from polystore.schemas.health import PoolStatus


@runtime_checkable
class RelationalDriver(Protocol):
    """Adapter over one relational client library's pool and connection API."""

    placeholder_style: PlaceholderStyle

    async def create_pool(self, descriptor: BackendDescriptor) -> Any: ...

    async def acquire(self, native_pool: Any) -> Any: ...

    async def release(self, native_pool: Any, conn: Any, *, discard: bool = False) -> None: ...

    async def execute(
        self, conn: Any, query: str, params: Sequence[Any] | None
    ) -> NativeResult: ...

    async def execute_script(self, conn: Any, script: str) -> None: ...

    async def begin(self, conn: Any) -> Any: ...

    async def commit(self, conn: Any, transaction: Any) -> None: ...

    async def rollback(self, conn: Any, transaction: Any) -> None: ...

    def pool_size(self, native_pool: Any) -> int: ...

    async def close_pool(self, native_pool: Any) -> None: ...

    def terminate_pool(self, native_pool: Any) -> None: ...

    def translate_error(self, exc: BaseException, backend: str) -> Exception: ...


@runtime_checkable
class Probeable(Protocol):
    """Anything the health monitor can ping."""

    async def ping(self, timeout: float) -> None: ...


@runtime_checkable
class BackendHandle(Probeable, Protocol):
    """A live, closable backend handle owned by the orchestrator."""

    async def open(self) -> None: ...

    async def close(self, timeout: float) -> None: ...

    def status(self) -> PoolStatus: ...
