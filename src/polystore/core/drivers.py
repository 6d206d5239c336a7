# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Relational driver adapters for asyncpg (primary) and aiomysql (secondary).

Each driver exposes the same narrow surface (see
:class:`polystore.core.types.RelationalDriver`) so that
:class:`polystore.core.pool.PooledConnection` never branches on the engine.
"""

import logging
import ssl
from collections.abc import Sequence
from typing import Any

import aiomysql
import asyncpg
from beartype import beartype
from pymysql.constants import CLIENT, FIELD_TYPE

from polystore.models.backend import BackendDescriptor, PlaceholderStyle
from polystore.models.query import FieldDescriptor, NativeResult

from .errors import BackendUnavailableError, DataStoreError, QueryError, QueryErrorKind

logger = logging.getLogger(__name__)

# MySQL client error codes for refused or lost connections
_MYSQL_CONNECTION_ERRORS = frozenset({2002, 2003, 2006, 2013, 2055})
# ER_QUERY_TIMEOUT (max_execution_time exceeded) and ER_QUERY_INTERRUPTED
_MYSQL_TIMEOUT_ERRORS = frozenset({3024, 1317})

_MYSQL_TYPE_NAMES: dict[int, str] = {
    value: name.lower()
    for name, value in vars(FIELD_TYPE).items()
    if name.isupper() and isinstance(value, int)
}


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class AsyncpgDriver:
    """PostgreSQL through asyncpg; numbered ``$n`` placeholders."""

    placeholder_style = PlaceholderStyle.NUMBERED

    @beartype
    def __init__(self, *, application_name: str = "polystore") -> None:
        self.application_name = application_name

    @beartype
    async def create_pool(self, descriptor: BackendDescriptor) -> Any:
        """Create the asyncpg pool; ``min_connections`` are opened eagerly."""
        params = descriptor.connection_params
        server_settings = {"application_name": self.application_name}
        if params.statement_timeout_ms:
            server_settings["statement_timeout"] = str(params.statement_timeout_ms)

        options: dict[str, Any] = {
            "min_size": params.min_connections,
            "max_size": params.max_connections,
            "max_inactive_connection_lifetime": params.idle_timeout_seconds,
            "command_timeout": params.statement_timeout_seconds or None,
            "timeout": params.connection_timeout_seconds,
            "server_settings": server_settings,
        }
        if params.ssl:
            options["ssl"] = "require"

        if params.dsn:
            return await asyncpg.create_pool(params.dsn, **options)
        return await asyncpg.create_pool(
            host=params.host,
            port=params.port,
            user=params.user,
            password=params.password or None,
            database=params.database,
            **options,
        )

    async def acquire(self, native_pool: Any) -> Any:
        return await native_pool.acquire()

    async def release(self, native_pool: Any, conn: Any, *, discard: bool = False) -> None:
        if discard:
            logger.debug("Terminating discarded asyncpg connection")
            conn.terminate()
        await native_pool.release(conn)

    @beartype
    async def execute(
        self, conn: Any, query: str, params: Sequence[Any] | None
    ) -> NativeResult:
        """Prepare, run and describe one statement."""
        statement = await conn.prepare(query)
        records = await statement.fetch(*(params or ()))
        columns = tuple(
            FieldDescriptor(name=attribute.name, data_type=attribute.type.name)
            for attribute in statement.get_attributes()
        )
        return NativeResult(
            columns=columns,
            records=[tuple(record) for record in records],
            status=statement.get_statusmsg(),
        )

    async def execute_script(self, conn: Any, script: str) -> None:
        await conn.execute(script)

    async def begin(self, conn: Any) -> Any:
        transaction = conn.transaction()
        await transaction.start()
        return transaction

    async def commit(self, conn: Any, transaction: Any) -> None:
        await transaction.commit()

    async def rollback(self, conn: Any, transaction: Any) -> None:
        await transaction.rollback()

    def pool_size(self, native_pool: Any) -> int:
        return native_pool.get_size()

    async def close_pool(self, native_pool: Any) -> None:
        await native_pool.close()

    def terminate_pool(self, native_pool: Any) -> None:
        native_pool.terminate()

    @beartype
    def translate_error(self, exc: BaseException, backend: str) -> Exception:
        """Map asyncpg exceptions onto the connection-layer taxonomy."""
        if isinstance(exc, DataStoreError):
            return exc
        if isinstance(exc, asyncpg.exceptions.IntegrityConstraintViolationError):
            return QueryError(
                _describe(exc), kind=QueryErrorKind.CONSTRAINT_VIOLATION, backend=backend
            )
        if isinstance(exc, asyncpg.exceptions.PostgresSyntaxError):
            return QueryError(_describe(exc), kind=QueryErrorKind.SYNTAX, backend=backend)
        if isinstance(exc, asyncpg.exceptions.QueryCanceledError):
            return QueryError(
                _describe(exc), kind=QueryErrorKind.STATEMENT_TIMEOUT, backend=backend
            )
        if isinstance(
            exc,
            (
                asyncpg.exceptions.PostgresConnectionError,
                asyncpg.exceptions.ConnectionDoesNotExistError,
                asyncpg.exceptions.CannotConnectNowError,
                asyncpg.exceptions.TooManyConnectionsError,
                ConnectionError,
                OSError,
            ),
        ):
            return BackendUnavailableError(_describe(exc), backend=backend)
        if isinstance(exc, (asyncpg.exceptions.PostgresError, asyncpg.exceptions.InterfaceError)):
            return QueryError(_describe(exc), kind=QueryErrorKind.EXECUTION, backend=backend)
        if isinstance(exc, Exception):
            return exc
        return QueryError(_describe(exc), kind=QueryErrorKind.EXECUTION, backend=backend)


class AiomysqlDriver:
    """MySQL through aiomysql; positional ``%s`` placeholders on the wire."""

    placeholder_style = PlaceholderStyle.POSITIONAL

    @beartype
    def __init__(self, *, application_name: str = "polystore") -> None:
        self.application_name = application_name

    @beartype
    async def create_pool(self, descriptor: BackendDescriptor) -> Any:
        """Create the aiomysql pool with autocommit on and multi-statements enabled."""
        params = descriptor.connection_params
        init_command = None
        if params.statement_timeout_ms:
            init_command = f"SET SESSION max_execution_time={params.statement_timeout_ms}"

        return await aiomysql.create_pool(
            host=params.host,
            port=params.port,
            user=params.user,
            password=params.password,
            db=params.database,
            minsize=params.min_connections,
            maxsize=params.max_connections,
            pool_recycle=int(params.idle_timeout_seconds) or -1,
            connect_timeout=params.connection_timeout_seconds,
            autocommit=True,
            init_command=init_command,
            client_flag=CLIENT.MULTI_STATEMENTS,
            program_name=self.application_name,
            ssl=ssl.create_default_context() if params.ssl else None,
        )

    async def acquire(self, native_pool: Any) -> Any:
        return await native_pool.acquire()

    async def release(self, native_pool: Any, conn: Any, *, discard: bool = False) -> None:
        if discard:
            logger.debug("Closing discarded aiomysql connection")
            conn.close()
        # Pool.release is not a coroutine in aiomysql
        native_pool.release(conn)

    @beartype
    async def execute(
        self, conn: Any, query: str, params: Sequence[Any] | None
    ) -> NativeResult:
        """Run one statement and read its rows or affected count."""
        async with conn.cursor() as cursor:
            await cursor.execute(query, tuple(params) if params else None)
            if not cursor.description:
                return NativeResult(status=cursor.rowcount)
            columns = tuple(
                FieldDescriptor(
                    name=column[0], data_type=_MYSQL_TYPE_NAMES.get(column[1])
                )
                for column in cursor.description
            )
            records = await cursor.fetchall()
            return NativeResult(columns=columns, records=list(records), status=cursor.rowcount)

    async def execute_script(self, conn: Any, script: str) -> None:
        async with conn.cursor() as cursor:
            await cursor.execute(script)
            # Drain every result set so later statements surface their errors
            while await cursor.nextset():
                pass

    async def begin(self, conn: Any) -> Any:
        await conn.begin()
        return None

    async def commit(self, conn: Any, transaction: Any) -> None:
        await conn.commit()

    async def rollback(self, conn: Any, transaction: Any) -> None:
        await conn.rollback()

    def pool_size(self, native_pool: Any) -> int:
        return native_pool.size

    async def close_pool(self, native_pool: Any) -> None:
        native_pool.close()
        await native_pool.wait_closed()

    def terminate_pool(self, native_pool: Any) -> None:
        native_pool.terminate()

    @beartype
    def translate_error(self, exc: BaseException, backend: str) -> Exception:
        """Map PyMySQL/aiomysql exceptions onto the connection-layer taxonomy."""
        if isinstance(exc, DataStoreError):
            return exc
        code = exc.args[0] if exc.args and isinstance(exc.args[0], int) else None
        if isinstance(exc, aiomysql.IntegrityError):
            return QueryError(
                _describe(exc), kind=QueryErrorKind.CONSTRAINT_VIOLATION, backend=backend
            )
        if isinstance(exc, aiomysql.ProgrammingError):
            return QueryError(_describe(exc), kind=QueryErrorKind.SYNTAX, backend=backend)
        if code in _MYSQL_TIMEOUT_ERRORS:
            return QueryError(
                _describe(exc), kind=QueryErrorKind.STATEMENT_TIMEOUT, backend=backend
            )
        if code in _MYSQL_CONNECTION_ERRORS or isinstance(
            exc, (aiomysql.InterfaceError, ConnectionError, OSError)
        ):
            return BackendUnavailableError(_describe(exc), backend=backend)
        if isinstance(exc, aiomysql.Error):
            return QueryError(_describe(exc), kind=QueryErrorKind.EXECUTION, backend=backend)
        if isinstance(exc, Exception):
            return exc
        return QueryError(_describe(exc), kind=QueryErrorKind.EXECUTION, backend=backend)
