# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Backend descriptor resolution from layered environment overrides.

Preference order for every field (first non-empty value wins):

1. Connection string - backend-specific (``POSTGRES_URL``, ``MYSQL_URL``,
   ``MONGODB_URI``), then the generic ``DATABASE_URL`` when its scheme matches
   the engine. A connection string supersedes the discrete
   host/port/user/password/database variables.
2. Backend-specific discrete variables (``POSTGRES_HOST``, ``MYSQL_PORT``, ...)
3. Generic relational variables (``DB_HOST``, ``DB_PORT``, ...)
4. Hard-coded defaults

The environment is snapshotted once; resolution never re-reads ``os.environ``.
"""

import logging
import os
from collections.abc import Mapping
from types import MappingProxyType
from urllib.parse import parse_qs, unquote, urlsplit

from attrs import frozen
from beartype import beartype

from polystore.models.backend import (
    BackendDescriptor,
    BackendKind,
    ConnectionParams,
    PlaceholderStyle,
)

from .errors import ConfigError
from .logging_utils import redact_dsn

logger = logging.getLogger(__name__)

_TRUTHY = frozenset({"1", "true", "yes", "on", "require", "required", "verify-full", "verify-ca"})
_FALSY = frozenset({"0", "false", "no", "off", "disable", "disabled"})


@frozen
class EnvLayer:
    """Environment variable names for one resolution layer, per field."""

    url: tuple[str, ...] = ()
    host: tuple[str, ...] = ()
    port: tuple[str, ...] = ()
    user: tuple[str, ...] = ()
    password: tuple[str, ...] = ()
    database: tuple[str, ...] = ()
    pool_min: tuple[str, ...] = ()
    pool_max: tuple[str, ...] = ()
    idle_timeout_ms: tuple[str, ...] = ()
    connect_timeout_ms: tuple[str, ...] = ()
    statement_timeout_ms: tuple[str, ...] = ()
    ssl: tuple[str, ...] = ()
    auth_source: tuple[str, ...] = ()


@frozen
class BackendDefaults:
    """Hard defaults used when no layer provides a value."""

    host: str
    port: int
    user: str
    database: str
    pool_min: int
    pool_max: int
    idle_timeout_ms: int
    connect_timeout_ms: int
    statement_timeout_ms: int
    url_schemes: tuple[str, ...]
    placeholder_style: PlaceholderStyle | None


GENERIC_RELATIONAL_LAYER = EnvLayer(
    url=("DATABASE_URL",),
    host=("DB_HOST",),
    port=("DB_PORT",),
    user=("DB_USER",),
    password=("DB_PASSWORD",),
    database=("DB_NAME",),
    pool_min=("DB_POOL_MIN",),
    pool_max=("DB_POOL_MAX",),
    idle_timeout_ms=("DB_IDLE_TIMEOUT_MS",),
    connect_timeout_ms=("DB_CONNECT_TIMEOUT_MS",),
    statement_timeout_ms=("DB_STATEMENT_TIMEOUT_MS",),
    ssl=("DB_SSL",),
)

BACKEND_LAYERS: dict[BackendKind, EnvLayer] = {
    BackendKind.PRIMARY: EnvLayer(
        url=("POSTGRES_URL",),
        host=("POSTGRES_HOST", "PGHOST"),
        port=("POSTGRES_PORT", "PGPORT"),
        user=("POSTGRES_USER", "PGUSER"),
        password=("POSTGRES_PASSWORD", "PGPASSWORD"),
        database=("POSTGRES_DATABASE", "POSTGRES_DB", "PGDATABASE"),
        pool_min=("POSTGRES_POOL_MIN",),
        pool_max=("POSTGRES_POOL_MAX",),
        idle_timeout_ms=("POSTGRES_IDLE_TIMEOUT_MS",),
        connect_timeout_ms=("POSTGRES_CONNECT_TIMEOUT_MS",),
        statement_timeout_ms=("POSTGRES_STATEMENT_TIMEOUT_MS",),
        ssl=("POSTGRES_SSL", "PGSSLMODE"),
    ),
    BackendKind.SECONDARY: EnvLayer(
        url=("MYSQL_URL",),
        host=("MYSQL_HOST",),
        port=("MYSQL_PORT",),
        user=("MYSQL_USER",),
        password=("MYSQL_PASSWORD",),
        database=("MYSQL_DATABASE",),
        pool_min=("MYSQL_POOL_MIN",),
        pool_max=("MYSQL_POOL_MAX",),
        idle_timeout_ms=("MYSQL_IDLE_TIMEOUT_MS",),
        connect_timeout_ms=("MYSQL_CONNECT_TIMEOUT_MS",),
        statement_timeout_ms=("MYSQL_STATEMENT_TIMEOUT_MS",),
        ssl=("MYSQL_SSL",),
    ),
    BackendKind.DOCUMENT: EnvLayer(
        url=("MONGODB_URI",),
        host=("MONGODB_HOST",),
        port=("MONGODB_PORT",),
        user=("MONGODB_USER", "MONGO_USER"),
        password=("MONGODB_PASSWORD", "MONGO_PASSWORD"),
        database=("MONGODB_DB_NAME",),
        pool_min=("MONGODB_POOL_MIN",),
        pool_max=("MONGODB_POOL_MAX",),
        idle_timeout_ms=("MONGODB_IDLE_TIMEOUT_MS",),
        connect_timeout_ms=("MONGODB_CONNECT_TIMEOUT_MS",),
        statement_timeout_ms=("MONGODB_SOCKET_TIMEOUT_MS",),
        ssl=("MONGODB_TLS",),
        auth_source=("MONGODB_AUTH_DB", "MONGO_AUTH_DB"),
    ),
}

BACKEND_DEFAULTS: dict[BackendKind, BackendDefaults] = {
    BackendKind.PRIMARY: BackendDefaults(
        host="localhost",
        port=5432,
        user="postgres",
        database="app",
        pool_min=2,
        pool_max=20,
        idle_timeout_ms=30000,
        connect_timeout_ms=2000,
        statement_timeout_ms=30000,
        url_schemes=("postgresql", "postgres"),
        placeholder_style=PlaceholderStyle.NUMBERED,
    ),
    BackendKind.SECONDARY: BackendDefaults(
        host="localhost",
        port=3306,
        user="root",
        database="app",
        pool_min=2,
        pool_max=20,
        idle_timeout_ms=30000,
        connect_timeout_ms=2000,
        statement_timeout_ms=30000,
        url_schemes=("mysql", "mariadb"),
        placeholder_style=PlaceholderStyle.POSITIONAL,
    ),
    BackendKind.DOCUMENT: BackendDefaults(
        host="localhost",
        port=27017,
        user="",
        database="app",
        pool_min=0,
        pool_max=10,
        idle_timeout_ms=30000,
        connect_timeout_ms=5000,
        statement_timeout_ms=15000,
        url_schemes=("mongodb", "mongodb+srv"),
        placeholder_style=None,
    ),
}


@beartype
def _scheme_base(url: str) -> str:
    """Scheme without a ``+driver`` suffix (``postgresql+asyncpg`` -> ``postgresql``)."""
    scheme = url.split("://", 1)[0].lower() if "://" in url else ""
    if scheme == "mongodb+srv":
        return scheme
    return scheme.split("+", 1)[0]


class ConfigResolver:
    """Resolves a complete :class:`BackendDescriptor` per backend kind.

    Pure over the environment snapshot given at construction; ``resolve``
    never raises and substitutes defaults for anything missing or invalid.
    ``validate`` is the separate, raising check used at startup.
    """

    @beartype
    def __init__(self, environment: Mapping[str, str]) -> None:
        self._env: Mapping[str, str] = MappingProxyType(dict(environment))

    @classmethod
    @beartype
    def from_environment(cls) -> "ConfigResolver":
        """Snapshot ``os.environ`` once."""
        return cls(os.environ)

    @property
    def environment(self) -> Mapping[str, str]:
        """Read-only environment snapshot."""
        return self._env

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def _layers(self, kind: BackendKind) -> tuple[EnvLayer, ...]:
        if kind.is_relational:
            return (BACKEND_LAYERS[kind], GENERIC_RELATIONAL_LAYER)
        return (BACKEND_LAYERS[kind],)

    def _lookup(self, kind: BackendKind, field_name: str) -> tuple[str, str] | None:
        """Return ``(env_name, value)`` for the first non-empty override."""
        for layer in self._layers(kind):
            for name in getattr(layer, field_name):
                value = self._env.get(name)
                if value is not None and value.strip() != "":
                    return name, value.strip()
        return None

    def _str(self, kind: BackendKind, field_name: str, default: str) -> str:
        found = self._lookup(kind, field_name)
        return found[1] if found else default

    def _int(self, kind: BackendKind, field_name: str, default: int) -> int:
        found = self._lookup(kind, field_name)
        if found is None:
            return default
        name, raw = found
        try:
            value = int(raw)
        except ValueError:
            logger.warning(
                f"Ignoring non-integer {name}={raw!r} for {kind.value}; using {default}"
            )
            return default
        if value < 0:
            logger.warning(f"Ignoring negative {name}={value} for {kind.value}; using {default}")
            return default
        return value

    def _bool(self, kind: BackendKind, field_name: str, default: bool) -> bool:
        found = self._lookup(kind, field_name)
        if found is None:
            return default
        name, raw = found
        lowered = raw.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        logger.warning(f"Ignoring non-boolean {name}={raw!r} for {kind.value}; using {default}")
        return default

    def _connection_string(self, kind: BackendKind) -> str | None:
        defaults = BACKEND_DEFAULTS[kind]
        for name in BACKEND_LAYERS[kind].url:
            value = self._env.get(name, "").strip()
            if value:
                return value
        if kind.is_relational:
            for name in GENERIC_RELATIONAL_LAYER.url:
                value = self._env.get(name, "").strip()
                if value and _scheme_base(value) in defaults.url_schemes:
                    return value
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @beartype
    def selected_relational_kind(self, db_type: str) -> BackendKind:
        """Map a normalized ``db_type`` onto a relational backend kind."""
        return BackendKind.SECONDARY if db_type == "secondary" else BackendKind.PRIMARY

    @beartype
    def resolve(self, kind: BackendKind) -> BackendDescriptor:
        """Build the descriptor for ``kind``. Never raises."""
        defaults = BACKEND_DEFAULTS[kind]

        pool_max = self._int(kind, "pool_max", defaults.pool_max) or defaults.pool_max
        pool_min = self._int(kind, "pool_min", defaults.pool_min)
        if pool_min > pool_max:
            logger.warning(
                f"{kind.value}: pool min {pool_min} exceeds max {pool_max}; clamping"
            )
            pool_min = pool_max

        tuning = {
            "min_connections": pool_min,
            "max_connections": pool_max,
            "idle_timeout_ms": self._int(kind, "idle_timeout_ms", defaults.idle_timeout_ms),
            "connection_timeout_ms": self._int(
                kind, "connect_timeout_ms", defaults.connect_timeout_ms
            ),
            "statement_timeout_ms": self._int(
                kind, "statement_timeout_ms", defaults.statement_timeout_ms
            ),
        }
        ssl = self._bool(kind, "ssl", False)
        auth_source = self._str(kind, "auth_source", "") or None

        dsn = self._connection_string(kind)
        if dsn is not None:
            logger.debug(f"{kind.value}: using connection string {redact_dsn(dsn)}")
            params = self._params_from_dsn(kind, dsn, ssl=ssl, auth_source=auth_source, **tuning)
        else:
            params = ConnectionParams(
                host=self._str(kind, "host", defaults.host),
                port=self._int(kind, "port", defaults.port),
                user=self._str(kind, "user", defaults.user),
                password=self._str(kind, "password", ""),
                database=self._str(kind, "database", defaults.database),
                ssl=ssl,
                auth_source=auth_source,
                **tuning,
            )

        return BackendDescriptor(
            kind=kind,
            connection_params=params,
            placeholder_style=defaults.placeholder_style,
        )

    def _params_from_dsn(
        self,
        kind: BackendKind,
        dsn: str,
        *,
        ssl: bool,
        auth_source: str | None,
        **tuning: int,
    ) -> ConnectionParams:
        """Parse a connection string; anything missing or unparseable takes defaults."""
        defaults = BACKEND_DEFAULTS[kind]
        host, port, user, password, database = (
            defaults.host,
            defaults.port,
            defaults.user,
            "",
            defaults.database,
        )
        try:
            parts = urlsplit(dsn)
            query = parse_qs(parts.query)
            # Multi-host MongoDB URIs have no single hostname/port
            if "," not in parts.netloc:
                host = parts.hostname or defaults.host
                port = parts.port or defaults.port
            user = unquote(parts.username) if parts.username else defaults.user
            password = unquote(parts.password) if parts.password else ""
            database = parts.path.lstrip("/") or defaults.database
            for key in ("sslmode", "ssl", "tls"):
                if key in query:
                    ssl = query[key][-1].lower() in _TRUTHY
            if "authSource" in query:
                auth_source = query["authSource"][-1]
        except ValueError as e:
            logger.warning(
                f"{kind.value}: could not fully parse connection string "
                f"{redact_dsn(dsn)}: {e}"
            )

        return ConnectionParams(
            host=host,
            port=port,
            user=user,
            password=password,
            database=database,
            ssl=ssl,
            dsn=dsn,
            auth_source=auth_source,
            **tuning,
        )

    @beartype
    def validate(self, descriptor: BackendDescriptor) -> None:
        """Raise :class:`ConfigError` if the descriptor cannot be used."""
        kind = descriptor.kind
        params = descriptor.connection_params
        defaults = BACKEND_DEFAULTS[kind]

        if params.dsn is not None and _scheme_base(params.dsn) not in defaults.url_schemes:
            raise ConfigError(
                f"connection string scheme '{_scheme_base(params.dsn) or '<none>'}' "
                f"does not match engine (expected one of {', '.join(defaults.url_schemes)})",
                backend=kind.value,
            )
        if not 0 < params.port < 65536:
            raise ConfigError(f"port {params.port} is out of range", backend=kind.value)
        if not params.host:
            raise ConfigError("host is required", backend=kind.value)
        if not params.database:
            raise ConfigError("database name is required", backend=kind.value)
        if kind.is_relational and not params.user:
            raise ConfigError("user is required", backend=kind.value)
        if params.max_connections < 1:
            raise ConfigError("pool max must be at least 1", backend=kind.value)
        if params.connection_timeout_ms < 1:
            raise ConfigError("connection timeout must be at least 1 ms", backend=kind.value)
