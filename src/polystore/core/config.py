# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Manager-level configuration using Pydantic Settings.

Per-backend connection parameters (host, credentials, pool bounds) are
resolved separately by :mod:`polystore.core.resolver`; this module only holds
the knobs that govern the orchestrator itself.
"""

from beartype import beartype
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from polystore.models.backend import BackendKind

_PRIMARY_ALIASES = frozenset({"primary", "postgresql", "postgres", "pg"})
_SECONDARY_ALIASES = frozenset({"secondary", "mysql", "mariadb"})


class Settings(BaseSettings):
    """Orchestrator settings with immutable configuration."""

    model_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        frozen=True,
        validate_default=True,
        extra="forbid",
    )

    # Backend selection
    db_type: str = Field(
        default="primary",
        description="Active relational backend (primary/postgresql or secondary/mysql)",
    )
    document_store_enabled: bool = Field(
        default=True,
        description="Manage the document store alongside the relational backend",
    )

    # Initialization and reconnection
    connect_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Connection attempts per backend during initialize/reconnect",
    )
    connect_retry_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Delay before the second attempt",
    )
    connect_retry_exponential: bool = Field(
        default=True,
        description="Double the retry delay after every failed attempt",
    )
    reconnect_failure_budget: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Failed probes tolerated while degraded before reconnecting",
    )

    # Health probing
    health_latency_budget_ms: float = Field(
        default=250.0,
        gt=0,
        le=60000,
        description="Probe latency above which a backend is reported degraded",
    )
    health_probe_timeout_ms: float = Field(
        default=5000.0,
        gt=0,
        le=120000,
        description="Probe latency above which a backend is reported unreachable",
    )

    # Queries and shutdown
    slow_query_threshold_ms: float = Field(
        default=1000.0,
        gt=0,
        description="Queries slower than this are logged as slow",
    )
    shutdown_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=120.0,
        description="Maximum time allowed for one backend to close",
    )
    application_name: str = Field(
        default="polystore",
        min_length=1,
        max_length=63,
        description="Reported to the database server as the client name",
    )

    @field_validator("db_type")
    @classmethod
    def normalize_db_type(cls: type["Settings"], v: str) -> str:
        """Map engine aliases onto primary/secondary."""
        value = v.strip().lower()
        if value in _PRIMARY_ALIASES:
            return "primary"
        if value in _SECONDARY_ALIASES:
            return "secondary"
        raise ValueError(
            f"Unsupported DB_TYPE '{v}'. Use one of: "
            f"{', '.join(sorted(_PRIMARY_ALIASES | _SECONDARY_ALIASES))}"
        )

    @field_validator("health_probe_timeout_ms")
    @classmethod
    def validate_probe_timeout(
        cls: type["Settings"], v: float, info: ValidationInfo
    ) -> float:
        """Ensure the probe timeout is not shorter than the latency budget."""
        budget = info.data.get("health_latency_budget_ms")
        if budget is not None and v < budget:
            raise ValueError(
                f"health_probe_timeout_ms ({v}) must be >= "
                f"health_latency_budget_ms ({budget})"
            )
        return v

    @property
    @beartype
    def relational_kind(self) -> BackendKind:
        """The relational backend selected by ``db_type``."""
        if self.db_type == "secondary":
            return BackendKind.SECONDARY
        return BackendKind.PRIMARY

    @beartype
    def retry_delay(self, attempt: int) -> float:
        """Delay in seconds to wait after the given failed attempt (1-based)."""
        if not self.connect_retry_exponential:
            return self.connect_retry_delay_seconds
        return self.connect_retry_delay_seconds * (2 ** max(attempt - 1, 0))


_settings: Settings | None = None


@beartype
def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


@beartype
def clear_settings_cache() -> None:
    """Clear settings cache (for testing)."""
    global _settings
    _settings = None
