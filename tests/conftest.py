"""Test configuration and fixtures.

This module provides pytest configuration and fixtures for PolyStore: fast
settings, an empty-environment resolver, resolved descriptors and the fake
drivers from :mod:`tests.fixtures.fakes`.
"""

from collections.abc import Callable, Generator
from typing import Any

import pytest

from polystore.core.config import Settings, clear_settings_cache
from polystore.core.pool import PooledConnection
from polystore.core.resolver import ConfigResolver
from polystore.models.backend import (
    BackendDescriptor,
    BackendKind,
    ConnectionParams,
    PlaceholderStyle,
)
from tests.fixtures.fakes import FakeDocumentHandle, FakeDriver

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Every test starts from a fresh settings cache."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with no retry delay and a generous latency budget."""
    return Settings(
        db_type="primary",
        document_store_enabled=True,
        connect_retry_attempts=3,
        connect_retry_delay_seconds=0.0,
        connect_retry_exponential=False,
        health_latency_budget_ms=1000.0,
        health_probe_timeout_ms=2000.0,
        reconnect_failure_budget=2,
        shutdown_timeout_seconds=0.5,
    )


@pytest.fixture
def empty_resolver() -> ConfigResolver:
    """Resolver over an empty environment (all defaults)."""
    return ConfigResolver({})


@pytest.fixture
def make_descriptor() -> Callable[..., BackendDescriptor]:
    """Build a relational descriptor with overridable pool parameters."""

    def _make(
        kind: BackendKind = BackendKind.PRIMARY,
        **overrides: Any,
    ) -> BackendDescriptor:
        values: dict[str, Any] = {
            "host": "localhost",
            "port": 5432 if kind == BackendKind.PRIMARY else 3306,
            "user": "app",
            "password": "secret",
            "database": "app",
            "min_connections": 0,
            "max_connections": 2,
            "idle_timeout_ms": 30000,
            "connection_timeout_ms": 200,
            "statement_timeout_ms": 500,
        }
        values.update(overrides)
        style = (
            PlaceholderStyle.NUMBERED
            if kind == BackendKind.PRIMARY
            else PlaceholderStyle.POSITIONAL
        )
        return BackendDescriptor(
            kind=kind,
            connection_params=ConnectionParams(**values),
            placeholder_style=style if kind.is_relational else None,
        )

    return _make


@pytest.fixture
def fake_driver() -> FakeDriver:
    """Numbered-style fake relational driver."""
    return FakeDriver()


@pytest.fixture
def fake_pool(
    make_descriptor: Callable[..., BackendDescriptor], fake_driver: FakeDriver
) -> PooledConnection:
    """Unopened pool over the fake driver (max 2 connections, 200 ms acquire timeout)."""
    return PooledConnection(make_descriptor(), fake_driver, slow_query_threshold_ms=1000.0)


@pytest.fixture
def document_events() -> list[str]:
    """Shared log of document handle lifecycle events."""
    return []


@pytest.fixture
def document_factory(
    document_events: list[str],
) -> Callable[..., Callable[[BackendDescriptor, Settings], FakeDocumentHandle]]:
    """Strategy factory producing fake document handles with scripted behaviour."""

    def _factory(**behaviour: Any) -> Callable[[BackendDescriptor, Settings], FakeDocumentHandle]:
        created: list[FakeDocumentHandle] = []

        def build(descriptor: BackendDescriptor, settings: Settings) -> FakeDocumentHandle:
            handle = FakeDocumentHandle(descriptor, events=document_events, **behaviour)
            created.append(handle)
            return handle

        build.created = created  # type: ignore[attr-defined]
        return build

    return _factory
