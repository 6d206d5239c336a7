"""Unit tests for backend probing."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from polystore.core.errors import PoolTimeoutError
from polystore.core.health_monitor import HealthMonitor
from polystore.models.backend import BackendKind


class SlowTarget:
    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def ping(self, timeout: float) -> None:
        await asyncio.sleep(self.delay)


@pytest.mark.unit
@pytest.mark.asyncio
class TestHealthMonitor:
    """Classification of probe outcomes."""

    async def test_healthy(self) -> None:
        target = AsyncMock()
        monitor = HealthMonitor(latency_budget_ms=500.0, probe_timeout_ms=1000.0)

        health = await monitor.probe(BackendKind.PRIMARY, target)

        assert health.status == "healthy"
        assert health.kind == BackendKind.PRIMARY
        assert health.latency_ms >= 0
        target.ping.assert_awaited_once_with(1.0)

    async def test_slow_probe_is_degraded(self) -> None:
        monitor = HealthMonitor(latency_budget_ms=10.0, probe_timeout_ms=1000.0)

        health = await monitor.probe(BackendKind.DOCUMENT, SlowTarget(0.05))

        assert health.status == "degraded"
        assert health.is_reachable
        assert "budget" in health.message

    async def test_timeout_is_unreachable(self) -> None:
        monitor = HealthMonitor(latency_budget_ms=10.0, probe_timeout_ms=50.0)

        health = await monitor.probe(BackendKind.PRIMARY, SlowTarget(1.0))

        assert health.status == "unreachable"
        assert "timed out" in health.message

    async def test_pool_exhaustion_is_unreachable(self) -> None:
        target = AsyncMock()
        target.ping.side_effect = PoolTimeoutError("no slot", backend="relational-primary")
        monitor = HealthMonitor()

        health = await monitor.probe(BackendKind.PRIMARY, target)

        assert health.status == "unreachable"
        assert "pool exhausted" in health.message

    async def test_any_error_is_unreachable_and_never_raises(self) -> None:
        target = AsyncMock()
        target.ping.side_effect = ConnectionRefusedError("refused")
        monitor = HealthMonitor()

        health = await monitor.probe(BackendKind.SECONDARY, target)

        assert health.status == "unreachable"
        assert "ConnectionRefusedError" in health.message
        assert not health.is_reachable

    async def test_missing_target(self) -> None:
        health = await HealthMonitor().probe(BackendKind.DOCUMENT, None)

        assert health.status == "unreachable"
        assert health.message == "not connected"
