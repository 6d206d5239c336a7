# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Backend probing and health classification."""

import asyncio
import logging
import time

from beartype import beartype

from polystore.models.backend import BackendKind
from polystore.schemas.health import BackendHealth

from .config import Settings
from .errors import PoolTimeoutError, ProbeError
from .types import Probeable

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Pings a backend and classifies the outcome.

    - success within the latency budget: ``healthy``
    - success over the budget: ``degraded``
    - timeout, pool exhaustion, refusal or any other failure: ``unreachable``

    ``probe`` never raises (cancellation excepted).
    """

    @beartype
    def __init__(self, *, latency_budget_ms: float = 250.0, probe_timeout_ms: float = 5000.0) -> None:
        self.latency_budget_ms = latency_budget_ms
        self.probe_timeout_ms = probe_timeout_ms

    @classmethod
    @beartype
    def from_settings(cls, settings: Settings) -> "HealthMonitor":
        return cls(
            latency_budget_ms=settings.health_latency_budget_ms,
            probe_timeout_ms=settings.health_probe_timeout_ms,
        )

    @beartype
    async def probe(self, kind: BackendKind, target: Probeable | None) -> BackendHealth:
        """Run the backend's minimal round trip and classify it."""
        if target is None:
            return BackendHealth(kind=kind, status="unreachable", message="not connected")

        timeout = self.probe_timeout_ms / 1000
        start = time.perf_counter()
        try:
            async with asyncio.timeout(timeout):
                await target.ping(timeout)
        except TimeoutError:
            return self._unreachable(
                kind, start, f"probe timed out after {self.probe_timeout_ms:.0f} ms"
            )
        except PoolTimeoutError as e:
            return self._unreachable(kind, start, f"pool exhausted: {e.message}")
        except Exception as e:
            error = ProbeError(f"{type(e).__name__}: {e}", backend=kind.value)
            logger.debug(f"Probe failed: {error}")
            return self._unreachable(kind, start, error.message)

        latency_ms = (time.perf_counter() - start) * 1000
        if latency_ms > self.latency_budget_ms:
            return BackendHealth(
                kind=kind,
                status="degraded",
                latency_ms=latency_ms,
                message=(
                    f"probe took {latency_ms:.1f} ms "
                    f"(budget {self.latency_budget_ms:.0f} ms)"
                ),
            )
        return BackendHealth(kind=kind, status="healthy", latency_ms=latency_ms, message="ok")

    @staticmethod
    def _unreachable(kind: BackendKind, start: float, message: str) -> BackendHealth:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.warning(f"{kind.value} probe failed: {message}")
        return BackendHealth(
            kind=kind, status="unreachable", latency_ms=latency_ms, message=message
        )
