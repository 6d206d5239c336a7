#!/usr/bin/env python3
# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Backend connectivity check utility.

Initializes every configured backend, prints the health report and exits
with 0 (healthy), 1 (degraded) or 2 (unhealthy). With ``--watch`` it keeps
monitoring until interrupted; SIGINT/SIGTERM trigger a clean shutdown.
"""

import argparse
import asyncio
import signal
import sys

from beartype import beartype

from polystore.core.config import get_settings
from polystore.core.connection_manager import ConnectionManager
from polystore.core.logging_utils import configure_logging
from polystore.schemas.health import HealthReport, StateTransition

_EXIT_CODES = {"healthy": 0, "degraded": 1, "unhealthy": 2}
_STATUS_EMOJI = {"healthy": "✅", "degraded": "⚠️", "unreachable": "❌", "unhealthy": "❌"}


@beartype
def print_report(report: HealthReport) -> None:
    """Print a human-readable summary followed by the JSON report."""
    print(f"\nOverall Status: {_STATUS_EMOJI.get(report.status, '❓')} {report.status.upper()}")
    print(f"Relational engine: {report.database}")
    for entry in report.per_backend:
        emoji = _STATUS_EMOJI.get(entry.status, "❓")
        print(
            f"  {emoji} {entry.kind.value} ({entry.engine}): {entry.status} "
            f"[{entry.connection_state.value}] {entry.latency_ms:.1f}ms - {entry.message}"
        )
    pool = report.pool_status
    print(
        f"  🔄 Pool: {pool.total_count} open, {pool.idle_count} idle, "
        f"{pool.waiting_count} waiting (max {pool.max_connections})"
    )
    print("\n" + report.model_dump_json(indent=2))


@beartype
def print_transition(transition: StateTransition) -> None:
    suffix = f" ({transition.error})" if transition.error else ""
    print(
        f"🔔 {transition.kind.value}: {transition.previous.value} -> "
        f"{transition.current.value}{suffix}"
    )


@beartype
async def main(watch: bool, interval: float) -> int:
    """Run backend connectivity checks."""
    configure_logging()
    print("🗄️  Backend Connectivity Check")
    print("=" * 50)

    manager = ConnectionManager(get_settings())
    manager.subscribe(print_transition)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        result = await manager.initialize()
        print(
            f"\nInitialized: relational={result.relational} "
            f"document={result.document} overall={result.overall}"
        )
        report = await manager.health_check()
        print_report(report)

        if watch:
            manager.start_monitoring(interval)
            print(f"\n👀 Monitoring every {interval}s; press Ctrl+C to stop")
            await stop.wait()
            report = await manager.health_check()
        return _EXIT_CODES[report.status]
    finally:
        await manager.shutdown()
        print("\n🛑 Connections closed")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--watch", action="store_true", help="keep monitoring until interrupted")
    parser.add_argument("--interval", type=float, default=30.0, help="seconds between checks")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.watch, args.interval)))
