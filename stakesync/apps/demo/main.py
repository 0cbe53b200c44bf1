"""Offline/online demo application.

Queues a handful of operations while the client is offline, then restores
connectivity and lets the orchestrator replay them against the simulated
ledger. Lifecycle events are printed as they arrive:

    enqueue (offline) -> connection restored -> grace period -> episode(s)

Usage:
    python -m stakesync.apps.demo.main
    python -m stakesync.apps.demo.main --seed 7 --episodes 4
"""

import argparse
import asyncio
import random
from collections.abc import Callable

from stakesync.backends.inmemory import InMemoryMedium
from stakesync.core.config import SyncSettings
from stakesync.core.events import (
    ConnectivityChanged,
    LifecycleEvent,
    OperationAbandoned,
    OperationRetrying,
    OperationSynced,
)
from stakesync.core.executor import SimulatedLedgerExecutor
from stakesync.core.models import OperationKind
from stakesync.core.orchestrator import SyncStats
from stakesync.runtime import OfflineRuntime

SAMPLE_OPERATIONS: list[tuple[OperationKind, dict[str, str]]] = [
    (OperationKind.STAKE, {"amount": "100", "address": "0xA11CE"}),
    (OperationKind.STAKE, {"amount": "250", "address": "0xB0B"}),
    (OperationKind.UNSTAKE, {"amount": "40", "address": "0xA11CE"}),
    (OperationKind.CLAIM, {"address": "0xA11CE"}),
    (OperationKind.CLAIM, {"address": "0xB0B"}),
]


def describe(event: LifecycleEvent) -> str:
    if isinstance(event, OperationSynced):
        return f"synced     {event.operation_id}"
    if isinstance(event, OperationRetrying):
        return f"retrying   {event.operation_id} (attempt {event.attempt}): {event.error}"
    if isinstance(event, OperationAbandoned):
        return f"abandoned  {event.operation_id} after {event.attempts} attempts: {event.error}"
    if isinstance(event, ConnectivityChanged):
        return "online" if event.reachable else "offline"
    return event.event_type


async def run_demo(
    seed: int | None = None,
    episodes: int = 3,
    latency: float = 0.05,
    output_callback: Callable[[str], None] | None = None,
) -> tuple[SyncStats, int]:
    """Run the offline/online scenario.

    Args:
        seed: Seed for the simulated ledger's failures.
        episodes: Number of sync episodes to run after reconnecting.
        latency: Simulated ledger latency per call, in seconds.
        output_callback: Receives one line per lifecycle event (default: print).

    Returns:
        A tuple of (SyncStats, operations still queued).
    """
    emit = output_callback or print
    settings = SyncSettings(
        storage_backend="memory",
        reconnect_grace_seconds=0.05,
        startup_delay_seconds=0.0,
        sync_interval_seconds=3600.0,
        log_level="WARNING",
        _env_file=None,
    )
    executor = SimulatedLedgerExecutor(latency=latency, rng=random.Random(seed))
    runtime = OfflineRuntime(
        InMemoryMedium(), executor, settings=settings, initial_reachable=False
    )
    runtime.events.subscribe(lambda event: emit(describe(event)))

    async with runtime:
        for kind, payload in SAMPLE_OPERATIONS:
            op_id = runtime.facade.enqueue(kind, payload)
            emit(f"queued     {op_id} ({kind.value})")

        runtime.monitor.report(True)
        await asyncio.sleep(settings.reconnect_grace_seconds * 2)
        await runtime.orchestrator.wait_idle()

        for _ in range(episodes - 1):
            if not runtime.facade.pending_operations:
                break
            await runtime.orchestrator.sync_now("demo")

        remaining = len(runtime.facade.pending_operations)

    return runtime.orchestrator.get_stats(), remaining


def main() -> None:
    """Main entry point for the demo."""
    parser = argparse.ArgumentParser(description="StakeSync offline queue demo")
    parser.add_argument("--seed", type=int, default=None, help="Seed for simulated failures")
    parser.add_argument("--episodes", type=int, default=3, help="Sync episodes to run")
    parser.add_argument("--latency", type=float, default=0.05, help="Ledger latency in seconds")
    args = parser.parse_args()

    print("Queuing operations while offline...\n")
    stats, remaining = asyncio.run(
        run_demo(seed=args.seed, episodes=args.episodes, latency=args.latency)
    )
    print(
        f"\nDone: {stats.operations_synced} synced, {stats.operations_retried} retries, "
        f"{stats.operations_abandoned} abandoned, {remaining} still queued"
    )


if __name__ == "__main__":
    main()
