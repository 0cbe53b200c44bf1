"""Composition root.

OfflineRuntime wires a medium, an executor and the settings into the full
offline stack and owns its start/stop lifecycle. Nothing in StakeSync runs
at import time; every timer belongs to a runtime instance and is cancelled
by stop().
"""

import asyncio
import logging
from collections.abc import Callable

from stakesync.backends.base import DurableMedium
from stakesync.backends.file import JsonFileMedium
from stakesync.backends.inmemory import InMemoryMedium
from stakesync.backends.redis_medium import RedisMedium
from stakesync.core.config import SyncSettings, get_settings
from stakesync.core.connectivity import ConnectivityMonitor, Probe, tcp_probe
from stakesync.core.events import EventBus
from stakesync.core.executor import LedgerExecutor
from stakesync.core.facade import OfflineFacade
from stakesync.core.logging import configure_sync_logger, get_logger
from stakesync.core.models import now_ms
from stakesync.core.orchestrator import (
    AbandonedOperationStore,
    DurableAbandonedStore,
    InMemoryAbandonedStore,
    SyncOrchestrator,
)
from stakesync.core.queue import OperationQueue
from stakesync.core.snapshot import SnapshotCache
from stakesync.core.status import OfflineStatusStore


def build_medium(settings: SyncSettings) -> DurableMedium:
    """Create the durable medium named by settings.storage_backend."""
    if settings.storage_backend == "memory":
        return InMemoryMedium()
    if settings.storage_backend == "redis":
        return RedisMedium(redis_url=settings.redis_url, namespace=settings.key_prefix)
    return JsonFileMedium(settings.storage_path)


class OfflineRuntime:
    """Owns every long-lived piece of the offline stack.

    Args:
        medium: Durable medium for all persisted records.
        executor: Ledger executor used to replay queued operations.
        settings: Configuration; defaults to get_settings().
        probe: Connectivity probe. When omitted and settings.probe_host is
            set, a TCP probe against that host is used; otherwise the platform
            is expected to call monitor.report().
        initial_reachable: Initial connectivity, passed to the monitor.
        clock: Returns the current time in epoch ms.
    """

    def __init__(
        self,
        medium: DurableMedium,
        executor: LedgerExecutor,
        settings: SyncSettings | None = None,
        probe: Probe | None = None,
        initial_reachable: bool | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.settings = settings or get_settings()
        level = logging.getLevelName(self.settings.log_level)
        # Module loggers (stakesync.queue, stakesync.connectivity, ...) inherit this
        get_logger("stakesync", level=level)
        self._log = get_logger("stakesync.runtime", level=level)

        if probe is None and self.settings.probe_host:
            probe = tcp_probe(
                self.settings.probe_host,
                self.settings.probe_port,
                self.settings.probe_timeout_seconds,
            )

        self.medium = medium
        self.events = EventBus()
        self.cache = SnapshotCache(
            medium,
            key=self.settings.key("staking_snapshot"),
            ttl_ms=self.settings.snapshot_ttl_ms,
            clock=clock,
        )
        self.queue = OperationQueue(
            medium, key=self.settings.key("operation_queue"), clock=clock
        )
        self.status_store = OfflineStatusStore(
            medium, key=self.settings.key("offline_status"), clock=clock
        )
        self.monitor = ConnectivityMonitor(
            probe=probe,
            initial_reachable=initial_reachable,
            events=self.events,
            grace_period=self.settings.reconnect_grace_seconds,
            sync_interval=self.settings.sync_interval_seconds,
            startup_delay=self.settings.startup_delay_seconds,
            probe_interval=self.settings.probe_interval_seconds,
        )

        abandoned_store: AbandonedOperationStore
        if self.settings.persist_abandoned:
            abandoned_store = DurableAbandonedStore(
                medium, key=self.settings.key("abandoned_operations")
            )
        else:
            abandoned_store = InMemoryAbandonedStore()

        self.orchestrator = SyncOrchestrator(
            queue=self.queue,
            executor=executor,
            monitor=self.monitor,
            events=self.events,
            max_retries=self.settings.max_retries,
            abandoned_store=abandoned_store,
        )
        # The orchestrator configures its logger at INFO; apply the configured level
        configure_sync_logger(level)
        self.facade = OfflineFacade(
            cache=self.cache,
            queue=self.queue,
            monitor=self.monitor,
            orchestrator=self.orchestrator,
            status_store=self.status_store,
            queue_max_age_ms=self.settings.queue_max_age_ms,
            snapshot_purge_age_ms=self.settings.snapshot_purge_age_ms,
        )

        self._unsubscribe_status = self.events.subscribe(
            self.status_store.record_event, event_types=["connectivity_changed"]
        )
        self._cleanup_task: asyncio.Task[None] | None = None
        self._started = False

    @classmethod
    def from_settings(
        cls,
        executor: LedgerExecutor,
        settings: SyncSettings | None = None,
        **kwargs,
    ) -> "OfflineRuntime":
        settings = settings or get_settings()
        return cls(build_medium(settings), executor, settings=settings, **kwargs)

    @property
    def started(self) -> bool:
        return self._started

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.cleanup_interval_seconds)
            self.facade.run_cleanup()

    async def start(self) -> None:
        """Record the current status, clean up once and start every timer."""
        if self._started:
            return
        self._started = True

        self.status_store.save(is_offline=not self.monitor.is_reachable)
        purged = self.facade.run_cleanup()
        if purged:
            self._log.info(
                f"Startup cleanup purged {len(purged)} operations",
                extra={"purged": purged},
            )

        self.orchestrator.start()
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())
        self._log.info("Offline runtime started")

    async def stop(self) -> None:
        """Cancel timers and wait for an in-flight episode to finish."""
        if not self._started:
            return
        self._started = False

        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self.orchestrator.stop()

        close = getattr(self.medium, "close", None)
        if callable(close):
            close()
        self._log.info("Offline runtime stopped")

    async def __aenter__(self) -> "OfflineRuntime":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
