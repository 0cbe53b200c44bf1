"""Single read/write seam for the presentation layer.

The facade composes the snapshot cache, operation queue, connectivity
monitor and (optionally) the orchestrator. It adds no business rules of its
own; every method is a pass-through or a read.
"""

from typing import Any

from stakesync.core.connectivity import ConnectivityMonitor
from stakesync.core.models import (
    DAY_MS,
    WEEK_MS,
    OfflineStatus,
    OperationKind,
    QueuedOperation,
    StakingSnapshot,
)
from stakesync.core.orchestrator import SyncOrchestrator
from stakesync.core.queue import OperationQueue
from stakesync.core.snapshot import SnapshotCache
from stakesync.core.status import OfflineStatusStore


class OfflineFacade:
    """What the presentation layer sees of the offline core.

    Args:
        cache: Snapshot cache.
        queue: Operation queue.
        monitor: Connectivity monitor.
        orchestrator: Sync orchestrator, needed only for request_sync().
        status_store: Persisted offline status, if kept.
        queue_max_age_ms: Age past which run_cleanup() drops queued operations.
        snapshot_purge_age_ms: Age past which run_cleanup() drops the snapshot.
    """

    def __init__(
        self,
        cache: SnapshotCache,
        queue: OperationQueue,
        monitor: ConnectivityMonitor,
        orchestrator: SyncOrchestrator | None = None,
        status_store: OfflineStatusStore | None = None,
        queue_max_age_ms: int = DAY_MS,
        snapshot_purge_age_ms: int = WEEK_MS,
    ) -> None:
        self.cache = cache
        self.queue = queue
        self.monitor = monitor
        self.orchestrator = orchestrator
        self.status_store = status_store
        self.queue_max_age_ms = queue_max_age_ms
        self.snapshot_purge_age_ms = snapshot_purge_age_ms

    # Reads

    @property
    def is_online(self) -> bool:
        return self.monitor.is_reachable

    @property
    def is_offline(self) -> bool:
        return not self.monitor.is_reachable

    @property
    def snapshot(self) -> StakingSnapshot | None:
        return self.cache.read()

    @property
    def pending_operations(self) -> list[QueuedOperation]:
        return self.queue.read_all()

    @property
    def offline_status(self) -> OfflineStatus | None:
        if self.status_store is None:
            return None
        return self.status_store.read()

    # Snapshot

    def save_snapshot(self, snapshot: StakingSnapshot) -> StakingSnapshot:
        return self.cache.save(snapshot)

    def clear_snapshot(self) -> None:
        self.cache.clear()

    # Queue

    def enqueue(self, kind: OperationKind | str, payload: dict[str, Any]) -> str:
        return self.queue.enqueue(kind, payload)

    def remove(self, op_id: str) -> bool:
        return self.queue.remove(op_id)

    def increment_retry(self, op_id: str) -> int | None:
        return self.queue.increment_retry(op_id)

    def clear_queue(self) -> None:
        self.queue.clear()

    # Maintenance

    def run_cleanup(self, now: int | None = None) -> list[str]:
        """Apply both age-based purges.

        Returns:
            Ids of queued operations that were purged.
        """
        purged = self.queue.purge_older_than(self.queue_max_age_ms, now=now)
        self.cache.purge_older_than(self.snapshot_purge_age_ms, now=now)
        return purged

    def request_sync(self) -> bool:
        """Post-action trigger, e.g. after the user hits reconnect.

        Returns:
            True if an episode was started.
        """
        if self.orchestrator is None:
            return False
        return self.orchestrator.request_sync("requested")
