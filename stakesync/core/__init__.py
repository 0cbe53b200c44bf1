"""Core components for the StakeSync offline queue.

Types:
    StakingSnapshot, PositionEntry: Cached staking position.
    QueuedOperation, OperationKind: Pending stake/unstake/claim operations.
    OfflineStatus: Last persisted connectivity state.

Components:
    SnapshotCache: Time-boxed snapshot storage.
    OperationQueue: Durable, insertion-ordered operation queue.
    ConnectivityMonitor: Reachability tracking and sync triggers.
    SyncOrchestrator: Single-flight drain loop with retry and abandon policy.
    OfflineFacade: Read/write seam for the presentation layer.

Events:
    OperationSynced, OperationRetrying, OperationAbandoned, ConnectivityChanged,
    delivered through EventBus.

Failure Handling:
    EnqueueError: Raised when a new operation cannot be persisted.
    AbandonedOperationStore: Protocol for recording abandoned operations.
    InMemoryAbandonedStore, DurableAbandonedStore: Implementations.
"""

from stakesync.core.config import SyncSettings, get_settings
from stakesync.core.connectivity import ConnectivityMonitor, tcp_probe
from stakesync.core.events import (
    ConnectivityChanged,
    EventBus,
    LifecycleEvent,
    OperationAbandoned,
    OperationRetrying,
    OperationSynced,
)
from stakesync.core.executor import ExecutionResult, LedgerExecutor, SimulatedLedgerExecutor
from stakesync.core.facade import OfflineFacade
from stakesync.core.models import (
    OfflineStatus,
    OperationKind,
    PositionEntry,
    QueuedOperation,
    StakingSnapshot,
)
from stakesync.core.orchestrator import (
    AbandonedOperationStore,
    DurableAbandonedStore,
    EpisodeReport,
    InMemoryAbandonedStore,
    SyncOrchestrator,
    SyncState,
    SyncStats,
)
from stakesync.core.queue import EnqueueError, OperationQueue
from stakesync.core.snapshot import SnapshotCache
from stakesync.core.status import OfflineStatusStore

__all__ = [
    "StakingSnapshot",
    "PositionEntry",
    "QueuedOperation",
    "OperationKind",
    "OfflineStatus",
    "SnapshotCache",
    "OperationQueue",
    "OfflineStatusStore",
    "ConnectivityMonitor",
    "tcp_probe",
    "SyncOrchestrator",
    "SyncState",
    "SyncStats",
    "EpisodeReport",
    "OfflineFacade",
    "LedgerExecutor",
    "ExecutionResult",
    "SimulatedLedgerExecutor",
    "LifecycleEvent",
    "OperationSynced",
    "OperationRetrying",
    "OperationAbandoned",
    "ConnectivityChanged",
    "EventBus",
    "EnqueueError",
    "AbandonedOperationStore",
    "InMemoryAbandonedStore",
    "DurableAbandonedStore",
    "SyncSettings",
    "get_settings",
]
