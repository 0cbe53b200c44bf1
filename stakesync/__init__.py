"""StakeSync - Offline-resilient staking operation queue with background sync."""

from stakesync.backends import DurableMedium, InMemoryMedium, JsonFileMedium, RedisMedium
from stakesync.core import (
    ConnectivityChanged,
    ConnectivityMonitor,
    EnqueueError,
    EventBus,
    ExecutionResult,
    LedgerExecutor,
    OfflineFacade,
    OperationAbandoned,
    OperationKind,
    OperationQueue,
    OperationRetrying,
    OperationSynced,
    QueuedOperation,
    SnapshotCache,
    StakingSnapshot,
    SyncOrchestrator,
    SyncSettings,
)
from stakesync.runtime import OfflineRuntime

__version__ = "0.1.0"

__all__ = [
    # Core
    "StakingSnapshot",
    "QueuedOperation",
    "OperationKind",
    "SnapshotCache",
    "OperationQueue",
    "ConnectivityMonitor",
    "SyncOrchestrator",
    "OfflineFacade",
    "OfflineRuntime",
    "SyncSettings",
    # Executor
    "LedgerExecutor",
    "ExecutionResult",
    # Events
    "EventBus",
    "OperationSynced",
    "OperationRetrying",
    "OperationAbandoned",
    "ConnectivityChanged",
    # Failure handling
    "EnqueueError",
    # Media
    "DurableMedium",
    "InMemoryMedium",
    "JsonFileMedium",
    "RedisMedium",
    # Meta
    "__version__",
]
