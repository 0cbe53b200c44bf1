"""Sync orchestrator for StakeSync.

The orchestrator is the single-flight engine that drains the operation queue
through the ledger executor:

- Triggers (reconnect edge, periodic timer, startup, explicit request) all
  funnel through one Idle/Syncing guard; a trigger that lands while an
  episode runs is dropped, not queued.
- An episode reads the queue once and processes that snapshot strictly in
  order, one item at a time. One item's failure never aborts the episode.
- Successful items leave the queue with a ``synced`` event. Failed items are
  retried on later episodes until max_retries attempts, then abandoned.

IMPORTANT: the orchestrator keeps no queue of its own. Every read and
mutation goes through OperationQueue.
"""

import asyncio
import inspect
import logging
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from stakesync.backends.base import DurableMedium
from stakesync.core.connectivity import ConnectivityMonitor
from stakesync.core.events import (
    EventBus,
    OperationAbandoned,
    OperationRetrying,
    OperationSynced,
)
from stakesync.core.executor import ExecutionResult, LedgerExecutor
from stakesync.core.logging import configure_sync_logger
from stakesync.core.models import OperationKind, QueuedOperation, now_ms
from stakesync.core.queue import OperationQueue
from stakesync.core.records import CorruptRecordError, decode_record, encode_record

DEFAULT_MAX_RETRIES = 3
DEFAULT_ABANDONED_KEY = "stakesync_abandoned_operations"

logger = logging.getLogger("stakesync.abandoned")


class SyncState(Enum):
    """Orchestrator state. Only one episode can be in flight."""

    IDLE = "idle"
    SYNCING = "syncing"


class AbandonedOperationStore(Protocol):
    """Protocol for keeping a record of operations dropped after max retries."""

    def store(self, operation: QueuedOperation, error: str) -> None: ...
    def get_abandoned(self) -> list[tuple[QueuedOperation, str]]: ...
    def clear(self) -> None: ...


class InMemoryAbandonedStore:
    """Keeps the most recent abandoned operations for the life of the process.

    Nothing is persisted. Once max_size entries are held, recording another
    evicts the earliest abandonment and counts it in dropped_count.
    """

    def __init__(self, max_size: int = 1_000) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._entries: deque[tuple[QueuedOperation, str]] = deque(maxlen=max_size)
        self._evicted = 0

    def __bool__(self) -> bool:
        # An empty store is still a configured store
        return True

    def store(self, operation: QueuedOperation, error: str) -> None:
        if len(self._entries) == self._entries.maxlen:
            self._evicted += 1
        self._entries.append((operation, error))

    def get_abandoned(self) -> list[tuple[QueuedOperation, str]]:
        """Abandoned operations with their last error, earliest first."""
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def dropped_count(self) -> int:
        """Abandonments evicted to stay within max_size."""
        return self._evicted


class DurableAbandonedStore:
    """Abandoned-operation store that survives restarts.

    Entries live in one versioned record on the medium, oldest first, capped
    at max_size. A corrupted record reads as empty.
    """

    def __init__(
        self,
        medium: DurableMedium,
        key: str = DEFAULT_ABANDONED_KEY,
        max_size: int = 1_000,
    ) -> None:
        self._medium = medium
        self._key = key
        self._max_size = max_size

    def __bool__(self) -> bool:
        return True

    def _load(self) -> list[dict]:
        try:
            blob = self._medium.get(self._key)
            if blob is None:
                return []
            entries = decode_record(blob, "entries")
        except CorruptRecordError as e:
            logger.warning(
                f"Ignoring corrupted abandoned-operation record: {e}",
                extra={"key": self._key, "error": str(e)},
            )
            return []
        except Exception as e:
            logger.error(
                f"Failed to read abandoned-operation record: {e}",
                extra={"key": self._key, "error": str(e)},
            )
            return []
        return entries if isinstance(entries, list) else []

    def store(self, operation: QueuedOperation, error: str) -> None:
        entries = self._load()
        entries.append(
            {
                "operation": operation.model_dump(mode="json"),
                "error": error,
                "abandoned_at": now_ms(),
            }
        )
        entries = entries[-self._max_size :]
        try:
            self._medium.set(self._key, encode_record(entries=entries))
        except Exception as e:
            logger.error(
                f"Failed to persist abandoned operation {operation.id}: {e}",
                extra={"operation_id": operation.id, "error": str(e)},
            )

    def get_abandoned(self) -> list[tuple[QueuedOperation, str]]:
        result: list[tuple[QueuedOperation, str]] = []
        for entry in self._load():
            try:
                result.append(
                    (QueuedOperation.model_validate(entry["operation"]), str(entry["error"]))
                )
            except (KeyError, TypeError, ValueError):
                continue
        return result

    def clear(self) -> None:
        try:
            self._medium.remove(self._key)
        except Exception as e:
            logger.error(
                f"Failed to clear abandoned-operation record: {e}",
                extra={"key": self._key, "error": str(e)},
            )

    def __len__(self) -> int:
        return len(self._load())


@dataclass
class SyncStats:
    """Counters accumulated across episodes."""

    episodes: int = 0
    operations_synced: int = 0
    operations_retried: int = 0
    operations_abandoned: int = 0
    triggers_dropped: int = 0
    executor_failures: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    last_episode_at: int | None = None


@dataclass
class EpisodeReport:
    """What a single episode did, in processing order."""

    reason: str
    started_at: int
    synced: list[str] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.synced) + len(self.retried) + len(self.abandoned)


class SyncOrchestrator:
    """Single-flight drain loop between the operation queue and the ledger."""

    def __init__(
        self,
        queue: OperationQueue,
        executor: LedgerExecutor,
        monitor: ConnectivityMonitor | None = None,
        events: EventBus | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        abandoned_store: AbandonedOperationStore | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")

        self.queue = queue
        self.executor = executor
        self.monitor = monitor
        if events is not None:
            self.events = events
        elif monitor is not None:
            self.events = monitor.events
        else:
            self.events = EventBus()
        self.max_retries = max_retries
        self.abandoned_store = abandoned_store or InMemoryAbandonedStore()
        self._log = configure_sync_logger()
        self._state = SyncState.IDLE
        self._stats = SyncStats()
        self._episode_task: asyncio.Task[EpisodeReport] | None = None
        self._unsubscribe: Callable[[], None] | None = None

        self._validate_executor()

    def _validate_executor(self) -> None:
        for kind in OperationKind:
            handler = getattr(self.executor, kind.value, None)
            if not callable(handler):
                raise TypeError(
                    f"executor must provide a callable {kind.value}() handler, "
                    f"{type(self.executor).__name__} does not"
                )

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state is SyncState.SYNCING

    def is_reachable(self) -> bool:
        return self.monitor.is_reachable if self.monitor is not None else True

    def get_stats(self) -> SyncStats:
        """Return a copy of current statistics."""
        return SyncStats(
            episodes=self._stats.episodes,
            operations_synced=self._stats.operations_synced,
            operations_retried=self._stats.operations_retried,
            operations_abandoned=self._stats.operations_abandoned,
            triggers_dropped=self._stats.triggers_dropped,
            executor_failures=defaultdict(int, self._stats.executor_failures),
            last_episode_at=self._stats.last_episode_at,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to connectivity triggers and start the monitor.

        Must be called inside a running event loop.
        """
        if self._unsubscribe is not None:
            return
        if self.monitor is not None:
            self.monitor.start()
            self._unsubscribe = self.monitor.on_trigger(self.request_sync)
        else:
            self._unsubscribe = lambda: None
        self._log.info("Sync orchestrator started")

    async def stop(self) -> None:
        """Drop trigger subscriptions, stop the monitor and let an in-flight episode finish."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.monitor is not None:
            await self.monitor.stop()

        task = self._episode_task
        if task is not None and not task.done():
            await asyncio.shield(task)
        self._log.info("Sync orchestrator stopped")

    async def wait_idle(self) -> None:
        """Wait for the in-flight episode, if any."""
        task = self._episode_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _try_begin(self, reason: str) -> bool:
        """Idle -> Syncing transition. No await between check and set."""
        if not self.is_reachable():
            self._log.debug("Sync skipped: unreachable", extra={"reason": reason})
            return False
        if self._state is SyncState.SYNCING:
            self._stats.triggers_dropped += 1
            self._log.debug("Sync skipped: episode in progress", extra={"reason": reason})
            return False
        self._state = SyncState.SYNCING
        return True

    def _launch(self, reason: str) -> "asyncio.Task[EpisodeReport]":
        task = asyncio.get_running_loop().create_task(self._run_episode(reason))
        self._episode_task = task
        return task

    def request_sync(self, reason: str = "manual") -> bool:
        """Schedule an episode in the background if the guard allows it.

        Returns:
            True if an episode was started.
        """
        if not self._try_begin(reason):
            return False
        self._launch(reason)
        return True

    async def sync_now(self, reason: str = "manual") -> EpisodeReport | None:
        """Run an episode and wait for it if the guard allows it.

        Cancelling the caller does not cancel the episode.

        Returns:
            The episode report, or None if the trigger was dropped.
        """
        if not self._try_begin(reason):
            return None
        return await asyncio.shield(self._launch(reason))

    # ------------------------------------------------------------------
    # Episode
    # ------------------------------------------------------------------

    async def _run_episode(self, reason: str) -> EpisodeReport:
        report = EpisodeReport(reason=reason, started_at=now_ms())
        try:
            operations = self.queue.read_all()
            self._log.info(
                f"Starting sync episode with {len(operations)} queued operations",
                extra={"reason": reason, "queued": len(operations)},
            )
            for operation in operations:
                await self._process(operation.id, report)
        except Exception as e:
            self._log.error(
                f"Sync episode aborted: {e}",
                exc_info=True,
                extra={"reason": reason, "error": str(e)},
            )
        finally:
            self._stats.episodes += 1
            self._stats.last_episode_at = report.started_at
            self._state = SyncState.IDLE

        self._log.info(
            "Sync episode finished",
            extra={
                "reason": reason,
                "synced": len(report.synced),
                "retried": len(report.retried),
                "abandoned": len(report.abandoned),
                "skipped": len(report.skipped),
            },
        )
        return report

    async def _process(self, op_id: str, report: EpisodeReport) -> None:
        operation = self.queue.get(op_id)
        if operation is None:
            # Removed by cleanup or the user since the episode began
            report.skipped.append(op_id)
            return

        missing = operation.missing_fields()
        if missing:
            error = f"Malformed {operation.kind.value} payload: missing {', '.join(missing)}"
            self._abandon(operation, operation.retry_count + 1, error, report)
            return

        result = await self._execute(operation)

        if result.success:
            self.queue.remove(op_id)
            self._stats.operations_synced += 1
            report.synced.append(op_id)
            self._log.info(
                f"Operation {op_id} synced",
                extra={"operation_id": op_id, "kind": operation.kind.value},
            )
            self.events.emit(OperationSynced(operation_id=op_id))
            return

        error = result.error or "Unknown sync error"
        self._stats.executor_failures[operation.kind.value] += 1

        current = self.queue.get(op_id)
        if current is None:
            report.skipped.append(op_id)
            self._log.warning(
                f"Operation {op_id} failed but is no longer queued",
                extra={"operation_id": op_id, "kind": operation.kind.value, "error": error},
            )
            return

        attempt = current.retry_count + 1
        if attempt >= self.max_retries:
            self._abandon(current, attempt, error, report)
            return

        self.queue.increment_retry(op_id)
        self._stats.operations_retried += 1
        report.retried.append(op_id)
        self._log.warning(
            f"Operation {op_id} failed, will retry ({attempt}/{self.max_retries})",
            extra={
                "operation_id": op_id,
                "kind": current.kind.value,
                "attempt": attempt,
                "error": error,
            },
        )
        self.events.emit(OperationRetrying(operation_id=op_id, attempt=attempt, error=error))

    def _abandon(
        self,
        operation: QueuedOperation,
        attempts: int,
        error: str,
        report: EpisodeReport,
    ) -> None:
        self.queue.remove(operation.id)
        self.abandoned_store.store(operation.with_retry(attempts), error)
        self._stats.operations_abandoned += 1
        report.abandoned.append(operation.id)
        self._log.error(
            f"Operation {operation.id} abandoned after {attempts} attempts: {error}",
            extra={
                "operation_id": operation.id,
                "kind": operation.kind.value,
                "attempt": attempts,
                "error": error,
            },
        )
        self.events.emit(
            OperationAbandoned(operation_id=operation.id, attempts=attempts, error=error)
        )

    async def _execute(self, operation: QueuedOperation) -> ExecutionResult:
        """Dispatch to the executor handler for the operation kind.

        Exceptions and malformed return values become failed results.
        """
        payload = operation.payload
        handler = getattr(self.executor, operation.kind.value)
        try:
            if operation.kind is OperationKind.CLAIM:
                result = handler(address=payload["address"])
            else:
                result = handler(amount=payload["amount"], address=payload["address"])
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            return ExecutionResult.failed(str(e) or type(e).__name__)

        if isinstance(result, ExecutionResult):
            return result
        if isinstance(result, bool):
            return ExecutionResult(success=result)
        return ExecutionResult.failed(
            f"Executor {operation.kind.value}() must return ExecutionResult, "
            f"got {type(result).__name__}"
        )
