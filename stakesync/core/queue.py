"""Durable, ordered queue of pending operations.

The whole queue is a single record on the medium. Every mutation is a
read-then-full-rewrite under a lock, so the periodic cleanup and a running
sync episode never interleave a read and a write of the same collection.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from stakesync.backends.base import DurableMedium
from stakesync.core.models import OperationKind, QueuedOperation, generate_operation_id, now_ms
from stakesync.core.records import CorruptRecordError, decode_record, encode_record

logger = logging.getLogger("stakesync.queue")

DEFAULT_QUEUE_KEY = "stakesync_operation_queue"


class EnqueueError(Exception):
    """Raised when a new operation could not be written to the medium."""

    def __init__(self, original: Exception):
        self.original = original
        super().__init__(str(original))


class OperationQueue:
    """Insertion-ordered collection of QueuedOperation records.

    Reads of a corrupted record yield an empty queue. Write failures on
    remove/increment/purge/clear are logged and absorbed; only enqueue()
    reports a failed write, by raising EnqueueError.

    Args:
        medium: Durable medium holding the queue blob.
        key: Medium key for the queue record.
        clock: Returns the current time in epoch ms.
    """

    def __init__(
        self,
        medium: DurableMedium,
        key: str = DEFAULT_QUEUE_KEY,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._medium = medium
        self._key = key
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def key(self) -> str:
        return self._key

    def _load(self) -> list[QueuedOperation]:
        try:
            blob = self._medium.get(self._key)
        except Exception as e:
            logger.error(
                f"Failed to read operation queue: {e}",
                extra={"key": self._key, "error": str(e)},
            )
            return []

        if blob is None:
            return []

        try:
            raw_items = decode_record(blob, "items")
        except CorruptRecordError as e:
            logger.warning(
                f"Ignoring corrupted operation queue: {e}",
                extra={"key": self._key, "error": str(e)},
            )
            return []

        if not isinstance(raw_items, list):
            logger.warning(
                "Ignoring corrupted operation queue: items is not a list",
                extra={"key": self._key},
            )
            return []

        items: list[QueuedOperation] = []
        for index, raw in enumerate(raw_items):
            try:
                items.append(QueuedOperation.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    f"Dropping malformed queued operation at index {index}: {e}",
                    extra={"key": self._key, "index": index},
                )
        return items

    def _store(self, items: list[QueuedOperation]) -> None:
        if items:
            blob = encode_record(items=[item.model_dump(mode="json") for item in items])
            self._medium.set(self._key, blob)
        else:
            self._medium.remove(self._key)

    def _store_logged(self, items: list[QueuedOperation], action: str) -> bool:
        try:
            self._store(items)
            return True
        except Exception as e:
            logger.error(
                f"Failed to {action}: {e}",
                extra={"key": self._key, "error": str(e)},
            )
            return False

    def enqueue(self, kind: OperationKind | str, payload: dict[str, Any]) -> str:
        """Append a new operation and return its id.

        Raises:
            ValueError: If kind is unknown or payload is not JSON-serializable.
            EnqueueError: If the medium rejected the write.
        """
        kind = OperationKind(kind)
        with self._lock:
            items = self._load()
            taken = {item.id for item in items}
            timestamp = self._clock()
            op_id = generate_operation_id(timestamp)
            while op_id in taken:
                op_id = generate_operation_id(timestamp)

            operation = QueuedOperation(
                id=op_id,
                kind=kind,
                payload=dict(payload),
                timestamp=timestamp,
                retry_count=0,
            )
            items.append(operation)
            try:
                self._store(items)
            except Exception as e:
                logger.error(
                    f"Failed to enqueue {kind.value} operation: {e}",
                    extra={"operation_id": op_id, "kind": kind.value, "error": str(e)},
                )
                raise EnqueueError(e) from e

        logger.info(
            f"Queued {kind.value} operation",
            extra={"operation_id": op_id, "kind": kind.value},
        )
        return op_id

    def read_all(self) -> list[QueuedOperation]:
        """Return every pending operation, oldest first."""
        with self._lock:
            return self._load()

    def get(self, op_id: str) -> QueuedOperation | None:
        with self._lock:
            for item in self._load():
                if item.id == op_id:
                    return item
        return None

    def remove(self, op_id: str) -> bool:
        """Remove the operation with op_id. Absent ids are ignored.

        Returns:
            True if an item was found and the rewrite succeeded.
        """
        with self._lock:
            items = self._load()
            remaining = [item for item in items if item.id != op_id]
            if len(remaining) == len(items):
                return False
            return self._store_logged(remaining, f"remove operation {op_id}")

    def increment_retry(self, op_id: str) -> int | None:
        """Bump the retry count of op_id by one.

        Returns:
            The new retry count, or None if op_id is not queued or the write failed.
        """
        with self._lock:
            items = self._load()
            for index, item in enumerate(items):
                if item.id == op_id:
                    updated = item.with_retry(item.retry_count + 1)
                    items[index] = updated
                    if self._store_logged(items, f"update retry count of {op_id}"):
                        return updated.retry_count
                    return None
        return None

    def clear(self) -> None:
        with self._lock:
            try:
                self._medium.remove(self._key)
            except Exception as e:
                logger.error(
                    f"Failed to clear operation queue: {e}",
                    extra={"key": self._key, "error": str(e)},
                )

    def purge_older_than(self, max_age_ms: int, now: int | None = None) -> list[str]:
        """Remove every operation whose age exceeds max_age_ms.

        Retry counts are ignored. Returns the ids that were removed.
        """
        current = self._clock() if now is None else now
        with self._lock:
            items = self._load()
            kept = [item for item in items if current - item.timestamp <= max_age_ms]
            if len(kept) == len(items):
                return []
            expired = [item.id for item in items if current - item.timestamp > max_age_ms]
            if not self._store_logged(kept, "purge expired operations"):
                return []

        logger.info(
            f"Purged {len(expired)} expired operations",
            extra={"purged": expired, "max_age_ms": max_age_ms},
        )
        return expired

    def __len__(self) -> int:
        return len(self.read_all())
