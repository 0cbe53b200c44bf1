"""Time-boxed cache of the user's staking position."""

import logging
from collections.abc import Callable

from pydantic import ValidationError

from stakesync.backends.base import DurableMedium
from stakesync.core.models import DAY_MS, StakingSnapshot, now_ms
from stakesync.core.records import CorruptRecordError, decode_record, encode_record

logger = logging.getLogger("stakesync.snapshot")

DEFAULT_SNAPSHOT_KEY = "stakesync_staking_snapshot"


class SnapshotCache:
    """Stores a single snapshot and refuses to hand out stale ones.

    A stored snapshot is readable while it is younger than ``ttl_ms``. Once it
    reaches that age, read() clears it and returns None. Malformed blobs are
    treated as absent; nothing in this class raises to its caller.

    Args:
        medium: Durable medium holding the snapshot blob.
        key: Medium key for the snapshot record.
        ttl_ms: Maximum age of a readable snapshot (default: 24h).
        clock: Returns the current time in epoch ms.
    """

    def __init__(
        self,
        medium: DurableMedium,
        key: str = DEFAULT_SNAPSHOT_KEY,
        ttl_ms: int = DAY_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        self._medium = medium
        self._key = key
        self._ttl_ms = ttl_ms
        self._clock = clock

    @property
    def key(self) -> str:
        return self._key

    def save(self, snapshot: StakingSnapshot) -> StakingSnapshot:
        """Overwrite the stored snapshot, stamping last_updated with now.

        Returns:
            The stamped snapshot, as it was written.
        """
        stamped = snapshot.model_copy(update={"last_updated": self._clock()})
        try:
            self._medium.set(self._key, encode_record(snapshot=stamped.model_dump(mode="json")))
        except Exception as e:
            logger.error(
                f"Failed to save staking snapshot: {e}",
                extra={"key": self._key, "error": str(e)},
            )
        return stamped

    def _load(self) -> StakingSnapshot | None:
        try:
            blob = self._medium.get(self._key)
        except Exception as e:
            logger.error(
                f"Failed to read staking snapshot: {e}",
                extra={"key": self._key, "error": str(e)},
            )
            return None

        if blob is None:
            return None

        try:
            return StakingSnapshot.model_validate(decode_record(blob, "snapshot"))
        except (CorruptRecordError, ValidationError) as e:
            logger.warning(
                f"Ignoring corrupted staking snapshot: {e}",
                extra={"key": self._key, "error": str(e)},
            )
            return None

    def read(self) -> StakingSnapshot | None:
        """Return the stored snapshot if it is younger than the TTL."""
        snapshot = self._load()
        if snapshot is None:
            return None

        age = self._clock() - snapshot.last_updated
        if age >= self._ttl_ms:
            logger.info(
                "Staking snapshot is stale, clearing",
                extra={"key": self._key, "age_ms": age},
            )
            self.clear()
            return None
        return snapshot

    def clear(self) -> None:
        try:
            self._medium.remove(self._key)
        except Exception as e:
            logger.error(
                f"Failed to clear staking snapshot: {e}",
                extra={"key": self._key, "error": str(e)},
            )

    def purge_older_than(self, max_age_ms: int, now: int | None = None) -> bool:
        """Remove the stored snapshot if it is older than max_age_ms.

        Unlike read(), this ignores the TTL and looks at the raw record.

        Returns:
            True if a snapshot was removed.
        """
        snapshot = self._load()
        if snapshot is None:
            return False

        current = self._clock() if now is None else now
        if current - snapshot.last_updated > max_age_ms:
            self.clear()
            return True
        return False
