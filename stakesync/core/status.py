"""Persisted record of the last observed connectivity state."""

import logging
from collections.abc import Callable

from pydantic import ValidationError

from stakesync.backends.base import DurableMedium
from stakesync.core.events import ConnectivityChanged, LifecycleEvent
from stakesync.core.models import OfflineStatus, now_ms
from stakesync.core.records import CorruptRecordError, decode_record, encode_record

logger = logging.getLogger("stakesync.status")

DEFAULT_STATUS_KEY = "stakesync_offline_status"


class OfflineStatusStore:
    """Keeps {is_offline, timestamp} on the medium so a fresh process can show it."""

    def __init__(
        self,
        medium: DurableMedium,
        key: str = DEFAULT_STATUS_KEY,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._medium = medium
        self._key = key
        self._clock = clock

    def save(self, is_offline: bool) -> OfflineStatus:
        status = OfflineStatus(is_offline=is_offline, timestamp=self._clock())
        try:
            self._medium.set(self._key, encode_record(status=status.model_dump(mode="json")))
        except Exception as e:
            logger.error(
                f"Failed to save offline status: {e}",
                extra={"key": self._key, "error": str(e)},
            )
        return status

    def read(self) -> OfflineStatus | None:
        try:
            blob = self._medium.get(self._key)
        except Exception as e:
            logger.error(
                f"Failed to read offline status: {e}",
                extra={"key": self._key, "error": str(e)},
            )
            return None

        if blob is None:
            return None

        try:
            return OfflineStatus.model_validate(decode_record(blob, "status"))
        except (CorruptRecordError, ValidationError) as e:
            logger.warning(
                f"Ignoring corrupted offline status: {e}",
                extra={"key": self._key, "error": str(e)},
            )
            return None

    def record_event(self, event: LifecycleEvent) -> None:
        """EventBus listener that persists every connectivity transition."""
        if isinstance(event, ConnectivityChanged):
            self.save(is_offline=not event.reachable)
