"""Lifecycle events emitted by the sync core.

Events are immutable pydantic models. The presentation layer subscribes to an
EventBus and renders them however it likes; the core never renders anything.
"""

import logging
from collections.abc import Callable
from typing import ClassVar

from pydantic import BaseModel, Field

from stakesync.core.models import now_ms

logger = logging.getLogger("stakesync.events")


class LifecycleEvent(BaseModel):
    """Base class for every event the core emits."""

    event_type: ClassVar[str] = "lifecycle"
    emitted_at: int = Field(default_factory=now_ms)

    model_config = {"frozen": True, "extra": "forbid"}


class OperationSynced(LifecycleEvent):
    """A queued operation was executed successfully and left the queue."""

    event_type: ClassVar[str] = "synced"
    operation_id: str


class OperationRetrying(LifecycleEvent):
    """A queued operation failed and stays queued for the next episode."""

    event_type: ClassVar[str] = "retrying"
    operation_id: str
    attempt: int
    error: str


class OperationAbandoned(LifecycleEvent):
    """A queued operation was dropped after exhausting its attempts."""

    event_type: ClassVar[str] = "abandoned"
    operation_id: str
    attempts: int
    error: str


class ConnectivityChanged(LifecycleEvent):
    """Reachability flipped."""

    event_type: ClassVar[str] = "connectivity_changed"
    reachable: bool


EVENT_TYPES: frozenset[str] = frozenset(
    cls.event_type
    for cls in (OperationSynced, OperationRetrying, OperationAbandoned, ConnectivityChanged)
)

Listener = Callable[[LifecycleEvent], None]


class EventBus:
    """Synchronous fan-out of lifecycle events to subscribers.

    Listeners are called in subscription order. A listener that raises is
    logged and skipped; it never stops delivery to the others or the caller.
    """

    def __init__(self) -> None:
        self._listeners: list[tuple[Listener, frozenset[str] | None]] = []

    def subscribe(
        self,
        listener: Listener,
        event_types: list[str] | None = None,
    ) -> Callable[[], None]:
        """Register a listener, optionally filtered to some event types.

        Returns:
            A callable that removes the subscription. Calling it twice is harmless.
        """
        if not callable(listener):
            raise TypeError(f"listener must be callable, got {type(listener).__name__}")

        filter_set: frozenset[str] | None = None
        if event_types is not None:
            if not isinstance(event_types, list):
                raise TypeError(
                    f"event_types must be a list[str], got {type(event_types).__name__}"
                )
            unknown = [t for t in event_types if t not in EVENT_TYPES]
            if unknown:
                raise ValueError(f"unknown event types: {unknown!r}")
            filter_set = frozenset(event_types)

        entry = (listener, filter_set)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(entry)
            except ValueError:
                pass

        return unsubscribe

    def emit(self, event: LifecycleEvent) -> None:
        for listener, filter_set in list(self._listeners):
            if filter_set is not None and event.event_type not in filter_set:
                continue
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"Event listener raised while handling {event.event_type}: {e}",
                    exc_info=True,
                    extra={"event_type": event.event_type},
                )

    def __len__(self) -> int:
        return len(self._listeners)
