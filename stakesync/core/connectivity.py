"""Connectivity monitor.

Tracks a Reachable/Unreachable flag and raises sync triggers:

- ``reconnected``: once per unreachable -> reachable edge, after a short
  grace period so the transport can settle. A new edge inside the grace
  period replaces the pending one.
- ``periodic``: on a fixed interval, whatever the current state.
- ``startup``: once, shortly after start().

Platform signals arrive either by push (report(), from any thread) or by
polling a probe.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

from stakesync.core.events import ConnectivityChanged, EventBus

logger = logging.getLogger("stakesync.connectivity")

Probe = Callable[[], bool | Awaitable[bool]]
TriggerCallback = Callable[[str], None]

TRIGGER_RECONNECTED = "reconnected"
TRIGGER_PERIODIC = "periodic"
TRIGGER_STARTUP = "startup"


def tcp_probe(host: str = "1.1.1.1", port: int = 53, timeout: float = 3.0) -> Probe:
    """Build an async probe that reports whether a TCP connection to host:port opens."""

    async def probe() -> bool:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
        except (OSError, TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    return probe


class ConnectivityMonitor:
    """Observes reachability and tells subscribers when a sync is worth trying.

    Args:
        probe: Optional platform probe, sync or async, polled while running.
        initial_reachable: Initial state. When omitted, a sync probe is called
            once; with an async probe the monitor starts Unreachable and the
            first poll settles it; with no probe it starts Reachable.
        events: Bus receiving ConnectivityChanged events.
        grace_period: Seconds between a reconnect edge and its trigger.
        sync_interval: Seconds between periodic triggers.
        startup_delay: Seconds after start() before the startup trigger.
        probe_interval: Seconds between probe polls.
    """

    def __init__(
        self,
        probe: Probe | None = None,
        initial_reachable: bool | None = None,
        events: EventBus | None = None,
        grace_period: float = 1.0,
        sync_interval: float = 300.0,
        startup_delay: float = 2.0,
        probe_interval: float = 5.0,
    ) -> None:
        for name, value in (
            ("grace_period", grace_period),
            ("sync_interval", sync_interval),
            ("probe_interval", probe_interval),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if startup_delay < 0:
            raise ValueError(f"startup_delay must not be negative, got {startup_delay}")

        self._probe = probe
        self.events = events or EventBus()
        self.grace_period = grace_period
        self.sync_interval = sync_interval
        self.startup_delay = startup_delay
        self.probe_interval = probe_interval

        if initial_reachable is not None:
            self._reachable = bool(initial_reachable)
        elif probe is None:
            self._reachable = True
        elif inspect.iscoroutinefunction(probe):
            self._reachable = False
        else:
            self._reachable = self._read_sync_probe(probe)

        self._callbacks: list[TriggerCallback] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None

    @staticmethod
    def _read_sync_probe(probe: Probe) -> bool:
        try:
            return bool(probe())
        except Exception as e:
            logger.warning(f"Connectivity probe failed: {e}", extra={"error": str(e)})
            return False

    @property
    def is_reachable(self) -> bool:
        return self._reachable

    @property
    def running(self) -> bool:
        return self._running

    def on_trigger(self, callback: TriggerCallback) -> Callable[[], None]:
        """Subscribe to sync triggers. Returns an unsubscribe callable."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def _fire(self, reason: str) -> None:
        self._timers.pop(reason, None)
        for callback in list(self._callbacks):
            try:
                callback(reason)
            except Exception as e:
                logger.error(
                    f"Sync trigger callback raised: {e}",
                    exc_info=True,
                    extra={"reason": reason},
                )

    def _schedule(self, reason: str, delay: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; start() performs the first sync check
            return
        pending = self._timers.pop(reason, None)
        if pending is not None:
            pending.cancel()
        self._timers[reason] = loop.call_later(delay, self._fire, reason)

    def report(self, reachable: bool) -> bool:
        """Record a platform connectivity signal.

        Safe to call from any thread. Once the monitor is running, a signal
        from outside its event loop is handed to that loop, and the return
        value is whether it differs from the state at the time of the call.

        Returns:
            True if the state changed.
        """
        reachable = bool(reachable)
        loop = self._loop
        if loop is not None and not loop.is_closed() and not self._on_loop(loop):
            loop.call_soon_threadsafe(self._apply, reachable)
            return reachable != self._reachable
        return self._apply(reachable)

    @staticmethod
    def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False

    def _apply(self, reachable: bool) -> bool:
        if reachable == self._reachable:
            return False

        self._reachable = reachable
        logger.info(
            "Connection restored" if reachable else "Connection lost",
            extra={"reachable": reachable},
        )
        self.events.emit(ConnectivityChanged(reachable=reachable))

        if reachable:
            self._schedule(TRIGGER_RECONNECTED, self.grace_period)
        return True

    async def poll(self) -> bool:
        """Query the probe once and report the result. Returns the new state."""
        if self._probe is None:
            return self._reachable
        try:
            result = self._probe()
            if inspect.isawaitable(result):
                result = await result
            reachable = bool(result)
        except Exception as e:
            logger.warning(f"Connectivity probe failed: {e}", extra={"error": str(e)})
            reachable = False
        self.report(reachable)
        return reachable

    async def _poll_loop(self) -> None:
        while True:
            await self.poll()
            await asyncio.sleep(self.probe_interval)

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            self._fire(TRIGGER_PERIODIC)

    def start(self) -> None:
        """Begin polling and periodic triggers. Must be called inside a running loop."""
        if self._running:
            return
        loop = asyncio.get_running_loop()
        self._running = True
        self._loop = loop

        self._tasks.append(loop.create_task(self._periodic_loop()))
        if self._probe is not None:
            self._tasks.append(loop.create_task(self._poll_loop()))
        self._schedule(TRIGGER_STARTUP, self.startup_delay)

    async def stop(self) -> None:
        """Cancel every timer and background task owned by the monitor."""
        self._running = False
        self._loop = None
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
