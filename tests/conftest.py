"""Pytest configuration, Hypothesis profiles and shared fakes."""

import logging

import pytest
from hypothesis import settings

from stakesync.backends.inmemory import InMemoryMedium
from stakesync.core.events import EventBus, LifecycleEvent
from stakesync.core.executor import ExecutionResult

# Register Hypothesis profiles
settings.register_profile("ci", max_examples=100)
settings.register_profile("dev", max_examples=20)

# Load dev profile by default, CI can override via --hypothesis-profile=ci
settings.load_profile("dev")

T0 = 1_700_000_000_000


class FakeClock:
    """Controllable epoch-ms clock."""

    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class ScriptedExecutor:
    """Executor whose outcomes are scripted per kind.

    Each kind has a list of outcomes consumed in order; when a list runs out
    the default outcome is used. An outcome is True, False, an error string
    (failure with that message) or an exception instance (raised).
    """

    def __init__(self, default=True, **scripts) -> None:
        self.default = default
        self.scripts = {kind: list(outcomes) for kind, outcomes in scripts.items()}
        self.calls: list[tuple[str, dict]] = []

    def _next(self, kind: str):
        script = self.scripts.get(kind)
        if script:
            return script.pop(0)
        return self.default

    def _result(self, kind: str, params: dict) -> ExecutionResult:
        self.calls.append((kind, params))
        outcome = self._next(kind)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is True:
            return ExecutionResult.ok()
        if outcome is False:
            return ExecutionResult.failed(f"{kind} failed")
        return ExecutionResult.failed(str(outcome))

    async def stake(self, amount, address):
        return self._result("stake", {"amount": amount, "address": address})

    async def unstake(self, amount, address):
        return self._result("unstake", {"amount": amount, "address": address})

    async def claim(self, address):
        return self._result("claim", {"address": address})


class EventRecorder:
    """EventBus listener that keeps every event it sees."""

    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []

    def __call__(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[LifecycleEvent]:
        return [e for e in self.events if e.event_type == event_type]

    @property
    def types(self) -> list[str]:
        return [e.event_type for e in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def medium() -> InMemoryMedium:
    return InMemoryMedium()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    rec = EventRecorder()
    bus.subscribe(rec)
    return rec


@pytest.fixture
def make_executor():
    """Factory for ScriptedExecutor instances."""
    return ScriptedExecutor


@pytest.fixture
def make_recorder():
    """Factory for EventRecorder instances."""
    return EventRecorder


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo runtime logging setup so caplog sees module records in later tests."""
    yield
    logger = logging.getLogger("stakesync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
