"""Integration tests for OfflineRuntime."""

import asyncio
import io
import json
import logging

import pytest

from stakesync.backends.file import JsonFileMedium
from stakesync.backends.inmemory import InMemoryMedium
from stakesync.backends.redis_medium import RedisMedium
from stakesync.core.config import SyncSettings
from stakesync.core.logging import JSONFormatter
from stakesync.core.models import DAY_MS, OperationKind
from stakesync.core.orchestrator import DurableAbandonedStore, InMemoryAbandonedStore
from stakesync.runtime import OfflineRuntime, build_medium


def fast_settings(**overrides) -> SyncSettings:
    values = {
        "storage_backend": "memory",
        "reconnect_grace_seconds": 0.02,
        "startup_delay_seconds": 60.0,
        "sync_interval_seconds": 60.0,
        "cleanup_interval_seconds": 60.0,
        "log_level": "WARNING",
        "_env_file": None,
    }
    values.update(overrides)
    return SyncSettings(**values)


class TestBuildMedium:
    def test_memory(self):
        assert isinstance(build_medium(fast_settings()), InMemoryMedium)

    def test_file(self, tmp_path):
        medium = build_medium(fast_settings(storage_backend="file", storage_path=tmp_path))
        assert isinstance(medium, JsonFileMedium)
        assert medium.directory == tmp_path

    def test_redis(self):
        medium = build_medium(
            fast_settings(storage_backend="redis", redis_url="redis://cache:6380")
        )
        assert isinstance(medium, RedisMedium)
        assert medium.redis_url == "redis://cache:6380"


class TestWiring:
    def test_keys_use_prefix(self, make_executor):
        runtime = OfflineRuntime(
            InMemoryMedium(), make_executor(), settings=fast_settings(key_prefix="app")
        )
        assert runtime.queue.key == "app_operation_queue"
        assert runtime.cache.key == "app_staking_snapshot"

    def test_abandoned_store_choice(self, make_executor):
        plain = OfflineRuntime(InMemoryMedium(), make_executor(), settings=fast_settings())
        durable = OfflineRuntime(
            InMemoryMedium(), make_executor(), settings=fast_settings(persist_abandoned=True)
        )
        assert isinstance(plain.orchestrator.abandoned_store, InMemoryAbandonedStore)
        assert isinstance(durable.orchestrator.abandoned_store, DurableAbandonedStore)

    def test_max_retries_from_settings(self, make_executor):
        runtime = OfflineRuntime(
            InMemoryMedium(), make_executor(), settings=fast_settings(max_retries=5)
        )
        assert runtime.orchestrator.max_retries == 5

    def test_from_settings(self, make_executor):
        runtime = OfflineRuntime.from_settings(make_executor(), settings=fast_settings())
        assert isinstance(runtime.medium, InMemoryMedium)


class TestLifecycle:
    @pytest.mark.timeout(5)
    async def test_offline_then_reconnect_drains_queue(self, make_executor, make_recorder):
        executor = make_executor()
        runtime = OfflineRuntime(
            InMemoryMedium(), executor, settings=fast_settings(), initial_reachable=False
        )
        recorder = make_recorder()
        runtime.events.subscribe(recorder)

        async with runtime:
            assert runtime.facade.offline_status.is_offline is True
            a = runtime.facade.enqueue(OperationKind.STAKE, {"amount": "100", "address": "0xA"})
            b = runtime.facade.enqueue(OperationKind.CLAIM, {"address": "0xA"})

            runtime.monitor.report(True)
            await asyncio.sleep(0.06)
            await runtime.orchestrator.wait_idle()

            assert runtime.facade.pending_operations == []
            assert runtime.facade.offline_status.is_offline is False

        assert recorder.types == ["connectivity_changed", "synced", "synced"]
        assert [e.operation_id for e in recorder.of_type("synced")] == [a, b]
        assert runtime.orchestrator.get_stats().episodes == 1

    @pytest.mark.timeout(5)
    async def test_startup_trigger_syncs_when_already_online(self, make_executor):
        runtime = OfflineRuntime(
            InMemoryMedium(),
            make_executor(),
            settings=fast_settings(startup_delay_seconds=0.01),
            initial_reachable=True,
        )
        runtime.facade.enqueue(OperationKind.CLAIM, {"address": "0xA"})

        async with runtime:
            await asyncio.sleep(0.05)
            await runtime.orchestrator.wait_idle()
            assert runtime.facade.pending_operations == []

    @pytest.mark.timeout(5)
    async def test_start_runs_cleanup(self, make_executor, clock):
        runtime = OfflineRuntime(
            InMemoryMedium(), make_executor(), settings=fast_settings(), clock=clock
        )
        stale = runtime.facade.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        clock.advance(DAY_MS + 1)
        fresh = runtime.facade.enqueue(OperationKind.CLAIM, {"address": "0xB"})

        await runtime.start()
        try:
            ids = [op.id for op in runtime.facade.pending_operations]
            assert stale not in ids
            assert fresh in ids
        finally:
            await runtime.stop()

    @pytest.mark.timeout(5)
    async def test_periodic_cleanup(self, make_executor, clock):
        runtime = OfflineRuntime(
            InMemoryMedium(),
            make_executor(),
            settings=fast_settings(cleanup_interval_seconds=0.02),
            clock=clock,
            initial_reachable=False,
        )
        async with runtime:
            runtime.facade.enqueue(OperationKind.CLAIM, {"address": "0xA"})
            clock.advance(DAY_MS + 1)
            await asyncio.sleep(0.06)
            assert runtime.facade.pending_operations == []

    @pytest.mark.timeout(5)
    async def test_start_stop_idempotent(self, make_executor):
        runtime = OfflineRuntime(InMemoryMedium(), make_executor(), settings=fast_settings())
        await runtime.start()
        await runtime.start()
        assert runtime.started
        await runtime.stop()
        await runtime.stop()
        assert not runtime.started
        assert runtime.monitor.running is False

    @pytest.mark.timeout(5)
    async def test_queue_survives_restart_on_file_medium(self, make_executor, tmp_path):
        settings = fast_settings(storage_backend="file", storage_path=tmp_path)
        first = OfflineRuntime.from_settings(
            make_executor(), settings=settings, initial_reachable=False
        )
        async with first:
            op_id = first.facade.enqueue(OperationKind.CLAIM, {"address": "0xA"})

        executor = make_executor()
        second = OfflineRuntime.from_settings(
            executor, settings=settings, initial_reachable=True
        )
        async with second:
            assert [op.id for op in second.facade.pending_operations] == [op_id]
            assert second.facade.request_sync() is True
            await second.orchestrator.wait_idle()
            assert second.facade.pending_operations == []
        assert executor.calls == [("claim", {"address": "0xA"})]


class TestLogging:
    def test_module_loggers_write_json_at_configured_level(self, make_executor):
        medium = InMemoryMedium()
        medium.set("stakesync_operation_queue", "{not json")
        runtime = OfflineRuntime(
            medium,
            make_executor(),
            settings=fast_settings(log_level="DEBUG"),
            initial_reachable=False,
        )

        package_logger = logging.getLogger("stakesync")
        assert package_logger.level == logging.DEBUG
        handler = next(
            h for h in package_logger.handlers if isinstance(h.formatter, JSONFormatter)
        )
        buffer = io.StringIO()
        handler.setStream(buffer)

        runtime.monitor.report(True)
        assert runtime.queue.read_all() == []

        lines = [json.loads(line) for line in buffer.getvalue().splitlines()]
        connectivity = [e for e in lines if e["logger"] == "stakesync.connectivity"]
        assert connectivity[0]["level"] == "INFO"
        assert connectivity[0]["message"] == "Connection restored"
        assert connectivity[0]["reachable"] is True
        assert any(
            e["logger"] == "stakesync.queue" and e["level"] == "WARNING" for e in lines
        )

    def test_log_level_filters_module_records(self, make_executor):
        OfflineRuntime(
            InMemoryMedium(), make_executor(), settings=fast_settings(log_level="ERROR")
        )
        assert not logging.getLogger("stakesync.connectivity").isEnabledFor(logging.INFO)
