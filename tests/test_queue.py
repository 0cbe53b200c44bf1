"""Tests for OperationQueue."""

import logging
import threading

import pytest
from hypothesis import given
from hypothesis import strategies as st

from stakesync.backends.inmemory import InMemoryMedium
from stakesync.core.models import DAY_MS, OperationKind
from stakesync.core.queue import DEFAULT_QUEUE_KEY, EnqueueError, OperationQueue

T0 = 1_700_000_000_000

kinds = st.sampled_from(list(OperationKind))
payloads = st.fixed_dictionaries(
    {"address": st.from_regex(r"0x[0-9a-f]{1,8}", fullmatch=True)},
    optional={"amount": st.integers(min_value=1, max_value=10**6).map(str)},
)


class Clock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class FlakyMedium(InMemoryMedium):
    """Medium whose writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def set(self, key, value):
        if self.fail_writes:
            raise OSError("storage quota exceeded")
        super().set(key, value)

    def remove(self, key):
        if self.fail_writes:
            raise OSError("storage quota exceeded")
        super().remove(key)


class TestEnqueue:
    def test_returns_id_and_appends(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        op_id = queue.enqueue(OperationKind.STAKE, {"amount": "100", "address": "0xA"})
        items = queue.read_all()
        assert [i.id for i in items] == [op_id]
        assert items[0].retry_count == 0
        assert items[0].timestamp == clock.now
        assert items[0].payload == {"amount": "100", "address": "0xA"}

    def test_accepts_kind_string(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        queue.enqueue("claim", {"address": "0xA"})
        assert queue.read_all()[0].kind is OperationKind.CLAIM

    def test_rejects_unknown_kind(self, medium, clock):
        with pytest.raises(ValueError):
            OperationQueue(medium, clock=clock).enqueue("transfer", {})

    def test_ids_unique(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        ids = [queue.enqueue(OperationKind.CLAIM, {"address": "0xA"}) for _ in range(50)]
        assert len(set(ids)) == 50

    def test_payload_is_copied(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        payload = {"address": "0xA"}
        queue.enqueue(OperationKind.CLAIM, payload)
        payload["address"] = "0xB"
        assert queue.read_all()[0].payload == {"address": "0xA"}

    def test_write_failure_raises_enqueue_error(self, clock):
        medium = FlakyMedium()
        medium.fail_writes = True
        queue = OperationQueue(medium, clock=clock)
        with pytest.raises(EnqueueError) as exc_info:
            queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        assert isinstance(exc_info.value.original, OSError)
        assert queue.read_all() == []


@given(ops=st.lists(st.tuples(kinds, payloads), max_size=25))
def test_read_all_preserves_insertion_order(ops):
    queue = OperationQueue(InMemoryMedium(), clock=Clock())
    ids = [queue.enqueue(kind, payload) for kind, payload in ops]
    items = queue.read_all()
    assert [i.id for i in items] == ids
    assert [(i.kind, i.payload) for i in items] == [(k, p) for k, p in ops]


class TestRemove:
    def test_removes_only_target(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        a = queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        b = queue.enqueue(OperationKind.CLAIM, {"address": "0xB"})
        c = queue.enqueue(OperationKind.CLAIM, {"address": "0xC"})
        assert queue.remove(b) is True
        assert [i.id for i in queue.read_all()] == [a, c]

    def test_absent_id_is_noop(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        a = queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        assert queue.remove("op_missing") is False
        assert [i.id for i in queue.read_all()] == [a]

    def test_removing_last_item_deletes_record(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        a = queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        queue.remove(a)
        assert medium.get(DEFAULT_QUEUE_KEY) is None
        assert queue.read_all() == []

    def test_write_failure_is_logged_not_raised(self, clock, caplog):
        medium = FlakyMedium()
        queue = OperationQueue(medium, clock=clock)
        a = queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        medium.fail_writes = True
        with caplog.at_level(logging.ERROR, logger="stakesync.queue"):
            assert queue.remove(a) is False
        assert any("Failed to remove" in r.getMessage() for r in caplog.records)
        assert len(queue.read_all()) == 1


class TestIncrementRetry:
    def test_increments_by_one(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        a = queue.enqueue(OperationKind.STAKE, {"amount": "1", "address": "0xA"})
        assert queue.increment_retry(a) == 1
        assert queue.increment_retry(a) == 2
        assert queue.get(a).retry_count == 2

    def test_preserves_position_and_fields(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        a = queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        b = queue.enqueue(OperationKind.CLAIM, {"address": "0xB"})
        before = queue.get(a)
        queue.increment_retry(a)
        after = queue.read_all()
        assert [i.id for i in after] == [a, b]
        assert after[0].kind == before.kind
        assert after[0].timestamp == before.timestamp

    def test_absent_id_is_noop(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        assert queue.increment_retry("op_missing") is None
        assert queue.read_all()[0].retry_count == 0


class TestClear:
    def test_clear_removes_all(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        for _ in range(3):
            queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        queue.clear()
        assert queue.read_all() == []
        assert len(queue) == 0


class TestPurge:
    def test_purges_only_old_items(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        old = queue.enqueue(OperationKind.CLAIM, {"address": "0xOld"})
        queue.increment_retry(old)
        clock.now += DAY_MS
        boundary = queue.enqueue(OperationKind.CLAIM, {"address": "0xEdge"})
        clock.now += 1
        fresh = queue.enqueue(OperationKind.CLAIM, {"address": "0xNew"})

        removed = queue.purge_older_than(DAY_MS)

        assert removed == [old]
        assert [i.id for i in queue.read_all()] == [boundary, fresh]

    def test_nothing_to_purge(self, medium, clock):
        queue = OperationQueue(medium, clock=clock)
        queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        assert queue.purge_older_than(DAY_MS) == []

    @given(
        ages=st.lists(
            st.tuples(st.integers(min_value=0, max_value=3 * DAY_MS), st.integers(0, 2)),
            max_size=20,
        ),
        threshold=st.integers(min_value=1, max_value=2 * DAY_MS),
    )
    def test_purge_removes_exactly_expired(self, ages, threshold):
        clock = Clock()
        queue = OperationQueue(InMemoryMedium(), clock=clock)
        now = T0 + 3 * DAY_MS
        expected_kept = []
        expected_removed = []
        for age, retries in ages:
            clock.now = now - age
            op_id = queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
            for _ in range(retries):
                queue.increment_retry(op_id)
            (expected_removed if age > threshold else expected_kept).append(op_id)

        removed = queue.purge_older_than(threshold, now=now)

        assert removed == expected_removed
        assert [i.id for i in queue.read_all()] == expected_kept


class TestFailClosed:
    @pytest.mark.parametrize(
        "blob",
        [
            "garbage",
            '{"version": 1, "items": "nope"}',
            '{"version": 7, "items": []}',
            "[1, 2, 3]",
        ],
    )
    def test_corrupted_record_reads_as_empty(self, medium, clock, blob):
        medium.set(DEFAULT_QUEUE_KEY, blob)
        assert OperationQueue(medium, clock=clock).read_all() == []

    def test_malformed_items_are_dropped(self, medium, clock, caplog):
        medium.set(
            DEFAULT_QUEUE_KEY,
            '{"version": 1, "items": ['
            '{"id": "op_1", "kind": "claim", "payload": {"address": "0xA"},'
            ' "timestamp": 1, "retry_count": 0},'
            '{"id": "op_2", "kind": "teleport", "payload": {}, "timestamp": 1,'
            ' "retry_count": 0}]}',
        )
        with caplog.at_level(logging.WARNING, logger="stakesync.queue"):
            items = OperationQueue(medium, clock=clock).read_all()
        assert [i.id for i in items] == ["op_1"]
        assert any("index 1" in r.getMessage() for r in caplog.records)

    def test_enqueue_after_corruption_starts_fresh(self, medium, clock):
        medium.set(DEFAULT_QUEUE_KEY, "garbage")
        queue = OperationQueue(medium, clock=clock)
        op_id = queue.enqueue(OperationKind.CLAIM, {"address": "0xA"})
        assert [i.id for i in queue.read_all()] == [op_id]


def test_concurrent_mutations_do_not_lose_writes(medium):
    queue = OperationQueue(medium)
    ids = [queue.enqueue(OperationKind.CLAIM, {"address": f"0x{i}"}) for i in range(20)]

    def bump():
        for op_id in ids:
            queue.increment_retry(op_id)

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert [i.retry_count for i in queue.read_all()] == [4] * 20
