# =============================================================================
# tests/unit/test_sync_engine.py
# Unit Tests for SyncProcessor
# =============================================================================

import threading
import time
import pytest

from fitness_core.errors import LocalWriteError
from fitness_core.offline.models import OutboxOperation
from fitness_core.offline.sync_engine import SyncProcessor, SyncState

from tests.conftest import BlockingBackend, RecordingBackend


def wait_until(predicate, timeout=5.0, interval=0.02):
    """Poll until predicate() is truthy or the timeout expires"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def enqueue_sessions(queue, n):
    return [queue.add("create", "workout_sessions", {"id": f"s{i}"}) for i in range(n)]


class TestGating:
    """Test the enabled/online/backend gate"""

    def test_can_sync_when_online_enabled_with_backend(self, processor):
        assert processor.can_sync()

    def test_offline_skips_pass(self, processor, monitor, queue, backend):
        enqueue_sessions(queue, 1)
        monitor.set_online(False)

        result = processor.sync_now()

        assert result.skipped
        assert backend.attempts == []
        assert queue.count() == 1

    def test_disabled_skips_pass(self, processor, queue, backend):
        enqueue_sessions(queue, 1)
        processor.set_enabled(False)

        assert processor.sync_now().skipped
        assert processor.state == SyncState.IDLE
        assert backend.attempts == []

    def test_no_backend_stays_idle(self, queue, monitor, clock):
        proc = SyncProcessor(queue, monitor, None, clock=clock)
        enqueue_sessions(queue, 2)

        assert not proc.can_sync()
        assert proc.sync_now().skipped
        assert queue.count() == 2
        proc.close()

    def test_concurrent_pass_is_skipped(self, processor, queue):
        enqueue_sessions(queue, 1)
        processor._drain_lock.acquire()
        try:
            assert processor.sync_now().skipped
        finally:
            processor._drain_lock.release()


class TestDrainPass:
    """Test synchronous drain passes"""

    def test_drains_to_empty_in_fifo_order(self, processor, queue, backend):
        ids = enqueue_sessions(queue, 4)

        result = processor.sync_now()

        assert result.delivered == 4
        assert not result.failed
        assert queue.count() == 0
        assert [e.id for e in backend.applied] == ids
        assert processor.status.total_synced == 4
        assert processor.status.last_success is not None

    def test_empty_queue_pass(self, processor):
        result = processor.sync_now()

        assert result.delivered == 0
        assert not result.failed
        assert processor.state == SyncState.IDLE

    def test_failure_stops_pass_and_keeps_entry(self, processor, queue):
        processor.backend = RecordingBackend(fail_times=1)
        ids = enqueue_sessions(queue, 3)

        result = processor.sync_now()

        assert result.failed
        assert result.delivered == 0
        entries = queue.list()
        assert [e.id for e in entries] == ids
        assert entries[0].attempts == 1
        assert "remote rejected" in entries[0].error
        assert entries[1].attempts == 0
        assert processor.status.consecutive_failures == 1

    def test_failed_entry_retried_first_on_next_pass(self, processor, queue):
        backend = RecordingBackend(fail_times=1)
        processor.backend = backend
        ids = enqueue_sessions(queue, 2)

        processor.sync_now()
        result = processor.sync_now()

        assert result.delivered == 2
        assert [e.id for e in backend.applied] == ids
        assert processor.status.consecutive_failures == 0
        assert processor.status.last_error is None

    def test_stuck_entries_surface_in_status(self, processor, queue):
        processor.backend = RecordingBackend(fail_times=10)
        enqueue_sessions(queue, 1)

        for _ in range(3):
            processor.sync_now()

        assert processor.status.stuck_count == 1
        assert queue.count() == 1

    def test_local_only_fields_are_stripped(self, processor, queue, backend):
        queue.add("update", "workout_sessions", {"id": "s1", "rating": 5, "sync_status": "pending", "remote_id": 7})

        processor.sync_now()

        assert backend.applied[0].payload == {"id": "s1", "rating": 5}
        assert backend.applied[0].operation == OutboxOperation.UPDATE


class TestTimeoutsAndCancellation:
    """Test bounded remote calls"""

    def test_slow_call_times_out_as_failure(self, processor, queue):
        slow = BlockingBackend()
        processor.backend = slow
        processor.remote_timeout = 0.3
        enqueue_sessions(queue, 2)

        try:
            result = processor.sync_now()
        finally:
            slow.release.set()

        assert result.failed
        head = queue.list()[0]
        assert head.attempts == 1
        assert "SYNC_002" in head.error
        assert queue.count() == 2

    def test_going_offline_mid_call_aborts_pass(self, processor, queue, monitor):
        slow = BlockingBackend()
        processor.backend = slow
        processor.remote_timeout = 5
        enqueue_sessions(queue, 2)

        results = []
        worker = threading.Thread(target=lambda: results.append(processor.sync_now()))
        worker.start()
        try:
            assert slow.started.wait(timeout=2)
            monitor.set_online(False)
            worker.join(timeout=3)
        finally:
            slow.release.set()

        result = results[0]
        assert result.aborted
        assert not result.failed
        head = queue.list()[0]
        assert head.attempts == 1
        assert "Connection lost" in head.error
        assert processor.state == SyncState.IDLE
        assert processor.status.consecutive_failures == 0


class TestBackoff:
    """Test the delay schedule between passes"""

    def test_idle_interval_without_failures(self, processor):
        assert processor.next_delay() == processor.idle_interval

    @pytest.mark.parametrize("failures,expected", [(1, 0.05), (2, 0.1), (3, 0.2), (10, 0.2)])
    def test_exponential_backoff_is_capped(self, processor, failures, expected):
        processor._status.consecutive_failures = failures
        assert processor.next_delay() == pytest.approx(expected)


class TestStatusCallbacks:
    """Test status snapshots pushed to the UI"""

    def test_pass_publishes_draining_then_idle(self, processor, queue):
        states = []
        processor.register_callback(lambda status: states.append(status.state))
        enqueue_sessions(queue, 1)

        processor.sync_now()

        assert SyncState.DRAINING in states
        assert states[-1] == SyncState.IDLE

    def test_snapshot_reports_queue_length(self, processor, queue):
        snapshots = []
        processor.register_callback(snapshots.append)
        enqueue_sessions(queue, 2)

        assert snapshots[-1].queue_length == 2

    def test_failing_callback_does_not_block_others(self, processor, queue):
        def broken(status):
            raise RuntimeError("callback bug")

        snapshots = []
        processor.register_callback(broken)
        processor.register_callback(snapshots.append)
        enqueue_sessions(queue, 1)

        result = processor.sync_now()

        assert result.delivered == 1
        assert snapshots[-1].state == SyncState.IDLE

    def test_unregister_callback(self, processor, queue):
        snapshots = []
        processor.register_callback(snapshots.append)
        processor.unregister_callback(snapshots.append)

        processor.sync_now()

        assert snapshots == []

    def test_status_display(self, processor, queue):
        enqueue_sessions(queue, 1)
        display = processor.get_status_display()

        assert display["pending_count"] == 1
        assert display["state"] == "idle"
        assert display["is_online"] is True


class TestBackgroundLoop:
    """Test the background thread"""

    def test_enqueue_wakes_loop(self, processor, queue, backend):
        processor.idle_interval = 30
        processor.start()
        assert wait_until(lambda: processor.state == SyncState.WAITING)

        enqueue_sessions(queue, 3)

        assert wait_until(lambda: queue.count() == 0)
        assert len(backend.applied) == 3

    def test_reconnect_wakes_loop(self, processor, queue, monitor, backend):
        processor.idle_interval = 30
        monitor.set_online(False)
        processor.start()
        enqueue_sessions(queue, 2)
        time.sleep(0.1)
        assert backend.applied == []

        monitor.set_online(True)

        assert wait_until(lambda: queue.count() == 0)

    def test_failures_retried_with_backoff(self, processor, queue):
        backend = RecordingBackend(fail_times=2)
        processor.backend = backend
        enqueue_sessions(queue, 1)

        processor.start()

        assert wait_until(lambda: queue.count() == 0)
        assert len(backend.attempts) == 3

    def test_local_failure_is_recorded_and_retried(self, processor, queue, monkeypatch):
        real_pass = processor._drain_pass
        passes = []

        def store_down_once():
            passes.append(1)
            if len(passes) == 1:
                raise LocalWriteError("store unavailable", table="sync_queue")
            return real_pass()

        monkeypatch.setattr(processor, "_drain_pass", store_down_once)
        snapshots = []
        processor.register_callback(snapshots.append)
        enqueue_sessions(queue, 1)

        processor.start()

        assert wait_until(lambda: queue.count() == 0)
        assert any(s.last_error == "store unavailable" for s in snapshots)
        assert any(s.consecutive_failures == 1 for s in snapshots)

    def test_stop_returns_to_idle(self, processor):
        processor.start()
        assert processor.is_running

        processor.stop()

        assert not processor.is_running
        assert processor.state == SyncState.IDLE
