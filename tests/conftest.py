# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import threading
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from fitness_core.errors import RemoteSyncError
from fitness_core.offline.connection_manager import ConnectionMonitor
from fitness_core.offline.local_database import LocalDatabase
from fitness_core.offline.models import SetLog, WorkoutSession
from fitness_core.offline.remote_backend import RemoteBackend
from fitness_core.offline.sync_engine import SyncProcessor
from fitness_core.offline.sync_queue import OutboxQueue
from fitness_core.offline.unified_data_service import FitnessDataService
from fitness_core.utils.clock import FixedClock


NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
USER_ID = "user-1"


# =============================================================================
# FAKE BACKENDS
# =============================================================================

class RecordingBackend(RemoteBackend):
    """Accepts every entry (after ``fail_times`` rejections) and records it."""

    name = "recording"

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.attempts = []
        self.applied = []
        self.closed = False

    def apply(self, entry):
        self.attempts.append(entry)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RemoteSyncError(
                "remote rejected the write",
                table=entry.table,
                operation=entry.operation.value,
                status_code=500,
            )
        self.applied.append(entry)

    def close(self):
        self.closed = True


class BlockingBackend(RemoteBackend):
    """Holds every call until ``release`` is set."""

    name = "blocking"

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.applied = []

    def apply(self, entry):
        self.started.set()
        self.release.wait(timeout=5)
        self.applied.append(entry)


# =============================================================================
# CORE FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    """Deterministic clock; every read advances 1 ms"""
    return FixedClock(NOW, auto_tick=True)


@pytest.fixture
def db(clock):
    """Initialized in-memory store"""
    database = LocalDatabase(":memory:", clock=clock)
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def queue(db, clock):
    return OutboxQueue(db, clock)


@pytest.fixture
def monitor():
    """Connectivity monitor that starts online"""
    return ConnectionMonitor(initial_online=True)


@pytest.fixture
def backend():
    return RecordingBackend()


@pytest.fixture
def processor(queue, monitor, backend, clock):
    """Processor with short timings; not started"""
    proc = SyncProcessor(
        queue,
        monitor,
        backend,
        clock=clock,
        remote_timeout=1.0,
        idle_interval=0.05,
        backoff_base=0.05,
        backoff_max=0.2,
        surface_after_attempts=3,
        local_only_fields={"workout_sessions": ["sync_status"]},
    )
    yield proc
    proc.close()


@pytest.fixture
def service(db, queue, monitor, processor, clock):
    return FitnessDataService(db, queue, monitor, processor, clock=clock)


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.upsert.return_value.execute.return_value = MagicMock(data=[])
    mock_client.table.return_value.delete.return_value.eq.return_value.execute.return_value = MagicMock(data=[])
    return mock_client


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_session(session_id="s1", user_id=USER_ID, when=NOW, completed=True, **kwargs):
    """Workout session on ``when`` (completed an hour later unless told otherwise)"""
    return WorkoutSession(
        id=session_id,
        user_id=user_id,
        session_date=when.isoformat(),
        completed_at=(when + timedelta(hours=1)).isoformat() if completed else None,
        **kwargs,
    )


def make_set(set_id, session_id="s1", exercise_id="bench_press", weight=100.0, reps=5, **kwargs):
    return SetLog(
        id=set_id,
        session_id=session_id,
        exercise_id=exercise_id,
        weight_kg=weight,
        reps=reps,
        **kwargs,
    )


@pytest.fixture
def session_factory():
    return make_session


@pytest.fixture
def set_factory():
    return make_set
