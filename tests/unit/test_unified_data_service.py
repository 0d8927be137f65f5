# =============================================================================
# tests/unit/test_unified_data_service.py
# Unit Tests for FitnessDataService
# =============================================================================

import pytest
from datetime import timedelta

from fitness_core.config import OfflineConfig
from fitness_core.errors import LocalWriteError, ValidationError
from fitness_core.offline.connection_manager import ConnectionMonitor
from fitness_core.offline.models import (
    BodyMeasurement,
    Goal,
    Gym,
    OutboxOperation,
    TPath,
    TPathExercise,
    TPathProgress,
    WorkoutTemplate,
)
from fitness_core.offline.sync_engine import SyncState
from fitness_core.offline.unified_data_service import (
    SYNC_ENABLED_SETTING,
    create_data_service,
)

from tests.conftest import NOW, USER_ID, RecordingBackend, make_session, make_set


def outbox(service):
    """(operation, table, id) for every pending entry, oldest first"""
    return [(e.operation.value, e.table, e.payload["id"]) for e in service.queue.list()]


class TestWritesEnqueue:
    """Test that every local write lands in the outbox with it"""

    def test_session_and_sets(self, service):
        service.add_workout_session(make_session("s1"))
        service.add_set_log(make_set("a"))

        assert outbox(service) == [
            ("create", "workout_sessions", "s1"),
            ("create", "set_logs", "a"),
        ]
        assert service.queue_length == 2

    def test_write_is_visible_immediately(self, service):
        service.add_workout_session(make_session("s1"))
        assert service.get_workout_session("s1").user_id == USER_ID

    def test_failed_enqueue_rolls_back_the_row(self, service, monkeypatch):
        def refuse(*args, **kwargs):
            raise LocalWriteError("outbox unavailable", table="workout_sessions")

        monkeypatch.setattr(service.queue, "add", refuse)

        with pytest.raises(LocalWriteError):
            service.add_workout_session(make_session("s1"))

        assert service.get_workout_session("s1") is None
        assert service.queue.count() == 0

    def test_failed_write_enqueues_nothing(self, service):
        with pytest.raises(ValidationError):
            service.add_t_path(TPath(id="orphan", user_id=USER_ID, template_name="X", parent_t_path_id="missing"))

        assert service.queue_length == 0

    def test_update_payload_is_full_row(self, service):
        service.add_workout_session(make_session("s1", template_name="Push"))

        assert service.update_workout_session("s1", {"rating": 4})

        entry = service.queue.list()[-1]
        assert entry.operation == OutboxOperation.UPDATE
        assert entry.payload["rating"] == 4
        assert entry.payload["template_name"] == "Push"
        assert entry.payload["session_date"] == NOW.isoformat()

    def test_update_of_missing_row_enqueues_nothing(self, service):
        assert service.update_workout_session("ghost", {"rating": 4}) is False
        assert service.queue_length == 0

    def test_delete_of_missing_row_enqueues_nothing(self, service):
        assert service.delete_goal("ghost") is False
        assert service.queue_length == 0

    def test_template_save_is_create_then_update(self, service):
        template = WorkoutTemplate(id="t1", user_id=USER_ID, name="Legs", exercises=["squat"])
        service.save_template(template)
        service.save_template(WorkoutTemplate(id="t1", user_id=USER_ID, name="Leg Day", exercises=["squat"]))

        assert [op for op, _, _ in outbox(service)] == ["create", "update"]
        assert service.queue.list()[-1].payload["exercises"] == ["squat"]

    def test_template_resave_keeps_created_at(self, service):
        template = WorkoutTemplate(id="t1", user_id=USER_ID, name="Legs", exercises=["squat"])
        created = service.save_template(template)

        resaved = service.save_template(template)

        assert resaved == created
        assert service.get_template("t1").created_at == created.created_at
        assert service.queue.list()[-1].payload["created_at"] == created.created_at

    def test_goal_progress(self, service):
        service.save_goal(Goal(id="g1", user_id=USER_ID, goal_type="weight", target_value=80))
        service.update_goal_progress("g1", 82.5)

        assert outbox(service)[-1] == ("update", "user_goals", "g1")
        assert service.queue.list()[-1].payload["current_value"] == 82.5

    def test_measurement_and_delete(self, service):
        service.save_body_measurement(BodyMeasurement(id="m1", user_id=USER_ID, measurement_date="2024-06-01", weight_kg=80))
        service.delete_body_measurement("m1")

        assert outbox(service) == [
            ("create", "body_measurements", "m1"),
            ("delete", "body_measurements", "m1"),
        ]
        assert service.queue.list()[-1].payload == {"id": "m1"}


class TestCascadingDeletes:
    """Test that deletes queue every row the local cascade removes"""

    def test_session_delete_queues_sets_first(self, service):
        service.add_workout_session(make_session("s1"))
        service.add_set_log(make_set("a"))
        service.add_set_log(make_set("b"))

        assert service.delete_workout_session("s1")

        assert outbox(service)[-3:] == [
            ("delete", "set_logs", "a"),
            ("delete", "set_logs", "b"),
            ("delete", "workout_sessions", "s1"),
        ]
        assert service.get_set_logs("s1") == []

    def test_replace_set_logs(self, service):
        service.add_workout_session(make_session("s1"))
        service.add_set_log(make_set("old"))

        service.replace_set_logs_for_session("s1", [make_set("new-1"), make_set("new-2")])

        assert outbox(service)[-3:] == [
            ("delete", "set_logs", "old"),
            ("create", "set_logs", "new-1"),
            ("create", "set_logs", "new-2"),
        ]

    def test_t_path_tree_delete_leaves_first(self, service):
        service.add_t_path(TPath(id="main", user_id=USER_ID, template_name="PPL", is_main_program=True))
        service.add_t_path(TPath(id="push", user_id=USER_ID, template_name="Push", parent_t_path_id="main"))
        service.add_t_path_exercise(TPathExercise(id="ex-push", template_id="push", exercise_id="bench_press"))
        service.add_t_path_exercise(TPathExercise(id="ex-main", template_id="main", exercise_id="squat"))
        service.update_t_path_progress(TPathProgress(id="prog", user_id=USER_ID, t_path_id="push"))
        created = len(service.queue.list())

        assert service.delete_t_path("main")

        deletes = outbox(service)[created:]
        assert deletes == [
            ("delete", "t_path_exercises", "ex-push"),
            ("delete", "t_path_progress", "prog"),
            ("delete", "t_paths", "push"),
            ("delete", "t_path_exercises", "ex-main"),
            ("delete", "t_paths", "main"),
        ]
        assert service.get_t_paths(USER_ID) == []

    def test_missing_t_path_delete(self, service):
        assert service.delete_t_path("ghost") is False
        assert service.queue_length == 0

    def test_progress_upsert_keeps_one_row(self, service):
        service.add_t_path(TPath(id="main", user_id=USER_ID, template_name="PPL"))
        service.update_t_path_progress(TPathProgress(id="p1", user_id=USER_ID, t_path_id="main"))
        service.update_t_path_progress(
            TPathProgress(id="p2", user_id=USER_ID, t_path_id="main", total_workouts_completed=3)
        )

        assert outbox(service)[-2:] == [
            ("create", "t_path_progress", "p1"),
            ("update", "t_path_progress", "p1"),
        ]
        assert len(service.get_all_t_path_progress(USER_ID)) == 1


class TestGyms:
    """Test the single-active-gym rule through the service"""

    def test_active_gym_deactivates_others_and_enqueues(self, service):
        service.add_gym(Gym(id="home", user_id=USER_ID, name="Home", is_active=True))
        stored = service.add_gym(Gym(id="work", user_id=USER_ID, name="Work", is_active=True))

        assert stored.id == "work"
        assert service.get_active_gym(USER_ID).id == "work"
        assert outbox(service)[-2:] == [
            ("create", "gyms", "work"),
            ("update", "gyms", "home"),
        ]
        assert service.queue.list()[-1].payload["is_active"] is False

    def test_set_active_gym(self, service):
        service.add_gym(Gym(id="home", user_id=USER_ID, name="Home", is_active=True))
        service.add_gym(Gym(id="work", user_id=USER_ID, name="Work"))
        before = service.queue_length

        active = service.set_active_gym(USER_ID, "work")

        assert active.id == "work" and active.is_active
        assert sorted(outbox(service)[before:]) == [
            ("update", "gyms", "home"),
            ("update", "gyms", "work"),
        ]

    def test_set_active_gym_for_wrong_user(self, service):
        service.add_gym(Gym(id="home", user_id=USER_ID, name="Home"))

        with pytest.raises(ValidationError):
            service.set_active_gym("someone-else", "home")

    def test_update_gym(self, service):
        service.add_gym(Gym(id="home", user_id=USER_ID, name="Home"))

        assert service.update_gym("home", {"name": "Garage"}) is True
        assert service.update_gym("ghost", {"name": "X"}) is False
        assert service.queue.list()[-1].payload["name"] == "Garage"


class TestAnalyticsAndAchievements:
    """Test the analytics passthroughs and achievement unlocking"""

    def test_complete_workout_unlocks_first_workout(self, service):
        service.add_workout_session(make_session("s1", completed=False))
        service.add_set_log(make_set("a"))

        unlocked = service.complete_workout_session("s1", duration_string="45m", rating=5)

        assert [a.achievement_id for a in unlocked] == ["first_workout", "bench_100"]
        session = service.get_workout_session("s1")
        assert session.is_completed and session.rating == 5
        assert outbox(service)[2][0:2] == ("update", "workout_sessions")
        assert [t for _, t, _ in outbox(service)[3:]] == ["user_achievements", "user_achievements"]

    def test_complete_missing_session(self, service):
        assert service.complete_workout_session("ghost") == []

    def test_evaluate_twice_enqueues_once(self, service):
        service.add_workout_session(make_session("s1"))
        service.evaluate_achievements(USER_ID)
        pending = service.queue_length

        assert service.evaluate_achievements(USER_ID) == []
        assert service.queue_length == pending

    def test_stats_use_default_window(self, service):
        service.add_workout_session(make_session("s1"))
        service.add_workout_session(make_session("old", when=NOW - timedelta(days=45)))

        assert service.get_workout_stats(USER_ID).total_workouts == 1
        assert service.get_workout_stats(USER_ID, days=60).total_workouts == 2

    def test_achievement_progress(self, service):
        assert len(service.get_achievement_progress(USER_ID)) == 21


class TestSyncControl:
    """Test sync toggles, status and resets"""

    def test_sync_now_drains(self, service):
        service.add_workout_session(make_session("s1"))

        result = service.sync_now()

        assert result.delivered == 1
        assert service.queue_length == 0
        assert [e.payload["id"] for e in service.processor.backend.applied] == ["s1"]

    def test_set_sync_enabled_persists(self, service):
        service.set_sync_enabled(False)

        assert service.get_setting(SYNC_ENABLED_SETTING) is False
        assert service.sync_enabled is False
        assert service.sync_now().skipped

    def test_status_callbacks(self, service):
        seen = []
        service.register_status_callback(seen.append)

        service.add_workout_session(make_session("s1"))
        service.unregister_status_callback(seen.append)
        service.add_workout_session(make_session("s2"))

        assert seen and seen[-1].queue_length == 1

    def test_status_display(self, service):
        service.add_workout_session(make_session("s1"))

        display = service.get_status_display()

        assert display["pending_sync"] == 1
        assert display["is_online"] is True
        assert display["sync"]["state"] == SyncState.IDLE.value
        assert display["connection"]["is_online"] is True

    def test_cleanup_user_data_clears_outbox(self, service):
        service.add_workout_session(make_session("s1"))
        service.add_set_log(make_set("a"))
        service.add_gym(Gym(id="home", user_id=USER_ID, name="Home"))

        counts = service.cleanup_user_data(USER_ID)

        assert counts["workout_sessions"] == 1
        assert counts["set_logs"] == 1
        assert counts["sync_queue"] == 3
        assert service.queue_length == 0
        assert service.get_gyms(USER_ID) == []

    def test_settings_round_trip(self, service):
        service.set_setting("units", {"weight": "kg"})
        assert service.get_setting("units") == {"weight": "kg"}
        assert service.get_setting("missing", "default") == "default"


class TestCreateDataService:
    """Test wiring from configuration"""

    @pytest.fixture
    def config(self, tmp_path):
        return OfflineConfig(db_path=str(tmp_path / "fitness.db"), remote_timeout_seconds=1.0)

    def test_wires_collaborators(self, config, clock):
        backend = RecordingBackend()
        service = create_data_service(
            config, backend=backend, clock=clock, monitor=ConnectionMonitor(initial_online=True)
        )
        try:
            service.add_workout_session(make_session("s1"))
            assert service.sync_now().delivered == 1
            assert backend.applied[0].payload["id"] == "s1"
        finally:
            service.close()

        assert backend.closed

    def test_outbox_survives_restart(self, config, clock):
        monitor = ConnectionMonitor(initial_online=False)
        first = create_data_service(config, backend=RecordingBackend(), clock=clock, monitor=monitor)
        first.add_workout_session(make_session("s1"))
        first.set_sync_enabled(False)
        first.close()

        second = create_data_service(config, backend=RecordingBackend(), clock=clock, monitor=monitor)
        try:
            assert second.queue_length == 1
            assert second.sync_enabled is False
        finally:
            second.close()

    def test_no_backend_stays_idle(self, config, clock):
        service = create_data_service(config, clock=clock, monitor=ConnectionMonitor(initial_online=True))
        try:
            service.add_workout_session(make_session("s1"))
            assert service.processor.backend is None
            assert service.sync_now().skipped
            assert service.sync_status.state == SyncState.IDLE
            assert service.queue_length == 1
        finally:
            service.close()
