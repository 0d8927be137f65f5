# =============================================================================
# tests/unit/test_workout_stats.py
# Unit Tests for WorkoutAnalytics
# =============================================================================

import pytest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

from fitness_core.analytics.workout_stats import WorkoutAnalytics, WorkoutStats
from fitness_core.offline.local_database import LocalDatabase
from fitness_core.offline.models import BodyMeasurement
from fitness_core.utils.clock import FixedClock

from tests.conftest import NOW, USER_ID, make_session, make_set


TODAY = NOW.date()
YESTERDAY = TODAY - timedelta(days=1)


@pytest.fixture
def history(db):
    """Two workouts today, one yesterday, one 40 days ago and an unfinished one"""
    db.add_workout_session(make_session("today-am", when=NOW - timedelta(hours=4)))
    db.add_workout_session(make_session("today-pm", when=NOW))
    db.add_workout_session(make_session("yesterday", when=NOW - timedelta(days=1)))
    db.add_workout_session(make_session("old", when=NOW - timedelta(days=40)))
    db.add_workout_session(make_session("open", when=NOW, completed=False))
    db.add_set_log(make_set("a", session_id="today-am", weight=100, reps=5))
    db.add_set_log(make_set("b", session_id="today-pm", weight=50, reps=10))
    db.add_set_log(make_set("c", session_id="yesterday", weight=120, reps=2))
    db.add_set_log(make_set("d", session_id="old", weight=200, reps=1))
    db.add_set_log(make_set("e", session_id="open", weight=300, reps=1))
    return db


@pytest.fixture
def analytics(history, clock):
    return WorkoutAnalytics(history, clock)


class TestWorkoutStats:
    """Test windowed totals and streaks"""

    def test_totals_within_window(self, analytics):
        stats = analytics.get_workout_stats(USER_ID, days=30)

        assert stats.total_workouts == 3
        assert stats.total_volume == pytest.approx(1240.0)
        assert stats.average_volume == pytest.approx(1240.0 / 3)

    def test_streaks(self, analytics):
        stats = analytics.get_workout_stats(USER_ID)

        assert stats.current_streak == 2
        assert stats.longest_streak == 2
        assert stats.streak_start_date == YESTERDAY

    def test_wider_window_includes_older_sessions(self, analytics):
        assert analytics.get_workout_stats(USER_ID, days=60).total_workouts == 4

    def test_no_sessions_is_all_zero(self, db, clock):
        stats = WorkoutAnalytics(db, clock).get_workout_stats(USER_ID)

        assert stats == WorkoutStats()

    def test_to_dict(self, analytics):
        data = analytics.get_workout_stats(USER_ID).to_dict()

        assert data["streak_start_date"] == YESTERDAY.isoformat()
        assert data["total_workouts"] == 3

    def test_errors_degrade_to_empty_stats(self, clock):
        broken = MagicMock(spec=LocalDatabase)
        broken.get_session_volumes.side_effect = RuntimeError("store unavailable")

        assert WorkoutAnalytics(broken, clock).get_workout_stats(USER_ID) == WorkoutStats()


class TestSeries:
    """Test per-day series for charts"""

    def test_frequency_per_local_day(self, analytics):
        assert analytics.get_workout_frequency(USER_ID) == [
            {"date": YESTERDAY.isoformat(), "count": 1},
            {"date": TODAY.isoformat(), "count": 2},
        ]

    def test_volume_history(self, analytics):
        assert analytics.get_volume_history(USER_ID) == [
            {"date": YESTERDAY.isoformat(), "volume": 240.0},
            {"date": TODAY.isoformat(), "volume": 1000.0},
        ]

    def test_pr_history_is_max_weight_per_day(self, analytics):
        history = analytics.get_pr_history(USER_ID, "bench_press")

        assert [h["weight"] for h in history] == [200.0, 120.0, 100.0]
        assert history[0]["date"] == (TODAY - timedelta(days=40)).isoformat()

    def test_unknown_exercise_has_no_history(self, analytics):
        assert analytics.get_pr_history(USER_ID, "deadlift") == []

    def test_errors_degrade_to_empty_list(self, clock):
        broken = MagicMock(spec=LocalDatabase)
        broken.get_session_volumes.side_effect = RuntimeError("store unavailable")

        assert WorkoutAnalytics(broken, clock).get_volume_history(USER_ID) == []


class TestLocalDayGrouping:
    """Test grouping by the user's calendar day"""

    def test_late_evening_utc_counts_for_next_local_day(self):
        tokyo = FixedClock(datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc), tz="Asia/Tokyo", auto_tick=True)
        db = LocalDatabase(":memory:", clock=tokyo)
        db.initialize()
        # 16:00 UTC on the 14th is 01:00 on the 15th in Tokyo
        db.add_workout_session(make_session("late", when=datetime(2024, 6, 14, 16, 0, tzinfo=timezone.utc)))

        frequency = WorkoutAnalytics(db, tokyo).get_workout_frequency(USER_ID)

        assert frequency == [{"date": "2024-06-15", "count": 1}]
        db.close()


class TestWeightHistory:
    """Test body weight series"""

    @pytest.fixture
    def weights(self, db):
        db.save_body_measurement(BodyMeasurement(id="m1", user_id=USER_ID, measurement_date="2024-06-01", weight_kg=82))
        db.save_body_measurement(BodyMeasurement(id="m2", user_id=USER_ID, measurement_date="2024-06-10", weight_kg=81))
        db.save_body_measurement(BodyMeasurement(id="m3", user_id=USER_ID, measurement_date="2024-06-10T20:00:00", weight_kg=80.5))
        return db

    def test_latest_measurement_of_the_day_wins(self, weights, clock):
        assert WorkoutAnalytics(weights, clock).get_weight_history(USER_ID) == [
            {"date": "2024-06-01", "weight": 82.0},
            {"date": "2024-06-10", "weight": 80.5},
        ]

    def test_window(self, weights, clock):
        history = WorkoutAnalytics(weights, clock).get_weight_history(USER_ID, days=7)
        assert history == [{"date": "2024-06-10", "weight": 80.5}]

    def test_no_measurements(self, db, clock):
        assert WorkoutAnalytics(db, clock).get_weight_history(USER_ID) == []
