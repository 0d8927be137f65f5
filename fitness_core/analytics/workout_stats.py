# =============================================================================
# fitness_core/analytics/workout_stats.py
# Workout Aggregates Grouped by Local Calendar Day
# =============================================================================
"""
Workout statistics for dashboards and charts.

The store returns raw per-session rows; grouping by calendar day happens here
in pandas after converting each timestamp to the user's local date. Only
completed sessions count. Every public method degrades to an empty or zero
result instead of raising, since the values feed straight into UI display.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

from fitness_core.analytics.streaks import (
    MAX_STREAK_DAYS,
    StreakResult,
    current_streak_for,
    longest_streak_for,
)
from fitness_core.errors import error_boundary
from fitness_core.offline.local_database import LocalDatabase
from fitness_core.utils.clock import Clock

DEFAULT_WINDOW_DAYS = 30


@dataclass
class WorkoutStats:
    total_workouts: int = 0
    total_volume: float = 0.0
    average_volume: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    streak_start_date: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_workouts": self.total_workouts,
            "total_volume": self.total_volume,
            "average_volume": self.average_volume,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "streak_start_date": self.streak_start_date.isoformat() if self.streak_start_date else None,
        }


class WorkoutAnalytics:
    """
    Derived workout analytics over the local store.

    Usage:
        analytics = WorkoutAnalytics(db, clock)
        stats = analytics.get_workout_stats(user_id, days=30)
    """

    def __init__(
        self,
        db: LocalDatabase,
        clock: Clock,
        streak_lookback_days: int = MAX_STREAK_DAYS,
    ):
        self.db = db
        self.clock = clock
        self.streak_lookback_days = streak_lookback_days

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _with_local_dates(self, df: pd.DataFrame, column: str) -> pd.DataFrame:
        """Add a ``date`` column (local calendar day) and drop unparseable rows."""
        df = df.copy()
        df["date"] = df[column].map(self.clock.local_date)
        return df[df["date"].notna()]

    def _window(self, df: pd.DataFrame, days: Optional[int]) -> pd.DataFrame:
        """Keep rows whose local date is within the last ``days`` days."""
        if days is None or df.empty:
            return df
        start = self.clock.today() - timedelta(days=days)
        return df[df["date"] >= start]

    @staticmethod
    def _series(grouped: pd.Series, name: str, cast) -> List[Dict[str, Any]]:
        return [
            {"date": day.isoformat(), name: cast(value)}
            for day, value in grouped.sort_index().items()
        ]

    # =========================================================================
    # STATS
    # =========================================================================

    @error_boundary(default_return=WorkoutStats)
    def get_workout_stats(self, user_id: str, days: int = DEFAULT_WINDOW_DAYS) -> WorkoutStats:
        """
        Totals over the last ``days`` local days plus all-time streaks.

        Returns:
            WorkoutStats (all zero when the user has no completed sessions)
        """
        sessions = self._with_local_dates(self.db.get_session_volumes(user_id), "session_date")
        recent = self._window(sessions, days)

        total_workouts = int(len(recent))
        total_volume = float(recent["volume"].sum()) if total_workouts else 0.0
        average_volume = total_volume / total_workouts if total_workouts else 0.0

        timestamps = self.db.get_completed_session_dates(user_id)
        streak: StreakResult = current_streak_for(timestamps, self.clock, self.streak_lookback_days)

        return WorkoutStats(
            total_workouts=total_workouts,
            total_volume=total_volume,
            average_volume=average_volume,
            current_streak=streak.current,
            longest_streak=longest_streak_for(timestamps, self.clock),
            streak_start_date=streak.start_date,
        )

    @error_boundary(default_return=list)
    def get_workout_frequency(self, user_id: str, days: int = DEFAULT_WINDOW_DAYS) -> List[Dict[str, Any]]:
        """Completed workouts per local day: ``[{"date", "count"}]`` oldest first."""
        sessions = self._window(
            self._with_local_dates(self.db.get_session_volumes(user_id), "session_date"), days
        )
        if sessions.empty:
            return []
        return self._series(sessions.groupby("date").size(), "count", int)

    @error_boundary(default_return=list)
    def get_volume_history(self, user_id: str, days: int = DEFAULT_WINDOW_DAYS) -> List[Dict[str, Any]]:
        """Sum of weight x reps per local day: ``[{"date", "volume"}]``."""
        sessions = self._window(
            self._with_local_dates(self.db.get_session_volumes(user_id), "session_date"), days
        )
        if sessions.empty:
            return []
        return self._series(sessions.groupby("date")["volume"].sum(), "volume", float)

    @error_boundary(default_return=list)
    def get_pr_history(self, user_id: str, exercise_id: str) -> List[Dict[str, Any]]:
        """Heaviest weight per local day for one exercise: ``[{"date", "weight"}]``."""
        weights = self._with_local_dates(self.db.get_exercise_weights(user_id, exercise_id), "session_date")
        if weights.empty:
            return []
        return self._series(weights.groupby("date")["weight"].max(), "weight", float)

    @error_boundary(default_return=list)
    def get_weight_history(self, user_id: str, days: Optional[int] = None) -> List[Dict[str, Any]]:
        """Body weight per local day (latest measurement of the day wins)."""
        rows = self.db.get_weight_rows(user_id)
        if not rows:
            return []
        df = pd.DataFrame([dict(row) for row in rows])
        df = self._window(self._with_local_dates(df, "measurement_date"), days)
        if df.empty:
            return []
        return self._series(df.groupby("date")["weight_kg"].last(), "weight", float)
