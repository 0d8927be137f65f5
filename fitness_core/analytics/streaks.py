# =============================================================================
# fitness_core/analytics/streaks.py
# Consecutive-Day Workout Streaks
# =============================================================================
"""
Streak calculation over calendar days in the user's time zone.

A streak counts consecutive days with at least one completed workout, ending
today or yesterday. Timestamps are truncated to local dates before any
comparison, so a workout just after local midnight counts for the new day.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Iterable, Optional, Set

from fitness_core.errors import error_boundary
from fitness_core.utils.clock import Clock, to_local_date

MAX_STREAK_DAYS = 365       # Lookback window and iteration bound


@dataclass(frozen=True)
class StreakResult:
    current: int = 0
    start_date: Optional[date] = None


def workout_dates(timestamps: Iterable[Any], tz) -> Set[date]:
    """Distinct local calendar dates; malformed timestamps are skipped."""
    dates = set()
    for value in timestamps:
        local = to_local_date(value, tz)
        if local is not None:
            dates.add(local)
    return dates


def calculate_current_streak(
    dates: Iterable[date],
    today: date,
    lookback_days: int = MAX_STREAK_DAYS,
) -> StreakResult:
    """
    Walk back from today (or yesterday) while every day has a workout.

    Args:
        dates: Local calendar dates with a completed workout
        today: The user's current local date
        lookback_days: Only dates this recent are considered

    Returns:
        StreakResult with the streak length and its first day
    """
    window_start = today - timedelta(days=lookback_days)
    present = {d for d in dates if window_start <= d <= today}

    yesterday = today - timedelta(days=1)
    if today in present:
        cursor = today
    elif yesterday in present:
        cursor = yesterday
    else:
        return StreakResult()

    streak = 0
    start = None
    for _ in range(lookback_days):
        if cursor not in present:
            break
        streak += 1
        start = cursor
        cursor -= timedelta(days=1)

    return StreakResult(current=streak, start_date=start)


def calculate_longest_streak(dates: Iterable[date]) -> int:
    """Longest run of consecutive dates, in one forward pass."""
    longest = 0
    run = 0
    previous = None
    for current in sorted(set(dates)):
        if previous is not None and (current - previous).days == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = current
    return longest


@error_boundary(default_return=StreakResult())
def current_streak_for(
    timestamps: Iterable[Any],
    clock: Clock,
    lookback_days: int = MAX_STREAK_DAYS,
) -> StreakResult:
    """Current streak from raw session timestamps; failures degrade to 0."""
    return calculate_current_streak(workout_dates(timestamps, clock.tz), clock.today(), lookback_days)


@error_boundary(default_return=0)
def longest_streak_for(timestamps: Iterable[Any], clock: Clock) -> int:
    """Historical longest streak from raw session timestamps; failures degrade to 0."""
    return calculate_longest_streak(workout_dates(timestamps, clock.tz))
