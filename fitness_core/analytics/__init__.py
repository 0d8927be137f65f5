# =============================================================================
# fitness_core/analytics/__init__.py
# Derived Analytics: Streaks, Workout Statistics and Achievements
# =============================================================================

from .streaks import (
    MAX_STREAK_DAYS,
    StreakResult,
    calculate_current_streak,
    calculate_longest_streak,
    current_streak_for,
    longest_streak_for,
)

from .workout_stats import (
    WorkoutAnalytics,
    WorkoutStats,
)

from .achievements import (
    ACHIEVEMENTS,
    AchievementCategory,
    AchievementDefinition,
    AchievementEvaluator,
    AchievementTier,
    RequirementType,
    UserProgressStats,
    get_achievement_by_id,
    get_achievements_by_category,
)

__all__ = [
    # Streaks
    "MAX_STREAK_DAYS",
    "StreakResult",
    "calculate_current_streak",
    "calculate_longest_streak",
    "current_streak_for",
    "longest_streak_for",
    # Workout statistics
    "WorkoutAnalytics",
    "WorkoutStats",
    # Achievements
    "ACHIEVEMENTS",
    "AchievementCategory",
    "AchievementDefinition",
    "AchievementEvaluator",
    "AchievementTier",
    "RequirementType",
    "UserProgressStats",
    "get_achievement_by_id",
    "get_achievements_by_category",
]
