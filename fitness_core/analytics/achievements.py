# =============================================================================
# fitness_core/analytics/achievements.py
# Rule-Based Achievement Unlocking
# =============================================================================
"""
Achievement catalogue and evaluator.

Achievements are data: each definition names a requirement type, a threshold
and (for strength goals) an exercise. One generic evaluator computes the
user's progress once and unlocks every definition whose threshold is met.
Unlocks are idempotent; the store keeps at most one row per user and
achievement.
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence
import logging

from fitness_core.analytics.streaks import MAX_STREAK_DAYS, current_streak_for
from fitness_core.errors import error_boundary
from fitness_core.offline.local_database import LocalDatabase
from fitness_core.offline.models import UserAchievement
from fitness_core.utils.clock import Clock

logger = logging.getLogger(__name__)


class RequirementType(str, Enum):
    WORKOUT_COUNT = "workout_count"
    STREAK_DAYS = "streak_days"
    TOTAL_VOLUME = "total_volume"
    MAX_WEIGHT = "max_weight"
    WEIGHT_LOST = "weight_lost"
    WEIGHT_GAINED = "weight_gained"


class AchievementCategory(str, Enum):
    WORKOUTS = "workouts"
    STRENGTH = "strength"
    CONSISTENCY = "consistency"
    WEIGHT = "weight"
    VOLUME = "volume"


class AchievementTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    name: str
    description: str
    category: AchievementCategory
    tier: AchievementTier
    requirement_type: RequirementType
    value: float
    exercise_id: Optional[str] = None


def _define(id, name, description, category, tier, requirement, value, exercise_id=None):
    return AchievementDefinition(
        id=id,
        name=name,
        description=description,
        category=AchievementCategory(category),
        tier=AchievementTier(tier),
        requirement_type=RequirementType(requirement),
        value=value,
        exercise_id=exercise_id,
    )


ACHIEVEMENTS: List[AchievementDefinition] = [
    # Workout count
    _define("first_workout", "Getting Started", "Complete your first workout", "workouts", "bronze", "workout_count", 1),
    _define("workout_10", "Committed", "Complete 10 workouts", "workouts", "bronze", "workout_count", 10),
    _define("workout_25", "Regular", "Complete 25 workouts", "workouts", "silver", "workout_count", 25),
    _define("workout_50", "Dedicated", "Complete 50 workouts", "workouts", "silver", "workout_count", 50),
    _define("workout_100", "Century", "Complete 100 workouts", "workouts", "gold", "workout_count", 100),
    _define("workout_250", "Elite", "Complete 250 workouts", "workouts", "platinum", "workout_count", 250),
    # Consistency
    _define("streak_3", "Getting Consistent", "Maintain a 3-day workout streak", "consistency", "bronze", "streak_days", 3),
    _define("streak_7", "Week Warrior", "Maintain a 7-day workout streak", "consistency", "silver", "streak_days", 7),
    _define("streak_14", "Two Weeks Strong", "Maintain a 14-day workout streak", "consistency", "silver", "streak_days", 14),
    _define("streak_30", "Monthly Master", "Maintain a 30-day workout streak", "consistency", "gold", "streak_days", 30),
    _define("streak_100", "Unstoppable", "Maintain a 100-day workout streak", "consistency", "platinum", "streak_days", 100),
    # Volume
    _define("volume_10000", "Volume Beginner", "Lift 10,000 kg total volume", "volume", "bronze", "total_volume", 10000),
    _define("volume_50000", "Volume Enthusiast", "Lift 50,000 kg total volume", "volume", "silver", "total_volume", 50000),
    _define("volume_100000", "Volume Beast", "Lift 100,000 kg total volume", "volume", "gold", "total_volume", 100000),
    _define("volume_250000", "Volume Legend", "Lift 250,000 kg total volume", "volume", "platinum", "total_volume", 250000),
    # Strength
    _define("bench_100", "Bench Press Novice", "Bench press 100 kg", "strength", "silver", "max_weight", 100, "bench_press"),
    _define("squat_100", "Squat Strength", "Squat 100 kg", "strength", "silver", "max_weight", 100, "squat"),
    _define("deadlift_100", "Deadlift Power", "Deadlift 100 kg", "strength", "silver", "max_weight", 100, "deadlift"),
    _define("bench_150", "Bench Press Intermediate", "Bench press 150 kg", "strength", "gold", "max_weight", 150, "bench_press"),
    _define("squat_150", "Squat Master", "Squat 150 kg", "strength", "gold", "max_weight", 150, "squat"),
    _define("deadlift_200", "Deadlift Beast", "Deadlift 200 kg", "strength", "gold", "max_weight", 200, "deadlift"),
]


def get_achievement_by_id(
    achievement_id: str,
    definitions: Sequence[AchievementDefinition] = ACHIEVEMENTS,
) -> Optional[AchievementDefinition]:
    for definition in definitions:
        if definition.id == achievement_id:
            return definition
    return None


def get_achievements_by_category(
    category,
    definitions: Sequence[AchievementDefinition] = ACHIEVEMENTS,
) -> List[AchievementDefinition]:
    category = AchievementCategory(category)
    return [d for d in definitions if d.category == category]


@dataclass
class UserProgressStats:
    """Everything the requirement types are measured against."""
    total_workouts: int = 0
    current_streak: int = 0
    total_volume: float = 0.0
    max_weights: Dict[str, float] = field(default_factory=dict)
    weight_lost: float = 0.0
    weight_gained: float = 0.0

    def progress_for(self, definition: AchievementDefinition) -> float:
        requirement = definition.requirement_type
        if requirement == RequirementType.WORKOUT_COUNT:
            return float(self.total_workouts)
        if requirement == RequirementType.STREAK_DAYS:
            return float(self.current_streak)
        if requirement == RequirementType.TOTAL_VOLUME:
            return float(self.total_volume)
        if requirement == RequirementType.MAX_WEIGHT:
            return float(self.max_weights.get(definition.exercise_id, 0.0))
        if requirement == RequirementType.WEIGHT_LOST:
            return float(self.weight_lost)
        if requirement == RequirementType.WEIGHT_GAINED:
            return float(self.weight_gained)
        return 0.0


class AchievementEvaluator:
    """
    Unlocks achievements from locally stored history.

    Usage:
        evaluator = AchievementEvaluator(db, clock)
        newly_unlocked = evaluator.evaluate(user_id)
    """

    def __init__(
        self,
        db: LocalDatabase,
        clock: Clock,
        definitions: Sequence[AchievementDefinition] = ACHIEVEMENTS,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        streak_lookback_days: int = MAX_STREAK_DAYS,
    ):
        self.db = db
        self.clock = clock
        self.definitions = list(definitions)
        self.id_factory = id_factory
        self.streak_lookback_days = streak_lookback_days

    @error_boundary(default_return=UserProgressStats)
    def compute_stats(self, user_id: str) -> UserProgressStats:
        """Aggregate the user's progress once for all definitions."""
        weights = [row["weight_kg"] for row in self.db.get_weight_rows(user_id)]
        change = weights[-1] - weights[0] if len(weights) >= 2 else 0.0
        streak = current_streak_for(
            self.db.get_completed_session_dates(user_id), self.clock, self.streak_lookback_days
        )
        return UserProgressStats(
            total_workouts=self.db.count_completed_sessions(user_id),
            current_streak=streak.current,
            total_volume=self.db.get_total_volume(user_id),
            max_weights=self.db.get_max_weights(user_id),
            weight_lost=max(-change, 0.0),
            weight_gained=max(change, 0.0),
        )

    def evaluate(self, user_id: str, stats: Optional[UserProgressStats] = None) -> List[UserAchievement]:
        """
        Unlock every definition the user now qualifies for.

        Returns:
            The newly written unlock rows (empty when nothing new)
        """
        stats = stats or self.compute_stats(user_id)
        unlocked_ids = {a.achievement_id for a in self.db.get_user_achievements(user_id)}
        newly_unlocked: List[UserAchievement] = []

        for definition in self.definitions:
            if definition.id in unlocked_ids:
                continue
            progress = stats.progress_for(definition)
            if progress < definition.value:
                continue

            achievement = UserAchievement(
                id=self.id_factory(),
                user_id=user_id,
                achievement_id=definition.id,
                unlocked_at=self.clock.now_iso(),
                progress_value=progress,
            )
            if self.db.unlock_achievement(achievement):
                newly_unlocked.append(achievement)
                logger.info(f"Achievement unlocked for {user_id}: {definition.id}")

        return newly_unlocked

    @error_boundary(default_return=list)
    def get_progress(self, user_id: str) -> List[Dict[str, object]]:
        """Per-definition progress for UI progress bars."""
        stats = self.compute_stats(user_id)
        unlocked = {a.achievement_id: a for a in self.db.get_user_achievements(user_id)}
        progress = []
        for definition in self.definitions:
            current = stats.progress_for(definition)
            entry = unlocked.get(definition.id)
            progress.append({
                "id": definition.id,
                "name": definition.name,
                "description": definition.description,
                "category": definition.category.value,
                "tier": definition.tier.value,
                "target": definition.value,
                "current": current,
                "percent": min(current / definition.value, 1.0) * 100 if definition.value else 100.0,
                "unlocked": entry is not None,
                "unlocked_at": entry.unlocked_at if entry else None,
            })
        return progress
