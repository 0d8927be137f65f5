# =============================================================================
# fitness_core/offline/models.py
# Domain Records Stored in the Local Database
# =============================================================================
"""
Typed records for every table the local store owns.

Nested structures (template exercise lists, gym equipment, TPath settings)
live on the dataclasses as real lists/dicts. They are serialized to JSON only
in ``to_row()`` when written to SQLite and parsed back in ``from_row()``.
"""

from __future__ import annotations
import json
from dataclasses import MISSING, asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple


class OutboxOperation(str, Enum):
    """Mutation kinds replayed to the remote backend."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class Record:
    """Base for table-backed records."""

    TABLE: ClassVar[str] = ""
    JSON_FIELDS: ClassVar[Tuple[str, ...]] = ()
    BOOL_FIELDS: ClassVar[Tuple[str, ...]] = ()

    def to_row(self) -> Dict[str, Any]:
        """Column values ready for SQLite (JSON text, 0/1 booleans)."""
        row = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in self.JSON_FIELDS:
                value = json.dumps(value) if value is not None else None
            elif f.name in self.BOOL_FIELDS:
                value = 1 if value else 0
            row[f.name] = value
        return row

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict with nested structures kept typed (outbox payloads)."""
        return asdict(self)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]):
        data = dict(row)
        kwargs = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            if f.name in cls.JSON_FIELDS:
                value = json.loads(value) if isinstance(value, str) and value else value
                if value is None and f.default_factory is not MISSING:
                    value = f.default_factory()
            elif f.name in cls.BOOL_FIELDS:
                value = bool(value)
            kwargs[f.name] = value
        return cls(**kwargs)

    @classmethod
    def columns(cls) -> List[str]:
        return [f.name for f in fields(cls)]


# =============================================================================
# WORKOUTS
# =============================================================================

@dataclass
class WorkoutSession(Record):
    TABLE: ClassVar[str] = "workout_sessions"

    id: str
    user_id: str
    session_date: str
    template_name: Optional[str] = None
    completed_at: Optional[str] = None      # None while the workout is in progress
    rating: Optional[int] = None
    duration_string: Optional[str] = None
    t_path_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


@dataclass
class SetLog(Record):
    TABLE: ClassVar[str] = "set_logs"
    BOOL_FIELDS: ClassVar[Tuple[str, ...]] = ("is_pb",)

    id: str
    session_id: str
    exercise_id: str
    weight_kg: Optional[float] = None
    reps: Optional[int] = None
    reps_l: Optional[int] = None
    reps_r: Optional[int] = None
    time_seconds: Optional[int] = None
    is_pb: bool = False
    created_at: Optional[str] = None


@dataclass
class WorkoutTemplate(Record):
    TABLE: ClassVar[str] = "workout_templates"
    JSON_FIELDS: ClassVar[Tuple[str, ...]] = ("exercises",)

    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    exercises: List[Any] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# =============================================================================
# TRAINING PATHS
# =============================================================================

@dataclass
class TPath(Record):
    TABLE: ClassVar[str] = "t_paths"
    JSON_FIELDS: ClassVar[Tuple[str, ...]] = (
        "ai_generation_params", "settings", "progression_settings",
    )
    BOOL_FIELDS: ClassVar[Tuple[str, ...]] = (
        "is_main_program", "is_bonus", "is_ai_generated",
    )

    id: str
    user_id: str
    template_name: str
    description: Optional[str] = None
    parent_t_path_id: Optional[str] = None
    order_index: Optional[int] = None
    is_main_program: bool = False
    is_bonus: bool = False
    is_ai_generated: bool = False
    ai_generation_params: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None
    progression_settings: Optional[Dict[str, Any]] = None
    gym_id: Optional[str] = None
    version: int = 1
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_top_level(self) -> bool:
        return self.parent_t_path_id is None


@dataclass
class TPathExercise(Record):
    TABLE: ClassVar[str] = "t_path_exercises"
    BOOL_FIELDS: ClassVar[Tuple[str, ...]] = ("is_bonus_exercise",)

    id: str
    template_id: str
    exercise_id: str
    order_index: int = 0
    is_bonus_exercise: bool = False
    target_sets: Optional[int] = None
    target_reps_min: Optional[int] = None
    target_reps_max: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class TPathProgress(Record):
    TABLE: ClassVar[str] = "t_path_progress"

    id: str
    user_id: str
    t_path_id: str
    completed_at: Optional[str] = None
    last_accessed_at: Optional[str] = None
    total_workouts_completed: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class TPathWithExercises:
    """A TPath together with its ordered exercises."""
    t_path: TPath
    exercises: List[TPathExercise] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.t_path.to_dict()
        data["exercises"] = [ex.to_dict() for ex in self.exercises]
        return data


# =============================================================================
# GYMS, GOALS, MEASUREMENTS, ACHIEVEMENTS
# =============================================================================

@dataclass
class Gym(Record):
    TABLE: ClassVar[str] = "gyms"
    JSON_FIELDS: ClassVar[Tuple[str, ...]] = ("equipment",)
    BOOL_FIELDS: ClassVar[Tuple[str, ...]] = ("is_active",)

    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    equipment: List[str] = field(default_factory=list)
    is_active: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Goal(Record):
    TABLE: ClassVar[str] = "user_goals"

    id: str
    user_id: str
    goal_type: str
    target_value: float
    current_value: float = 0.0
    start_date: Optional[str] = None
    target_date: Optional[str] = None
    status: str = "active"
    exercise_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class BodyMeasurement(Record):
    TABLE: ClassVar[str] = "body_measurements"

    id: str
    user_id: str
    measurement_date: str
    weight_kg: Optional[float] = None
    body_fat_percentage: Optional[float] = None
    chest_cm: Optional[float] = None
    waist_cm: Optional[float] = None
    hips_cm: Optional[float] = None
    left_arm_cm: Optional[float] = None
    right_arm_cm: Optional[float] = None
    left_thigh_cm: Optional[float] = None
    right_thigh_cm: Optional[float] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class UserAchievement(Record):
    TABLE: ClassVar[str] = "user_achievements"

    id: str
    user_id: str
    achievement_id: str
    unlocked_at: Optional[str] = None
    progress_value: Optional[float] = None


# =============================================================================
# OUTBOX
# =============================================================================

@dataclass
class OutboxEntry:
    """One pending remote mutation."""
    id: int
    operation: OutboxOperation
    table: str
    payload: Dict[str, Any]
    timestamp: int                  # Enqueue time, epoch milliseconds
    attempts: int = 0
    error: Optional[str] = None

    @property
    def record_id(self) -> Any:
        return self.payload.get("id")

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> OutboxEntry:
        return cls(
            id=row["id"],
            operation=OutboxOperation(row["operation"]),
            table=row["table_name"],
            payload=json.loads(row["payload"]) if row["payload"] else {},
            timestamp=row["timestamp"],
            attempts=row["attempts"],
            error=row["error"],
        )


RECORD_TYPES: Dict[str, type] = {
    cls.TABLE: cls
    for cls in (
        WorkoutSession, SetLog, WorkoutTemplate, TPath, TPathExercise,
        TPathProgress, Gym, Goal, BodyMeasurement, UserAchievement,
    )
}

# Tables whose writes are replayed to the remote backend
SYNCABLE_TABLES = frozenset(RECORD_TYPES)
