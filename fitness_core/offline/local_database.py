# =============================================================================
# fitness_core/offline/local_database.py
# Local SQLite Database - On-Device Source of Truth
# =============================================================================
"""
LocalDatabase - SQLite storage for every fitness record on the device.

Features:
- Automatic schema creation with foreign-key cascades
- Idempotent upserts keyed by the caller-supplied id
- Nested transactions (savepoints) shared with the outbox queue
- DataFrame integration (pandas) for analytics
- Thread-safe: one connection, every statement serialized by a lock
"""

from __future__ import annotations
import sqlite3
import threading
import json
from contextlib import contextmanager
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Type, Union
import logging

import pandas as pd

from fitness_core.errors import LocalWriteError, ValidationError
from fitness_core.offline.models import (
    RECORD_TYPES,
    BodyMeasurement,
    Goal,
    Gym,
    Record,
    SetLog,
    TPath,
    TPathExercise,
    TPathProgress,
    TPathWithExercises,
    UserAchievement,
    WorkoutSession,
    WorkoutTemplate,
)
from fitness_core.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


class LocalDatabase:
    """
    Local SQLite database that owns every on-device row.

    The outbox lives in the same file (``sync_queue``) so a domain write and
    its outbox entry can share one transaction.
    """

    # Ordered so referenced tables are created first
    SCHEMA = {
        "workout_sessions": """
            CREATE TABLE IF NOT EXISTS workout_sessions (
                id TEXT PRIMARY KEY NOT NULL,
                user_id TEXT NOT NULL,
                session_date TEXT NOT NULL,
                template_name TEXT,
                completed_at TEXT,
                rating INTEGER,
                duration_string TEXT,
                t_path_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """,
        "set_logs": """
            CREATE TABLE IF NOT EXISTS set_logs (
                id TEXT PRIMARY KEY NOT NULL,
                session_id TEXT NOT NULL
                    REFERENCES workout_sessions(id) ON DELETE CASCADE,
                exercise_id TEXT NOT NULL,
                weight_kg REAL,
                reps INTEGER,
                reps_l INTEGER,
                reps_r INTEGER,
                time_seconds INTEGER,
                is_pb INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """,
        "workout_templates": """
            CREATE TABLE IF NOT EXISTS workout_templates (
                id TEXT PRIMARY KEY NOT NULL,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                exercises TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """,
        "t_paths": """
            CREATE TABLE IF NOT EXISTS t_paths (
                id TEXT PRIMARY KEY NOT NULL,
                user_id TEXT NOT NULL,
                template_name TEXT NOT NULL,
                description TEXT,
                parent_t_path_id TEXT
                    REFERENCES t_paths(id) ON DELETE CASCADE,
                order_index INTEGER,
                is_main_program INTEGER NOT NULL DEFAULT 0,
                is_bonus INTEGER NOT NULL DEFAULT 0,
                is_ai_generated INTEGER NOT NULL DEFAULT 0,
                ai_generation_params TEXT,
                settings TEXT,
                progression_settings TEXT,
                gym_id TEXT,
                version INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """,
        "t_path_exercises": """
            CREATE TABLE IF NOT EXISTS t_path_exercises (
                id TEXT PRIMARY KEY NOT NULL,
                template_id TEXT NOT NULL
                    REFERENCES t_paths(id) ON DELETE CASCADE,
                exercise_id TEXT NOT NULL,
                order_index INTEGER NOT NULL DEFAULT 0,
                is_bonus_exercise INTEGER NOT NULL DEFAULT 0,
                target_sets INTEGER,
                target_reps_min INTEGER,
                target_reps_max INTEGER,
                created_at TEXT NOT NULL
            )
        """,
        "t_path_progress": """
            CREATE TABLE IF NOT EXISTS t_path_progress (
                id TEXT PRIMARY KEY NOT NULL,
                user_id TEXT NOT NULL,
                t_path_id TEXT NOT NULL
                    REFERENCES t_paths(id) ON DELETE CASCADE,
                completed_at TEXT,
                last_accessed_at TEXT,
                total_workouts_completed INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT,
                UNIQUE(user_id, t_path_id)
            )
        """,
        "gyms": """
            CREATE TABLE IF NOT EXISTS gyms (
                id TEXT PRIMARY KEY NOT NULL,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                equipment TEXT,
                is_active INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """,
        "user_goals": """
            CREATE TABLE IF NOT EXISTS user_goals (
                id TEXT PRIMARY KEY NOT NULL,
                user_id TEXT NOT NULL,
                goal_type TEXT NOT NULL,
                target_value REAL NOT NULL,
                current_value REAL NOT NULL DEFAULT 0,
                start_date TEXT,
                target_date TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                exercise_id TEXT,
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """,
        "body_measurements": """
            CREATE TABLE IF NOT EXISTS body_measurements (
                id TEXT PRIMARY KEY NOT NULL,
                user_id TEXT NOT NULL,
                measurement_date TEXT NOT NULL,
                weight_kg REAL,
                body_fat_percentage REAL,
                chest_cm REAL,
                waist_cm REAL,
                hips_cm REAL,
                left_arm_cm REAL,
                right_arm_cm REAL,
                left_thigh_cm REAL,
                right_thigh_cm REAL,
                notes TEXT,
                created_at TEXT NOT NULL
            )
        """,
        "user_achievements": """
            CREATE TABLE IF NOT EXISTS user_achievements (
                id TEXT PRIMARY KEY NOT NULL,
                user_id TEXT NOT NULL,
                achievement_id TEXT NOT NULL,
                unlocked_at TEXT NOT NULL,
                progress_value REAL,
                UNIQUE(user_id, achievement_id)
            )
        """,
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation TEXT NOT NULL,
                table_name TEXT NOT NULL,
                payload TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                error TEXT
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """,
    }

    INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_sessions_user_date ON workout_sessions(user_id, session_date)",
        "CREATE INDEX IF NOT EXISTS idx_set_logs_session ON set_logs(session_id)",
        "CREATE INDEX IF NOT EXISTS idx_set_logs_exercise ON set_logs(exercise_id)",
        "CREATE INDEX IF NOT EXISTS idx_t_paths_user ON t_paths(user_id)",
        "CREATE INDEX IF NOT EXISTS idx_t_paths_parent ON t_paths(parent_t_path_id)",
        "CREATE INDEX IF NOT EXISTS idx_t_path_exercises_template ON t_path_exercises(template_id)",
        "CREATE INDEX IF NOT EXISTS idx_t_path_progress_t_path ON t_path_progress(t_path_id)",
        "CREATE INDEX IF NOT EXISTS idx_gyms_user ON gyms(user_id)",
        "CREATE INDEX IF NOT EXISTS idx_goals_user ON user_goals(user_id)",
        "CREATE INDEX IF NOT EXISTS idx_measurements_user ON body_measurements(user_id)",
        "CREATE INDEX IF NOT EXISTS idx_sync_queue_order ON sync_queue(timestamp, id)",
    ]

    def __init__(
        self,
        db_path: Union[str, Path] = MEMORY_DB,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
            clock: Clock used to stamp created_at / updated_at
        """
        self.db_path = str(db_path)
        self.clock = clock or SystemClock()
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._initialized = False

        if self.db_path != MEMORY_DB:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode: transactions are opened explicitly in transaction()
        self._conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        if self.db_path != MEMORY_DB:
            self._conn.execute("PRAGMA journal_mode = WAL")

    @property
    def lock(self) -> threading.RLock:
        """Lock serializing every statement on the shared connection."""
        return self._lock

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.

        Nested use joins the outer transaction through a savepoint: an inner
        failure rolls back only the inner block, and only the outermost level
        commits.
        """
        with self._lock:
            depth = self._tx_depth
            savepoint = f"sp_{depth}"
            if depth == 0:
                self._conn.execute("BEGIN")
            else:
                self._conn.execute(f"SAVEPOINT {savepoint}")
            self._tx_depth += 1
            succeeded = False
            try:
                yield self._conn
                succeeded = True
            finally:
                self._tx_depth -= 1
                if depth == 0:
                    self._conn.execute("COMMIT" if succeeded else "ROLLBACK")
                else:
                    if not succeeded:
                        self._conn.execute(f"ROLLBACK TO {savepoint}")
                    self._conn.execute(f"RELEASE {savepoint}")

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self.transaction() as conn:
            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")
            for index in self.INDEXES:
                conn.execute(index)

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()

    # =========================================================================
    # GENERIC OPERATIONS
    # =========================================================================

    def query(self, sql: str, params: Optional[Sequence] = None) -> List[sqlite3.Row]:
        """Execute a raw SQL query."""
        with self._lock:
            return self._conn.execute(sql, params or []).fetchall()

    def query_one(self, sql: str, params: Optional[Sequence] = None) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params or []).fetchone()

    def execute(self, sql: str, params: Optional[Sequence] = None) -> int:
        """Execute a raw SQL statement and return the affected row count."""
        with self.transaction() as conn:
            return conn.execute(sql, params or []).rowcount

    @contextmanager
    def _write_guard(self, table: str, record_id: Optional[str] = None) -> Iterator[None]:
        """Translate constraint and serialization failures into LocalWriteError."""
        try:
            yield
        except sqlite3.IntegrityError as e:
            raise LocalWriteError(
                f"Constraint violation writing to {table}: {e}",
                table=table,
                record_id=record_id,
            ) from e
        except (TypeError, ValueError) as e:
            raise LocalWriteError(
                f"Could not serialize record for {table}: {e}",
                table=table,
                record_id=record_id,
            ) from e

    def _record_type(self, table: str) -> Type[Record]:
        if table not in RECORD_TYPES:
            raise ValidationError(f"Unknown table: {table}", table=table)
        return RECORD_TYPES[table]

    def _stamp(self, record: Record) -> Record:
        """Fill in missing created_at / updated_at without touching supplied values."""
        columns = record.columns()
        stamps = {}
        now = self.clock.now_iso()
        if "created_at" in columns and getattr(record, "created_at") is None:
            stamps["created_at"] = now
        if "updated_at" in columns and getattr(record, "updated_at") is None:
            stamps["updated_at"] = now
        return replace(record, **stamps) if stamps else record

    def _conflict_updates(self, table: str, columns: List[str], stamped_updated_at: bool) -> List[str]:
        """
        SET clauses for an upsert that hits an existing row.

        created_at keeps the stored value. A stamped updated_at only moves
        when some other column actually changed, so rewriting the same record
        leaves the row untouched.
        """
        content = [c for c in columns if c not in ("id", "created_at", "updated_at")]
        clauses = [f"{c} = excluded.{c}" for c in content]
        if "created_at" in columns:
            clauses.append(f"created_at = COALESCE({table}.created_at, excluded.created_at)")
        if "updated_at" in columns:
            if stamped_updated_at and content:
                unchanged = " AND ".join(f"{table}.{c} IS excluded.{c}" for c in content)
                clauses.append(
                    f"updated_at = CASE WHEN {unchanged} "
                    f"THEN {table}.updated_at ELSE excluded.updated_at END"
                )
            else:
                clauses.append("updated_at = excluded.updated_at")
        return clauses

    def upsert(self, record: Record) -> Record:
        """
        Insert a record or fully overwrite the existing row with the same key.

        Uses ON CONFLICT DO UPDATE rather than INSERT OR REPLACE so that an
        overwrite never deletes the row and never fires cascades. Writing the
        same record twice leaves the same row.

        Returns:
            The record as stored (timestamps filled in)
        """
        table = record.TABLE
        if not record.id:
            raise ValidationError("Record id must be non-empty", table=table, field="id")

        stamped_updated_at = "updated_at" in record.columns() and record.updated_at is None
        record = self._stamp(record)

        with self._write_guard(table, record.id):
            row = record.to_row()
            columns = list(row.keys())
            sql = (
                f"INSERT INTO {table} ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)}) "
                f"ON CONFLICT(id) DO UPDATE SET "
                + ", ".join(self._conflict_updates(table, columns, stamped_updated_at))
            )
            with self.transaction() as conn:
                conn.execute(sql, list(row.values()))
                stored = conn.execute(f"SELECT * FROM {table} WHERE id = ?", [record.id]).fetchone()

        return type(record).from_row(stored)

    def partial_update(self, table: str, record_id: str, fields: Dict[str, Any]) -> bool:
        """
        Update only the supplied columns of one row.

        Stamps updated_at on tables that carry it. An empty field map is a
        no-op.

        Returns:
            True if a row was updated
        """
        cls = self._record_type(table)
        if not fields:
            return False

        columns = cls.columns()
        unknown = [k for k in fields if k not in columns or k == "id"]
        if unknown:
            raise ValidationError(
                f"Cannot update column(s) {unknown} on {table}",
                table=table,
                field=unknown[0],
            )

        values = dict(fields)
        if "updated_at" in columns and "updated_at" not in values:
            values["updated_at"] = self.clock.now_iso()

        with self._write_guard(table, record_id):
            for key, value in values.items():
                if key in cls.JSON_FIELDS:
                    values[key] = json.dumps(value) if value is not None else None
                elif key in cls.BOOL_FIELDS:
                    values[key] = 1 if value else 0
            set_clause = ", ".join(f"{k} = ?" for k in values)
            with self.transaction() as conn:
                cursor = conn.execute(
                    f"UPDATE {table} SET {set_clause} WHERE id = ?",
                    list(values.values()) + [record_id],
                )
                return cursor.rowcount > 0

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a row; dependent rows go with it via ON DELETE CASCADE."""
        self._record_type(table)
        with self.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", [record_id])
            return cursor.rowcount > 0

    def get_record(self, table: str, record_id: str) -> Optional[Record]:
        """Get a typed record by id."""
        cls = self._record_type(table)
        row = self.query_one(f"SELECT * FROM {table} WHERE id = ?", [record_id])
        return cls.from_row(row) if row else None

    def _fetch(self, cls: Type[Record], where: str, params: Sequence, order_by: Optional[str] = None) -> list:
        sql = f"SELECT * FROM {cls.TABLE} WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        return [cls.from_row(row) for row in self.query(sql, params)]

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, sql: str, params: Optional[Sequence] = None) -> pd.DataFrame:
        """
        Run a query and return the result as a pandas DataFrame.

        Args:
            sql: SELECT statement
            params: Parameters for the statement

        Returns:
            DataFrame with one column per selected field
        """
        with self._lock:
            return pd.read_sql_query(sql, self._conn, params=list(params or []))

    # =========================================================================
    # WORKOUT SESSIONS & SET LOGS
    # =========================================================================

    def add_workout_session(self, session: WorkoutSession) -> WorkoutSession:
        return self.upsert(session)

    def update_workout_session(self, session_id: str, updates: Dict[str, Any]) -> bool:
        return self.partial_update(WorkoutSession.TABLE, session_id, updates)

    def get_workout_session(self, session_id: str) -> Optional[WorkoutSession]:
        return self.get_record(WorkoutSession.TABLE, session_id)

    def get_workout_sessions(self, user_id: str) -> List[WorkoutSession]:
        """All sessions for a user, newest session_date first."""
        return self._fetch(WorkoutSession, "user_id = ?", [user_id], "session_date DESC")

    def delete_workout_session(self, session_id: str) -> bool:
        return self.delete(WorkoutSession.TABLE, session_id)

    def add_set_log(self, set_log: SetLog) -> SetLog:
        return self.upsert(set_log)

    def replace_set_logs_for_session(self, session_id: str, logs: List[SetLog]) -> List[SetLog]:
        """Drop every set log of a session and write ``logs`` in its place."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM set_logs WHERE session_id = ?", [session_id])
            return [self.upsert(replace(log, session_id=session_id)) for log in logs]

    def get_set_logs(self, session_id: str) -> List[SetLog]:
        return self._fetch(SetLog, "session_id = ?", [session_id], "created_at ASC, id ASC")

    def get_personal_record(self, user_id: str, exercise_id: str) -> float:
        """Heaviest weight ever logged by a user for one exercise (0 if none)."""
        row = self.query_one(
            """
            SELECT MAX(sl.weight_kg) AS max_weight
            FROM set_logs sl
            JOIN workout_sessions ws ON sl.session_id = ws.id
            WHERE ws.user_id = ? AND sl.exercise_id = ?
            """,
            [user_id, exercise_id],
        )
        return float(row["max_weight"] or 0) if row else 0.0

    def get_recent_workout_summaries(self, user_id: str, limit: int = 3) -> List[Dict[str, Any]]:
        """Latest completed sessions with exercise counts and first/last set times."""
        rows = self.query(
            """
            SELECT ws.*, COUNT(DISTINCT sl.exercise_id) AS exercise_count,
                   MIN(sl.created_at) AS first_set_at, MAX(sl.created_at) AS last_set_at
            FROM workout_sessions ws
            LEFT JOIN set_logs sl ON sl.session_id = ws.id
            WHERE ws.user_id = ? AND ws.completed_at IS NOT NULL
            GROUP BY ws.id
            ORDER BY ws.session_date DESC
            LIMIT ?
            """,
            [user_id, limit],
        )
        return [
            {
                "session": WorkoutSession.from_row(row),
                "exercise_count": int(row["exercise_count"] or 0),
                "first_set_at": row["first_set_at"],
                "last_set_at": row["last_set_at"],
            }
            for row in rows
        ]

    def get_incomplete_sessions(self, older_than_hours: float = 24) -> List[WorkoutSession]:
        """In-progress sessions created more than ``older_than_hours`` ago."""
        cutoff = pd.Timestamp(self.clock.now() - timedelta(hours=older_than_hours))
        stale = []
        for session in self._fetch(WorkoutSession, "completed_at IS NULL", []):
            created = pd.Timestamp(session.created_at)
            if created.tzinfo is None:
                created = created.tz_localize(self.clock.tz)
            if created < cutoff:
                stale.append(session)
        return stale

    def cleanup_incomplete_sessions(self, older_than_hours: float = 24) -> List[str]:
        """Delete abandoned in-progress sessions and their set logs."""
        with self.transaction():
            removed = [s.id for s in self.get_incomplete_sessions(older_than_hours)]
            for session_id in removed:
                self.delete(WorkoutSession.TABLE, session_id)
        if removed:
            logger.info(f"Removed {len(removed)} incomplete workout sessions")
        return removed

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    def save_template(self, template: WorkoutTemplate) -> WorkoutTemplate:
        return self.upsert(template)

    def get_template(self, template_id: str) -> Optional[WorkoutTemplate]:
        return self.get_record(WorkoutTemplate.TABLE, template_id)

    def get_templates(self, user_id: str) -> List[WorkoutTemplate]:
        return self._fetch(WorkoutTemplate, "user_id = ?", [user_id], "name ASC")

    def delete_template(self, template_id: str) -> bool:
        return self.delete(WorkoutTemplate.TABLE, template_id)

    # =========================================================================
    # TRAINING PATHS
    # =========================================================================

    def _validate_t_path_parent(self, t_path_id: str, parent_id: Optional[str]) -> None:
        """A child's parent must exist and be a top-level program."""
        if parent_id is None:
            return
        if parent_id == t_path_id:
            raise ValidationError(
                "A TPath cannot be its own parent",
                table=TPath.TABLE, field="parent_t_path_id", value=parent_id,
            )
        parent = self.get_t_path_record(parent_id)
        if parent is None:
            raise ValidationError(
                f"Parent TPath {parent_id} does not exist",
                table=TPath.TABLE, field="parent_t_path_id", value=parent_id,
            )
        if not parent.is_top_level:
            raise ValidationError(
                f"Parent TPath {parent_id} is not a top-level program",
                table=TPath.TABLE, field="parent_t_path_id", value=parent_id,
            )
        if self.get_t_paths_by_parent(t_path_id):
            raise ValidationError(
                f"TPath {t_path_id} has children and cannot become a child",
                table=TPath.TABLE, field="parent_t_path_id", value=parent_id,
            )

    def add_t_path(self, t_path: TPath) -> TPath:
        with self.transaction():
            self._validate_t_path_parent(t_path.id, t_path.parent_t_path_id)
            return self.upsert(t_path)

    def get_t_path_record(self, t_path_id: str) -> Optional[TPath]:
        return self.get_record(TPath.TABLE, t_path_id)

    def get_t_path(self, t_path_id: str) -> Optional[TPathWithExercises]:
        """A TPath with its exercises ordered by order_index."""
        t_path = self.get_t_path_record(t_path_id)
        if t_path is None:
            return None
        return TPathWithExercises(t_path=t_path, exercises=self.get_t_path_exercises(t_path_id))

    def get_t_paths(self, user_id: str, main_programs_only: bool = False) -> List[TPath]:
        where = "user_id = ?"
        if main_programs_only:
            where += " AND is_main_program = 1"
        return self._fetch(TPath, where, [user_id], "order_index ASC, created_at DESC")

    def get_t_paths_by_parent(self, parent_id: str) -> List[TPath]:
        return self._fetch(TPath, "parent_t_path_id = ?", [parent_id], "order_index ASC")

    def update_t_path(self, t_path_id: str, updates: Dict[str, Any]) -> bool:
        with self.transaction():
            if "parent_t_path_id" in updates:
                self._validate_t_path_parent(t_path_id, updates["parent_t_path_id"])
            return self.partial_update(TPath.TABLE, t_path_id, updates)

    def get_t_path_tree(self, t_path_id: str) -> List[Tuple[str, str]]:
        """
        Every (table, id) removed by deleting a TPath, leaves first.

        Child TPaths come with their exercises and progress rows; the TPath
        itself is last.
        """
        plan: List[Tuple[str, str]] = []
        for child in self.get_t_paths_by_parent(t_path_id):
            plan.extend(self._t_path_rows(child.id))
        plan.extend(self._t_path_rows(t_path_id))
        return plan

    def _t_path_rows(self, t_path_id: str) -> List[Tuple[str, str]]:
        rows = [
            (TPathExercise.TABLE, r["id"])
            for r in self.query("SELECT id FROM t_path_exercises WHERE template_id = ?", [t_path_id])
        ]
        rows += [
            (TPathProgress.TABLE, r["id"])
            for r in self.query("SELECT id FROM t_path_progress WHERE t_path_id = ?", [t_path_id])
        ]
        rows.append((TPath.TABLE, t_path_id))
        return rows

    def delete_t_path(self, t_path_id: str) -> bool:
        """Delete a TPath; child TPaths, exercises and progress rows cascade."""
        return self.delete(TPath.TABLE, t_path_id)

    def add_t_path_exercise(self, exercise: TPathExercise) -> TPathExercise:
        return self.upsert(exercise)

    def get_t_path_exercises(self, t_path_id: str) -> List[TPathExercise]:
        return self._fetch(TPathExercise, "template_id = ?", [t_path_id], "order_index ASC")

    def delete_t_path_exercise(self, exercise_id: str) -> bool:
        return self.delete(TPathExercise.TABLE, exercise_id)

    def update_t_path_progress(self, progress: TPathProgress) -> TPathProgress:
        """Upsert progress on (user_id, t_path_id) and return the stored row."""
        with self.transaction():
            existing = self.get_t_path_progress(progress.user_id, progress.t_path_id)
            if existing is not None:
                progress = replace(
                    progress,
                    id=existing.id,
                    created_at=progress.created_at or existing.created_at,
                )
            return self.upsert(progress)

    def get_t_path_progress(self, user_id: str, t_path_id: str) -> Optional[TPathProgress]:
        found = self._fetch(TPathProgress, "user_id = ? AND t_path_id = ?", [user_id, t_path_id])
        return found[0] if found else None

    def get_all_t_path_progress(self, user_id: str) -> List[TPathProgress]:
        return self._fetch(TPathProgress, "user_id = ?", [user_id], "last_accessed_at DESC")

    # =========================================================================
    # GYMS
    # =========================================================================

    def add_gym(self, gym: Gym) -> List[Gym]:
        """
        Save a gym.

        Returns:
            Every gym row written: the saved gym first, then any gyms that
            were deactivated because this one is active.
        """
        with self.transaction():
            stored = self.upsert(gym)
            deactivated = self._deactivate_other_gyms(gym.user_id, gym.id) if gym.is_active else []
            return [stored] + deactivated

    def get_gym(self, gym_id: str) -> Optional[Gym]:
        return self.get_record(Gym.TABLE, gym_id)

    def get_gyms(self, user_id: str) -> List[Gym]:
        """All gyms for a user, the active one first, then by name."""
        return self._fetch(Gym, "user_id = ?", [user_id], "is_active DESC, name ASC")

    def get_active_gym(self, user_id: str) -> Optional[Gym]:
        found = self._fetch(Gym, "user_id = ? AND is_active = 1", [user_id])
        return found[0] if found else None

    def update_gym(self, gym_id: str, updates: Dict[str, Any]) -> List[Gym]:
        """Partially update a gym; activating it deactivates the others."""
        with self.transaction():
            if not self.partial_update(Gym.TABLE, gym_id, updates):
                return []
            gym = self.get_gym(gym_id)
            deactivated = self._deactivate_other_gyms(gym.user_id, gym.id) if gym.is_active else []
            return [gym] + deactivated

    def set_active_gym(self, user_id: str, gym_id: str) -> List[Gym]:
        """
        Make one gym the user's only active gym.

        Returns:
            Gyms whose is_active flag changed
        """
        with self.transaction():
            gym = self.get_gym(gym_id)
            if gym is None or gym.user_id != user_id:
                raise ValidationError(
                    f"Gym {gym_id} not found for user {user_id}",
                    table=Gym.TABLE, field="id", value=gym_id,
                )
            changed = self._deactivate_other_gyms(user_id, gym_id)
            if not gym.is_active:
                self.partial_update(Gym.TABLE, gym_id, {"is_active": True})
                changed.insert(0, self.get_gym(gym_id))
            return changed

    def _deactivate_other_gyms(self, user_id: str, keep_id: str) -> List[Gym]:
        others = self._fetch(Gym, "user_id = ? AND is_active = 1 AND id != ?", [user_id, keep_id])
        for other in others:
            self.partial_update(Gym.TABLE, other.id, {"is_active": False})
        return [self.get_gym(other.id) for other in others]

    def delete_gym(self, gym_id: str) -> bool:
        return self.delete(Gym.TABLE, gym_id)

    # =========================================================================
    # GOALS
    # =========================================================================

    def save_goal(self, goal: Goal) -> Goal:
        return self.upsert(goal)

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        return self.get_record(Goal.TABLE, goal_id)

    def get_goals(self, user_id: str, status: Optional[str] = None) -> List[Goal]:
        if status:
            return self._fetch(Goal, "user_id = ? AND status = ?", [user_id, status], "created_at DESC")
        return self._fetch(Goal, "user_id = ?", [user_id], "created_at DESC")

    def update_goal_progress(self, goal_id: str, current_value: float, status: Optional[str] = None) -> bool:
        updates: Dict[str, Any] = {"current_value": current_value}
        if status:
            updates["status"] = status
        return self.partial_update(Goal.TABLE, goal_id, updates)

    def delete_goal(self, goal_id: str) -> bool:
        return self.delete(Goal.TABLE, goal_id)

    # =========================================================================
    # BODY MEASUREMENTS
    # =========================================================================

    def save_body_measurement(self, measurement: BodyMeasurement) -> BodyMeasurement:
        return self.upsert(measurement)

    def get_body_measurements(self, user_id: str) -> List[BodyMeasurement]:
        return self._fetch(BodyMeasurement, "user_id = ?", [user_id], "measurement_date DESC")

    def get_weight_rows(self, user_id: str) -> List[sqlite3.Row]:
        """Raw (measurement_date, weight_kg) rows, oldest first."""
        return self.query(
            """
            SELECT measurement_date, weight_kg FROM body_measurements
            WHERE user_id = ? AND weight_kg IS NOT NULL
            ORDER BY measurement_date ASC
            """,
            [user_id],
        )

    def delete_body_measurement(self, measurement_id: str) -> bool:
        return self.delete(BodyMeasurement.TABLE, measurement_id)

    # =========================================================================
    # ACHIEVEMENTS
    # =========================================================================

    def unlock_achievement(self, achievement: UserAchievement) -> bool:
        """
        Record an unlock unless the user already has it.

        Returns:
            True if a new row was written
        """
        achievement = replace(
            achievement,
            unlocked_at=achievement.unlocked_at or self.clock.now_iso(),
        )
        row = achievement.to_row()
        with self._write_guard(UserAchievement.TABLE, achievement.id):
            with self.transaction() as conn:
                cursor = conn.execute(
                    f"INSERT OR IGNORE INTO user_achievements ({', '.join(row)}) "
                    f"VALUES ({', '.join('?' for _ in row)})",
                    list(row.values()),
                )
                return cursor.rowcount > 0

    def has_achievement(self, user_id: str, achievement_id: str) -> bool:
        row = self.query_one(
            "SELECT COUNT(*) AS count FROM user_achievements WHERE user_id = ? AND achievement_id = ?",
            [user_id, achievement_id],
        )
        return bool(row and row["count"])

    def get_user_achievements(self, user_id: str) -> List[UserAchievement]:
        return self._fetch(UserAchievement, "user_id = ?", [user_id], "unlocked_at DESC")

    # =========================================================================
    # AGGREGATE READS (raw rows, grouped by local day in analytics)
    # =========================================================================

    def get_completed_session_dates(self, user_id: str) -> List[str]:
        rows = self.query(
            "SELECT session_date FROM workout_sessions WHERE user_id = ? AND completed_at IS NOT NULL",
            [user_id],
        )
        return [row["session_date"] for row in rows]

    def count_completed_sessions(self, user_id: str) -> int:
        row = self.query_one(
            "SELECT COUNT(*) AS count FROM workout_sessions WHERE user_id = ? AND completed_at IS NOT NULL",
            [user_id],
        )
        return int(row["count"]) if row else 0

    def get_session_volumes(self, user_id: str) -> pd.DataFrame:
        """One row per completed session: session_id, session_date, volume."""
        return self.to_dataframe(
            """
            SELECT ws.id AS session_id, ws.session_date,
                   COALESCE(SUM(sl.weight_kg * sl.reps), 0) AS volume
            FROM workout_sessions ws
            LEFT JOIN set_logs sl ON sl.session_id = ws.id
            WHERE ws.user_id = ? AND ws.completed_at IS NOT NULL
            GROUP BY ws.id
            """,
            [user_id],
        )

    def get_exercise_weights(self, user_id: str, exercise_id: str) -> pd.DataFrame:
        """Heaviest set per completed session for one exercise."""
        return self.to_dataframe(
            """
            SELECT ws.session_date, MAX(sl.weight_kg) AS weight
            FROM set_logs sl
            JOIN workout_sessions ws ON sl.session_id = ws.id
            WHERE ws.user_id = ? AND sl.exercise_id = ?
              AND ws.completed_at IS NOT NULL AND sl.weight_kg IS NOT NULL
            GROUP BY ws.id
            """,
            [user_id, exercise_id],
        )

    def get_total_volume(self, user_id: str) -> float:
        row = self.query_one(
            """
            SELECT COALESCE(SUM(sl.weight_kg * sl.reps), 0) AS total_volume
            FROM set_logs sl
            JOIN workout_sessions ws ON sl.session_id = ws.id
            WHERE ws.user_id = ? AND ws.completed_at IS NOT NULL
            """,
            [user_id],
        )
        return float(row["total_volume"]) if row else 0.0

    def get_max_weights(self, user_id: str) -> Dict[str, float]:
        """Heaviest completed set per exercise."""
        rows = self.query(
            """
            SELECT sl.exercise_id, MAX(sl.weight_kg) AS max_weight
            FROM set_logs sl
            JOIN workout_sessions ws ON sl.session_id = ws.id
            WHERE ws.user_id = ? AND ws.completed_at IS NOT NULL AND sl.weight_kg IS NOT NULL
            GROUP BY sl.exercise_id
            """,
            [user_id],
        )
        return {row["exercise_id"]: float(row["max_weight"]) for row in rows}

    # =========================================================================
    # ACCOUNT RESET
    # =========================================================================

    # Child tables before parents
    USER_TABLES = [
        "set_logs",
        "workout_sessions",
        "t_path_progress",
        "t_path_exercises",
        "t_paths",
        "workout_templates",
        "gyms",
        "user_goals",
        "body_measurements",
        "user_achievements",
    ]

    def cleanup_user_data(self, user_id: str) -> Dict[str, int]:
        """
        Remove every row owned by a user.

        Returns:
            Deleted row count per table
        """
        statements = {
            "set_logs": "DELETE FROM set_logs WHERE session_id IN "
                        "(SELECT id FROM workout_sessions WHERE user_id = ?)",
            "t_path_exercises": "DELETE FROM t_path_exercises WHERE template_id IN "
                                "(SELECT id FROM t_paths WHERE user_id = ?)",
        }
        counts = {}
        with self.transaction() as conn:
            for table in self.USER_TABLES:
                sql = statements.get(table, f"DELETE FROM {table} WHERE user_id = ?")
                counts[table] = conn.execute(sql, [user_id]).rowcount
        logger.info(f"Cleaned local data for user {user_id}: {counts}")
        return counts

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        row = self.query_one("SELECT value FROM app_settings WHERE key = ?", [key])
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except (json.JSONDecodeError, TypeError):
            return row["value"]

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        self.execute(
            """
            INSERT INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            [key, json.dumps(value), self.clock.now_iso()],
        )
