# =============================================================================
# fitness_core/offline/unified_data_service.py
# Fitness Data Service - Single API for Local Writes and Background Sync
# =============================================================================
"""
FitnessDataService - the primary API the UI layer calls.

Every write goes to the local store first and is immediately visible. Writes
to syncable tables also append an outbox entry in the same transaction, so a
row is never stored without its outbox entry (or the other way round). The
sync processor delivers the outbox in the background whenever the device is
online.

Usage:
------
from fitness_core.offline import create_data_service

service = create_data_service(start=True)

service.add_workout_session(session)
service.add_set_log(set_log)
stats = service.get_workout_stats(user_id)

print(f"Online: {service.is_online}")
print(f"Pending sync: {service.queue_length}")
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional
import logging

from fitness_core.config import OfflineConfig, load_config
from fitness_core.offline.connection_manager import ConnectionMonitor
from fitness_core.offline.local_database import LocalDatabase
from fitness_core.offline.models import (
    BodyMeasurement,
    Goal,
    Gym,
    OutboxOperation,
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
from fitness_core.offline.remote_backend import RemoteBackend, create_backend
from fitness_core.offline.sync_engine import DrainResult, SyncProcessor, SyncStatus
from fitness_core.offline.sync_queue import OutboxQueue
from fitness_core.utils.clock import Clock, SystemClock

if TYPE_CHECKING:
    from fitness_core.analytics.achievements import AchievementEvaluator
    from fitness_core.analytics.workout_stats import WorkoutAnalytics, WorkoutStats

logger = logging.getLogger(__name__)

SYNC_ENABLED_SETTING = "sync_enabled"


class FitnessDataService:
    """
    Data façade over the local store, the outbox and the sync processor.

    All collaborators are passed in; use create_data_service() to build a
    fully wired instance from configuration.
    """

    def __init__(
        self,
        db: LocalDatabase,
        queue: OutboxQueue,
        monitor: ConnectionMonitor,
        processor: SyncProcessor,
        clock: Optional[Clock] = None,
        stats_window_days: int = 30,
        streak_lookback_days: int = 365,
    ):
        self.db = db
        self.queue = queue
        self.monitor = monitor
        self.processor = processor
        self.clock = clock or db.clock
        self.stats_window_days = stats_window_days
        self.streak_lookback_days = streak_lookback_days
        self._analytics: Optional[WorkoutAnalytics] = None
        self._achievements: Optional[AchievementEvaluator] = None

    # =========================================================================
    # LAZY LOADING OF ANALYTICS
    # =========================================================================

    @property
    def analytics(self) -> WorkoutAnalytics:
        """Lazy load workout analytics."""
        if self._analytics is None:
            from fitness_core.analytics.workout_stats import WorkoutAnalytics
            self._analytics = WorkoutAnalytics(
                self.db, self.clock, streak_lookback_days=self.streak_lookback_days
            )
        return self._analytics

    @property
    def achievements(self) -> AchievementEvaluator:
        """Lazy load the achievement evaluator."""
        if self._achievements is None:
            from fitness_core.analytics.achievements import AchievementEvaluator
            self._achievements = AchievementEvaluator(
                self.db, self.clock, streak_lookback_days=self.streak_lookback_days
            )
        return self._achievements

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online

    @property
    def is_syncing(self) -> bool:
        return self.processor.is_syncing

    @property
    def queue_length(self) -> int:
        """Outbox entries not yet confirmed by the remote."""
        return self.queue.count()

    @property
    def sync_status(self) -> SyncStatus:
        return self.processor.status

    @property
    def sync_enabled(self) -> bool:
        return self.processor.enabled

    # =========================================================================
    # OUTBOX HELPERS
    # =========================================================================

    def _enqueue(self, operation: OutboxOperation, table: str, payload: Dict[str, Any]) -> int:
        return self.queue.add(operation, table, payload)

    def _enqueue_create(self, records: Iterable[Record]) -> None:
        for record in records:
            self._enqueue(OutboxOperation.CREATE, record.TABLE, record.to_dict())

    def _enqueue_update(self, table: str, record_id: str) -> None:
        """Queue the full row as it stands after the update."""
        record = self.db.get_record(table, record_id)
        if record is not None:
            self._enqueue(OutboxOperation.UPDATE, table, record.to_dict())

    def _enqueue_delete(self, table: str, record_id: str) -> None:
        self._enqueue(OutboxOperation.DELETE, table, {"id": record_id})

    def _delete_session(self, session_id: str) -> bool:
        """Delete a session locally, queueing its set logs' deletes first."""
        for set_log in self.db.get_set_logs(session_id):
            self._enqueue_delete(SetLog.TABLE, set_log.id)
        if not self.db.delete_workout_session(session_id):
            return False
        self._enqueue_delete(WorkoutSession.TABLE, session_id)
        return True

    # =========================================================================
    # WORKOUT SESSIONS
    # =========================================================================

    def add_workout_session(self, session: WorkoutSession) -> WorkoutSession:
        with self.db.transaction():
            stored = self.db.add_workout_session(session)
            self._enqueue_create([stored])
        return stored

    def update_workout_session(self, session_id: str, updates: Dict[str, Any]) -> bool:
        with self.db.transaction():
            updated = self.db.update_workout_session(session_id, updates)
            if updated:
                self._enqueue_update(WorkoutSession.TABLE, session_id)
        return updated

    def complete_workout_session(
        self,
        session_id: str,
        duration_string: Optional[str] = None,
        rating: Optional[int] = None,
    ) -> List[UserAchievement]:
        """
        Mark a session finished and evaluate achievements for its user.

        Returns:
            Achievements unlocked by this workout
        """
        session = self.db.get_workout_session(session_id)
        if session is None:
            return []
        updates: Dict[str, Any] = {"completed_at": self.clock.now_iso()}
        if duration_string is not None:
            updates["duration_string"] = duration_string
        if rating is not None:
            updates["rating"] = rating
        with self.db.transaction():
            self.update_workout_session(session_id, updates)
            return self.evaluate_achievements(session.user_id)

    def get_workout_session(self, session_id: str) -> Optional[WorkoutSession]:
        return self.db.get_workout_session(session_id)

    def get_workout_sessions(self, user_id: str) -> List[WorkoutSession]:
        return self.db.get_workout_sessions(user_id)

    def delete_workout_session(self, session_id: str) -> bool:
        with self.db.transaction():
            return self._delete_session(session_id)

    def get_recent_workout_summaries(self, user_id: str, limit: int = 3) -> List[Dict[str, Any]]:
        return self.db.get_recent_workout_summaries(user_id, limit)

    def cleanup_incomplete_sessions(self, older_than_hours: float = 24) -> List[str]:
        """Delete abandoned in-progress sessions and queue their deletes."""
        with self.db.transaction():
            removed = [
                session.id
                for session in self.db.get_incomplete_sessions(older_than_hours)
                if self._delete_session(session.id)
            ]
        if removed:
            logger.info(f"Removed {len(removed)} incomplete workout sessions")
        return removed

    # =========================================================================
    # SET LOGS
    # =========================================================================

    def add_set_log(self, set_log: SetLog) -> SetLog:
        with self.db.transaction():
            stored = self.db.add_set_log(set_log)
            self._enqueue_create([stored])
        return stored

    def replace_set_logs_for_session(self, session_id: str, logs: List[SetLog]) -> List[SetLog]:
        with self.db.transaction():
            for old in self.db.get_set_logs(session_id):
                self._enqueue_delete(SetLog.TABLE, old.id)
            stored = self.db.replace_set_logs_for_session(session_id, logs)
            self._enqueue_create(stored)
        return stored

    def get_set_logs(self, session_id: str) -> List[SetLog]:
        return self.db.get_set_logs(session_id)

    def get_personal_record(self, user_id: str, exercise_id: str) -> float:
        return self.db.get_personal_record(user_id, exercise_id)

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    def save_template(self, template: WorkoutTemplate) -> WorkoutTemplate:
        with self.db.transaction():
            existed = self.db.get_template(template.id) is not None
            stored = self.db.save_template(template)
            if existed:
                self._enqueue_update(WorkoutTemplate.TABLE, stored.id)
            else:
                self._enqueue_create([stored])
        return stored

    def get_template(self, template_id: str) -> Optional[WorkoutTemplate]:
        return self.db.get_template(template_id)

    def get_templates(self, user_id: str) -> List[WorkoutTemplate]:
        return self.db.get_templates(user_id)

    def delete_template(self, template_id: str) -> bool:
        with self.db.transaction():
            deleted = self.db.delete_template(template_id)
            if deleted:
                self._enqueue_delete(WorkoutTemplate.TABLE, template_id)
        return deleted

    # =========================================================================
    # TRAINING PATHS
    # =========================================================================

    def add_t_path(self, t_path: TPath) -> TPath:
        with self.db.transaction():
            stored = self.db.add_t_path(t_path)
            self._enqueue_create([stored])
        return stored

    def get_t_path(self, t_path_id: str) -> Optional[TPathWithExercises]:
        return self.db.get_t_path(t_path_id)

    def get_t_paths(self, user_id: str, main_programs_only: bool = False) -> List[TPath]:
        return self.db.get_t_paths(user_id, main_programs_only)

    def get_t_paths_by_parent(self, parent_id: str) -> List[TPath]:
        return self.db.get_t_paths_by_parent(parent_id)

    def update_t_path(self, t_path_id: str, updates: Dict[str, Any]) -> bool:
        with self.db.transaction():
            updated = self.db.update_t_path(t_path_id, updates)
            if updated:
                self._enqueue_update(TPath.TABLE, t_path_id)
        return updated

    def delete_t_path(self, t_path_id: str) -> bool:
        """Delete a TPath tree, queueing a delete for every row the cascade removes."""
        with self.db.transaction():
            tree = self.db.get_t_path_tree(t_path_id)
            if not self.db.delete_t_path(t_path_id):
                return False
            for table, record_id in tree:
                self._enqueue_delete(table, record_id)
        return True

    def add_t_path_exercise(self, exercise: TPathExercise) -> TPathExercise:
        with self.db.transaction():
            stored = self.db.add_t_path_exercise(exercise)
            self._enqueue_create([stored])
        return stored

    def get_t_path_exercises(self, t_path_id: str) -> List[TPathExercise]:
        return self.db.get_t_path_exercises(t_path_id)

    def delete_t_path_exercise(self, exercise_id: str) -> bool:
        with self.db.transaction():
            deleted = self.db.delete_t_path_exercise(exercise_id)
            if deleted:
                self._enqueue_delete(TPathExercise.TABLE, exercise_id)
        return deleted

    def update_t_path_progress(self, progress: TPathProgress) -> TPathProgress:
        with self.db.transaction():
            existed = self.db.get_t_path_progress(progress.user_id, progress.t_path_id) is not None
            stored = self.db.update_t_path_progress(progress)
            if existed:
                self._enqueue_update(TPathProgress.TABLE, stored.id)
            else:
                self._enqueue_create([stored])
        return stored

    def get_t_path_progress(self, user_id: str, t_path_id: str) -> Optional[TPathProgress]:
        return self.db.get_t_path_progress(user_id, t_path_id)

    def get_all_t_path_progress(self, user_id: str) -> List[TPathProgress]:
        return self.db.get_all_t_path_progress(user_id)

    # =========================================================================
    # GYMS
    # =========================================================================

    def add_gym(self, gym: Gym) -> Gym:
        """Save a gym; saving an active gym deactivates the user's others."""
        with self.db.transaction():
            stored, *deactivated = self.db.add_gym(gym)
            self._enqueue_create([stored])
            for other in deactivated:
                self._enqueue_update(Gym.TABLE, other.id)
        return stored

    def get_gym(self, gym_id: str) -> Optional[Gym]:
        return self.db.get_gym(gym_id)

    def get_gyms(self, user_id: str) -> List[Gym]:
        return self.db.get_gyms(user_id)

    def get_active_gym(self, user_id: str) -> Optional[Gym]:
        return self.db.get_active_gym(user_id)

    def update_gym(self, gym_id: str, updates: Dict[str, Any]) -> bool:
        with self.db.transaction():
            changed = self.db.update_gym(gym_id, updates)
            for gym in changed:
                self._enqueue_update(Gym.TABLE, gym.id)
        return bool(changed)

    def set_active_gym(self, user_id: str, gym_id: str) -> Optional[Gym]:
        """Make one gym the only active gym for the user and return it."""
        with self.db.transaction():
            for gym in self.db.set_active_gym(user_id, gym_id):
                self._enqueue_update(Gym.TABLE, gym.id)
        return self.db.get_gym(gym_id)

    def delete_gym(self, gym_id: str) -> bool:
        with self.db.transaction():
            deleted = self.db.delete_gym(gym_id)
            if deleted:
                self._enqueue_delete(Gym.TABLE, gym_id)
        return deleted

    # =========================================================================
    # GOALS
    # =========================================================================

    def save_goal(self, goal: Goal) -> Goal:
        with self.db.transaction():
            existed = self.db.get_goal(goal.id) is not None
            stored = self.db.save_goal(goal)
            if existed:
                self._enqueue_update(Goal.TABLE, stored.id)
            else:
                self._enqueue_create([stored])
        return stored

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        return self.db.get_goal(goal_id)

    def get_goals(self, user_id: str, status: Optional[str] = None) -> List[Goal]:
        return self.db.get_goals(user_id, status)

    def update_goal_progress(self, goal_id: str, current_value: float, status: Optional[str] = None) -> bool:
        with self.db.transaction():
            updated = self.db.update_goal_progress(goal_id, current_value, status)
            if updated:
                self._enqueue_update(Goal.TABLE, goal_id)
        return updated

    def delete_goal(self, goal_id: str) -> bool:
        with self.db.transaction():
            deleted = self.db.delete_goal(goal_id)
            if deleted:
                self._enqueue_delete(Goal.TABLE, goal_id)
        return deleted

    # =========================================================================
    # BODY MEASUREMENTS
    # =========================================================================

    def save_body_measurement(self, measurement: BodyMeasurement) -> BodyMeasurement:
        with self.db.transaction():
            stored = self.db.save_body_measurement(measurement)
            self._enqueue_create([stored])
        return stored

    def get_body_measurements(self, user_id: str) -> List[BodyMeasurement]:
        return self.db.get_body_measurements(user_id)

    def delete_body_measurement(self, measurement_id: str) -> bool:
        with self.db.transaction():
            deleted = self.db.delete_body_measurement(measurement_id)
            if deleted:
                self._enqueue_delete(BodyMeasurement.TABLE, measurement_id)
        return deleted

    # =========================================================================
    # ANALYTICS & ACHIEVEMENTS
    # =========================================================================

    def get_workout_stats(self, user_id: str, days: Optional[int] = None) -> WorkoutStats:
        return self.analytics.get_workout_stats(user_id, days or self.stats_window_days)

    def get_workout_frequency(self, user_id: str, days: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.analytics.get_workout_frequency(user_id, days or self.stats_window_days)

    def get_volume_history(self, user_id: str, days: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.analytics.get_volume_history(user_id, days or self.stats_window_days)

    def get_pr_history(self, user_id: str, exercise_id: str) -> List[Dict[str, Any]]:
        return self.analytics.get_pr_history(user_id, exercise_id)

    def get_weight_history(self, user_id: str, days: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.analytics.get_weight_history(user_id, days)

    def evaluate_achievements(self, user_id: str) -> List[UserAchievement]:
        """Unlock newly earned achievements and queue them for sync."""
        with self.db.transaction():
            unlocked = self.achievements.evaluate(user_id)
            self._enqueue_create(unlocked)
        return unlocked

    def get_user_achievements(self, user_id: str) -> List[UserAchievement]:
        return self.db.get_user_achievements(user_id)

    def get_achievement_progress(self, user_id: str) -> List[Dict[str, Any]]:
        return self.achievements.get_progress(user_id)

    # =========================================================================
    # SYNC OPERATIONS
    # =========================================================================

    def start(self) -> None:
        """Start background sync."""
        self.processor.start()

    def sync_now(self) -> DrainResult:
        """Run one drain pass in the calling thread."""
        return self.processor.sync_now()

    def set_sync_enabled(self, enabled: bool) -> None:
        """Persist the sync toggle and apply it to the processor."""
        self.db.set_setting(SYNC_ENABLED_SETTING, enabled)
        self.processor.set_enabled(enabled)

    def register_status_callback(self, callback: Callable[[SyncStatus], None]) -> None:
        """Register a callback for sync status changes (pending badge)."""
        self.processor.register_callback(callback)

    def unregister_status_callback(self, callback: Callable[[SyncStatus], None]) -> None:
        self.processor.unregister_callback(callback)

    def cleanup_user_data(self, user_id: str) -> Dict[str, int]:
        """
        Account reset: remove every local row for the user and wipe the outbox.

        Nothing is queued; pending remote writes for the user are discarded.
        """
        with self.db.transaction():
            counts = self.db.cleanup_user_data(user_id)
            counts["sync_queue"] = self.queue.clear()
        return counts

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        return self.db.get_setting(key, default)

    def set_setting(self, key: str, value: Any) -> None:
        self.db.set_setting(key, value)

    # =========================================================================
    # STATUS & DIAGNOSTICS
    # =========================================================================

    def get_status_display(self) -> Dict[str, Any]:
        """
        Get comprehensive status information.

        Returns:
            Dict with connection and sync status
        """
        return {
            "connection": self.monitor.get_status_display(),
            "sync": self.processor.get_status_display(),
            "is_online": self.is_online,
            "is_syncing": self.is_syncing,
            "pending_sync": self.queue_length,
        }

    def close(self) -> None:
        """Stop background sync and release the store and backend."""
        self.processor.close()
        if self.processor.backend is not None:
            self.processor.backend.close()
        self.db.close()


def create_data_service(
    config: Optional[OfflineConfig] = None,
    backend: Optional[RemoteBackend] = None,
    clock: Optional[Clock] = None,
    monitor: Optional[ConnectionMonitor] = None,
    start: bool = False,
) -> FitnessDataService:
    """
    Build a fully wired FitnessDataService.

    Args:
        config: Configuration (loaded from the environment when omitted)
        backend: Remote backend (built from config when omitted; None in
            config means local-only)
        clock: Clock in the user's time zone (system clock when omitted)
        monitor: Connectivity monitor (probing the backend host when omitted)
        start: Start the background sync thread

    Usage:
        service = create_data_service(start=True)
    """
    config = config or load_config()
    clock = clock or SystemClock(config.timezone)

    db = LocalDatabase(config.db_path, clock=clock)
    db.initialize()
    queue = OutboxQueue(db, clock)

    if monitor is None:
        monitor = ConnectionMonitor.for_url(config.supabase_url or config.rest_base_url)
        monitor.check_connection()
    if backend is None:
        backend = create_backend(config)

    enabled = bool(db.get_setting(SYNC_ENABLED_SETTING, config.sync_enabled))
    processor = SyncProcessor.from_config(queue, monitor, backend, config, clock=clock, enabled=enabled)

    service = FitnessDataService(
        db,
        queue,
        monitor,
        processor,
        clock=clock,
        stats_window_days=config.stats_window_days,
        streak_lookback_days=config.streak_lookback_days,
    )
    if start:
        service.start()
    logger.info(
        f"FitnessDataService ready. Online: {monitor.is_online}, "
        f"pending sync: {service.queue_length}"
    )
    return service
