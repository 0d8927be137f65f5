# =============================================================================
# fitness_core/offline/sync_engine.py
# Sync Processor - Background Outbox Delivery
# =============================================================================
"""
SyncProcessor - replays outbox entries to the remote backend.

Features:
- Background thread gated by the connectivity monitor and an enabled flag
- Strict FIFO delivery, one entry at a time, stopping at the first failure
- Bounded per-call timeout on a single-worker executor
- Wake-up on reconnect and on enqueue; capped exponential backoff on failure
- Sync status snapshots pushed to callbacks
"""

from __future__ import annotations
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging

from fitness_core.errors import (
    ConnectionLostError,
    RemoteSyncError,
    RemoteTimeoutError,
    handle_error,
    safe_execute,
)
from fitness_core.logging import LogContext
from fitness_core.offline.connection_manager import ConnectionMonitor
from fitness_core.offline.models import OutboxEntry
from fitness_core.offline.remote_backend import RemoteBackend
from fitness_core.offline.sync_queue import OutboxQueue
from fitness_core.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

# Never sent to the remote, whatever the table
LOCAL_ONLY_FIELDS = ("sync_status", "remote_id")


class SyncState(Enum):
    """Processor states."""
    IDLE = "idle"             # Disabled, offline, or no backend
    DRAINING = "draining"     # Walking the outbox
    WAITING = "waiting"       # Between passes


@dataclass
class SyncStatus:
    """Snapshot of the processor for UI display."""
    state: SyncState = SyncState.IDLE
    queue_length: int = 0
    online: bool = False
    enabled: bool = True
    last_sync: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None
    stuck_count: int = 0
    total_synced: int = 0
    consecutive_failures: int = 0

    @property
    def is_syncing(self) -> bool:
        return self.state == SyncState.DRAINING


@dataclass
class DrainResult:
    """Outcome of one drain pass."""
    delivered: int = 0
    failed: bool = False
    aborted: bool = False       # Stopped because of offline/disable
    skipped: bool = False       # Not run (another pass active or cannot sync)
    error: Optional[str] = None


class SyncProcessor:
    """
    Drains the outbox into the remote backend.

    Usage:
        processor = SyncProcessor(queue, monitor, backend, clock)
        processor.start()      # background thread
        processor.sync_now()   # synchronous pass ("pull to refresh")
    """

    POLL_SLICE = 0.1            # Seconds between cancellation checks during a call

    def __init__(
        self,
        queue: OutboxQueue,
        monitor: ConnectionMonitor,
        backend: Optional[RemoteBackend],
        clock: Optional[Clock] = None,
        enabled: bool = True,
        remote_timeout: float = 30.0,
        idle_interval: float = 30.0,
        backoff_base: float = 5.0,
        backoff_max: float = 300.0,
        surface_after_attempts: int = 5,
        local_only_fields: Optional[Dict[str, Iterable[str]]] = None,
    ):
        self.queue = queue
        self.monitor = monitor
        self.backend = backend
        self.clock = clock or SystemClock()
        self.remote_timeout = remote_timeout
        self.idle_interval = idle_interval
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.surface_after_attempts = surface_after_attempts
        self.local_only_fields = {t: set(f) for t, f in (local_only_fields or {}).items()}

        self._status = SyncStatus(enabled=enabled, online=monitor.is_online)
        self._status_lock = threading.Lock()
        self._drain_lock = threading.Lock()
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._callbacks: List[Callable[[SyncStatus], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

        self._unsubscribe = monitor.subscribe(self._on_connection_change)
        queue.register_listener(self._on_enqueue)

    @classmethod
    def from_config(
        cls,
        queue: OutboxQueue,
        monitor: ConnectionMonitor,
        backend: Optional[RemoteBackend],
        config,
        clock: Optional[Clock] = None,
        enabled: Optional[bool] = None,
    ) -> SyncProcessor:
        return cls(
            queue,
            monitor,
            backend,
            clock=clock,
            enabled=config.sync_enabled if enabled is None else enabled,
            remote_timeout=config.remote_timeout_seconds,
            idle_interval=config.idle_interval_seconds,
            backoff_base=config.backoff_base_seconds,
            backoff_max=config.backoff_max_seconds,
            surface_after_attempts=config.surface_after_attempts,
            local_only_fields=config.local_only_fields,
        )

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def status(self) -> SyncStatus:
        """Copy of the current status."""
        with self._status_lock:
            return replace(self._status)

    @property
    def state(self) -> SyncState:
        return self._status.state

    @property
    def is_syncing(self) -> bool:
        return self._status.is_syncing

    @property
    def queue_length(self) -> int:
        return self.queue.count()

    @property
    def enabled(self) -> bool:
        return self._status.enabled

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def can_sync(self) -> bool:
        """Leaving Idle requires a backend, the enabled flag and connectivity."""
        return self.backend is not None and self._status.enabled and self.monitor.is_online

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Start background sync thread."""
        if self.is_running:
            return

        self._stop.clear()
        self._wake.set()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="SyncProcessor",
        )
        self._thread.start()
        logger.info("Sync processor started")

    def stop(self, timeout: float = 10) -> None:
        """Stop background sync thread; an in-flight remote call is left to finish."""
        self._stop.set()
        self._wake.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        logger.info("Sync processor stopped")

    def close(self) -> None:
        """Stop and detach from the monitor and queue."""
        self.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.queue.unregister_listener(self._on_enqueue)

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable delivery; disabling stops issuing new calls."""
        with self._status_lock:
            if self._status.enabled == enabled:
                return
            self._status.enabled = enabled
        logger.info(f"Sync {'enabled' if enabled else 'disabled'}")
        if enabled:
            self.wake()
        else:
            self._publish(SyncState.IDLE if not self.is_syncing else None)

    def wake(self) -> None:
        """Ask the background loop to start a pass now."""
        self._wake.set()

    # =========================================================================
    # EVENT HANDLERS
    # =========================================================================

    def _on_connection_change(self, online: bool) -> None:
        with self._status_lock:
            was_online = self._status.online
            self._status.online = online
        if online and not was_online:
            logger.info("Connection restored, waking sync processor")
            self.wake()
        if not online and self._status.state == SyncState.WAITING:
            self._publish(SyncState.IDLE)
        elif was_online != online:
            self._publish()

    def _on_enqueue(self, entry: OutboxEntry) -> None:
        # During failure backoff the head entry is the blocker; a new entry behind it cannot help
        if self._status.consecutive_failures == 0:
            self.wake()
        self._publish()

    # =========================================================================
    # BACKGROUND LOOP
    # =========================================================================

    def _run_loop(self) -> None:
        """Background sync loop."""
        while not self._stop.is_set():
            self._wake.clear()

            if not self.can_sync():
                self._publish(SyncState.IDLE)
                self._wake.wait(timeout=self.idle_interval)
                continue

            try:
                result = self._drain_pass()
            except Exception as e:
                # Local failure (e.g. store unavailable); back off like a remote failure
                error = handle_error(e)
                with self._status_lock:
                    self._status.consecutive_failures += 1
                    self._status.last_error = error["message"]
                result = DrainResult(failed=True, error=error["message"])

            if self._stop.is_set():
                break
            if result.aborted:
                self._publish(SyncState.IDLE)
                continue

            delay = self.next_delay()
            self._publish(SyncState.WAITING)
            logger.debug(f"Next sync pass in {delay:.1f}s")
            self._wake.wait(timeout=delay)

        self._publish(SyncState.IDLE)

    def next_delay(self) -> float:
        """Idle poll after a clean pass; capped exponential backoff after failures."""
        failures = self._status.consecutive_failures
        if failures == 0:
            return self.idle_interval
        return min(self.backoff_base * 2 ** (failures - 1), self.backoff_max)

    # =========================================================================
    # DRAIN PASS
    # =========================================================================

    def sync_now(self) -> DrainResult:
        """
        Run one drain pass in the calling thread.

        Returns:
            DrainResult (skipped when offline, disabled, or a pass is already running)
        """
        if not self.can_sync():
            logger.debug("Cannot sync: offline, disabled or no backend")
            return DrainResult(skipped=True)
        result = self._drain_pass()
        if result.skipped:
            return result
        if self.is_running and not result.aborted:
            self._publish(SyncState.WAITING)
        else:
            self._publish(SyncState.IDLE)
        return result

    def _drain_pass(self) -> DrainResult:
        if not self._drain_lock.acquire(blocking=False):
            return DrainResult(skipped=True)
        try:
            with self._status_lock:
                self._status.last_sync = self.clock.now()
            self._publish(SyncState.DRAINING)

            entries = self.queue.list()
            if not entries:
                self._record_pass(DrainResult())
                return DrainResult()

            result = DrainResult()
            with LogContext(logger, f"Drain pass ({len(entries)} pending)", level=logging.DEBUG):
                for entry in entries:
                    if not self.can_sync():
                        result.aborted = True
                        break

                    error = self._deliver(entry)
                    if error is None:
                        self.queue.remove(entry.id)
                        result.delivered += 1
                        with self._status_lock:
                            self._status.total_synced += 1
                        continue

                    self.queue.record_failure(entry.id, str(error))
                    result.error = str(error)
                    if isinstance(error, ConnectionLostError):
                        result.aborted = True
                    else:
                        result.failed = True
                    logger.warning(
                        f"Outbox entry {entry.id} ({entry.operation.value} {entry.table}) "
                        f"failed on attempt {entry.attempts + 1}: {error}"
                    )
                    break

            self._record_pass(result)
            if result.delivered:
                logger.info(f"Synced {result.delivered} outbox entries")
            return result
        finally:
            self._drain_lock.release()

    def _record_pass(self, result: DrainResult) -> None:
        with self._status_lock:
            if result.failed:
                self._status.consecutive_failures += 1
            elif not result.aborted:
                self._status.consecutive_failures = 0
                self._status.last_success = self.clock.now()
            if result.error:
                self._status.last_error = result.error
            elif not result.aborted:
                self._status.last_error = None

    def _deliver(self, entry: OutboxEntry) -> Optional[RemoteSyncError]:
        """
        Apply one entry remotely, waiting at most ``remote_timeout`` seconds.

        Returns:
            None on success, otherwise the error to record on the entry.
        """
        outbound = replace(entry, payload=self.sanitize_payload(entry.table, entry.payload))
        future = self._submit(outbound)
        deadline = time.monotonic() + self.remote_timeout

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                # The call keeps running on the worker; its result is discarded
                return RemoteTimeoutError(
                    f"Remote call timed out after {self.remote_timeout}s",
                    timeout_seconds=self.remote_timeout,
                    table=entry.table,
                    operation=entry.operation.value,
                )

            done, _ = wait([future], timeout=min(self.POLL_SLICE, remaining))
            if done:
                return self._outcome(entry, future)

            if not self.can_sync():
                reason = "Sync disabled" if not self._status.enabled else "Connection lost"
                return ConnectionLostError(
                    f"{reason} during sync",
                    table=entry.table,
                    operation=entry.operation.value,
                )

    def _submit(self, entry: OutboxEntry) -> Future:
        # One worker keeps remote writes in order even behind a timed-out call
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync-remote")
        return self._executor.submit(self.backend.apply, entry)

    def _outcome(self, entry: OutboxEntry, future: Future) -> Optional[RemoteSyncError]:
        error = future.exception()
        if error is None:
            return None
        if isinstance(error, RemoteSyncError):
            return error
        return RemoteSyncError(
            f"Unexpected error applying {entry.operation.value} on {entry.table}: {error}",
            table=entry.table,
            operation=entry.operation.value,
        )

    def sanitize_payload(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Strip local-only fields before the payload leaves the device."""
        drop = set(LOCAL_ONLY_FIELDS) | self.local_only_fields.get(table, set())
        return {k: v for k, v in payload.items() if k not in drop}

    # =========================================================================
    # STATUS CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncStatus], None]) -> None:
        """Register a callback for sync status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncStatus], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _publish(self, state: Optional[SyncState] = None) -> None:
        """Refresh derived counters, optionally change state, and notify callbacks."""
        queue_length = self.queue.count()
        stuck = len(self.queue.stuck(self.surface_after_attempts))
        with self._status_lock:
            if state is not None:
                self._status.state = state
            self._status.queue_length = queue_length
            self._status.stuck_count = stuck
            self._status.online = self.monitor.is_online
            snapshot = replace(self._status)

        for callback in list(self._callbacks):
            safe_execute(callback, snapshot, error_message="Error in sync status callback")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        status = self.status
        return {
            "state": status.state.value,
            "is_syncing": status.is_syncing,
            "is_online": status.online,
            "enabled": status.enabled,
            "pending_count": self.queue_length,
            "stuck_count": status.stuck_count,
            "last_sync": status.last_sync.isoformat() if status.last_sync else None,
            "last_success": status.last_success.isoformat() if status.last_success else None,
            "last_error": status.last_error,
            "total_synced": status.total_synced,
        }
