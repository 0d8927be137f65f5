# =============================================================================
# fitness_core/offline/connection_manager.py
# Connectivity Monitor - Online/Offline Flag with Subscriptions
# =============================================================================
"""
ConnectionMonitor - wraps the platform's reachability signal into a boolean.

Features:
- Event driven: the platform calls set_online() on every network change
- New subscribers receive the current state immediately
- One-shot TCP probe (check_connection) for "refresh on foreground"
- Thread-safe state changes
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import urlparse
import logging

from fitness_core.errors import ErrorContext

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.OFFLINE
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    last_change: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionMonitor:
    """
    Online/offline flag shared by the sync processor and the status badge.

    Usage:
        monitor = ConnectionMonitor.for_url(os.getenv("SUPABASE_URL"))
        unsubscribe = monitor.subscribe(lambda online: print(online))
        monitor.set_online(True)   # called by the platform network hook
    """

    CONNECTION_TIMEOUT = 5      # Timeout for the reachability probe

    def __init__(
        self,
        initial_online: bool = False,
        probe_host: Optional[str] = None,
        probe_port: int = 443,
        timeout: float = CONNECTION_TIMEOUT,
    ):
        """
        Args:
            initial_online: State reported until the platform says otherwise
            probe_host: Host checked by check_connection()
            probe_port: Port checked by check_connection()
            timeout: Probe timeout in seconds
        """
        self._state = ConnectionState(
            status=ConnectionStatus.ONLINE if initial_online else ConnectionStatus.OFFLINE,
        )
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[bool], None]] = []
        self.probe_host = probe_host
        self.probe_port = probe_port
        self.timeout = timeout

    @classmethod
    def for_url(cls, url: Optional[str], **kwargs) -> ConnectionMonitor:
        """Monitor whose probe targets the host of a backend URL."""
        host, port = None, 443
        if url:
            parsed = urlparse(url)
            host = parsed.hostname
            port = parsed.port or (80 if parsed.scheme == "http" else 443)
        return cls(probe_host=host, probe_port=port, **kwargs)

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return not self.is_online

    def set_online(self, online: bool) -> bool:
        """
        Platform hook: report the current reachability.

        Returns:
            True if the state changed (subscribers were notified)
        """
        new_status = ConnectionStatus.ONLINE if online else ConnectionStatus.OFFLINE
        with self._lock:
            old_status = self._state.status
            now = datetime.now()
            if online:
                self._state.last_online = now
            if old_status == new_status:
                return False
            self._state.status = new_status
            self._state.last_change = now

        logger.info(f"Connection status changed: {old_status.value} -> {new_status.value}")
        self._notify_callbacks()
        return True

    def check_connection(self) -> bool:
        """
        Probe the backend host once and feed the result into set_online().

        Without a probe host there is nothing remote to reach, so the monitor
        stays in its current state.
        """
        if not self.probe_host:
            return self.is_online

        self._state.last_check = datetime.now()
        reachable = self._probe(self.probe_host, self.probe_port)
        if reachable:
            self._state.consecutive_failures = 0
            self._state.error_message = None
        else:
            self._state.consecutive_failures += 1
        self.set_online(reachable)
        return reachable

    def _probe(self, host: str, port: int) -> bool:
        """TCP reachability check (no data sent)."""
        try:
            with socket.create_connection((host, port), timeout=self.timeout):
                return True
        except OSError as e:
            self._state.error_message = str(e)
            logger.debug(f"Connection probe to {host}:{port} failed: {e}")
            return False

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self.set_online(False)
        logger.info("Forced offline mode")

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """
        Register a callback for online/offline transitions.

        The callback is invoked immediately with the current state.

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            if callback not in self._callbacks:
                self._callbacks.append(callback)
        self._invoke(callback, self.is_online)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks of status change."""
        with self._lock:
            callbacks = list(self._callbacks)
        online = self.is_online
        for callback in callbacks:
            self._invoke(callback, online)

    def _invoke(self, callback: Callable[[bool], None], online: bool) -> None:
        with ErrorContext("connection callback"):
            callback(online)

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "probe_host": self.probe_host,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "last_change": self._state.last_change.isoformat() if self._state.last_change else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
