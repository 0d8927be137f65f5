# =============================================================================
# fitness_core/config.py
# Runtime Configuration for the Offline Data Core
# =============================================================================
"""
Configuration for the local store, the sync processor and analytics.

Values come from environment variables (optionally loaded from a ``.env``
file). Everything has a sensible default so the core runs fully offline with
no configuration at all.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional

from dotenv import load_dotenv

from fitness_core.errors import ConfigurationError


DEFAULT_DB_PATH = Path("local_data") / "fitness_tracker.db"


@dataclass
class OfflineConfig:
    """Configuration for the offline-first data core."""

    # ==================== LOCAL STORE ====================
    db_path: str = str(DEFAULT_DB_PATH)
    timezone: str = "UTC"

    # ==================== REMOTE BACKEND ====================
    # Supabase takes precedence over the plain REST backend when both are set
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    rest_base_url: Optional[str] = None
    rest_api_key: Optional[str] = None

    # ==================== SYNC PROCESSOR ====================
    sync_enabled: bool = True
    remote_timeout_seconds: float = 30.0
    idle_interval_seconds: float = 30.0     # Poll interval after an empty queue
    backoff_base_seconds: float = 5.0       # First delay after a failed pass
    backoff_max_seconds: float = 300.0      # Cap for the failure backoff
    surface_after_attempts: int = 5         # Report entries as stuck (never dropped)

    # ==================== ANALYTICS ====================
    stats_window_days: int = 30
    streak_lookback_days: int = 365

    # Local-only columns stripped from payloads before they leave the device
    local_only_fields: Dict[str, list] = field(default_factory=lambda: {
        "workout_sessions": ["sync_status"],
    })

    def validate(self) -> None:
        """Raise ConfigurationError for values the core cannot run with."""
        positive = {
            "remote_timeout_seconds": self.remote_timeout_seconds,
            "idle_interval_seconds": self.idle_interval_seconds,
            "backoff_base_seconds": self.backoff_base_seconds,
            "backoff_max_seconds": self.backoff_max_seconds,
            "surface_after_attempts": self.surface_after_attempts,
            "stats_window_days": self.stats_window_days,
            "streak_lookback_days": self.streak_lookback_days,
        }
        for key, value in positive.items():
            if value <= 0:
                raise ConfigurationError(
                    f"{key} must be positive, got {value}",
                    config_key=key,
                    expected_type="positive number",
                )
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ConfigurationError(
                "backoff_max_seconds must be >= backoff_base_seconds",
                config_key="backoff_max_seconds",
            )
        if bool(self.supabase_url) != bool(self.supabase_key):
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_KEY must be set together",
                config_key="supabase_url",
            )

    @property
    def has_remote(self) -> bool:
        return bool(self.supabase_url or self.rest_base_url)


# Environment variable -> (field name, parser)
ENV_MAPPING: Dict[str, tuple] = {
    "FITNESS_DB_PATH": ("db_path", str),
    "FITNESS_TIMEZONE": ("timezone", str),
    "SUPABASE_URL": ("supabase_url", str),
    "SUPABASE_KEY": ("supabase_key", str),
    "FITNESS_API_URL": ("rest_base_url", str),
    "FITNESS_API_KEY": ("rest_api_key", str),
    "FITNESS_SYNC_ENABLED": ("sync_enabled", "bool"),
    "FITNESS_REMOTE_TIMEOUT": ("remote_timeout_seconds", float),
    "FITNESS_SYNC_IDLE_INTERVAL": ("idle_interval_seconds", float),
    "FITNESS_SYNC_BACKOFF_BASE": ("backoff_base_seconds", float),
    "FITNESS_SYNC_BACKOFF_MAX": ("backoff_max_seconds", float),
    "FITNESS_SYNC_SURFACE_AFTER": ("surface_after_attempts", int),
    "FITNESS_STATS_WINDOW_DAYS": ("stats_window_days", int),
    "FITNESS_STREAK_LOOKBACK_DAYS": ("streak_lookback_days", int),
}


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def load_config(
    env_file: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> OfflineConfig:
    """
    Build an OfflineConfig from environment variables.

    Args:
        env_file: Optional path to a .env file (loaded without overriding
            variables that are already set)
        environ: Mapping to read instead of os.environ (used by tests)

    Returns:
        Validated OfflineConfig
    """
    if environ is None:
        load_dotenv(dotenv_path=env_file, override=False)
        environ = dict(os.environ)

    values = {}
    for env_key, (field_name, parser) in ENV_MAPPING.items():
        raw = environ.get(env_key)
        if raw is None or raw == "":
            continue
        convert: Callable = _parse_bool if parser == "bool" else parser
        try:
            values[field_name] = convert(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {env_key}: {raw!r}",
                config_key=env_key,
                expected_type=getattr(parser, "__name__", str(parser)),
                details={"error": str(e)},
            )

    config = OfflineConfig(**values)
    config.validate()
    return config
