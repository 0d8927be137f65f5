# =============================================================================
# tests/unit/test_config.py
# Unit Tests for Configuration Loading
# =============================================================================

import pytest

from fitness_core.config import OfflineConfig, load_config
from fitness_core.errors import ConfigurationError


class TestLoadConfig:
    """Test environment-driven configuration"""

    def test_defaults_without_environment(self):
        config = load_config(environ={})

        assert config.timezone == "UTC"
        assert config.remote_timeout_seconds == 30.0
        assert config.idle_interval_seconds == 30.0
        assert config.backoff_base_seconds == 5.0
        assert config.backoff_max_seconds == 300.0
        assert config.surface_after_attempts == 5
        assert config.sync_enabled is True
        assert not config.has_remote

    def test_values_parsed_from_environment(self):
        config = load_config(environ={
            "FITNESS_DB_PATH": "/tmp/fitness.db",
            "FITNESS_TIMEZONE": "Europe/Berlin",
            "FITNESS_API_URL": "https://api.example.com",
            "FITNESS_SYNC_ENABLED": "no",
            "FITNESS_REMOTE_TIMEOUT": "12.5",
            "FITNESS_SYNC_SURFACE_AFTER": "8",
        })

        assert config.db_path == "/tmp/fitness.db"
        assert config.timezone == "Europe/Berlin"
        assert config.rest_base_url == "https://api.example.com"
        assert config.sync_enabled is False
        assert config.remote_timeout_seconds == 12.5
        assert config.surface_after_attempts == 8
        assert config.has_remote

    def test_empty_values_use_defaults(self):
        config = load_config(environ={"FITNESS_REMOTE_TIMEOUT": ""})
        assert config.remote_timeout_seconds == 30.0

    def test_invalid_number_raises_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(environ={"FITNESS_REMOTE_TIMEOUT": "soon"})

        assert exc_info.value.details["config_key"] == "FITNESS_REMOTE_TIMEOUT"
        assert exc_info.value.recoverable is False

    def test_invalid_bool_raises_configuration_error(self):
        with pytest.raises(ConfigurationError):
            load_config(environ={"FITNESS_SYNC_ENABLED": "maybe"})

    def test_env_file_is_loaded(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FITNESS_TIMEZONE", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("FITNESS_TIMEZONE=Asia/Tokyo\n")

        config = load_config(env_file=str(env_file))

        assert config.timezone == "Asia/Tokyo"
        monkeypatch.delenv("FITNESS_TIMEZONE", raising=False)


class TestValidation:
    """Test OfflineConfig.validate"""

    @pytest.mark.parametrize("field", [
        "remote_timeout_seconds",
        "idle_interval_seconds",
        "backoff_base_seconds",
        "surface_after_attempts",
        "stats_window_days",
    ])
    def test_non_positive_values_rejected(self, field):
        with pytest.raises(ConfigurationError):
            OfflineConfig(**{field: 0}).validate()

    def test_backoff_cap_below_base_rejected(self):
        with pytest.raises(ConfigurationError):
            OfflineConfig(backoff_base_seconds=10, backoff_max_seconds=5).validate()

    def test_supabase_url_requires_key(self):
        with pytest.raises(ConfigurationError):
            OfflineConfig(supabase_url="https://project.supabase.co").validate()
