# =============================================================================
# fitness_core/errors/__init__.py
# Centralized Error Handling for the Fitness Data Core
# =============================================================================

from .exceptions import (
    FitnessCoreError,
    ValidationError,
    LocalWriteError,
    RemoteSyncError,
    RemoteTimeoutError,
    ConnectionLostError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    ErrorContext,
    error_boundary,
)

__all__ = [
    # Exceptions
    "FitnessCoreError",
    "ValidationError",
    "LocalWriteError",
    "RemoteSyncError",
    "RemoteTimeoutError",
    "ConnectionLostError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "ErrorContext",
    "error_boundary",
]
