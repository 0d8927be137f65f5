# =============================================================================
# fitness_core/errors/exceptions.py
# Custom Exception Hierarchy for the Fitness Data Core
# =============================================================================

from typing import Optional, Dict, Any


class FitnessCoreError(Exception):
    """
    Base exception for all fitness data core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "DATA_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "FC_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# LOCAL STORE EXCEPTIONS
# =============================================================================

class ValidationError(FitnessCoreError):
    """Raised when a record or request fails validation before touching the store"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = value

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )


class LocalWriteError(FitnessCoreError):
    """Raised when the local store rejects a write (constraint or serialization failure)"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if record_id:
            details["record_id"] = record_id

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# SYNC EXCEPTIONS
# =============================================================================

class RemoteSyncError(FitnessCoreError):
    """Raised when the remote backend rejects or fails to apply an outbox entry"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        code: str = "SYNC_001",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            code=code,
            details=details,
            **kwargs,
        )


class RemoteTimeoutError(RemoteSyncError):
    """Raised when a remote call does not complete within the per-call timeout"""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None, **kwargs):
        details = kwargs.pop("details", {})
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds

        super().__init__(message=message, code="SYNC_002", details=details, **kwargs)


class ConnectionLostError(RemoteSyncError):
    """Raised when connectivity drops (or sync is disabled) while a remote call is pending"""

    def __init__(self, message: str = "Connection lost during sync", **kwargs):
        super().__init__(message=message, code="SYNC_003", **kwargs)


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(FitnessCoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
