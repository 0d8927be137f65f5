# =============================================================================
# fitness_core/errors/handlers.py
# Error Handling Utilities for the Fitness Data Core
# =============================================================================
"""
Helpers that turn exceptions into loggable, displayable dicts.

Analytics reads sit behind ``error_boundary`` so a broken aggregate shows an
empty chart instead of an exception. Listener and status callbacks run under
``safe_execute`` or ``ErrorContext``, and the sync loop reports local failures
through ``handle_error``. Writes never use these helpers: store and outbox
failures propagate to the caller.
"""

from __future__ import annotations
import functools
import traceback
from typing import Any, Callable, Dict, Optional, TypeVar

from fitness_core.logging import get_logger
from .exceptions import FitnessCoreError

logger = get_logger(__name__)

T = TypeVar("T")

UNKNOWN_CODE = "UNKNOWN"


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Log an exception and describe it for a status display.

    Args:
        error: The exception to describe
        log_error: Also write it to the log
        user_message: Message shown instead of the exception text

    Returns:
        Dict with code, message, details and recoverable
    """
    if isinstance(error, FitnessCoreError):
        info = error.to_dict()
        info.pop("error_type")
    else:
        info = {
            "code": UNKNOWN_CODE,
            "message": str(error),
            "details": {"traceback": traceback.format_exc()},
            "recoverable": True,
        }
    if user_message:
        info["message"] = user_message

    if log_error:
        logger.error(f"[{info['code']}] {info['message']}", exc_info=error)
    return info


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Call ``func`` and fall back to ``default`` if it raises.

    Usage:
        total = safe_execute(db.get_total_volume, user_id, default=0.0)
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, user_message=error_message)
        if reraise:
            raise
        return default


class ErrorContext:
    """
    Block-level error capture; recoverable failures are logged and swallowed.

    Usage:
        with ErrorContext("Evaluating achievements") as ctx:
            evaluator.evaluate(user_id)
        if ctx.error:
            show_warning(ctx.error["message"])
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[Dict[str, Any]] = None

    def __enter__(self) -> ErrorContext:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None:
            return False
        message = None if isinstance(exc_val, FitnessCoreError) else f"Error during: {self.operation}"
        self.error = handle_error(exc_val, user_message=message)
        return self.recoverable


def error_boundary(default_return: Any = None, log: bool = True):
    """
    Decorator returning ``default_return`` when the wrapped call raises.

    A callable default (``list``, ``WorkoutStats``) is called on each failure
    so callers never share a mutable fallback.

    Usage:
        @error_boundary(default_return=list)
        def get_volume_history(self, user_id): ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    logger.error(f"{func.__qualname__} failed, using default: {e}", exc_info=True)
                return default_return() if callable(default_return) else default_return

        return wrapper

    return decorator
