# =============================================================================
# fitness_core/utils/clock.py
# Clock and Time Zone Provider
# =============================================================================
"""
Clock abstraction injected into the store, outbox and analytics.

Analytics group workouts by *calendar day in the user's time zone*, so every
component asks the clock for "today" instead of calling ``date.today()``.
"""

from __future__ import annotations
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd

from fitness_core.errors import ConfigurationError


def _resolve_tz(tz: Union[str, ZoneInfo, timezone, None]):
    if tz is None:
        return timezone.utc
    if isinstance(tz, str):
        try:
            return ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(
                f"Unknown time zone: {tz}",
                config_key="timezone",
                details={"error": str(e)},
            )
    return tz


class Clock(ABC):
    """Source of "now" and of the user's local time zone."""

    def __init__(self, tz: Union[str, ZoneInfo, timezone, None] = None):
        self.tz = _resolve_tz(tz)

    @abstractmethod
    def now(self) -> datetime:
        """Current time as an aware datetime in the user's time zone."""

    def today(self) -> date:
        return self.now().date()

    def now_iso(self) -> str:
        return self.now().isoformat()

    def timestamp_ms(self) -> int:
        return int(self.now().timestamp() * 1000)

    def local_date(self, value: Any) -> Optional[date]:
        return to_local_date(value, self.tz)


class SystemClock(Clock):
    """Wall clock in the configured time zone."""

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock(Clock):
    """
    Deterministic clock for tests.

    With ``auto_tick=True`` every read advances one millisecond, so outbox
    entries created back-to-back get strictly increasing timestamps.
    """

    def __init__(
        self,
        current: datetime,
        tz: Union[str, ZoneInfo, timezone, None] = None,
        auto_tick: bool = False,
    ):
        super().__init__(tz)
        if current.tzinfo is None:
            current = current.replace(tzinfo=self.tz)
        self._current = current.astimezone(self.tz)
        self._auto_tick = auto_tick
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            value = self._current
            if self._auto_tick:
                self._current = self._current + timedelta(milliseconds=1)
            return value

    def advance(self, **kwargs) -> None:
        with self._lock:
            self._current = self._current + timedelta(**kwargs)

    def set(self, current: datetime) -> None:
        with self._lock:
            if current.tzinfo is None:
                current = current.replace(tzinfo=self.tz)
            self._current = current.astimezone(self.tz)


def to_local_date(value: Any, tz) -> Optional[date]:
    """
    Truncate a stored timestamp to the calendar day in ``tz``.

    Offset-aware values are converted to ``tz`` first; naive values and bare
    dates are taken as already local. Unparseable values return None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        ts = pd.Timestamp(value)
    elif isinstance(value, date):
        return value
    else:
        try:
            ts = pd.Timestamp(str(value))
        except (ValueError, TypeError, OverflowError):
            return None
    if ts is pd.NaT or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert(tz)
    return ts.date()
