# Utils package
from .clock import (
    Clock,
    SystemClock,
    FixedClock,
    to_local_date,
)

__all__ = [
    "Clock",
    "SystemClock",
    "FixedClock",
    "to_local_date",
]
