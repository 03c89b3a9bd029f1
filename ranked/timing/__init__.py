"""
Helpers for executing async functions on a timer
"""

from datetime import datetime, timezone

from .scheduler import Scheduler, TimerHandle
from .timer import Timer, at_interval


def datetime_now() -> datetime:
    return datetime.now(timezone.utc)


__all__ = (
    "Scheduler",
    "Timer",
    "TimerHandle",
    "at_interval",
    "datetime_now",
)
