"""
core/clock.py -- Injectable source of the current time.

Everything that stamps or compares an expiry takes a Clock so tests can move
time forward without sleeping.
"""

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
