"""Time helpers for venue timestamps"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MonotonicClock:
    """
    Issues strictly increasing UTC timestamps.

    Wall-clock reads can tie (or step backwards) under load, so every
    timestamp is at least one microsecond after the previous one, and
    `after()` guarantees ordering relative to a timestamp issued elsewhere.
    """

    def __init__(self, source: Callable[[], datetime] = utcnow):
        self._source = source
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return self.after(None)

    def after(self, earlier: Optional[datetime]) -> datetime:
        """Return a timestamp strictly later than `earlier` and every prior reading"""
        with self._lock:
            candidate = ensure_utc(self._source())
            floors = [t + _TICK for t in (self._last, earlier) if t is not None]
            for floor in floors:
                floor = ensure_utc(floor)
                if candidate < floor:
                    candidate = floor
            self._last = candidate
            return candidate
