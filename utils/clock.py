"""Clock abstraction and ISO timestamp helpers."""
import threading
from datetime import datetime, timedelta, timezone


def utcnow():
    return datetime.now(timezone.utc)


def to_iso(dt):
    """Serialize a datetime as a fixed-width UTC ISO string.

    Fixed width keeps lexical order equal to chronological order, which the
    event log relies on for watermark queries.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class SystemClock:
    """Wall clock in UTC."""

    def now(self):
        return utcnow()


class FakeClock:
    """Manually advanced clock for deterministic tests and replays."""

    def __init__(self, start=None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self):
        with self._lock:
            return self._now

    def advance(self, seconds=0, minutes=0, hours=0):
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds, minutes=minutes, hours=hours)
            return self._now

    def set(self, when):
        with self._lock:
            self._now = when
