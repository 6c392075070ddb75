"""Suppress repeats of the same error for the same key within a window."""
import threading
from datetime import timedelta


class LogThrottle:
    """Remembers the last logged (signature, time) per key.

    A repeat is logged again once the window has elapsed, or immediately
    if the error signature changed.
    """

    def __init__(self, window_seconds=600):
        self.window = timedelta(seconds=window_seconds)
        self._seen = {}
        self._lock = threading.Lock()

    def should_log(self, key, signature, now):
        with self._lock:
            last = self._seen.get(key)
            if last is not None:
                last_sig, last_at = last
                if last_sig == signature and now - last_at < self.window:
                    return False
            self._seen[key] = (signature, now)
            return True

    def forget(self, key):
        with self._lock:
            self._seen.pop(key, None)

    def __len__(self):
        return len(self._seen)
