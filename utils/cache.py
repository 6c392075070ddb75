"""Generic TTL cache."""
import time
import threading


class TTLCache:
    """Thread-safe key-value cache with per-key TTL."""

    def __init__(self, timer=time.time):
        self._store = {}
        self._lock = threading.Lock()
        self._timer = timer

    def get(self, key):
        """Get value if exists and not expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._timer() > entry["expires"]:
                del self._store[key]
                return None
            return entry["value"]

    def set(self, key, value, ttl=300):
        """Set key with TTL in seconds."""
        with self._lock:
            self._store[key] = {
                "value": value,
                "expires": self._timer() + ttl,
            }

    def __contains__(self, key):
        return self.get(key) is not None

    def purge(self):
        """Drop expired entries; returns how many were removed."""
        with self._lock:
            now = self._timer()
            expired = [k for k, e in self._store.items() if now > e["expires"]]
            for k in expired:
                del self._store[k]
            return len(expired)

    def clear(self):
        with self._lock:
            self._store.clear()

    def __len__(self):
        return len(self._store)
