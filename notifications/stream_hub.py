"""In-process live broadcast of events to connected subscribers."""
import logging
import queue
import threading

logger = logging.getLogger("tokenwatch.stream")


class Subscription:
    """One subscriber's bounded queue; use as a context manager."""

    def __init__(self, hub, owner_id, maxsize):
        self.hub = hub
        self.owner_id = owner_id
        self.queue = queue.Queue(maxsize=maxsize)

    def get(self, timeout=None):
        """Next event, or None if nothing arrived within ``timeout``."""
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self):
        events = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                return events

    def close(self):
        self.hub.unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class StreamHub:
    """Per-owner fan-out; publishing never blocks the caller."""

    def __init__(self, queue_size=100):
        self.queue_size = queue_size
        self._subs = {}
        self._lock = threading.Lock()

    def subscribe(self, owner_id):
        sub = Subscription(self, owner_id, self.queue_size)
        with self._lock:
            self._subs.setdefault(owner_id, set()).add(sub)
        logger.debug(f"Subscriber added for owner {owner_id}")
        return sub

    def unsubscribe(self, sub):
        with self._lock:
            subs = self._subs.get(sub.owner_id)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                del self._subs[sub.owner_id]

    def subscriber_count(self, owner_id=None):
        with self._lock:
            if owner_id is not None:
                return len(self._subs.get(owner_id, ()))
            return sum(len(s) for s in self._subs.values())

    def publish(self, owner_id, event):
        """Returns how many subscribers received the event."""
        with self._lock:
            subs = list(self._subs.get(owner_id, ()))
        delivered = 0
        for sub in subs:
            try:
                sub.queue.put_nowait(event)
                delivered += 1
            except queue.Full:
                logger.debug(f"Subscriber queue full for owner {owner_id}; dropped {event.event_id}")
        return delivered
