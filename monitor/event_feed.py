"""Watermark-driven reader over the event log."""
import logging
from datetime import timedelta

from utils.cache import TTLCache
from utils.clock import SystemClock, from_iso

logger = logging.getLogger("tokenwatch.feed")

DEFAULT_LOOKBACK = timedelta(minutes=15)


class EventFeed:
    """At-least-once delivery of new events to a handler.

    Events from one tick share a timestamp but commit one by one, so a poll
    can land between two of them. Each poll therefore re-reads the events at
    the watermark itself and skips the ids it has already handled. The
    watermark only moves after every event in a batch was handled, so a
    handler failure means re-delivery rather than loss.
    """

    def __init__(self, log, watermarks, name="default", dedupe_ttl=3600, clock=None):
        self.log = log
        self.watermarks = watermarks
        self.name = name
        self.dedupe_ttl = dedupe_ttl
        self.clock = clock or SystemClock()
        self._seen = TTLCache(timer=lambda: self.clock.now().timestamp())

    @property
    def watermark(self):
        stored = self.watermarks.get_watermark(self.name)
        if stored:
            return from_iso(stored)
        return self.clock.now() - DEFAULT_LOOKBACK

    def _batch(self, since, limit):
        """About ``limit`` events; a run of equal timestamps is never split across batches."""
        fetch = limit
        while True:
            events = self.log.query_events_after(since, limit=fetch, inclusive=True)
            if len(events) < fetch:
                return events
            last = events[-1].occurred_at
            head = [e for e in events if e.occurred_at < last]
            if head:
                return head
            fetch *= 2

    def poll(self, handler, limit=100):
        """Hand new events to ``handler`` in order; returns how many were handled."""
        self._seen.purge()
        since = self.watermark
        events = self._batch(since, limit)
        if not events:
            return 0

        handled = 0
        newest = since
        for event in events:
            # Re-read ids get a fresh TTL so events at the watermark stay deduped.
            if event.event_id not in self._seen:
                handler(event)
                handled += 1
            self._seen.set(event.event_id, True, ttl=self.dedupe_ttl)
            if event.occurred_at > newest:
                newest = event.occurred_at

        self.watermarks.set_watermark(self.name, newest)
        if handled:
            logger.debug(f"Feed {self.name}: {handled} events, watermark now {newest.isoformat()}")
        return handled
