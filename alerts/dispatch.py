"""Fan committed events out to live subscribers, push endpoints and sinks."""
import logging

from alerts.channels import AlertChannel
from models.rules import ChannelPrefs

logger = logging.getLogger("tokenwatch.alerts.dispatch")


class DispatchHub:
    """Best-effort delivery. Nothing raised by a channel reaches the caller of notify."""

    def __init__(self, stream=None, push=None, sinks=None):
        self.stream = stream
        self.push = push
        self.sinks = []
        for sink in sinks or []:
            self.add_sink(sink)

    def add_sink(self, channel):
        if not isinstance(channel, AlertChannel):
            raise TypeError(f"{type(channel).__name__} has no send(event) method")
        self.sinks.append(channel)

    def notify(self, owner_id, event, channels=None):
        channels = channels or ChannelPrefs()
        delivered = 0

        if channels.in_app and self.stream is not None:
            try:
                delivered += self.stream.publish(owner_id, event)
            except Exception as e:
                logger.warning(f"Live broadcast failed for {event.event_id}: {e}")

        if channels.push and self.push is not None:
            try:
                delivered += self.push.send(owner_id, event)
            except Exception as e:
                logger.warning(f"Push failed for {event.event_id}: {e}")

        for sink in self.sinks:
            try:
                sink.send(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"{type(sink).__name__} failed for {event.event_id}: {e}")

        return delivered
