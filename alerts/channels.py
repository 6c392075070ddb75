"""Notification text and sink channels for emitted events."""
import json
import logging
from typing import Protocol, runtime_checkable

from rich.console import Console

from models.enums import EventType

logger = logging.getLogger("tokenwatch.alerts.channels")

_TITLES = {
    EventType.THRESHOLD_FIRED: "Threshold hit",
    EventType.THRESHOLD_RESET: "Threshold ladder reset",
    EventType.CONFIRMATION_PROGRESS: "Confirmation progress",
    EventType.CONFIRMED: "Setup confirmed",
    EventType.EXPIRED: "Setup expired",
    EventType.SESSION_STAGE: "Session stage",
    EventType.SESSION_ENDED: "Session ended",
}

_STYLES = {
    EventType.THRESHOLD_FIRED: "bold yellow",
    EventType.THRESHOLD_RESET: "yellow",
    EventType.CONFIRMATION_PROGRESS: "cyan",
    EventType.CONFIRMED: "bold green",
    EventType.EXPIRED: "dim",
    EventType.SESSION_STAGE: "bold magenta",
    EventType.SESSION_ENDED: "magenta",
}


def format_event_title(event):
    label = _TITLES.get(event.type, event.type.value)
    name = event.rule_name or event.rule_id
    return f"{label}: {name} ({event.subject})"


def format_event_body(event):
    d = event.detail or {}
    t = event.type
    if t in (EventType.THRESHOLD_FIRED, EventType.THRESHOLD_RESET):
        hits = "; ".join(d.get("hits") or [])
        return f"Stage {d.get('stage')} ({len(d.get('hits') or [])}/{d.get('need')} triggers): {hits}"
    if t in (EventType.CONFIRMATION_PROGRESS, EventType.CONFIRMED, EventType.EXPIRED):
        labels = [i.get("label") or i.get("id") for i in d.get("indicators") or [] if i.get("triggered")]
        triggered = ", ".join(labels) or "none"
        return f"{d.get('triggered_count', 0)}/{d.get('need')} indicators triggered: {triggered}"
    if t == EventType.SESSION_STAGE:
        return f"Now {d.get('session_stage')} ({d.get('conditions_met')} conditions met)"
    if t == EventType.SESSION_ENDED:
        return f"Session ended: {d.get('end_reason')}"
    return json.dumps(d, sort_keys=True)


def format_event_text(event):
    """Plain text for push messages and log lines."""
    return f"{format_event_title(event)}\n{format_event_body(event)}"


@runtime_checkable
class AlertChannel(Protocol):
    def send(self, event) -> None: ...


class ConsoleChannel:
    """Print events to terminal with rich formatting."""

    def __init__(self, console=None):
        self.console = console or Console()

    def send(self, event):
        style = _STYLES.get(event.type, "")
        ts = event.occurred_at.strftime("%H:%M:%S")
        self.console.print(
            f"[{style}]{ts} {format_event_title(event)}[/]\n  {format_event_body(event)}",
            highlight=False,
        )


class FileChannel:
    """Append events to a JSON lines log file."""

    def __init__(self, log_path="data/events.jsonl"):
        self.log_path = log_path

    def send(self, event):
        with open(self.log_path, "a") as f:
            f.write(json.dumps(event.to_dict()) + "\n")


class TelegramChannel:
    """Operator feed: every event to one fixed Telegram chat."""

    def __init__(self, bot, event_types=None):
        self.bot = bot
        self.event_types = set(EventType(t) for t in event_types) if event_types else None

    def send(self, event):
        if self.event_types is not None and event.type not in self.event_types:
            return
        self.bot.send_message(format_event_text(event), parse_mode=None)
