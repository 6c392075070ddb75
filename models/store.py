"""Storage contracts the scheduler and pipeline depend on."""
from typing import ContextManager, Optional, Protocol, runtime_checkable

from models.enums import LifecycleStage, RuleStatus, status_for
from models.rules import ChannelPrefs, Rule
from utils.clock import to_iso

# Fields the engine and user operations may change through update_rule.
MUTABLE_FIELDS = {
    "name", "enabled", "stage", "status", "payload", "cooldown_until", "expires_at",
    "last_evaluated_at", "channels", "note", "subject", "owner_id",
}


@runtime_checkable
class RuleStore(Protocol):
    def get_rule(self, rule_id) -> Optional[Rule]: ...

    def update_rule(self, rule_id, fields) -> Rule: ...

    def due_rule_ids(self, now, limit, exclude=()) -> list: ...

    def mark_attempted(self, rule_id, now) -> None: ...

    def raw_updated_at(self, rule_id) -> Optional[str]: ...

    def transaction(self) -> ContextManager: ...


@runtime_checkable
class EventLog(Protocol):
    def append_event(self, event) -> bool: ...

    def query_events_after(self, since, limit=100, inclusive=False) -> list: ...

    def delete_events_older_than(self, days, now=None) -> int: ...


@runtime_checkable
class WatermarkStore(Protocol):
    def get_watermark(self, name): ...

    def set_watermark(self, name, value) -> None: ...


def serialize_updates(fields):
    """Convert Rule-attribute updates into storage column values."""
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update immutable or unknown fields: {sorted(unknown)}")
    columns = {}
    for key, value in fields.items():
        if key == "payload":
            columns["payload"] = value.to_dict()
        elif key == "channels":
            prefs = value or ChannelPrefs()
            columns["channel_in_app"] = bool(prefs.in_app)
            columns["channel_push"] = bool(prefs.push)
        elif key == "subject":
            columns["asset"] = value.asset
            columns["timeframe"] = value.timeframe
        elif key in ("stage", "status"):
            columns[key] = value.value if hasattr(value, "value") else str(value)
        elif key in ("cooldown_until", "expires_at", "last_evaluated_at"):
            columns[key] = to_iso(value)
        elif key == "enabled":
            columns[key] = bool(value)
        else:
            columns[key] = value
    return columns


def enable_updates(rule, enabled):
    """Fields written when a user enables or disables a rule."""
    return {"enabled": bool(enabled), "status": status_for(rule.stage, enabled)}


CANCEL_UPDATES = {
    "stage": LifecycleStage.CANCELLED,
    "status": RuleStatus.PAUSED,
    "enabled": False,
}


def is_due(row, now_iso):
    """Row-level due filter shared by the in-memory store and tests."""
    if not row.get("enabled"):
        return False
    if row.get("stage") == LifecycleStage.CANCELLED.value:
        return False
    cooldown = row.get("cooldown_until")
    if cooldown is not None and cooldown > now_iso:
        return False
    if row.get("kind") == "confirmation" and row.get("stage") != LifecycleStage.WATCHING.value:
        return False
    return True


def last_touched(row):
    """The later of the last commit and the last failed attempt, or None."""
    stamps = [s for s in (row.get("last_evaluated_at"), row.get("last_attempted_at")) if s]
    return max(stamps) if stamps else None

