"""Enums for rule kinds, lifecycle stages, statuses, and event types."""
from enum import Enum


class RuleKind(str, Enum):
    THRESHOLD = "threshold"
    CONFIRMATION = "confirmation"
    SESSION = "session"


class LifecycleStage(str, Enum):
    INITIAL = "INITIAL"
    WATCHING = "WATCHING"
    CONFIRMED = "CONFIRMED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class RuleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    TRIGGERED = "triggered"


class SessionStage(str, Enum):
    INITIAL = "INITIAL"
    AWAKENING = "AWAKENING"
    SUSTAINED = "SUSTAINED"
    SECOND_SURGE = "SECOND_SURGE"
    SESSION_ENDED = "SESSION_ENDED"


class SessionEndReason(str, Enum):
    TIMEOUT = "timeout"
    WINDOW_EXPIRED = "window_expired"
    COMPLETED = "completed"


class EventType(str, Enum):
    THRESHOLD_FIRED = "threshold_fired"
    THRESHOLD_RESET = "threshold_reset"
    CONFIRMATION_PROGRESS = "confirmation_progress"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    SESSION_STAGE = "session_stage"
    SESSION_ENDED = "session_ended"


class TriggerKind(str, Enum):
    VOLUME_SPIKE = "volume_spike"
    PRICE_MOVE = "price_move"
    # Absolute price targets
    PRICE_ABOVE = "price_above"
    PRICE_BELOW = "price_below"


def status_for(stage, enabled=True):
    """Project a lifecycle stage onto the coarser user-facing status."""
    if not enabled or stage in (LifecycleStage.EXPIRED, LifecycleStage.CANCELLED):
        return RuleStatus.PAUSED
    if stage == LifecycleStage.CONFIRMED:
        return RuleStatus.TRIGGERED
    return RuleStatus.ACTIVE
