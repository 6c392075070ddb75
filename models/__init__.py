"""Data models."""
from models.enums import (
    RuleKind, LifecycleStage, RuleStatus, SessionStage, SessionEndReason, EventType, TriggerKind,
)
from models.observation import Subject, IndicatorReading, Observation
from models.rules import (
    Rule, ChannelPrefs, Trigger, IndicatorState, ThresholdPayload, ConfirmationPayload,
    SessionParams, SessionPayload,
)
from models.events import AlertEvent, make_event
