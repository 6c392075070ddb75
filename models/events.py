"""Emitted alert events: append-only, keyed by event_id."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from models.enums import EventType, LifecycleStage, RuleKind, RuleStatus
from models.observation import Subject
from utils.clock import from_iso, to_iso

EVENT_NAMESPACE = uuid.UUID("5d1b7c1e-8f0a-4c59-9a43-6a2f0e4f7b21")


@dataclass
class AlertEvent:
    event_id: str = ""
    type: EventType = EventType.THRESHOLD_FIRED
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    rule_id: str = ""
    rule_kind: RuleKind = RuleKind.THRESHOLD
    owner_id: str = ""
    subject: Subject = field(default_factory=lambda: Subject(""))
    stage: LifecycleStage = LifecycleStage.WATCHING
    status: RuleStatus = RuleStatus.ACTIVE
    detail: dict = field(default_factory=dict)
    rule_name: Optional[str] = None

    def to_dict(self):
        return {
            "event_id": self.event_id,
            "type": self.type.value,
            "occurred_at": to_iso(self.occurred_at),
            "rule_id": self.rule_id,
            "rule_kind": self.rule_kind.value,
            "rule_name": self.rule_name,
            "owner_id": self.owner_id,
            "asset": self.subject.asset,
            "timeframe": self.subject.timeframe,
            "stage": self.stage.value,
            "status": self.status.value,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, d):
        return cls(
            event_id=d["event_id"],
            type=EventType(d["type"]),
            occurred_at=from_iso(d["occurred_at"]),
            rule_id=d.get("rule_id", ""),
            rule_kind=RuleKind(d.get("rule_kind", "threshold")),
            rule_name=d.get("rule_name"),
            owner_id=d.get("owner_id", ""),
            subject=Subject(d.get("asset", ""), d.get("timeframe", "1h")),
            stage=LifecycleStage(d.get("stage", "WATCHING")),
            status=RuleStatus(d.get("status", "active")),
            detail=d.get("detail") or {},
        )


def event_id_for(rule_id, revision, event_type, occurred_at):
    """Deterministic id for one transition of one rule revision."""
    key = f"{rule_id}|{revision}|{EventType(event_type).value}|{to_iso(occurred_at)}"
    return str(uuid.uuid5(EVENT_NAMESPACE, key))


def make_event(rule, event_type, now, stage, status, detail=None):
    """Build the event for a transition of ``rule`` as it stood before the tick."""
    return AlertEvent(
        event_id=event_id_for(rule.id, rule.revision, event_type, now),
        type=EventType(event_type),
        occurred_at=now,
        rule_id=rule.id,
        rule_kind=rule.kind,
        rule_name=rule.name,
        owner_id=rule.owner_id,
        subject=rule.subject,
        stage=LifecycleStage(stage),
        status=RuleStatus(status),
        detail=detail or {},
    )
