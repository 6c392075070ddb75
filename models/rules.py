"""Dataclasses for watch rules and their kind-specific payloads."""
import json
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Optional, Union

from models.enums import LifecycleStage, RuleKind, RuleStatus, SessionStage, SessionEndReason, TriggerKind
from models.errors import MalformedRuleError
from models.observation import Observation, Subject
from utils.clock import from_iso, to_iso


@dataclass
class Trigger:
    kind: TriggerKind = TriggerKind.PRICE_MOVE
    min_pct: Optional[float] = None
    target_price: Optional[float] = None
    window_minutes: Optional[int] = None

    def to_dict(self):
        return {
            "kind": self.kind.value,
            "min_pct": self.min_pct,
            "target_price": self.target_price,
            "window_minutes": self.window_minutes,
        }

    @classmethod
    def from_dict(cls, d):
        return cls(
            kind=TriggerKind(d["kind"]),
            min_pct=_opt_float(d.get("min_pct")),
            target_price=_opt_float(d.get("target_price")),
            window_minutes=d.get("window_minutes"),
        )


@dataclass
class IndicatorState:
    id: str = ""
    label: str = ""
    category: str = ""
    params: str = ""
    triggered: bool = False
    last_value: Optional[str] = None

    def to_dict(self):
        return {
            "id": self.id,
            "label": self.label,
            "category": self.category,
            "params": self.params,
            "triggered": self.triggered,
            "last_value": self.last_value,
        }

    @classmethod
    def from_dict(cls, d):
        return cls(
            id=d["id"],
            label=d.get("label", d["id"]),
            category=d.get("category", ""),
            params=d.get("params", ""),
            triggered=bool(d.get("triggered", False)),
            last_value=d.get("last_value"),
        )


@dataclass
class ThresholdPayload:
    triggers: list = field(default_factory=list)
    need: int = 1
    cooldown_seconds: int = 3600
    stage_max: int = 3
    stage: int = 0
    last_snapshot: Optional[Observation] = None
    last_fired_at: Optional[datetime] = None

    def to_dict(self):
        return {
            "triggers": [t.to_dict() for t in self.triggers],
            "need": self.need,
            "cooldown_seconds": self.cooldown_seconds,
            "stage_max": self.stage_max,
            "stage": self.stage,
            "last_snapshot": self.last_snapshot.to_dict() if self.last_snapshot else None,
            "last_fired_at": to_iso(self.last_fired_at),
        }

    @classmethod
    def from_dict(cls, d):
        snap = d.get("last_snapshot")
        return cls(
            triggers=[Trigger.from_dict(t) for t in d.get("triggers", [])],
            need=int(d.get("need") or 1),
            cooldown_seconds=int(d.get("cooldown_seconds", 3600)),
            stage_max=int(d.get("stage_max", 3)),
            stage=int(d.get("stage", 0)),
            last_snapshot=Observation.from_dict(snap) if snap else None,
            last_fired_at=from_iso(d.get("last_fired_at")),
        )


@dataclass
class ConfirmationPayload:
    template: str = ""
    need: int = 2
    expiry_minutes: int = 240
    cooldown_minutes: int = 60
    window_minutes: Optional[int] = None
    indicators: list = field(default_factory=list)
    triggered_count: int = 0
    last_triggered_at: Optional[datetime] = None

    def to_dict(self):
        return {
            "template": self.template,
            "need": self.need,
            "expiry_minutes": self.expiry_minutes,
            "cooldown_minutes": self.cooldown_minutes,
            "window_minutes": self.window_minutes,
            "indicators": [i.to_dict() for i in self.indicators],
            "triggered_count": self.triggered_count,
            "last_triggered_at": to_iso(self.last_triggered_at),
        }

    @classmethod
    def from_dict(cls, d):
        return cls(
            template=d.get("template", ""),
            need=int(d["need"]),
            expiry_minutes=int(d.get("expiry_minutes", 240)),
            cooldown_minutes=int(d.get("cooldown_minutes", 60)),
            window_minutes=d.get("window_minutes"),
            indicators=[IndicatorState.from_dict(i) for i in d.get("indicators", [])],
            triggered_count=int(d.get("triggered_count", 0)),
            last_triggered_at=from_iso(d.get("last_triggered_at")),
        )


@dataclass
class SessionParams:
    dead_vol: float = 100
    dead_trades: float = 5
    dead_holder_delta_6h: float = 0
    awake_vol_mult: float = 3
    awake_trades_mult: float = 2
    awake_holder_delta_30m: float = 5
    stage2_window_min: float = 30
    cooldown_min: float = 15
    stage3_window_h: float = 6
    stage3_vol_mult: float = 2
    stage3_trades_mult: float = 1.5
    stage3_holder_delta: float = 10

    def to_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, d):
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ValueError(f"Unknown session params: {sorted(unknown)}")
        return cls(**{k: float(v) for k, v in d.items()})


@dataclass
class SessionPayload:
    params: SessionParams = field(default_factory=SessionParams)
    session_stage: SessionStage = SessionStage.INITIAL
    session_start: Optional[datetime] = None
    session_ends_at: Optional[datetime] = None
    window_ends_at: Optional[datetime] = None
    end_reason: Optional[SessionEndReason] = None

    def to_dict(self):
        return {
            "params": self.params.to_dict(),
            "session_stage": self.session_stage.value,
            "session_start": to_iso(self.session_start),
            "session_ends_at": to_iso(self.session_ends_at),
            "window_ends_at": to_iso(self.window_ends_at),
            "end_reason": self.end_reason.value if self.end_reason else None,
        }

    @classmethod
    def from_dict(cls, d):
        reason = d.get("end_reason")
        return cls(
            params=SessionParams.from_dict(d.get("params") or {}),
            session_stage=SessionStage(d.get("session_stage", "INITIAL")),
            session_start=from_iso(d.get("session_start")),
            session_ends_at=from_iso(d.get("session_ends_at")),
            window_ends_at=from_iso(d.get("window_ends_at")),
            end_reason=SessionEndReason(reason) if reason else None,
        )


RulePayload = Union[ThresholdPayload, ConfirmationPayload, SessionPayload]

PAYLOAD_TYPES = {
    RuleKind.THRESHOLD: ThresholdPayload,
    RuleKind.CONFIRMATION: ConfirmationPayload,
    RuleKind.SESSION: SessionPayload,
}


def parse_payload(kind, data, rule_id=None):
    """Decode a stored payload into the variant that matches the rule kind."""
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise MalformedRuleError(f"Payload is not valid JSON: {e}", rule_id=rule_id)
    if not isinstance(data, dict):
        raise MalformedRuleError("Payload must be an object", rule_id=rule_id)
    try:
        payload_cls = PAYLOAD_TYPES[RuleKind(kind)]
    except (KeyError, ValueError):
        raise MalformedRuleError(f"Unknown rule kind: {kind}", rule_id=rule_id)
    try:
        return payload_cls.from_dict(data)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise MalformedRuleError(f"Malformed {kind} payload: {e}", rule_id=rule_id)


@dataclass
class ChannelPrefs:
    in_app: bool = True
    push: bool = False


@dataclass
class Rule:
    id: str = ""
    kind: RuleKind = RuleKind.THRESHOLD
    subject: Subject = field(default_factory=lambda: Subject(""))
    owner_id: str = ""
    name: str = ""
    enabled: bool = True
    stage: LifecycleStage = LifecycleStage.WATCHING
    status: RuleStatus = RuleStatus.ACTIVE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None
    payload: RulePayload = field(default_factory=ThresholdPayload)
    cooldown_until: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    last_evaluated_at: Optional[datetime] = None
    revision: int = 0
    channels: ChannelPrefs = field(default_factory=ChannelPrefs)
    note: str = ""

    def in_cooldown(self, now):
        return self.cooldown_until is not None and self.cooldown_until > now

    def apply(self, updates):
        """Return a copy with the given field updates merged in."""
        return replace(self, **updates)

    def to_dict(self):
        """Flatten into a dict matching the storage row layout."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "asset": self.subject.asset,
            "timeframe": self.subject.timeframe,
            "owner_id": self.owner_id,
            "name": self.name,
            "enabled": self.enabled,
            "stage": self.stage.value,
            "status": self.status.value,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "payload": self.payload.to_dict(),
            "cooldown_until": to_iso(self.cooldown_until),
            "expires_at": to_iso(self.expires_at),
            "last_evaluated_at": to_iso(self.last_evaluated_at),
            "revision": self.revision,
            "channel_in_app": self.channels.in_app,
            "channel_push": self.channels.push,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, d):
        """Reconstruct from a flat dict (e.g., DB row)."""
        rule_id = d.get("id", "")
        try:
            kind = RuleKind(d["kind"])
            stage = LifecycleStage(d.get("stage", "WATCHING"))
            status = RuleStatus(d.get("status", "active"))
        except (KeyError, ValueError) as e:
            raise MalformedRuleError(f"Bad rule row: {e}", rule_id=rule_id)
        return cls(
            id=rule_id,
            kind=kind,
            subject=Subject(d.get("asset", ""), d.get("timeframe", "1h")),
            owner_id=d.get("owner_id") or "",
            name=d.get("name") or rule_id,
            enabled=bool(d.get("enabled", True)),
            stage=stage,
            status=status,
            created_at=from_iso(d.get("created_at")) or datetime.now(timezone.utc),
            updated_at=from_iso(d.get("updated_at")),
            payload=parse_payload(kind, d.get("payload") or {}, rule_id=rule_id),
            cooldown_until=from_iso(d.get("cooldown_until")),
            expires_at=from_iso(d.get("expires_at")),
            last_evaluated_at=from_iso(d.get("last_evaluated_at")),
            revision=int(d.get("revision") or 0),
            channels=ChannelPrefs(
                in_app=bool(d.get("channel_in_app", True)),
                push=bool(d.get("channel_push", False)),
            ),
            note=d.get("note") or "",
        )


def _opt_float(value):
    return None if value is None else float(value)
