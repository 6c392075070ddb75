"""Confirmation evaluator: N-of-M indicators inside an expiry window.

WATCHING -> CONFIRMED once enough indicators agree, or WATCHING -> EXPIRED
when the window closes first. One-shot: any stage other than WATCHING is a
no-op, so a confirmed rule never fires twice.
"""
from dataclasses import replace
from datetime import timedelta

from alerts.evaluation import Evaluation
from models.enums import EventType, LifecycleStage, RuleKind, RuleStatus
from models.errors import MalformedRuleError
from models.events import make_event
from utils.clock import to_iso


def merge_indicators(indicators, readings):
    """Overlay fresh readings onto stored indicator states by id."""
    merged = []
    for ind in indicators:
        reading = readings.get(ind.id)
        if reading is None:
            merged.append(ind)
        else:
            merged.append(replace(ind, triggered=reading.triggered, last_value=reading.value))
    return merged


def _detail(payload, indicators, triggered_count, rule, window_ends_at=None):
    return {
        "kind": "confirmation",
        "template": payload.template,
        "need": payload.need,
        "triggered_count": triggered_count,
        "indicators": [i.to_dict() for i in indicators],
        "expires_at": to_iso(rule.expires_at),
        "window_ends_at": to_iso(window_ends_at),
    }


def evaluate_confirmation(rule, observation, now):
    if rule.kind != RuleKind.CONFIRMATION:
        raise MalformedRuleError(f"Confirmation evaluator got a {rule.kind.value} rule", rule_id=rule.id)
    if not rule.enabled or rule.stage != LifecycleStage.WATCHING:
        return Evaluation.unchanged(rule)

    payload = rule.payload
    if payload.need < 1:
        raise MalformedRuleError(f"need must be >= 1, got {payload.need}", rule_id=rule.id)

    if rule.expires_at is not None and now >= rule.expires_at:
        updates = {
            "stage": LifecycleStage.EXPIRED,
            "status": RuleStatus.PAUSED,
            "enabled": False,
        }
        event = make_event(
            rule, EventType.EXPIRED, now, LifecycleStage.EXPIRED, RuleStatus.PAUSED,
            detail=_detail(payload, payload.indicators, payload.triggered_count, rule),
        )
        return Evaluation.transition(rule, updates, event)

    indicators = merge_indicators(payload.indicators, observation.indicators)
    triggered_count = sum(1 for i in indicators if i.triggered)

    if triggered_count >= payload.need:
        cooldown_until = now + timedelta(minutes=payload.cooldown_minutes)
        new_payload = replace(
            payload, indicators=indicators, triggered_count=triggered_count, last_triggered_at=now,
        )
        updates = {
            "stage": LifecycleStage.CONFIRMED,
            "status": RuleStatus.TRIGGERED,
            "cooldown_until": cooldown_until,
            "payload": new_payload,
        }
        event = make_event(
            rule, EventType.CONFIRMED, now, LifecycleStage.CONFIRMED, RuleStatus.TRIGGERED,
            detail=_detail(payload, indicators, triggered_count, rule),
        )
        return Evaluation.transition(rule, updates, event)

    if triggered_count != payload.triggered_count:
        new_payload = replace(
            payload,
            indicators=indicators,
            triggered_count=triggered_count,
            last_triggered_at=now if triggered_count > 0 else payload.last_triggered_at,
        )
        window_ends_at = None
        if payload.window_minutes:
            window_ends_at = now + timedelta(minutes=payload.window_minutes)
        event = make_event(
            rule, EventType.CONFIRMATION_PROGRESS, now, rule.stage, rule.status,
            detail=_detail(payload, indicators, triggered_count, rule, window_ends_at),
        )
        return Evaluation.transition(rule, {"payload": new_payload}, event)

    return Evaluation.unchanged(rule)
