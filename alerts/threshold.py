"""Threshold evaluator: N configured triggers over consecutive snapshots."""
from dataclasses import replace
from datetime import timedelta

from alerts.evaluation import Evaluation
from models.enums import EventType, LifecycleStage, RuleKind, TriggerKind
from models.errors import MalformedRuleError
from models.events import make_event
from utils.clock import to_iso


def pct_change(prev, curr):
    """Percent change with a zero denominator replaced by 1."""
    base = prev if prev != 0 else 1
    return (curr - base) / base * 100


def _volume_spike(trigger, prev, curr):
    pct = pct_change(prev.volume, curr.volume)
    if trigger.min_pct is not None and pct >= trigger.min_pct:
        return f"VOLUME_SPIKE: {pct:.1f}% >= {trigger.min_pct}%"
    return None


def _price_move(trigger, prev, curr):
    pct = abs(pct_change(prev.price, curr.price))
    if trigger.min_pct is not None and pct >= trigger.min_pct:
        return f"PRICE_MOVE: {pct:.1f}% >= {trigger.min_pct}%"
    return None


def _price_above(trigger, prev, curr):
    if trigger.target_price is not None and curr.price >= trigger.target_price:
        return f"PRICE_ABOVE: {curr.price} >= {trigger.target_price}"
    return None


def _price_below(trigger, prev, curr):
    if trigger.target_price is not None and curr.price <= trigger.target_price:
        return f"PRICE_BELOW: {curr.price} <= {trigger.target_price}"
    return None


TRIGGER_CHECKS = {
    TriggerKind.VOLUME_SPIKE: _volume_spike,
    TriggerKind.PRICE_MOVE: _price_move,
    TriggerKind.PRICE_ABOVE: _price_above,
    TriggerKind.PRICE_BELOW: _price_below,
}


def check_triggers(triggers, prev, curr):
    """Return a description for every trigger that fired."""
    hits = []
    for trigger in triggers:
        check = TRIGGER_CHECKS.get(trigger.kind)
        if check is None:
            raise MalformedRuleError(f"Unsupported trigger kind: {trigger.kind}")
        hit = check(trigger, prev, curr)
        if hit:
            hits.append(hit)
    return hits


def evaluate_threshold(rule, observation, now):
    if rule.kind != RuleKind.THRESHOLD:
        raise MalformedRuleError(f"Threshold evaluator got a {rule.kind.value} rule", rule_id=rule.id)
    if not rule.enabled or rule.stage == LifecycleStage.CANCELLED or rule.in_cooldown(now):
        return Evaluation.unchanged(rule)

    payload = rule.payload
    prev = payload.last_snapshot

    if prev is None:
        return Evaluation.transition(rule, {"payload": replace(payload, last_snapshot=observation)})

    try:
        hits = check_triggers(payload.triggers, prev, observation)
    except MalformedRuleError as e:
        e.rule_id = rule.id
        raise

    need = payload.need or 1
    if len(hits) < need:
        return Evaluation.transition(rule, {"payload": replace(payload, last_snapshot=observation)})

    stage = payload.stage + 1
    event_type = EventType.THRESHOLD_FIRED
    if stage > payload.stage_max:
        event_type = EventType.THRESHOLD_RESET
        stage = 0

    cooldown_until = now + timedelta(seconds=payload.cooldown_seconds)
    new_payload = replace(payload, stage=stage, last_snapshot=observation, last_fired_at=now)
    updates = {"payload": new_payload, "cooldown_until": cooldown_until}

    event = make_event(
        rule, event_type, now, rule.stage, rule.status,
        detail={
            "kind": "threshold",
            "hits": hits,
            "need": need,
            "stage": stage,
            "stage_max": payload.stage_max,
            "previous": {"price": prev.price, "volume": prev.volume},
            "current": {"price": observation.price, "volume": observation.volume},
            "cooldown_until": to_iso(cooldown_until),
        },
    )
    return Evaluation.transition(rule, updates, event)
