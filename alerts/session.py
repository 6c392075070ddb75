"""Session evaluator: the multi-stage "dead token awakening" watch.

Stages: INITIAL -> AWAKENING -> SUSTAINED -> SECOND_SURGE -> SESSION_ENDED,
and SESSION_ENDED -> INITIAL once the post-session cooldown has elapsed.

- A session opens only on a market that currently looks dead.
- Each open stage has its own window; missing it ends the session.
- A session never outlives SESSION_MAX_HOURS from its first awakening.
- SECOND_SURGE is a one-tick signal: the next tick completes the session.
"""
from dataclasses import replace
from datetime import timedelta

from alerts.evaluation import Evaluation
from models.enums import (
    EventType, LifecycleStage, RuleKind, RuleStatus, SessionEndReason, SessionStage,
)
from models.errors import MalformedRuleError
from models.events import make_event
from models.rules import SessionPayload
from utils.clock import to_iso

SESSION_MAX_HOURS = 12


def is_dead(observation, params):
    """Volume, trades and 6h holder growth all at or below the dead-market floor."""
    return (
        observation.volume <= params.dead_vol
        and observation.trades <= params.dead_trades
        and observation.holder_delta_6h <= params.dead_holder_delta_6h
    )


def count_conditions(observation, base_volume, base_trades, vol_mult, trades_mult, holder_delta):
    count = 0
    if observation.volume >= base_volume * vol_mult:
        count += 1
    if observation.trades >= base_trades * trades_mult:
        count += 1
    if observation.holder_delta_30m >= holder_delta:
        count += 1
    return count


def awakening_count(observation, params):
    return count_conditions(
        observation, params.dead_vol, params.dead_trades,
        params.awake_vol_mult, params.awake_trades_mult, params.awake_holder_delta_30m,
    )


def second_surge_count(observation, params):
    return count_conditions(
        observation, params.dead_vol, params.dead_trades,
        params.stage3_vol_mult, params.stage3_trades_mult, params.stage3_holder_delta,
    )


def _detail(payload, conditions_met=None):
    return {
        "kind": "session",
        "session_stage": payload.session_stage.value,
        "session_start": to_iso(payload.session_start),
        "session_ends_at": to_iso(payload.session_ends_at),
        "window_ends_at": to_iso(payload.window_ends_at),
        "end_reason": payload.end_reason.value if payload.end_reason else None,
        "conditions_met": conditions_met,
    }


def _advance(rule, now, payload, stage, status, conditions_met):
    updates = {"payload": payload, "stage": stage, "status": status}
    event = make_event(
        rule, EventType.SESSION_STAGE, now, stage, status,
        detail=_detail(payload, conditions_met),
    )
    return Evaluation.transition(rule, updates, event)


def end_session(rule, now, reason):
    payload = rule.payload
    completed = reason == SessionEndReason.COMPLETED
    stage = LifecycleStage.CONFIRMED if completed else LifecycleStage.EXPIRED
    status = RuleStatus.TRIGGERED if completed else RuleStatus.PAUSED
    new_payload = replace(
        payload,
        session_stage=SessionStage.SESSION_ENDED,
        window_ends_at=None,
        end_reason=SessionEndReason(reason),
    )
    updates = {
        "payload": new_payload,
        "stage": stage,
        "status": status,
        "cooldown_until": now + timedelta(minutes=payload.params.cooldown_min),
    }
    event = make_event(
        rule, EventType.SESSION_ENDED, now, stage, status, detail=_detail(new_payload),
    )
    return Evaluation.transition(rule, updates, event)


def reset_session(rule):
    """Silent re-arm after the post-session cooldown."""
    updates = {
        "payload": SessionPayload(params=rule.payload.params),
        "stage": LifecycleStage.WATCHING,
        "status": RuleStatus.ACTIVE,
        "cooldown_until": None,
    }
    return Evaluation.transition(rule, updates)


def _evaluate_initial(rule, observation, now):
    params = rule.payload.params
    if not is_dead(observation, params):
        return Evaluation.unchanged(rule)
    met = awakening_count(observation, params)
    if met < 2:
        return Evaluation.unchanged(rule)
    payload = replace(
        rule.payload,
        session_stage=SessionStage.AWAKENING,
        session_start=now,
        session_ends_at=now + timedelta(hours=SESSION_MAX_HOURS),
        window_ends_at=now + timedelta(minutes=params.stage2_window_min),
        end_reason=None,
    )
    return _advance(rule, now, payload, LifecycleStage.WATCHING, RuleStatus.ACTIVE, met)


def _window_expired(payload, now):
    return payload.window_ends_at is not None and payload.window_ends_at <= now


def _evaluate_awakening(rule, observation, now):
    payload = rule.payload
    if _window_expired(payload, now):
        return end_session(rule, now, SessionEndReason.WINDOW_EXPIRED)
    met = awakening_count(observation, payload.params)
    if met < 2:
        return Evaluation.unchanged(rule)
    new_payload = replace(
        payload,
        session_stage=SessionStage.SUSTAINED,
        window_ends_at=now + timedelta(hours=payload.params.stage3_window_h),
    )
    return _advance(rule, now, new_payload, LifecycleStage.WATCHING, RuleStatus.ACTIVE, met)


def _evaluate_sustained(rule, observation, now):
    payload = rule.payload
    if _window_expired(payload, now):
        return end_session(rule, now, SessionEndReason.WINDOW_EXPIRED)
    met = second_surge_count(observation, payload.params)
    if met < 2:
        return Evaluation.unchanged(rule)
    new_payload = replace(payload, session_stage=SessionStage.SECOND_SURGE, window_ends_at=None)
    return _advance(rule, now, new_payload, LifecycleStage.CONFIRMED, RuleStatus.TRIGGERED, met)


def _evaluate_second_surge(rule, observation, now):
    return end_session(rule, now, SessionEndReason.COMPLETED)


STAGE_HANDLERS = {
    SessionStage.INITIAL: _evaluate_initial,
    SessionStage.AWAKENING: _evaluate_awakening,
    SessionStage.SUSTAINED: _evaluate_sustained,
    SessionStage.SECOND_SURGE: _evaluate_second_surge,
}


def evaluate_session(rule, observation, now):
    if rule.kind != RuleKind.SESSION:
        raise MalformedRuleError(f"Session evaluator got a {rule.kind.value} rule", rule_id=rule.id)
    # Cancelled is terminal; only an ended session may go back to INITIAL.
    if not rule.enabled or rule.stage == LifecycleStage.CANCELLED or rule.in_cooldown(now):
        return Evaluation.unchanged(rule)

    payload = rule.payload
    if payload.session_stage == SessionStage.SESSION_ENDED:
        if rule.cooldown_until is None:
            cooldown_until = now + timedelta(minutes=payload.params.cooldown_min)
            return Evaluation.transition(rule, {"cooldown_until": cooldown_until})
        return reset_session(rule)

    # A surge is a one-tick signal and completes even past the session cap.
    if (payload.session_stage != SessionStage.SECOND_SURGE
            and payload.session_ends_at is not None and payload.session_ends_at <= now):
        return end_session(rule, now, SessionEndReason.TIMEOUT)

    return STAGE_HANDLERS[payload.session_stage](rule, observation, now)
