"""Tests for the threshold evaluator."""
import pytest
from datetime import timedelta

from conftest import T0, make_observation, make_threshold_rule
from alerts.threshold import evaluate_threshold, pct_change, check_triggers
from models.enums import EventType, LifecycleStage, RuleStatus, TriggerKind
from models.errors import MalformedRuleError
from models.rules import Trigger


def test_pct_change_zero_denominator():
    assert pct_change(0, 50) == pytest.approx(4900.0)
    assert pct_change(100, 150) == pytest.approx(50.0)


def test_cold_start_stores_snapshot_without_event():
    rule = make_threshold_rule()
    obs = make_observation(price=1.0)
    result = evaluate_threshold(rule, obs, T0)
    assert result.event is None
    assert result.updates["payload"].last_snapshot == obs
    assert "cooldown_until" not in result.updates


def test_fires_and_sets_cooldown():
    rule = make_threshold_rule(last_snapshot=make_observation(price=1.0))
    result = evaluate_threshold(rule, make_observation(price=1.1), T0)

    assert result.event is not None
    assert result.event.type == EventType.THRESHOLD_FIRED
    assert result.event.stage == LifecycleStage.WATCHING
    assert result.event.status == RuleStatus.ACTIVE
    assert result.updates["cooldown_until"] == T0 + timedelta(seconds=3600)
    assert result.rule.payload.stage == 1
    assert result.rule.payload.last_fired_at == T0
    assert result.rule.payload.last_snapshot.price == 1.1
    assert result.event.detail["stage"] == 1
    assert result.event.detail["hits"][0].startswith("PRICE_MOVE")


def test_price_move_is_absolute():
    rule = make_threshold_rule(last_snapshot=make_observation(price=1.0))
    result = evaluate_threshold(rule, make_observation(price=0.9), T0)
    assert result.event.type == EventType.THRESHOLD_FIRED


def test_volume_spike_from_zero_volume():
    triggers = [Trigger(kind=TriggerKind.VOLUME_SPIKE, min_pct=100)]
    rule = make_threshold_rule(triggers=triggers, last_snapshot=make_observation(volume=0))
    result = evaluate_threshold(rule, make_observation(volume=50), T0)
    assert result.event is not None


def test_need_not_met_only_updates_snapshot():
    triggers = [
        Trigger(kind=TriggerKind.PRICE_MOVE, min_pct=5),
        Trigger(kind=TriggerKind.VOLUME_SPIKE, min_pct=100),
    ]
    rule = make_threshold_rule(triggers=triggers, need=2,
                               last_snapshot=make_observation(price=1.0, volume=100))
    result = evaluate_threshold(rule, make_observation(price=1.2, volume=110), T0)
    assert result.event is None
    assert set(result.updates) == {"payload"}
    assert result.rule.payload.last_snapshot.price == 1.2
    assert result.rule.payload.stage == 0


def test_stage_past_max_resets():
    rule = make_threshold_rule(stage=3, stage_max=3, last_snapshot=make_observation(price=1.0))
    result = evaluate_threshold(rule, make_observation(price=2.0), T0)
    assert result.event.type == EventType.THRESHOLD_RESET
    assert result.rule.payload.stage == 0
    assert result.rule.cooldown_until == T0 + timedelta(seconds=3600)


def test_in_cooldown_is_noop():
    rule = make_threshold_rule(
        last_snapshot=make_observation(price=1.0),
        cooldown_until=T0 + timedelta(minutes=5),
    )
    result = evaluate_threshold(rule, make_observation(price=5.0), T0)
    assert not result.changed
    assert result.event is None
    assert result.rule is rule


def test_disabled_is_noop():
    rule = make_threshold_rule(enabled=False, last_snapshot=make_observation(price=1.0))
    result = evaluate_threshold(rule, make_observation(price=5.0), T0)
    assert not result.changed


def test_price_above_and_below():
    prev = make_observation(price=1.0)
    above = Trigger(kind=TriggerKind.PRICE_ABOVE, target_price=1.5)
    below = Trigger(kind=TriggerKind.PRICE_BELOW, target_price=0.5)
    assert check_triggers([above, below], prev, make_observation(price=1.6)) == ["PRICE_ABOVE: 1.6 >= 1.5"]
    assert len(check_triggers([above, below], prev, make_observation(price=0.4))) == 1
    assert check_triggers([above, below], prev, make_observation(price=1.0)) == []


def test_wrong_kind_rejected(session_rule):
    with pytest.raises(MalformedRuleError):
        evaluate_threshold(session_rule, make_observation(), T0)


def test_event_id_is_deterministic():
    rule = make_threshold_rule(last_snapshot=make_observation(price=1.0))
    a = evaluate_threshold(rule, make_observation(price=1.1), T0)
    b = evaluate_threshold(rule, make_observation(price=1.1), T0)
    assert a.event.event_id == b.event.event_id
    assert a.updates == b.updates


def test_cancelled_rule_does_not_fire():
    rule = make_threshold_rule(last_snapshot=make_observation(price=1.0))
    rule = rule.apply({"stage": LifecycleStage.CANCELLED, "status": RuleStatus.PAUSED})
    result = evaluate_threshold(rule, make_observation(price=2.0), T0)
    assert not result.changed
    assert result.event is None
