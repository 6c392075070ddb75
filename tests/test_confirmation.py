"""Tests for the confirmation evaluator."""
import pytest
from datetime import timedelta

from conftest import T0, make_confirmation_rule, make_observation
from alerts.confirmation import evaluate_confirmation
from models.enums import EventType, LifecycleStage, RuleStatus
from models.errors import MalformedRuleError


def test_two_of_three_confirms():
    rule = make_confirmation_rule(need=2)
    obs = make_observation(indicators={"ema_cross": True, "rsi_momentum": True})
    result = evaluate_confirmation(rule, obs, T0 + timedelta(minutes=10))

    assert result.event.type == EventType.CONFIRMED
    assert result.rule.stage == LifecycleStage.CONFIRMED
    assert result.rule.status == RuleStatus.TRIGGERED
    assert result.rule.cooldown_until == T0 + timedelta(minutes=70)
    assert result.rule.payload.triggered_count == 2
    assert result.event.detail["triggered_count"] == 2


def test_progress_when_count_changes():
    rule = make_confirmation_rule(need=2)
    obs = make_observation(indicators={"ema_cross": True})
    result = evaluate_confirmation(rule, obs, T0)

    assert result.event.type == EventType.CONFIRMATION_PROGRESS
    assert result.rule.stage == LifecycleStage.WATCHING
    assert result.rule.payload.triggered_count == 1
    assert set(result.updates) == {"payload"}


def test_no_change_no_event():
    rule = make_confirmation_rule(need=2)
    result = evaluate_confirmation(rule, make_observation(), T0)
    assert result.event is None
    assert not result.changed


def test_expiry_wins_over_confirmation():
    rule = make_confirmation_rule(need=1, expires_at=T0 + timedelta(minutes=5))
    obs = make_observation(indicators={"ema_cross": True, "rsi_momentum": True})
    result = evaluate_confirmation(rule, obs, T0 + timedelta(minutes=5))

    assert result.event.type == EventType.EXPIRED
    assert result.rule.stage == LifecycleStage.EXPIRED
    assert result.rule.status == RuleStatus.PAUSED
    assert result.rule.enabled is False


def test_confirmed_rule_never_fires_again():
    rule = make_confirmation_rule(need=2)
    obs = make_observation(indicators={"ema_cross": True, "rsi_momentum": True})
    first = evaluate_confirmation(rule, obs, T0)
    second = evaluate_confirmation(first.rule, obs, T0 + timedelta(hours=2))
    assert first.event is not None
    assert second.event is None
    assert not second.changed


def test_readings_for_unknown_indicators_ignored():
    rule = make_confirmation_rule(need=1)
    result = evaluate_confirmation(rule, make_observation(indicators={"unrelated": True}), T0)
    assert result.event is None


def test_need_below_one_is_malformed():
    rule = make_confirmation_rule(need=0)
    with pytest.raises(MalformedRuleError):
        evaluate_confirmation(rule, make_observation(), T0)


def test_window_reported_in_progress():
    rule = make_confirmation_rule(need=3)
    rule.payload.window_minutes = 30
    result = evaluate_confirmation(rule, make_observation(indicators={"ema_cross": True}), T0)
    assert result.event.detail["window_ends_at"] == (T0 + timedelta(minutes=30)).isoformat(timespec="microseconds")


def test_input_rule_not_mutated():
    rule = make_confirmation_rule(need=2)
    before = rule.to_dict()
    evaluate_confirmation(rule, make_observation(indicators={"ema_cross": True, "retest": True}), T0)
    assert rule.to_dict() == before
