"""Tests for kind dispatch and the pure-function contract."""
import pytest

from conftest import T0, make_confirmation_rule, make_observation, make_session_rule, make_threshold_rule
from alerts.evaluator import EVALUATORS, evaluate, indicator_ids
from models.enums import RuleKind


def test_every_kind_has_an_evaluator():
    assert set(EVALUATORS) == set(RuleKind)


@pytest.mark.parametrize("factory", [make_threshold_rule, make_confirmation_rule, make_session_rule])
def test_evaluate_is_pure(factory):
    rule = factory()
    obs = make_observation(volume=100, trades=5, indicators={"ema_cross": True, "rsi_momentum": True})
    before = rule.to_dict()
    first = evaluate(rule, obs, T0)
    second = evaluate(rule, obs, T0)
    assert rule.to_dict() == before
    assert first.updates == second.updates
    assert (first.event is None) == (second.event is None)
    if first.event:
        assert first.event.event_id == second.event.event_id


def test_indicator_ids():
    assert indicator_ids(make_confirmation_rule()) == ("ema_cross", "rsi_momentum", "structure_hh")
    assert indicator_ids(make_threshold_rule()) == ()


@pytest.mark.parametrize("stage,enabled,expected", [
    ("WATCHING", True, "active"),
    ("WATCHING", False, "paused"),
    ("CONFIRMED", True, "triggered"),
    ("CONFIRMED", False, "paused"),
    ("EXPIRED", True, "paused"),
    ("CANCELLED", True, "paused"),
])
def test_status_projection(stage, enabled, expected):
    from models.enums import LifecycleStage, status_for
    assert status_for(LifecycleStage(stage), enabled).value == expected
