"""Shared test fixtures."""
import os
import sys
import pytest
import tempfile

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime, timedelta, timezone

from models.database import Database
from models.memory_store import MemoryStore
from models.enums import RuleKind, TriggerKind
from models.observation import IndicatorReading, Observation, Subject
from models.rules import (
    ConfirmationPayload, Rule, SessionParams, SessionPayload, ThresholdPayload, Trigger,
)
from alerts.templates import indicators_for
from utils.clock import FakeClock

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    db = Database(db_path)
    db.connect()
    yield db
    db.close()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest.fixture
def fake_clock():
    return FakeClock(T0)


@pytest.fixture
def memory_store(fake_clock):
    return MemoryStore(clock=fake_clock)


def make_observation(price=1.0, volume=100.0, trades=10, holder_delta_6h=0, holder_delta_30m=0,
                     indicators=None, timestamp=T0):
    readings = {}
    for key, val in (indicators or {}).items():
        readings[key] = val if isinstance(val, IndicatorReading) else IndicatorReading(triggered=bool(val))
    return Observation(
        timestamp=timestamp,
        price=price,
        volume=volume,
        trades=trades,
        holder_delta_6h=holder_delta_6h,
        holder_delta_30m=holder_delta_30m,
        indicators=readings,
    )


def make_threshold_rule(rule_id="thr-1", triggers=None, need=1, cooldown_seconds=3600,
                        stage_max=3, stage=0, last_snapshot=None, **kwargs):
    triggers = triggers or [Trigger(kind=TriggerKind.PRICE_MOVE, min_pct=5)]
    payload = ThresholdPayload(
        triggers=triggers, need=need, cooldown_seconds=cooldown_seconds,
        stage_max=stage_max, stage=stage, last_snapshot=last_snapshot,
    )
    return _rule(rule_id, RuleKind.THRESHOLD, payload, **kwargs)


def make_confirmation_rule(rule_id="conf-1", template="TREND_MOMENTUM_STRUCTURE", need=2,
                           expiry_minutes=240, cooldown_minutes=60, indicators=None,
                           expires_at=None, **kwargs):
    payload = ConfirmationPayload(
        template=template,
        need=need,
        expiry_minutes=expiry_minutes,
        cooldown_minutes=cooldown_minutes,
        indicators=indicators if indicators is not None else indicators_for(template),
    )
    if expires_at is None:
        expires_at = kwargs.get("created_at", T0) + timedelta(minutes=expiry_minutes)
    return _rule(rule_id, RuleKind.CONFIRMATION, payload, expires_at=expires_at, **kwargs)


# Awakening multipliers of 1 let a market be dead and awakening at the same time.
AWAKE_PARAMS = dict(
    dead_vol=100, dead_trades=5, dead_holder_delta_6h=0,
    awake_vol_mult=1, awake_trades_mult=1, awake_holder_delta_30m=5,
    stage2_window_min=30, cooldown_min=15, stage3_window_h=6,
    stage3_vol_mult=2, stage3_trades_mult=1.5, stage3_holder_delta=10,
)


def make_session_rule(rule_id="sess-1", params=None, **kwargs):
    payload = SessionPayload(params=SessionParams(**(params or AWAKE_PARAMS)))
    return _rule(rule_id, RuleKind.SESSION, payload, **kwargs)


def _rule(rule_id, kind, payload, **kwargs):
    defaults = dict(
        id=rule_id,
        kind=kind,
        subject=Subject("PEPE", "1h"),
        owner_id="owner-1",
        name=rule_id,
        created_at=T0,
        updated_at=T0,
        payload=payload,
    )
    defaults.update(kwargs)
    return Rule(**defaults)


@pytest.fixture
def threshold_rule():
    return make_threshold_rule()


@pytest.fixture
def confirmation_rule():
    return make_confirmation_rule()


@pytest.fixture
def session_rule():
    return make_session_rule()
