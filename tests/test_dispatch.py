"""Tests for the dispatch hub, live stream and sink channels."""
import json
import pytest
import os
import tempfile

from conftest import T0, make_confirmation_rule, make_threshold_rule
from alerts.channels import FileChannel, TelegramChannel, format_event_body, format_event_title
from alerts.dispatch import DispatchHub
from models.enums import EventType, LifecycleStage, RuleStatus
from models.events import make_event
from models.rules import ChannelPrefs
from notifications.stream_hub import StreamHub


def _event(rule=None, event_type=EventType.THRESHOLD_FIRED, detail=None):
    rule = rule or make_threshold_rule()
    return make_event(rule, event_type, T0, LifecycleStage.WATCHING, RuleStatus.ACTIVE,
                      detail=detail or {"hits": ["PRICE_MOVE: 10.0% >= 5%"], "need": 1, "stage": 1})


class BrokenSink:
    def send(self, event):
        raise RuntimeError("disk full")


class RecordingPush:
    def __init__(self):
        self.sent = []

    def send(self, owner_id, event):
        self.sent.append((owner_id, event.event_id))
        return 1


def test_in_app_goes_to_owner_subscribers_only():
    stream = StreamHub()
    hub = DispatchHub(stream=stream)
    with stream.subscribe("owner-1") as mine, stream.subscribe("owner-2") as theirs:
        hub.notify("owner-1", _event())
        assert mine.get(timeout=1).type == EventType.THRESHOLD_FIRED
        assert theirs.get(timeout=0.01) is None
    assert stream.subscriber_count() == 0


def test_push_only_when_requested():
    push = RecordingPush()
    hub = DispatchHub(push=push)
    hub.notify("owner-1", _event(), ChannelPrefs(in_app=True, push=False))
    assert push.sent == []
    hub.notify("owner-1", _event(), ChannelPrefs(in_app=False, push=True))
    assert len(push.sent) == 1


def test_failures_are_swallowed():
    ok = []

    class GoodSink:
        def send(self, event):
            ok.append(event)

    hub = DispatchHub(sinks=[BrokenSink(), GoodSink()])
    assert hub.notify("owner-1", _event()) == 1
    assert len(ok) == 1


def test_sink_without_send_is_rejected():
    class NotASink:
        pass

    with pytest.raises(TypeError):
        DispatchHub(sinks=[NotASink()])


def test_full_queue_drops_without_blocking():
    stream = StreamHub(queue_size=1)
    sub = stream.subscribe("owner-1")
    assert stream.publish("owner-1", _event()) == 1
    assert stream.publish("owner-1", _event()) == 0
    assert len(sub.drain()) == 1
    sub.close()


def test_file_channel():
    with tempfile.NamedTemporaryFile(suffix=".jsonl", delete=False) as f:
        path = f.name
    try:
        FileChannel(path).send(_event())
        with open(path) as f:
            lines = f.readlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["type"] == "threshold_fired"
        assert entry["asset"] == "PEPE"
    finally:
        os.unlink(path)


def test_telegram_channel_filters_types():
    sent = []

    class FakeBot:
        def send_message(self, text, chat_id=None, parse_mode="Markdown"):
            sent.append(text)

    channel = TelegramChannel(FakeBot(), event_types=["confirmed"])
    channel.send(_event())
    assert sent == []
    rule = make_confirmation_rule()
    channel.send(_event(rule, EventType.CONFIRMED, {"need": 2, "triggered_count": 2, "indicators": []}))
    assert len(sent) == 1


def test_format_event_text():
    event = _event()
    assert format_event_title(event) == "Threshold hit: thr-1 (PEPE@1h)"
    assert "PRICE_MOVE" in format_event_body(event)

    conf = _event(make_confirmation_rule(), EventType.CONFIRMATION_PROGRESS, {
        "need": 2, "triggered_count": 1,
        "indicators": [{"id": "ema_cross", "label": "EMA 9/21 Cross", "triggered": True}],
    })
    assert format_event_body(conf) == "1/2 indicators triggered: EMA 9/21 Cross"
