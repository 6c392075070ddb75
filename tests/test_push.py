"""Tests for Telegram bot and push delivery."""
import pytest
import requests
from unittest.mock import patch, MagicMock

from conftest import T0, make_threshold_rule
from models.enums import EventType
from models.events import make_event
from notifications.push import PushSender


def _event():
    rule = make_threshold_rule()
    return make_event(rule, EventType.THRESHOLD_FIRED, T0, rule.stage, rule.status,
                      detail={"hits": ["PRICE_MOVE: 9.0% >= 5%"], "need": 1, "stage": 1})


def _http_error(status):
    resp = MagicMock(status_code=status)
    return requests.HTTPError(f"{status} error", response=resp)


# ── TelegramBot tests ────────────────────────────────

def test_send_message():
    """send_message makes correct HTTP POST."""
    with patch("requests.post") as mock_post:
        mock_post.return_value = MagicMock(
            status_code=200,
            json=MagicMock(return_value={"ok": True, "result": {}}),
        )
        mock_post.return_value.raise_for_status = MagicMock()

        from notifications.telegram_bot import TelegramBot
        bot = TelegramBot("fake_token", "123456")
        result = bot.send_message("hello")

        assert result["ok"]
        payload = mock_post.call_args.kwargs.get("json") or mock_post.call_args[1].get("json")
        assert payload["chat_id"] == "123456"
        assert payload["text"] == "hello"
        assert payload["parse_mode"] == "Markdown"


def test_send_message_needs_a_chat():
    from notifications.telegram_bot import TelegramBot
    with pytest.raises(ValueError):
        TelegramBot("token").send_message("hi")


def test_send_message_raises_http_error():
    with patch("requests.post") as mock_post:
        mock_post.return_value = MagicMock(status_code=403)
        mock_post.return_value.raise_for_status = MagicMock(side_effect=_http_error(403))

        from notifications.telegram_bot import TelegramBot
        with pytest.raises(requests.HTTPError):
            TelegramBot("token", "1").send_message("hi")


# ── PushSender tests ─────────────────────────────────

def test_push_sends_to_every_endpoint(memory_store):
    memory_store.add_push_endpoint("owner-1", "111")
    memory_store.add_push_endpoint("owner-1", "222")
    bot = MagicMock()
    sent = PushSender(bot, memory_store).send("owner-1", _event())
    assert sent == 2
    chats = [c.kwargs["chat_id"] for c in bot.send_message.call_args_list]
    assert chats == ["111", "222"]
    assert "Threshold hit" in bot.send_message.call_args_list[0][0][0]


def test_push_disables_gone_endpoints(memory_store):
    gone = memory_store.add_push_endpoint("owner-1", "111")
    memory_store.add_push_endpoint("owner-1", "222")
    bot = MagicMock()
    bot.send_message.side_effect = [_http_error(403), {"ok": True}]

    assert PushSender(bot, memory_store).send("owner-1", _event()) == 1
    remaining = memory_store.list_push_endpoints("owner-1")
    assert [e["address"] for e in remaining] == ["222"]
    assert gone not in [e["id"] for e in remaining]


def test_push_keeps_endpoint_on_transient_error(memory_store):
    memory_store.add_push_endpoint("owner-1", "111")
    bot = MagicMock()
    bot.send_message.side_effect = requests.ConnectionError("reset")
    assert PushSender(bot, memory_store).send("owner-1", _event()) == 0
    assert len(memory_store.list_push_endpoints("owner-1")) == 1


def test_push_without_endpoints(memory_store):
    bot = MagicMock()
    assert PushSender(bot, memory_store).send("nobody", _event()) == 0
    bot.send_message.assert_not_called()
