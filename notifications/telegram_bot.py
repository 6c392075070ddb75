"""Telegram Bot API client used for push notifications and the operator feed.

Uses raw HTTP POST via requests.
"""
import logging
import requests

logger = logging.getLogger("tokenwatch.telegram")

TELEGRAM_API = "https://api.telegram.org/bot{token}"


class TelegramBot:
    """Thin wrapper around Telegram Bot API."""

    def __init__(self, bot_token: str, chat_id: str = None, timeout: int = 30):
        self.bot_token = bot_token
        self.chat_id = str(chat_id) if chat_id is not None else None
        self.timeout = timeout
        self.base_url = TELEGRAM_API.format(token=bot_token)

    def send_message(self, text: str, chat_id: str = None,
                     parse_mode: str = "Markdown") -> dict:
        """Send a text message. Returns Telegram API response dict.

        Raises requests.HTTPError for non-2xx responses so callers can tell
        a dead chat (400/403/404) from a transient failure.
        """
        target = chat_id or self.chat_id
        if not target:
            raise ValueError("No chat_id given and no default chat configured")
        url = f"{self.base_url}/sendMessage"
        payload = {"chat_id": str(target), "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        try:
            resp = requests.post(url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
            if not data.get("ok"):
                logger.warning("Telegram API error: %s", data.get("description"))
            return data
        except requests.RequestException as e:
            logger.error("Telegram send failed: %s", e)
            raise
