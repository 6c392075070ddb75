"""Push delivery of events to an owner's registered Telegram chats."""
import logging

import requests

from alerts.channels import format_event_text

logger = logging.getLogger("tokenwatch.push")

# Telegram answers these when the chat is gone or the bot was blocked.
GONE_STATUS = {400, 403, 404}


class PushSender:
    def __init__(self, bot, endpoints):
        """``endpoints`` is any store with list/disable_push_endpoint."""
        self.bot = bot
        self.endpoints = endpoints

    def send(self, owner_id, event):
        """Deliver to every enabled endpoint; returns the number delivered."""
        targets = self.endpoints.list_push_endpoints(owner_id)
        if not targets:
            return 0
        text = format_event_text(event)
        sent = 0
        for ep in targets:
            try:
                self.bot.send_message(text, chat_id=ep["address"])
                sent += 1
            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status in GONE_STATUS:
                    logger.info(f"Disabling push endpoint {ep['id']} for {owner_id} (HTTP {status})")
                    self.endpoints.disable_push_endpoint(ep["id"])
                else:
                    logger.warning(f"Push to endpoint {ep['id']} failed: {e}")
            except requests.RequestException as e:
                logger.warning(f"Push to endpoint {ep['id']} failed: {e}")
        return sent
