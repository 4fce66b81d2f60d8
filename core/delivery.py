import logging
from collections import OrderedDict
from datetime import datetime

from interfaces.base import DeliveryAdapter

logger = logging.getLogger("core.delivery")


class ConsoleDelivery(DeliveryAdapter):
    """Prints notifications; used when no push channel is configured."""

    async def deliver(self, text: str, tag: str, idempotency_key: str) -> bool:
        timestamp = datetime.now().strftime("%H:%M:%S")
        print(f"[{timestamp}] NOTIFICATION ({tag}): {text}")
        return True


class IdempotentDelivery(DeliveryAdapter):
    """
    Wraps a channel so a given idempotency key is delivered at most once
    for the lifetime of the process.
    """

    def __init__(self, channel: DeliveryAdapter, max_keys: int = 512):
        self.channel = channel
        self.max_keys = max_keys
        self._delivered: "OrderedDict[str, str]" = OrderedDict()

    def already_delivered(self, idempotency_key: str) -> bool:
        return idempotency_key in self._delivered

    async def deliver(self, text: str, tag: str, idempotency_key: str) -> bool:
        if self.already_delivered(idempotency_key):
            logger.info(f"🔇 Suppressed duplicate delivery for {idempotency_key}")
            return True

        delivered = await self.channel.deliver(text, tag, idempotency_key)
        if delivered:
            self._delivered[idempotency_key] = tag
            while len(self._delivered) > self.max_keys:
                self._delivered.popitem(last=False)
        return delivered

    async def close(self) -> None:
        await self.channel.close()


def build_delivery(settings) -> DeliveryAdapter:
    """Pick the delivery channel from settings."""
    if settings.telegram_configured:
        from interfaces.telegram import TelegramClient, TelegramDelivery

        chat_id = settings.allowed_chat_id_list[0]
        channel = TelegramDelivery(TelegramClient(settings.telegram_bot_token), chat_id)
        logger.info(f"✅ Telegram delivery configured for chat {chat_id}")
    else:
        channel = ConsoleDelivery()
        logger.warning("⚠️ Telegram not configured (set TELEGRAM_BOT_TOKEN and ALLOWED_CHAT_IDS); using console")
    return IdempotentDelivery(channel)
