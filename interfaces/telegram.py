"""
interfaces/telegram.py — Telegram Bot API delivery.

Sends proactive notifications to the configured chat, splitting long
texts and falling back to plain text when Markdown fails to parse.
"""

import httpx
import logging
from typing import Optional

from core.errors import DeliveryError
from interfaces.base import DeliveryAdapter

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org/bot{token}"
MAX_LEN = 4096


class TelegramClient:
    """Async Telegram Bot API wrapper."""

    def __init__(self, token: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = token
        self.base_url = TELEGRAM_API.format(token=token)
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _call(self, method: str, **kwargs) -> dict:
        """Make a Telegram Bot API call."""
        client = await self._get_client()
        url = f"{self.base_url}/{method}"
        resp = await client.post(url, json=kwargs)
        resp.raise_for_status()
        data = resp.json()
        if not data.get("ok"):
            logger.error(f"Telegram API error: {data}")
        return data

    async def _send_chunk(self, chat_id: int, text: str, parse_mode: Optional[str]) -> dict:
        kwargs = {"chat_id": chat_id, "text": text}
        if parse_mode:
            kwargs["parse_mode"] = parse_mode
        try:
            return await self._call("sendMessage", **kwargs)
        except httpx.HTTPStatusError as e:
            if parse_mode and e.response.status_code == 400:
                logger.warning(f"Markdown parse failed, retrying without parse_mode: {e}")
                kwargs.pop("parse_mode", None)
                return await self._call("sendMessage", **kwargs)
            raise

    async def send_message(self, chat_id: int, text: str, parse_mode: Optional[str] = "Markdown") -> dict:
        """Send a text message. Splits into chunks if > 4096 chars."""
        chunks = [text[i : i + MAX_LEN] for i in range(0, len(text), MAX_LEN)] or [""]
        result = {}
        for chunk in chunks:
            result = await self._send_chunk(chat_id, chunk, parse_mode)
            if not result.get("ok"):
                break
        return result


class TelegramDelivery(DeliveryAdapter):
    """Delivers notifications to a single Telegram chat."""

    def __init__(self, client: TelegramClient, chat_id: int):
        self.client = client
        self.chat_id = chat_id

    async def deliver(self, text: str, tag: str, idempotency_key: str) -> bool:
        try:
            result = await self.client.send_message(self.chat_id, text)
        except httpx.HTTPError as e:
            raise DeliveryError(f"telegram not available: {e}") from e

        if not result.get("ok"):
            description = result.get("description", "unknown error")
            raise DeliveryError(f"telegram rejected message: {description}")

        logger.info(f"💬 Sent {tag} notification to chat {self.chat_id} ({len(text)} chars)")
        return True

    async def close(self) -> None:
        await self.client.close()
