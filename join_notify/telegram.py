"""Telegram Bot API sender used as the notification destination."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from .notifications import DeliveryError

logger = logging.getLogger(__name__)


DEFAULT_API_BASE = "https://api.telegram.org"


class TelegramSender:
    """Sends plain-text direct messages through the Telegram Bot API."""

    def __init__(
        self,
        token: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = f"{api_base.rstrip('/')}/bot{token}/sendMessage"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0)
        )

    async def send(self, destination_address: int, message_text: str) -> None:
        try:
            response = await self._client.post(
                self._url,
                json={"chat_id": destination_address, "text": message_text},
            )
        except httpx.HTTPError as exc:
            # The request URL embeds the bot token; report the error type only.
            raise DeliveryError(f"request failed: {type(exc).__name__}") from None

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        if response.is_success and payload.get("ok", False):
            logger.debug("Telegram accepted message for chat %s", destination_address)
            return
        description = payload.get("description") or response.reason_phrase
        raise DeliveryError(f"{response.status_code}: {description}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["DEFAULT_API_BASE", "TelegramSender"]
