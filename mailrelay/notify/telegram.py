"""
Telegram Notification Sink

Delivers notification text to a Telegram chat through the Bot API
sendMessage method. Delivery failures are logged and reported as a
False return value; they never propagate to the caller.
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from ..core.config import TelegramConfig
from ..core.exceptions import NotificationSendError


logger = logging.getLogger(__name__)


class TelegramNotifier:
    """
    Send-and-forget Telegram sink.

    Usage:
        notifier = TelegramNotifier(config.telegram)
        delivered = await notifier.send(chat_id, "📩 New mail ...")
        await notifier.close()
    """

    def __init__(self, config: TelegramConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            )
            self._owns_session = True
        return self._session

    async def close(self):
        """Close the underlying HTTP session if this notifier created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def send(self, chat_id: Any, text: str) -> bool:
        """
        Send a message to a chat.

        Args:
            chat_id: Telegram chat ID
            text: Message text

        Returns:
            True if Telegram accepted the message, False otherwise
        """
        try:
            await self._send_message(chat_id, text)
            logger.debug(f"Delivered notification to {chat_id}")
            return True
        except NotificationSendError as e:
            logger.error(f"Failed to send message to {chat_id}: {e}")
            return False

    async def _send_message(self, chat_id: Any, text: str) -> dict:
        """
        Call sendMessage.

        Raises:
            NotificationSendError: On transport errors or a non-ok API response
        """
        if not self.config.bot_token:
            raise NotificationSendError("Telegram bot token is not configured")

        payload = {"chat_id": chat_id, "text": text}
        if self.config.parse_mode:
            payload["parse_mode"] = self.config.parse_mode

        try:
            async with self._get_session().post(self.config.send_message_url, json=payload) as response:
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise NotificationSendError(f"Telegram request failed: {str(e) or type(e).__name__}") from e

        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description", "Unknown error") if isinstance(data, dict) else data
            raise NotificationSendError(f"Telegram API returned an error: {description}")

        return data
