"""
Telegram Bot API integration.

TelegramClient wraps the two Bot API methods the relay needs (sendMessage
and getUpdates) over a shared aiohttp session. TelegramNotifier adapts it
to the Notifier protocol; TelegramCommandListener feeds incoming chat
commands to SubscriberCommands.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

import aiohttp

from news_relay.core.types import ConnectionError, DeliveryError

if TYPE_CHECKING:
    from news_relay.commands import SubscriberCommands

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.telegram.org"


class TelegramClient:
    """
    Minimal async Telegram Bot API client.

    Usage:
        async with TelegramClient(token) as client:
            await client.send_message("12345", "*hello*")
    """

    def __init__(
        self,
        token: str,
        api_url: str = DEFAULT_API_URL,
        request_timeout: float = 15.0,
    ) -> None:
        self._base_url = f"{api_url.rstrip('/')}/bot{token}"
        self._request_timeout = request_timeout
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> TelegramClient:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._request_timeout)
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _call(
        self,
        method: str,
        payload: dict[str, Any],
        timeout: Optional[float] = None,
    ) -> tuple[int, dict[str, Any]]:
        if self._session is None:
            raise RuntimeError("TelegramClient is not connected — call connect() first")

        kwargs: dict[str, Any] = {"json": payload}
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        async with self._session.post(f"{self._base_url}/{method}", **kwargs) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = {}
            return resp.status, data if isinstance(data, dict) else {}

    async def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: Optional[str] = "Markdown",
    ) -> None:
        """
        Send a text message to a chat.

        Raises:
            DeliveryError: On transport failure or a non-ok API response.
        """
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            status, data = await self._call("sendMessage", payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeliveryError(
                f"Telegram request failed: {exc}", subscriber_id=chat_id
            ) from exc

        if status != 200 or not data.get("ok"):
            raise DeliveryError(
                f"Telegram rejected message: {data.get('description', 'unknown error')}",
                subscriber_id=chat_id,
                status=status,
            )

    async def get_updates(self, offset: Optional[int], timeout: int = 30) -> list[dict[str, Any]]:
        """
        Long-poll for new updates.

        Raises:
            ConnectionError: On transport failure or a non-ok API response.
        """
        payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset

        try:
            # Leave headroom over the server-side long-poll timeout
            status, data = await self._call("getUpdates", payload, timeout=timeout + 10)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ConnectionError(
                f"Telegram getUpdates failed: {exc}", service="telegram"
            ) from exc

        if status != 200 or not data.get("ok"):
            raise ConnectionError(
                f"Telegram getUpdates rejected: {data.get('description', status)}",
                service="telegram",
            )
        result = data.get("result", [])
        return result if isinstance(result, list) else []


class TelegramNotifier:
    """Notifier that delivers rendered news to Telegram chats."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client

    async def send(self, subscriber_id: str, text: str) -> bool:
        try:
            await self._client.send_message(subscriber_id, text)
        except DeliveryError as e:
            logger.warning(
                "Telegram delivery failed",
                extra={"subscriber_id": subscriber_id, "error": str(e)},
            )
            return False
        except Exception as e:
            logger.error(
                "Unexpected Telegram delivery error",
                extra={"subscriber_id": subscriber_id, "error": str(e)},
                exc_info=True,
            )
            return False
        return True


class TelegramCommandListener:
    """
    Long-polls getUpdates and routes chat commands to SubscriberCommands.

    Runs until cancelled. Transport errors are logged and retried after a
    fixed delay; a failing update never stops the loop.
    """

    def __init__(
        self,
        client: TelegramClient,
        commands: SubscriberCommands,
        poll_timeout: int = 30,
        retry_delay: float = 5.0,
    ) -> None:
        self._client = client
        self._commands = commands
        self._poll_timeout = poll_timeout
        self._retry_delay = retry_delay
        self._offset: Optional[int] = None

    async def run(self) -> None:
        logger.info("Telegram command listener started")
        while True:
            try:
                updates = await self._client.get_updates(self._offset, self._poll_timeout)
            except ConnectionError as e:
                logger.warning(
                    "Telegram polling error",
                    extra={"error": str(e)},
                )
                await asyncio.sleep(self._retry_delay)
                continue

            for update in updates:
                update_id = update.get("update_id")
                if isinstance(update_id, int):
                    self._offset = update_id + 1
                try:
                    await self.handle_update(update)
                except Exception as e:
                    logger.error(
                        "Failed to handle Telegram update",
                        extra={"error": str(e), "update_id": update_id},
                        exc_info=True,
                    )

    async def handle_update(self, update: dict[str, Any]) -> Optional[str]:
        """Handle one update; returns the reply that was sent, if any."""
        message = update.get("message") or {}
        chat = message.get("chat") or {}
        text = message.get("text")
        if "id" not in chat or not isinstance(text, str):
            return None

        chat_id = str(chat["id"])
        chat_title = chat.get("title") or chat.get("first_name") or "Unknown"

        reply = await self._commands.handle(chat_id, chat_title, text)
        if reply is None:
            return None

        try:
            await self._client.send_message(chat_id, reply)
        except DeliveryError as e:
            logger.warning(
                "Failed to send command reply",
                extra={"chat_id": chat_id, "error": str(e)},
            )
        return reply
