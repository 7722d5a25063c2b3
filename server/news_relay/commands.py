"""
Subscriber Commands

Maps chat commands onto SubscriberRegistry operations and produces the
reply text. Transport-agnostic: TelegramCommandListener feeds it updates,
tests call handle() directly.

Commands:
    /start           register (or re-activate) the chat
    /status          show subscription state and filters
    /filter BTC ETH  only receive news tagged with these coins
    /unfilter        receive everything again
    /stop            pause delivery (soft delete)
    /help            command overview
"""
from __future__ import annotations

import logging
import re
from typing import Awaitable, Callable, Optional

from news_relay.core.types import StoreUnavailableError
from news_relay.store.interface import SubscriberRegistry, normalize_filters

logger = logging.getLogger(__name__)

_COIN_SPLIT = re.compile(r"[\s,]+")

HELP_TEXT = (
    "🤖 *AlphaNews Bot*\n\n"
    "*Commands:*\n"
    "/start - activate the bot and start receiving news\n"
    "/status - show the current subscription\n"
    "/filter [coins] - only receive news for these coins\n"
    "  e.g. /filter BTC ETH SOL\n"
    "/unfilter - remove all filters\n"
    "/stop - pause news delivery\n"
    "/help - show this message\n\n"
    "Duplicate stories are filtered out automatically."
)

WELCOME_TEXT = (
    "🚨 *Welcome to AlphaNews!*\n\n"
    "This chat will now receive real-time crypto news.\n\n"
    + HELP_TEXT.split("\n\n", 1)[1]
)


def parse_command(text: str) -> tuple[Optional[str], str]:
    """
    Split '/cmd@BotName args' into ('cmd', 'args').

    Returns (None, '') when *text* is not a command.
    """
    text = (text or "").strip()
    if not text.startswith("/"):
        return None, ""
    head, _, rest = text.partition(" ")
    command = head[1:].split("@", 1)[0].lower()
    return (command or None), rest.strip()


class SubscriberCommands:
    """Chat command handlers backed by a SubscriberRegistry."""

    def __init__(self, registry: SubscriberRegistry) -> None:
        self._registry = registry
        self._handlers: dict[str, Callable[[str, str, str], Awaitable[str]]] = {
            "start": self._start,
            "status": self._status,
            "filter": self._filter,
            "unfilter": self._unfilter,
            "stop": self._stop,
            "help": self._help,
        }

    async def handle(self, chat_id: str, chat_title: str, text: str) -> Optional[str]:
        """
        Run the command in *text* for *chat_id*.

        Returns the reply text, or None if *text* is not a known command.
        """
        command, args = parse_command(text)
        handler = self._handlers.get(command or "")
        if handler is None:
            return None

        try:
            return await handler(chat_id, chat_title, args)
        except StoreUnavailableError as e:
            logger.error(
                f"/{command} failed, store unavailable",
                extra={"chat_id": chat_id, "error": str(e)},
            )
            return "❌ Something went wrong, please try again later."

    async def _start(self, chat_id: str, chat_title: str, args: str) -> str:
        await self._registry.upsert(chat_id, chat_title)
        return WELCOME_TEXT

    async def _status(self, chat_id: str, chat_title: str, args: str) -> str:
        subscriber = await self._registry.get(chat_id)
        if subscriber is None:
            return "❌ This chat is not registered. Use /start first."

        filters = ", ".join(sorted(subscriber.filters)) or "none"
        state = "active" if subscriber.active else "paused"
        return (
            "📊 *AlphaNews subscription*\n\n"
            f"✅ Status: {state}\n"
            f"🎯 Filters: {filters}\n"
            f"📅 Registered: {subscriber.created_at:%Y-%m-%d %H:%M} UTC"
        )

    async def _filter(self, chat_id: str, chat_title: str, args: str) -> str:
        coins = normalize_filters(_COIN_SPLIT.split(args))
        if not coins:
            return "❌ Please list the coins to filter, e.g. /filter BTC ETH SOL"

        if not await self._registry.set_filter(chat_id, coins):
            return "❌ This chat is not registered. Use /start first."
        return (
            "✅ *Filters updated*\n\n"
            f"🎯 Coins: {', '.join(sorted(coins))}\n\n"
            "Only news mentioning these coins will be delivered.\n"
            "Use /unfilter to receive everything again."
        )

    async def _unfilter(self, chat_id: str, chat_title: str, args: str) -> str:
        if not await self._registry.set_filter(chat_id, ()):
            return "❌ This chat is not registered. Use /start first."
        return "✅ All filters removed, you will receive every story."

    async def _stop(self, chat_id: str, chat_title: str, args: str) -> str:
        if not await self._registry.deactivate(chat_id):
            return "❌ This chat is not registered. Use /start first."
        return "⏹️ News delivery stopped. Use /start to resume."

    async def _help(self, chat_id: str, chat_title: str, args: str) -> str:
        return HELP_TEXT
