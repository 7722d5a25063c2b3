"""
news_relay.notifier — subscriber-facing delivery channels.
"""
from news_relay.notifier.interface import LoggingNotifier, Notifier
from news_relay.notifier.telegram import (
    TelegramClient,
    TelegramCommandListener,
    TelegramNotifier,
)

__all__ = [
    "LoggingNotifier",
    "Notifier",
    "TelegramClient",
    "TelegramCommandListener",
    "TelegramNotifier",
]
