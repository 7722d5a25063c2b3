"""
Notifier Protocol

Subscriber-facing delivery channel. send() reports failure through its
return value; implementations never raise across this boundary.
"""
from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    async def send(self, subscriber_id: str, text: str) -> bool:
        """Deliver *text* to *subscriber_id*. Returns True on success."""
        ...


class LoggingNotifier:
    """Notifier for mock mode: writes every delivery to the log."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, subscriber_id: str, text: str) -> bool:
        self.sent.append((subscriber_id, text))
        first_line = next((line for line in text.splitlines() if line.strip()), "")
        logger.info(f"[deliver → {subscriber_id}] {first_line}")
        return True
