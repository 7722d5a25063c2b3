"""
News Dispatcher

Pipeline entry point for canonical events. For each event it:
  1. Claims the fingerprint with DedupStore.insert_if_absent (dedup gate)
  2. Loads the active subscribers                (SubscriberRegistry)
  3. Delivers to every subscriber whose filter matches, one at a time,
     with a fixed pause between sends          (Notifier)
  4. Records which subscribers were reached    (DedupStore.mark_delivered)

A failed delivery never stops the remaining ones. Store or registry
failures abort the current event only; run() keeps consuming.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import tzinfo
from enum import Enum
from typing import Optional

from news_relay.core.types import MalformedEventError, StoreUnavailableError
from news_relay.feed_client.canonicalizer import canonicalize
from news_relay.models.news import CanonicalEvent, RawEvent
from news_relay.notifier.interface import Notifier
from news_relay.store.interface import DedupStore, SubscriberRegistry

logger = logging.getLogger(__name__)

DEFAULT_SEND_INTERVAL = 0.1


class DispatchOutcome(str, Enum):
    DISPATCHED = "dispatched"
    DUPLICATE = "duplicate"
    ABORTED = "aborted"


@dataclass(frozen=True)
class DispatchResult:
    """What happened to one canonical event."""

    outcome: DispatchOutcome
    fingerprint: str
    delivered: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    filtered_out: int = 0


@dataclass
class DispatcherStats:
    """Statistics for the dispatcher."""

    events_received: int = 0
    events_malformed: int = 0
    events_duplicate: int = 0
    events_dispatched: int = 0
    events_aborted: int = 0
    deliveries_succeeded: int = 0
    deliveries_failed: int = 0


class Dispatcher:
    """
    Dedup-gated fan-out of canonical events to subscribers.

    Delivery order within one dispatch is the order returned by
    list_active(). Pacing applies per dispatch loop, not globally.
    """

    def __init__(
        self,
        news_store: DedupStore,
        registry: SubscriberRegistry,
        notifier: Notifier,
        *,
        send_interval: float = DEFAULT_SEND_INTERVAL,
        display_tz: Optional[tzinfo] = None,
    ) -> None:
        self._news_store = news_store
        self._registry = registry
        self._notifier = notifier
        self._send_interval = send_interval
        self._display_tz = display_tz
        self._stats = DispatcherStats()
        self._sleep = asyncio.sleep

    @property
    def stats(self) -> DispatcherStats:
        """Get dispatcher statistics."""
        return self._stats

    async def on_canonical_event(self, event: CanonicalEvent) -> DispatchResult:
        """
        Dispatch one canonical event. Never raises for store or delivery errors.
        """
        self._stats.events_received += 1

        try:
            inserted = await self._news_store.insert_if_absent(event)
        except StoreUnavailableError as e:
            self._stats.events_aborted += 1
            logger.error(
                "Dedup store unavailable, dropping event",
                extra={"fingerprint": event.fingerprint, "error": str(e)},
            )
            return DispatchResult(DispatchOutcome.ABORTED, event.fingerprint)

        if not inserted:
            self._stats.events_duplicate += 1
            logger.info(
                "Duplicate news, skipping",
                extra={"fingerprint": event.fingerprint, "title": event.title[:100]},
            )
            return DispatchResult(DispatchOutcome.DUPLICATE, event.fingerprint)

        try:
            subscribers = await self._registry.list_active()
        except StoreUnavailableError as e:
            self._stats.events_aborted += 1
            logger.error(
                "Subscriber registry unavailable, dropping event",
                extra={"fingerprint": event.fingerprint, "error": str(e)},
            )
            return DispatchResult(DispatchOutcome.ABORTED, event.fingerprint)

        logger.info(
            f"Broadcasting to {len(subscribers)} active subscriber(s)",
            extra={"fingerprint": event.fingerprint, "priority": event.priority},
        )

        delivered: list[str] = []
        failed: list[str] = []
        filtered_out = 0
        first_send = True

        for subscriber in subscribers:
            if not subscriber.matches(event.coins):
                filtered_out += 1
                logger.debug(
                    f"Skipping {subscriber.display_name} (filter mismatch)",
                    extra={"subscriber_id": subscriber.id},
                )
                continue

            if not first_send:
                await self._sleep(self._send_interval)
            first_send = False

            if await self._deliver(subscriber.id, event):
                delivered.append(subscriber.id)
            else:
                failed.append(subscriber.id)

        self._stats.events_dispatched += 1
        self._stats.deliveries_succeeded += len(delivered)
        self._stats.deliveries_failed += len(failed)

        if delivered:
            try:
                await self._news_store.mark_delivered(event.fingerprint, delivered)
            except StoreUnavailableError as e:
                logger.warning(
                    "Failed to record delivery targets",
                    extra={"fingerprint": event.fingerprint, "error": str(e)},
                )

        logger.info(
            "Broadcast complete",
            extra={
                "fingerprint": event.fingerprint,
                "delivered": len(delivered),
                "failed": len(failed),
                "filtered_out": filtered_out,
            },
        )
        return DispatchResult(
            DispatchOutcome.DISPATCHED,
            event.fingerprint,
            delivered=tuple(delivered),
            failed=tuple(failed),
            filtered_out=filtered_out,
        )

    async def _deliver(self, subscriber_id: str, event: CanonicalEvent) -> bool:
        try:
            ok = await self._notifier.send(subscriber_id, event.rendered_text)
        except Exception as e:
            logger.error(
                "Notifier raised during delivery",
                extra={"subscriber_id": subscriber_id, "error": str(e)},
                exc_info=True,
            )
            return False

        if not ok:
            logger.warning(
                "Delivery failed",
                extra={"subscriber_id": subscriber_id, "fingerprint": event.fingerprint},
            )
            return False

        logger.debug("Delivered news", extra={"subscriber_id": subscriber_id})
        return True

    async def handle_raw(self, raw: RawEvent) -> Optional[DispatchResult]:
        """
        Canonicalize and dispatch one raw feed event.

        Returns None when the payload is malformed and was dropped.
        """
        try:
            event = canonicalize(raw, self._display_tz)
        except MalformedEventError as e:
            self._stats.events_malformed += 1
            logger.warning(
                "Dropping malformed event",
                extra={"error": str(e), "field": e.field},
            )
            return None

        logger.info(
            f"Received news: {event.title[:100]}",
            extra={"fingerprint": event.fingerprint, "coins": list(event.coins)},
        )
        return await self.on_canonical_event(event)

    async def run(self, queue: asyncio.Queue[RawEvent]) -> None:
        """
        Consume raw events from *queue* in FIFO order until cancelled.

        Each event is fully dispatched before the next is taken.
        """
        logger.info("Dispatcher consuming feed queue")
        while True:
            raw = await queue.get()
            try:
                await self.handle_raw(raw)
            except Exception as e:
                logger.error(
                    "Unexpected error dispatching event",
                    extra={"error": str(e)},
                    exc_info=True,
                )
            finally:
                queue.task_done()
