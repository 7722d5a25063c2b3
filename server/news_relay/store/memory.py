"""
In-Memory Store Stub

Dict-backed implementations of DedupStore and SubscriberRegistry for mock
mode and tests. Check-and-insert runs without an intervening await, which
makes insert_if_absent atomic on a single event loop.
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Iterable

from news_relay.models.news import CanonicalEvent, StoredNewsRecord, Subscriber
from news_relay.store.interface import normalize_filters

logger = logging.getLogger(__name__)


class InMemoryNewsStore:
    """Satisfies DedupStore."""

    def __init__(self) -> None:
        self._records: dict[str, StoredNewsRecord] = {}
        self._next_id = 1

    async def exists(self, fingerprint: str) -> bool:
        return fingerprint in self._records

    async def insert_if_absent(self, event: CanonicalEvent) -> bool:
        if event.fingerprint in self._records:
            return False
        record = StoredNewsRecord.from_event(
            self._next_id, event, datetime.now(timezone.utc)
        )
        self._records[event.fingerprint] = record
        self._next_id += 1
        logger.debug(f"Stored record {record.id} for {event.fingerprint}")
        return True

    async def get(self, fingerprint: str) -> StoredNewsRecord | None:
        return self._records.get(fingerprint)

    async def mark_delivered(self, fingerprint: str, subscriber_ids: Iterable[str]) -> None:
        record = self._records.get(fingerprint)
        if record is None:
            return
        delivered = list(record.delivered_to)
        for subscriber_id in subscriber_ids:
            if subscriber_id not in delivered:
                delivered.append(subscriber_id)
        self._records[fingerprint] = dataclasses.replace(
            record, delivered_to=tuple(delivered)
        )

    # ------------------------------------------------------------------
    # Introspection (for tests)
    # ------------------------------------------------------------------

    @property
    def records(self) -> list[StoredNewsRecord]:
        return sorted(self._records.values(), key=lambda r: r.id)


class InMemorySubscriberRegistry:
    """Satisfies SubscriberRegistry. Listing order is registration order."""

    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}

    async def list_active(self) -> list[Subscriber]:
        return [s for s in self._subscribers.values() if s.active]

    async def get(self, subscriber_id: str) -> Subscriber | None:
        return self._subscribers.get(subscriber_id)

    async def upsert(self, subscriber_id: str, display_name: str) -> None:
        now = datetime.now(timezone.utc)
        existing = self._subscribers.get(subscriber_id)
        if existing is None:
            self._subscribers[subscriber_id] = Subscriber(
                id=subscriber_id,
                display_name=display_name,
                active=True,
                filters=frozenset(),
                created_at=now,
                updated_at=now,
            )
            logger.info(f"Registered subscriber {display_name} ({subscriber_id})")
            return
        self._subscribers[subscriber_id] = dataclasses.replace(
            existing, display_name=display_name, active=True, updated_at=now
        )

    async def set_filter(self, subscriber_id: str, coins: Iterable[str]) -> bool:
        existing = self._subscribers.get(subscriber_id)
        if existing is None:
            return False
        self._subscribers[subscriber_id] = dataclasses.replace(
            existing,
            filters=normalize_filters(coins),
            updated_at=datetime.now(timezone.utc),
        )
        return True

    async def deactivate(self, subscriber_id: str) -> bool:
        existing = self._subscribers.get(subscriber_id)
        if existing is None:
            return False
        self._subscribers[subscriber_id] = dataclasses.replace(
            existing, active=False, updated_at=datetime.now(timezone.utc)
        )
        return True
