"""
Store Protocol Definitions

Abstract interfaces that both the in-memory stub and the Redis backend
satisfy. The dispatcher and the command layer depend only on these
protocols. Every method raises StoreUnavailableError on I/O failure.
"""
from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable

from news_relay.models.news import CanonicalEvent, StoredNewsRecord, Subscriber


@runtime_checkable
class DedupStore(Protocol):
    """Durable record of every fingerprint ever dispatched."""

    async def exists(self, fingerprint: str) -> bool:
        """Return True if a record with *fingerprint* has been stored."""
        ...

    async def insert_if_absent(self, event: CanonicalEvent) -> bool:
        """
        Store *event* unless its fingerprint is already present.

        Returns True on first sighting, False on conflict. Must be atomic
        with respect to concurrent callers.
        """
        ...

    async def get(self, fingerprint: str) -> StoredNewsRecord | None:
        """Look up a single stored record."""
        ...

    async def mark_delivered(self, fingerprint: str, subscriber_ids: Iterable[str]) -> None:
        """Append delivery targets to a stored record's bookkeeping."""
        ...


@runtime_checkable
class SubscriberRegistry(Protocol):
    """Subscribers and their coin filters. Every mutation is idempotent."""

    async def list_active(self) -> list[Subscriber]:
        """Return all subscribers with active=True."""
        ...

    async def get(self, subscriber_id: str) -> Subscriber | None:
        """Look up a subscriber regardless of its active flag."""
        ...

    async def upsert(self, subscriber_id: str, display_name: str) -> None:
        """Register or re-activate a subscriber."""
        ...

    async def set_filter(self, subscriber_id: str, coins: Iterable[str]) -> bool:
        """
        Replace a subscriber's filter set.

        Returns False when the subscriber is unknown (nothing changes).
        """
        ...

    async def deactivate(self, subscriber_id: str) -> bool:
        """
        Soft-delete a subscriber.

        Returns False when the subscriber is unknown.
        """
        ...


def normalize_filters(coins: Iterable[str]) -> frozenset[str]:
    """Upper-case coin tickers and drop blanks."""
    return frozenset(c.strip().upper() for c in coins if c and c.strip())
