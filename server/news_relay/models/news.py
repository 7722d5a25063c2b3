"""
News Data Models

Core data structures for news items and subscribers at each pipeline stage.
All models use frozen dataclasses with __post_init__ validation.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

# Decoded JSON object exactly as received from the feed.
RawEvent = dict[str, Any]

# Feed timestamps are epoch seconds; integral floats are normalized to int.
Timestamp = Union[int, float]


@dataclass(frozen=True)
class CanonicalEvent:
    """
    Parsed, normalized representation of one feed payload.

    The fingerprint is derived from (title, origin_timestamp, url) only,
    so re-sent copies of the same story collapse onto one dedup key.
    """

    source_name: str
    title: str
    coins: tuple[str, ...]
    url: str
    origin_timestamp: Timestamp
    fingerprint: str
    priority: int
    rendered_text: str

    def __post_init__(self) -> None:
        """Validate fields."""
        if not self.title:
            raise ValueError("title must be non-empty string")
        if not self.fingerprint:
            raise ValueError("fingerprint must be non-empty string")
        if self.priority < 1:
            raise ValueError(f"priority must be >= 1, got {self.priority}")


@dataclass(frozen=True)
class StoredNewsRecord:
    """
    Durable projection of a CanonicalEvent.

    At most one record exists per fingerprint. The only field that changes
    after insertion is delivered_to.
    """

    id: int
    fingerprint: str
    source_name: str
    title: str
    coins: tuple[str, ...]
    url: str
    origin_timestamp: Timestamp
    priority: int
    created_at: datetime
    delivered_to: tuple[str, ...] = ()

    @classmethod
    def from_event(
        cls,
        record_id: int,
        event: CanonicalEvent,
        created_at: datetime,
    ) -> "StoredNewsRecord":
        return cls(
            id=record_id,
            fingerprint=event.fingerprint,
            source_name=event.source_name,
            title=event.title,
            coins=event.coins,
            url=event.url,
            origin_timestamp=event.origin_timestamp,
            priority=event.priority,
            created_at=created_at,
        )


@dataclass(frozen=True)
class Subscriber:
    """
    A delivery endpoint (chat channel) with its coin filter.

    An empty filter set matches every event. Deactivation is a soft delete:
    the row is kept with active=False.
    """

    id: str
    display_name: str
    active: bool
    filters: frozenset[str]
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("id must be non-empty string")
        if self.created_at.tzinfo is None or self.updated_at.tzinfo is None:
            raise ValueError("created_at and updated_at must be timezone-aware")

    def matches(self, coins: tuple[str, ...]) -> bool:
        """True if this subscriber wants an event tagged with *coins*."""
        if not self.filters:
            return True
        wanted = {f.upper() for f in self.filters}
        return any(coin.upper() in wanted for coin in coins)
