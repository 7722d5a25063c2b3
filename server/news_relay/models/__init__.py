"""
News Relay Data Models

Frozen dataclasses with validation.
"""
from news_relay.models.news import (
    CanonicalEvent,
    RawEvent,
    StoredNewsRecord,
    Subscriber,
)

__all__ = [
    "CanonicalEvent",
    "RawEvent",
    "StoredNewsRecord",
    "Subscriber",
]
