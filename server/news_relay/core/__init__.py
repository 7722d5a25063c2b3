"""
News Relay Core

Exception taxonomy and shared enums.
"""
from news_relay.core.types import (
    ConnectionError,
    DeliveryError,
    FeedState,
    MalformedEventError,
    NewsRelayError,
    StoreUnavailableError,
)

__all__ = [
    "ConnectionError",
    "DeliveryError",
    "FeedState",
    "MalformedEventError",
    "NewsRelayError",
    "StoreUnavailableError",
]
