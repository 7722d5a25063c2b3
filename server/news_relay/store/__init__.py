"""
news_relay.store — persistence for news records and subscribers.

Protocols live in store.interface; InMemory* stubs serve mock mode and
tests, Redis* classes are the production backend.
"""
from news_relay.store.interface import DedupStore, SubscriberRegistry, normalize_filters
from news_relay.store.memory import InMemoryNewsStore, InMemorySubscriberRegistry
from news_relay.store.redis_store import RedisNewsStore, RedisSubscriberRegistry, open_redis

__all__ = [
    "DedupStore",
    "InMemoryNewsStore",
    "InMemorySubscriberRegistry",
    "RedisNewsStore",
    "RedisSubscriberRegistry",
    "SubscriberRegistry",
    "normalize_filters",
    "open_redis",
]
