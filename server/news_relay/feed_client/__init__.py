"""
Feed Client Module

WebSocket client for the upstream news feed and the canonicalizer that
turns its payloads into CanonicalEvents.
"""
from news_relay.feed_client.canonicalizer import canonicalize
from news_relay.feed_client.client import FeedConnection

__all__ = [
    "FeedConnection",
    "canonicalize",
]
