"""
Dispatcher Module

Dedup-gated, filtered, paced fan-out of news events to subscribers.
"""
from news_relay.dispatcher.dispatcher import (
    DispatchOutcome,
    DispatchResult,
    Dispatcher,
    DispatcherStats,
)

__all__ = [
    "DispatchOutcome",
    "DispatchResult",
    "Dispatcher",
    "DispatcherStats",
]
