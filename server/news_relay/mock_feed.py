"""
Mock news feed for running the relay without the upstream WebSocket.

Generates raw payloads in the upstream wire format and fires them through
the same event callback as FeedConnection. Some frames are deliberate
re-sends of an earlier story (exercising dedup) and a few are missing
required fields (exercising the malformed-event path).

Usage:
    python -m news_relay.main --mock
"""
from __future__ import annotations

import asyncio
import random
import time
import zlib
from typing import Awaitable, Callable

from news_relay.models.news import RawEvent

HEADLINES: list[tuple[str, tuple[str, ...]]] = [
    # (headline, coins_included)
    ("SEC files lawsuit against Uniswap Labs for operating unregistered exchange", ("UNI",)),
    ("BlackRock Bitcoin ETF sees $2.1B single-day inflow — largest ever", ("BTC",)),
    ("Ethereum breaks $8,200 on record DeFi inflows", ("ETH",)),
    ("Solana TVL hits $28B as traders migrate from centralized exchanges", ("SOL",)),
    ("Tether treasury mints $2B USDT in 24 hours", ("USDT",)),
    ("Binance announces listing of three new perpetual pairs", ("ARB", "OP", "TIA")),
    ("Bridge exploit drains $40M from cross-chain protocol", ("ETH", "BNB")),
    ("Ripple wins SEC appeal — XRP surges 28% in one hour", ("XRP",)),
    ("MicroStrategy announces additional $1.5B Bitcoin purchase", ("BTC", "MSTR")),
    ("Major exchange pauses withdrawals citing wallet maintenance", ()),
    ("Fed minutes show officials split on pace of cuts", ()),
    ("Coinbase reports 3x surge in institutional trading volume", ("COIN",)),
    ("DOGE, SHIB, PEPE, WIF and BONK rally as memecoin volume doubles", ("DOGE", "SHIB", "PEPE", "WIF", "BONK")),
    ("Circle pauses USDC redemptions for 4 hours citing banking partner issues", ("USDC",)),
    ("Hong Kong regulator approves two more retail crypto platforms", ()),
]

SOURCES = ["BWENEWS", "Twitter", "Telegram", "Reuters", "Bloomberg"]


def make_payload(headline: str, coins: tuple[str, ...]) -> RawEvent:
    slug = zlib.crc32(headline.encode("utf-8")) % 1_000_000
    return {
        "source_name": random.choice(SOURCES),
        "news_title": headline,
        "coins_included": list(coins),
        "url": f"https://example.com/news/{slug}",
        "timestamp": int(time.time()),
    }


async def run_mock_feed(
    callback: Callable[[RawEvent], Awaitable[None]],
    *,
    interval_range: tuple[float, float] = (0.5, 3.0),
    duplicate_rate: float = 0.15,
    malformed_rate: float = 0.05,
    shutdown: asyncio.Event | None = None,
) -> None:
    """Fire random payloads through the callback at realistic intervals."""
    pool = list(HEADLINES)
    random.shuffle(pool)
    idx = 0
    previous: RawEvent | None = None

    while shutdown is None or not shutdown.is_set():
        roll = random.random()
        if previous is not None and roll < duplicate_rate:
            payload = dict(previous)
        elif roll < duplicate_rate + malformed_rate:
            payload = {"source_name": "BWENEWS", "news_title": "Truncated frame"}
        else:
            headline, coins = pool[idx % len(pool)]
            idx += 1
            if idx >= len(pool):
                random.shuffle(pool)
                idx = 0
            payload = make_payload(headline, coins)
            previous = payload

        await callback(payload)

        delay = random.uniform(*interval_range)
        try:
            if shutdown:
                await asyncio.wait_for(shutdown.wait(), timeout=delay)
                break
            else:
                await asyncio.sleep(delay)
        except asyncio.TimeoutError:
            pass
