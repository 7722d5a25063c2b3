"""
News Relay Service Entry Point

Runs the whole relay in a single async event loop:
  - FeedConnection (or the mock feed) pushes raw events into a bounded queue
  - Dispatcher drains the queue: canonicalize → dedup → filtered fan-out
  - TelegramCommandListener handles /start, /filter, /stop, ... commands

Usage:
    cd server
    python -m news_relay.main          # live: upstream feed + Redis + Telegram
    python -m news_relay.main --mock   # mock: fake headlines, in-memory stores, log output
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv(".env")

# Configure logging before importing config (which may fail)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("news_relay")

SHUTDOWN_DRAIN_TIMEOUT = 10.0


async def run(*, use_mock: bool = False) -> None:
    """
    Main entry point - runs the ingestion and fan-out pipeline.

    1. Opens the stores (Redis, or in-memory for --mock)
    2. Starts the dispatcher consuming the feed queue
    3. Starts the Telegram command listener (live only)
    4. Connects to the upstream feed (or starts the mock feed)
    5. On SIGINT/SIGTERM disconnects the feed and drains queued events
    """
    from news_relay.commands import SubscriberCommands
    from news_relay.config import settings
    from news_relay.dispatcher import Dispatcher
    from news_relay.feed_client import FeedConnection
    from news_relay.mock_feed import run_mock_feed
    from news_relay.models import RawEvent
    from news_relay.notifier import (
        LoggingNotifier,
        Notifier,
        TelegramClient,
        TelegramCommandListener,
        TelegramNotifier,
    )
    from news_relay.store import (
        DedupStore,
        InMemoryNewsStore,
        InMemorySubscriberRegistry,
        RedisNewsStore,
        RedisSubscriberRegistry,
        SubscriberRegistry,
        open_redis,
    )

    logger.info("Starting news relay", extra={"mock": use_mock})

    # Resolve config before any client is opened so a bad value leaks nothing
    display_tz = settings.dispatch.tz

    redis: Optional[Any] = None
    telegram: Optional[TelegramClient] = None
    news_store: DedupStore
    registry: SubscriberRegistry
    notifier: Notifier

    if use_mock:
        news_store = InMemoryNewsStore()
        registry = InMemorySubscriberRegistry()
        notifier = LoggingNotifier()

        # Two demo subscribers so filtering is visible in the log
        await registry.upsert("mock-all", "Mock: all coins")
        await registry.upsert("mock-btc", "Mock: BTC/ETH only")
        await registry.set_filter("mock-btc", ["BTC", "ETH"])
    else:
        token = settings.telegram.require_token()
        redis = await open_redis(settings.redis.url)
        news_store = RedisNewsStore(redis, settings.redis.key_prefix)
        registry = RedisSubscriberRegistry(redis, settings.redis.key_prefix)

        telegram = TelegramClient(token, settings.telegram.api_url)
        await telegram.connect()
        notifier = TelegramNotifier(telegram)

    queue: asyncio.Queue[RawEvent] = asyncio.Queue(maxsize=settings.dispatch.queue_size)
    dispatcher = Dispatcher(
        news_store,
        registry,
        notifier,
        send_interval=settings.dispatch.send_interval,
        display_tz=display_tz,
    )

    shutdown_event = asyncio.Event()
    tasks: list[asyncio.Task[None]] = [
        asyncio.create_task(dispatcher.run(queue), name="dispatcher"),
    ]

    if telegram is not None:
        listener = TelegramCommandListener(
            telegram,
            SubscriberCommands(registry),
            poll_timeout=settings.telegram.poll_timeout,
        )
        tasks.append(asyncio.create_task(listener.run(), name="telegram-commands"))

    feed: Optional[FeedConnection] = None
    if use_mock:
        tasks.append(
            asyncio.create_task(
                run_mock_feed(queue.put, shutdown=shutdown_event),
                name="mock-feed",
            )
        )
    else:
        feed = FeedConnection(
            settings.feed.ws_url,
            heartbeat_interval=settings.feed.heartbeat_interval,
            reconnect_delay=settings.feed.reconnect_delay,
        )

        async def handle_error(error: Exception) -> None:
            logger.error("News feed connection error", extra={"error": str(error)})

        async def handle_connected() -> None:
            logger.info("News feed connected, waiting for news")

        async def handle_disconnected() -> None:
            logger.warning("News feed disconnected")

        feed.on_event(queue.put)
        feed.on_error(handle_error)
        feed.on_connected(handle_connected)
        feed.on_disconnected(handle_disconnected)
        await feed.connect()

    def signal_handler() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await shutdown_event.wait()
    finally:
        logger.info("Shutting down...")

        if feed is not None:
            await feed.disconnect()

        # Events already received are dispatched before the consumer stops
        try:
            await asyncio.wait_for(queue.join(), timeout=SHUTDOWN_DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(
                "Shutdown drain timed out",
                extra={"queued_events": queue.qsize()},
            )

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if telegram is not None:
            await telegram.close()
        if redis is not None:
            await redis.aclose()

        stats = dispatcher.stats
        logger.info(
            "Final stats",
            extra={
                "feed_messages": feed.get_stats()["messages_received"] if feed else None,
                "events_received": stats.events_received,
                "events_dispatched": stats.events_dispatched,
                "duplicates": stats.events_duplicate,
                "malformed": stats.events_malformed,
                "aborted": stats.events_aborted,
                "deliveries_ok": stats.deliveries_succeeded,
                "deliveries_failed": stats.deliveries_failed,
            },
        )


def main() -> None:
    from news_relay.config import ConfigurationError
    from news_relay.core.types import StoreUnavailableError

    parser = argparse.ArgumentParser(description="news relay")
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use the mock news feed with in-memory stores and log delivery",
    )
    args = parser.parse_args()

    try:
        asyncio.run(run(use_mock=args.mock))
    except (ConfigurationError, StoreUnavailableError) as e:
        logger.error(f"Startup failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
