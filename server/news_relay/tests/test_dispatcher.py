"""
Tests for news_relay.dispatcher

Runs against the in-memory stores; notifier and store failures are
injected with AsyncMock. Pacing sleeps are replaced so tests stay fast.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from news_relay.core.types import StoreUnavailableError
from news_relay.dispatcher import DispatchOutcome, Dispatcher
from news_relay.feed_client.canonicalizer import canonicalize
from news_relay.store.memory import InMemoryNewsStore, InMemorySubscriberRegistry


def _raw(**overrides):
    raw = {
        "source_name": "X",
        "news_title": "SEC files against Y",
        "coins_included": ["BTC"],
        "url": "http://a",
        "timestamp": 1000,
    }
    raw.update(overrides)
    return raw


class RecordingNotifier:
    """Notifier double: records sends, fails or raises for chosen ids."""

    def __init__(self, failing=(), raising=()) -> None:
        self.failing = set(failing)
        self.raising = set(raising)
        self.sent: list[tuple[str, str]] = []
        self.attempts: list[str] = []

    async def send(self, subscriber_id: str, text: str) -> bool:
        self.attempts.append(subscriber_id)
        if subscriber_id in self.raising:
            raise RuntimeError("transport exploded")
        if subscriber_id in self.failing:
            return False
        self.sent.append((subscriber_id, text))
        return True


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def news_store():
    return InMemoryNewsStore()


@pytest.fixture
def registry():
    return InMemorySubscriberRegistry()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(news_store, registry, notifier):
    d = Dispatcher(news_store, registry, notifier)
    d._sleep = AsyncMock()
    return d


async def _subscribe(registry, subscriber_id, filters=None):
    await registry.upsert(subscriber_id, f"chat {subscriber_id}")
    if filters is not None:
        await registry.set_filter(subscriber_id, filters)


# ── Dedup gate ────────────────────────────────────────────────────────────────

async def test_single_event_single_subscriber(dispatcher, registry, notifier, news_store):
    await _subscribe(registry, "s1")

    result = await dispatcher.handle_raw(_raw())

    assert result.outcome is DispatchOutcome.DISPATCHED
    assert result.delivered == ("s1",)
    assert len(notifier.sent) == 1
    assert "SEC files against Y" in notifier.sent[0][1]

    record = await news_store.get(result.fingerprint)
    assert record.priority == 3
    assert record.delivered_to == ("s1",)


async def test_duplicates_delivered_once(dispatcher, registry, notifier, news_store):
    await _subscribe(registry, "s1")

    outcomes = [(await dispatcher.handle_raw(_raw())).outcome for _ in range(3)]

    assert outcomes == [
        DispatchOutcome.DISPATCHED,
        DispatchOutcome.DUPLICATE,
        DispatchOutcome.DUPLICATE,
    ]
    assert len(notifier.sent) == 1
    assert len(news_store.records) == 1
    assert dispatcher.stats.events_duplicate == 2


async def test_duplicate_from_other_source_is_skipped(dispatcher, registry, notifier):
    await _subscribe(registry, "s1")

    await dispatcher.handle_raw(_raw())
    result = await dispatcher.handle_raw(_raw(source_name="Mirror", coins_included=[]))

    assert result.outcome is DispatchOutcome.DUPLICATE
    assert len(notifier.sent) == 1


async def test_event_with_no_subscribers_is_still_recorded(dispatcher, news_store):
    result = await dispatcher.handle_raw(_raw())

    assert result.outcome is DispatchOutcome.DISPATCHED
    assert result.delivered == ()
    assert await news_store.exists(result.fingerprint)


# ── Filtering ─────────────────────────────────────────────────────────────────

async def test_filters_select_recipients(dispatcher, registry, notifier):
    await _subscribe(registry, "all")
    await _subscribe(registry, "btc", ["BTC"])
    await _subscribe(registry, "sol", ["SOL"])

    result = await dispatcher.handle_raw(_raw(coins_included=["btc", "ETH"]))

    assert result.delivered == ("all", "btc")
    assert result.filtered_out == 1
    assert "sol" not in notifier.attempts


async def test_btc_story_reaches_only_unfiltered_subscriber(
    dispatcher, registry, notifier, news_store
):
    await _subscribe(registry, "all", [])
    await _subscribe(registry, "eth", ["ETH"])

    result = await dispatcher.handle_raw(_raw())

    assert result.delivered == ("all",)
    assert result.filtered_out == 1
    assert notifier.attempts == ["all"]
    assert len(news_store.records) == 1
    assert news_store.records[0].priority == 3


async def test_filtered_subscriber_skips_event_without_coins(dispatcher, registry, notifier):
    await _subscribe(registry, "all")
    await _subscribe(registry, "btc", ["BTC"])

    result = await dispatcher.handle_raw(_raw(coins_included=[]))

    assert result.delivered == ("all",)
    assert notifier.attempts == ["all"]


async def test_inactive_subscribers_are_skipped(dispatcher, registry, notifier):
    await _subscribe(registry, "s1")
    await _subscribe(registry, "s2")
    await registry.deactivate("s2")

    result = await dispatcher.handle_raw(_raw())

    assert result.delivered == ("s1",)
    assert notifier.attempts == ["s1"]


# ── Partial failure ───────────────────────────────────────────────────────────

async def test_failed_delivery_does_not_stop_the_rest(news_store, registry):
    notifier = RecordingNotifier(failing={"s2"}, raising={"s3"})
    dispatcher = Dispatcher(news_store, registry, notifier)
    dispatcher._sleep = AsyncMock()
    for sid in ("s1", "s2", "s3", "s4"):
        await _subscribe(registry, sid)

    result = await dispatcher.handle_raw(_raw())

    assert notifier.attempts == ["s1", "s2", "s3", "s4"]
    assert result.delivered == ("s1", "s4")
    assert result.failed == ("s2", "s3")
    assert dispatcher.stats.deliveries_failed == 2

    record = await news_store.get(result.fingerprint)
    assert record.delivered_to == ("s1", "s4")


async def test_failed_recipient_is_not_retried_on_duplicate(news_store, registry):
    notifier = RecordingNotifier(failing={"s2"})
    dispatcher = Dispatcher(news_store, registry, notifier)
    dispatcher._sleep = AsyncMock()
    await _subscribe(registry, "s1")
    await _subscribe(registry, "s2")

    await dispatcher.handle_raw(_raw())
    notifier.failing.clear()
    await dispatcher.handle_raw(_raw())

    assert notifier.attempts == ["s1", "s2"]


# ── Store failures ────────────────────────────────────────────────────────────

async def test_dedup_store_unavailable_aborts_event(registry, notifier):
    news_store = AsyncMock()
    news_store.insert_if_absent.side_effect = StoreUnavailableError(
        "redis down", operation="insert_if_absent"
    )
    dispatcher = Dispatcher(news_store, registry, notifier)
    await _subscribe(registry, "s1")

    result = await dispatcher.handle_raw(_raw())

    assert result.outcome is DispatchOutcome.ABORTED
    assert notifier.attempts == []
    assert dispatcher.stats.events_aborted == 1


async def test_registry_unavailable_aborts_event(news_store, notifier):
    registry = AsyncMock()
    registry.list_active.side_effect = StoreUnavailableError(
        "redis down", operation="list_active"
    )
    dispatcher = Dispatcher(news_store, registry, notifier)

    result = await dispatcher.handle_raw(_raw())

    assert result.outcome is DispatchOutcome.ABORTED
    assert notifier.attempts == []


async def test_mark_delivered_failure_is_tolerated(registry, notifier):
    news_store = InMemoryNewsStore()
    news_store.mark_delivered = AsyncMock(
        side_effect=StoreUnavailableError("redis down", operation="mark_delivered")
    )
    dispatcher = Dispatcher(news_store, registry, notifier)
    await _subscribe(registry, "s1")

    result = await dispatcher.handle_raw(_raw())

    assert result.outcome is DispatchOutcome.DISPATCHED
    assert result.delivered == ("s1",)


async def test_mark_delivered_skipped_when_nobody_reached(registry):
    news_store = InMemoryNewsStore()
    news_store.mark_delivered = AsyncMock()
    dispatcher = Dispatcher(news_store, registry, RecordingNotifier(failing={"s1"}))
    await _subscribe(registry, "s1")

    await dispatcher.handle_raw(_raw())

    news_store.mark_delivered.assert_not_called()


# ── Pacing ────────────────────────────────────────────────────────────────────

async def test_sends_are_paced(dispatcher, registry):
    for sid in ("s1", "s2", "s3"):
        await _subscribe(registry, sid)

    await dispatcher.handle_raw(_raw())

    assert dispatcher._sleep.await_count == 2
    dispatcher._sleep.assert_awaited_with(0.1)


async def test_filtered_subscribers_do_not_add_pauses(dispatcher, registry):
    await _subscribe(registry, "s1")
    await _subscribe(registry, "sol", ["SOL"])
    await _subscribe(registry, "s2")

    await dispatcher.handle_raw(_raw())

    assert dispatcher._sleep.await_count == 1


async def test_single_delivery_has_no_pause(dispatcher, registry):
    await _subscribe(registry, "s1")

    await dispatcher.handle_raw(_raw())

    dispatcher._sleep.assert_not_called()


# ── Malformed input ───────────────────────────────────────────────────────────

async def test_malformed_raw_event_is_dropped(dispatcher, registry, notifier):
    await _subscribe(registry, "s1")

    result = await dispatcher.handle_raw({"news_title": "no url or timestamp"})

    assert result is None
    assert notifier.attempts == []
    assert dispatcher.stats.events_malformed == 1


async def test_on_canonical_event_accepts_prebuilt_event(dispatcher, registry, notifier):
    await _subscribe(registry, "s1")
    event = canonicalize(_raw())

    result = await dispatcher.on_canonical_event(event)

    assert result.fingerprint == event.fingerprint
    assert notifier.sent == [("s1", event.rendered_text)]


# ── run() ─────────────────────────────────────────────────────────────────────

async def test_run_consumes_queue_in_order(dispatcher, registry, notifier):
    await _subscribe(registry, "s1")
    queue = asyncio.Queue()
    for title in ("first", "second", "third"):
        queue.put_nowait(_raw(news_title=title))

    task = asyncio.create_task(dispatcher.run(queue))
    await asyncio.wait_for(queue.join(), timeout=1.0)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    titles = [
        line.split(" ", 1)[1]
        for _, text in notifier.sent
        for line in text.splitlines()
        if line.startswith("📰")
    ]
    assert titles == ["first", "second", "third"]


async def test_run_survives_unexpected_error(dispatcher, registry, notifier):
    await _subscribe(registry, "s1")
    original = dispatcher.handle_raw
    calls = []

    async def flaky(raw):
        calls.append(raw)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return await original(raw)

    dispatcher.handle_raw = flaky
    queue = asyncio.Queue()
    queue.put_nowait(_raw(news_title="first"))
    queue.put_nowait(_raw(news_title="second"))

    task = asyncio.create_task(dispatcher.run(queue))
    await asyncio.wait_for(queue.join(), timeout=1.0)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert len(calls) == 2
    assert len(notifier.sent) == 1
