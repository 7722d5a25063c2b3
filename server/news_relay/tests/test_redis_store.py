"""
Tests for news_relay.store.redis_store

All Redis I/O is replaced with AsyncMock — no live Redis required.
"""
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from news_relay.core.types import StoreUnavailableError
from news_relay.feed_client.canonicalizer import canonicalize
from news_relay.models.news import StoredNewsRecord
from news_relay.store.redis_store import (
    RedisNewsStore,
    RedisSubscriberRegistry,
    decode_filters,
    decode_record,
    encode_filters,
    encode_record,
    open_redis,
)

NOW = "2024-05-01T12:00:00+00:00"


def _event():
    return canonicalize(
        {
            "source_name": "X",
            "news_title": "SEC files against Y",
            "coins_included": ["BTC"],
            "url": "http://a",
            "timestamp": 1000,
        }
    )


def _subscriber_hash(**overrides):
    fields = {
        "display_name": "Alice",
        "active": "1",
        "filters": "[]",
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return fields


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def pipe():
    """A pipeline mock usable as an async context manager."""
    pipeline = MagicMock()
    pipeline.__aenter__.return_value = pipeline
    pipeline.__aexit__.return_value = False
    pipeline.execute = AsyncMock(return_value=[])
    return pipeline


@pytest.fixture
def mock_redis(pipe):
    redis = AsyncMock()
    redis.pipeline = MagicMock(return_value=pipe)
    return redis


@pytest.fixture
def news_store(mock_redis):
    return RedisNewsStore(mock_redis, prefix="test")


@pytest.fixture
def registry(mock_redis):
    return RedisSubscriberRegistry(mock_redis, prefix="test")


# ── open_redis() ──────────────────────────────────────────────────────────────

async def test_open_redis_pings():
    with patch("news_relay.store.redis_store.Redis") as mock_cls:
        instance = AsyncMock()
        mock_cls.from_url.return_value = instance

        redis = await open_redis("redis://localhost:6379/0")

    assert redis is instance
    mock_cls.from_url.assert_called_once_with(
        "redis://localhost:6379/0", decode_responses=True
    )
    instance.ping.assert_awaited_once()


async def test_open_redis_unreachable_raises_store_unavailable():
    with patch("news_relay.store.redis_store.Redis") as mock_cls:
        instance = AsyncMock()
        instance.ping.side_effect = RedisConnectionError("refused")
        mock_cls.from_url.return_value = instance

        with pytest.raises(StoreUnavailableError) as exc_info:
            await open_redis("redis://localhost:6379/0")

    assert exc_info.value.operation == "connect"
    instance.aclose.assert_awaited_once()


# ── Encoding ──────────────────────────────────────────────────────────────────

class TestEncoding:
    def test_filters_encoded_sorted_and_upper(self):
        assert json.loads(encode_filters(["sol", "BTC"])) == ["BTC", "SOL"]

    @pytest.mark.parametrize("raw", [None, "", "not json", '{"a": 1}'])
    def test_unreadable_filters_match_all(self, raw):
        assert decode_filters(raw) == frozenset()

    def test_decode_filters_skips_non_strings(self):
        assert decode_filters('["btc", 5, null]') == frozenset({"BTC"})

    def test_record_encoding_preserves_fields(self):
        record = StoredNewsRecord.from_event(
            7, _event(), datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        )

        decoded = decode_record(encode_record(record), ["b", "a"])

        assert decoded.id == 7
        assert decoded.fingerprint == record.fingerprint
        assert decoded.coins == ("BTC",)
        assert decoded.priority == 3
        assert decoded.created_at == record.created_at
        assert decoded.delivered_to == ("a", "b")


# ── RedisNewsStore ────────────────────────────────────────────────────────────

class TestRedisNewsStore:
    async def test_insert_uses_set_nx(self, news_store, mock_redis):
        mock_redis.incr.return_value = 42
        mock_redis.set.return_value = True
        event = _event()

        assert await news_store.insert_if_absent(event) is True

        mock_redis.incr.assert_awaited_once_with("test:news:seq")
        key, payload = mock_redis.set.await_args.args
        assert key == f"test:news:record:{event.fingerprint}"
        assert mock_redis.set.await_args.kwargs == {"nx": True}
        assert json.loads(payload)["id"] == 42

    async def test_insert_conflict_returns_false(self, news_store, mock_redis):
        mock_redis.incr.return_value = 43
        mock_redis.set.return_value = None

        assert await news_store.insert_if_absent(_event()) is False

    async def test_insert_redis_error_raises_store_unavailable(self, news_store, mock_redis):
        mock_redis.incr.side_effect = RedisError("down")

        with pytest.raises(StoreUnavailableError) as exc_info:
            await news_store.insert_if_absent(_event())

        assert exc_info.value.operation == "insert_if_absent"

    async def test_exists(self, news_store, mock_redis):
        mock_redis.exists.return_value = 1
        assert await news_store.exists("fp") is True
        mock_redis.exists.assert_awaited_once_with("test:news:record:fp")

    async def test_get_missing_returns_none(self, news_store, mock_redis):
        mock_redis.get.return_value = None

        assert await news_store.get("fp") is None
        mock_redis.smembers.assert_not_called()

    async def test_get_includes_delivery_targets(self, news_store, mock_redis):
        record = StoredNewsRecord.from_event(
            1, _event(), datetime(2024, 5, 1, tzinfo=timezone.utc)
        )
        mock_redis.get.return_value = encode_record(record)
        mock_redis.smembers.return_value = {"s2", "s1"}

        fetched = await news_store.get(record.fingerprint)

        assert fetched.delivered_to == ("s1", "s2")

    async def test_mark_delivered_adds_to_set(self, news_store, mock_redis):
        await news_store.mark_delivered("fp", ["s1", "s2"])
        mock_redis.sadd.assert_awaited_once_with("test:news:delivered:fp", "s1", "s2")

    async def test_mark_delivered_empty_is_noop(self, news_store, mock_redis):
        await news_store.mark_delivered("fp", [])
        mock_redis.sadd.assert_not_called()

    async def test_mark_delivered_error(self, news_store, mock_redis):
        mock_redis.sadd.side_effect = RedisError("down")
        with pytest.raises(StoreUnavailableError):
            await news_store.mark_delivered("fp", ["s1"])


# ── RedisSubscriberRegistry ───────────────────────────────────────────────────

class TestRedisSubscriberRegistry:
    async def test_list_active_empty(self, registry, mock_redis):
        mock_redis.smembers.return_value = set()

        assert await registry.list_active() == []
        mock_redis.pipeline.assert_not_called()

    async def test_list_active_decodes_and_orders(self, registry, mock_redis, pipe):
        mock_redis.smembers.return_value = {"b", "a", "ghost", "paused"}
        # ids are fetched in sorted order: a, b, ghost, paused
        pipe.execute.return_value = [
            _subscriber_hash(display_name="A", created_at="2024-05-02T00:00:00+00:00"),
            _subscriber_hash(display_name="B", filters='["BTC"]'),
            {},
            _subscriber_hash(active="0"),
        ]

        subscribers = await registry.list_active()

        assert [s.id for s in subscribers] == ["b", "a"]
        assert subscribers[0].filters == frozenset({"BTC"})
        assert pipe.hgetall.call_count == 4

    async def test_list_active_error(self, registry, mock_redis):
        mock_redis.smembers.side_effect = RedisError("down")

        with pytest.raises(StoreUnavailableError) as exc_info:
            await registry.list_active()

        assert exc_info.value.operation == "list_active"

    async def test_get_unknown(self, registry, mock_redis):
        mock_redis.hgetall.return_value = {}
        assert await registry.get("nobody") is None

    async def test_get_inactive_subscriber(self, registry, mock_redis):
        mock_redis.hgetall.return_value = _subscriber_hash(active="0")

        subscriber = await registry.get("100")

        assert subscriber.id == "100"
        assert subscriber.active is False

    async def test_upsert_keeps_created_at_and_filters(self, registry, pipe):
        await registry.upsert("100", "Alice")

        # Existing rows keep their creation date and filters
        fields = [call.args[:2] for call in pipe.hsetnx.call_args_list]
        assert fields == [
            ("test:subscriber:100", "created_at"),
            ("test:subscriber:100", "filters"),
        ]
        pipe.hsetnx.assert_any_call("test:subscriber:100", "filters", "[]")
        mapping = pipe.hset.call_args.kwargs["mapping"]
        assert mapping["display_name"] == "Alice"
        assert mapping["active"] == "1"
        assert "filters" not in mapping
        pipe.sadd.assert_called_once_with("test:subscribers:active", "100")
        pipe.execute.assert_awaited_once()

    async def test_upsert_error(self, registry, pipe):
        pipe.execute.side_effect = RedisError("down")
        with pytest.raises(StoreUnavailableError):
            await registry.upsert("100", "Alice")

    async def test_set_filter(self, registry, mock_redis):
        mock_redis.exists.return_value = 1

        assert await registry.set_filter("100", ["eth", "btc"]) is True

        mapping = mock_redis.hset.await_args.kwargs["mapping"]
        assert json.loads(mapping["filters"]) == ["BTC", "ETH"]

    async def test_set_filter_unknown(self, registry, mock_redis):
        mock_redis.exists.return_value = 0

        assert await registry.set_filter("nobody", ["BTC"]) is False
        mock_redis.hset.assert_not_called()

    async def test_deactivate(self, registry, mock_redis, pipe):
        mock_redis.exists.return_value = 1

        assert await registry.deactivate("100") is True

        assert pipe.hset.call_args.kwargs["mapping"]["active"] == "0"
        pipe.srem.assert_called_once_with("test:subscribers:active", "100")

    async def test_deactivate_unknown(self, registry, mock_redis):
        mock_redis.exists.return_value = 0

        assert await registry.deactivate("nobody") is False
        mock_redis.pipeline.assert_not_called()
