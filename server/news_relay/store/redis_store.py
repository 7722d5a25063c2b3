"""
Redis Store Backend

Persists news records and subscribers in Redis.

Key layout (all under a configurable prefix):
  {prefix}:news:seq                 — INCR counter for record ids
  {prefix}:news:record:{fp}         — JSON record, written with SET NX
  {prefix}:news:delivered:{fp}      — set of subscriber ids delivered to
  {prefix}:subscriber:{id}          — hash: display_name, active, filters, ...
  {prefix}:subscribers:active       — set of active subscriber ids

SET NX gives insert_if_absent its unique-constraint semantics: exactly one
concurrent writer wins per fingerprint. Filters are stored as a JSON list.

Usage:
    redis = await open_redis("redis://localhost:6379/0")
    news_store = RedisNewsStore(redis)
    registry = RedisSubscriberRegistry(redis)
    ...
    await redis.aclose()
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from news_relay.core.types import StoreUnavailableError
from news_relay.models.news import CanonicalEvent, StoredNewsRecord, Subscriber
from news_relay.store.interface import normalize_filters

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "news_relay"


async def open_redis(redis_url: str) -> Redis:
    """
    Open a Redis client and verify it with PING.

    Raises:
        StoreUnavailableError: If Redis cannot be reached.
    """
    redis = Redis.from_url(redis_url, decode_responses=True)
    try:
        await redis.ping()
    except RedisError as exc:
        await redis.aclose()
        raise StoreUnavailableError(
            f"Cannot connect to Redis: {exc}", operation="connect"
        ) from exc
    logger.info("Connected to Redis at %s", redis_url)
    return redis


# ── Encoding ──────────────────────────────────────────────────────────────────

def encode_filters(filters: Iterable[str]) -> str:
    return json.dumps(sorted(normalize_filters(filters)))


def decode_filters(raw: str | None) -> frozenset[str]:
    """Decode the JSON filter list; unreadable values mean match-all."""
    if not raw:
        return frozenset()
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable filter value %r", raw)
        return frozenset()
    if not isinstance(value, list):
        return frozenset()
    return normalize_filters(v for v in value if isinstance(v, str))


def encode_record(record: StoredNewsRecord) -> str:
    return json.dumps(
        {
            "id": record.id,
            "fingerprint": record.fingerprint,
            "source_name": record.source_name,
            "title": record.title,
            "coins": list(record.coins),
            "url": record.url,
            "timestamp": record.origin_timestamp,
            "priority": record.priority,
            "created_at": record.created_at.isoformat(),
        }
    )


def decode_record(raw: str, delivered_to: Iterable[str] = ()) -> StoredNewsRecord:
    data = json.loads(raw)
    return StoredNewsRecord(
        id=int(data["id"]),
        fingerprint=data["fingerprint"],
        source_name=data.get("source_name", ""),
        title=data["title"],
        coins=tuple(data.get("coins", [])),
        url=data["url"],
        origin_timestamp=data["timestamp"],
        priority=int(data["priority"]),
        created_at=datetime.fromisoformat(data["created_at"]),
        delivered_to=tuple(sorted(delivered_to)),
    )


def decode_subscriber(subscriber_id: str, fields: dict[str, Any]) -> Subscriber:
    return Subscriber(
        id=subscriber_id,
        display_name=fields.get("display_name", ""),
        active=fields.get("active") == "1",
        filters=decode_filters(fields.get("filters")),
        created_at=datetime.fromisoformat(fields["created_at"]),
        updated_at=datetime.fromisoformat(fields["updated_at"]),
    )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── News records ──────────────────────────────────────────────────────────────

class RedisNewsStore:
    """DedupStore backed by Redis SET NX."""

    def __init__(self, redis: Redis, prefix: str = DEFAULT_PREFIX) -> None:
        self._redis = redis
        self._prefix = prefix

    def _record_key(self, fingerprint: str) -> str:
        return f"{self._prefix}:news:record:{fingerprint}"

    def _delivered_key(self, fingerprint: str) -> str:
        return f"{self._prefix}:news:delivered:{fingerprint}"

    async def exists(self, fingerprint: str) -> bool:
        try:
            return bool(await self._redis.exists(self._record_key(fingerprint)))
        except RedisError as exc:
            raise StoreUnavailableError(
                f"Redis exists failed: {exc}", operation="exists"
            ) from exc

    async def insert_if_absent(self, event: CanonicalEvent) -> bool:
        try:
            # Ids consumed by losing writers leave gaps; ordering still holds
            record_id = await self._redis.incr(f"{self._prefix}:news:seq")
            record = StoredNewsRecord.from_event(
                int(record_id), event, datetime.now(timezone.utc)
            )
            created = await self._redis.set(
                self._record_key(event.fingerprint),
                encode_record(record),
                nx=True,
            )
        except RedisError as exc:
            raise StoreUnavailableError(
                f"Redis insert failed: {exc}", operation="insert_if_absent"
            ) from exc

        if created:
            logger.debug("Stored record %s for %s", record.id, event.fingerprint)
        return bool(created)

    async def get(self, fingerprint: str) -> StoredNewsRecord | None:
        try:
            raw = await self._redis.get(self._record_key(fingerprint))
            if raw is None:
                return None
            delivered = await self._redis.smembers(self._delivered_key(fingerprint))
        except RedisError as exc:
            raise StoreUnavailableError(
                f"Redis get failed: {exc}", operation="get"
            ) from exc
        return decode_record(raw, delivered)

    async def mark_delivered(self, fingerprint: str, subscriber_ids: Iterable[str]) -> None:
        ids = list(subscriber_ids)
        if not ids:
            return
        try:
            await self._redis.sadd(self._delivered_key(fingerprint), *ids)
        except RedisError as exc:
            raise StoreUnavailableError(
                f"Redis delivery bookkeeping failed: {exc}", operation="mark_delivered"
            ) from exc


# ── Subscribers ───────────────────────────────────────────────────────────────

class RedisSubscriberRegistry:
    """SubscriberRegistry backed by one Redis hash per subscriber."""

    def __init__(self, redis: Redis, prefix: str = DEFAULT_PREFIX) -> None:
        self._redis = redis
        self._prefix = prefix

    def _key(self, subscriber_id: str) -> str:
        return f"{self._prefix}:subscriber:{subscriber_id}"

    @property
    def _active_key(self) -> str:
        return f"{self._prefix}:subscribers:active"

    async def list_active(self) -> list[Subscriber]:
        try:
            ids = sorted(await self._redis.smembers(self._active_key))
            if not ids:
                return []
            async with self._redis.pipeline(transaction=False) as pipe:
                for subscriber_id in ids:
                    pipe.hgetall(self._key(subscriber_id))
                rows = await pipe.execute()
        except RedisError as exc:
            raise StoreUnavailableError(
                f"Redis list_active failed: {exc}", operation="list_active"
            ) from exc

        subscribers = []
        for subscriber_id, fields in zip(ids, rows):
            if not fields:
                logger.warning("Active index references missing subscriber %s", subscriber_id)
                continue
            subscriber = decode_subscriber(subscriber_id, fields)
            if subscriber.active:
                subscribers.append(subscriber)

        subscribers.sort(key=lambda s: (s.created_at, s.id))
        return subscribers

    async def get(self, subscriber_id: str) -> Subscriber | None:
        try:
            fields = await self._redis.hgetall(self._key(subscriber_id))
        except RedisError as exc:
            raise StoreUnavailableError(
                f"Redis get failed: {exc}", operation="get"
            ) from exc
        if not fields:
            return None
        return decode_subscriber(subscriber_id, fields)

    async def upsert(self, subscriber_id: str, display_name: str) -> None:
        key = self._key(subscriber_id)
        now = _now_iso()
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hsetnx(key, "created_at", now)
                pipe.hsetnx(key, "filters", "[]")
                pipe.hset(
                    key,
                    mapping={
                        "display_name": display_name,
                        "active": "1",
                        "updated_at": now,
                    },
                )
                pipe.sadd(self._active_key, subscriber_id)
                await pipe.execute()
        except RedisError as exc:
            raise StoreUnavailableError(
                f"Redis upsert failed: {exc}", operation="upsert"
            ) from exc
        logger.info("Registered subscriber %s (%s)", display_name, subscriber_id)

    async def set_filter(self, subscriber_id: str, coins: Iterable[str]) -> bool:
        key = self._key(subscriber_id)
        try:
            if not await self._redis.exists(key):
                return False
            await self._redis.hset(
                key,
                mapping={"filters": encode_filters(coins), "updated_at": _now_iso()},
            )
        except RedisError as exc:
            raise StoreUnavailableError(
                f"Redis set_filter failed: {exc}", operation="set_filter"
            ) from exc
        return True

    async def deactivate(self, subscriber_id: str) -> bool:
        key = self._key(subscriber_id)
        try:
            if not await self._redis.exists(key):
                return False
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping={"active": "0", "updated_at": _now_iso()})
                pipe.srem(self._active_key, subscriber_id)
                await pipe.execute()
        except RedisError as exc:
            raise StoreUnavailableError(
                f"Redis deactivate failed: {exc}", operation="deactivate"
            ) from exc
        logger.info("Deactivated subscriber %s", subscriber_id)
        return True
