"""
Feed Event Canonicalizer

Transforms raw feed payloads into CanonicalEvent records: validates the
required fields, derives the dedup fingerprint, scores priority and renders
the subscriber-facing message text.
"""
from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Optional
from zoneinfo import ZoneInfo

from news_relay.core.types import MalformedEventError
from news_relay.models.news import CanonicalEvent, RawEvent, Timestamp

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = ZoneInfo("Asia/Shanghai")

# Matched as case-insensitive substrings of the title
HIGH_PRIORITY_KEYWORDS: tuple[str, ...] = (
    "SEC", "监管", "regulation", "hack", "黑客", "exploit",
    "Bitcoin", "BTC", "Ethereum", "ETH", "上市", "listing",
    "breaking", "突发", "重大", "major",
)

MAX_COIN_BONUS = 3

# Keeps ("a1", 0) and ("a", 10) from hashing the same input
_FINGERPRINT_SEPARATOR = "\x1f"

# Entity delimiters of Telegram legacy Markdown
_MARKDOWN_SPECIAL = ("_", "*", "`", "[")


def _normalize_timestamp(value: Any) -> Timestamp:
    """
    Validate a feed timestamp (epoch seconds).

    Raises:
        MalformedEventError: If the value is missing or not a real number
    """
    if value is None:
        raise MalformedEventError("Missing required field: timestamp", field="timestamp")
    # bool is an int subclass but never a valid timestamp
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedEventError(
            f"Expected numeric timestamp, got {type(value).__name__}",
            field="timestamp",
            value=value,
        )
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise MalformedEventError("Timestamp is not finite", field="timestamp", value=value)
        if value.is_integer():
            return int(value)
    return value


def _require_str(raw: RawEvent, key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedEventError(
            f"Missing or empty required field: {key}",
            field=key,
            value=value,
        )
    return value.strip()


def _extract_coins(raw: RawEvent) -> tuple[str, ...]:
    """
    Extract coin tickers, de-duplicated case-insensitively in feed order.

    A missing or null coins_included is an empty list; anything other than a
    list of strings is malformed.
    """
    coins = raw.get("coins_included")
    if coins is None:
        return ()
    if not isinstance(coins, list):
        raise MalformedEventError(
            f"Expected list for coins_included, got {type(coins).__name__}",
            field="coins_included",
            value=coins,
        )

    seen: set[str] = set()
    result: list[str] = []
    for coin in coins:
        if not isinstance(coin, str):
            raise MalformedEventError(
                "coins_included must contain only strings",
                field="coins_included",
                value=coin,
            )
        coin = coin.strip()
        if not coin or coin.upper() in seen:
            continue
        seen.add(coin.upper())
        result.append(coin)
    return tuple(result)


def compute_fingerprint(title: str, timestamp: Timestamp, url: str) -> str:
    """
    Deterministic dedup key over (title, timestamp, url).

    Returns a 32-character lowercase hex MD5 digest.
    """
    content = _FINGERPRINT_SEPARATOR.join((title, str(timestamp), url))
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def calculate_priority(title: str, coins: tuple[str, ...]) -> int:
    """
    Score an event: base 1, +1 for a keyword hit, +1 per coin up to 3.

    Never raises; the minimum score is 1.
    """
    priority = 1

    lowered = (title or "").lower()
    for keyword in HIGH_PRIORITY_KEYWORDS:
        if keyword.lower() in lowered:
            priority += 1
            break

    priority += min(len(coins or ()), MAX_COIN_BONUS)
    return priority


def escape_markdown(text: str) -> str:
    """Backslash-escape legacy Markdown delimiters so *text* renders literally."""
    for char in _MARKDOWN_SPECIAL:
        text = text.replace(char, f"\\{char}")
    return text


def format_timestamp(timestamp: Timestamp, tz: tzinfo = DEFAULT_TIMEZONE) -> str:
    """Format epoch seconds as 'YYYY-MM-DD HH:MM' in *tz*."""
    dt = datetime.fromtimestamp(timestamp, tz=timezone.utc).astimezone(tz)
    return dt.strftime("%Y-%m-%d %H:%M")


def render_message(
    title: str,
    coins: tuple[str, ...],
    url: str,
    timestamp: Timestamp,
    tz: tzinfo = DEFAULT_TIMEZONE,
) -> str:
    """
    Render the Markdown text sent to subscribers.

    The coin line is omitted when no coins are tagged. Title and coin tags
    are escaped; the url is inserted as is.
    """
    lines = ["🚨 *AlphaNews* Flash", "", f"📰 {escape_markdown(title)}", ""]

    if coins:
        tags = " ".join(f"#{escape_markdown(coin)}" for coin in coins)
        lines.extend([f"🪙 Coins: {tags}", ""])

    lines.append(f"🔗 [Details]({url})")
    lines.append(f"⏰ {format_timestamp(timestamp, tz)}")
    return "\n".join(lines)


def canonicalize(raw: RawEvent, tz: Optional[tzinfo] = None) -> CanonicalEvent:
    """
    Transform a single raw feed payload into a CanonicalEvent.

    Args:
        raw: Decoded JSON object from the feed
        tz: Display timezone for the rendered timestamp

    Returns:
        Canonical event with fingerprint, priority and rendered text

    Raises:
        MalformedEventError: If required fields are missing or malformed
    """
    if not isinstance(raw, dict):
        raise MalformedEventError(
            f"Expected dict, got {type(raw).__name__}",
            field="message",
            value=raw,
        )

    title = _require_str(raw, "news_title")
    url = _require_str(raw, "url")
    timestamp = _normalize_timestamp(raw.get("timestamp"))
    coins = _extract_coins(raw)

    source_name = raw.get("source_name")
    if not isinstance(source_name, str):
        source_name = ""

    try:
        rendered = render_message(title, coins, url, timestamp, tz or DEFAULT_TIMEZONE)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedEventError(
            "Timestamp out of range",
            field="timestamp",
            value=timestamp,
        ) from e

    return CanonicalEvent(
        source_name=source_name,
        title=title,
        coins=coins,
        url=url,
        origin_timestamp=timestamp,
        fingerprint=compute_fingerprint(title, timestamp, url),
        priority=calculate_priority(title, coins),
        rendered_text=rendered,
    )
