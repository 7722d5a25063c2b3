"""
News Relay Configuration

Centralized configuration. All environment variables MUST be defined here.
No os.getenv() calls allowed elsewhere.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def _optional_env(name: str, default: str = "") -> str:
    """Get an optional environment variable with a default."""
    return os.environ.get(name, default)


def _optional_env_int(name: str, default: int) -> int:
    """Get an optional integer environment variable with a default."""
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Invalid integer value for {name}: {value}")


def _optional_env_float(name: str, default: float) -> float:
    """Get an optional float environment variable with a default."""
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Invalid float value for {name}: {value}")


@dataclass(frozen=True)
class FeedConfig:
    """Upstream news feed WebSocket configuration."""
    ws_url: str = "wss://bwenews-api.bwe-ws.com/ws"
    heartbeat_interval: float = 30.0
    reconnect_delay: float = 5.0


@dataclass(frozen=True)
class RedisConfig:
    """Redis connection configuration for news records and subscribers."""
    url: str = "redis://localhost:6379/0"
    key_prefix: str = "news_relay"


@dataclass(frozen=True)
class TelegramConfig:
    """Telegram Bot API configuration."""
    bot_token: str = ""
    api_url: str = "https://api.telegram.org"
    poll_timeout: int = 30

    def require_token(self) -> str:
        """Return the bot token or raise if the live path has none."""
        if not self.bot_token:
            raise ConfigurationError(
                "Missing required environment variable: BOT_TOKEN\n"
                "Description: Telegram bot token used to deliver news\n"
                "Please set this in your .env file or environment."
            )
        return self.bot_token


@dataclass(frozen=True)
class DispatchConfig:
    """Fan-out pacing and queueing."""
    send_interval_ms: int = 100
    queue_size: int = 1000
    display_timezone: str = "Asia/Shanghai"

    @property
    def send_interval(self) -> float:
        return self.send_interval_ms / 1000.0

    @property
    def tz(self) -> tzinfo:
        try:
            return ZoneInfo(self.display_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown timezone: {self.display_timezone}")


@dataclass(frozen=True)
class Settings:
    """Root configuration container."""
    feed: FeedConfig
    redis: RedisConfig
    telegram: TelegramConfig
    dispatch: DispatchConfig


def _load_settings() -> Settings:
    """Load all settings from environment variables.

    BOT_TOKEN is optional here so that --mock mode works without a .env
    file. The live path calls TelegramConfig.require_token() at startup.
    """
    feed = FeedConfig(
        ws_url=_optional_env("NEWS_FEED_URL", FeedConfig.ws_url),
        heartbeat_interval=_optional_env_float("FEED_HEARTBEAT_INTERVAL", 30.0),
        reconnect_delay=_optional_env_float("FEED_RECONNECT_DELAY", 5.0),
    )

    redis = RedisConfig(
        url=_optional_env("REDIS_URL", RedisConfig.url),
        key_prefix=_optional_env("REDIS_KEY_PREFIX", RedisConfig.key_prefix),
    )

    telegram = TelegramConfig(
        bot_token=_optional_env("BOT_TOKEN", ""),
        api_url=_optional_env("TELEGRAM_API_URL", TelegramConfig.api_url),
        poll_timeout=_optional_env_int("TELEGRAM_POLL_TIMEOUT", 30),
    )

    dispatch = DispatchConfig(
        send_interval_ms=_optional_env_int("DISPATCH_SEND_INTERVAL_MS", 100),
        queue_size=_optional_env_int("DISPATCH_QUEUE_SIZE", 1000),
        display_timezone=_optional_env("DISPLAY_TIMEZONE", "Asia/Shanghai"),
    )

    return Settings(
        feed=feed,
        redis=redis,
        telegram=telegram,
        dispatch=dispatch,
    )


settings = _load_settings()
