"""
Core Type Definitions and Exceptions

Relay-wide exception taxonomy. Every pipeline stage raises one of these
so callers can decide between drop, abort and reconnect without string
matching on messages.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class NewsRelayError(Exception):
    """Base exception for all news relay errors."""

    def __init__(
        self,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class MalformedEventError(NewsRelayError):
    """Raised when a feed payload is missing required fields or has the wrong shape."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        ctx = context or {}
        if field:
            ctx["field"] = field
        if value is not None:
            ctx["value"] = repr(value)[:100]  # Truncate long values
        super().__init__(message, ctx)
        self.field = field
        self.value = value


class ConnectionError(NewsRelayError):
    """Raised when the upstream feed connection fails. Always transient."""

    def __init__(
        self,
        message: str,
        service: str,
        attempt: int = 0,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        ctx = context or {}
        ctx["service"] = service
        ctx["attempt"] = attempt
        super().__init__(message, ctx)
        self.service = service
        self.attempt = attempt


class StoreUnavailableError(NewsRelayError):
    """Raised when the backing store cannot be reached or errors on I/O."""

    def __init__(
        self,
        message: str,
        operation: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        ctx = context or {}
        ctx["operation"] = operation
        super().__init__(message, ctx)
        self.operation = operation


class DeliveryError(NewsRelayError):
    """Raised when a message cannot be delivered to one subscriber."""

    def __init__(
        self,
        message: str,
        subscriber_id: str,
        status: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        ctx = context or {}
        ctx["subscriber_id"] = subscriber_id
        if status is not None:
            ctx["status"] = status
        super().__init__(message, ctx)
        self.subscriber_id = subscriber_id
        self.status = status


class FeedState(str, Enum):
    """Lifecycle states of the upstream feed connection."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"
