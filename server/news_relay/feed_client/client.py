"""
News Feed WebSocket Client

Long-lived WebSocket connection to the upstream news feed with an
application-level heartbeat and fixed-delay reconnection.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from news_relay.core.types import ConnectionError, FeedState
from news_relay.models.news import RawEvent

logger = logging.getLogger(__name__)

# Literal tokens of the upstream liveness protocol
HEARTBEAT_PROBE = "ping"
LIVENESS_REPLY = "pong"

DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_RECONNECT_DELAY = 5.0

# Type aliases for callbacks
EventCallback = Callable[[RawEvent], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]
StateCallback = Callable[[], Awaitable[None]]
Connector = Callable[..., Awaitable[Any]]


class FeedConnection:
    """
    WebSocket client for the upstream real-time news feed.

    State machine:
        IDLE -> CONNECTING -> OPEN -> (CLOSED -> RECONNECTING -> CONNECTING)*

    DISCONNECTED is only entered through disconnect(). Reconnection uses a
    fixed delay and at most one reconnect timer is pending at any time.
    """

    def __init__(
        self,
        ws_url: str,
        *,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        close_timeout: float = 5.0,
        connector: Connector = connect,
    ) -> None:
        """
        Initialize the client.

        Args:
            ws_url: Upstream WebSocket URL
            heartbeat_interval: Seconds between liveness probes while open
            reconnect_delay: Fixed delay before a reconnect attempt (seconds)
            close_timeout: Timeout for the close handshake (seconds)
            connector: Coroutine factory opening the transport
        """
        self._ws_url = ws_url
        self._heartbeat_interval = heartbeat_interval
        self._reconnect_delay = reconnect_delay
        self._close_timeout = close_timeout
        self._connector = connector

        # Connection state
        self._state = FeedState.IDLE
        self._ws: Optional[Any] = None

        # Observers
        self._event_callbacks: list[EventCallback] = []
        self._error_callbacks: list[ErrorCallback] = []
        self._connected_callbacks: list[StateCallback] = []
        self._disconnected_callbacks: list[StateCallback] = []

        # Stats
        self._messages_received = 0
        self._malformed_messages = 0
        self._heartbeats_sent = 0
        self._reconnect_attempts = 0
        self._last_message_time: Optional[datetime] = None
        self._connection_start_time: Optional[datetime] = None

        # Task management
        self._receive_task: Optional[asyncio.Task[None]] = None
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def connected(self) -> bool:
        """Check if currently connected."""
        return self._state is FeedState.OPEN and self._ws is not None

    @property
    def reconnect_pending(self) -> bool:
        """True while a reconnect timer is scheduled."""
        return self._reconnect_task is not None

    @property
    def messages_received(self) -> int:
        return self._messages_received

    def on_event(self, callback: EventCallback) -> None:
        """Register callback for incoming raw news events."""
        self._event_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        """Register callback for connection errors."""
        self._error_callbacks.append(callback)

    def on_connected(self, callback: StateCallback) -> None:
        """Register callback fired every time the connection opens."""
        self._connected_callbacks.append(callback)

    def on_disconnected(self, callback: StateCallback) -> None:
        """Register callback fired every time an open connection closes."""
        self._disconnected_callbacks.append(callback)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """
        Establish the WebSocket connection.

        Failures are never raised: they are reported to error observers as
        ConnectionError and a reconnect attempt is scheduled.
        """
        if self._state in (FeedState.CONNECTING, FeedState.OPEN):
            logger.debug("connect() ignored, already %s", self._state.value)
            return

        # An explicit connect supersedes any pending reconnect timer
        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        self._state = FeedState.CONNECTING
        logger.info("Connecting to news feed", extra={"url": self._ws_url})

        try:
            ws = await self._connector(
                self._ws_url,
                ping_interval=None,
                close_timeout=self._close_timeout,
            )
        except Exception as e:
            error = ConnectionError(
                f"Failed to connect: {e}",
                service="news_feed",
                attempt=self._reconnect_attempts,
            )
            logger.warning(
                "Connection failed",
                extra={"error": str(e), "attempt": self._reconnect_attempts},
            )
            await self._emit_error(error)
            # disconnect() may have run while the handshake was pending
            if self._state is FeedState.CONNECTING:
                self._state = FeedState.CLOSED
                self._schedule_reconnect()
            return

        if self._state is not FeedState.CONNECTING:
            logger.info("Connection opened after disconnect, closing it")
            await self._close_transport(ws)
            return

        self._ws = ws
        self._state = FeedState.OPEN
        self._connection_start_time = datetime.now(timezone.utc)
        logger.info("Connected to news feed", extra={"url": self._ws_url})

        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(ws))
        self._receive_task = asyncio.create_task(self._receive_loop(ws))

        for callback in list(self._connected_callbacks):
            await self._safe_call(callback, "connected")

    async def disconnect(self) -> None:
        """
        Tear the connection down and stop reconnecting.

        Cancels a pending reconnect timer, stops the heartbeat and closes the
        transport. Safe to call in any state, any number of times.
        """
        was_open = self._state is FeedState.OPEN
        self._state = FeedState.DISCONNECTED

        reconnect_task, self._reconnect_task = self._reconnect_task, None
        await self._cancel_task(reconnect_task)

        heartbeat_task, self._heartbeat_task = self._heartbeat_task, None
        await self._cancel_task(heartbeat_task)

        receive_task, self._receive_task = self._receive_task, None
        await self._cancel_task(receive_task)

        ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_transport(ws)

        if was_open:
            for callback in list(self._disconnected_callbacks):
                await self._safe_call(callback, "disconnected")

        logger.info(
            "Disconnected from news feed",
            extra={"messages_received": self._messages_received},
        )

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _receive_loop(self, ws: Any) -> None:
        """Main receive loop for WebSocket messages."""
        try:
            async for message in ws:
                await self._handle_message(message)
        except ConnectionClosed as e:
            logger.warning(
                f"Connection closed: code={getattr(e.rcvd, 'code', None)}, "
                f"reason={getattr(e.rcvd, 'reason', None)}",
            )
        except Exception as e:
            logger.error(
                "Unexpected error in receive loop",
                extra={"error": str(e)},
                exc_info=True,
            )
            await self._emit_error(
                ConnectionError(
                    f"Receive loop failed: {e}",
                    service="news_feed",
                    attempt=self._reconnect_attempts,
                )
            )

        # Normal end of iteration is also an unexpected close
        if self._ws is ws:
            await self._handle_close(ws)

    async def _handle_close(self, ws: Any) -> None:
        if self._state is not FeedState.OPEN:
            return

        self._state = FeedState.CLOSED
        self._ws = None
        self._receive_task = None
        heartbeat_task, self._heartbeat_task = self._heartbeat_task, None
        if heartbeat_task is not None:
            heartbeat_task.cancel()

        await self._close_transport(ws)
        # disconnect() may have run while the transport was closing
        if self._state is FeedState.CLOSED:
            self._schedule_reconnect()

        for callback in list(self._disconnected_callbacks):
            await self._safe_call(callback, "disconnected")

    async def _heartbeat_loop(self, ws: Any) -> None:
        """Send the liveness probe on a fixed interval while open."""
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            if self._state is not FeedState.OPEN or self._ws is not ws:
                return
            try:
                await ws.send(HEARTBEAT_PROBE)
            except ConnectionClosed:
                # The receive loop observes the close and reconnects
                logger.debug("Heartbeat skipped, connection closing")
                return
            except Exception as e:
                # Closing ends the receive loop, which hands over to reconnect
                logger.warning(
                    "Heartbeat send failed, closing connection",
                    extra={"error": str(e)},
                )
                await self._close_transport(ws)
                return
            self._heartbeats_sent += 1
            logger.debug("Sent heartbeat probe")

    def _schedule_reconnect(self) -> None:
        """Schedule exactly one reconnect attempt after the fixed delay."""
        if self._state is FeedState.DISCONNECTED:
            logger.debug("Reconnect skipped, client disconnected")
            return
        if self._reconnect_task is not None:
            logger.debug("Reconnect already scheduled")
            return

        self._state = FeedState.RECONNECTING
        self._reconnect_attempts += 1
        logger.info(
            "Reconnecting after delay",
            extra={
                "delay_seconds": self._reconnect_delay,
                "attempt": self._reconnect_attempts,
            },
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        self._reconnect_task = None
        if self._state is not FeedState.RECONNECTING:
            return
        await self.connect()

    async def _handle_message(self, message: str | bytes) -> None:
        """
        Handle incoming WebSocket frame.

        Liveness replies are consumed here; anything that does not decode to
        a JSON object is logged and dropped.
        """
        if isinstance(message, bytes):
            try:
                message = message.decode("utf-8")
            except UnicodeDecodeError as e:
                self._malformed_messages += 1
                logger.warning("Dropping non UTF-8 frame", extra={"error": str(e)})
                return

        if message.strip() == LIVENESS_REPLY:
            logger.debug("Received heartbeat reply")
            return

        self._messages_received += 1
        self._last_message_time = datetime.now(timezone.utc)

        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            self._malformed_messages += 1
            logger.warning(
                "Failed to parse message as JSON",
                extra={
                    "error": str(e),
                    "message_preview": message[:200],
                },
            )
            return

        if not isinstance(data, dict):
            self._malformed_messages += 1
            logger.warning(
                "Dropping non-object JSON message",
                extra={"message_preview": message[:200]},
            )
            return

        for callback in list(self._event_callbacks):
            try:
                await callback(data)
            except Exception as e:
                logger.error(
                    "Event callback failed",
                    extra={"error": str(e)},
                    exc_info=True,
                )

    async def _emit_error(self, error: Exception) -> None:
        for callback in list(self._error_callbacks):
            try:
                await callback(error)
            except Exception as callback_error:
                logger.error(
                    "Error callback failed",
                    extra={"error": str(callback_error)},
                )

    async def _safe_call(self, callback: StateCallback, name: str) -> None:
        try:
            await callback()
        except Exception as e:
            logger.error(
                f"{name.capitalize()} callback failed",
                extra={"error": str(e)},
                exc_info=True,
            )

    async def _close_transport(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.warning(
                "Error closing WebSocket",
                extra={"error": str(e)},
            )

    @staticmethod
    async def _cancel_task(task: Optional[asyncio.Task[None]]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def get_stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        uptime_seconds = None
        if self._connection_start_time and self.connected:
            uptime_seconds = (
                datetime.now(timezone.utc) - self._connection_start_time
            ).total_seconds()

        return {
            "state": self._state.value,
            "connected": self.connected,
            "messages_received": self._messages_received,
            "malformed_messages": self._malformed_messages,
            "heartbeats_sent": self._heartbeats_sent,
            "last_message_time": (
                self._last_message_time.isoformat()
                if self._last_message_time
                else None
            ),
            "uptime_seconds": uptime_seconds,
            "reconnect_attempts": self._reconnect_attempts,
        }
