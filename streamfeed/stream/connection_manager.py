"""Lifecycle of the single persistent market-data connection.

The ``ConnectionManager`` owns everything about the socket:

1. The **connection state** (``CLOSED`` → ``CONNECTING`` → ``OPEN`` →
   ``RECONNECTING`` / ``DEGRADED``).  Nothing else writes it.
2. The **pending queue** of outbound messages issued while the socket is not
   open.  It is flushed strictly FIFO the moment the socket opens.  Entries
   that belong to a subscription are re-resolved to that subscription's
   current request at flush time, so a subscription removed in the meantime
   is never re-sent.  Every live subscription missing from the queue is
   added before the flush, so each new socket receives each subscription
   request exactly once.
3. The **reconnect budget**.  After an abrupt close a single reconnect is
   scheduled after a fixed delay.  Once ``max_reconnect_attempts`` reconnects
   have failed the manager switches to ``DEGRADED`` and stops reconnecting
   on its own; only an explicit ``reconnect()`` (e.g. the host returning to
   the foreground) tries again.
4. The **activity clock** read by the idle monitor.

Superseded sockets are detached: their late events are ignored, so at most
one connection is ever live.
"""

from __future__ import annotations

import asyncio
import json
import time as _time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from streamfeed.config.constants import ConnectionState
from streamfeed.config.settings import Settings, get_settings
from streamfeed.stream.transport import Transport, TransportFactory, TransportListener, WebSocketTransport


@dataclass(frozen=True, slots=True)
class PendingMessage:
    """An outbound message waiting for the connection to open."""

    message: dict[str, Any]
    subscription_id: int | None = None


class _SocketListener:
    """Forwards one transport's events, tagged with its generation."""

    __slots__ = ("_manager", "_generation")

    def __init__(self, manager: ConnectionManager, generation: int) -> None:
        self._manager = manager
        self._generation = generation

    def on_open(self) -> None:
        self._manager._handle_open(self._generation)

    def on_message(self, raw: str) -> None:
        self._manager._handle_message(self._generation, raw)

    def on_close(self, code: int, reason: str, was_clean: bool) -> None:
        self._manager._handle_close(self._generation, code, reason, was_clean)

    def on_error(self, error: BaseException) -> None:
        self._manager._handle_error(self._generation, error)


class ConnectionManager:
    """Owner of the persistent connection and its reconnection policy.

    Usage::

        manager = ConnectionManager(settings)
        manager.on_frame(registry.dispatch)
        manager.on_degraded(registry.start_polling_all)
        manager.open()

        # Transmitted now if open, otherwise queued until the next open.
        manager.send({"method": "SUBSCRIBE", "params": [...], "id": 1}, subscription_id=1)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport_factory: TransportFactory | None = None,
        clock: Callable[[], float] = _time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport_factory = transport_factory or self._websocket_transport
        self._clock = clock

        self._state = ConnectionState.CLOSED
        self._socket: Transport | None = None
        self._generation = 0

        self._pending: deque[PendingMessage] = deque()
        self._request_resolver: Callable[[int], dict[str, Any] | None] | None = None
        self._subscription_source: Callable[[], list[PendingMessage]] | None = None

        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._reconnect_attempts = 0
        self._hibernating = False
        self._last_activity: float = clock()

        # Listeners
        self._on_connected_callbacks: list[Callable[[bool], None]] = []
        self._on_disconnected_callbacks: list[Callable[[], None]] = []
        self._on_frame_callbacks: list[Callable[[Any], None]] = []
        self._on_degraded_callbacks: list[Callable[[], None]] = []

    def _websocket_transport(self, listener: TransportListener) -> Transport:
        return WebSocketTransport(
            self._settings.ws_url,
            listener,
            connect_timeout=self._settings.connect_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def on_connected(self, callback: Callable[[bool], None]) -> None:
        """Register a callback fired on every open.

        The callback receives ``True`` when the open ends degraded mode.
        """
        self._on_connected_callbacks.append(callback)

    def on_disconnected(self, callback: Callable[[], None]) -> None:
        """Register a callback fired whenever the live socket goes away."""
        self._on_disconnected_callbacks.append(callback)

    def on_frame(self, callback: Callable[[Any], None]) -> None:
        """Register a callback for decoded inbound frames."""
        self._on_frame_callbacks.append(callback)

    def on_degraded(self, callback: Callable[[], None]) -> None:
        """Register a callback fired when the reconnect budget is exhausted."""
        self._on_degraded_callbacks.append(callback)

    def set_request_resolver(self, resolver: Callable[[int], dict[str, Any] | None]) -> None:
        """Set the lookup used to refresh queued subscription requests on flush."""
        self._request_resolver = resolver

    def set_subscription_source(self, source: Callable[[], list[PendingMessage]]) -> None:
        """Set the provider of live subscription requests to replay on every open."""
        self._subscription_source = source

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    @property
    def is_connecting(self) -> bool:
        """A socket exists but has not opened yet."""
        return self._socket is not None and self._state != ConnectionState.OPEN

    @property
    def is_degraded(self) -> bool:
        return self._state == ConnectionState.DEGRADED

    @property
    def is_hibernating(self) -> bool:
        return self._hibernating

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_timer is not None

    @property
    def last_activity(self) -> float:
        return self._last_activity

    @property
    def pending(self) -> list[PendingMessage]:
        """Snapshot of the pending queue, head first."""
        return list(self._pending)

    def touch(self) -> None:
        """Record external activity."""
        self._last_activity = self._clock()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Start a new connection attempt, replacing any existing socket."""
        self._cancel_reconnect_timer()
        self._detach_socket()

        # Polling stays in charge until a resumed socket actually opens
        if self._state != ConnectionState.DEGRADED:
            self._state = ConnectionState.CONNECTING

        logger.info(
            f"[ConnectionManager] connecting to {self._settings.ws_url} "
            f"(reconnect attempt {self._reconnect_attempts}/{self._settings.max_reconnect_attempts})"
        )
        self._socket = self._transport_factory(_SocketListener(self, self._generation))

    def send(self, message: dict[str, Any], subscription_id: int | None = None) -> None:
        """Transmit ``message`` now if open, otherwise queue it for the next open."""
        if self._state == ConnectionState.OPEN and self._socket is not None:
            self._transmit(message)
            return

        self._pending.append(PendingMessage(message, subscription_id))
        logger.debug(
            f"[ConnectionManager] {self._state.value}: queued message id={message.get('id')} "
            f"({len(self._pending)} pending)"
        )

    def reconnect(self) -> None:
        """Schedule one reconnection attempt after the fixed delay."""
        self._cancel_reconnect_timer()
        if self._state != ConnectionState.DEGRADED:
            self._state = ConnectionState.RECONNECTING

        delay = self._settings.reconnect_delay_seconds
        logger.info(f"[ConnectionManager] reconnecting in {delay:.1f}s")
        self._reconnect_timer = asyncio.get_running_loop().call_later(delay, self._attempt_reconnect)

    def close(self) -> None:
        """Caller-initiated shutdown.  Never schedules a reconnect."""
        self._cancel_reconnect_timer()
        had_socket = self._socket is not None
        self._detach_socket()
        self._state = ConnectionState.CLOSED
        if had_socket:
            logger.info("[ConnectionManager] connection closed by client")
            self._fire_disconnected()

    def hibernate(self, pending: Iterable[PendingMessage]) -> None:
        """Close without reconnecting, keeping ``pending`` for the next open.

        Replaces the pending queue with ``pending``.
        """
        self._pending = deque(pending)
        self._hibernating = True
        logger.info(f"[ConnectionManager] hibernating with {len(self._pending)} cached messages")
        self.close()

    def get_status(self) -> dict[str, Any]:
        """Return status for monitoring/health endpoints."""
        return {
            "state": self._state.value,
            "reconnect_attempts": self._reconnect_attempts,
            "max_reconnect_attempts": self._settings.max_reconnect_attempts,
            "reconnect_scheduled": self.reconnect_scheduled,
            "pending_messages": len(self._pending),
            "hibernating": self._hibernating,
            "seconds_since_activity": round(self._clock() - self._last_activity, 1),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _attempt_reconnect(self) -> None:
        self._reconnect_timer = None
        if self._reconnect_attempts >= self._settings.max_reconnect_attempts:
            self._enter_degraded()
            return
        self._reconnect_attempts += 1
        self.open()

    def _enter_degraded(self) -> None:
        logger.error(
            f"[ConnectionManager] connection failed after {self._reconnect_attempts} "
            f"reconnect attempts - switching to polling"
        )
        self._reconnect_attempts = 0
        self._state = ConnectionState.DEGRADED
        if self._pending:
            logger.debug(f"[ConnectionManager] discarding {len(self._pending)} pending messages")
            self._pending.clear()

        for callback in self._on_degraded_callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"[ConnectionManager] error in degraded callback: {e}")

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _detach_socket(self) -> None:
        # Bumping the generation makes the old socket's listener stale
        self._generation += 1
        socket, self._socket = self._socket, None
        if socket is None:
            return
        try:
            socket.close()
        except Exception as e:
            logger.debug(f"[ConnectionManager] error closing socket: {e}")

    def _transmit(self, message: dict[str, Any]) -> None:
        self._socket.send(json.dumps(message))

    def _queue_live_subscriptions(self) -> None:
        # A new socket carries no server-side subscriptions; each live one is
        # replayed once, ahead of whatever was queued during the outage
        if self._subscription_source is None:
            return
        queued = {p.subscription_id for p in self._pending if p.subscription_id is not None}
        missing = [p for p in self._subscription_source() if p.subscription_id not in queued]
        if missing:
            logger.info(f"[ConnectionManager] resubscribing {len(missing)} live subscriptions")
            self._pending.extendleft(reversed(missing))

    def _flush_pending(self) -> None:
        sent = 0
        while self._pending:
            pending = self._pending.popleft()
            message = pending.message
            if pending.subscription_id is not None and self._request_resolver is not None:
                message = self._request_resolver(pending.subscription_id)
                if message is None:
                    logger.debug(
                        f"[ConnectionManager] skipping cached request for removed "
                        f"subscription {pending.subscription_id}"
                    )
                    continue
            self._transmit(message)
            sent += 1
        if sent:
            logger.info(f"[ConnectionManager] sent {sent} cached messages")

    def _fire_disconnected(self) -> None:
        for callback in self._on_disconnected_callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"[ConnectionManager] error in disconnect callback: {e}")

    def _handle_open(self, generation: int) -> None:
        if generation != self._generation:
            return

        resumed = self._state == ConnectionState.DEGRADED
        self._state = ConnectionState.OPEN
        self._hibernating = False
        self._reconnect_attempts = 0
        self._cancel_reconnect_timer()
        self._last_activity = self._clock()
        logger.info("[ConnectionManager] connection open")

        self._queue_live_subscriptions()
        self._flush_pending()

        for callback in self._on_connected_callbacks:
            try:
                callback(resumed)
            except Exception as e:
                logger.error(f"[ConnectionManager] error in connect callback: {e}")

    def _handle_message(self, generation: int, raw: str) -> None:
        if generation != self._generation:
            return

        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.debug(f"[ConnectionManager] non-JSON frame: {str(raw)[:100]}")
            return

        for callback in self._on_frame_callbacks:
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"[ConnectionManager] error in frame callback: {e}")

    def _handle_error(self, generation: int, error: BaseException) -> None:
        if generation != self._generation:
            return
        logger.warning(f"[ConnectionManager] connection error: {error}")

    def _handle_close(self, generation: int, code: int, reason: str, was_clean: bool) -> None:
        if generation != self._generation:
            return

        self._socket = None
        logger.warning(
            f"[ConnectionManager] connection closed with code {code}, "
            f"reason: {reason!r}, wasClean: {was_clean}"
        )
        self._fire_disconnected()
        self.reconnect()
