"""Public entry point: one client instance owning the whole stream stack."""

from __future__ import annotations

import time as _time
from collections.abc import Callable, Mapping
from typing import Any

from loguru import logger

from streamfeed.config.constants import ConnectionState, Visibility
from streamfeed.config.settings import Settings, get_settings
from streamfeed.stream.connection_manager import ConnectionManager
from streamfeed.stream.idle_monitor import IdleMonitor
from streamfeed.stream.registry import SubscriptionRegistry
from streamfeed.stream.subscription import PollFunction, Predicate, ResultCallback
from streamfeed.stream.transport import TransportFactory


class SubscriptionHandle:
    """Disposer returned by ``StreamClient.subscribe``.

    Pairs the subscription id with the params of its unsubscribe request.
    Calling the handle (or ``unsubscribe()``) removes the subscription;
    repeated calls are no-ops.
    """

    __slots__ = ("_client", "_id", "_unsubscribe_params")

    def __init__(
        self,
        client: StreamClient,
        subscription_id: int,
        unsubscribe_params: Mapping[str, Any] | None = None,
    ) -> None:
        self._client = client
        self._id = subscription_id
        self._unsubscribe_params = unsubscribe_params

    @property
    def id(self) -> int:
        return self._id

    @property
    def unsubscribe_params(self) -> Mapping[str, Any] | None:
        return self._unsubscribe_params

    def unsubscribe(self) -> bool:
        return self._client.unsubscribe(self)

    __call__ = unsubscribe

    def __repr__(self) -> str:
        return f"SubscriptionHandle(id={self._id})"


class StreamClient:
    """
    Resilient streaming-subscription client.

    Multiplexes many subscriptions over one persistent connection, caches
    requests while disconnected, hibernates when idle and falls back to
    per-subscription polling once reconnection has failed repeatedly.

    Usage::

        async with StreamClient() as client:
            handle = client.subscribe(
                {"method": "SUBSCRIBE", "params": ["btcusdt@ticker"]},
                on_ticker,
                lambda msg: "@ticker" in msg.get("stream", ""),
                fallback_fetch=RestTickerFetcher(["BTCUSDT"]),
                unsubscribe_params={"method": "UNSUBSCRIBE", "params": ["btcusdt@ticker"]},
            )
            ...
            handle()

    ``start()`` and ``subscribe()`` must be called from within a running
    event loop.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport_factory: TransportFactory | None = None,
        clock: Callable[[], float] = _time.monotonic,
    ):
        self._settings = settings or get_settings()

        self.connection = ConnectionManager(self._settings, transport_factory, clock)
        self.registry = SubscriptionRegistry(self.connection, self._settings.poll_interval_seconds)
        self.idle_monitor = IdleMonitor(self.connection, self.registry, self._settings, clock)

        self.connection.set_request_resolver(self.registry.current_request)
        self.connection.set_subscription_source(self.registry.snapshot)
        self.connection.on_frame(self.registry.dispatch)
        self.connection.on_connected(self._handle_connected)
        self.connection.on_disconnected(self.idle_monitor.stop)
        self.connection.on_degraded(self.registry.start_polling_all)

    async def __aenter__(self) -> StreamClient:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def is_degraded(self) -> bool:
        return self.connection.is_degraded

    def start(self) -> None:
        """Open the persistent connection."""
        self.connection.open()

    async def aclose(self) -> None:
        """Close the connection and stop every background task."""
        self.connection.close()
        self.idle_monitor.stop()
        await self.registry.poller.shutdown()
        logger.info("[StreamClient] closed")

    def subscribe(
        self,
        params: Mapping[str, Any],
        callback: ResultCallback,
        predicate: Predicate,
        fallback_fetch: PollFunction | None = None,
        unsubscribe_params: Mapping[str, Any] | None = None,
    ) -> SubscriptionHandle:
        """Register a subscription; see ``SubscriptionRegistry.subscribe``."""
        subscription_id = self.registry.subscribe(params, callback, predicate, fallback_fetch)
        return SubscriptionHandle(self, subscription_id, unsubscribe_params)

    def unsubscribe(
        self,
        handle: SubscriptionHandle | int,
        params: Mapping[str, Any] | None = None,
    ) -> bool:
        """Remove a subscription by handle or id.

        A handle supplies its own unsubscribe params unless ``params`` is given.
        """
        if isinstance(handle, SubscriptionHandle):
            if params is None:
                params = handle.unsubscribe_params
            return self.registry.unsubscribe(handle.id, params)
        return self.registry.unsubscribe(handle, params)

    def handle_visibility(self, visibility: Visibility | str) -> None:
        """Forward a host visibility change to the idle monitor."""
        self.idle_monitor.handle_visibility(visibility)

    def get_status(self) -> dict[str, Any]:
        """Connection health plus subscription and polling counts."""
        status = self.connection.get_status()
        status["subscriptions"] = len(self.registry)
        status["polling_subscriptions"] = self.registry.poller.active_count
        status["idle_monitor_running"] = self.idle_monitor.is_running
        return status

    def _handle_connected(self, resumed: bool) -> None:
        self.idle_monitor.start()
        if resumed:
            logger.info("[StreamClient] connection restored after degraded mode, push delivery resumed")
