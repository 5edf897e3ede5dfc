"""Persistent stream connection, subscriptions and polling fallback."""

from streamfeed.stream.binance import RestTickerFetcher, subscribe_ticker_batch
from streamfeed.stream.client import StreamClient, SubscriptionHandle
from streamfeed.stream.connection_manager import ConnectionManager, PendingMessage
from streamfeed.stream.fallback_poller import FallbackPoller
from streamfeed.stream.idle_monitor import IdleMonitor
from streamfeed.stream.registry import SubscriptionRegistry
from streamfeed.stream.subscription import Subscription
from streamfeed.stream.transport import WebSocketTransport

__all__ = [
    "StreamClient",
    "SubscriptionHandle",
    "ConnectionManager",
    "PendingMessage",
    "SubscriptionRegistry",
    "Subscription",
    "IdleMonitor",
    "FallbackPoller",
    "WebSocketTransport",
    "RestTickerFetcher",
    "subscribe_ticker_batch",
]
