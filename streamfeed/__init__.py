"""Resilient market-data streaming client."""

from streamfeed.config.constants import ConnectionState, Visibility
from streamfeed.stream.client import StreamClient, SubscriptionHandle

__all__ = ["StreamClient", "SubscriptionHandle", "ConnectionState", "Visibility"]

__version__ = "0.1.0"
