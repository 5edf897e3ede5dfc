"""Configuration management for the stream client."""

from streamfeed.config.constants import ConnectionState, Visibility
from streamfeed.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "ConnectionState",
    "Visibility",
]
