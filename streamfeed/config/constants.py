"""Stream client constants and enums."""

from enum import StrEnum


class ConnectionState(StrEnum):
    """Lifecycle state of the persistent connection."""

    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    DEGRADED = "degraded"


class Visibility(StrEnum):
    """Host visibility signal consumed by the idle monitor."""

    FOREGROUND = "foreground"
    BACKGROUND = "background"


# WebSocket close codes (RFC 6455)
CLOSE_NORMAL = 1000
CLOSE_ABNORMAL = 1006

# Field on an inbound payload whose presence marks a failure
ERROR_FIELD = "error"
