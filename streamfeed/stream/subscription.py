"""Subscription record and the per-subscription delivery rule."""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from streamfeed.config.constants import ERROR_FIELD

ResultCallback = Callable[[Any, Any], None]
Predicate = Callable[[Any], bool]
PollFunction = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class Subscription:
    """One logical subscription multiplexed over the connection."""

    id: int
    request: dict[str, Any]
    on_result: ResultCallback
    matches: Predicate
    poll_fallback: PollFunction | None = None
    polling_halted: bool = False


def deliver(subscription: Subscription, payload: Any) -> None:
    """Hand one decoded payload to one subscription.

    A payload carrying an ``error`` field is reported as ``(error, None)``
    without consulting the predicate; anything else is reported as
    ``(None, payload)`` only when the predicate accepts it.
    """
    if isinstance(payload, Mapping) and ERROR_FIELD in payload:
        subscription.on_result(payload[ERROR_FIELD], None)
    elif subscription.matches(payload):
        subscription.on_result(None, payload)
