"""Subscription registry: id allocation, storage and inbound routing."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any

from loguru import logger

from streamfeed.stream.connection_manager import PendingMessage
from streamfeed.stream.fallback_poller import FallbackPoller
from streamfeed.stream.subscription import (
    PollFunction,
    Predicate,
    ResultCallback,
    Subscription,
    deliver,
)

if TYPE_CHECKING:
    from streamfeed.stream.connection_manager import ConnectionManager


class SubscriptionRegistry:
    """
    All live subscriptions, in insertion order.

    Ids are allocated from a single counter shared with unsubscribe control
    messages, so they are strictly increasing and never reused.
    """

    def __init__(self, connection: ConnectionManager, poll_interval: float = 1.0):
        self._connection = connection
        self._subscriptions: dict[int, Subscription] = {}
        self._next_id = 1
        self.poller = FallbackPoller(
            lookup=self.get,
            is_active=lambda: connection.is_degraded,
            interval=poll_interval,
        )

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __iter__(self) -> Iterator[Subscription]:
        return iter(list(self._subscriptions.values()))

    def __contains__(self, subscription_id: object) -> bool:
        return subscription_id in self._subscriptions

    def _allocate_id(self) -> int:
        subscription_id = self._next_id
        self._next_id += 1
        return subscription_id

    def get(self, subscription_id: int) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    def current_request(self, subscription_id: int) -> dict[str, Any] | None:
        """The request to (re)send for a subscription, or None if it is gone."""
        subscription = self._subscriptions.get(subscription_id)
        return subscription.request if subscription is not None else None

    def subscribe(
        self,
        params: Mapping[str, Any],
        on_result: ResultCallback,
        matches: Predicate,
        poll_fallback: PollFunction | None = None,
    ) -> int:
        """
        Register a subscription and deliver its request.

        Args:
            params: Request fields; ``id`` is added by the registry
            on_result: Called as ``(error, None)`` or ``(None, payload)``
            matches: Decides whether a non-error payload belongs here
            poll_fallback: Coroutine function used while degraded

        Returns:
            The subscription id
        """
        if not isinstance(params, Mapping):
            raise TypeError(f"subscription params must be a mapping, got {type(params).__name__}")

        subscription_id = self._allocate_id()
        request = {**params, "id": subscription_id}
        self._subscriptions[subscription_id] = Subscription(
            id=subscription_id,
            request=request,
            on_result=on_result,
            matches=matches,
            poll_fallback=poll_fallback,
        )

        if self._connection.is_degraded:
            self.poller.start(subscription_id)
        else:
            self._connection.send(request, subscription_id)

        logger.debug(f"[SubscriptionRegistry] subscribed id={subscription_id} (total: {len(self)})")
        return subscription_id

    def unsubscribe(self, subscription_id: int, params: Mapping[str, Any] | None = None) -> bool:
        """
        Remove a subscription.

        Polling for it halts before its next pull and no callback fires for
        it afterwards.  When the connection is open and ``params`` is given,
        an unsubscribe request with a fresh id is sent; no acknowledgment is
        tracked.

        Returns:
            False if the id was not registered
        """
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            logger.debug(f"[SubscriptionRegistry] unsubscribe for unknown id={subscription_id}")
            return False

        subscription.polling_halted = True

        if params is not None and self._connection.is_open:
            self._connection.send({**params, "id": self._allocate_id()})

        logger.debug(f"[SubscriptionRegistry] unsubscribed id={subscription_id} (total: {len(self)})")
        return True

    def dispatch(self, payload: Any) -> None:
        """Fan one decoded inbound payload out to the subscriptions."""
        for subscription in list(self._subscriptions.values()):
            # Removed by an earlier callback in this pass
            if subscription.id not in self._subscriptions:
                continue
            try:
                deliver(subscription, payload)
            except Exception as e:
                logger.error(f"[SubscriptionRegistry] error in subscription {subscription.id} callback: {e}")

    def snapshot(self) -> list[PendingMessage]:
        """Current request of every live subscription, in insertion order."""
        return [PendingMessage(sub.request, sub.id) for sub in self._subscriptions.values()]

    def start_polling_all(self) -> None:
        """Start (or join) fallback polling for every live subscription."""
        started = sum(1 for subscription_id in list(self._subscriptions) if self.poller.start(subscription_id))
        logger.info(
            f"[SubscriptionRegistry] polling fallback active for {started}/{len(self)} subscriptions"
        )
