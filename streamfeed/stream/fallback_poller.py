"""Pull-based delivery used while the persistent connection is degraded.

Each subscription that supplies a fetch coroutine gets its own asyncio task.
A loop keeps running while its subscription is registered, has not been
halted, and the client is degraded.  Those conditions are checked before
every pull and again when the pull returns, so once a subscription is
removed its callback never fires again, even for a pull that was already in
flight.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from loguru import logger

from streamfeed.stream.subscription import Subscription, deliver


class FallbackPoller:
    """Runs one independent polling loop per subscription."""

    def __init__(
        self,
        lookup: Callable[[int], Subscription | None],
        is_active: Callable[[], bool],
        interval: float = 1.0,
    ) -> None:
        self._lookup = lookup
        self._is_active = is_active
        self._interval = interval
        self._tasks: dict[int, asyncio.Task] = {}

    @property
    def active_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def is_polling(self, subscription_id: int) -> bool:
        task = self._tasks.get(subscription_id)
        return task is not None and not task.done()

    def start(self, subscription_id: int) -> bool:
        """Start polling for a subscription, or join its running loop.

        Returns:
            False if the subscription is unknown or has no fetch function
        """
        subscription = self._lookup(subscription_id)
        if subscription is None or subscription.poll_fallback is None:
            return False

        if self.is_polling(subscription_id):
            return True

        task = asyncio.get_running_loop().create_task(
            self._poll_loop(subscription_id), name=f"poll-{subscription_id}"
        )
        self._tasks[subscription_id] = task
        task.add_done_callback(lambda t: self._forget(subscription_id, t))
        return True

    async def shutdown(self) -> None:
        """Cancel every loop and wait for them to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _current(self, subscription_id: int) -> Subscription | None:
        subscription = self._lookup(subscription_id)
        if subscription is None or subscription.polling_halted or not self._is_active():
            return None
        return subscription

    async def _poll_loop(self, subscription_id: int) -> None:
        logger.info(f"[FallbackPoller] polling started for subscription {subscription_id}")
        while True:
            subscription = self._current(subscription_id)
            if subscription is None:
                break

            try:
                payload = await subscription.poll_fallback()
            except Exception as e:
                if self._current(subscription_id) is None:
                    break
                logger.warning(f"[FallbackPoller] poll failed for subscription {subscription_id}: {e}")
                try:
                    subscription.on_result(e, None)
                except Exception as cb_error:
                    logger.error(f"[FallbackPoller] error in subscription {subscription_id} callback: {cb_error}")
            else:
                if self._current(subscription_id) is None:
                    break
                try:
                    deliver(subscription, payload)
                except Exception as cb_error:
                    logger.error(f"[FallbackPoller] error in subscription {subscription_id} callback: {cb_error}")

            await asyncio.sleep(self._interval)

        logger.info(f"[FallbackPoller] polling stopped for subscription {subscription_id}")

    def _forget(self, subscription_id: int, task: asyncio.Task) -> None:
        if self._tasks.get(subscription_id) is task:
            del self._tasks[subscription_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[FallbackPoller] polling loop {subscription_id} crashed: {task.exception()}")
