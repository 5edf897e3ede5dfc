"""Idle hibernation and visibility-driven resumption."""

from __future__ import annotations

import asyncio
import time as _time
from collections.abc import Callable
from typing import TYPE_CHECKING

from loguru import logger

from streamfeed.config.constants import Visibility
from streamfeed.config.settings import Settings, get_settings

if TYPE_CHECKING:
    from streamfeed.stream.connection_manager import ConnectionManager
    from streamfeed.stream.registry import SubscriptionRegistry


class IdleMonitor:
    """
    Closes an idle connection and reopens it when the host comes back.

    While the connection is open a periodic check compares the activity
    clock with ``idle_threshold_seconds``.  An idle connection is hibernated:
    every live subscription's request is cached and the socket is closed
    without a reconnect.  A foreground signal reopens it; a background
    signal runs the check immediately.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        registry: SubscriptionRegistry,
        settings: Settings | None = None,
        clock: Callable[[], float] = _time.monotonic,
    ):
        settings = settings or get_settings()
        self._connection = connection
        self._registry = registry
        self._clock = clock
        self._check_interval = settings.idle_check_interval_seconds
        self._idle_threshold = settings.idle_threshold_seconds
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Arm the periodic idle check, replacing any running one."""
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="idle-monitor")

    def stop(self) -> None:
        """Disarm the periodic idle check."""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._check_interval)
            try:
                self.check_idle()
            except Exception as e:
                logger.error(f"[IdleMonitor] idle check failed: {e}")

    def check_idle(self) -> bool:
        """Hibernate the connection if it has been idle too long.

        Returns:
            True if the connection was hibernated
        """
        idle_for = self._clock() - self._connection.last_activity
        logger.debug(
            f"[IdleMonitor] checking idle time: {idle_for:.0f}s idle, "
            f"{len(self._registry)} subscriptions"
        )
        if not self._connection.is_open or idle_for <= self._idle_threshold:
            return False

        logger.info(
            f"[IdleMonitor] connection idle for {idle_for:.0f}s "
            f"(> {self._idle_threshold:.0f}s), hibernating"
        )
        self._connection.hibernate(self._registry.snapshot())
        return True

    def handle_visibility(self, visibility: Visibility | str) -> None:
        """React to the host moving between foreground and background."""
        visibility = Visibility(visibility)

        if visibility == Visibility.BACKGROUND:
            logger.info("[IdleMonitor] host moved to background")
            self.check_idle()
            return

        logger.info("[IdleMonitor] host moved to foreground")
        self._connection.touch()
        if not self._connection.is_open and not self._connection.is_connecting:
            self._connection.reconnect()
