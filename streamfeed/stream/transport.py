"""WebSocket transport for the stream client.

One transport object is created per connection attempt, the same way a
browser creates one ``WebSocket`` per connection.  It connects in the
background, reports lifecycle events to a ``TransportListener`` and buffers
outbound frames so that ``send`` can be called synchronously from event
handlers.

Listener contract:
- ``on_open`` fires at most once, after the handshake completes.
- ``on_error`` may fire before ``on_close``.
- ``on_close`` fires exactly once per transport, including when the
  handshake itself fails (code 1006, not clean).
- No event fires synchronously from the transport's constructor.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from typing import Protocol

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from streamfeed.config.constants import CLOSE_ABNORMAL, CLOSE_NORMAL


class TransportListener(Protocol):
    """Receives the events of one transport."""

    def on_open(self) -> None: ...

    def on_message(self, raw: str) -> None: ...

    def on_close(self, code: int, reason: str, was_clean: bool) -> None: ...

    def on_error(self, error: BaseException) -> None: ...


class Transport(Protocol):
    """Duplex text connection."""

    def send(self, text: str) -> None: ...

    def close(self) -> None: ...


TransportFactory = Callable[[TransportListener], Transport]


class WebSocketTransport:
    """Transport backed by the ``websockets`` asyncio client.

    Must be created while an event loop is running.
    """

    def __init__(
        self,
        url: str,
        listener: TransportListener,
        connect_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._listener = listener
        self._connect_timeout = connect_timeout
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._ws = None
        self._closing = False
        self._close_reported = False
        self._close_task: asyncio.Task | None = None
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._on_task_done)

    @property
    def url(self) -> str:
        return self._url

    def send(self, text: str) -> None:
        """Queue a text frame; it is written in order once connected."""
        if self._closing or self._close_reported:
            logger.debug(f"[WebSocketTransport] dropping frame on closed socket: {text[:100]}")
            return
        self._outbox.put_nowait(text)

    def close(self) -> None:
        """Close the socket, or abandon the handshake if still connecting."""
        if self._closing:
            return
        self._closing = True
        if self._ws is not None:
            self._close_task = asyncio.get_running_loop().create_task(self._ws.close())
        else:
            self._task.cancel()

    async def _run(self) -> None:
        code, reason, was_clean = CLOSE_ABNORMAL, "", False
        try:
            async with websockets.connect(
                self._url,
                open_timeout=self._connect_timeout,
                close_timeout=5,
            ) as ws:
                self._ws = ws
                if self._closing:
                    code, reason, was_clean = CLOSE_NORMAL, "closed by client", True
                    return

                self._listener.on_open()
                writer = asyncio.create_task(self._write_loop(ws))
                try:
                    async for message in ws:
                        if isinstance(message, bytes):
                            try:
                                message = message.decode("utf-8")
                            except UnicodeDecodeError:
                                logger.debug(f"[WebSocketTransport] dropping undecodable binary frame: {message[:50]!r}")
                                continue
                        self._listener.on_message(message)
                finally:
                    writer.cancel()
                    with contextlib.suppress(asyncio.CancelledError, ConnectionClosed):
                        await writer

                code = ws.close_code if ws.close_code is not None else CLOSE_NORMAL
                reason = ws.close_reason or ""
                was_clean = True

        except ConnectionClosed as e:
            if e.rcvd is not None:
                code, reason = e.rcvd.code, e.rcvd.reason
            was_clean = isinstance(e, ConnectionClosedOK)

        except asyncio.CancelledError:
            if not self._closing:
                raise
            code, reason, was_clean = CLOSE_NORMAL, "closed by client", True

        except Exception as e:
            logger.debug(f"[WebSocketTransport] {self._url}: {e!r}")
            self._listener.on_error(e)

        finally:
            self._ws = None
            self._report_close(code, reason, was_clean)

    def _report_close(self, code: int, reason: str, was_clean: bool) -> None:
        if self._close_reported:
            return
        self._close_reported = True
        self._listener.on_close(code, reason, was_clean)

    def _on_task_done(self, task: asyncio.Task) -> None:
        # A task cancelled before its first step never runs its finally block
        if task.cancelled():
            self._report_close(CLOSE_NORMAL, "closed by client", True)

    async def _write_loop(self, ws) -> None:
        while True:
            text = await self._outbox.get()
            await ws.send(text)
