"""Binance ticker subscriptions with a REST polling fallback."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import httpx

from streamfeed.config.settings import get_settings
from streamfeed.stream.subscription import PollFunction, ResultCallback

if TYPE_CHECKING:
    from streamfeed.stream.client import StreamClient, SubscriptionHandle

TICKER_MARKER = "@ticker"
TICKER_24HR_PATH = "/api/v3/ticker/24hr"


def is_ticker_message(message: Any) -> bool:
    """Combined-stream envelope for a ticker stream, e.g. ``btcusdt@ticker``."""
    if not isinstance(message, dict):
        return False
    stream = message.get("stream")
    return isinstance(stream, str) and TICKER_MARKER in stream


def subscribe_ticker_batch(
    client: StreamClient,
    streams: Sequence[str],
    callback: ResultCallback,
    fallback_fetch: PollFunction | None = None,
) -> SubscriptionHandle:
    """
    Subscribe to a batch of ticker streams.

    Args:
        client: Stream client carrying the subscription
        streams: Stream names, e.g. ``["btcusdt@ticker", "ethusdt@ticker"]``
        callback: Receives ``(error, None)`` or ``(None, message)``
        fallback_fetch: Poll function used while the client is degraded

    Returns:
        Handle whose call unsubscribes the batch
    """
    streams = list(streams)
    return client.subscribe(
        {"method": "SUBSCRIBE", "params": streams},
        callback,
        is_ticker_message,
        fallback_fetch,
        unsubscribe_params={"method": "UNSUBSCRIBE", "params": streams},
    )


class RestTickerFetcher:
    """
    Polling fallback that reads 24hr tickers over REST.

    Returns a message shaped like the combined-stream envelope so the same
    predicate accepts it.  HTTP failures raise ``httpx.HTTPError``, which the
    poller reports to the subscriber as ``(error, None)``.
    """

    def __init__(
        self,
        symbols: Sequence[str],
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        if not symbols:
            raise ValueError("RestTickerFetcher needs at least one symbol")
        self._symbols = [symbol.upper() for symbol in symbols]
        self._base_url = base_url or get_settings().rest_base_url
        self._http_client = http_client
        self._timeout = timeout

    @property
    def stream_name(self) -> str:
        return ",".join(f"{symbol.lower()}{TICKER_MARKER}" for symbol in self._symbols)

    async def __call__(self) -> dict[str, Any]:
        params = {"symbols": json.dumps(self._symbols, separators=(",", ":"))}
        if self._http_client is not None:
            response = await self._http_client.get(f"{self._base_url}{TICKER_24HR_PATH}", params=params)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as http_client:
                response = await http_client.get(f"{self._base_url}{TICKER_24HR_PATH}", params=params)
        response.raise_for_status()
        return {"stream": self.stream_name, "data": response.json()}
