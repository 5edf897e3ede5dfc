"""Unit tests for idle hibernation and visibility handling."""

import asyncio

import pytest

from streamfeed.config.constants import ConnectionState, Visibility
from streamfeed.stream.client import StreamClient
from streamfeed.stream.connection_manager import PendingMessage


def _ticker(message):
    return "@ticker" in message.get("stream", "")


@pytest.fixture
def client(settings, transports, clock):
    """Client on fake transports and a manual clock."""
    return StreamClient(settings, transports, clock)


class TestIdleCheck:
    """Tests for IdleMonitor.check_idle."""

    @pytest.mark.asyncio
    async def test_not_idle_keeps_connection(self, client, transports, clock):
        """Test the connection stays open below the idle threshold."""
        client.start()
        transports.latest.accept()
        clock.advance(599)

        assert client.idle_monitor.check_idle() is False
        assert client.state == ConnectionState.OPEN
        await client.aclose()

    @pytest.mark.asyncio
    async def test_idle_connection_hibernates(self, client, transports, clock):
        """Test an idle open connection caches every request and closes without reconnecting."""
        client.start()
        transports.latest.accept()
        a = client.subscribe({"method": "SUBSCRIBE", "params": ["btcusdt@ticker"]}, lambda e, p: None, _ticker)
        b = client.subscribe({"method": "SUBSCRIBE", "params": ["ethusdt@ticker"]}, lambda e, p: None, _ticker)
        c = client.subscribe({"method": "SUBSCRIBE", "params": ["bnbusdt@ticker"]}, lambda e, p: None, _ticker)
        c.unsubscribe()
        clock.advance(601)

        assert client.idle_monitor.check_idle() is True

        assert client.connection.pending == [
            PendingMessage({"method": "SUBSCRIBE", "params": ["btcusdt@ticker"], "id": a.id}, a.id),
            PendingMessage({"method": "SUBSCRIBE", "params": ["ethusdt@ticker"], "id": b.id}, b.id),
        ]
        assert transports.latest.closed is True
        assert client.connection.is_hibernating is True
        assert client.connection.reconnect_scheduled is False
        assert client.idle_monitor.is_running is False

        await asyncio.sleep(0.05)
        assert len(transports.transports) == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_idle_check_ignored_when_not_open(self, client, transports, clock):
        """Test a connecting socket is never hibernated."""
        client.start()
        clock.advance(10_000)

        assert client.idle_monitor.check_idle() is False
        assert transports.latest.closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_timer_armed_on_open(self, client, transports):
        """Test the periodic check runs only while connected."""
        client.start()
        assert client.idle_monitor.is_running is False

        transports.latest.accept()
        assert client.idle_monitor.is_running is True

        transports.latest.fail()
        assert client.idle_monitor.is_running is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_periodic_check_hibernates(self, settings, transports, clock, wait_for):
        """Test the armed timer hibernates an idle connection on its own."""
        fast = settings.model_copy(update={"idle_check_interval_seconds": 0.01})
        client = StreamClient(fast, transports, clock)
        client.start()
        transports.latest.accept()

        clock.advance(601)
        await wait_for(lambda: client.connection.is_hibernating)

        assert client.state == ConnectionState.CLOSED
        await client.aclose()


class TestVisibility:
    """Tests for foreground/background signals."""

    @pytest.mark.asyncio
    async def test_background_runs_idle_check(self, client, transports, clock):
        """Test going to the background hibernates an already idle connection."""
        client.start()
        transports.latest.accept()
        clock.advance(601)

        client.handle_visibility(Visibility.BACKGROUND)

        assert client.connection.is_hibernating is True
        await client.aclose()

    @pytest.mark.asyncio
    async def test_foreground_resumes_hibernated_connection(self, client, transports, clock, wait_for):
        """Test returning to the foreground reopens and flushes cached requests."""
        client.start()
        transports.latest.accept()
        sub = client.subscribe({"method": "SUBSCRIBE", "params": ["btcusdt@ticker"]}, lambda e, p: None, _ticker)
        clock.advance(601)
        client.idle_monitor.check_idle()

        clock.advance(5)
        client.handle_visibility("foreground")
        assert client.connection.last_activity == clock.now

        await wait_for(lambda: len(transports.transports) == 2)
        transports.latest.accept()

        assert transports.latest.messages == [
            {"method": "SUBSCRIBE", "params": ["btcusdt@ticker"], "id": sub.id}
        ]
        assert client.connection.pending == []
        assert client.connection.is_hibernating is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_foreground_while_open_does_nothing(self, client, transports):
        """Test a foreground signal on an open connection does not reconnect."""
        client.start()
        transports.latest.accept()

        client.handle_visibility(Visibility.FOREGROUND)

        assert client.connection.reconnect_scheduled is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_foreground_while_connecting_does_nothing(self, client, transports):
        """Test a foreground signal does not start a second connection attempt."""
        client.start()

        client.handle_visibility(Visibility.FOREGROUND)

        assert client.connection.reconnect_scheduled is False
        await client.aclose()

    def test_unknown_visibility_rejected(self, client):
        """Test unknown visibility values raise."""
        with pytest.raises(ValueError):
            client.handle_visibility("minimised")
