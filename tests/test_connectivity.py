"""Tests for the connectivity monitor and probe."""

import asyncio

import httpx
import pytest

from studio_sync.connectivity.monitor import ConnectivityMonitor
from studio_sync.connectivity.probe import ConnectivityProbe


class TestConnectivityMonitor:
    """Tests for ConnectivityMonitor."""

    def test_initial_state(self) -> None:
        monitor = ConnectivityMonitor(initially_online=False)
        assert monitor.is_online is False
        assert monitor.recently_recovered is False

        assert ConnectivityMonitor().is_online is True

    @pytest.mark.asyncio
    async def test_recovery_flag_expires(self) -> None:
        """recently_recovered drops back after the recovery window."""
        monitor = ConnectivityMonitor(initially_online=False, recovery_window=0.05)
        monitor.set_online()
        assert monitor.is_online is True
        assert monitor.recently_recovered is True

        await asyncio.sleep(0.15)
        assert monitor.is_online is True
        assert monitor.recently_recovered is False

    @pytest.mark.asyncio
    async def test_going_offline_clears_recovery(self) -> None:
        monitor = ConnectivityMonitor(initially_online=False, recovery_window=10)
        monitor.set_online()
        monitor.set_offline()
        assert monitor.is_online is False
        assert monitor.recently_recovered is False

    @pytest.mark.asyncio
    async def test_flap_restarts_window(self) -> None:
        """A second recovery measures the window from the latest event."""
        monitor = ConnectivityMonitor(initially_online=False, recovery_window=0.3)
        monitor.set_online()
        await asyncio.sleep(0.2)
        monitor.set_offline()
        monitor.set_online()
        await asyncio.sleep(0.15)
        assert monitor.recently_recovered is True

        await asyncio.sleep(0.3)
        assert monitor.recently_recovered is False

    @pytest.mark.asyncio
    async def test_online_while_online_is_ignored(self) -> None:
        calls = []
        monitor = ConnectivityMonitor(initially_online=True)
        monitor.subscribe(lambda: calls.append("online"))
        monitor.set_online()
        assert calls == []
        assert monitor.recently_recovered is False

    @pytest.mark.asyncio
    async def test_listeners_notified_per_recovery(self) -> None:
        calls = []

        async def on_online() -> None:
            calls.append("async")

        monitor = ConnectivityMonitor(initially_online=False, recovery_window=0.01)
        monitor.subscribe(lambda: calls.append("sync"))
        monitor.subscribe(on_online)

        monitor.set_online()
        monitor.set_offline()
        monitor.set_online()
        await monitor.wait_listeners()
        monitor.close()

        assert calls.count("sync") == 2
        assert calls.count("async") == 2

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self) -> None:
        calls = []

        def broken() -> None:
            raise RuntimeError("listener bug")

        monitor = ConnectivityMonitor(initially_online=False, recovery_window=0.01)
        monitor.subscribe(broken)
        monitor.subscribe(lambda: calls.append("ok"))
        monitor.set_online()
        monitor.close()

        assert calls == ["ok"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self) -> None:
        calls = []

        def listener() -> None:
            calls.append("online")

        monitor = ConnectivityMonitor(initially_online=False, recovery_window=0.01)
        monitor.subscribe(listener)
        monitor.unsubscribe(listener)
        monitor.set_online()
        monitor.close()
        assert calls == []


class TestConnectivityProbe:
    """Tests for ConnectivityProbe."""

    @pytest.mark.asyncio
    async def test_reachable_marks_online(self) -> None:
        """Any HTTP answer counts as reachable, even an error status."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        monitor = ConnectivityMonitor(initially_online=False, recovery_window=0.01)
        probe = ConnectivityProbe(monitor, "https://service.test", client=client)

        assert await probe.check_once() is True
        assert monitor.is_online is True
        monitor.close()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_failure_marks_offline(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monitor = ConnectivityMonitor(initially_online=True)
        probe = ConnectivityProbe(monitor, "https://service.test", client=client)

        assert await probe.check_once() is False
        assert monitor.is_online is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request.method)
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monitor = ConnectivityMonitor(initially_online=False, recovery_window=0.01)
        probe = ConnectivityProbe(monitor, "https://service.test", interval=0.01, client=client)

        probe.start()
        assert probe.running
        await asyncio.sleep(0.05)
        await probe.stop()

        assert not probe.running
        assert requests and set(requests) == {"HEAD"}
        assert monitor.is_online is True
        monitor.close()
        await client.aclose()
