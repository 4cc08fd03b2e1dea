"""
Integration tests for the cross-thread route client.

The channel runs in its own worker thread and event loop; the client runs on
the pytest-asyncio loop and talks to it only through messages.

Tests cover:
- Happy path: route command framed, sent and resolved
- Device rejection and not-connected failures surface as typed errors
- Simulate (dev) mode
- Outer deadline expiry followed by a late result
- Status snapshot while a command is in flight
- Reconfiguration while open
- Shutdown fails pending requests and releases the port
- Simulated submits resolve concurrently
"""

import asyncio

import pytest

from conftest import FakeRouter, wait_until
from controller.route_client import RouteClient, RouteResult
from runtime.channel_worker import ChannelWorker
from util.errors import (
    DeviceRejectedError,
    NotConnectedError,
    OuterTimeoutError,
    TransportError,
)


def _client(router: FakeRouter, config, fast_timing, **kwargs) -> RouteClient:
    return RouteClient(config, link_factory=router.factory, **fast_timing, **kwargs)


class TestRouteClient:

    @pytest.mark.asyncio
    async def test_submit_success(self, base_config, fast_timing):
        router = FakeRouter([b"B0312\rDONE\r"])
        async with _client(router, base_config, fast_timing) as client:
            res = await client.submit(3, 12, "B")

        assert isinstance(res, RouteResult)
        assert res.status == "DONE"
        assert "DONE" in res.raw_response
        assert router.writes == [b"B0312\r"]

    @pytest.mark.asyncio
    async def test_submit_rejected_after_retries(self, base_config, fast_timing):
        router = FakeRouter(default_reply=b"ERROR\r")
        async with _client(router, base_config, fast_timing) as client:
            with pytest.raises(DeviceRejectedError):
                await client.submit(1, 2)

        assert len(router.writes) == base_config.max_retries + 1

    @pytest.mark.asyncio
    async def test_two_submits_while_disconnected(self, base_config, fast_timing):
        router = FakeRouter(fail_open=True)
        async with _client(router, base_config, fast_timing) as client:
            results = await asyncio.gather(
                client.submit(1, 1), client.submit(2, 2), return_exceptions=True,
            )

        assert all(isinstance(r, NotConnectedError) for r in results)
        assert router.writes == []

    @pytest.mark.asyncio
    async def test_simulate_mode(self, base_config, fast_timing):
        router = FakeRouter()
        cfg = base_config.with_updates(devMode=True)
        async with _client(router, cfg, fast_timing) as client:
            res = await asyncio.wait_for(client.submit(4, 4), timeout=1.0)
            status = await client.get_status()

        assert res == RouteResult(status="DONE", raw_response="DEV MODE")
        assert router.opened == []
        assert status["connected"] is False
        assert status["simulate"] is True

    @pytest.mark.asyncio
    async def test_outer_timeout_then_late_result_is_dropped(self, base_config, fast_timing):
        router = FakeRouter(reply_delay=0.3)
        cfg = base_config.with_updates(command_timeout_ms=2000)
        async with _client(router, cfg, fast_timing, outer_timeout_s=0.1) as client:
            with pytest.raises(OuterTimeoutError):
                await client.submit(1, 2)
            assert client.pending_count == 0

            # inner attempt keeps running and succeeds later; nothing resolves twice
            await asyncio.sleep(0.4)
            assert client.pending_count == 0

            # channel still serves the next request
            client.outer_timeout_s = 2.0
            res = await client.submit(2, 3)
            assert res.status == "DONE"

        assert router.writes == [b"B0102\r", b"B0203\r"]

    @pytest.mark.asyncio
    async def test_status_answers_while_command_in_flight(self, base_config, fast_timing):
        router = FakeRouter(reply_delay=0.3)
        cfg = base_config.with_updates(command_timeout_ms=2000)
        async with _client(router, cfg, fast_timing) as client:
            pending = asyncio.ensure_future(client.submit(1, 1))
            await wait_until(lambda: len(router.writes) == 1)

            status = await asyncio.wait_for(client.get_status(), timeout=0.2)
            assert status["connected"] is True
            assert status["processing"] is True
            assert status["queue_length"] == 0

            assert (await pending).status == "DONE"

    @pytest.mark.asyncio
    async def test_reconfigure_while_open(self, base_config, fast_timing):
        router = FakeRouter()
        new_cfg = base_config.with_updates(serial_port="/dev/ttyFAKE9", maxInputs=128)
        async with _client(router, base_config, fast_timing) as client:
            await client.submit(1, 1)
            await client.reconfigure(new_cfg)
            res = await client.submit(3, 12)

        assert res.status == "DONE"
        assert router.opened == [base_config, new_cfg]
        assert router.closes == 2  # reconfigure + shutdown
        assert router.writes_by_link == [(0, b"B0101\r"), (1, b"B003012\r")]

    @pytest.mark.asyncio
    async def test_events_stream_connected(self, base_config, fast_timing):
        router = FakeRouter()
        async with _client(router, base_config, fast_timing) as client:
            events = client.events()
            ev = await asyncio.wait_for(events.__anext__(), timeout=1.0)
            assert ev.kind == "connected"

    @pytest.mark.asyncio
    async def test_submit_before_start_raises(self, base_config, fast_timing):
        client = _client(FakeRouter(), base_config, fast_timing)
        with pytest.raises(TransportError):
            await client.submit(1, 1)

    @pytest.mark.asyncio
    async def test_invalid_ids_raise_value_error(self, base_config, fast_timing):
        router = FakeRouter()
        async with _client(router, base_config, fast_timing) as client:
            with pytest.raises(ValueError):
                await client.submit(0, 1)
            with pytest.raises(ValueError):
                await client.submit(1, 99)
        assert router.writes == []

    @pytest.mark.asyncio
    async def test_aclose_fails_pending_requests(self, base_config, fast_timing):
        router = FakeRouter([None])
        cfg = base_config.with_updates(command_timeout_ms=5000)
        client = _client(router, cfg, fast_timing)
        await client.start()

        pending = asyncio.ensure_future(client.submit(1, 1))
        await wait_until(lambda: len(router.writes) == 1)
        await client.aclose()

        with pytest.raises(TransportError) as info:
            await pending
        assert info.value.reason == "channel shutdown"

    @pytest.mark.asyncio
    async def test_simulated_submits_do_not_wait_on_each_other(self, base_config):
        router = FakeRouter()
        cfg = base_config.with_updates(devMode=True)
        timing = {"gap_s": 0.05, "simulated_delay_s": 0.1, "reconnect_delay_s": 0.05}
        async with _client(router, cfg, timing, outer_timeout_s=0.5) as client:
            loop = asyncio.get_running_loop()
            t0 = loop.time()
            results = await asyncio.gather(*(client.submit(1, i) for i in range(1, 9)))
            elapsed = loop.time() - t0

        assert all(r == RouteResult(status="DONE", raw_response="DEV MODE") for r in results)
        assert elapsed < 0.3
        assert router.writes == []

    @pytest.mark.asyncio
    async def test_shutdown_right_after_start_releases_port(self, base_config, fast_timing):
        router = FakeRouter(deferred_open=True)
        async with _client(router, base_config, fast_timing):
            pass

        assert router.ports_held == 0

    @pytest.mark.asyncio
    async def test_submit_after_worker_died_raises_transport_error(self, base_config, fast_timing, monkeypatch):
        router = FakeRouter()
        async with _client(router, base_config, fast_timing) as client:
            def _dead(self, msg):
                raise RuntimeError("Serial worker not ready")

            with monkeypatch.context() as m:
                m.setattr(ChannelWorker, "post", _dead)
                with pytest.raises(TransportError) as info:
                    await client.submit(1, 1)

            assert info.value.reason == "Serial worker not ready"
            assert client.pending_count == 0
