import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from axechart.api_client import AxeOSClient
from axechart.config import PipelineConfig
from axechart.history import now_ms
from axechart.monitor import ChartMonitor
from axechart.pipeline import ChartPipeline
from axechart.storage import ChartStorage, MemoryKeyValueStore

from builders import healthy_info, make_batch

# -- api client ----------------------------------------------------------------


async def _with_device(payload, status=200):
    """Serve ``payload`` from /api/system/info and call the client against it."""
    queries = []

    async def handler(request):
        queries.append(dict(request.query))
        if status != 200:
            return web.Response(status=status)
        return web.json_response(payload)

    app = web.Application()
    app.router.add_get("/api/system/info", handler)
    server = TestServer(app)
    await server.start_server()
    try:
        async with AxeOSClient(f"{server.host}:{server.port}", timeout=5) as client:
            try:
                result = await client.get_system_info(1_000, chunk_size=50, span_ms=3_600_000)
            except Exception as e:
                result = e
            healthy = await client.health_check()
    finally:
        await server.close()
    return result, queries, healthy


def test_client_fetches_system_info_with_history_params() -> None:
    payload = {"hashRate": 1000.0, "temp": 60.0, "history": {"timestampBase": 5, "timestamps": [1]}}
    info, queries, healthy = asyncio.run(_with_device(payload))

    assert info.hashRate == 1000.0
    assert info.history.timestamps == [1.0]
    assert queries[0] == {"ts": "1000", "chunk": "50", "span": "3600000"}
    assert queries[1] == {}
    assert healthy


def test_client_raises_on_http_error() -> None:
    error, _, healthy = asyncio.run(_with_device({}, status=500))
    assert isinstance(error, Exception)
    assert not healthy


def test_client_rejects_invalid_payload() -> None:
    error, _, healthy = asyncio.run(_with_device({"hashRate": "fast"}))
    assert isinstance(error, ValueError)
    assert not healthy


def test_client_requires_context_manager() -> None:
    with pytest.raises(RuntimeError):
        asyncio.run(AxeOSClient("127.0.0.1").get_system_info())


# -- monitor -------------------------------------------------------------------


class FakeClient:
    """Stands in for AxeOSClient with fixed history."""

    def __init__(self, batch):
        self.batch = batch
        self.history_calls = 0

    async def get_system_info(self, start_timestamp_ms=None, chunk_size=0, span_ms=None):
        info = healthy_info()
        info.history = self.batch
        return info

    async def get_history(self, start_timestamp_ms, chunk_size=0, span_ms=None):
        self.history_calls += 1
        return self.batch


def _monitor() -> ChartMonitor:
    config = PipelineConfig.from_yaml({"device": "127.0.0.1", "render": {"enabled": False}})
    pipeline = ChartPipeline(config, ChartStorage(MemoryKeyValueStore()))
    pipeline.load_persisted()
    return ChartMonitor(config, pipeline=pipeline)


def test_monitor_requires_device() -> None:
    with pytest.raises(ValueError):
        ChartMonitor(PipelineConfig())


def test_first_poll_syncs_history_then_polls_live() -> None:
    monitor = _monitor()
    batch = make_batch(5, base_ms=now_ms() - 60_000)
    monitor.client = FakeClient(batch)

    async def scenario():
        assert await monitor.poll_once() == 0
        await asyncio.gather(*list(monitor._tasks))
        return await monitor.poll_once()

    imported = asyncio.run(scenario())

    assert imported == 1
    assert len(monitor.pipeline.series) == 5
    # Drain plus one full-window reload (the stored history is short)
    assert monitor.client.history_calls == 2
    assert monitor.last_frame is not None
    assert monitor.last_frame.live_hashrate_hs == pytest.approx(1e12)


def test_load_preferences_applies_stored_legend() -> None:
    monitor = _monitor()
    monitor.pipeline.storage.save_legend_visibility([False, False, True, True, True, False])
    monitor.load_preferences()
    assert monitor.visibility == [True, True, False, False, False, True]
