import asyncio
import math

import pytest

from axechart.channels import Channel
from axechart.config import HistoryDrainConfig
from axechart.history import (
    HistoryDrainer,
    decode_history,
    get_history_oldest_timestamp_ms,
    normalize_timestamp_ms,
)
from axechart.models import HistoryBatch

from builders import BASE_MS, RAW_1THS, STEP_MS, make_batch


# -- decoding ------------------------------------------------------------------


def test_decode_converts_units() -> None:
    samples = decode_history(make_batch(2))
    assert [s.timestamp_ms for s in samples] == [BASE_MS, BASE_MS + STEP_MS]
    assert samples[0].value(Channel.HASHRATE_1M) == pytest.approx(1e12)
    assert samples[0].value(Channel.VREG_TEMP) == pytest.approx(50.0)


def test_decode_uses_shortest_array_and_sorts() -> None:
    batch = HistoryBatch(
        timestampBase=BASE_MS,
        timestamps=[10_000, 0, 5_000],
        hashrate_1m=[3, 1, 2],
        hashrate_10m=[0, 0, 0],
        hashrate_1h=[0, 0, 0],
        hashrate_1d=[0, 0],
        vregTemp=[0, 0, 0],
        asicTemp=[0, 0, 0],
    )
    samples = decode_history(batch)
    assert [s.timestamp_ms for s in samples] == [BASE_MS, BASE_MS + 10_000]


def test_decode_drops_bad_timestamps_and_keeps_bad_values_as_nan() -> None:
    batch = HistoryBatch(
        timestampBase=BASE_MS,
        timestamps=[0, None, 10_000],
        hashrate_1m=[RAW_1THS, RAW_1THS, None],
        hashrate_10m=[1, 1, 1],
        hashrate_1h=[1, 1, 1],
        hashrate_1d=[1, 1, 1],
        vregTemp=[1, 1, "x"],
        asicTemp=[1, 1, 1],
    )
    samples = decode_history(batch)
    assert len(samples) == 2
    assert math.isnan(samples[1].value(Channel.HASHRATE_1M))
    assert math.isnan(samples[1].value(Channel.VREG_TEMP))


def test_decode_empty() -> None:
    assert decode_history(None) == []
    assert decode_history(HistoryBatch()) == []


def test_seconds_timestamps_are_scaled() -> None:
    assert normalize_timestamp_ms(1_700_000_000) == 1_700_000_000_000
    assert normalize_timestamp_ms(BASE_MS) == BASE_MS
    assert normalize_timestamp_ms(0) == 0


def test_oldest_timestamp() -> None:
    assert get_history_oldest_timestamp_ms(make_batch(3, start_offset_ms=1000)) == BASE_MS + 1000
    assert get_history_oldest_timestamp_ms(None) is None
    assert get_history_oldest_timestamp_ms(HistoryBatch()) is None


# -- drainer -------------------------------------------------------------------


class FakeDevice:
    """Serves pre-built history chunks and records the requested cursors."""

    def __init__(self, chunks, on_fetch=None):
        self.chunks = list(chunks)
        self.cursors = []
        self.on_fetch = on_fetch

    async def fetch(self, start_ms):
        self.cursors.append(start_ms)
        await asyncio.sleep(0)
        if self.on_fetch is not None:
            self.on_fetch()
        return self.chunks.pop(0) if self.chunks else None


def _clock():
    return BASE_MS + 60_000


def test_drain_follows_chunks_until_short_chunk(pipeline) -> None:
    device = FakeDevice([make_batch(3), make_batch(2, start_offset_ms=3 * STEP_MS)])
    renders = []
    drainer = HistoryDrainer(pipeline, device.fetch, HistoryDrainConfig(chunk_size=3),
                             render=lambda: renders.append(1), clock=_clock)

    total = asyncio.run(drainer.drain(BASE_MS))

    assert total == 5
    assert len(pipeline.series) == 5
    assert device.cursors == [BASE_MS, BASE_MS + 2 * STEP_MS + 1]
    # One throttled render per burst plus the final one
    assert len(renders) == 2
    assert pipeline.storage.load_persisted_state() is not None


def test_drain_stops_when_no_new_data(pipeline) -> None:
    device = FakeDevice([make_batch(3), make_batch(3)])
    drainer = HistoryDrainer(pipeline, device.fetch, HistoryDrainConfig(chunk_size=3), clock=_clock)

    assert asyncio.run(drainer.drain()) == 4
    assert len(device.cursors) == 2


def test_suppressed_drain_renders_once(pipeline) -> None:
    device = FakeDevice([make_batch(3), make_batch(2, start_offset_ms=3 * STEP_MS)])
    renders = []
    cfg = HistoryDrainConfig(chunk_size=3, suppress_chart_updates_during_drain=True)
    drainer = HistoryDrainer(pipeline, device.fetch, cfg, render=lambda: renders.append(1), clock=_clock)

    asyncio.run(drainer.drain())
    assert len(renders) == 1


def test_concurrent_drain_request_is_ignored(pipeline) -> None:
    device = FakeDevice([make_batch(3)])
    drainer = HistoryDrainer(pipeline, device.fetch, clock=_clock)

    async def both():
        return await asyncio.gather(drainer.drain(), drainer.drain())

    first, second = asyncio.run(both())
    assert first == 3
    assert second == 0
    assert len(device.cursors) == 1


def test_stopped_drain_does_not_commit(pipeline, store) -> None:
    drainer = None

    def stop():
        drainer.stop()

    device = FakeDevice([make_batch(3), make_batch(3, start_offset_ms=3 * STEP_MS)], on_fetch=stop)
    drainer = HistoryDrainer(pipeline, device.fetch, HistoryDrainConfig(chunk_size=3), clock=_clock)

    assert asyncio.run(drainer.drain()) == 3
    assert not drainer.running
    assert pipeline.storage.keys.chart_data not in store.items
