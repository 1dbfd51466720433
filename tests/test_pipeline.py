import math

import pytest

from axechart.channels import Channel
from axechart.config import PipelineConfig, StartupConfig
from axechart.pipeline import CLEAR_SEED_MS, ChartPipeline
from axechart.storage import ChartStorage
from axechart.warmup import WarmupStage

from builders import BASE_MS, STEP_MS, booting_info, healthy_info, make_batch

NOW = BASE_MS + 60_000
HOUR = 3_600_000


def _is_break(pipeline: ChartPipeline, index: int) -> bool:
    return all(math.isnan(pipeline.series.series(c)[index]) for c in Channel)


def _walk_to_ready(pipeline: ChartPipeline, start_ms: int) -> None:
    for offset in (0, 1_400, 2_200, 2_500):
        pipeline.observe_live(start_ms + offset, healthy_info())
    assert pipeline.warmup.stage is WarmupStage.READY


def test_history_import_fills_every_channel(pipeline) -> None:
    assert pipeline.import_history(make_batch(5), importing=True) == 5

    assert pipeline.series.labels == [BASE_MS + i * STEP_MS for i in range(5)]
    assert pipeline.series.series(Channel.HASHRATE_1M)[-1] == pytest.approx(1e12)
    assert pipeline.series.series(Channel.ASIC_TEMP)[-1] == pytest.approx(50.0)
    assert pipeline.hr1m_started


def test_live_poll_alone_does_not_start_1m_series(pipeline) -> None:
    pipeline.import_history(make_batch(3))

    assert all(math.isnan(v) for v in pipeline.series.series(Channel.HASHRATE_1M))
    assert pipeline.series.series(Channel.HASHRATE_10M)[-1] == pytest.approx(1e12)


def test_older_samples_are_ignored(pipeline) -> None:
    pipeline.import_history(make_batch(3, start_offset_ms=10 * STEP_MS), importing=True)
    assert pipeline.import_history(make_batch(3), importing=True) == 0
    assert len(pipeline.series) == 3


def test_history_restart_signature_cuts_the_chart(pipeline) -> None:
    batch = make_batch(5, hr1m=[100_000, 100_000, 0, 0, 100_000], vreg=[5000, 5000, 0, 0, 5000])

    pipeline.import_history(batch, importing=True)

    assert pipeline.series.labels == [BASE_MS, BASE_MS + STEP_MS, BASE_MS + 2 * STEP_MS - 1]
    assert _is_break(pipeline, -1)
    assert pipeline.last_break_ts == BASE_MS + 2 * STEP_MS - 1
    assert pipeline.warmup.stage is WarmupStage.LOCKED
    assert pipeline.last_seen_timestamp_ms == BASE_MS + 4 * STEP_MS


def test_live_restart_then_staged_recovery(pipeline) -> None:
    pipeline.import_history(make_batch(3), importing=True)

    assert pipeline.observe_live(NOW, booting_info()) is WarmupStage.LOCKED

    # Locked: only the break lands
    assert pipeline.import_history(make_batch(2, start_offset_ms=6 * STEP_MS)) == 0
    assert pipeline.series.labels[-1] == BASE_MS + 6 * STEP_MS - 1
    assert _is_break(pipeline, -1)
    assert not pipeline.hr1m_started

    _walk_to_ready(pipeline, NOW + 1_000)
    assert pipeline.startup_unlocked

    assert pipeline.import_history(make_batch(3, start_offset_ms=12 * STEP_MS)) == 3
    assert pipeline.hr1m_started
    assert pipeline.hr1m_start_ts == BASE_MS + 12 * STEP_MS
    assert pipeline.series.series(Channel.HASHRATE_1M)[-1] == pytest.approx(1e12)
    labels = pipeline.series.labels
    assert all(b > a for a, b in zip(labels, labels[1:]))


def test_recovery_below_expected_hashrate_reaches_ready(pipeline) -> None:
    pipeline.import_history(make_batch(3), importing=True)
    pipeline.observe_live(NOW, booting_info())
    pipeline.import_history(make_batch(2, start_offset_ms=6 * STEP_MS))

    # 97% of the rated hashrate, steady for ten minutes
    for i in range(120):
        stage = pipeline.observe_live(NOW + 1_000 + i * STEP_MS, healthy_info(temp=55.0, hashrate=970.0))
    assert stage is WarmupStage.READY
    assert not pipeline.startup_unlocked

    start = NOW + 10 * 60_000 - BASE_MS
    assert pipeline.import_history(make_batch(3, start_offset_ms=start)) == 3
    assert pipeline.series.labels[-1] == BASE_MS + start + 2 * STEP_MS
    assert pipeline.series.series(Channel.ASIC_TEMP)[-1] == pytest.approx(50.0)


def test_reload_is_requested_after_1m_smoothing_window(storage) -> None:
    config = PipelineConfig(startup=StartupConfig(hr1m_reload_after_smooth=True))
    pipeline = ChartPipeline(config, storage)
    pipeline.load_persisted()
    pipeline.import_history(make_batch(3), importing=True)

    pipeline.observe_live(NOW, booting_info())
    pipeline.import_history(make_batch(2, start_offset_ms=6 * STEP_MS))
    _walk_to_ready(pipeline, NOW + 1_000)
    pipeline.import_history(make_batch(3, start_offset_ms=12 * STEP_MS))

    start = BASE_MS + 12 * STEP_MS
    assert pipeline.deferred.pending
    assert not pipeline.poll_deferred(start + config.startup.hr1m_smooth_window_ms - 1)
    assert pipeline.poll_deferred(start + config.startup.hr1m_smooth_window_ms)
    assert pipeline.take_reload_request()
    assert not pipeline.take_reload_request()


def test_commit_persists_and_restores(pipeline, storage) -> None:
    pipeline.import_history(make_batch(4), importing=True)
    pipeline.commit(NOW)

    restored = ChartPipeline(pipeline.config, storage)
    assert restored.load_persisted()
    assert restored.series.labels == pipeline.series.labels
    assert restored.series.series(Channel.VREG_TEMP) == pipeline.series.series(Channel.VREG_TEMP)
    assert restored.hr1m_started
    assert restored.last_seen_timestamp_ms == BASE_MS + 3 * STEP_MS


def test_restored_break_row_is_detected(pipeline, storage) -> None:
    pipeline.import_history(make_batch(3), importing=True)
    pipeline.observe_live(NOW, booting_info())
    pipeline.import_history(make_batch(1, start_offset_ms=6 * STEP_MS))
    pipeline.commit(NOW)

    restored = ChartPipeline(pipeline.config, storage)
    restored.load_persisted()
    assert restored.last_break_ts == BASE_MS + 6 * STEP_MS - 1


def test_commit_trims_to_largest_window(pipeline) -> None:
    pipeline.import_history(make_batch(3), importing=True)
    pipeline.commit(BASE_MS + pipeline.config.zoom.max_window_ms + STEP_MS + 1)
    assert pipeline.series.labels == [BASE_MS + 2 * STEP_MS]


def test_commit_before_load_does_not_persist(config, storage, store) -> None:
    pipeline = ChartPipeline(config, storage)
    pipeline.import_history(make_batch(3), importing=True)
    pipeline.commit(NOW)
    assert storage.keys.chart_data not in store.items


def test_clear_history_blocks_old_device_history(pipeline, storage) -> None:
    pipeline.import_history(make_batch(3), importing=True)
    pipeline.clear_history(NOW)

    assert len(pipeline.series) == 0
    assert pipeline.history_min_timestamp_ms == NOW - CLEAR_SEED_MS
    assert storage.load_min_history_timestamp_ms() == NOW - CLEAR_SEED_MS

    assert pipeline.import_history(make_batch(3), importing=True) == 0
    assert pipeline.import_history(make_batch(2, start_offset_ms=60_000), importing=True) == 2


def test_needs_history_expansion(pipeline) -> None:
    assert not pipeline.needs_history_expansion(NOW)
    pipeline.import_history(make_batch(3), importing=True)
    assert pipeline.needs_history_expansion(NOW)
    assert not pipeline.needs_history_expansion(BASE_MS + pipeline.config.zoom.max_window_ms)


def test_reload_replaces_when_batch_reaches_further_back(pipeline) -> None:
    pipeline.import_history(make_batch(3, start_offset_ms=20 * STEP_MS), importing=True)

    assert pipeline.reload_history(make_batch(25)) == 25
    assert pipeline.series.labels[0] == BASE_MS
    assert len(pipeline.series) == 25


def test_reload_imports_on_top_otherwise(pipeline) -> None:
    pipeline.import_history(make_batch(3), importing=True)

    assert pipeline.reload_history(make_batch(5, start_offset_ms=STEP_MS)) == 4
    assert pipeline.series.labels[0] == BASE_MS
    assert len(pipeline.series) == 6


def test_render_frame_does_not_touch_stored_series(pipeline) -> None:
    pipeline.import_history(make_batch(10), importing=True)
    before = pipeline.series.snapshot()

    first = pipeline.render_frame(NOW)
    second = pipeline.render_frame(NOW)

    assert pipeline.series.labels == before.labels
    assert pipeline.series.data == before.data
    assert first.bounds.hashrate == second.bounds.hashrate
    assert first.bounds.hashrate.min >= 0
    assert first.options["scales"]["y"]["min"] == first.bounds.hashrate.min
    assert first.options["scales"]["x"]["max"] == NOW
    assert first.window_ms == HOUR
    assert first.zoom_label is None
    assert len(first.hashrate_1m.data) == 10


def test_render_frame_zoomed_out(pipeline) -> None:
    pipeline.import_history(make_batch(10), importing=True)
    frame = pipeline.render_frame(NOW, window_ms=10 * HOUR)
    assert frame.window_ms == 3 * HOUR
    assert frame.zoom_label == "3h"
    assert frame.x_min_ms == NOW - 3 * HOUR


def test_render_frame_on_empty_pipeline() -> None:
    frame = ChartPipeline().render_frame(NOW)
    assert frame.bounds.hashrate is None
    assert frame.bounds.temperature is None
    assert frame.visibility == [True, False, False, False, True, True]


def test_observe_live_tracks_reference(pipeline) -> None:
    assert pipeline.observe_live(NOW, healthy_info()) is WarmupStage.READY
    assert pipeline.live_hashrate_hs == pytest.approx(1e12)
    assert pipeline.expected_hashrate_hs == pytest.approx(1e12)


def test_pipeline_without_storage(config) -> None:
    pipeline = ChartPipeline(config, storage=None)
    assert not pipeline.load_persisted()
    pipeline.import_history(make_batch(2), importing=True)
    pipeline.commit(NOW)
    pipeline.clear_history(NOW)
    assert len(pipeline.series) == 0


def test_storage_round_trip_through_sqlite(tmp_path, config) -> None:
    from axechart.storage import SqliteKeyValueStore

    store = SqliteKeyValueStore(str(tmp_path / "chart.db"))
    pipeline = ChartPipeline(config, ChartStorage(store))
    pipeline.load_persisted()
    pipeline.import_history(make_batch(3), importing=True)
    pipeline.commit(NOW)

    restored = ChartPipeline(config, ChartStorage(store))
    assert restored.load_persisted()
    assert len(restored.series) == 3
    store.close()
