"""Chart pipeline: owns the series and every stateful filter in front of it.

Per history batch: decode -> sanitize -> warmup gate -> restart check ->
GraphGuard -> upsert. Rendering works on copies and never touches the
stored series.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .axis_scale import apply_axis_bounds_to_options, compute_chart_scales, compute_x_window
from .channels import ALL_CHANNELS, HASHRATE_CHANNELS, Channel
from .config import PipelineConfig
from .deferred import DeferredAction
from .graph_guard import GraphGuard
from .history import decode_history, get_history_oldest_timestamp_ms
from .models import ComputedAxisBounds, HistoryBatch, SystemInfo
from .sanitizer import NAN, sanitize, to_float
from .series import TimeSeries, find_last_finite
from .smoothing import SmoothedSeries, smooth_hashrate_1m
from .storage import ChartStorage
from .warmup import (
    WarmupMachine,
    WarmupStage,
    should_insert_restart_cut,
    should_start_hr1m_from_history,
    should_unlock_startup,
)
from .zoom import clamp_window_ms, format_zoom_window_label, should_show_zoom_window_label

logger = logging.getLogger(__name__)

CLEAR_SEED_MS = 30_000
REPLACE_MARGIN_MS = 2_000


@dataclass
class RenderFrame:
    """Everything a renderer needs for one frame (copies only)."""
    labels: List[int]
    series: List[List[float]]
    hashrate_1m: SmoothedSeries
    visibility: List[bool]
    x_min_ms: float
    x_max_ms: float
    window_ms: int
    bounds: ComputedAxisBounds
    options: Dict = field(default_factory=dict)
    live_hashrate_hs: Optional[float] = None
    zoom_label: Optional[str] = None


def _finite(v: Optional[float]) -> bool:
    return v is not None and math.isfinite(v)


class ChartPipeline:
    """Stateful chart data pipeline for one device."""

    def __init__(self, config: Optional[PipelineConfig] = None, storage: Optional[ChartStorage] = None):
        """Initialize pipeline.

        Args:
            config: Pipeline configuration
            storage: Persistence for chart state (None disables persistence)
        """
        self.config = config or PipelineConfig()
        self.storage = storage

        self.series = TimeSeries()
        self.guard = GraphGuard(self.config.graph_guard.cfg)
        self.warmup = WarmupMachine(self.config.warmup)
        self.deferred = DeferredAction()

        self.live_hashrate_hs: Optional[float] = None
        self.expected_hashrate_hs: float = 0.0
        self.history_min_timestamp_ms: Optional[float] = None
        self.last_seen_timestamp_ms: Optional[int] = None
        self.loaded = False

        # Restart bookkeeping
        self.last_break_ts: Optional[int] = None
        self.restart_token: Optional[int] = None
        self.startup_unlocked = False
        self.hr1m_started = False
        self.hr1m_start_ts: Optional[int] = None
        self._smooth_armed = False
        self._bypass_remaining: Dict[Channel, int] = {}
        self._reload_consumed_token: Optional[int] = None
        self._reload_cooldown_until_ms = 0
        self.reload_requested = False

        # Temperature axis memory for sticky bounds
        self.temp_axis_min: Optional[float] = None
        self.temp_axis_max: Optional[float] = None

    # --- live polling

    def observe_live(self, now_ms: int, info: SystemInfo) -> WarmupStage:
        """Feed one live poll: live reference, startup unlock and warmup FSM.

        Returns:
            Warmup stage after the poll
        """
        live = info.pool_hashrate_hs_sum()
        expected = info.expected_hashrate_hs()

        self.guard.observe_live_ref(live)
        self.live_hashrate_hs = live if live > 0 else None
        if expected > 0:
            self.expected_hashrate_hs = expected

        system_ok = self.expected_hashrate_hs > 0

        self._ensure_startup_unlocked(live)

        return self.warmup.observe_live(
            now_ms,
            to_float(info.vrTemp),
            to_float(info.temp),
            live,
            self.expected_hashrate_hs,
            system_ok,
        )

    def _ensure_startup_unlocked(self, live_hs: float) -> None:
        if self.startup_unlocked:
            return
        if not should_unlock_startup(live_hs, self.expected_hashrate_hs,
                                     self.config.startup.expected_unlock_ratio,
                                     self.guard.is_live_ref_stable()):
            return

        self.startup_unlocked = True
        n = max(0, self.config.startup.bypass_guard_samples)
        # 1m is never bypassed: its history emits a short low plateau after restarts
        self._bypass_remaining = {
            Channel.HASHRATE_10M: n,
            Channel.HASHRATE_1H: n,
            Channel.HASHRATE_1D: n,
        }
        logger.info(f"Startup unlocked at live {live_hs / 1e12:.3f} TH/s")

    # --- restart cut

    def _insert_break(self, break_at_ms: int) -> Optional[int]:
        """Cut every curve and re-arm the post-restart startup state."""
        self.startup_unlocked = False
        self._bypass_remaining = {}
        self.hr1m_started = False
        self.hr1m_start_ts = None
        self.deferred.cancel()
        self._smooth_armed = True
        self.guard.reset()
        self.temp_axis_min = None
        self.temp_axis_max = None

        ts = self.series.insert_break(break_at_ms)
        if ts is None:
            return None
        self.last_break_ts = ts
        self.restart_token = ts
        self.last_seen_timestamp_ms = ts
        logger.info(f"Restart cut inserted at {ts}")
        return ts

    def _restart_cut(self, ts: int) -> None:
        self.warmup.reset(ts)
        self.warmup.consume_break_pending()
        self._insert_break(ts - 1)
        # The bogus sample itself is skipped but counts as seen
        self.last_seen_timestamp_ms = ts

    # --- history import

    def _hr1m_candidate(self, hr1m: float, importing: bool, ts: int) -> float:
        if self.hr1m_started:
            return hr1m

        ratio = self.config.startup.expected_unlock_ratio
        hist_ok = _finite(hr1m) and hr1m > 0
        if self.expected_hashrate_hs > 0:
            hist_unlock_ok = hist_ok and hr1m >= self.expected_hashrate_hs * ratio
        else:
            hist_unlock_ok = hist_ok

        if not should_start_hr1m_from_history(self.hr1m_started, self.startup_unlocked,
                                              hist_ok, hist_unlock_ok, importing):
            return NAN

        self.hr1m_started = True
        if self._smooth_armed:
            self.hr1m_start_ts = ts
            self._schedule_reload_after_smooth(ts)
        else:
            self.hr1m_start_ts = None
        return hr1m

    def _confirm_override(self, ts: int) -> int:
        startup = self.config.startup
        if self.hr1m_started and self.hr1m_start_ts is not None:
            if ts - self.hr1m_start_ts <= startup.hr1m_smooth_window_ms:
                return startup.hr1m_confirm_startup
        return startup.hr1m_confirm_normal

    def _guard_hash(self, channel: Channel, value: float, ts: int) -> float:
        if not math.isfinite(value):
            return NAN

        if self.startup_unlocked and self._bypass_remaining.get(channel, 0) > 0:
            self._bypass_remaining[channel] -= 1
            return value

        gg = self.config.graph_guard
        if not gg.enable_hashrate_spike_guard:
            return value

        override = self._confirm_override(ts) if channel is Channel.HASHRATE_1M else None
        return self.guard.apply(channel, value, gg.thresholds.for_channel(channel),
                                self.live_hashrate_hs, override)

    def _guard_temp(self, channel: Channel, value: float) -> float:
        if not math.isfinite(value):
            return NAN
        return self.guard.apply(channel, value, self.config.graph_guard.thresholds.for_channel(channel))

    def _channel_enabled(self, channel: Channel) -> bool:
        if channel is Channel.VREG_TEMP:
            return self.warmup.is_vreg_enabled()
        if channel is Channel.ASIC_TEMP:
            return self.warmup.is_asic_enabled()
        if channel is Channel.HASHRATE_1M:
            return self.warmup.is_hr1m_enabled()
        return self.warmup.is_other_hash_enabled()

    def import_history(self, batch: Optional[HistoryBatch], importing: bool = False) -> int:
        """Import one history batch into the series.

        Args:
            batch: Raw history batch from the device
            importing: True for bulk imports (startup/drain), False for live polls

        Returns:
            Number of samples appended or updated
        """
        samples = decode_history(batch)
        if not samples:
            return 0

        last = self.series.last_label()
        min_ts = self.history_min_timestamp_ms
        samples = [
            s for s in samples
            if (last is None or s.timestamp_ms >= last)
            and (min_ts is None or s.timestamp_ms >= min_ts)
        ]
        if not samples:
            return 0

        # Restart detected by the live poll: cut just before the next history point
        if self.warmup.consume_break_pending():
            self._insert_break(samples[0].timestamp_ms - 1)

        sanitize_cfg = self.config.sanitize
        live_ok_now = self.live_hashrate_hs is not None
        count = 0

        for sample in samples:
            ts = sample.timestamp_ms
            if self.last_break_ts is not None and ts <= self.last_break_ts:
                ts = self.last_break_ts + 1

            clean = [sanitize(ch, sample.values[ch], sanitize_cfg) for ch in ALL_CHANNELS]

            hr1m = NAN
            if self._channel_enabled(Channel.HASHRATE_1M):
                hr1m = self._hr1m_candidate(clean[Channel.HASHRATE_1M], importing, ts)

            if self.warmup.stage is WarmupStage.READY and should_insert_restart_cut(
                live_ok_now,
                clean[Channel.VREG_TEMP],
                clean[Channel.ASIC_TEMP],
                sample.values[Channel.HASHRATE_1M],
                self.config.warmup.temp_min_valid_c,
            ):
                self._restart_cut(ts)
                continue

            self.last_seen_timestamp_ms = ts
            if self.warmup.is_locked():
                continue

            out = [NAN] * len(ALL_CHANNELS)
            for ch in (Channel.VREG_TEMP, Channel.ASIC_TEMP):
                if self._channel_enabled(ch):
                    out[ch] = self._guard_temp(ch, clean[ch])
            if self._channel_enabled(Channel.HASHRATE_1M):
                out[Channel.HASHRATE_1M] = self._guard_hash(Channel.HASHRATE_1M, hr1m, ts)
            for ch in HASHRATE_CHANNELS[1:]:
                if self._channel_enabled(ch):
                    out[ch] = self._guard_hash(ch, clean[ch], ts)

            self.series.upsert_last(ts, out)
            if math.isfinite(out[Channel.HASHRATE_1M]):
                self.warmup.notify_hr1m_flow(ts)
            count += 1

        return count

    # --- deferred reload

    def _schedule_reload_after_smooth(self, ts: int) -> None:
        startup = self.config.startup
        if not startup.hr1m_reload_after_smooth or self.restart_token is None:
            return
        window = max(0, startup.hr1m_smooth_window_ms)
        if not window:
            return

        token = self.restart_token
        self._smooth_armed = False
        if self._reload_consumed_token == token or ts < self._reload_cooldown_until_ms:
            return

        self._reload_consumed_token = token
        if startup.hr1m_reload_cooldown_ms:
            self._reload_cooldown_until_ms = ts + startup.hr1m_reload_cooldown_ms
        self.deferred.schedule(token, ts + window, self._request_reload)
        logger.debug(f"History reload scheduled for restart {token}")

    def _request_reload(self) -> None:
        self.reload_requested = True

    def poll_deferred(self, now_ms: int) -> bool:
        """Run the pending post-smoothing action when due."""
        return self.deferred.poll(now_ms)

    def take_reload_request(self) -> bool:
        requested = self.reload_requested
        self.reload_requested = False
        return requested

    # --- persistence and housekeeping

    def commit(self, now_ms: int, persist: bool = True) -> None:
        """Trim to the largest zoom window and persist."""
        removed = self.series.trim_to_window(now_ms, self.config.zoom.max_window_ms)
        if removed:
            logger.debug(f"Trimmed {removed} samples outside the window")

        last = self.series.last_label()
        if last is not None:
            self.last_seen_timestamp_ms = max(last, self.last_seen_timestamp_ms or last)

        if not persist or self.storage is None or not self.loaded:
            return
        self.storage.save_persisted_state(self.series.to_persisted())
        if self.last_seen_timestamp_ms is not None:
            self.storage.save_last_timestamp(self.last_seen_timestamp_ms)

    def load_persisted(self) -> bool:
        """Restore persisted series and re-sanitize them through a fresh guard.

        Returns:
            True if a persisted series was restored
        """
        self.loaded = True
        if self.storage is None:
            return False

        self.history_min_timestamp_ms = self.storage.load_min_history_timestamp_ms()
        stored_last = self.storage.load_last_timestamp()
        if stored_last is not None:
            self.last_seen_timestamp_ms = int(stored_last)

        state = self.storage.load_persisted_state()
        if state is None:
            return False

        restored = TimeSeries.from_persisted(state)
        self.guard.reset()
        self.series = TimeSeries()
        sanitize_cfg = self.config.sanitize
        spike_guard = self.config.graph_guard.enable_hashrate_spike_guard
        thresholds = self.config.graph_guard.thresholds

        for i, ts in enumerate(restored.labels):
            out = []
            for ch in ALL_CHANNELS:
                v = sanitize(ch, restored.data[ch][i], sanitize_cfg)
                if math.isfinite(v) and (ch.is_temperature or spike_guard):
                    v = self.guard.apply(ch, v, thresholds.for_channel(ch))
                out.append(v)
            self.series.upsert_last(ts, out)
            if all(math.isnan(v) for v in out):
                self.last_break_ts = ts

        self.hr1m_started = find_last_finite(self.series.series(Channel.HASHRATE_1M)) is not None
        logger.info(f"Restored {len(self.series)} persisted samples")
        return True

    def clear_history(self, now_ms: int) -> None:
        """Drop all chart history and keep old device history from refilling it."""
        self.series.clear()
        self.guard.reset()
        self.last_break_ts = None
        self.temp_axis_min = None
        self.temp_axis_max = None

        seed = now_ms - CLEAR_SEED_MS
        self.history_min_timestamp_ms = seed
        self.last_seen_timestamp_ms = seed
        if self.storage is not None:
            self.storage.clear_persisted_state()
            self.storage.clear_last_timestamp()
            self.storage.save_min_history_timestamp_ms(seed)
            self.storage.save_last_timestamp(seed)
        logger.info("Chart history cleared")

    def needs_history_expansion(self, now_ms: int) -> bool:
        """True when stored history does not reach back to the largest zoom window."""
        max_window = self.config.zoom.max_window_ms
        if not max_window or not self.series.labels:
            return False
        return self.series.labels[0] > now_ms - max_window + REPLACE_MARGIN_MS

    def reload_history(self, batch: Optional[HistoryBatch]) -> int:
        """Re-import a full-window history batch.

        The series is replaced only when the batch reaches further back than
        what is stored; otherwise it is imported on top (e.g. after a reboot
        reset the device's own history).
        """
        if batch is None or not batch.timestamps:
            return 0

        existing_oldest = self.series.labels[0] if self.series.labels else None
        fetched_oldest = get_history_oldest_timestamp_ms(batch)
        replace = existing_oldest is None or (
            fetched_oldest is not None and fetched_oldest < existing_oldest - REPLACE_MARGIN_MS
        )
        if not replace:
            return self.import_history(batch, importing=True)

        self.series.clear()
        self.guard.reset()
        self.last_break_ts = None
        self.history_min_timestamp_ms = None
        if self.storage is not None:
            self.storage.clear_persisted_state()
            self.storage.clear_last_timestamp()
            self.storage.clear_min_history_timestamp_ms()
        logger.info("Replacing chart history with a full-window reload")
        return self.import_history(batch, importing=True)

    # --- rendering

    def default_visibility(self) -> List[bool]:
        return [not hidden for hidden in self.config.ui_defaults.legend_hidden]

    def render_frame(self, now_ms: int, window_ms: Optional[int] = None,
                     visibility: Optional[Sequence[bool]] = None) -> RenderFrame:
        """Compute axes and the smoothed 1m copy for one frame.

        Stored series are not modified; only the temperature axis memory
        advances.
        """
        cfg = self.config
        window = clamp_window_ms(window_ms if window_ms is not None else cfg.zoom.min_window_ms, cfg.zoom)
        visible = list(visibility) if visibility is not None else self.default_visibility()

        snap = self.series.snapshot()
        x_min, x_max = compute_x_window(snap.labels, window, now_ms)

        scales = compute_chart_scales(
            snap.labels, x_min, x_max, snap.data, visible,
            cfg.axis_padding.hashrate,
            cfg.y_axis.clamp_tick_count(cfg.y_axis.hashrate_max_ticks),
            cfg.y_axis.hashrate_min_step_ths,
            live_ref_hs=self.live_hashrate_hs,
            soft_include_rel=cfg.y_axis.hashrate_soft_include_rel,
            axis_min_pad_c=cfg.temp_scale.axis_min_pad_c,
            axis_max_pad_c=cfg.temp_scale.axis_max_pad_c,
            temp_hysteresis_c=cfg.temp_scale.hysteresis_c,
            prev_temp_min=self.temp_axis_min,
            prev_temp_max=self.temp_axis_max,
        )
        if scales.temp_axis_min is not None:
            self.temp_axis_min = scales.temp_axis_min
            self.temp_axis_max = scales.temp_axis_max

        options = {"scales": {"x": {"min": x_min, "max": x_max}}}
        apply_axis_bounds_to_options(options, scales.bounds)

        smoothed = smooth_hashrate_1m(snap.series(Channel.HASHRATE_1M), snap.labels,
                                      cfg.smoothing, window, cfg.zoom)

        return RenderFrame(
            labels=snap.labels,
            series=snap.data,
            hashrate_1m=smoothed,
            visibility=visible,
            x_min_ms=x_min,
            x_max_ms=x_max,
            window_ms=window,
            bounds=scales.bounds,
            options=options,
            live_hashrate_hs=self.live_hashrate_hs,
            zoom_label=format_zoom_window_label(window) if should_show_zoom_window_label(window, cfg.zoom) else None,
        )
