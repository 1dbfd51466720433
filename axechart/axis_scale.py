"""Adaptive y-axis bounds for the hashrate and temperature axes.

All functions here are pure: they take the visible data window and the
axis configuration and return bounds. Temperature hysteresis memory is
owned by the caller and passed in on every call.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .channels import HASHRATE_CHANNELS, Channel
from .config import HashratePadding
from .models import AxisBounds, ComputedAxisBounds

logger = logging.getLogger(__name__)

HS_PER_THS = 1e12
NICE_STEPS_THS = [0.005, 0.01, 0.02, 0.05, 0.1, 0.2, 0.25, 0.5, 1, 2, 5, 10]
ROBUST_TRIM = 0.02
DEFAULT_MAX_TICKS = 7

SeriesLike = Optional[Sequence[float]]


@dataclass
class ChartScales:
    """Axis bounds for one render plus the temperature values to remember."""
    bounds: ComputedAxisBounds
    temp_axis_min: Optional[float] = None
    temp_axis_max: Optional[float] = None


def compute_x_window(labels: Sequence[float], window_ms: float, now_ms: float) -> Tuple[float, float]:
    """Fixed-width x window ending at ``max(now, last label)``.

    Keeps the viewport stable even when only a few points exist.
    """
    try:
        safe_window = max(0, round(float(window_ms)))
    except (TypeError, ValueError):
        safe_window = 0

    x_max = now_ms
    if labels:
        last = float(labels[-1])
        if math.isfinite(last):
            x_max = max(now_ms, last)
    return x_max - safe_window, x_max


def _normalize_ticks(max_ticks) -> int:
    try:
        ticks = float(max_ticks) or DEFAULT_MAX_TICKS
    except (TypeError, ValueError):
        ticks = DEFAULT_MAX_TICKS
    return max(2, int(round(ticks)))


def _window_indices(labels: Sequence[float], x_min: float, x_max: float) -> Tuple[int, int]:
    if not labels:
        return 0, 0
    arr = np.asarray(labels, dtype=float)
    start = int(np.searchsorted(arr, x_min, side="left"))
    end = int(np.searchsorted(arr, x_max, side="right"))
    return start, max(start, end)


def _collect_windowed(series: Sequence[SeriesLike], start: int, end: int) -> np.ndarray:
    chunks = []
    for values in series:
        if values is None or len(values) == 0:
            continue
        arr = np.asarray(values[start:min(len(values), end)], dtype=float)
        chunks.append(arr[np.isfinite(arr)])
    if not chunks:
        return np.empty(0)
    return np.concatenate(chunks)


def _robust_min_max(values: np.ndarray) -> Optional[Tuple[float, float]]:
    """Min/max after trimming the outer 2% on each side."""
    if values.size == 0:
        return None
    ordered = np.sort(values)
    n = ordered.size
    trim = int(math.floor(n * ROBUST_TRIM))
    lo = ordered[min(n - 1, trim)]
    hi = ordered[max(0, n - 1 - trim)]
    return float(lo), float(hi)


def _min_max(values: np.ndarray) -> Optional[Tuple[float, float]]:
    if values.size == 0:
        return None
    return float(values.min()), float(values.max())


def _pick_step_ths(range_ths: float, max_ticks: int, min_step_ths: float) -> float:
    """Pick the nice step whose tick count is closest to ``max_ticks``.

    Candidates producing more ticks than the target get a 0.25 penalty;
    ties go to the larger step.
    """
    step = NICE_STEPS_THS[-1]
    best = math.inf
    for s in NICE_STEPS_THS:
        if s < min_step_ths:
            continue
        ticks = math.floor(range_ths / s) + 1
        score = abs(ticks - max_ticks) + (0.25 if ticks > max_ticks else 0.0)
        if score < best or (score == best and s > step):
            best = score
            step = s
    return max(step, min_step_ths)


def _hashrate_bounds(values: np.ndarray, pad: HashratePadding, max_ticks: int,
                     min_step_ths: float, live_ref_hs: Optional[float]) -> Optional[AxisBounds]:
    robust = _robust_min_max(values)
    if robust is None:
        return None
    lo, hi = robust

    value_range = max(1e6, hi - lo)
    pad_top_pct = pad.pad_pct_top if pad.pad_pct_top is not None else pad.pad_pct
    pad_bottom_pct = pad.pad_pct_bottom if pad.pad_pct_bottom is not None else pad.pad_pct
    min_pad_hs = pad.min_pad_ths * HS_PER_THS

    max_abs = max(1.0, abs(hi))
    flat_pad = max_abs * pad.flat_pad_pct_of_max
    pad_cap = max_abs * pad.max_pad_pct_of_max

    pad_top = min(max(value_range * pad_top_pct, min_pad_hs, flat_pad, 0.0), pad_cap)
    pad_bottom = min(max(value_range * pad_bottom_pct, min_pad_hs, flat_pad, 0.0), pad_cap)

    # Hashrate cannot be negative
    adj_min = max(0.0, lo - pad_bottom)
    adj_max = hi + pad_top

    # Keep the live value on screen even when history lags behind it
    if live_ref_hs is not None and math.isfinite(live_ref_hs) and live_ref_hs > 0:
        if live_ref_hs > adj_max:
            adj_max = live_ref_hs + pad_top
        if live_ref_hs < adj_min:
            adj_min = max(0.0, live_ref_hs - pad_bottom)

    range_ths = max(0.0, adj_max - adj_min) / HS_PER_THS
    step_hs = _pick_step_ths(range_ths, max_ticks, min_step_ths) * HS_PER_THS

    min_aligned = max(0.0, math.floor(adj_min / step_hs) * step_hs)
    max_aligned = math.ceil(adj_max / step_hs) * step_hs

    return AxisBounds(min=min_aligned, max=max_aligned, stepSize=step_hs, maxTicksLimit=max_ticks)


def _temp_bounds(values: np.ndarray, max_ticks: int, pad_min_c: float,
                 pad_max_c: float) -> Optional[AxisBounds]:
    # Not step-aligned: aligning to a nice step overshoots the padding targets
    raw = _min_max(values)
    if raw is None:
        return None
    lo, hi = raw
    return AxisBounds(min=max(0.0, lo - pad_min_c), max=hi + pad_max_c, maxTicksLimit=max_ticks)


def compute_axis_bounds(
    labels: Sequence[float],
    hashrate_series: Sequence[SeriesLike],
    temp_series: Sequence[SeriesLike],
    x_min_ms: float,
    x_max_ms: float,
    pad_cfg: HashratePadding,
    max_ticks: int = DEFAULT_MAX_TICKS,
    hashrate_min_step_ths: float = 0.0,
    temp_min_pad_c: float = 1.0,
    temp_max_pad_c: float = 2.0,
    live_ref_hs: Optional[float] = None,
) -> ComputedAxisBounds:
    """Compute hashrate and temperature axis bounds for the visible window.

    Args:
        labels: Sample timestamps (ms), increasing
        hashrate_series: Hashrate series (H/s) to consider; None entries are skipped
        temp_series: Temperature series (°C) to consider
        x_min_ms: Visible window start
        x_max_ms: Visible window end
        pad_cfg: Hashrate padding configuration
        max_ticks: Target tick count (clamped to >= 2)
        hashrate_min_step_ths: Smallest allowed hashrate tick step (TH/s)
        temp_min_pad_c: Padding below the lowest temperature
        temp_max_pad_c: Padding above the highest temperature
        live_ref_hs: Live hashrate that must stay visible

    Returns:
        ComputedAxisBounds; an axis without finite data in the window is None
    """
    start, end = _window_indices(labels, x_min_ms, x_max_ms)
    ticks = _normalize_ticks(max_ticks)

    hash_vals = _collect_windowed(hashrate_series, start, end)
    temp_vals = _collect_windowed(temp_series, start, end)

    return ComputedAxisBounds(
        hashrate=_hashrate_bounds(hash_vals, pad_cfg, ticks, hashrate_min_step_ths, live_ref_hs),
        temperature=_temp_bounds(temp_vals, ticks, temp_min_pad_c, temp_max_pad_c),
    )


def compute_temp_bounds(
    labels: Sequence[float],
    vreg_temp: SeriesLike,
    asic_temp: SeriesLike,
    x_min_ms: float,
    x_max_ms: float,
    max_ticks: int = DEFAULT_MAX_TICKS,
    axis_min_pad_c: float = 1.0,
    axis_max_pad_c: float = 2.0,
) -> Optional[AxisBounds]:
    """Temperature axis bounds from both temperature sensors."""
    start, end = _window_indices(labels, x_min_ms, x_max_ms)
    values = _collect_windowed([vreg_temp, asic_temp], start, end)
    return _temp_bounds(values, _normalize_ticks(max_ticks), axis_min_pad_c, axis_max_pad_c)


def compute_hashrate_bounds_soft_include(
    labels: Sequence[float],
    x_min_ms: float,
    x_max_ms: float,
    pad_cfg: HashratePadding,
    max_ticks: int,
    hashrate_min_step_ths: float,
    base_series: SeriesLike,
    other_series: Sequence[SeriesLike] = (),
    live_ref_hs: Optional[float] = None,
    soft_include_rel: float = 0.0,
    base_bounds: Optional[AxisBounds] = None,
) -> Optional[AxisBounds]:
    """Hashrate bounds from one base series, softly widened for other series.

    Other visible series may push the bounds out by at most
    ``soft_include_rel * range`` of the base bounds, so toggling a series
    never rescales the whole chart.
    """
    if base_bounds is None:
        base_bounds = compute_axis_bounds(
            labels, [base_series], [], x_min_ms, x_max_ms, pad_cfg,
            max_ticks, hashrate_min_step_ths, live_ref_hs=live_ref_hs,
        ).hashrate
    if base_bounds is None:
        return None

    soft_rel = max(0.0, float(soft_include_rel or 0.0))
    if not soft_rel or not other_series or not labels:
        return base_bounds

    max_expand = max(1.0, base_bounds.max - base_bounds.min) * soft_rel
    start, end = _window_indices(labels, x_min_ms, x_max_ms)
    other = _min_max(_collect_windowed(other_series, start, end))
    if other is None:
        return base_bounds

    other_min, other_max = other
    new_min = max(base_bounds.min - max_expand, min(base_bounds.min, other_min))
    new_max = min(base_bounds.max + max_expand, max(base_bounds.max, other_max))
    if new_min != base_bounds.min or new_max != base_bounds.max:
        logger.debug(f"Soft-include widened hashrate axis to [{new_min:.4g}, {new_max:.4g}]")
    return base_bounds.model_copy(update={"min": new_min, "max": new_max})


def select_base_hashrate_series(visibility: Sequence[bool]) -> Channel:
    """Prefer 1m when visible, else the first visible long-term series."""
    for channel in HASHRATE_CHANNELS:
        if channel < len(visibility) and visibility[channel]:
            return channel
    return Channel.HASHRATE_1M


def collect_other_hashrate_series(series: Sequence[Sequence[float]], visibility: Sequence[bool],
                                  base: Channel) -> List[Sequence[float]]:
    """Visible hashrate series other than the base one."""
    return [
        series[channel] for channel in HASHRATE_CHANNELS
        if channel != base and channel < len(visibility) and visibility[channel]
    ]


def apply_sticky_bounds(new_min: float, new_max: float, prev_min: Optional[float],
                        prev_max: Optional[float], hysteresis: float) -> Tuple[float, float]:
    """Expand immediately, contract by at most ``hysteresis`` per call.

    Example: prev (10, 50), hysteresis 1 and new (12, 48) give (11, 49);
    new (5, 60) is applied as is.
    """
    if prev_min is None or prev_max is None:
        return new_min, new_max
    if not (math.isfinite(prev_min) and math.isfinite(prev_max)):
        return new_min, new_max

    h = max(0.0, float(hysteresis or 0.0))

    if new_min > prev_min + h:
        lo = min(new_min, prev_min + h)
    else:
        lo = new_min if new_min < prev_min - h else prev_min

    if new_max < prev_max - h:
        hi = max(new_max, prev_max - h)
    else:
        hi = new_max if new_max > prev_max + h else prev_max

    return lo, hi


def compute_chart_scales(
    labels: Sequence[float],
    x_min_ms: float,
    x_max_ms: float,
    series: Sequence[Sequence[float]],
    visibility: Sequence[bool],
    pad_cfg: HashratePadding,
    max_ticks: int,
    hashrate_min_step_ths: float,
    live_ref_hs: Optional[float] = None,
    soft_include_rel: float = 0.0,
    axis_min_pad_c: float = 1.0,
    axis_max_pad_c: float = 2.0,
    temp_hysteresis_c: float = 0.0,
    prev_temp_min: Optional[float] = None,
    prev_temp_max: Optional[float] = None,
) -> ChartScales:
    """Full axis computation for one chart render.

    Args:
        labels: Sample timestamps (ms)
        x_min_ms: Visible window start
        x_max_ms: Visible window end
        series: All six channel series, indexed by Channel
        visibility: Per-channel visibility, indexed by Channel
        pad_cfg: Hashrate padding configuration
        max_ticks: Target hashrate tick count
        hashrate_min_step_ths: Smallest hashrate tick step (TH/s)
        live_ref_hs: Live hashrate to keep visible
        soft_include_rel: Soft-include expansion limit (fraction of range)
        axis_min_pad_c: Temperature padding below the data
        axis_max_pad_c: Temperature padding above the data
        temp_hysteresis_c: Temperature contraction limit per call
        prev_temp_min: Temperature axis min from the previous call
        prev_temp_max: Temperature axis max from the previous call

    Returns:
        ChartScales with bounds and the temperature values to pass next time
    """
    base = select_base_hashrate_series(visibility)
    base_series = series[base]

    bounds = compute_axis_bounds(
        labels, [base_series], [], x_min_ms, x_max_ms, pad_cfg,
        max_ticks, hashrate_min_step_ths, live_ref_hs=live_ref_hs,
    )

    if bounds.hashrate is not None and labels:
        soft = compute_hashrate_bounds_soft_include(
            labels, x_min_ms, x_max_ms, pad_cfg, max_ticks, hashrate_min_step_ths,
            base_series,
            other_series=collect_other_hashrate_series(series, visibility, base),
            live_ref_hs=live_ref_hs,
            soft_include_rel=soft_include_rel,
            base_bounds=bounds.hashrate,
        )
        if soft is not None:
            bounds.hashrate = soft

    bounds.temperature = compute_temp_bounds(
        labels, series[Channel.VREG_TEMP], series[Channel.ASIC_TEMP],
        x_min_ms, x_max_ms, max_ticks, axis_min_pad_c, axis_max_pad_c,
    )

    if bounds.temperature is None:
        return ChartScales(bounds=bounds)

    lo, hi = apply_sticky_bounds(
        bounds.temperature.min, bounds.temperature.max,
        prev_temp_min, prev_temp_max, temp_hysteresis_c,
    )
    bounds.temperature.min = lo
    bounds.temperature.max = hi
    return ChartScales(bounds=bounds, temp_axis_min=lo, temp_axis_max=hi)


def _apply_scale(scales: Dict, key: str, axis: Optional[AxisBounds]) -> None:
    scale = scales.setdefault(key, {})
    if axis is None:
        # Let the renderer auto-fit
        scale.pop("min", None)
        scale.pop("max", None)
        return

    scale["min"] = axis.min
    scale["max"] = axis.max
    ticks = scale.setdefault("ticks", {})
    if axis.stepSize is not None and math.isfinite(axis.stepSize):
        ticks["stepSize"] = axis.stepSize
    if axis.maxTicksLimit is not None:
        ticks["maxTicksLimit"] = axis.maxTicksLimit


def apply_axis_bounds_to_options(options: Optional[Dict], bounds: ComputedAxisBounds) -> None:
    """Write bounds into renderer options (``scales.y`` / ``scales.y_temp``)."""
    if options is None:
        return
    scales = options.setdefault("scales", {})
    _apply_scale(scales, "y", bounds.hashrate)
    _apply_scale(scales, "y_temp", bounds.temperature)
