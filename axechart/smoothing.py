"""Visual-only smoothing for the 1m hashrate curve.

Works on a rendering copy; stored series are never modified.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from .config import SmoothingConfig, ZoomConfig
from .zoom import zoom_step_count

logger = logging.getLogger(__name__)


@dataclass
class SmoothedSeries:
    """Smoothed rendering copy plus the curve options to draw it with."""
    data: List[float] = field(default_factory=list)
    tension: float = 0.0
    cubic_interpolation_mode: Optional[str] = None


def median_interval_ms(labels: Sequence[float], window_points: int) -> float:
    """Median positive delta over the last ``window_points`` label gaps (0 if unknown)."""
    if len(labels) < 3:
        return 0.0
    n = max(1, min(int(window_points), len(labels) - 1))
    diffs = np.diff(np.asarray(labels[-(n + 1):], dtype=float))
    diffs = diffs[np.isfinite(diffs) & (diffs > 0)]
    if diffs.size == 0:
        return 0.0
    return float(np.median(diffs))


def ema(values: Sequence[float], alpha: float) -> List[float]:
    """Exponential moving average; a NaN restarts the chain."""
    out: List[float] = []
    prev = math.nan
    for raw in values:
        v = float(raw)
        if not math.isfinite(v):
            out.append(math.nan)
            prev = math.nan
            continue
        prev = v if math.isnan(prev) else alpha * v + (1 - alpha) * prev
        out.append(prev)
    return out


def smooth_hashrate_1m(
    data: Sequence[float],
    labels: Sequence[float],
    cfg: SmoothingConfig,
    window_ms: float,
    zoom_cfg: ZoomConfig,
) -> SmoothedSeries:
    """Compute curve tension and an EMA-smoothed copy of the 1m series.

    Args:
        data: 1m hashrate values (H/s)
        labels: Matching timestamps (ms)
        cfg: Smoothing configuration
        window_ms: Current zoom window
        zoom_cfg: Zoom limits, used to count zoom-out steps

    Returns:
        SmoothedSeries; ``data`` is always a new list
    """
    raw = [float(v) for v in data]
    if not cfg.enabled:
        return SmoothedSeries(data=raw)

    interval = median_interval_ms(labels, cfg.median_window_points)

    if interval and interval <= cfg.fast_interval_ms:
        tension = cfg.tension_fast
    elif interval and interval <= cfg.medium_interval_ms:
        tension = cfg.tension_medium
    else:
        tension = cfg.tension_slow

    steps = zoom_step_count(window_ms, zoom_cfg)

    boost = max(0.0, round(cfg.zoom_boost_per_step * 1000) / 1000)
    if boost > 0:
        tension = min(cfg.tension_fast, tension + steps * boost)

    result = SmoothedSeries(data=raw, tension=tension,
                            cubic_interpolation_mode=cfg.cubic_interpolation_mode)

    target_ms = cfg.ema_window_ms_min + steps * cfg.ema_window_ms_per_step
    target_ms = min(max(target_ms, cfg.ema_window_ms_min), cfg.ema_window_ms_max)

    points = 0
    if interval > 0 and target_ms > 0:
        points = int(round(target_ms / interval))
    if points < 2:
        return result

    min_points = max(2, cfg.ema_min_points)
    max_points = max(min_points, cfg.ema_max_points)
    points = min(max(points, min_points), max_points)

    smoothed = ema(raw, 2.0 / (points + 1))
    if cfg.snap_last_point and raw and math.isfinite(raw[-1]):
        # Live edge stays at the raw value
        smoothed[-1] = raw[-1]

    logger.debug(f"1m smoothing: interval={interval:.0f}ms tension={tension:.2f} ema_points={points}")
    result.data = smoothed
    return result
