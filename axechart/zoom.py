"""Zoom window arithmetic for the chart x axis."""

import math

from .config import ZoomConfig


def _to_int(v) -> int:
    try:
        f = float(v or 0)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(f):
        return 0
    return int(round(f))


def normalize_zoom_config(cfg: ZoomConfig) -> ZoomConfig:
    """Force ``1 <= min <= max`` and ``step >= 1``."""
    min_window = max(1, _to_int(cfg.min_window_ms))
    step = max(1, _to_int(cfg.zoom_step_ms))
    max_window = max(min_window, _to_int(cfg.max_window_ms) or min_window)
    return ZoomConfig(min_window_ms=min_window, max_window_ms=max_window, zoom_step_ms=step)


def clamp_window_ms(window_ms, cfg: ZoomConfig) -> int:
    c = normalize_zoom_config(cfg)
    return min(c.max_window_ms, max(c.min_window_ms, _to_int(window_ms)))


def step_window_ms(current_ms, delta_ms, cfg: ZoomConfig) -> int:
    """Add ``delta_ms`` (usually +/- one zoom step) and clamp."""
    return clamp_window_ms(_to_int(current_ms) + _to_int(delta_ms), cfg)


def toggle_window_ms(current_ms, cfg: ZoomConfig) -> int:
    """Jump to the opposite end of the zoom range."""
    c = normalize_zoom_config(cfg)
    mid = (c.min_window_ms + c.max_window_ms) / 2
    return c.max_window_ms if _to_int(current_ms) <= mid else c.min_window_ms


def zoom_step_count(window_ms, cfg: ZoomConfig) -> int:
    """Number of zoom steps between the minimum window and ``window_ms``."""
    c = normalize_zoom_config(cfg)
    clamped = clamp_window_ms(window_ms, c)
    return max(0, int(round((clamped - c.min_window_ms) / c.zoom_step_ms)))


def format_zoom_window_label(window_ms, hour_short: str = "h", minute_short: str = "m") -> str:
    """Format a window length, e.g. ``"1h 15m"``, ``"2h"`` or ``"45m"``."""
    total_minutes = max(0, _to_int(_to_int(window_ms) / 60000))
    hours, minutes = divmod(total_minutes, 60)
    if hours and minutes:
        return f"{hours}{hour_short} {minutes}{minute_short}"
    if hours:
        return f"{hours}{hour_short}"
    return f"{minutes}{minute_short}"


def should_show_zoom_window_label(window_ms, cfg: ZoomConfig) -> bool:
    """Only show the label once zoomed out by at least one step."""
    if window_ms is None or not math.isfinite(window_ms):
        return False
    c = normalize_zoom_config(cfg)
    return window_ms >= c.min_window_ms + c.zoom_step_ms
