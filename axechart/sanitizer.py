"""Raw sample sanitizing (invalid samples become NaN and render as a gap)."""

import math
from typing import Any

from .channels import Channel
from .config import SanitizeConfig

NAN = float("nan")


def to_float(v: Any) -> float:
    """Coerce a raw value to float, NaN when it can't be parsed."""
    if v is None or isinstance(v, bool):
        return NAN
    try:
        return float(v)
    except (TypeError, ValueError):
        return NAN


def sanitize_hashrate_hs(v: Any, cfg: SanitizeConfig) -> float:
    n = to_float(v)
    if not math.isfinite(n):
        return NAN
    # 0 H/s during runtime is a boot/restart artifact
    if n < cfg.hashrate_min_hs:
        return NAN
    return n


def sanitize_temp_c(v: Any, cfg: SanitizeConfig) -> float:
    n = to_float(v)
    if not math.isfinite(n):
        return NAN
    if n < cfg.temp_min_c or n > cfg.temp_max_c:
        return NAN
    return n


def sanitize(channel: Channel, v: Any, cfg: SanitizeConfig) -> float:
    """Sanitize a single scalar for the given channel."""
    if channel.is_hashrate:
        return sanitize_hashrate_hs(v, cfg)
    return sanitize_temp_c(v, cfg)
