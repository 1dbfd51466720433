"""GraphGuard: per-channel outlier filter for chart samples.

GraphGuard holds back suspicious steps until they are confirmed by
consecutive samples, and uses an independently sourced live hashrate
(pool-reported sum) to arbitrate ambiguous hashrate steps. It has no
knowledge of rendering or I/O.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, List, Optional

import numpy as np

from .channels import Channel
from .config import GraphGuardTuning
from .sanitizer import to_float

logger = logging.getLogger(__name__)

WINDOW_SIZE = 9
LIVE_RING_SIZE = 6
LIVE_GATE_BASE = 0.25
LIVE_GATE_WIDE = 0.80
LIVE_JUMP_REL = 0.20


@dataclass
class GuardState:
    """Per-channel guard memory."""
    prev: Optional[float] = None
    suspect_dir: Optional[int] = None
    suspect_count: int = 0
    window: Deque[float] = field(default_factory=lambda: deque(maxlen=WINDOW_SIZE))

    def accept(self, value: float) -> float:
        self.prev = value
        self.window.append(value)
        return value


def _is_positive(v: Optional[float]) -> bool:
    return v is not None and math.isfinite(v) and v > 0


class GraphGuard:
    """Stateful outlier rejection for the six chart channels."""

    def __init__(self, cfg: Optional[GraphGuardTuning] = None):
        """Initialize guard.

        Args:
            cfg: Guard tuning (defaults are used when omitted)
        """
        self.cfg = cfg.model_copy() if cfg is not None else GraphGuardTuning()
        self._states: List[GuardState] = [GuardState() for _ in Channel]
        self._live_ring: Deque[float] = deque(maxlen=LIVE_RING_SIZE)

    def configure(self, **changes: Any) -> None:
        """Update tuning values at runtime."""
        self.cfg = self.cfg.model_copy(update=changes)

    def reset(self) -> None:
        """Forget all channel state and the live reference history."""
        self._states = [GuardState() for _ in Channel]
        self._live_ring.clear()
        logger.debug("GraphGuard state reset")

    def state(self, channel: Channel) -> GuardState:
        return self._states[channel]

    def observe_live_ref(self, hs: Any) -> None:
        """Record a live reference hashrate reading (H/s)."""
        value = to_float(hs)
        if not _is_positive(value):
            return
        self._live_ring.append(value)

    def is_live_ref_stable(self) -> bool:
        """Check whether the recent live readings agree with each other."""
        n = max(1, round(self.cfg.live_ref_stable_samples))
        rel = max(0.0, float(self.cfg.live_ref_stable_rel))
        if len(self._live_ring) < n:
            return False

        recent = list(self._live_ring)[-n:]
        if any(not _is_positive(v) for v in recent):
            return False

        base = self._live_ring[-1]
        return (max(recent) - min(recent)) / base <= rel

    def apply(
        self,
        channel: Channel,
        raw: Any,
        rel_threshold: float,
        live_ref_hs: Optional[float] = None,
        confirm_override: Optional[int] = None,
    ) -> float:
        """Filter one sample and return the value to plot.

        Args:
            channel: Channel the sample belongs to
            raw: Raw (already unit-converted) sample value
            rel_threshold: Relative step vs previous value that counts as suspicious
            live_ref_hs: Live pool hashrate in H/s (hashrate channels only)
            confirm_override: Consecutive suspicious samples required (overrides config)

        Returns:
            Accepted value (may be the previous value when the sample is held)
        """
        cfg = self.cfg
        is_hash = channel.is_hashrate
        max_valid = cfg.temp_ceiling_c if channel.is_temperature else math.inf

        current = to_float(raw)
        valid = math.isfinite(current) and cfg.min_valid < current < max_valid

        state = self._states[channel]
        prev = state.prev

        if state.window:
            fallback = float(np.median(state.window))
        else:
            fallback = prev if prev is not None else 0.0
        candidate = current if valid else fallback

        live = to_float(live_ref_hs) if is_hash else math.nan
        has_live = _is_positive(live)

        if prev is None:
            seed = candidate
            if has_live:
                tol = max(0.05, float(cfg.live_ref_tolerance))
                if not valid or abs(seed - live) / live > tol * 2:
                    seed = live
            return state.accept(seed)

        # Live gate: hashrate samples far away from the live pool sum
        if has_live:
            live_step = abs(live - prev) / prev if prev > 0 else 0.0
            gate = LIVE_GATE_WIDE if live_step > LIVE_JUMP_REL else LIVE_GATE_BASE
            live_rel = abs(candidate - live) / live
            if live_rel > gate:
                step_rel = abs(candidate - prev) / prev if prev > 0 else math.inf
                big_step = valid and prev > 0 and step_rel >= cfg.big_step_rel
                live_stable = self.is_live_ref_stable()

                if live_stable and not big_step:
                    logger.debug(
                        f"LiveGate {channel.key}: prev={prev:.4g} candidate={candidate:.4g} "
                        f"live={live:.4g} rel={live_rel:.3f} gate={gate:.2f}"
                    )
                    return state.accept(prev)

                # Unstable reference or a big step: hold without touching state
                logger.debug(
                    f"LiveGateBypass {channel.key}: prev={prev:.4g} candidate={candidate:.4g} "
                    f"live={live:.4g} stable={live_stable} big_step={big_step}"
                )
                return prev

        diff = candidate - prev
        abs_diff = abs(diff)
        if prev > 0:
            rel_diff = abs_diff / prev
        else:
            rel_diff = math.inf if abs_diff > 0 else 0.0
        suspicious = valid and prev > 0 and rel_diff > rel_threshold

        out = candidate
        if suspicious:
            fast_accepted = False
            if has_live:
                live_rel = abs(candidate - live) / live
                if rel_diff >= cfg.big_step_rel and live_rel <= cfg.live_ref_tolerance:
                    fast_accepted = True
                    state.suspect_count = 0
                    state.suspect_dir = None
                    logger.debug(f"FastPath {channel.key}: {prev:.4g} -> {candidate:.4g} (live {live:.4g})")

            if not fast_accepted:
                direction = 1 if diff >= 0 else -1
                if state.suspect_dir == direction:
                    state.suspect_count += 1
                else:
                    state.suspect_dir = direction
                    state.suspect_count = 1

                needed = confirm_override if confirm_override is not None else cfg.confirm_samples
                if state.suspect_count >= max(1, round(needed)):
                    state.suspect_count = 0
                    state.suspect_dir = None
                else:
                    out = prev

            logger.debug(f"Suspicious {channel.key}: prev={prev:.4g} candidate={candidate:.4g} out={out:.4g}")
        else:
            state.suspect_count = 0
            state.suspect_dir = None
            if not valid:
                out = prev

        return state.accept(out)
