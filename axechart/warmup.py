"""Warmup/restart sequencing for the chart.

After a miner reboot the sensors report boot-time junk for a short while.
Instead of plotting it (a visible drop to zero) the pipeline cuts every curve
with one NaN break sample and re-enables the channels in stages:
VR temperature, then ASIC temperature, then hashrate.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import WarmupConfig

logger = logging.getLogger(__name__)


class WarmupStage(str, Enum):
    LOCKED = "LOCKED"
    VREG_WAIT = "VREG_WAIT"
    ASIC_WAIT = "ASIC_WAIT"
    HASH1M_WAIT = "HASH1M_WAIT"
    READY = "READY"


class WarmupEvent(str, Enum):
    RESET = "RESET"
    BEGIN = "BEGIN"
    VREG_READY = "VREG_READY"
    ASIC_READY = "ASIC_READY"
    HASH1M_READY = "HASH1M_READY"


_TRANSITIONS = {
    (WarmupStage.LOCKED, WarmupEvent.BEGIN): WarmupStage.VREG_WAIT,
    (WarmupStage.VREG_WAIT, WarmupEvent.VREG_READY): WarmupStage.ASIC_WAIT,
    (WarmupStage.ASIC_WAIT, WarmupEvent.ASIC_READY): WarmupStage.HASH1M_WAIT,
    (WarmupStage.HASH1M_WAIT, WarmupEvent.HASH1M_READY): WarmupStage.READY,
}


def transition(stage: WarmupStage, event: WarmupEvent) -> WarmupStage:
    """Pure transition function. Unknown (stage, event) pairs keep the stage."""
    if event is WarmupEvent.RESET:
        return WarmupStage.LOCKED
    return _TRANSITIONS.get((stage, event), stage)


@dataclass
class WarmupTimers:
    """Timestamp bookkeeping since the last reset (ms).

    The hr1m_flow fields track the first and latest stored 1m point and are
    shown on the status panel.
    """
    reset_at_ms: Optional[int] = None
    vreg_first_ms: Optional[int] = None
    vreg_enabled_ms: Optional[int] = None
    asic_first_ms: Optional[int] = None
    asic_enabled_ms: Optional[int] = None
    live_first_ms: Optional[int] = None
    ready_ms: Optional[int] = None
    hr1m_flow_first_ms: Optional[int] = None
    hr1m_flow_last_ms: Optional[int] = None


def _finite(v) -> bool:
    return isinstance(v, (int, float)) and math.isfinite(v)


def should_insert_restart_cut(
    live_ok_now: bool,
    vreg_raw: float,
    asic_raw: float,
    history_hr1m: float,
    temp_min_valid_c: float,
) -> bool:
    """Detect a restart signature in an incoming history sample.

    The live hashrate has to be gone and the history has to emit boot-like
    samples (temperatures below the plausible minimum or a 1m hashrate <= 0).
    """
    if live_ok_now:
        return False
    temp_bad = any(not _finite(t) or t < temp_min_valid_c for t in (vreg_raw, asic_raw))
    hash_bad = not _finite(history_hr1m) or history_hr1m <= 0
    return temp_bad or hash_bad


def should_unlock_startup(
    live_hs: float,
    expected_hs: float,
    expected_unlock_ratio: float,
    live_is_stable: bool,
) -> bool:
    """Live hashrate reached the expected ratio and the reference is steady."""
    if not (_finite(live_hs) and live_hs > 0):
        return False
    if not (_finite(expected_hs) and expected_hs > 0):
        return False
    return live_is_stable and live_hs >= expected_hs * expected_unlock_ratio


def should_start_hr1m_from_history(
    hr1m_started: bool,
    startup_unlocked: bool,
    hist_ok: bool,
    hist_unlock_ok: bool,
    is_history_importing: bool,
) -> bool:
    """Decide whether the 1m series may start plotting from history.

    Once startup is unlocked the history value must reach the unlock ratio;
    during a history import (fresh start) any valid history sample may start it.
    """
    if hr1m_started:
        return True
    if startup_unlocked:
        return hist_unlock_ok
    return is_history_importing and hist_ok


class WarmupMachine:
    """Finite state machine gating channel enablement after restarts."""

    def __init__(self, cfg: Optional[WarmupConfig] = None,
                 initial_stage: WarmupStage = WarmupStage.READY):
        """Initialize machine.

        Args:
            cfg: Warmup configuration
            initial_stage: Stage at construction. A freshly attached monitor
                starts READY; the machine only walks the warmup sequence
                after a detected restart.
        """
        self.cfg = cfg or WarmupConfig()
        self._stage = initial_stage
        self._timers = WarmupTimers()
        self._restart_streak = 0
        self._break_pending = False

    @property
    def stage(self) -> WarmupStage:
        return self._stage

    @property
    def timers(self) -> WarmupTimers:
        return self._timers

    def _fire(self, event: WarmupEvent) -> bool:
        new_stage = transition(self._stage, event)
        if new_stage is self._stage:
            return False
        logger.info(f"Warmup stage {self._stage.value} -> {new_stage.value}")
        self._stage = new_stage
        return True

    def _temp_valid(self, v) -> bool:
        return _finite(v) and self.cfg.temp_min_valid_c <= v <= self.cfg.temp_max_valid_c

    def reset(self, at_ms: int) -> None:
        """Return to LOCKED and forget all first-valid timestamps."""
        self._fire(WarmupEvent.RESET)
        self._timers = WarmupTimers(reset_at_ms=int(at_ms))
        self._restart_streak = 0

    def observe_live(
        self,
        now_ms: int,
        vreg_temp_c: float,
        asic_temp_c: float,
        live_hashrate_hs: float,
        expected_hashrate_hs: float,
        system_ok: bool,
    ) -> WarmupStage:
        """Feed one live poll into the machine.

        Returns:
            Stage after processing the poll
        """
        cfg = self.cfg
        t = self._timers
        live_ok = _finite(live_hashrate_hs) and live_hashrate_hs > 0

        if self._stage is WarmupStage.READY:
            self._check_restart(now_ms, vreg_temp_c, asic_temp_c, live_ok, system_ok)
            return self._stage

        self._fire(WarmupEvent.BEGIN)

        if t.vreg_first_ms is None and self._temp_valid(vreg_temp_c):
            t.vreg_first_ms = now_ms
        if t.asic_first_ms is None and self._temp_valid(asic_temp_c):
            t.asic_first_ms = now_ms
        if t.live_first_ms is None and live_ok and system_ok:
            t.live_first_ms = now_ms

        # Walk forward as far as the delays allow (never skipping a stage)
        while True:
            stage = self._stage
            if stage is WarmupStage.VREG_WAIT:
                if t.vreg_first_ms is not None and now_ms - t.vreg_first_ms >= cfg.vreg_delay_ms:
                    t.vreg_enabled_ms = now_ms
                    self._fire(WarmupEvent.VREG_READY)
            elif stage is WarmupStage.ASIC_WAIT:
                if t.asic_first_ms is not None:
                    since = max(t.vreg_enabled_ms or now_ms, t.asic_first_ms)
                    if now_ms - since >= cfg.asic_delay_ms:
                        t.asic_enabled_ms = now_ms
                        self._fire(WarmupEvent.ASIC_READY)
            elif stage is WarmupStage.HASH1M_WAIT:
                if t.live_first_ms is not None:
                    since = max(t.asic_enabled_ms or now_ms, t.live_first_ms)
                    if now_ms - since >= cfg.hash1m_delay_ms:
                        t.ready_ms = now_ms
                        self._fire(WarmupEvent.HASH1M_READY)
            if self._stage is stage:
                break

        return self._stage

    def _check_restart(self, now_ms: int, vreg_temp_c, asic_temp_c,
                       live_ok: bool, system_ok: bool) -> None:
        min_valid = self.cfg.temp_min_valid_c
        temps_bad = any(not _finite(v) or v < min_valid for v in (vreg_temp_c, asic_temp_c))
        boot_like = not live_ok and (temps_bad or not system_ok)

        if not boot_like:
            self._restart_streak = 0
            return

        self._restart_streak += 1
        if self._restart_streak >= max(1, self.cfg.restart_detect_streak):
            logger.info(f"Restart detected from live poll at {now_ms}")
            self.reset(now_ms)
            self._break_pending = True

    def notify_hr1m_flow(self, ts_ms: int) -> None:
        """Record that a finite 1m hashrate point was stored."""
        t = self._timers
        if t.hr1m_flow_first_ms is None:
            t.hr1m_flow_first_ms = int(ts_ms)
        t.hr1m_flow_last_ms = int(ts_ms)

    def consume_break_pending(self) -> bool:
        """Edge-triggered read of the break flag."""
        pending = self._break_pending
        self._break_pending = False
        return pending

    def is_locked(self) -> bool:
        return self._stage is not WarmupStage.READY

    def is_vreg_enabled(self) -> bool:
        return self._stage in (WarmupStage.ASIC_WAIT, WarmupStage.HASH1M_WAIT, WarmupStage.READY)

    def is_asic_enabled(self) -> bool:
        return self._stage in (WarmupStage.HASH1M_WAIT, WarmupStage.READY)

    def is_hr1m_enabled(self) -> bool:
        return self._stage is WarmupStage.READY

    def is_other_hash_enabled(self) -> bool:
        return self.is_hr1m_enabled()
